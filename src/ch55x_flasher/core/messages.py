"""
Standardized error and warning messages for CH55x Flasher.

Maps protocol error kinds to stable codes with remediation hints that the
CLI displays consistently.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class MessageCode(Enum):
    """Stable codes for known conditions."""
    # Wire errors
    E_PREAMBLE = "E_PREAMBLE"
    E_CHECKSUM = "E_CHECKSUM"
    E_TIMEOUT = "E_TIMEOUT"
    E_SERIAL = "E_SERIAL"

    # Firmware file errors
    E_FILE_ACCESS = "E_FILE_ACCESS"
    E_FILE_FORMAT = "E_FILE_FORMAT"

    # Device errors
    E_BOOTLOADER_UNKNOWN = "E_BOOTLOADER_UNKNOWN"
    E_CHIP_UNKNOWN = "E_CHIP_UNKNOWN"

    # Warnings
    W_IMAGE_TOO_LARGE = "W_IMAGE_TOO_LARGE"

    # Generic
    E_UNKNOWN = "E_UNKNOWN"


# Error kind (ProtocolError subclass name) -> code
ERROR_KIND_CODES: Dict[str, MessageCode] = {
    "PreambleMismatch": MessageCode.E_PREAMBLE,
    "ChecksumMismatch": MessageCode.E_CHECKSUM,
    "SerialTimeout": MessageCode.E_TIMEOUT,
    "SerialError": MessageCode.E_SERIAL,
    "FileAccessError": MessageCode.E_FILE_ACCESS,
    "FileFormatError": MessageCode.E_FILE_FORMAT,
    "BootloaderUnknown": MessageCode.E_BOOTLOADER_UNKNOWN,
    "ChipUnknown": MessageCode.E_CHIP_UNKNOWN,
}

# Default remediation hints for each code
REMEDIATIONS: Dict[MessageCode, str] = {
    MessageCode.E_PREAMBLE:
        "Another device may be answering. Check the port and that the chip is in bootloader mode.",
    MessageCode.E_CHECKSUM:
        "Reply was corrupted. Check wiring and ground, use a shorter cable.",
    MessageCode.E_TIMEOUT:
        "Chip did not answer. Hold BOOT while resetting the chip, or use --reset.",
    MessageCode.E_SERIAL:
        "Close other serial apps and check the USB-UART driver. Re-run the whole flow.",
    MessageCode.E_FILE_ACCESS:
        "Check the --file path and read permissions.",
    MessageCode.E_FILE_FORMAT:
        "Firmware must be a raw .bin of at least 32 bytes (convert .hex files first).",
    MessageCode.E_BOOTLOADER_UNKNOWN:
        "Bootloader did not respond or rejected the key. Reset into bootloader and retry.",
    MessageCode.E_CHIP_UNKNOWN:
        "Chip not recognised or erase rejected. Run 'chips' for the supported list.",
    MessageCode.W_IMAGE_TOO_LARGE:
        "Image overlaps the bootloader area. Check the build target chip.",
    MessageCode.E_UNKNOWN:
        "Run with --verbose for wire-level logs.",
}


@dataclass
class MessageItem:
    """
    Structured message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: MessageCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in REMEDIATIONS:
            self.remediation = REMEDIATIONS[self.code]

    @classmethod
    def warn(cls, code: MessageCode, title: str, detail: str = "") -> "MessageItem":
        """Create a WARN-level message."""
        return cls(MessageLevel.WARN, code, title, detail)

    @classmethod
    def error(cls, code: MessageCode, title: str, detail: str = "") -> "MessageItem":
        """Create an ERROR-level message."""
        return cls(MessageLevel.ERROR, code, title, detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }


def code_for_error_kind(kind: str) -> MessageCode:
    """Stable code for a ProtocolError kind name."""
    return ERROR_KIND_CODES.get(kind, MessageCode.E_UNKNOWN)


def result_to_messages(result: "OperationResult") -> List[MessageItem]:
    """
    Convert an OperationResult's warnings and error to a MessageItem list.
    """
    items = []

    for warning in result.warnings:
        if "larger than" in warning.lower():
            code = MessageCode.W_IMAGE_TOO_LARGE
        else:
            code = MessageCode.E_UNKNOWN
        items.append(MessageItem.warn(code, warning))

    if result.error:
        code = code_for_error_kind(result.error_kind)
        items.append(MessageItem.error(code, result.error))

    return items
