"""
Protocol error kinds.

Every engine operation raises one of these on failure. Nothing in the
protocol layer retries; the first error is propagated to the caller.
"""

from typing import Optional


class ProtocolError(Exception):
    """Base exception for bootloader protocol errors"""

    message = "Protocol error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail
        if detail:
            super().__init__(f"{self.message}: {detail}")
        else:
            super().__init__(self.message)

    @property
    def kind(self) -> str:
        """Error kind name (class name), stable for programmatic handling."""
        return type(self).__name__


class PreambleMismatch(ProtocolError):
    """Reply did not start with 55 AA"""
    message = "Preamble mismatch"


class ChecksumMismatch(ProtocolError):
    """Reply checksum byte did not match its payload"""
    message = "Checksum mismatch"


class SerialTimeout(ProtocolError):
    """Device sent nothing before the read timeout"""
    message = "Serial timeout"


class SerialError(ProtocolError):
    """Serial port failure or a rejected data packet"""
    message = "Serial error"


class FileAccessError(ProtocolError):
    """Firmware file could not be opened or read"""
    message = "File access error"


class FileFormatError(ProtocolError):
    """Firmware image is not usable (too short)"""
    message = "File format error"


class BootloaderUnknown(ProtocolError):
    """Bootloader variant not detected or key exchange rejected"""
    message = "Bootloader unknown"


class ChipUnknown(ProtocolError):
    """Chip not identified, not in the registry, or erase rejected"""
    message = "Chip unknown"


ERROR_KINDS = (
    PreambleMismatch,
    ChecksumMismatch,
    SerialTimeout,
    SerialError,
    FileAccessError,
    FileFormatError,
    BootloaderUnknown,
    ChipUnknown,
)
