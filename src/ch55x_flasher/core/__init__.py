"""
Core module for CH55x Flasher.

This module provides the single source of truth for:
- Firmware image loading (firmware.py)
- Result objects (results.py)
- Unified reset/detect/erase/write/verify workflows (actions.py)
- Standardized error messages (messages.py)

The CLI calls into this module rather than driving the engine itself.
"""

from .firmware import load_firmware, firmware_digest
from .results import OperationResult
from .messages import (
    MessageLevel,
    MessageCode,
    MessageItem,
    code_for_error_kind,
    result_to_messages,
)
from .actions import (
    open_session,
    reset_chip,
    detect_chip,
    erase_chip,
    write_firmware,
    verify_firmware,
)

__all__ = [
    # Firmware
    "load_firmware",
    "firmware_digest",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "MessageCode",
    "MessageItem",
    "code_for_error_kind",
    "result_to_messages",
    # Actions
    "open_session",
    "reset_chip",
    "detect_chip",
    "erase_chip",
    "write_firmware",
    "verify_firmware",
]
