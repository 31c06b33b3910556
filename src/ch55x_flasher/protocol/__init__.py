"""Bootloader protocol layer - framing, transport and the protocol engine."""

from .errors import (
    ProtocolError,
    PreambleMismatch,
    ChecksumMismatch,
    SerialTimeout,
    SerialError,
    FileAccessError,
    FileFormatError,
    BootloaderUnknown,
    ChipUnknown,
    ERROR_KINDS,
)
from .transport import (
    Transport,
    SerialTransport,
    open_serial,
    DEFAULT_BAUDRATE,
    DEFAULT_TIMEOUT,
)
from .packet import (
    checksum8,
    build_request,
    build_reply,
    parse_reply,
    exchange,
    PACKET_MAXLEN,
)
from .engine import (
    BootloaderEngine,
    SessionState,
    FlashMode,
    derive_session_key,
    build_key_request,
    iter_v1_packets,
    iter_v2_packets,
    padded_length,
)

__all__ = [
    # Errors
    "ProtocolError",
    "PreambleMismatch",
    "ChecksumMismatch",
    "SerialTimeout",
    "SerialError",
    "FileAccessError",
    "FileFormatError",
    "BootloaderUnknown",
    "ChipUnknown",
    "ERROR_KINDS",
    # Transport
    "Transport",
    "SerialTransport",
    "open_serial",
    "DEFAULT_BAUDRATE",
    "DEFAULT_TIMEOUT",
    # Framing
    "checksum8",
    "build_request",
    "build_reply",
    "parse_reply",
    "exchange",
    "PACKET_MAXLEN",
    # Engine
    "BootloaderEngine",
    "SessionState",
    "FlashMode",
    "derive_session_key",
    "build_key_request",
    "iter_v1_packets",
    "iter_v2_packets",
    "padded_length",
]
