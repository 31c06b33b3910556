"""
CH55x bootloader packet framing.

Frame format (both directions):
[ preamble (2) | payload | checksum (1) ]

Request preamble is 57 AB, reply preamble is 55 AA. The checksum is the
8-bit wraparound sum of the payload bytes only. Replies carry no length
field: a reply ends when the transport read times out.
"""

import logging
from typing import Iterable

from .errors import ChecksumMismatch, PreambleMismatch, ProtocolError, SerialTimeout
from .transport import Transport

logger = logging.getLogger(__name__)

REQUEST_PREAMBLE = b"\x57\xAB"
REPLY_PREAMBLE = b"\x55\xAA"
PACKET_MAXLEN = 256


def checksum8(data: Iterable[int]) -> int:
    """8-bit wraparound sum of data."""
    return sum(data) & 0xFF


def build_request(payload: bytes) -> bytes:
    """
    Build a request frame around payload.

    Raises:
        ValueError: If the frame would exceed PACKET_MAXLEN bytes
    """
    frame_len = len(REQUEST_PREAMBLE) + len(payload) + 1
    if frame_len > PACKET_MAXLEN:
        raise ValueError(f"Frame too large: {frame_len} bytes (max {PACKET_MAXLEN})")
    return REQUEST_PREAMBLE + bytes(payload) + bytes([checksum8(payload)])


def build_reply(payload: bytes) -> bytes:
    """Build a reply frame, as the chip would send it."""
    return REPLY_PREAMBLE + bytes(payload) + bytes([checksum8(payload)])


def parse_reply(frame: bytes) -> bytes:
    """
    Validate a reply frame and return its payload.

    Raises:
        SerialTimeout: Empty frame (device did not answer)
        PreambleMismatch: Frame does not start with 55 AA
        ChecksumMismatch: Trailing byte is not the payload checksum
    """
    if not frame:
        raise SerialTimeout("no reply from device")

    if frame[:2] != REPLY_PREAMBLE:
        raise PreambleMismatch(f"got {frame[:2].hex().upper()}")

    if len(frame) < 3:
        raise ChecksumMismatch("reply has no checksum byte")

    payload = frame[2:-1]
    expected = checksum8(payload)
    if frame[-1] != expected:
        raise ChecksumMismatch(f"expected 0x{expected:02X}, got 0x{frame[-1]:02X}")

    return payload


def read_reply(transport: Transport) -> bytes:
    """
    Collect one reply frame byte by byte until a read times out or fails.

    A failed read ends the frame like a timeout does; parse_reply decides
    what the collected bytes are worth. Bytes past PACKET_MAXLEN are still
    read off the line and dropped, so they never start the next reply.
    """
    frame = bytearray()
    dropped = 0
    while True:
        try:
            byte = transport.read_byte()
        except ProtocolError as e:
            logger.debug(f"Read ended: {e}")
            break
        if not byte:
            break
        if len(frame) < PACKET_MAXLEN:
            frame += byte
        else:
            dropped += 1

    if dropped:
        logger.debug(f"Dropped {dropped} bytes past frame capacity")
    return bytes(frame)


def exchange(transport: Transport, payload: bytes) -> bytes:
    """
    Send one request and return the validated reply payload.

    Args:
        transport: Open transport
        payload: Request payload (preamble and checksum are added here)

    Returns:
        Reply payload (preamble and checksum stripped)
    """
    request = build_request(payload)
    transport.write(request)
    logger.debug(f">>> {request.hex().upper()}")

    reply = read_reply(transport)
    if reply:
        logger.debug(f"<<< {reply.hex().upper()}")

    return parse_reply(reply)
