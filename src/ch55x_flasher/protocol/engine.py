"""
CH55x Bootloader Protocol Engine

Drives the WCH CH55x UART bootloader: reset into bootloader, bootloader
variant detection, chip identification with the V2 key exchange, flash
erase, chunked flash write/verify and bootloader exit.

Protocol sequence for a full write:
1. Send V2 chip-detect probe -> 2-byte reply means V1, anything else V2
2. Send chip-detect for the variant -> chip id
3. Send config-read -> bootloader version (V2: key exchange follows)
4. Erase flash (V1: one request per block, V2: single request)
5. Send image in write mode, then again in verify mode
6. Send bootloader-exit

Every request is a single exchange (see packet.py). Nothing is retried:
the first failure is raised and the remaining steps are skipped.
"""

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterator, Optional, Tuple

from ch55x_flasher.models import (
    BootloaderVariant,
    ChipProfile,
    get_chip_profile,
    get_command_template,
)

from .errors import (
    BootloaderUnknown,
    ChipUnknown,
    FileFormatError,
    ProtocolError,
    SerialError,
)
from .packet import checksum8, exchange
from .transport import Transport

logger = logging.getLogger(__name__)

MIN_IMAGE_SIZE = 32

# Data bytes per write/verify packet
V1_CHUNK_SIZE = 60
V2_CHUNK_SIZE = 56
V1_PACKET_SIZE = 64

# Replies
ACK_OK = 0x00
ACK_LAST = 0xFE  # V2: accepted final (short) packet

# V1 per-block erase request: A9 02 00 <block * 4>
V1_ERASE_BLOCK_CMD = bytes([0xA9, 0x02, 0x00])

# V2 key exchange request: A3 30 00 + 48 challenge bytes
KEY_CMD = 0xA3
KEY_SEED = 0x30
KEY_CHALLENGE_SIZE = 48
KEY_SIZE = 8

V1_CHIP_REPLY_LEN = 2
V1_CONFIG_REPLY_LEN = 2
V2_CHIP_REPLY_LEN = 6
V2_CONFIG_REPLY_LEN = 30

# Reset sequence timing (seconds)
RESET_PRE_DELAY = 0.01
RESET_HOLD = 0.15
RESET_BOOTSEL_HOLD = 0.1
RESET_SETTLE = 0.25

ProgressCallback = Callable[[int, int], None]


class FlashMode(Enum):
    """Flash transfer mode, selects the opcode."""
    WRITE = "write"
    VERIFY = "verify"


@dataclass
class SessionState:
    """
    What the engine has learned about the connected chip.

    chip_id is None until a chip has been identified. session_key is only
    meaningful under V2 after an accepted key exchange.
    """
    variant: BootloaderVariant = BootloaderVariant.UNKNOWN
    chip_id: Optional[int] = None
    session_key: bytes = bytes(KEY_SIZE)
    bootloader_version: str = ""


def _key_offsets(seed: int = KEY_SEED) -> Tuple[int, ...]:
    """Request offsets of the seven challenge bytes that form the key."""
    by7 = seed // 7
    by5 = seed // 5
    return (
        3 + by7 * 4,
        3 + by5,
        3 + by7,
        3 + by7 * 6,
        3 + by7 * 3,
        3 + by5 * 3,
        3 + by7 * 5,
    )


KEY_OFFSETS = _key_offsets()


def build_key_request(challenge: bytes) -> bytes:
    """Build the 51-byte key exchange request around 48 challenge bytes."""
    if len(challenge) != KEY_CHALLENGE_SIZE:
        raise ValueError(
            f"Challenge must be {KEY_CHALLENGE_SIZE} bytes, got {len(challenge)}"
        )
    return bytes([KEY_CMD, KEY_SEED, 0x00]) + bytes(challenge)


def derive_session_key(
    challenge: bytes,
    config_reply: bytes,
    chip_id: int,
) -> Tuple[bytes, int]:
    """
    Derive the V2 session key from the key exchange challenge.

    Seven key bytes are picked from the request at KEY_OFFSETS and XORed with
    the checksum of config reply bytes 22..25. The eighth byte is
    chip_id + key[0].

    Args:
        challenge: The 48 random bytes sent in the key request
        config_reply: The 30-byte config-read reply payload
        chip_id: Detected chip identifier

    Returns:
        Tuple of (8-byte key, key checksum the chip must echo back)
    """
    request = build_key_request(challenge)
    mask = checksum8(config_reply[22:26])

    key = bytearray(request[offset] ^ mask for offset in KEY_OFFSETS)
    key.append((chip_id + key[0]) & 0xFF)

    return bytes(key), checksum8(key)


def padded_length(length: int) -> int:
    """
    Length "rounded" to the 8-byte boundary the way the bootloader expects.

    This is len + len % 8, which is only a true multiple of 8 for some
    lengths; the chips accept it as is.
    """
    return length + (length % 8)


def iter_v1_packets(image: bytes, opcode: int) -> Iterator[Tuple[int, int, bytes]]:
    """
    Split an image into V1 write/verify packets.

    Payload: [opcode, len, addr_lo, addr_hi, data...] in a zero-filled
    64-byte buffer, at most 60 data bytes each.

    Yields:
        (address, data_length, payload) tuples
    """
    total = len(image)
    end = padded_length(total)
    addr = 0
    remaining = total

    while addr < end and remaining > 0:
        chunk_len = min(V1_CHUNK_SIZE, remaining)

        packet = bytearray(V1_PACKET_SIZE)
        packet[0] = opcode
        packet[1] = chunk_len & 0xFF
        packet[2] = addr & 0xFF
        packet[3] = (addr >> 8) & 0xFF
        packet[4:4 + chunk_len] = image[addr:addr + chunk_len]

        yield addr, chunk_len, bytes(packet)

        addr += chunk_len
        remaining -= chunk_len


def iter_v2_packets(
    image: bytes,
    opcode: int,
    key: bytes,
) -> Iterator[Tuple[int, int, bytes]]:
    """
    Split an image into V2 write/verify packets.

    Payload: [opcode, len, 00, addr_lo, addr_hi, 00, 00, remaining_lo, data...]
    with at most 56 data bytes, padded by len % 8 zero bytes and XORed with
    the session key (key index = data offset & 7).

    Yields:
        (address, data_length, payload) tuples
    """
    total = len(image)
    end = padded_length(total)
    addr = 0
    remaining = total

    while addr < end and remaining > 0:
        chunk_len = min(V2_CHUNK_SIZE, remaining)
        padded_len = padded_length(chunk_len)

        header = bytes([
            opcode,
            (padded_len + 5) & 0xFF,
            0x00,
            addr & 0xFF,
            (addr >> 8) & 0xFF,
            0x00,
            0x00,
            remaining & 0xFF,
        ])
        data = image[addr:addr + chunk_len] + bytes(padded_len - chunk_len)
        data = bytes(b ^ key[i & 0x07] for i, b in enumerate(data))

        yield addr, chunk_len, header + data

        addr += padded_len
        if remaining < padded_len:
            # Short final packet
            return
        remaining -= padded_len


class BootloaderEngine:
    """
    Protocol engine for one CH55x bootloader session.

    Owns the transport handle and the session state for its lifetime.

    Example:
        engine = BootloaderEngine(transport)
        engine.reset()
        engine.write(image)
    """

    def __init__(
        self,
        transport: Transport,
        sleep: Callable[[float], None] = time.sleep,
        randbytes: Callable[[int], bytes] = os.urandom,
    ):
        """
        Args:
            transport: Open transport to the chip
            sleep: Delay function used by the reset sequence
            randbytes: Source of the key exchange challenge bytes
        """
        self.transport = transport
        self.state = SessionState()
        self._sleep = sleep
        self._randbytes = randbytes

    @property
    def variant(self) -> BootloaderVariant:
        return self.state.variant

    @property
    def chip_id(self) -> Optional[int]:
        return self.state.chip_id

    def _request(self, payload: bytes) -> bytes:
        return exchange(self.transport, payload)

    def _require_chip(self) -> ChipProfile:
        if self.state.chip_id is None:
            raise ChipUnknown("chip not detected")
        return get_chip_profile(self.state.chip_id)

    def _set_line(self, setter: Callable[[bool], None], level: bool) -> None:
        try:
            setter(level)
        except (ProtocolError, OSError) as e:
            logger.debug(f"Control line change ignored: {e}")

    # ------------------------------------------------------------------
    # Reset / detection
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """
        Reset the chip into its bootloader.

        RESET is pulsed while BOOTSEL is held, BOOTSEL is released after
        RESET so the chip starts in the bootloader. Control line errors are
        ignored.
        """
        logger.info("Resetting chip into bootloader...")
        self._sleep(RESET_PRE_DELAY)

        self._set_line(self.transport.set_reset, True)
        self._set_line(self.transport.set_bootsel, True)
        self._sleep(RESET_HOLD)

        self._set_line(self.transport.set_reset, False)
        self._sleep(RESET_BOOTSEL_HOLD)

        self._set_line(self.transport.set_bootsel, False)
        self._sleep(RESET_SETTLE)

    def detect_bootloader(self) -> BootloaderVariant:
        """
        Detect the bootloader variant, if not known yet.

        Both generations answer the V2 chip-detect probe; V1 answers with
        exactly two bytes. A failed probe is NOT raised: the variant simply
        stays UNKNOWN, so check the returned value (or self.variant) before
        relying on it.

        Returns:
            The session's bootloader variant
        """
        if self.state.variant is not BootloaderVariant.UNKNOWN:
            return self.state.variant

        probe = get_command_template(BootloaderVariant.V2).chip_detect
        try:
            reply = self._request(probe)
        except ProtocolError as e:
            logger.error(f"Bootloader not detected: {e}")
            return self.state.variant

        if len(reply) == V1_CHIP_REPLY_LEN:
            self.state.variant = BootloaderVariant.V1
        else:
            self.state.variant = BootloaderVariant.V2

        logger.debug(f"Detected {self.state.variant.name} bootloader")
        return self.state.variant

    def detect_chip(self) -> ChipProfile:
        """
        Identify the chip and read the bootloader version.

        Under V2 this also runs the key exchange and stores the session key.

        Returns:
            Profile of the detected chip

        Raises:
            BootloaderUnknown: Variant not detected, bad config reply or
                key exchange rejected
            ChipUnknown: Unexpected chip reply or unsupported chip id
        """
        variant = self.state.variant
        template = get_command_template(variant)

        reply = self._request(template.chip_detect)

        if variant is BootloaderVariant.V1:
            if len(reply) != V1_CHIP_REPLY_LEN:
                raise ChipUnknown(f"unexpected chip reply length {len(reply)}")
            profile = get_chip_profile(reply[0])
            self.state.chip_id = profile.chip_id
            logger.info(f"Detected chip model: {profile.name}")

            config = self._request(template.config_read)
            if len(config) != V1_CONFIG_REPLY_LEN:
                raise BootloaderUnknown(f"unexpected config reply length {len(config)}")

            self.state.bootloader_version = f"{config[0] >> 4}.{config[1] & 0x0F}"
            logger.info(f"Detected bootloader version: {self.state.bootloader_version}")
            return profile

        if len(reply) != V2_CHIP_REPLY_LEN:
            raise ChipUnknown(f"unexpected chip reply length {len(reply)}")
        profile = get_chip_profile(reply[4])
        self.state.chip_id = profile.chip_id
        logger.info(f"Detected chip model: {profile.name}")

        config = self._request(template.config_read)
        if len(config) != V2_CONFIG_REPLY_LEN:
            logger.error("Unexpected bootloader reply length")
            raise BootloaderUnknown(f"unexpected config reply length {len(config)}")

        self.state.bootloader_version = f"{config[19]}.{config[20]}{config[21]}"
        logger.info(f"Detected bootloader version: {self.state.bootloader_version}")

        self._exchange_key(config, profile.chip_id)
        return profile

    def _exchange_key(self, config_reply: bytes, chip_id: int) -> None:
        challenge = self._randbytes(KEY_CHALLENGE_SIZE)
        key, key_checksum = derive_session_key(challenge, config_reply, chip_id)

        reply = self._request(build_key_request(challenge))
        if len(reply) <= 4 or reply[4] != key_checksum:
            got = f"0x{reply[4]:02X}" if len(reply) > 4 else "nothing"
            raise BootloaderUnknown(
                f"key checksum rejected, expected 0x{key_checksum:02X} got {got}"
            )

        self.state.session_key = key
        logger.debug(f"Session key accepted (checksum 0x{key_checksum:02X})")

    # ------------------------------------------------------------------
    # Erase / exit
    # ------------------------------------------------------------------

    def erase(self) -> None:
        """
        Erase the application flash of the detected chip.

        Raises:
            BootloaderUnknown: Variant not detected
            ChipUnknown: Chip not detected or erase rejected
        """
        template = get_command_template(self.state.variant)
        profile = self._require_chip()

        if self.state.variant is BootloaderVariant.V1:
            try:
                reply = self._request(template.flash_erase)
            except ProtocolError as e:
                raise ChipUnknown(f"erase request failed: {e}") from e
            if not reply or reply[0] != ACK_OK:
                raise ChipUnknown("erase request rejected")

            for block in range(profile.erase_blocks):
                logger.debug(f"Erasing block: {block}")
                reply = self._request(V1_ERASE_BLOCK_CMD + bytes([(block * 4) & 0xFF]))
                if not reply or reply[0] != ACK_OK:
                    raise ChipUnknown(f"erase of block {block} rejected")
        else:
            request = bytearray(template.flash_erase[:4])
            request[3] = profile.erase_blocks
            reply = self._request(bytes(request))
            if len(reply) <= 4 or reply[4] != ACK_OK:
                raise ChipUnknown("erase request rejected")

        logger.info("Flash erased")

    def exit_bootloader(self) -> None:
        """
        Leave the bootloader and start the application.

        Raises:
            BootloaderUnknown: Variant not detected
        """
        template = get_command_template(self.state.variant)
        self._request(template.bootloader_exit)
        logger.debug("Bootloader exit sent")

    # ------------------------------------------------------------------
    # Flash transfer
    # ------------------------------------------------------------------

    def flash_image(
        self,
        image: bytes,
        mode: FlashMode = FlashMode.WRITE,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Write or verify a firmware image.

        Args:
            image: Raw firmware bytes (at least 32)
            mode: FlashMode.WRITE or FlashMode.VERIFY
            progress_cb: Optional callback(bytes_done, total_bytes)

        Returns:
            Number of packets sent

        Raises:
            BootloaderUnknown: Variant not detected
            ChipUnknown: Chip not detected
            FileFormatError: Image shorter than 32 bytes
            SerialError: A packet was rejected by the chip
        """
        variant = self.state.variant
        template = get_command_template(variant)
        profile = self._require_chip()

        total = len(image)
        logger.info(f"Firmware size: {total} bytes")
        if total < MIN_IMAGE_SIZE:
            raise FileFormatError(f"image is {total} bytes, minimum is {MIN_IMAGE_SIZE}")
        if total > profile.app_size:
            logger.warning(
                "Image (%d bytes) is larger than the %s application area (%d bytes)",
                total,
                profile.name,
                profile.app_size,
            )

        if mode is FlashMode.WRITE:
            opcode = template.write_opcode
        else:
            opcode = template.verify_opcode

        if variant is BootloaderVariant.V1:
            packets = iter_v1_packets(image, opcode)
        else:
            packets = iter_v2_packets(image, opcode, self.state.session_key)

        count = 0
        for addr, chunk_len, payload in packets:
            reply = self._request(payload)

            if variant is BootloaderVariant.V1:
                ok = bool(reply) and reply[0] == ACK_OK
            else:
                ok = len(reply) > 4 and reply[4] in (ACK_OK, ACK_LAST)
            if not ok:
                raise SerialError(f"{mode.value} failed at address 0x{addr:04X}")

            count += 1
            logger.debug(f"Processed address 0x{addr:04X}")
            if progress_cb:
                progress_cb(min(addr + chunk_len, total), total)

        if progress_cb:
            progress_cb(total, total)

        logger.info(f"Flash {mode.value} complete ({count} packets)")
        return count

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    def write(
        self,
        image: bytes,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Full programming flow: detect, erase, write, verify, exit.

        Any failing step aborts the rest; nothing is rolled back.
        """
        if self.state.variant is BootloaderVariant.UNKNOWN:
            self.detect_bootloader()
            if self.state.variant is BootloaderVariant.UNKNOWN:
                raise BootloaderUnknown("bootloader not detected")

        if self.state.chip_id is None:
            self.detect_chip()

        self.erase()
        self.flash_image(image, FlashMode.WRITE, progress_cb)
        self.flash_image(image, FlashMode.VERIFY, progress_cb)
        self.exit_bootloader()

    def verify(
        self,
        image: bytes,
        progress_cb: Optional[ProgressCallback] = None,
    ) -> None:
        """
        Verify flow: detect (best effort), identify chip, verify image.

        Does not erase and does not leave the bootloader.
        """
        self.detect_bootloader()
        self.detect_chip()
        self.flash_image(image, FlashMode.VERIFY, progress_cb)
