"""
Static registries for WCH CH55x bootloaders.

Provides a single source of truth for:
- Chip profiles (flash size, erase blocks, boot address) keyed by chip id
- Command templates (request byte sequences) keyed by bootloader variant

Usage:
    from ch55x_flasher.models import (
        BootloaderVariant, get_chip_profile, get_command_template
    )

    profile = get_chip_profile(0x52)      # CH552
    template = get_command_template(BootloaderVariant.V2)
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping

from ch55x_flasher.protocol.errors import BootloaderUnknown, ChipUnknown

# Flash is erased and sized in 1 KiB blocks
BLOCK_SIZE = 1024


class BootloaderVariant(Enum):
    """On-chip bootloader dialect."""
    UNKNOWN = "unknown"
    V1 = "v1"   # Bootloader 1.x, plain data packets
    V2 = "v2"   # Bootloader 2.x, key exchange + XOR-obfuscated data


@dataclass(frozen=True)
class ChipProfile:
    """Memory layout of one chip model."""
    chip_id: int
    flash_blocks: int
    erase_blocks: int
    boot_address: int

    @property
    def name(self) -> str:
        """Marketing name, e.g. CH552 for id 0x52."""
        return f"CH5{self.chip_id:02X}"

    @property
    def flash_size(self) -> int:
        """Total flash in bytes."""
        return self.flash_blocks * BLOCK_SIZE

    @property
    def app_size(self) -> int:
        """Erasable application area in bytes."""
        return self.erase_blocks * BLOCK_SIZE


@dataclass(frozen=True)
class CommandTemplate:
    """Fixed request byte sequences for one bootloader variant."""
    chip_detect: bytes
    bootloader_exit: bytes
    flash_erase: bytes
    mode_write: bytes
    mode_verify: bytes
    config_read: bytes
    config_write: bytes = b""

    @property
    def write_opcode(self) -> int:
        return self.mode_write[0]

    @property
    def verify_opcode(self) -> int:
        return self.mode_verify[0]


# ============================================================================
# CHIP PROFILES
# ============================================================================

CHIP_PROFILES: Mapping[int, ChipProfile] = MappingProxyType({
    0x51: ChipProfile(0x51, flash_blocks=10, erase_blocks=10, boot_address=0x3800),  # CH551
    0x52: ChipProfile(0x52, flash_blocks=16, erase_blocks=14, boot_address=0x3800),  # CH552
    0x53: ChipProfile(0x53, flash_blocks=10, erase_blocks=10, boot_address=0x3800),  # CH553
    0x54: ChipProfile(0x54, flash_blocks=16, erase_blocks=14, boot_address=0x3800),  # CH554
    0x58: ChipProfile(0x58, flash_blocks=40, erase_blocks=32, boot_address=0xF400),  # CH558
    0x59: ChipProfile(0x59, flash_blocks=64, erase_blocks=60, boot_address=0xF400),  # CH559
})


# ============================================================================
# COMMAND TEMPLATES
# ============================================================================

COMMAND_TEMPLATES: Mapping[BootloaderVariant, CommandTemplate] = MappingProxyType({
    BootloaderVariant.V1: CommandTemplate(
        # "USB DBG CH559 & ISP"
        chip_detect=bytes([
            0xA2, 0x13, 0x55, 0x53, 0x42, 0x20, 0x44, 0x42, 0x47, 0x20, 0x43, 0x48, 0x35,
            0x35, 0x39, 0x20, 0x26, 0x20, 0x49, 0x53, 0x50, 0x00,
        ]),
        bootloader_exit=bytes([0xA5, 0x02, 0x01, 0x00]),
        flash_erase=bytes([0xA6, 0x04, 0x00, 0x00, 0x00, 0x00]),
        mode_write=bytes([0xA8]),
        mode_verify=bytes([0xA7]),
        config_read=bytes([0xBB, 0x00]),
    ),
    BootloaderVariant.V2: CommandTemplate(
        # "MCU ISP & WCH.CN"
        chip_detect=bytes([
            0xA1, 0x12, 0x00, 0x59, 0x11, 0x4D, 0x43, 0x55, 0x20, 0x49, 0x53, 0x50, 0x20,
            0x26, 0x20, 0x57, 0x43, 0x48, 0x2E, 0x43, 0x4E,
        ]),
        bootloader_exit=bytes([0xA2, 0x01, 0x00, 0x01]),
        flash_erase=bytes([0xA4, 0x01, 0x00, 0x00]),
        mode_write=bytes([0xA5]),
        mode_verify=bytes([0xA6]),
        config_read=bytes([0xA7, 0x02, 0x00, 0x1F, 0x00]),
        config_write=bytes([
            0xA8, 0x0E, 0x00, 0x07, 0x00, 0xFF, 0xFF, 0xFF, 0xFF, 0x03, 0x00, 0x00, 0x00,
            0xFF, 0x4E, 0x00, 0x00,
        ]),
    ),
})


def get_chip_profile(chip_id: int) -> ChipProfile:
    """
    Look up the profile for a chip identifier byte.

    Raises:
        ChipUnknown: If the identifier is not a supported chip
    """
    try:
        return CHIP_PROFILES[chip_id]
    except KeyError:
        raise ChipUnknown(f"unsupported chip id 0x{chip_id:02X}") from None


def list_chip_profiles() -> List[ChipProfile]:
    """All supported chips, ordered by identifier."""
    return [CHIP_PROFILES[chip_id] for chip_id in sorted(CHIP_PROFILES)]


def get_command_template(variant: BootloaderVariant) -> CommandTemplate:
    """
    Look up the request templates for a bootloader variant.

    Raises:
        BootloaderUnknown: For BootloaderVariant.UNKNOWN
    """
    if variant is BootloaderVariant.UNKNOWN:
        raise BootloaderUnknown("bootloader variant not detected")
    return COMMAND_TEMPLATES[variant]
