"""
Chip and bootloader registries for CH55x microcontrollers.
"""

from .registry import (
    BLOCK_SIZE,
    BootloaderVariant,
    ChipProfile,
    CommandTemplate,
    CHIP_PROFILES,
    COMMAND_TEMPLATES,
    get_chip_profile,
    list_chip_profiles,
    get_command_template,
)

__all__ = [
    "BLOCK_SIZE",
    "BootloaderVariant",
    "ChipProfile",
    "CommandTemplate",
    "CHIP_PROFILES",
    "COMMAND_TEMPLATES",
    "get_chip_profile",
    "list_chip_profiles",
    "get_command_template",
]
