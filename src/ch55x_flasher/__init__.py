"""
CH55x Flasher - UART bootloader tool for WCH CH55x microcontrollers

Chip detection, flash erase, firmware write and verify over a serial link.
"""

__version__ = "0.1.0"

from ch55x_flasher.protocol import BootloaderEngine, SerialTransport, ProtocolError
from ch55x_flasher.models import BootloaderVariant, ChipProfile

__all__ = [
    "BootloaderEngine",
    "SerialTransport",
    "ProtocolError",
    "BootloaderVariant",
    "ChipProfile",
    "__version__",
]
