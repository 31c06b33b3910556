"""
CH55x Serial Transport Layer

Handles low-level serial communication with the CH55x UART bootloader.

This module provides:
- The Transport interface the protocol engine talks to
- Serial port initialization and configuration (57600 8N1)
- Single-byte reads bounded by the port timeout
- RESET / BOOTSEL control lines mapped onto DTR / RTS
"""

import logging
from typing import Optional, Protocol

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from .errors import SerialError

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 57600
DEFAULT_TIMEOUT = 0.15  # Per-byte read timeout, also ends a reply frame


class Transport(Protocol):
    """
    Duplex byte channel with two control lines.

    read_byte() returns b"" when nothing arrives within the read timeout;
    the packet layer uses that as the end-of-frame marker.
    """

    def write(self, data: bytes) -> None:
        ...

    def read_byte(self) -> bytes:
        ...

    def set_reset(self, level: bool) -> None:
        ...

    def set_bootsel(self, level: bool) -> None:
        ...


class SerialTransport:
    """
    Serial transport for the CH55x bootloader.

    Example:
        transport = SerialTransport(port="/dev/ttyUSB0")
        transport.open()
        transport.write(frame)
        byte = transport.read_byte()
        transport.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate (default 57600)
            timeout: Per-byte read timeout in seconds (default 0.15)
        """
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.ser: Optional[serial.Serial] = None

    def open(self) -> None:
        """
        Open serial port and configure for bootloader communication.

        Raises:
            SerialError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
                write_timeout=1.0,
                rtscts=False,
                xonxoff=False,
            )
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()

            logger.debug(
                f"Opened {self.port} at {self.baudrate} bps (timeout={self.timeout}s)"
            )
        except serial.SerialException as e:
            raise SerialError(f"cannot open port {self.port}: {e}") from e

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def __enter__(self) -> "SerialTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _require_open(self) -> "serial.Serial":
        if not self.ser or not self.ser.is_open:
            raise SerialError("serial port not open")
        return self.ser

    def write(self, data: bytes) -> None:
        """
        Send raw bytes to the chip.

        Raises:
            SerialError: If write fails or is incomplete
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
            ser.flush()
        except serial.SerialException as e:
            raise SerialError(f"write error: {e}") from e
        if written != len(data):
            raise SerialError(f"incomplete write: sent {written}/{len(data)} bytes")

    def read_byte(self) -> bytes:
        """
        Read a single byte, or b"" if the read timeout expires.

        Raises:
            SerialError: If the port reports an error
        """
        ser = self._require_open()
        try:
            return ser.read(1)
        except serial.SerialException as e:
            raise SerialError(f"read error: {e}") from e

    def set_reset(self, level: bool) -> None:
        """Drive the RESET line (DTR)."""
        self._require_open().dtr = level

    def set_bootsel(self, level: bool) -> None:
        """Drive the BOOTSEL line (RTS)."""
        self._require_open().rts = level


def open_serial(
    port: str,
    baudrate: int = DEFAULT_BAUDRATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> SerialTransport:
    """
    Open a bootloader transport connection.

    Returns:
        SerialTransport instance (already open)
    """
    transport = SerialTransport(port, baudrate, timeout)
    transport.open()
    return transport
