"""
Core workflow actions for CH55x Flasher.

Each action runs one engine operation, captures its log lines and turns a
ProtocolError into a failed OperationResult. The CLI only talks to this
module.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Union

from ch55x_flasher.models import BootloaderVariant, get_chip_profile
from ch55x_flasher.protocol import (
    BootloaderEngine,
    ProtocolError,
    SerialTransport,
    DEFAULT_BAUDRATE,
    DEFAULT_TIMEOUT,
)

from .firmware import load_firmware
from .results import OperationResult

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class _ListLogHandler(logging.Handler):
    """Capture log records, keeping WARNING messages apart from the rest."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records: List[str] = []
        self.warnings: List[str] = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno == logging.WARNING:
            self.warnings.append(record.getMessage())
        else:
            self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "ch55x_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


@contextmanager
def open_session(
    port: str,
    baudrate: int = DEFAULT_BAUDRATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> Iterator[BootloaderEngine]:
    """
    Open the serial port and yield an engine bound to it.

    Raises:
        SerialError: If the port cannot be opened
    """
    transport = SerialTransport(port, baudrate=baudrate, timeout=timeout)
    transport.open()
    try:
        yield BootloaderEngine(transport)
    finally:
        transport.close()


def _chip_name(engine: BootloaderEngine) -> str:
    if engine.chip_id is None:
        return ""
    return f"CH5{engine.chip_id:02X}"


def _bootloader_desc(engine: BootloaderEngine) -> str:
    if engine.variant is BootloaderVariant.UNKNOWN:
        return ""
    version = engine.state.bootloader_version
    return f"{engine.variant.name} {version}".strip()


def _run(
    operation: str,
    engine: BootloaderEngine,
    step: Callable[[], Optional[bytes]],
) -> OperationResult:
    """
    Run one step and wrap its outcome.

    step may return the firmware image it worked on, which is recorded in
    the result.
    """
    with _capture_logs() as captured:
        image = None
        try:
            image = step()
        except ProtocolError as e:
            logger.error(f"{operation} failed: {e}")
            result = OperationResult.from_error(operation, e)
        else:
            result = OperationResult(operation)

    result.chip = _chip_name(engine)
    result.bootloader = _bootloader_desc(engine)
    if image is not None:
        result.record_image(image)
    result.warnings = captured.warnings
    result.logs = captured.records
    return result


def reset_chip(engine: BootloaderEngine) -> OperationResult:
    """Reset the chip into its bootloader via DTR/RTS."""
    return _run("reset", engine, engine.reset)


def detect_chip(engine: BootloaderEngine) -> OperationResult:
    """
    Detect bootloader variant and chip.

    Returns:
        OperationResult with chip_info (chip_id, flash_size, app_size,
        boot_address) on success
    """
    def step() -> None:
        engine.detect_bootloader()
        engine.detect_chip()

    result = _run("detect", engine, step)
    if result.ok:
        profile = get_chip_profile(engine.chip_id)
        result.chip_info.update({
            "chip_id": f"0x{profile.chip_id:02X}",
            "flash_size": profile.flash_size,
            "app_size": profile.app_size,
            "boot_address": f"0x{profile.boot_address:04X}",
        })
    return result


def erase_chip(engine: BootloaderEngine) -> OperationResult:
    """Erase the application flash of an already detected chip."""
    return _run("erase", engine, engine.erase)


def write_firmware(
    engine: BootloaderEngine,
    firmware_path: Union[str, Path],
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """
    Load a firmware file and run the full write flow
    (detect, erase, write, verify, exit bootloader).
    """
    def step() -> bytes:
        image = load_firmware(firmware_path)
        engine.write(image, progress_cb=progress_cb)
        return image

    return _run("write", engine, step)


def verify_firmware(
    engine: BootloaderEngine,
    firmware_path: Union[str, Path],
    progress_cb: Optional[ProgressCallback] = None,
) -> OperationResult:
    """Load a firmware file and verify the chip flash against it."""
    def step() -> bytes:
        image = load_firmware(firmware_path)
        engine.verify(image, progress_cb=progress_cb)
        return image

    return _run("verify", engine, step)
