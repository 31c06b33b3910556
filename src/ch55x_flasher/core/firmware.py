"""
Firmware image loading.

Images are raw flat binaries with no header, at least 32 bytes long.
"""

import hashlib
import logging
from pathlib import Path
from typing import Union

from ch55x_flasher.protocol.engine import MIN_IMAGE_SIZE
from ch55x_flasher.protocol.errors import FileAccessError, FileFormatError

logger = logging.getLogger(__name__)


def load_firmware(path: Union[str, Path]) -> bytes:
    """
    Read a raw firmware image from disk.

    Args:
        path: Path to the .bin file

    Returns:
        Image bytes

    Raises:
        FileAccessError: If the file cannot be opened or read
        FileFormatError: If the image is shorter than 32 bytes
    """
    path = Path(path)
    try:
        image = path.read_bytes()
    except OSError as e:
        raise FileAccessError(f"cannot read {path}: {e}") from e

    logger.info(f"Firmware filesize: {len(image)} bytes")

    if len(image) < MIN_IMAGE_SIZE:
        raise FileFormatError(
            f"{path.name} is {len(image)} bytes, firmware possibly corrupt"
        )

    return image


def firmware_digest(image: bytes) -> str:
    """SHA-256 hex digest of an image."""
    return hashlib.sha256(image).hexdigest()
