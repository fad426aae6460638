"""Artifact storage for decoded camera captures."""
import logging
from pathlib import Path

from .utils import decode_data_url, safe_filename_component

logger = logging.getLogger(__name__)


class EncodingError(ValueError):
    """A capture could not be decoded from its base64 form."""


def capture_filename(device_id: str, timestamp: int) -> str:
    """Return the artifact name for a device's capture at ``timestamp`` (ms)."""
    return f"{safe_filename_component(device_id)}_{timestamp}.jpg"


def write_capture(upload_dir: Path, device_id: str, timestamp: int, image_data: str) -> str:
    """
    Decode a base64 capture and write it under ``upload_dir``.

    Args:
        upload_dir: Directory to write into (created if missing)
        device_id: Agent device identifier
        timestamp: Capture time in milliseconds since the epoch
        image_data: Base64 image, optionally with a ``data:image/...`` prefix

    Returns:
        The written file name

    Raises:
        EncodingError: If the image is not valid base64
        OSError: If the file cannot be written
    """
    try:
        image = decode_data_url(image_data)
    except ValueError as e:
        raise EncodingError(str(e)) from e
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = capture_filename(device_id, timestamp)
    (upload_dir / filename).write_bytes(image)
    logger.debug("Wrote %d bytes to %s", len(image), upload_dir / filename)
    return filename
