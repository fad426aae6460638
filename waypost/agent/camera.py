"""OpenCV camera stream for periodic JPEG frame grabs."""

import logging

import cv2

from .errors import CameraUnavailableError

logger = logging.getLogger(__name__)

JPEG_QUALITY = 50


class OpenCVCamera:
    """
    A camera opened once and held until released.

    ``open`` and ``read_jpeg`` block; call them through
    ``asyncio.to_thread`` from the event loop.
    """

    def __init__(self, index: int = 0, jpeg_quality: int = JPEG_QUALITY) -> None:
        self.index = index
        self.jpeg_quality = jpeg_quality
        self._capture: cv2.VideoCapture | None = None

    @property
    def is_active(self) -> bool:
        return self._capture is not None and self._capture.isOpened()

    def open(self) -> None:
        """
        Open the camera device.

        Raises:
            CameraUnavailableError: If the device cannot be opened
        """
        if self.is_active:
            return
        capture = cv2.VideoCapture(self.index)
        if not capture.isOpened():
            capture.release()
            raise CameraUnavailableError(f"Camera {self.index} could not be opened")
        self._capture = capture
        logger.info("Camera %d opened", self.index)

    def read_jpeg(self) -> bytes | None:
        """Grab one frame and encode it as JPEG; None if no frame is ready."""
        if not self.is_active:
            return None
        assert self._capture is not None
        try:
            ok, frame = self._capture.read()
            if not ok or frame is None:
                logger.debug("Camera %d returned no frame", self.index)
                return None
            ok, buffer = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        except cv2.error as e:
            logger.warning("Frame grab failed on camera %d: %s", self.index, e)
            return None
        if not ok:
            logger.warning("JPEG encoding failed for camera %d", self.index)
            return None
        return buffer.tobytes()

    def release(self) -> None:
        """Release the device. Safe to call repeatedly."""
        if self._capture is None:
            return
        self._capture.release()
        self._capture = None
        logger.info("Camera %d released", self.index)
