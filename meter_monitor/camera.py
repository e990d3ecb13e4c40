"""
Camera frame source for meter sampling.

Uses picamera2 on Raspberry Pi OS and falls back to OpenCV VideoCapture
(any USB webcam or phone-as-webcam) elsewhere.  Frames are handed to the
extractor as RGBA :class:`~meter_monitor.models.DecodedImage` rasters.
"""

from __future__ import annotations

import logging
from typing import Tuple

import cv2
import numpy as np

from meter_monitor.brightness import image_from_bgr
from meter_monitor.models import DecodedImage

logger = logging.getLogger(__name__)

try:
    from picamera2 import Picamera2
    _PICAMERA2_AVAILABLE = True
except ImportError:
    _PICAMERA2_AVAILABLE = False
    logger.debug("picamera2 not found – using OpenCV VideoCapture.")


class MeterCamera:
    """
    Wrapper around the capture device pointed at the meter.

    Parameters
    ----------
    resolution:
        (width, height) of captured frames.
    camera_index:
        OpenCV device index when picamera2 is unavailable.
    use_picamera2:
        Force a backend; defaults to picamera2 whenever it is installed.
    """

    def __init__(
        self,
        resolution: Tuple[int, int] = (640, 480),
        camera_index: int = 0,
        use_picamera2: bool | None = None,
    ) -> None:
        self.resolution = resolution
        self.camera_index = camera_index
        self._use_picamera2 = _PICAMERA2_AVAILABLE if use_picamera2 is None else use_picamera2
        self._cam = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> None:
        """Initialise and start the camera."""
        if self._use_picamera2:
            self._open_picamera2()
        else:
            self._open_opencv()
        logger.info(
            "Camera opened – backend=%s resolution=%s",
            "picamera2" if self._use_picamera2 else "opencv",
            self.resolution,
        )

    def close(self) -> None:
        """Stop and release the camera."""
        if self._cam is None:
            return
        if self._use_picamera2:
            self._cam.stop()
            self._cam.close()
        else:
            self._cam.release()
        self._cam = None
        logger.info("Camera closed.")

    @property
    def is_open(self) -> bool:
        return self._cam is not None

    def __enter__(self) -> "MeterCamera":
        self.open()
        return self

    def __exit__(self, *_) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Frame acquisition
    # ------------------------------------------------------------------

    def read_frame(self) -> np.ndarray | None:
        """Capture one BGR frame, or *None* if the device returned nothing."""
        if self._cam is None:
            raise RuntimeError("Camera is not open.  Call open() first.")
        if self._use_picamera2:
            frame = self._cam.capture_array("main")
            if frame is None:
                logger.warning("capture_array returned None.")
                return None
            # picamera2 "RGB888" is laid out as BGR in memory
            return frame[:, :, :3] if frame.ndim == 3 and frame.shape[2] == 4 else frame
        ok, frame = self._cam.read()
        if not ok:
            logger.warning("VideoCapture.read() returned False.")
            return None
        return frame

    def read_image(self) -> DecodedImage | None:
        """Capture one frame as an RGBA raster, or *None* on a dropped frame."""
        frame = self.read_frame()
        if frame is None:
            return None
        return image_from_bgr(frame)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _open_picamera2(self) -> None:
        cam = Picamera2()
        w, h = self.resolution
        config = cam.create_still_configuration(main={"size": (w, h), "format": "RGB888"})
        cam.configure(config)
        cam.start()
        self._cam = cam

    def _open_opencv(self) -> None:
        cap = cv2.VideoCapture(self.camera_index)
        if not cap.isOpened():
            raise RuntimeError(
                f"Cannot open video capture device index={self.camera_index}"
            )
        w, h = self.resolution
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
        # Keep only the newest frame
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        self._cam = cap
