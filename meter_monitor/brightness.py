"""
Region-of-interest brightness extraction.

Algorithm
---------
1. Convert the normalised ROI into an inclusive pixel rectangle:
   ``floor`` of the left/top edge, ``ceil`` of the right/bottom edge, each
   axis clamped to ``[0, dimension - 1]``.
2. Compute Rec. 601 luma ``0.299 R + 0.587 G + 0.114 B`` for every pixel in
   the rectangle (alpha is ignored).
3. Return the mean luma, or ``0.0`` when the rectangle holds no pixels.

The module also hosts the decoder collaborator: helpers that turn JPEG
bytes or OpenCV frames into the RGBA raster the extractor consumes.
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
from typing import Tuple

import cv2
import numpy as np

from meter_monitor.errors import DecodeError
from meter_monitor.models import DecodedImage, NormalizedRoi

logger = logging.getLogger(__name__)

_LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def _clamp(value: int, low: int, high: int) -> int:
    return min(max(value, low), high)


def roi_pixel_bounds(
    image_width: int,
    image_height: int,
    roi: NormalizedRoi,
) -> Tuple[int, int, int, int]:
    """
    Return the inclusive ``(min_x, max_x, min_y, max_y)`` pixel rectangle
    covered by *roi* on an image of the given size.
    """
    half_w = max(roi.width / 2, 0.0)
    half_h = max(roi.height / 2, 0.0)
    min_x = _clamp(math.floor((roi.center_x - half_w) * image_width), 0, image_width - 1)
    max_x = _clamp(math.ceil((roi.center_x + half_w) * image_width), 0, image_width - 1)
    min_y = _clamp(math.floor((roi.center_y - half_h) * image_height), 0, image_height - 1)
    max_y = _clamp(math.ceil((roi.center_y + half_h) * image_height), 0, image_height - 1)
    return min_x, max_x, min_y, max_y


def compute_roi_brightness(image: DecodedImage, roi: NormalizedRoi) -> float:
    """
    Return the mean luma (0 – 255) of *image* inside *roi*.

    Parameters
    ----------
    image:
        RGBA8 raster.  Not retained after the call.
    roi:
        Region of interest in normalised coordinates.

    Returns 0.0 when the region contains no pixels (e.g. an empty image).
    """
    if image.width <= 0 or image.height <= 0:
        return 0.0

    min_x, max_x, min_y, max_y = roi_pixel_bounds(image.width, image.height, roi)
    patch = image.pixels()[min_y:max_y + 1, min_x:max_x + 1, :3]
    if patch.size == 0:
        return 0.0

    luma = patch.astype(np.float64) @ _LUMA_WEIGHTS
    return float(luma.mean())


# ---------------------------------------------------------------------------
# Decoder collaborator
# ---------------------------------------------------------------------------

def image_from_bgr(frame: np.ndarray) -> DecodedImage:
    """
    Convert an OpenCV frame (BGR, BGRA or single-channel grey) into an
    RGBA :class:`DecodedImage`.
    """
    if frame.ndim == 2:
        rgba = cv2.cvtColor(frame, cv2.COLOR_GRAY2RGBA)
    elif frame.ndim == 3 and frame.shape[2] == 4:
        rgba = cv2.cvtColor(frame, cv2.COLOR_BGRA2RGBA)
    elif frame.ndim == 3 and frame.shape[2] == 3:
        rgba = cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)
    else:
        raise DecodeError(f"Unsupported frame shape {frame.shape}")
    h, w = rgba.shape[:2]
    return DecodedImage(width=w, height=h, data=rgba)


def decode_jpeg(data: bytes) -> DecodedImage:
    """Decode JPEG (or any OpenCV-readable) bytes into an RGBA raster."""
    buf = np.frombuffer(data, dtype=np.uint8)
    if buf.size == 0:
        raise DecodeError("Empty image buffer")
    frame = cv2.imdecode(buf, cv2.IMREAD_COLOR)
    if frame is None:
        raise DecodeError(f"Could not decode {buf.size} bytes as an image")
    return image_from_bgr(frame)


def decode_base64_jpeg(text: str) -> DecodedImage:
    """Decode a base64-encoded JPEG, as delivered by photo-capture APIs."""
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Invalid base64 image payload: {exc}") from exc
    return decode_jpeg(raw)
