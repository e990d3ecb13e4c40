"""
Value types shared by the extractor, detector, session and storage layers.

All types are immutable: a region of interest is replaced wholesale when it
is edited, and every statistics recomputation yields a new snapshot.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from meter_monitor.errors import ConfigError, DecodeError

CHANNELS = 4

ROI_MIN_SIZE = 0.05
ROI_MAX_SIZE = 0.8

_FIT_TOLERANCE = 1e-9


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


@dataclass(frozen=True)
class NormalizedRoi:
    """
    Rectangular region of interest in frame-relative coordinates.

    Parameters
    ----------
    center_x, center_y:
        Centre of the region as a fraction (0 – 1) of the frame width/height.
    width, height:
        Size of the region as a fraction (0 – 1) of the frame width/height.

    The region must lie inside the frame, i.e.
    ``width/2 <= center_x <= 1 - width/2`` and likewise for Y.  Use
    :meth:`resized` and :meth:`moved` to derive a new region with the
    centre clamped accordingly.
    """

    center_x: float
    center_y: float
    width: float
    height: float

    def __post_init__(self) -> None:
        for name in ("center_x", "center_y", "width", "height"):
            value = getattr(self, name)
            if not math.isfinite(value) or not 0.0 <= value <= 1.0:
                raise ConfigError(f"ROI {name} must be within [0, 1], got {value!r}")
        if not self._fits(self.center_x, self.width):
            raise ConfigError(
                f"ROI does not fit horizontally: center_x={self.center_x} width={self.width}"
            )
        if not self._fits(self.center_y, self.height):
            raise ConfigError(
                f"ROI does not fit vertically: center_y={self.center_y} height={self.height}"
            )

    @staticmethod
    def _fits(center: float, size: float) -> bool:
        half = size / 2
        return half - _FIT_TOLERANCE <= center <= 1 - half + _FIT_TOLERANCE

    @classmethod
    def default(cls) -> "NormalizedRoi":
        """Centred quarter-size region."""
        return cls(center_x=0.5, center_y=0.5, width=0.25, height=0.25)

    @classmethod
    def parse(cls, text: str) -> "NormalizedRoi":
        """Parse ``"cx,cy,w,h"`` (as given on the command line)."""
        parts = [p.strip() for p in text.split(",")]
        if len(parts) != 4:
            raise ConfigError(f"ROI must have four comma-separated values, got {text!r}")
        try:
            cx, cy, w, h = (float(p) for p in parts)
        except ValueError as exc:
            raise ConfigError(f"ROI values must be numbers, got {text!r}") from exc
        return cls(center_x=cx, center_y=cy, width=w, height=h)

    def resized(
        self,
        width: Optional[float] = None,
        height: Optional[float] = None,
    ) -> "NormalizedRoi":
        """
        Return a copy with a new size.

        Sizes are clamped to ``[ROI_MIN_SIZE, ROI_MAX_SIZE]`` and the centre is
        pulled inwards so the resized region still fits inside the frame.
        """
        new_w = self.width if width is None else _clamp(width, ROI_MIN_SIZE, ROI_MAX_SIZE)
        new_h = self.height if height is None else _clamp(height, ROI_MIN_SIZE, ROI_MAX_SIZE)
        return replace(
            self,
            width=new_w,
            height=new_h,
            center_x=_clamp(self.center_x, new_w / 2, 1 - new_w / 2),
            center_y=_clamp(self.center_y, new_h / 2, 1 - new_h / 2),
        )

    def moved(self, center_x: float, center_y: float) -> "NormalizedRoi":
        """Return a copy centred as close to ``(center_x, center_y)`` as fits."""
        return replace(
            self,
            center_x=_clamp(center_x, self.width / 2, 1 - self.width / 2),
            center_y=_clamp(center_y, self.height / 2, 1 - self.height / 2),
        )


@dataclass(frozen=True, eq=False)
class DecodedImage:
    """
    Decoded RGBA8 raster, row-major, four channels per pixel.

    ``data`` may be a flat byte buffer of ``width * height * 4`` values or an
    array already shaped ``(height, width, 4)``.
    """

    width: int
    height: int
    data: np.ndarray

    def __post_init__(self) -> None:
        if self.width < 0 or self.height < 0:
            raise DecodeError(f"Invalid image size {self.width}x{self.height}")
        if isinstance(self.data, (bytes, bytearray, memoryview)):
            arr = np.frombuffer(self.data, dtype=np.uint8)
        else:
            arr = np.asarray(self.data, dtype=np.uint8)
        expected = self.width * self.height * CHANNELS
        if arr.size != expected:
            raise DecodeError(
                f"RGBA buffer has {arr.size} values, expected {expected} "
                f"for {self.width}x{self.height}"
            )
        object.__setattr__(self, "data", arr.reshape(self.height, self.width, CHANNELS))

    def pixels(self) -> np.ndarray:
        """Return the raster as an ``(height, width, 4)`` uint8 array."""
        return self.data


@dataclass(frozen=True)
class MeasurementStats:
    """Live or final statistics of a measurement session."""

    pulses: int
    duration_seconds: float
    power_watts: Optional[float]
    started_at_millis: Optional[int]

    @classmethod
    def empty(cls) -> "MeasurementStats":
        return cls(pulses=0, duration_seconds=0.0, power_watts=None, started_at_millis=None)


@dataclass(frozen=True)
class MeasurementRecord:
    """A completed measurement (``id`` is assigned by the store on insert)."""

    timestamp_millis: int
    meter_constant: float
    pulses: int
    duration_seconds: float
    power_watts: Optional[float]
    id: Optional[int] = None

    @classmethod
    def from_stats(
        cls,
        stats: MeasurementStats,
        meter_constant: float,
    ) -> Optional["MeasurementRecord"]:
        """
        Build a record from a final snapshot.

        Returns *None* when the session has nothing worth keeping
        (no pulses, no elapsed time, or never started).
        """
        if stats.pulses <= 0 or stats.duration_seconds <= 0:
            return None
        if stats.started_at_millis is None:
            return None
        return cls(
            timestamp_millis=stats.started_at_millis,
            meter_constant=meter_constant,
            pulses=stats.pulses,
            duration_seconds=stats.duration_seconds,
            power_watts=stats.power_watts,
        )
