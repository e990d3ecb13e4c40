"""
Adaptive online pulse detector.

Algorithm
---------
For every ``(timestamp, brightness)`` sample:

1. The first sample only seeds the baseline (EMA) and is never judged.
2. ``delta = brightness - baseline``; the baseline then moves towards the
   sample by ``alpha * delta``.
3. An exponential moving variance of ``delta`` is updated with the same
   ``alpha``.
4. ``threshold = max(min_delta, sqrt(variance) * variance_multiplier)``.
   The floor keeps detection possible on a very quiet signal; the variance
   term raises the bar automatically under noise or ambient flicker.
5. A pulse is registered when ``delta > threshold`` and more than
   ``min_pulse_interval_ms`` have passed since the previous pulse.

Only brightness *increases* count (an LED flash).  Baseline and variance
are updated on every sample, so a sustained bright period is absorbed into
the baseline rather than read as a pulse train.  Memory use is constant and
timing is derived purely from the supplied timestamps.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from typing import Optional

from meter_monitor.errors import ValidationError

logger = logging.getLogger(__name__)

EMA_ALPHA = 0.2
MIN_BRIGHTNESS_DELTA = 8.0
VARIANCE_MULTIPLIER = 1.5
MIN_PULSE_INTERVAL_MS = 200


@dataclass
class DetectorState:
    """Mutable state owned by a single :class:`PulseDetector`."""

    ema_brightness: Optional[float] = None
    ema_variance: float = 0.0
    last_pulse_timestamp: int = 0
    pulse_count: int = 0


class PulseDetector:
    """
    Brightness-spike detector with an adaptive threshold.

    Parameters
    ----------
    alpha:
        Smoothing factor of the baseline and variance EMAs (default 0.2).
    min_delta:
        Lower bound of the detection threshold in luma units (default 8).
    variance_multiplier:
        How many standard deviations above the baseline a sample must rise
        to count as a pulse when the signal is noisy (default 1.5).
    min_pulse_interval_ms:
        Debounce window; a second crossing within this many milliseconds of
        the previous pulse is ignored (default 200).
    """

    def __init__(
        self,
        alpha: float = EMA_ALPHA,
        min_delta: float = MIN_BRIGHTNESS_DELTA,
        variance_multiplier: float = VARIANCE_MULTIPLIER,
        min_pulse_interval_ms: int = MIN_PULSE_INTERVAL_MS,
    ) -> None:
        self.alpha = alpha
        self.min_delta = min_delta
        self.variance_multiplier = variance_multiplier
        self.min_pulse_interval_ms = min_pulse_interval_ms

        self._state = DetectorState()
        self._last_threshold: Optional[float] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def observe(self, timestamp_millis: int, brightness: float) -> bool:
        """
        Feed one sample; return *True* if it registered a new pulse.

        Raises
        ------
        ValidationError
            If *brightness* is NaN or infinite.  State is left untouched.
        """
        if not math.isfinite(brightness):
            raise ValidationError(f"Brightness must be finite, got {brightness!r}")

        state = self._state
        if state.ema_brightness is None:
            state.ema_brightness = brightness
            state.ema_variance = 0.0
            return False

        delta = brightness - state.ema_brightness
        state.ema_brightness += self.alpha * delta
        state.ema_variance = (1 - self.alpha) * state.ema_variance + self.alpha * delta * delta

        threshold = max(
            self.min_delta,
            math.sqrt(max(state.ema_variance, 0.0)) * self.variance_multiplier,
        )
        self._last_threshold = threshold

        if delta > threshold and timestamp_millis - state.last_pulse_timestamp > self.min_pulse_interval_ms:
            state.last_pulse_timestamp = timestamp_millis
            state.pulse_count += 1
            logger.debug(
                "Pulse #%d at %d ms (delta=%.1f threshold=%.1f)",
                state.pulse_count, timestamp_millis, delta, threshold,
            )
            return True
        return False

    def reset(self) -> None:
        """Forget the baseline, variance and pulse count."""
        self._state = DetectorState()
        self._last_threshold = None

    @property
    def pulse_count(self) -> int:
        return self._state.pulse_count

    @property
    def baseline(self) -> Optional[float]:
        """Current EMA baseline, or *None* before the first sample."""
        return self._state.ema_brightness

    @property
    def threshold(self) -> Optional[float]:
        """Threshold used for the latest sample, or *None* if none was judged."""
        return self._last_threshold

    @property
    def state(self) -> DetectorState:
        """Copy of the internal state."""
        return replace(self._state)
