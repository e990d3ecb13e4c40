"""
Bounded-duration measurement session.

A session is either *idle* or *measuring*::

    idle --start--> measuring --stop--> idle
                    (sample loops on measuring)

Each start creates a fresh :class:`PulseDetector`; stop finalises the
statistics and discards the detector so no baseline leaks into the next run.
"""

from __future__ import annotations

import logging
import math
import numbers
from typing import Optional

from meter_monitor.errors import ConfigError, StateError, ValidationError
from meter_monitor.models import MeasurementRecord, MeasurementStats
from meter_monitor.pulse_detector import PulseDetector

logger = logging.getLogger(__name__)

JOULES_PER_KWH = 3_600_000


def compute_power(pulses: int, duration_seconds: float, meter_constant: float) -> Optional[float]:
    """
    Average power in watts for *pulses* counted over *duration_seconds*.

    ``meter_constant`` is the meter's pulses per kWh, so one pulse is
    ``3_600_000 / meter_constant`` joules.  Returns *None* (unknown, not zero)
    when any input is non-positive.
    """
    if pulses <= 0 or duration_seconds <= 0 or meter_constant <= 0:
        return None
    return (pulses * JOULES_PER_KWH) / (meter_constant * duration_seconds)


class MeasurementSession:
    """
    Owns one pulse detector for the lifetime of a measurement.

    Parameters
    ----------
    detector_factory:
        Callable returning a new :class:`PulseDetector`; invoked on every
        :meth:`start`.  Override to tune detector parameters.

    Calls must be serialised by the caller: one sampling loop per session.
    """

    def __init__(self, detector_factory=PulseDetector) -> None:
        self._detector_factory = detector_factory
        self._detector: Optional[PulseDetector] = None
        self._meter_constant: Optional[float] = None
        self._started_at: Optional[int] = None
        self._last_timestamp: Optional[int] = None
        self._last_brightness: Optional[float] = None
        self._stats = MeasurementStats.empty()
        self._final: Optional[MeasurementStats] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, start_timestamp_millis: int, meter_constant: float) -> None:
        """
        Begin measuring.

        Raises
        ------
        StateError
            If a measurement is already running.
        ConfigError
            If *meter_constant* is not a finite positive number.
        """
        if self.is_measuring:
            raise StateError("Measurement already in progress")
        if not _is_valid_constant(meter_constant):
            raise ConfigError(f"Meter constant must be a finite positive number, got {meter_constant!r}")

        self._detector = self._detector_factory()
        self._meter_constant = float(meter_constant)
        self._started_at = start_timestamp_millis
        self._last_timestamp = start_timestamp_millis
        self._last_brightness = None
        self._final = None
        self._stats = MeasurementStats(
            pulses=0,
            duration_seconds=0.0,
            power_watts=None,
            started_at_millis=start_timestamp_millis,
        )
        logger.info("Measurement started – meter_constant=%g imp/kWh", self._meter_constant)

    def sample(self, timestamp_millis: int, brightness: float) -> MeasurementStats:
        """
        Feed one brightness sample and return the updated statistics.

        Raises
        ------
        StateError
            If the session is idle.
        ValidationError
            If the timestamp goes backwards or the brightness is not finite.
            The session is left unchanged.
        """
        if self._detector is None:
            raise StateError("Cannot sample: no measurement in progress")
        if timestamp_millis < self._last_timestamp:
            raise ValidationError(
                f"Sample timestamp {timestamp_millis} precedes previous sample {self._last_timestamp}"
            )

        self._detector.observe(timestamp_millis, brightness)
        self._last_timestamp = timestamp_millis
        self._last_brightness = brightness
        self._stats = self._snapshot(timestamp_millis)
        return self._stats

    def stop(self, stop_timestamp_millis: int) -> Optional[MeasurementStats]:
        """
        Finish the measurement and return the final statistics.

        Stopping an idle session changes nothing and returns the previous
        final snapshot (*None* if the session never ran).  A stop timestamp
        earlier than the latest sample is clamped to that sample.
        """
        if self._detector is None:
            return self._final

        if stop_timestamp_millis < self._last_timestamp:
            logger.warning(
                "Stop timestamp %d precedes last sample %d – clamping.",
                stop_timestamp_millis, self._last_timestamp,
            )
            stop_timestamp_millis = self._last_timestamp

        final = self._snapshot(stop_timestamp_millis)
        self._stats = final
        self._final = final
        self._detector = None
        logger.info(
            "Measurement stopped – pulses=%d duration=%.1fs power=%s",
            final.pulses, final.duration_seconds,
            "n/a" if final.power_watts is None else f"{final.power_watts:.1f} W",
        )
        return final

    # ------------------------------------------------------------------
    # Derived data
    # ------------------------------------------------------------------

    def to_record(self) -> Optional[MeasurementRecord]:
        """Record for the last finished measurement, if it is worth keeping."""
        if self._final is None or self._meter_constant is None:
            return None
        return MeasurementRecord.from_stats(self._final, self._meter_constant)

    @property
    def is_measuring(self) -> bool:
        return self._detector is not None

    @property
    def stats(self) -> MeasurementStats:
        return self._stats

    @property
    def meter_constant(self) -> Optional[float]:
        return self._meter_constant

    @property
    def last_brightness(self) -> Optional[float]:
        return self._last_brightness

    @property
    def detector(self) -> Optional[PulseDetector]:
        return self._detector

    def _snapshot(self, timestamp_millis: int) -> MeasurementStats:
        pulses = self._detector.pulse_count
        duration = (timestamp_millis - self._started_at) / 1000
        return MeasurementStats(
            pulses=pulses,
            duration_seconds=duration,
            power_watts=compute_power(pulses, duration, self._meter_constant),
            started_at_millis=self._started_at,
        )


def _is_valid_constant(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return False
    return math.isfinite(value) and value > 0
