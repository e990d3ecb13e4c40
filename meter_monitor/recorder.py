"""
Periodic sampling loop tying camera, extractor, session and storage together.

Every ``sample_interval_ms`` a frame is captured, the ROI brightness is
extracted and fed to the :class:`MeasurementSession`.  On stop, a
measurement with at least one pulse and a positive duration is saved to
the :class:`MeasurementStore`.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple

from meter_monitor.brightness import compute_roi_brightness
from meter_monitor.errors import MeterError, StateError, StorageError
from meter_monitor.models import MeasurementRecord, MeasurementStats, NormalizedRoi
from meter_monitor.session import MeasurementSession
from meter_monitor.storage import MeasurementStore

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_INTERVAL_MS = 250


def now_millis() -> int:
    """Return current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class MeterRecorder:
    """
    Drive a measurement session from a frame source.

    Parameters
    ----------
    camera:
        Any object with ``read_image() -> DecodedImage | None``, typically an
        opened :class:`~meter_monitor.camera.MeterCamera`.
    roi:
        Region of the frame covering the meter's LED.
    meter_constant:
        Meter pulses per kWh (printed on the meter, e.g. 3200 imp/kWh).
    store:
        Optional history store; finished measurements are saved to it.
    sample_interval_ms:
        Target spacing between captures (default 250 ms).
    clock:
        Wall clock in epoch milliseconds; read once, when a measurement starts.
    monotonic_ns:
        Monotonic clock in nanoseconds; all sample timestamps are derived
        from it, so they never run backwards when the wall clock is adjusted.
    sleep:
        Replaceable for testing.
    """

    def __init__(
        self,
        camera,
        roi: NormalizedRoi,
        meter_constant: float,
        store: Optional[MeasurementStore] = None,
        sample_interval_ms: int = DEFAULT_SAMPLE_INTERVAL_MS,
        clock: Callable[[], int] = now_millis,
        monotonic_ns: Callable[[], int] = time.monotonic_ns,
        sleep: Callable[[float], None] = time.sleep,
        session: Optional[MeasurementSession] = None,
    ) -> None:
        self.camera = camera
        self.meter_constant = meter_constant
        self.store = store
        self.sample_interval_ms = sample_interval_ms
        self._roi = roi
        self._clock = clock
        self._monotonic_ns = monotonic_ns
        self._started_wall: Optional[int] = None
        self._started_mono: Optional[int] = None
        self._sleep = sleep
        self.session = session if session is not None else MeasurementSession()
        self.error: Optional[str] = None
        self._last_record: Optional[MeasurementRecord] = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def roi(self) -> NormalizedRoi:
        return self._roi

    def set_roi(self, roi: NormalizedRoi) -> None:
        """Replace the ROI; only allowed between measurements."""
        if self.session.is_measuring:
            raise StateError("ROI is locked while measuring")
        self._roi = roi

    @property
    def is_measuring(self) -> bool:
        return self.session.is_measuring

    @property
    def stats(self) -> MeasurementStats:
        return self.session.stats

    @property
    def last_brightness(self) -> Optional[float]:
        return self.session.last_brightness

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start a new measurement at the current clock time."""
        started_wall = self._clock()
        started_mono = self._monotonic_ns()
        self.session.start(started_wall, self.meter_constant)
        self._started_wall = started_wall
        self._started_mono = started_mono
        self.error = None
        self._last_record = None

    def capture_once(self) -> MeasurementStats:
        """
        Capture one frame and feed its ROI brightness to the session.

        A dropped frame is skipped.  If the camera raises, the measurement
        is stopped (without saving), :attr:`error` is set and the exception
        propagates.
        """
        if not self.session.is_measuring:
            raise StateError("Cannot capture: no measurement in progress")
        try:
            image = self.camera.read_image()
        except Exception as exc:  # noqa: BLE001
            logger.error("Frame capture failed: %s", exc)
            self.error = f"Frame capture failed: {exc}"
            self.session.stop(self._now())
            raise

        if image is None:
            logger.debug("No frame available – skipping sample.")
            return self.session.stats

        brightness = compute_roi_brightness(image, self._roi)
        return self.session.sample(self._now(), brightness)

    def stop(self) -> Tuple[Optional[MeasurementStats], Optional[MeasurementRecord]]:
        """
        Stop the measurement and save it if it qualifies.

        Returns ``(final_stats, saved_record)``.  Calling it again returns
        the same pair without saving twice.  A :class:`StorageError` is
        re-raised after the session has been finalised.
        """
        if not self.session.is_measuring:
            return self.session.stop(self._now()), self._last_record

        final = self.session.stop(self._now())
        record = self.session.to_record()
        if record is not None and self.store is not None:
            try:
                record = self.store.save(record)
            except StorageError as exc:
                logger.error("Failed to save measurement: %s", exc)
                self.error = str(exc)
                raise
        self._last_record = record
        return final, record

    def run(
        self,
        duration_seconds: Optional[float] = None,
        on_stats: Optional[Callable[[MeasurementStats], None]] = None,
    ) -> Tuple[Optional[MeasurementStats], Optional[MeasurementRecord]]:
        """
        Sample until *duration_seconds* elapse (forever if *None*) or the
        user interrupts, then stop and return :meth:`stop`'s result.
        A sample rejected by the session ends the loop early; the
        measurement gathered so far is still finalised and saved.
        """
        if not self.session.is_measuring:
            self.start()
        started = self._now()
        deadline = None if duration_seconds is None else started + int(duration_seconds * 1000)

        try:
            while True:
                tick = self._now()
                stats = self.capture_once()
                if on_stats is not None:
                    on_stats(stats)
                now = self._now()
                if deadline is not None and now >= deadline:
                    break
                wait_ms = tick + self.sample_interval_ms - now
                if wait_ms > 0:
                    self._sleep(wait_ms / 1000)
        except KeyboardInterrupt:
            logger.info("Interrupted.")
        except MeterError as exc:
            logger.error("Sampling aborted: %s", exc)
            self.error = f"Sampling aborted: {exc}"

        return self.stop()

    def _now(self) -> int:
        """Epoch milliseconds for the running measurement, monotonic within it."""
        if self._started_mono is None:
            return self._clock()
        elapsed_ms = (self._monotonic_ns() - self._started_mono) // 1_000_000
        return self._started_wall + elapsed_ms
