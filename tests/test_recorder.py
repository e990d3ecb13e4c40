"""
Unit tests for the MeterRecorder sampling loop (no camera hardware needed).
Run with:  pytest tests/
"""

from __future__ import annotations

import numpy as np
import pytest

from meter_monitor.errors import StateError, StorageError, ValidationError
from meter_monitor.models import DecodedImage, NormalizedRoi
from meter_monitor.recorder import MeterRecorder
from meter_monitor.session import MeasurementSession
from meter_monitor.storage import MeasurementStore

T0 = 1_700_000_000_000


def _grey(value: int) -> DecodedImage:
    data = np.zeros((16, 16, 4), dtype=np.uint8)
    data[:, :] = (value, value, value, 255)
    return DecodedImage(width=16, height=16, data=data)


class FakeClock:
    def __init__(self, start: int = T0) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def monotonic_ns(self) -> int:
        return self.now * 1_000_000

    def sleep(self, seconds: float) -> None:
        self.now += int(round(seconds * 1000))


class FakeCamera:
    """Returns a scripted sequence of frames; ``None`` entries are dropped frames."""

    def __init__(self, frames, error: Exception | None = None) -> None:
        self.frames = list(frames)
        self.error = error
        self.reads = 0

    def read_image(self):
        self.reads += 1
        if self.error is not None:
            raise self.error
        if not self.frames:
            return _grey(50)
        return self.frames.pop(0)


class FailingStore:
    def save(self, record):
        raise StorageError("insert", RuntimeError("disk full"))


def _flash_sequence(count: int, flashes: tuple[int, ...]) -> list[DecodedImage]:
    return [_grey(150) if i in flashes else _grey(50) for i in range(count)]


class TestMeterRecorder:

    def _recorder(self, camera, clock, store=None, **kwargs) -> MeterRecorder:
        return MeterRecorder(
            camera,
            roi=NormalizedRoi.default(),
            meter_constant=3200,
            store=store,
            clock=clock,
            monotonic_ns=clock.monotonic_ns,
            sleep=clock.sleep,
            **kwargs,
        )

    def test_run_counts_pulses_and_saves(self):
        clock = FakeClock()
        camera = FakeCamera(_flash_sequence(21, flashes=(5, 15)))
        seen = []
        with MeasurementStore(":memory:") as store:
            recorder = self._recorder(camera, clock, store=store)
            final, record = recorder.run(duration_seconds=5, on_stats=seen.append)
            saved = store.list_measurements()

        assert camera.reads == 21
        assert len(seen) == 21
        assert final.pulses == 2
        assert final.duration_seconds == pytest.approx(5.0)
        assert final.power_watts == pytest.approx(2 * 3_600_000 / (3200 * 5.0))
        assert record.id == 1
        assert saved == [record]
        assert recorder.is_measuring is False

    def test_capture_uses_roi_brightness(self):
        clock = FakeClock()
        recorder = self._recorder(FakeCamera([_grey(80)]), clock)
        recorder.start()
        clock.now += 250
        stats = recorder.capture_once()
        assert recorder.last_brightness == pytest.approx(80.0)
        assert stats.duration_seconds == pytest.approx(0.25)

    def test_dropped_frame_is_skipped(self):
        clock = FakeClock()
        recorder = self._recorder(FakeCamera([None]), clock)
        recorder.start()
        clock.now += 250
        stats = recorder.capture_once()
        assert recorder.last_brightness is None
        assert stats.duration_seconds == 0.0

    def test_capture_requires_running_measurement(self):
        recorder = self._recorder(FakeCamera([]), FakeClock())
        with pytest.raises(StateError):
            recorder.capture_once()

    def test_camera_failure_stops_without_saving(self):
        clock = FakeClock()
        with MeasurementStore(":memory:") as store:
            recorder = self._recorder(FakeCamera([], error=RuntimeError("camera gone")), clock, store=store)
            recorder.start()
            with pytest.raises(RuntimeError):
                recorder.capture_once()
            assert recorder.is_measuring is False
            assert "camera gone" in recorder.error
            assert store.list_measurements() == []

    def test_short_measurement_not_saved(self):
        clock = FakeClock()
        with MeasurementStore(":memory:") as store:
            recorder = self._recorder(FakeCamera([]), clock, store=store)
            final, record = recorder.run(duration_seconds=1)
            assert final.pulses == 0
            assert final.power_watts is None
            assert record is None
            assert store.list_measurements() == []

    def test_stop_twice_saves_once(self):
        clock = FakeClock()
        with MeasurementStore(":memory:") as store:
            recorder = self._recorder(FakeCamera(_flash_sequence(21, flashes=(5,))), clock, store=store)
            first = recorder.run(duration_seconds=5)
            second = recorder.stop()
            assert second == first
            assert len(store.list_measurements()) == 1

    def test_storage_failure_after_session_finalised(self):
        clock = FakeClock()
        recorder = self._recorder(FakeCamera(_flash_sequence(21, flashes=(5,))), clock, store=FailingStore())
        with pytest.raises(StorageError):
            recorder.run(duration_seconds=5)
        assert recorder.is_measuring is False
        assert recorder.stats.pulses == 1
        assert "disk full" in recorder.error

    def test_roi_locked_while_measuring(self):
        clock = FakeClock()
        recorder = self._recorder(FakeCamera([]), clock)
        new_roi = NormalizedRoi.default().moved(0.3, 0.3)
        recorder.start()
        with pytest.raises(StateError):
            recorder.set_roi(new_roi)
        recorder.stop()
        recorder.set_roi(new_roi)
        assert recorder.roi == new_roi

    def test_start_twice_rejected(self):
        recorder = self._recorder(FakeCamera([]), FakeClock())
        recorder.start()
        with pytest.raises(StateError):
            recorder.start()

    def test_interrupt_finishes_measurement(self):
        clock = FakeClock()

        class InterruptingCamera(FakeCamera):
            def read_image(self):
                if self.reads == 10:
                    raise KeyboardInterrupt
                return super().read_image()

        recorder = self._recorder(InterruptingCamera(_flash_sequence(10, flashes=(5,))), clock)
        final, _ = recorder.run()
        assert recorder.is_measuring is False
        assert final.pulses == 1

    def test_wall_clock_stepping_back_does_not_break_measurement(self):
        class SteppingClock(FakeClock):
            """Wall clock that jumps back a minute after its first reading."""

            def __init__(self) -> None:
                super().__init__()
                self.wall_reads = 0

            def __call__(self) -> int:
                self.wall_reads += 1
                return self.now if self.wall_reads == 1 else self.now - 60_000

        clock = SteppingClock()
        camera = FakeCamera(_flash_sequence(21, flashes=(5, 15)))
        with MeasurementStore(":memory:") as store:
            recorder = self._recorder(camera, clock, store=store)
            final, record = recorder.run(duration_seconds=5)
            saved = store.list_measurements()

        assert clock.wall_reads == 1
        assert final.pulses == 2
        assert final.duration_seconds == pytest.approx(5.0)
        assert record.timestamp_millis == T0
        assert saved == [record]
        assert recorder.error is None

    def test_rejected_sample_finalises_and_saves(self):
        class RejectingSession(MeasurementSession):
            def __init__(self) -> None:
                super().__init__()
                self.samples = 0

            def sample(self, timestamp_millis, brightness):
                self.samples += 1
                if self.samples == 12:
                    raise ValidationError("sample rejected")
                return super().sample(timestamp_millis, brightness)

        clock = FakeClock()
        camera = FakeCamera(_flash_sequence(21, flashes=(5,)))
        with MeasurementStore(":memory:") as store:
            recorder = self._recorder(camera, clock, store=store, session=RejectingSession())
            final, record = recorder.run(duration_seconds=5)
            saved = store.list_measurements()

        assert recorder.is_measuring is False
        assert "sample rejected" in recorder.error
        assert final.pulses == 1
        assert final.duration_seconds == pytest.approx(2.75)
        assert saved == [record]
