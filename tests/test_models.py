"""
Unit tests for the value types.
Run with:  pytest tests/
"""

from __future__ import annotations

import dataclasses

import numpy as np
import pytest

from meter_monitor.errors import ConfigError, DecodeError
from meter_monitor.models import (
    ROI_MAX_SIZE,
    ROI_MIN_SIZE,
    DecodedImage,
    MeasurementRecord,
    MeasurementStats,
    NormalizedRoi,
)


class TestNormalizedRoi:

    def test_default_is_centred(self):
        roi = NormalizedRoi.default()
        assert (roi.center_x, roi.center_y, roi.width, roi.height) == (0.5, 0.5, 0.25, 0.25)

    def test_region_outside_frame_rejected(self):
        with pytest.raises(ConfigError):
            NormalizedRoi(center_x=0.05, center_y=0.5, width=0.25, height=0.25)
        with pytest.raises(ConfigError):
            NormalizedRoi(center_x=0.5, center_y=0.95, width=0.25, height=0.25)

    def test_out_of_range_values_rejected(self):
        with pytest.raises(ConfigError):
            NormalizedRoi(center_x=0.5, center_y=0.5, width=1.5, height=0.2)
        with pytest.raises(ConfigError):
            NormalizedRoi(center_x=float("nan"), center_y=0.5, width=0.2, height=0.2)

    def test_is_immutable(self):
        roi = NormalizedRoi.default()
        with pytest.raises(dataclasses.FrozenInstanceError):
            roi.width = 0.5

    def test_resize_pulls_centre_inside(self):
        roi = NormalizedRoi(center_x=0.9, center_y=0.5, width=0.1, height=0.1)
        bigger = roi.resized(width=0.5)
        assert bigger.width == 0.5
        assert bigger.center_x == pytest.approx(0.75)
        assert roi.width == 0.1

    def test_resize_clamps_size(self):
        roi = NormalizedRoi.default().resized(width=0.95, height=0.01)
        assert roi.width == ROI_MAX_SIZE
        assert roi.height == ROI_MIN_SIZE

    def test_move_clamps_centre(self):
        roi = NormalizedRoi.default().moved(0.0, 1.0)
        assert roi.center_x == pytest.approx(0.125)
        assert roi.center_y == pytest.approx(0.875)

    def test_parse(self):
        roi = NormalizedRoi.parse("0.4, 0.6, 0.2, 0.1")
        assert roi == NormalizedRoi(center_x=0.4, center_y=0.6, width=0.2, height=0.1)

    @pytest.mark.parametrize("text", ["0.5,0.5,0.2", "a,b,c,d", "0.5,0.5,0.2,0.2,0.1"])
    def test_parse_rejects_malformed(self, text):
        with pytest.raises(ConfigError):
            NormalizedRoi.parse(text)


class TestDecodedImage:

    def test_buffer_size_must_match(self):
        with pytest.raises(DecodeError):
            DecodedImage(width=4, height=4, data=np.zeros(10, dtype=np.uint8))

    def test_pixels_shape(self):
        image = DecodedImage(width=3, height=2, data=np.zeros(24, dtype=np.uint8))
        assert image.pixels().shape == (2, 3, 4)


class TestMeasurementRecord:

    def test_from_stats_requires_pulses_and_duration(self):
        assert MeasurementRecord.from_stats(MeasurementStats(0, 10.0, None, 1000), 3200) is None
        assert MeasurementRecord.from_stats(MeasurementStats(3, 0.0, None, 1000), 3200) is None
        assert MeasurementRecord.from_stats(MeasurementStats.empty(), 3200) is None

    def test_from_stats_copies_fields(self):
        stats = MeasurementStats(pulses=10, duration_seconds=10.0, power_watts=112.5, started_at_millis=5000)
        record = MeasurementRecord.from_stats(stats, 3200)
        assert record == MeasurementRecord(
            timestamp_millis=5000,
            meter_constant=3200,
            pulses=10,
            duration_seconds=10.0,
            power_watts=112.5,
        )
        assert record.id is None
