#!/usr/bin/env python3
"""
Meter Monitor – main entry point.

Usage
-----
    python main.py [OPTIONS]

Options
-------
    --meter-constant N   Meter pulses per kWh (default: 3200)
    --roi CX,CY,W,H      Normalised ROI around the LED (default: 0.5,0.5,0.25,0.25)
    --interval-ms MS     Sampling interval (default: 250)
    --duration S         Stop automatically after S seconds (default: until Ctrl-C)
    --resolution WxH     Camera resolution (default: 640x480)
    --camera-index INT   OpenCV camera index (default: 0)
    --db PATH            Measurement history database (default: meter.db)
    --history            List saved measurements and exit
    --clear-history      Delete saved measurements and exit
    --debug              Verbose logging (every detected pulse)

Press Ctrl-C to finish a measurement; it is saved when at least one pulse
was counted.
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

from meter_monitor.camera import MeterCamera
from meter_monitor.errors import MeterError
from meter_monitor.formatting import format_duration, format_power
from meter_monitor.models import MeasurementRecord, MeasurementStats, NormalizedRoi
from meter_monitor.recorder import DEFAULT_SAMPLE_INTERVAL_MS, MeterRecorder
from meter_monitor.storage import DEFAULT_DB_NAME, MeasurementStore

logger = logging.getLogger("meter_monitor")


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Electricity meter power estimate from LED pulses seen by a camera",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--meter-constant", type=float, default=3200.0,
                        help="Meter constant in pulses per kWh")
    parser.add_argument("--roi", default="0.5,0.5,0.25,0.25",
                        help="Normalised region around the LED: cx,cy,w,h")
    parser.add_argument("--interval-ms", type=int, default=DEFAULT_SAMPLE_INTERVAL_MS,
                        help="Sampling interval in milliseconds")
    parser.add_argument("--duration", type=float, default=None,
                        help="Measurement length in seconds (default: until Ctrl-C)")
    parser.add_argument("--resolution", default="640x480",
                        help="Camera resolution, e.g. 640x480")
    parser.add_argument("--camera-index", type=int, default=0,
                        help="OpenCV VideoCapture index")
    parser.add_argument("--db", type=Path, default=Path(DEFAULT_DB_NAME),
                        help="SQLite file holding measurement history")
    parser.add_argument("--history", action="store_true",
                        help="List saved measurements and exit")
    parser.add_argument("--clear-history", action="store_true",
                        help="Delete all saved measurements and exit")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")
    return parser.parse_args(argv)


def setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
        datefmt="%H:%M:%S",
    )


def describe_record(record: MeasurementRecord) -> str:
    started = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(record.timestamp_millis / 1000))
    return (
        f"#{record.id}  {started}  {format_power(record.power_watts):>10}  "
        f"{record.pulses} pulses / {format_duration(record.duration_seconds)}  "
        f"@ {record.meter_constant:g} imp/kWh"
    )


def describe_stats(stats: MeasurementStats) -> str:
    return (
        f"pulses={stats.pulses}  duration={format_duration(stats.duration_seconds)}  "
        f"power={format_power(stats.power_watts)}"
    )


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def show_history(store: MeasurementStore) -> int:
    records = store.list_measurements()
    if not records:
        print("No saved measurements.")
        return 0
    for record in records:
        print(describe_record(record))
    return 0


def measure(args: argparse.Namespace, store: MeasurementStore) -> int:
    try:
        res_w, res_h = (int(v) for v in args.resolution.lower().split("x"))
    except ValueError:
        logger.error("Invalid --resolution format.  Use WxH, e.g. 640x480.")
        return 1

    roi = NormalizedRoi.parse(args.roi)
    camera = MeterCamera(resolution=(res_w, res_h), camera_index=args.camera_index)

    last_log = 0

    def log_stats(stats: MeasurementStats) -> None:
        nonlocal last_log
        now = time.monotonic()
        if now - last_log >= 1.0:
            logger.info("%s  brightness=%.1f", describe_stats(stats), recorder.last_brightness or 0.0)
            last_log = now

    with camera:
        recorder = MeterRecorder(
            camera,
            roi=roi,
            meter_constant=args.meter_constant,
            store=store,
            sample_interval_ms=args.interval_ms,
        )
        recorder.start()
        logger.info("Measuring.  Press Ctrl-C to finish.")
        final, record = recorder.run(duration_seconds=args.duration, on_stats=log_stats)

    if final is None:
        return 0
    print(f"Result: {describe_stats(final)}")
    if record is not None:
        print(f"Saved: {describe_record(record)}")
    else:
        print("Not saved (no pulses counted).")
    return 0


def run(args: argparse.Namespace) -> int:
    setup_logging(args.debug)
    try:
        with MeasurementStore(args.db) as store:
            if args.clear_history:
                removed = store.clear()
                print(f"Deleted {removed} measurement(s).")
                return 0
            if args.history:
                return show_history(store)
            return measure(args, store)
    except MeterError as exc:
        logger.error("%s", exc)
        return 1
    except RuntimeError as exc:
        logger.error("Camera error: %s", exc)
        return 1


def cli() -> None:
    sys.exit(run(parse_args()))


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
