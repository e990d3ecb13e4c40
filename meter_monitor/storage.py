"""SQLite-backed history of completed measurements."""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import replace
from pathlib import Path

from meter_monitor.errors import StorageError
from meter_monitor.models import MeasurementRecord

logger = logging.getLogger(__name__)

DEFAULT_DB_NAME = "meter.db"
TABLE_NAME = "measurements"


class MeasurementStore:
    """Persist and list :class:`MeasurementRecord` rows."""

    def __init__(self, db_path: Path | str = DEFAULT_DB_NAME) -> None:
        if str(db_path) != ":memory:":
            db_path = Path(db_path).expanduser()
            db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._initialize_db()
        except sqlite3.Error as exc:
            raise StorageError("open", exc) from exc
        logger.debug("Measurement store opened at %s", self._db_path)

    @property
    def db_path(self) -> Path | str:
        return self._db_path

    def _initialize_db(self) -> None:
        self._conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp INTEGER NOT NULL,
                meter_constant REAL NOT NULL,
                pulses INTEGER NOT NULL,
                duration_seconds REAL NOT NULL,
                power_watts REAL
            )
            """
        )
        self._conn.commit()

    def insert(self, record: MeasurementRecord) -> int:
        """Store *record* and return its new id."""
        with self._lock:
            try:
                cursor = self._conn.execute(
                    f"""
                    INSERT INTO {TABLE_NAME}
                        (timestamp, meter_constant, pulses, duration_seconds, power_watts)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        record.timestamp_millis,
                        record.meter_constant,
                        record.pulses,
                        record.duration_seconds,
                        record.power_watts,
                    ),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                raise StorageError("insert", exc) from exc
        record_id = int(cursor.lastrowid)
        logger.info("Saved measurement #%d (%d pulses)", record_id, record.pulses)
        return record_id

    def save(self, record: MeasurementRecord) -> MeasurementRecord:
        """Insert *record* and return a copy carrying its assigned id."""
        return replace(record, id=self.insert(record))

    def list_measurements(self) -> list[MeasurementRecord]:
        """Return all records, newest first."""
        with self._lock:
            try:
                rows = self._conn.execute(
                    f"""
                    SELECT id, timestamp, meter_constant, pulses, duration_seconds, power_watts
                    FROM {TABLE_NAME}
                    ORDER BY timestamp DESC, id DESC
                    """
                ).fetchall()
            except sqlite3.Error as exc:
                raise StorageError("list", exc) from exc
        return [
            MeasurementRecord(
                id=int(row_id),
                timestamp_millis=int(timestamp),
                meter_constant=float(meter_constant),
                pulses=int(pulses),
                duration_seconds=float(duration),
                power_watts=None if power is None else float(power),
            )
            for row_id, timestamp, meter_constant, pulses, duration, power in rows
        ]

    def clear(self) -> int:
        """Delete every record; return how many were removed."""
        with self._lock:
            try:
                cursor = self._conn.execute(f"DELETE FROM {TABLE_NAME}")
                self._conn.commit()
            except sqlite3.Error as exc:
                raise StorageError("clear", exc) from exc
        return cursor.rowcount

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> "MeasurementStore":
        return self

    def __exit__(self, *_) -> None:
        self.close()
