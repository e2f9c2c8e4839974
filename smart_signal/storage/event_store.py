"""
event_store.py - Durable history of ingestions, phase changes and presence.

The controller core knows nothing about this module.  ``SmartSignalApp``
writes each ingestion and each ticked transition batch after the controller
call has returned; a failing write raises :class:`EventStoreError`, which the
app logs and reports without touching the phase state machine.

Schema
──────

    traffic_events   one row per sensor ingestion (raw readings + snapshot)
    phase_changes    one row per committed PhaseChangeRecord
    presence_events  one row per closed PresenceRecord

Timestamps arrive as epoch milliseconds and are stored as ISO-8601 strings
in the intersection's local timezone (resolved with :mod:`pytz`), next to
the raw millisecond value for arithmetic.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pytz

from ..core.data_models import IngestResult, LanePhase, PhaseChangeRecord, PresenceRecord

log = logging.getLogger(__name__)


class EventStoreError(RuntimeError):
    """Raised when the event store cannot complete a read or write.

    Args:
        message: Human-readable description of the failure.
        cause: The original exception, if any.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


def _resolve_pytz(tz_name: str) -> pytz.BaseTzInfo:
    """Resolve an IANA timezone name, falling back to UTC with a warning."""
    try:
        return pytz.timezone(tz_name)
    except pytz.exceptions.UnknownTimeZoneError:
        log.warning("Unknown timezone, falling back to UTC", extra={"timezone": tz_name})
        return pytz.utc


class SqliteEventStore:
    """Persist controller output to a SQLite database.

    Args:
        db_path: Path to the SQLite database file.  Pass ``":memory:"`` for
            ephemeral in-process use (useful in tests).
        timezone: IANA timezone name used for the ISO timestamps.

    Raises:
        EventStoreError: If the database cannot be opened.

    Example::

        store = SqliteEventStore("/var/db/smart_signal.db", "America/Bogota")
        store.persist_phase_changes(records, intersection_id="main")
    """

    _DDL = """
        CREATE TABLE IF NOT EXISTS traffic_events (
            id              TEXT PRIMARY KEY,
            device_id       TEXT NOT NULL,
            intersection_id TEXT NOT NULL,
            sensors         TEXT NOT NULL,
            state_snapshot  TEXT NOT NULL,
            evaluation      TEXT NOT NULL,
            ip              TEXT,
            received_at     TEXT NOT NULL
        );
        CREATE TABLE IF NOT EXISTS phase_changes (
            id              INTEGER PRIMARY KEY AUTOINCREMENT,
            intersection_id TEXT NOT NULL,
            lane_key        TEXT NOT NULL,
            previous_state  TEXT NOT NULL,
            next_state      TEXT NOT NULL,
            started_at      TEXT NOT NULL,
            ended_at        TEXT NOT NULL,
            ended_at_ms     REAL NOT NULL,
            duration_ms     REAL NOT NULL,
            reason          TEXT,
            device_id       TEXT
        );
        CREATE TABLE IF NOT EXISTS presence_events (
            id               INTEGER PRIMARY KEY AUTOINCREMENT,
            intersection_id  TEXT NOT NULL,
            lane_key         TEXT NOT NULL,
            device_id        TEXT,
            detected_at      TEXT NOT NULL,
            detected_at_ms   REAL NOT NULL,
            cleared_at       TEXT,
            wait_ms          REAL NOT NULL,
            triggered_change INTEGER NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_phase_changes_lane
            ON phase_changes (intersection_id, lane_key);
        CREATE INDEX IF NOT EXISTS idx_presence_events_lane
            ON presence_events (intersection_id, lane_key);
    """

    def __init__(self, db_path: str | Path = "smart_signal.db", timezone: str = "UTC") -> None:
        self._db_path = str(db_path)
        self._tz = _resolve_pytz(timezone)
        self._lock = threading.Lock()
        try:
            # Written from the controller's emitting thread and read from
            # Flask request threads; every access goes through self._lock.
            self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(self._DDL)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise EventStoreError(
                f"Cannot open SQLite database '{self._db_path}': {exc}", cause=exc
            ) from exc

        log.info("SQLite event store ready", extra={"db_path": self._db_path, "timezone": str(self._tz)})

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def to_iso(self, epoch_ms: Optional[float]) -> Optional[str]:
        """Render epoch milliseconds as ISO-8601 in the store's timezone."""
        if epoch_ms is None:
            return None
        return datetime.fromtimestamp(epoch_ms / 1000.0, tz=pytz.utc).astimezone(self._tz).isoformat()

    def _write(self, sql: str, rows: List[tuple], what: str) -> int:
        with self._lock:
            try:
                self._conn.executemany(sql, rows)
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise EventStoreError(f"Failed to store {what}: {exc}", cause=exc) from exc
        return len(rows)

    def _query(self, sql: str, params: Iterable[Any], what: str) -> List[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, tuple(params)).fetchall()
            except sqlite3.Error as exc:
                raise EventStoreError(f"Database error querying {what}: {exc}", cause=exc) from exc

    @staticmethod
    def _intersection_filter(intersection_id: Optional[str], params: List[Any]) -> str:
        if not intersection_id:
            return ""
        params.append(intersection_id)
        return " AND intersection_id = ?"

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def persist_traffic_event(self, event_id: str, result: IngestResult, sensors: Dict[str, Any],
                              ip: Optional[str] = None, received_at: Optional[float] = None) -> int:
        """Store one ingestion with its raw readings and resulting snapshot.

        Args:
            event_id: Unique id for the ingestion (e.g. a UUID4 string).
            result: The controller's :class:`IngestResult`.
            sensors: Raw readings exactly as received.
            ip: Remote address of the reporting device, if known.
            received_at: Reception time in epoch ms (defaults to processing time).

        Returns:
            Number of rows written.

        Raises:
            EventStoreError: On database errors.
        """
        row = (
            event_id,
            result.device_id,
            result.intersection_id,
            json.dumps(sensors, default=str),
            json.dumps(result.state.to_dict()),
            json.dumps([record.to_dict() for record in result.transitions]),
            ip,
            self.to_iso(received_at if received_at is not None else result.processed_at),
        )
        return self._write(
            """
            INSERT INTO traffic_events
                (id, device_id, intersection_id, sensors, state_snapshot, evaluation, ip, received_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [row],
            "traffic event",
        )

    def persist_phase_changes(self, records: Iterable[PhaseChangeRecord], intersection_id: str,
                              device_id: Optional[str] = None) -> int:
        """Store committed phase changes; returns the number of rows written."""
        rows = [
            (
                intersection_id,
                record.lane_id,
                record.previous_phase.value,
                record.next_phase.value,
                self.to_iso(record.started_at),
                self.to_iso(record.ended_at),
                record.ended_at,
                record.duration_ms,
                record.reason,
                device_id,
            )
            for record in records
        ]
        if not rows:
            return 0
        return self._write(
            """
            INSERT INTO phase_changes
                (intersection_id, lane_key, previous_state, next_state, started_at,
                 ended_at, ended_at_ms, duration_ms, reason, device_id)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
            "phase changes",
        )

    def persist_presence_events(self, records: Iterable[PresenceRecord], intersection_id: str,
                                device_id: Optional[str] = None) -> int:
        """Store closed presence intervals; returns the number of rows written."""
        rows = [
            (
                intersection_id,
                record.lane_id,
                device_id,
                self.to_iso(record.detected_at),
                record.detected_at,
                self.to_iso(record.cleared_at),
                record.wait_ms,
                int(bool(record.triggered_change)),
            )
            for record in records
        ]
        if not rows:
            return 0
        return self._write(
            """
            INSERT INTO presence_events
                (intersection_id, lane_key, device_id, detected_at, detected_at_ms,
                 cleared_at, wait_ms, triggered_change)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            rows,
            "presence events",
        )

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def fetch_phase_transition_counts(self, intersection_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Count committed transitions per (lane, next state)."""
        params: List[Any] = []
        where = self._intersection_filter(intersection_id, params)
        rows = self._query(
            f"""
            SELECT lane_key, next_state, COUNT(*) AS count
            FROM phase_changes
            WHERE 1 = 1{where}
            GROUP BY lane_key, next_state
            ORDER BY lane_key, next_state
            """,
            params,
            "phase transition counts",
        )
        return [dict(row) for row in rows]

    def fetch_lane_durations(self, intersection_id: Optional[str] = None,
                             limit: int = 5000) -> List[Dict[str, Any]]:
        """Mean green time and mean red wait per lane over the latest records.

        Green time comes from ``green -> yellow`` records, red wait from
        ``red -> red_yellow`` records.  Non-positive durations are ignored.
        """
        params: List[Any] = []
        where = self._intersection_filter(intersection_id, params)
        params.append(int(limit))
        rows = self._query(
            f"""
            SELECT lane_key, previous_state, next_state, duration_ms
            FROM phase_changes
            WHERE 1 = 1{where}
            ORDER BY ended_at_ms DESC
            LIMIT ?
            """,
            params,
            "lane durations",
        )

        by_lane: Dict[str, Dict[str, float]] = {}
        for row in rows:
            duration = row["duration_ms"]
            if duration is None or duration <= 0:
                continue
            acc = by_lane.setdefault(
                row["lane_key"],
                {"green_total": 0.0, "green_count": 0, "red_total": 0.0, "red_count": 0},
            )
            transition = (row["previous_state"], row["next_state"])
            if transition == (LanePhase.GREEN.value, LanePhase.YELLOW.value):
                acc["green_total"] += duration
                acc["green_count"] += 1
            elif transition == (LanePhase.RED.value, LanePhase.RED_YELLOW.value):
                acc["red_total"] += duration
                acc["red_count"] += 1

        return [
            {
                "lane_key": lane,
                "green_ms": acc["green_total"] / acc["green_count"] if acc["green_count"] else 0,
                "red_ms": acc["red_total"] / acc["red_count"] if acc["red_count"] else 0,
            }
            for lane, acc in sorted(by_lane.items())
        ]

    def fetch_presence_samples(self, intersection_id: Optional[str] = None,
                               limit: int = 300) -> List[Dict[str, Any]]:
        """Most recent presence intervals, newest first."""
        params: List[Any] = []
        where = self._intersection_filter(intersection_id, params)
        params.append(int(limit))
        rows = self._query(
            f"""
            SELECT lane_key, wait_ms, detected_at, triggered_change
            FROM presence_events
            WHERE 1 = 1{where}
            ORDER BY detected_at_ms DESC, id DESC
            LIMIT ?
            """,
            params,
            "presence samples",
        )
        return [
            {**dict(row), "triggered_change": bool(row["triggered_change"])}
            for row in rows
        ]

    def fetch_green_cycle_trend(self, intersection_id: Optional[str] = None,
                                limit: int = 200) -> List[Dict[str, Any]]:
        """Most recent completed green phases (``green -> yellow``), newest first."""
        params: List[Any] = [LanePhase.GREEN.value, LanePhase.YELLOW.value]
        where = self._intersection_filter(intersection_id, params)
        params.append(int(limit))
        rows = self._query(
            f"""
            SELECT lane_key, ended_at, duration_ms
            FROM phase_changes
            WHERE previous_state = ? AND next_state = ?{where}
            ORDER BY ended_at_ms DESC, id DESC
            LIMIT ?
            """,
            params,
            "green cycle trend",
        )
        return [dict(row) for row in rows]

    def close(self) -> None:
        """Close the underlying SQLite connection."""
        with self._lock:
            self._conn.close()
        log.info("SQLite event store closed", extra={"db_path": self._db_path})
