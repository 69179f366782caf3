"""
Log store collaborators.

The engine only reads through ``fetch_daily_records``; writing belongs to
the application layer.  Two implementations:

  InMemoryLogStore  - dict-backed, notifies write listeners (tests, embedding)
  PostgresLogStore  - psycopg2 reader over the five log tables
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Protocol, Sequence

import psycopg2
from psycopg2.extras import RealDictCursor

from db_utils import get_conn_str
from models import (
    ActivityEntry,
    DailyRecord,
    ExerciseEntry,
    FoodEntry,
    LogEntry,
    LogStoreError,
    SymptomEntry,
)

log = logging.getLogger("log_store")

WriteListener = Callable[[str, date], None]


class LogStore(Protocol):
    def fetch_daily_records(self, user_id: str, start: date, end: date) -> List[DailyRecord]:
        """Records for start..end inclusive, ordered by date, children populated."""
        ...


# ─── In-memory ──────────────────────────────────────────────


class InMemoryLogStore:
    def __init__(self):
        self._records: Dict[str, Dict[date, DailyRecord]] = defaultdict(dict)
        self._listeners: List[WriteListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: WriteListener) -> None:
        self._listeners.append(listener)

    def _notify(self, user_id: str, day: date) -> None:
        for listener in list(self._listeners):
            listener(user_id, day)

    def _record_for(self, user_id: str, day: date) -> DailyRecord:
        days = self._records[str(user_id)]
        if day not in days:
            days[day] = DailyRecord(date=day)
        return days[day]

    def add_record(self, user_id: str, record: DailyRecord) -> None:
        """Insert or replace a whole day."""
        with self._lock:
            self._records[str(user_id)][record.date] = record
        self._notify(str(user_id), record.date)

    def add_records(self, user_id: str, records: Sequence[DailyRecord]) -> None:
        for record in records:
            self.add_record(user_id, record)

    def add_entry(self, user_id: str, entry: LogEntry) -> DailyRecord:
        """Attach *entry* to the record of its timestamp's day, creating it on first log."""
        day = entry.timestamp.date()
        with self._lock:
            record = self._record_for(user_id, day)
            if isinstance(entry, SymptomEntry):
                record.symptoms.append(entry)
            elif isinstance(entry, FoodEntry):
                record.foods.append(entry)
            elif isinstance(entry, ExerciseEntry):
                record.exercises.append(entry)
            elif isinstance(entry, ActivityEntry):
                record.activities.append(entry)
            else:
                raise TypeError(f"unsupported entry type {type(entry).__name__}")
        self._notify(str(user_id), day)
        return record

    def set_sleep(self, user_id: str, day: date, hours: Optional[float]) -> None:
        with self._lock:
            self._record_for(user_id, day).sleep_hours = hours
        self._notify(str(user_id), day)

    def fetch_daily_records(self, user_id: str, start: date, end: date) -> List[DailyRecord]:
        with self._lock:
            days = self._records.get(str(user_id), {})
            return [days[d] for d in sorted(days) if start <= d <= end]


# ─── PostgreSQL ─────────────────────────────────────────────

LOG_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS daily_records (
    id           SERIAL PRIMARY KEY,
    user_id      TEXT NOT NULL,
    date         DATE NOT NULL,
    sleep_hours  NUMERIC(4,2),
    created_at   TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE (user_id, date)
);

CREATE TABLE IF NOT EXISTS symptom_entries (
    id               SERIAL PRIMARY KEY,
    record_id        INTEGER NOT NULL REFERENCES daily_records(id) ON DELETE CASCADE,
    symptom          TEXT NOT NULL,
    severity         INTEGER NOT NULL,
    logged_at        TIMESTAMP NOT NULL,
    location         TEXT,
    duration_minutes INTEGER,
    notes            TEXT
);

CREATE TABLE IF NOT EXISTS food_entries (
    id         SERIAL PRIMARY KEY,
    record_id  INTEGER NOT NULL REFERENCES daily_records(id) ON DELETE CASCADE,
    name       TEXT NOT NULL,
    meal       TEXT NOT NULL,   -- breakfast, lunch, dinner, snack
    quantity   NUMERIC(8,2),
    notes      TEXT,
    logged_at  TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS exercise_entries (
    id               SERIAL PRIMARY KEY,
    record_id        INTEGER NOT NULL REFERENCES daily_records(id) ON DELETE CASCADE,
    exercise_type    TEXT NOT NULL,
    custom_type      TEXT,
    duration_minutes INTEGER NOT NULL,
    intensity        INTEGER NOT NULL,
    logged_at        TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS activity_entries (
    id               SERIAL PRIMARY KEY,
    record_id        INTEGER NOT NULL REFERENCES daily_records(id) ON DELETE CASCADE,
    activity_type    TEXT NOT NULL,
    duration_minutes INTEGER,
    stress_level     INTEGER,
    logged_at        TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_daily_records_user_date ON daily_records(user_id, date DESC);
"""

_CHILD_QUERIES = {
    "symptoms": (
        "SELECT record_id, symptom, severity, logged_at, location, duration_minutes, notes "
        "FROM symptom_entries WHERE record_id = ANY(%s) ORDER BY logged_at"
    ),
    "foods": (
        "SELECT record_id, name, meal, quantity, notes, logged_at "
        "FROM food_entries WHERE record_id = ANY(%s) ORDER BY logged_at"
    ),
    "exercises": (
        "SELECT record_id, exercise_type, custom_type, duration_minutes, intensity, logged_at "
        "FROM exercise_entries WHERE record_id = ANY(%s) ORDER BY logged_at"
    ),
    "activities": (
        "SELECT record_id, activity_type, duration_minutes, stress_level, logged_at "
        "FROM activity_entries WHERE record_id = ANY(%s) ORDER BY logged_at"
    ),
}


def _num(value):
    if isinstance(value, Decimal):
        return float(value)
    return value


def _symptom(row: dict) -> SymptomEntry:
    return SymptomEntry(
        timestamp=row["logged_at"],
        severity=row["severity"],
        symptom=row["symptom"],
        location=row.get("location"),
        duration_minutes=row.get("duration_minutes"),
        notes=row.get("notes"),
    )


def _food(row: dict) -> FoodEntry:
    return FoodEntry(
        timestamp=row["logged_at"],
        name=row["name"],
        meal=row["meal"],
        quantity=_num(row.get("quantity")),
        notes=row.get("notes"),
    )


def _exercise(row: dict) -> ExerciseEntry:
    return ExerciseEntry(
        timestamp=row["logged_at"],
        exercise_type=row["exercise_type"],
        duration_minutes=row["duration_minutes"],
        intensity=row["intensity"],
        custom_type=row.get("custom_type"),
    )


def _activity(row: dict) -> ActivityEntry:
    return ActivityEntry(
        timestamp=row["logged_at"],
        activity_type=row["activity_type"],
        duration_minutes=row.get("duration_minutes"),
        stress_level=row.get("stress_level"),
    )


_ROW_BUILDERS = {
    "symptoms": _symptom,
    "foods": _food,
    "exercises": _exercise,
    "activities": _activity,
}


class PostgresLogStore:
    """Reads complete DailyRecords from PostgreSQL. Standalone, psycopg2 only."""

    def __init__(self, conn_str: Optional[str] = None):
        self.conn_str = conn_str or get_conn_str()

    def _connect(self):
        if not self.conn_str:
            raise LogStoreError("FLARE_DATABASE_URL (or POSTGRES_CONNECTION_STRING) is not set")
        try:
            return psycopg2.connect(self.conn_str)
        except psycopg2.Error as e:
            raise LogStoreError(f"cannot connect to log store: {e}") from e

    def bootstrap_schema(self) -> None:
        """Create log tables if they don't exist."""
        conn = self._connect()
        conn.autocommit = True
        try:
            with conn.cursor() as cur:
                for stmt in LOG_SCHEMA_SQL.split(";"):
                    stmt = stmt.strip()
                    if stmt:
                        cur.execute(stmt)
        except psycopg2.Error as e:
            raise LogStoreError(f"schema bootstrap failed: {e}") from e
        finally:
            conn.close()
        log.info("Log store schema ready.")

    def fetch_daily_records(self, user_id: str, start: date, end: date) -> List[DailyRecord]:
        conn = self._connect()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(
                    "SELECT id, date, sleep_hours FROM daily_records "
                    "WHERE user_id = %s AND date >= %s AND date <= %s ORDER BY date",
                    (str(user_id), start, end),
                )
                rows = cur.fetchall()
                records: Dict[int, DailyRecord] = {
                    row["id"]: DailyRecord(date=row["date"], sleep_hours=_num(row["sleep_hours"]))
                    for row in rows
                }
                if records:
                    ids = list(records)
                    for attr, query in _CHILD_QUERIES.items():
                        cur.execute(query, (ids,))
                        build = _ROW_BUILDERS[attr]
                        for child in cur.fetchall():
                            getattr(records[child["record_id"]], attr).append(build(dict(child)))
        except psycopg2.Error as e:
            raise LogStoreError(f"log query failed for user {user_id}: {e}") from e
        finally:
            conn.close()

        out = sorted(records.values(), key=lambda r: r.date)
        log.info("   Loaded %d daily records for user %s (%s -> %s)", len(out), user_id, start, end)
        return out
