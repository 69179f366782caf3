"""
Tests for the log store implementations and connection-string resolution.

Postgres access is mocked at psycopg2.connect; no database is needed.
"""
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

import psycopg2
import pytest

from builders import day, exercise, food, symptom
from db_utils import get_conn_str
from log_store import InMemoryLogStore, PostgresLogStore
from models import DailyRecord, LogEntry, LogStoreError


# ─── In-memory ────────────────────────────────────────────────


class TestInMemoryLogStore:

    def test_first_entry_creates_record(self):
        store = InMemoryLogStore()
        rec = store.add_entry("u1", food(day(2), 9, "Tea"))
        assert rec.date == day(2)
        assert [r.date for r in store.fetch_daily_records("u1", day(0), day(5))] == [day(2)]

    def test_fetch_is_inclusive_and_ordered(self):
        store = InMemoryLogStore()
        store.add_records("u1", [DailyRecord(date=day(i)) for i in (4, 1, 3, 0)])
        fetched = store.fetch_daily_records("u1", day(1), day(3))
        assert [r.date for r in fetched] == [day(1), day(3)]

    def test_users_isolated(self):
        store = InMemoryLogStore()
        store.add_entry("u1", symptom(day(0), 9, 8))
        assert store.fetch_daily_records("u2", day(0), day(0)) == []

    def test_entries_routed_by_kind(self):
        store = InMemoryLogStore()
        store.add_entry("u1", symptom(day(0), 9, 8))
        store.add_entry("u1", exercise(day(0), 7))
        store.set_sleep("u1", day(0), 6.5)
        rec = store.fetch_daily_records("u1", day(0), day(0))[0]
        assert len(rec.symptoms) == 1
        assert len(rec.exercises) == 1
        assert rec.sleep_hours == 6.5

    def test_listeners_notified_with_entry_day(self):
        store = InMemoryLogStore()
        seen = []
        store.subscribe(lambda user, d: seen.append((user, d)))
        store.add_entry("u1", food(day(3), 9, "Tea"))
        store.set_sleep("u1", day(4), 7.0)
        assert seen == [("u1", day(3)), ("u1", day(4))]

    def test_unknown_entry_type_rejected(self):
        with pytest.raises(TypeError):
            InMemoryLogStore().add_entry("u1", LogEntry(timestamp=datetime(2026, 3, 1, 9)))


# ─── PostgreSQL ───────────────────────────────────────────────


def _mock_conn(fetch_batches):
    """Connection whose cursor returns *fetch_batches* in order from fetchall()."""
    cursor = MagicMock()
    cursor.fetchall.side_effect = fetch_batches
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn, cursor


class TestPostgresLogStore:

    @patch("log_store.psycopg2.connect")
    def test_builds_records_with_children(self, mock_connect):
        ts = datetime(2026, 3, 2, 14, 0)
        conn, cursor = _mock_conn([
            [{"id": 11, "date": date(2026, 3, 2), "sleep_hours": Decimal("5.50")}],
            [{"record_id": 11, "symptom": "pain", "severity": 8, "logged_at": ts,
              "location": None, "duration_minutes": None, "notes": None}],
            [{"record_id": 11, "name": "Chocolate", "meal": "snack",
              "quantity": Decimal("1.00"), "notes": None, "logged_at": ts}],
            [],
            [{"record_id": 11, "activity_type": "work", "duration_minutes": 480,
              "stress_level": 9, "logged_at": ts}],
        ])
        mock_connect.return_value = conn

        records = PostgresLogStore("postgresql://x").fetch_daily_records("u1", date(2026, 3, 1), date(2026, 3, 3))

        assert len(records) == 1
        rec = records[0]
        assert rec.sleep_hours == 5.5
        assert isinstance(rec.sleep_hours, float)
        assert rec.symptoms[0].severity == 8
        assert rec.foods[0].quantity == 1.0
        assert rec.exercises == []
        assert rec.activities[0].stress_level == 9
        # one query for the days, one per child table
        assert cursor.execute.call_count == 5
        conn.close.assert_called_once()

    @patch("log_store.psycopg2.connect")
    def test_empty_window_skips_child_queries(self, mock_connect):
        conn, cursor = _mock_conn([[]])
        mock_connect.return_value = conn

        assert PostgresLogStore("postgresql://x").fetch_daily_records("u1", date(2026, 3, 1), date(2026, 3, 3)) == []
        assert cursor.execute.call_count == 1

    @patch("log_store.psycopg2.connect")
    def test_bootstrap_runs_each_statement(self, mock_connect):
        conn, cursor = _mock_conn([])
        mock_connect.return_value = conn

        PostgresLogStore("postgresql://x").bootstrap_schema()

        statements = [c.args[0] for c in cursor.execute.call_args_list]
        assert any("CREATE TABLE IF NOT EXISTS daily_records" in s for s in statements)
        assert any("activity_entries" in s for s in statements)
        assert all(s.strip() for s in statements)

    def test_missing_connection_string_raises(self):
        store = PostgresLogStore.__new__(PostgresLogStore)
        store.conn_str = ""
        with pytest.raises(LogStoreError):
            store.fetch_daily_records("u1", date(2026, 3, 1), date(2026, 3, 2))

    @patch("log_store.psycopg2.connect")
    def test_connect_failure_raises_log_store_error(self, mock_connect):
        mock_connect.side_effect = psycopg2.OperationalError("could not connect")
        with pytest.raises(LogStoreError) as exc:
            PostgresLogStore("postgresql://x").fetch_daily_records("u1", date(2026, 3, 1), date(2026, 3, 2))
        assert isinstance(exc.value.__cause__, psycopg2.OperationalError)

    @patch("log_store.psycopg2.connect")
    def test_query_failure_raises_log_store_error_and_closes(self, mock_connect):
        conn, cursor = _mock_conn([])
        cursor.execute.side_effect = psycopg2.ProgrammingError("relation does not exist")
        mock_connect.return_value = conn

        with pytest.raises(LogStoreError):
            PostgresLogStore("postgresql://x").fetch_daily_records("u1", date(2026, 3, 1), date(2026, 3, 2))
        conn.close.assert_called_once()

    @patch("log_store.psycopg2.connect")
    def test_bootstrap_failure_raises_log_store_error(self, mock_connect):
        conn, cursor = _mock_conn([])
        cursor.execute.side_effect = psycopg2.Error("permission denied")
        mock_connect.return_value = conn

        with pytest.raises(LogStoreError):
            PostgresLogStore("postgresql://x").bootstrap_schema()
        conn.close.assert_called_once()


class TestConnStr:

    @patch("db_utils.load_dotenv")
    def test_flare_url_preferred(self, _dotenv):
        env = {"FLARE_DATABASE_URL": "postgresql://a", "DATABASE_URL": "postgresql://b"}
        with patch.dict("os.environ", env, clear=True):
            assert get_conn_str() == "postgresql://a"

    @patch("db_utils.load_dotenv")
    def test_heroku_scheme_normalised(self, _dotenv):
        with patch.dict("os.environ", {"DATABASE_URL": "postgres://u:p@h/db"}, clear=True):
            assert get_conn_str() == "postgresql://u:p@h/db"

    @patch("db_utils.load_dotenv")
    def test_unset_is_empty(self, _dotenv):
        with patch.dict("os.environ", {}, clear=True):
            assert get_conn_str() == ""
