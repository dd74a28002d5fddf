# ==============================================================================
# Tests for PostgreSQL Repositories
# ==============================================================================
"""
Unit tests for PostgreSQLSessionStore and PostgreSQLEventRepository.

The psycopg2 connection is a MagicMock, so these tests check the SQL guards
and the row handling rather than PostgreSQL itself:
- Conditional UPDATEs carry the version / is_active guards
- replace_active() locks, closes and inserts in one transaction, and retries
  on a unique violation
- Commit on success, rollback on error
- Connection errors are retried on a fresh connection, then become
  StoreUnavailableError
- Event rows are converted to models; malformed rows are skipped and counted
"""

import uuid
from datetime import UTC, date, datetime, timedelta
from unittest.mock import MagicMock, patch

import psycopg2
import psycopg2.errors
import pytest

from engagement.core.errors import StoreUnavailableError
from engagement.core.models import ClientContext, DeviceInfo
from engagement.core.quality import MALFORMED_ROW, DataQualityReport
from engagement.infrastructure.repositories.postgresql import (
    PostgreSQLEventRepository,
    PostgreSQLSessionStore,
    _add_connect_timeout,
    row_to_session,
)
from engagement.services.analytics import AnalyticsService
from engagement.utils.config import AnalyticsSettings

from conftest import FakeSessionHistory, FixedClock

NOW = datetime(2025, 4, 17, 12, 0, tzinfo=UTC)
SESSION_ID = "5b0e9f0c-6d55-4d0e-9f57-3b8f3f0a6c11"


def session_row(**overrides) -> dict:
    row = {
        "id": uuid.UUID(SESSION_ID),
        "user_id": "u1",
        "start_time": NOW,
        "last_active_time": NOW,
        "end_time": None,
        "is_active": True,
        "content_engaged": False,
        "ip_address": "203.0.113.5",
        "user_agent": "ua",
        "device_info": {"user_agent": "ua", "is_mobile": False, "browser": "Chrome", "os": "Linux"},
        "version": 0,
    }
    row.update(overrides)
    return row


def watch_row(**overrides) -> dict:
    row = {
        "id": uuid.uuid4(),
        "video_id": "v1",
        "session_id": None,
        "start_time": NOW,
        "end_time": NOW + timedelta(minutes=10),
        "seconds_watched": 300.0,
        "percent_watched": 50.0,
        "interaction_log": None,
    }
    row.update(overrides)
    return row


@pytest.fixture()
def cursor():
    return MagicMock()


@pytest.fixture()
def connection(cursor):
    conn = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn


@pytest.fixture()
def store(settings, connection):
    repo = PostgreSQLSessionStore(settings)
    repo._conn = connection
    return repo


@pytest.fixture()
def events(settings, connection):
    repo = PostgreSQLEventRepository(settings)
    repo._conn = connection
    return repo


def executed_sql(cursor, index: int = -1) -> str:
    return " ".join(cursor.execute.call_args_list[index].args[0].split())


# ==============================================================================
# Row conversion and connection helpers
# ==============================================================================


class TestHelpers:
    """Tests for row_to_session() and _add_connect_timeout()."""

    def test_row_to_session(self):
        session = row_to_session(session_row())
        assert session.id == SESSION_ID
        assert session.client_context.device_info == DeviceInfo(
            user_agent="ua", is_mobile=False, browser="Chrome", os="Linux"
        )

    def test_row_without_device_info(self):
        assert row_to_session(session_row(device_info=None)).client_context.device_info is None

    def test_connect_timeout_added(self):
        assert _add_connect_timeout("postgresql://h/db") == "postgresql://h/db?connect_timeout=10"
        assert _add_connect_timeout("postgresql://h/db?sslmode=require").endswith(
            "&connect_timeout=10"
        )

    def test_cursor_requires_connection(self, settings):
        with pytest.raises(RuntimeError):
            PostgreSQLSessionStore(settings).get(SESSION_ID)


# ==============================================================================
# Session store
# ==============================================================================


class TestConditionalUpdates:
    """Tests for the guarded UPDATE statements."""

    def test_touch_guards_on_version(self, store, cursor, connection):
        cursor.fetchone.return_value = session_row(version=4)

        updated = store.touch(SESSION_ID, 3, NOW)

        sql = executed_sql(cursor)
        assert "WHERE id = %s AND is_active AND version = %s" in sql
        assert "GREATEST(last_active_time, %s)" in sql
        assert cursor.execute.call_args.args[1] == (NOW, SESSION_ID, 3)
        assert updated.version == 4
        connection.commit.assert_called_once()

    def test_touch_lost_race_returns_none(self, store, cursor):
        cursor.fetchone.return_value = None
        assert store.touch(SESSION_ID, 3, NOW) is None

    def test_close_if_version(self, store, cursor):
        cursor.rowcount = 1
        assert store.close_if_version(SESSION_ID, 2, NOW) is True
        sql = executed_sql(cursor)
        assert "GREATEST(%s, start_time)" in sql
        assert "AND version = %s" in sql

        cursor.rowcount = 0
        assert store.close_if_version(SESSION_ID, 2, NOW) is False

    def test_deactivate_only_touches_active_rows(self, store, cursor):
        cursor.rowcount = 0
        assert store.deactivate(SESSION_ID, NOW) is False
        assert "WHERE id = %s AND is_active" in executed_sql(cursor)

    def test_deactivate_user_returns_rowcount(self, store, cursor):
        cursor.rowcount = 2
        assert store.deactivate_user("u1", NOW) == 2

    def test_expire_idle_adds_grace_to_last_activity(self, store, cursor):
        cursor.rowcount = 3
        cutoff = NOW - timedelta(hours=1)

        assert store.expire_idle(cutoff, 300) == 3
        sql = executed_sql(cursor)
        assert "end_time = last_active_time + make_interval(secs => %s)" in sql
        assert cursor.execute.call_args.args[1] == (300, cutoff)

    def test_list_active_filters_by_user(self, store, cursor):
        cursor.fetchall.return_value = [session_row()]
        sessions = store.list_active("u1")
        assert "AND user_id = %s" in executed_sql(cursor)
        assert [s.user_id for s in sessions] == ["u1"]

    def test_sessions_started_between_completed_only(self, store, cursor):
        cursor.fetchall.return_value = []
        store.sessions_started_between(NOW - timedelta(days=1), NOW, completed_only=True)
        assert "AND NOT is_active" in executed_sql(cursor)


class TestReplaceActive:
    """Tests for PostgreSQLSessionStore.replace_active()."""

    def test_locks_closes_and_inserts(self, store, cursor, connection):
        cursor.fetchall.return_value = [{"id": uuid.uuid4()}]
        cursor.fetchone.return_value = session_row()
        context = ClientContext(
            ip_address="203.0.113.5",
            user_agent="ua",
            device_info=DeviceInfo(user_agent="ua", browser="Chrome", os="Linux"),
        )

        session = store.replace_active("u1", context, NOW)

        assert cursor.execute.call_count == 3
        assert "FOR UPDATE" in executed_sql(cursor, 0)
        assert "SET is_active = FALSE" in executed_sql(cursor, 1)
        assert executed_sql(cursor, 2).startswith("INSERT INTO engagement.user_sessions")
        assert session.is_active
        connection.commit.assert_called_once()

    def test_no_previous_session_skips_update(self, store, cursor):
        cursor.fetchall.return_value = []
        cursor.fetchone.return_value = session_row()

        store.replace_active("u1", ClientContext(), NOW)

        assert cursor.execute.call_count == 2

    def test_unique_violation_is_retried(self, store):
        expected = row_to_session(session_row())
        with patch.object(
            store,
            "_replace_active_once",
            side_effect=[psycopg2.errors.UniqueViolation("duplicate"), expected],
        ) as once:
            assert store.replace_active("u1", ClientContext(), NOW) == expected
        assert once.call_count == 2

    def test_persistent_unique_violation(self, store):
        with patch.object(
            store, "_replace_active_once", side_effect=psycopg2.errors.UniqueViolation("duplicate")
        ):
            with pytest.raises(StoreUnavailableError):
                store.replace_active("u1", ClientContext(), NOW)


class TestTransactions:
    """Tests for commit / rollback and error translation."""

    def test_rollback_on_error(self, store, cursor, connection):
        cursor.execute.side_effect = psycopg2.ProgrammingError("bad sql")

        with pytest.raises(psycopg2.ProgrammingError):
            store.get(SESSION_ID)

        connection.rollback.assert_called_once()
        connection.commit.assert_not_called()

    def test_connection_error_becomes_store_unavailable(self, store, cursor, connection, monkeypatch):
        """OperationalError is retried on a fresh connection, then raised as StoreUnavailableError."""
        monkeypatch.setattr("tenacity.nap.time.sleep", lambda seconds: None)
        cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")

        with patch("psycopg2.connect", return_value=connection) as connect:
            with pytest.raises(StoreUnavailableError) as exc_info:
                store.get(SESSION_ID)

        assert exc_info.value.retryable is True
        assert cursor.execute.call_count == 3
        assert connect.call_count == 2

    def test_retry_reconnects_after_lost_connection(self, store, cursor, connection, monkeypatch):
        monkeypatch.setattr("tenacity.nap.time.sleep", lambda seconds: None)
        cursor.execute.side_effect = psycopg2.OperationalError("server closed the connection")
        fresh_cursor = MagicMock()
        fresh_cursor.fetchone.return_value = session_row()
        fresh = MagicMock()
        fresh.cursor.return_value.__enter__.return_value = fresh_cursor

        with patch("psycopg2.connect", return_value=fresh) as connect:
            session = store.get(SESSION_ID)

        assert session.id == SESSION_ID
        connect.assert_called_once()
        connection.close.assert_called_once()
        connection.rollback.assert_not_called()
        fresh.commit.assert_called_once()

    def test_closed_store_does_not_reconnect(self, store, cursor, monkeypatch):
        """Reconnects happen only after a lost connection, never after close()."""
        monkeypatch.setattr("tenacity.nap.time.sleep", lambda seconds: None)
        cursor.execute.side_effect = psycopg2.InterfaceError("connection already closed")
        refused = psycopg2.OperationalError("connection refused")
        with patch("psycopg2.connect", side_effect=refused) as connect:
            with pytest.raises(StoreUnavailableError):
                store.get(SESSION_ID)
            store.close()
            with pytest.raises(RuntimeError):
                store.get(SESSION_ID)
        assert connect.call_count == 2


# ==============================================================================
# Event repository
# ==============================================================================


class TestEventRepository:
    """Tests for PostgreSQLEventRepository."""

    def test_logins_successful_only(self, events, cursor):
        cursor.fetchall.return_value = [
            {
                "user_id": "u1",
                "timestamp": NOW,
                "successful": True,
                "method": "credentials",
                "ip_address": None,
                "user_agent": None,
                "failure_reason": None,
            }
        ]

        logins = events.logins_between(NOW - timedelta(days=1), NOW)

        assert "AND successful" in executed_sql(cursor)
        assert logins[0].user_id == "u1"

    def test_logins_all_attempts(self, events, cursor):
        cursor.fetchall.return_value = []
        events.logins_between(NOW - timedelta(days=1), NOW, successful_only=False)
        assert "AND successful" not in executed_sql(cursor)

    def test_watch_events_converted(self, events, cursor):
        watch_id, session_id = uuid.uuid4(), uuid.uuid4()
        cursor.fetchall.return_value = [
            {
                "id": watch_id,
                "video_id": "v1",
                "session_id": session_id,
                "start_time": NOW,
                "end_time": None,
                "seconds_watched": 120.0,
                "percent_watched": 0.87,
                "interaction_log": None,
            }
        ]

        watched = events.watch_events_between(NOW - timedelta(days=1), NOW, video_id="v1")

        assert "AND video_id = %s" in executed_sql(cursor)
        assert cursor.execute.call_args.args[1][-1] == "v1"
        assert watched[0].id == str(watch_id)
        assert watched[0].session_id == str(session_id)
        assert watched[0].interaction_log == []
        assert watched[0].percent_watched == 0.87

    def test_camel_case_player_events_accepted(self, events, cursor):
        cursor.fetchall.return_value = [
            watch_row(interaction_log=[{"event": "play", "eventTime": NOW.isoformat(), "videoTime": 3}])
        ]

        watched = events.watch_events_between(NOW - timedelta(days=1), NOW)

        assert watched[0].interaction_log[0].event_time == NOW
        assert watched[0].interaction_log[0].video_time == 3

    def test_malformed_row_is_skipped_and_counted(self, events, cursor):
        cursor.fetchall.return_value = [
            watch_row(),
            watch_row(interaction_log=[{"event": "play"}]),
        ]
        quality = DataQualityReport()

        watched = events.watch_events_between(NOW - timedelta(days=1), NOW, quality=quality)

        assert len(watched) == 1
        assert quality.to_dict() == {MALFORMED_ROW: 1}

    def test_malformed_row_does_not_fail_report(self, events, cursor):
        cursor.fetchall.return_value = [
            watch_row(percent_watched=85),
            watch_row(percent_watched="most of it"),
        ]
        service = AnalyticsService(events, FakeSessionHistory(), AnalyticsSettings(), clock=FixedClock())

        report = service.watch_completion_stats(None, date(2025, 4, 17), date(2025, 4, 17))

        assert report.overall.total_views == 1
        assert report.overall.completed == 1
        assert report.skipped_rows == 1
        assert report.data_quality == {MALFORMED_ROW: 1}
