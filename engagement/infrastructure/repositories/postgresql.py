# ==============================================================================
# PostgreSQL Repository Implementations
# ==============================================================================
"""
PostgreSQL implementations of the repository interfaces.

Provides:
- PostgreSQLSessionStore: User sessions with guarded (versioned) updates
- PostgreSQLEventRepository: Read side of login and watch activity

Every conditional write is a single UPDATE whose WHERE clause carries the
guard (`is_active AND version = %s`), so the row lock taken by PostgreSQL is
the only ordering primitive. replace_active locks the user's active rows with
SELECT ... FOR UPDATE before closing them and inserting the new session; the
partial unique index on (user_id) WHERE is_active rejects a concurrent insert
that slipped past the lock, and the transaction is then retried.
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Optional

import psycopg2
import psycopg2.errors
from psycopg2.extras import Json, RealDictCursor
from pydantic import ValidationError

from engagement.base.repositories import EventRepository, SessionStore
from engagement.core.errors import StoreUnavailableError
from engagement.core.models import (
    ClientContext,
    DeviceInfo,
    LoginActivity,
    Session,
    WatchEvent,
)
from engagement.core.quality import MALFORMED_ROW, DataQualityReport
from engagement.utils.config import Settings, get_settings
from engagement.utils.retry import store_call

logger = logging.getLogger(__name__)

# Connection timeout
CONNECT_TIMEOUT = 10

# Attempts for replace_active when a concurrent start wins the unique index
REPLACE_ATTEMPTS = 3

SESSION_COLUMNS = (
    "id, user_id, start_time, last_active_time, end_time, is_active, "
    "content_engaged, ip_address, user_agent, device_info, version"
)


def _add_connect_timeout(conn_string: str) -> str:
    """Add connect_timeout to connection string if not present."""
    if "connect_timeout" not in conn_string:
        separator = "&" if "?" in conn_string else "?"
        return f"{conn_string}{separator}connect_timeout={CONNECT_TIMEOUT}"
    return conn_string


def row_to_session(row: dict) -> Session:
    """Convert a user_sessions row (RealDictCursor) to a Session."""
    device_info = row.get("device_info")
    return Session(
        id=str(row["id"]),
        user_id=row["user_id"],
        start_time=row["start_time"],
        last_active_time=row["last_active_time"],
        end_time=row.get("end_time"),
        is_active=row["is_active"],
        content_engaged=row["content_engaged"],
        client_context=ClientContext(
            ip_address=row.get("ip_address"),
            user_agent=row.get("user_agent"),
            device_info=DeviceInfo(**device_info) if device_info else None,
        ),
        version=row["version"],
    )


class _PostgreSQLRepository:
    """Connection handling shared by the PostgreSQL repositories."""

    def __init__(self, settings: Settings | None = None):
        """
        Initialize the repository.

        Args:
            settings: Application settings. If None, uses get_settings().
        """
        self._settings = settings or get_settings()
        self._conn: psycopg2.extensions.connection | None = None
        self._schema = self._settings.postgres.schema_name
        self._needs_reconnect = False

    @property
    def schema(self) -> str:
        """Get the database schema name."""
        return self._schema

    def connect(self) -> None:
        """Establish connection to PostgreSQL."""
        conn_string = _add_connect_timeout(self._settings.postgres.connection_string)
        self._conn = psycopg2.connect(conn_string)
        self._needs_reconnect = False
        logger.info("%s connected (schema=%s)", type(self).__name__, self._schema)

    def reconnect(self) -> None:
        """Replace a broken connection with a new one."""
        self._discard_connection()
        conn_string = _add_connect_timeout(self._settings.postgres.connection_string)
        self._conn = psycopg2.connect(conn_string)
        self._needs_reconnect = False
        logger.info("%s reconnected", type(self).__name__)

    def close(self) -> None:
        """Close connection and release resources."""
        self._needs_reconnect = False
        if self._conn:
            try:
                self._conn.close()
                logger.info("%s connection closed", type(self).__name__)
            except psycopg2.Error as e:
                logger.warning("Error closing connection: %s", e)
            finally:
                self._conn = None

    @contextmanager
    def _cursor(self) -> Iterator[RealDictCursor]:
        """
        Yield a dict cursor inside a transaction.

        Commits when the block succeeds and rolls back when it raises. A
        connection-level error discards the connection, and the next call
        (usually the store_call retry) opens a fresh one.
        """
        if self._conn is None:
            if not self._needs_reconnect:
                raise RuntimeError("PostgreSQL connection not established. Call connect() first.")
            self.reconnect()
        try:
            with self._conn.cursor(cursor_factory=RealDictCursor) as cur:
                yield cur
            self._conn.commit()
        except (psycopg2.OperationalError, psycopg2.InterfaceError):
            logger.warning("%s lost its connection, reconnecting on next use", type(self).__name__)
            self._discard_connection()
            self._needs_reconnect = True
            raise
        except Exception:
            self._rollback()
            raise

    def _discard_connection(self) -> None:
        """Close the current connection, ignoring errors from a dead one."""
        if self._conn:
            try:
                self._conn.close()
            except psycopg2.Error as e:
                logger.debug("Closing broken connection failed: %s", e)
            finally:
                self._conn = None

    def _rollback(self) -> None:
        """Rollback current transaction, ignoring a broken connection."""
        if self._conn:
            try:
                self._conn.rollback()
            except psycopg2.Error as e:
                logger.debug("Rollback failed: %s", e)


class PostgreSQLSessionStore(_PostgreSQLRepository, SessionStore):
    """
    PostgreSQL implementation of SessionStore.

    Sessions live in {schema}.user_sessions. The version column is bumped by
    every write so a stale reader's guarded UPDATE matches zero rows.
    """

    @property
    def _table(self) -> str:
        return f"{self._schema}.user_sessions"

    @store_call("postgresql", logger)
    def get(self, session_id: str) -> Optional[Session]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {SESSION_COLUMNS} FROM {self._table} WHERE id = %s", (session_id,))
            row = cur.fetchone()
        return row_to_session(row) if row else None

    @store_call("postgresql", logger)
    def replace_active(self, user_id: str, client_context: ClientContext, now: datetime) -> Session:
        """
        Close the user's active sessions and insert a new one in one transaction.

        Retries when a concurrent start for the same user commits its insert
        first (unique violation on the one-active-session index).
        """
        for attempt in range(1, REPLACE_ATTEMPTS + 1):
            try:
                return self._replace_active_once(user_id, client_context, now)
            except psycopg2.errors.UniqueViolation:
                logger.warning(
                    "Concurrent session start for user %s (attempt %d/%d)",
                    user_id,
                    attempt,
                    REPLACE_ATTEMPTS,
                )
        raise StoreUnavailableError(
            "postgresql", f"Could not open a session for user {user_id}: concurrent starts"
        )

    def _replace_active_once(self, user_id: str, client_context: ClientContext, now: datetime) -> Session:
        device_info = client_context.device_info
        with self._cursor() as cur:
            cur.execute(
                f"SELECT id FROM {self._table} WHERE user_id = %s AND is_active FOR UPDATE",
                (user_id,),
            )
            previous = [row["id"] for row in cur.fetchall()]
            if previous:
                cur.execute(
                    f"""
                    UPDATE {self._table}
                    SET is_active = FALSE,
                        end_time = GREATEST(%s, start_time),
                        version = version + 1
                    WHERE user_id = %s AND is_active
                    """,
                    (now, user_id),
                )
            cur.execute(
                f"""
                INSERT INTO {self._table}
                    (id, user_id, start_time, last_active_time, is_active,
                     content_engaged, ip_address, user_agent, device_info, version)
                VALUES (%s, %s, %s, %s, TRUE, FALSE, %s, %s, %s, 0)
                RETURNING {SESSION_COLUMNS}
                """,
                (
                    str(uuid.uuid4()),
                    user_id,
                    now,
                    now,
                    client_context.ip_address,
                    client_context.user_agent,
                    Json(device_info.model_dump()) if device_info else None,
                ),
            )
            row = cur.fetchone()
        if previous:
            logger.info("Closed %d previous session(s) for user %s", len(previous), user_id)
        return row_to_session(row)

    @store_call("postgresql", logger)
    def touch(self, session_id: str, version: int, now: datetime) -> Optional[Session]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET last_active_time = GREATEST(last_active_time, %s),
                    version = version + 1
                WHERE id = %s AND is_active AND version = %s
                RETURNING {SESSION_COLUMNS}
                """,
                (now, session_id, version),
            )
            row = cur.fetchone()
        return row_to_session(row) if row else None

    @store_call("postgresql", logger)
    def close_if_version(self, session_id: str, version: int, end_time: datetime) -> bool:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET is_active = FALSE,
                    end_time = GREATEST(%s, start_time),
                    version = version + 1
                WHERE id = %s AND is_active AND version = %s
                """,
                (end_time, session_id, version),
            )
            return cur.rowcount == 1

    @store_call("postgresql", logger)
    def deactivate(self, session_id: str, end_time: datetime) -> bool:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET is_active = FALSE,
                    end_time = GREATEST(%s, start_time),
                    version = version + 1
                WHERE id = %s AND is_active
                """,
                (end_time, session_id),
            )
            return cur.rowcount == 1

    @store_call("postgresql", logger)
    def set_content_engaged(self, session_id: str, engaged: bool) -> Optional[Session]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET content_engaged = %s,
                    version = version + 1
                WHERE id = %s AND is_active
                RETURNING {SESSION_COLUMNS}
                """,
                (engaged, session_id),
            )
            row = cur.fetchone()
        return row_to_session(row) if row else None

    @store_call("postgresql", logger)
    def deactivate_user(self, user_id: str, end_time: datetime) -> int:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET is_active = FALSE,
                    end_time = GREATEST(%s, start_time),
                    version = version + 1
                WHERE user_id = %s AND is_active
                """,
                (end_time, user_id),
            )
            return cur.rowcount

    @store_call("postgresql", logger)
    def expire_idle(self, idle_before: datetime, grace_seconds: int) -> int:
        with self._cursor() as cur:
            cur.execute(
                f"""
                UPDATE {self._table}
                SET is_active = FALSE,
                    end_time = last_active_time + make_interval(secs => %s),
                    version = version + 1
                WHERE is_active AND last_active_time <= %s
                """,
                (grace_seconds, idle_before),
            )
            return cur.rowcount

    @store_call("postgresql", logger)
    def list_active(self, user_id: Optional[str] = None) -> list[Session]:
        query = f"SELECT {SESSION_COLUMNS} FROM {self._table} WHERE is_active"
        params: tuple = ()
        if user_id is not None:
            query += " AND user_id = %s"
            params = (user_id,)
        query += " ORDER BY last_active_time DESC"
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [row_to_session(row) for row in rows]

    @store_call("postgresql", logger)
    def sessions_started_between(
        self, start: datetime, end: datetime, completed_only: bool = False
    ) -> list[Session]:
        query = f"SELECT {SESSION_COLUMNS} FROM {self._table} WHERE start_time BETWEEN %s AND %s"
        if completed_only:
            query += " AND NOT is_active"
        query += " ORDER BY start_time"
        with self._cursor() as cur:
            cur.execute(query, (start, end))
            rows = cur.fetchall()
        return [row_to_session(row) for row in rows]


class PostgreSQLEventRepository(_PostgreSQLRepository, EventRepository):
    """
    PostgreSQL implementation of EventRepository.

    Reads {schema}.login_events and {schema}.watch_sessions. Rows are
    returned as models without validation of their values; analytics applies
    the data quality filters.
    """

    @store_call("postgresql", logger)
    def logins_between(
        self, start: datetime, end: datetime, successful_only: bool = True
    ) -> list[LoginActivity]:
        query = f"""
            SELECT user_id, timestamp, successful, login_method AS method,
                   ip_address, user_agent, failure_reason
            FROM {self._schema}.login_events
            WHERE timestamp BETWEEN %s AND %s
        """
        if successful_only:
            query += " AND successful"
        query += " ORDER BY timestamp"
        with self._cursor() as cur:
            cur.execute(query, (start, end))
            rows = cur.fetchall()
        return [LoginActivity(**row) for row in rows]

    @store_call("postgresql", logger)
    def watch_events_between(
        self,
        start: datetime,
        end: datetime,
        video_id: Optional[str] = None,
        quality: Optional[DataQualityReport] = None,
    ) -> list[WatchEvent]:
        query = f"""
            SELECT id, video_id, user_session_id AS session_id, start_time, end_time,
                   actual_time_watched AS seconds_watched,
                   percentage_watched AS percent_watched,
                   user_events AS interaction_log
            FROM {self._schema}.watch_sessions
            WHERE start_time BETWEEN %s AND %s
        """
        params: tuple = (start, end)
        if video_id is not None:
            query += " AND video_id = %s"
            params = (start, end, video_id)
        query += " ORDER BY start_time"
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()

        events = []
        for row in rows:
            row = dict(row)
            row["id"] = str(row["id"]) if row.get("id") is not None else None
            row["session_id"] = str(row["session_id"]) if row.get("session_id") is not None else None
            row["interaction_log"] = row.get("interaction_log") or []
            try:
                events.append(WatchEvent(**row))
            except ValidationError as e:
                if quality is not None:
                    quality.record(MALFORMED_ROW, row["id"])
                else:
                    logger.warning("Skipping malformed watch row %s: %s", row["id"], e)
        return events


def check_postgresql_connection(settings: Settings | None = None) -> bool:
    """
    Check if PostgreSQL is reachable.

    Args:
        settings: Application settings. If None, uses get_settings().

    Returns:
        True if connection successful, False otherwise
    """
    try:
        settings = settings or get_settings()
        conn_string = _add_connect_timeout(settings.postgres.connection_string)
        conn = psycopg2.connect(conn_string)
        conn.close()
        return True
    except psycopg2.Error:
        return False
