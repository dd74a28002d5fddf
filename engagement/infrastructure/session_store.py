# ==============================================================================
# Session Store Implementation (Valkey/Redis)
# ==============================================================================
"""
Valkey/Redis implementation of the SessionStore interface.

Key layout (prefix from settings.valkey.key_prefix, default "engagement"):
    {prefix}:session:{id}            Hash with the session fields
    {prefix}:user:{user_id}:active   Set of the user's active session ids
    {prefix}:sessions:active         Sorted set, active ids scored by last
                                     activity (ms), used by the idle sweep
    {prefix}:sessions:by_start       Sorted set, every id scored by start
                                     time (ms), used by analytics

Conditional writes are optimistic transactions: WATCH the keys read, check
the guard, then MULTI/EXEC the writes. EXEC fails with WatchError when a
watched key changed in between, and the whole read-check-write is repeated.
"""

import json
import logging
import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any, Optional

import redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError
from redis.retry import Retry

from engagement.base.repositories import SessionStore
from engagement.core.errors import StoreUnavailableError
from engagement.core.models import ClientContext, Session
from engagement.utils.config import Settings, get_settings
from engagement.utils.retry import VALKEY_RETRIES, store_call

logger = logging.getLogger(__name__)

# Optimistic transaction attempts before reporting contention
WATCH_ATTEMPTS = 10

# A pipeline step queues writes on the MULTI pipeline, or is None for "no write"
Writes = Optional[Callable[[redis.client.Pipeline], None]]


def get_valkey_client(settings: Settings | None = None) -> redis.Redis:
    """
    Get a Valkey/Redis client connection.

    Configured with:
    - 10 second socket timeouts for fast failure detection
    - Automatic retries with exponential backoff for transient failures
    - Health check interval to keep connections alive

    Returns:
        redis.Redis client instance
    """
    settings = settings or get_settings()

    # Configure retry with exponential backoff for transient failures
    retry = Retry(ExponentialBackoff(cap=32, base=1), retries=VALKEY_RETRIES)

    return redis.from_url(
        settings.valkey.url,
        decode_responses=True,
        socket_timeout=10,
        socket_connect_timeout=10,
        retry=retry,
        retry_on_error=[RedisTimeoutError, RedisConnectionError],
        health_check_interval=30,
    )


def _to_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


class ValkeySessionStore(SessionStore):
    """
    Valkey/Redis implementation of SessionStore.

    Each session hash contains:
    - id, user_id: Identifiers
    - start_time, last_active_time, end_time: ISO-8601 timestamps ("" when unset)
    - is_active, content_engaged: "1" / "0"
    - client_context: JSON document
    - version: Optimistic concurrency token
    """

    def __init__(self, client: redis.Redis | None = None, settings: Settings | None = None):
        """
        Initialize the session store.

        Args:
            client: Redis client instance. If None, creates a new connection.
            settings: Application settings. If None, uses get_settings().
        """
        self._settings = settings or get_settings()
        self._client = client
        self._prefix = self._settings.valkey.key_prefix

    @property
    def client(self) -> redis.Redis:
        """Get the underlying Redis client, connecting on first use."""
        if self._client is None:
            self.connect()
        return self._client

    def connect(self) -> None:
        if self._client is None:
            self._client = get_valkey_client(self._settings)
            logger.info("ValkeySessionStore connected (prefix=%s)", self._prefix)

    def close(self) -> None:
        if self._client is not None:
            try:
                self._client.close()
            except redis.RedisError as e:
                logger.warning("Error closing Valkey connection: %s", e)
            finally:
                self._client = None

    # ==========================================================================
    # Keys and serialization
    # ==========================================================================

    def _session_key(self, session_id: str) -> str:
        return f"{self._prefix}:session:{session_id}"

    def _user_key(self, user_id: str) -> str:
        return f"{self._prefix}:user:{user_id}:active"

    @property
    def _active_key(self) -> str:
        return f"{self._prefix}:sessions:active"

    @property
    def _by_start_key(self) -> str:
        return f"{self._prefix}:sessions:by_start"

    def _parse_session(self, data: dict) -> Session:
        """Parse raw Redis hash data into a Session."""
        return Session(
            id=data["id"],
            user_id=data["user_id"],
            start_time=_parse_time(data["start_time"]),
            last_active_time=_parse_time(data["last_active_time"]),
            end_time=_parse_time(data.get("end_time")),
            is_active=data.get("is_active") == "1",
            content_engaged=data.get("content_engaged") == "1",
            client_context=ClientContext.model_validate_json(data.get("client_context") or "{}"),
            version=int(data.get("version", 0)),
        )

    def _serialize_session(self, session: Session) -> dict[str, str]:
        """Serialize a Session for Redis hash storage."""
        return {
            "id": session.id,
            "user_id": session.user_id,
            "start_time": session.start_time.isoformat(),
            "last_active_time": session.last_active_time.isoformat(),
            "end_time": session.end_time.isoformat() if session.end_time else "",
            "is_active": "1" if session.is_active else "0",
            "content_engaged": "1" if session.content_engaged else "0",
            "client_context": session.client_context.model_dump_json(),
            "version": str(session.version),
        }

    def _queue_close(self, pipe: redis.client.Pipeline, session: Session, end_time: datetime) -> None:
        """Queue the writes that close one session."""
        end_time = max(end_time, session.start_time)
        pipe.hset(
            self._session_key(session.id),
            mapping={
                "is_active": "0",
                "end_time": end_time.isoformat(),
                "version": str(session.version + 1),
            },
        )
        pipe.srem(self._user_key(session.user_id), session.id)
        pipe.zrem(self._active_key, session.id)

    # ==========================================================================
    # Transactions
    # ==========================================================================

    def _transact(self, watch_keys: list[str], step: Callable[[redis.client.Pipeline], tuple[Any, Writes]]) -> Any:
        """
        Run a WATCH / check / MULTI / EXEC cycle, repeating on WatchError.

        Args:
            watch_keys: Keys to WATCH before `step` reads them
            step: Called with the pipeline in immediate mode. Reads what it
                needs (and may WATCH more keys), then returns
                (result, writes). `writes` queues commands after MULTI, or is
                None when nothing has to be written.

        Returns:
            The result of the `step` call whose transaction committed
        """
        for attempt in range(1, WATCH_ATTEMPTS + 1):
            with self.client.pipeline() as pipe:
                try:
                    pipe.watch(*watch_keys)
                    result, writes = step(pipe)
                    if writes is None:
                        pipe.unwatch()
                        return result
                    pipe.multi()
                    writes(pipe)
                    pipe.execute()
                    return result
                except WatchError:
                    logger.debug("Watched key changed, retrying (attempt %d/%d)", attempt, WATCH_ATTEMPTS)
        raise StoreUnavailableError("valkey", f"Too much contention on {watch_keys}")

    def _read_sessions(self, session_ids: list[str]) -> list[Session]:
        """Fetch several session hashes with one pipeline."""
        if not session_ids:
            return []
        pipe = self.client.pipeline(transaction=False)
        for session_id in session_ids:
            pipe.hgetall(self._session_key(session_id))
        return [self._parse_session(data) for data in pipe.execute() if data]

    # ==========================================================================
    # SessionStore Interface Implementation
    # ==========================================================================

    @store_call("valkey", logger)
    def get(self, session_id: str) -> Optional[Session]:
        data = self.client.hgetall(self._session_key(session_id))
        return self._parse_session(data) if data else None

    @store_call("valkey", logger)
    def replace_active(self, user_id: str, client_context: ClientContext, now: datetime) -> Session:
        user_key = self._user_key(user_id)
        new_session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            start_time=now,
            last_active_time=now,
            client_context=client_context,
        )

        def step(pipe):
            previous_ids = list(pipe.smembers(user_key))
            if previous_ids:
                pipe.watch(*[self._session_key(sid) for sid in previous_ids])
            previous = [
                self._parse_session(data)
                for data in (pipe.hgetall(self._session_key(sid)) for sid in previous_ids)
                if data
            ]

            def writes(multi):
                for session in previous:
                    if session.is_active:
                        self._queue_close(multi, session, now)
                # Ids whose hash vanished are dropped from the set as well
                for sid in previous_ids:
                    multi.srem(user_key, sid)
                multi.hset(self._session_key(new_session.id), mapping=self._serialize_session(new_session))
                multi.sadd(user_key, new_session.id)
                multi.zadd(self._active_key, {new_session.id: _to_ms(now)})
                multi.zadd(self._by_start_key, {new_session.id: _to_ms(now)})

            return len(previous), writes

        closed = self._transact([user_key], step)
        if closed:
            logger.info("Closed %d previous session(s) for user %s", closed, user_id)
        return new_session

    @store_call("valkey", logger)
    def touch(self, session_id: str, version: int, now: datetime) -> Optional[Session]:
        key = self._session_key(session_id)

        def step(pipe):
            data = pipe.hgetall(key)
            if not data:
                return None, None
            session = self._parse_session(data)
            if not session.is_active or session.version != version:
                return None, None
            updated = session.model_copy(
                update={
                    "last_active_time": max(session.last_active_time, now),
                    "version": session.version + 1,
                }
            )

            def writes(multi):
                multi.hset(
                    key,
                    mapping={
                        "last_active_time": updated.last_active_time.isoformat(),
                        "version": str(updated.version),
                    },
                )
                multi.zadd(self._active_key, {session_id: _to_ms(updated.last_active_time)})

            return updated, writes

        return self._transact([key], step)

    def _close_where(self, session_id: str, end_time_of: Callable[[Session], Optional[datetime]]) -> bool:
        """
        Close a session when `end_time_of` returns an end time for it.

        `end_time_of` sees the current (active) session and returns None to
        leave it alone.
        """
        key = self._session_key(session_id)

        def step(pipe):
            data = pipe.hgetall(key)
            if not data:
                return False, None
            session = self._parse_session(data)
            if not session.is_active:
                return False, None
            end_time = end_time_of(session)
            if end_time is None:
                return False, None
            pipe.watch(self._user_key(session.user_id))
            return True, lambda multi: self._queue_close(multi, session, end_time)

        return self._transact([key], step)

    @store_call("valkey", logger)
    def close_if_version(self, session_id: str, version: int, end_time: datetime) -> bool:
        return self._close_where(session_id, lambda s: end_time if s.version == version else None)

    @store_call("valkey", logger)
    def deactivate(self, session_id: str, end_time: datetime) -> bool:
        return self._close_where(session_id, lambda s: end_time)

    @store_call("valkey", logger)
    def set_content_engaged(self, session_id: str, engaged: bool) -> Optional[Session]:
        key = self._session_key(session_id)

        def step(pipe):
            data = pipe.hgetall(key)
            if not data:
                return None, None
            session = self._parse_session(data)
            if not session.is_active:
                return None, None
            updated = session.model_copy(update={"content_engaged": engaged, "version": session.version + 1})

            def writes(multi):
                multi.hset(
                    key,
                    mapping={
                        "content_engaged": "1" if engaged else "0",
                        "version": str(updated.version),
                    },
                )

            return updated, writes

        return self._transact([key], step)

    @store_call("valkey", logger)
    def deactivate_user(self, user_id: str, end_time: datetime) -> int:
        user_key = self._user_key(user_id)

        def step(pipe):
            session_ids = list(pipe.smembers(user_key))
            if not session_ids:
                return 0, None
            pipe.watch(*[self._session_key(sid) for sid in session_ids])
            sessions = [
                self._parse_session(data)
                for data in (pipe.hgetall(self._session_key(sid)) for sid in session_ids)
                if data
            ]
            active = [s for s in sessions if s.is_active]

            def writes(multi):
                for session in active:
                    self._queue_close(multi, session, end_time)
                for sid in session_ids:
                    multi.srem(user_key, sid)

            return len(active), writes

        return self._transact([user_key], step)

    @store_call("valkey", logger)
    def expire_idle(self, idle_before: datetime, grace_seconds: int) -> int:
        """
        Close idle sessions one optimistic transaction at a time.

        Candidates come from the activity sorted set; each one is re-checked
        inside its own transaction, so a heartbeat that lands during the sweep
        keeps its session open.
        """
        grace = timedelta(seconds=grace_seconds)
        candidates = self.client.zrangebyscore(self._active_key, "-inf", _to_ms(idle_before))
        closed = 0
        for session_id in candidates:
            if self._close_where(
                session_id,
                lambda s: s.last_active_time + grace if s.last_active_time <= idle_before else None,
            ):
                closed += 1
            elif not self.client.exists(self._session_key(session_id)):
                # Index entry without a hash
                self.client.zrem(self._active_key, session_id)
        return closed

    @store_call("valkey", logger)
    def list_active(self, user_id: Optional[str] = None) -> list[Session]:
        if user_id is not None:
            session_ids = list(self.client.smembers(self._user_key(user_id)))
        else:
            session_ids = self.client.zrevrange(self._active_key, 0, -1)
        sessions = [s for s in self._read_sessions(session_ids) if s.is_active]
        sessions.sort(key=lambda s: s.last_active_time, reverse=True)
        return sessions

    @store_call("valkey", logger)
    def sessions_started_between(
        self, start: datetime, end: datetime, completed_only: bool = False
    ) -> list[Session]:
        session_ids = self.client.zrangebyscore(self._by_start_key, _to_ms(start), _to_ms(end))
        sessions = self._read_sessions(session_ids)
        if completed_only:
            sessions = [s for s in sessions if not s.is_active]
        return sessions

    # ==========================================================================
    # Additional Methods (beyond ABC)
    # ==========================================================================

    @store_call("valkey", logger)
    def clear_all(self) -> int:
        """
        Delete every key under the configured prefix.

        Returns:
            Count of keys deleted
        """
        keys = list(self.client.scan_iter(f"{self._prefix}:*"))
        if keys:
            return self.client.delete(*keys)
        return 0


def check_valkey_connection(settings: Settings | None = None) -> bool:
    """
    Check if Valkey is reachable.

    Returns:
        True if PING succeeds, False otherwise
    """
    try:
        client = get_valkey_client(settings)
        client.ping()
        client.close()
        return True
    except redis.RedisError:
        return False
