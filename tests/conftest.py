# ==============================================================================
# Shared Test Fixtures
# ==============================================================================
"""
Pytest fixtures shared across all test modules.

Provides:
- fakeredis-backed ValkeySessionStore instances (shared FakeServer, so
  several clients can race on the same keys)
- Settings with a known token secret and session timeouts
- A controllable clock
- In-memory EventRepository / SessionStore fakes for analytics tests
"""

from datetime import UTC, datetime, timedelta
from typing import Optional

import fakeredis
import jwt
import pytest

from engagement.base.repositories import EventRepository, SessionStore
from engagement.core.session_lifecycle import SessionLifecycleManager
from engagement.infrastructure.identity import JwtIdentityResolver
from engagement.infrastructure.session_store import ValkeySessionStore
from engagement.utils.config import (
    AnalyticsSettings,
    AuthSettings,
    SessionSettings,
    Settings,
    ValkeySettings,
)

TOKEN_SECRET = "test-secret-key-with-at-least-32-bytes"

# Thursday, ISO week 2025-W16
NOW = datetime(2025, 4, 17, 12, 0, tzinfo=UTC)


class FixedClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_token(user_id: str, secret: str = TOKEN_SECRET, **claims) -> str:
    """Sign an access token the way the auth service does."""
    return jwt.encode({"id": user_id, **claims}, secret, algorithm="HS256")


class FakeEventRepository(EventRepository):
    """EventRepository over plain lists."""

    def __init__(self, logins=None, watch_events=None):
        self.logins = list(logins or [])
        self.watch_events = list(watch_events or [])
        self.calls: list[tuple] = []

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def logins_between(self, start, end, successful_only=True):
        self.calls.append(("logins_between", start, end))
        return [
            login
            for login in self.logins
            if start <= login.timestamp <= end and (login.successful or not successful_only)
        ]

    def watch_events_between(self, start, end, video_id: Optional[str] = None, quality=None):
        self.calls.append(("watch_events_between", start, end, video_id))
        return [
            event
            for event in self.watch_events
            if start <= event.start_time <= end and (video_id is None or event.video_id == video_id)
        ]


class FakeSessionHistory(SessionStore):
    """Read-only SessionStore over a list, for analytics."""

    def __init__(self, sessions=None):
        self.sessions = list(sessions or [])

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    def sessions_started_between(self, start, end, completed_only=False):
        return [
            s
            for s in self.sessions
            if start <= s.start_time <= end and not (completed_only and s.is_active)
        ]

    def list_active(self, user_id=None):
        return [s for s in self.sessions if s.is_active and (user_id is None or s.user_id == user_id)]

    def get(self, session_id):
        raise NotImplementedError

    def replace_active(self, user_id, client_context, now):
        raise NotImplementedError

    def touch(self, session_id, version, now):
        raise NotImplementedError

    def close_if_version(self, session_id, version, end_time):
        raise NotImplementedError

    def deactivate(self, session_id, end_time):
        raise NotImplementedError

    def set_content_engaged(self, session_id, engaged):
        raise NotImplementedError

    def deactivate_user(self, user_id, end_time):
        raise NotImplementedError

    def expire_idle(self, idle_before, grace_seconds):
        raise NotImplementedError


@pytest.fixture()
def settings():
    """Settings with a 60 minute timeout, 5 minute grace and a known token secret."""
    return Settings(
        valkey=ValkeySettings(key_prefix="test"),
        sessions=SessionSettings(
            backend="valkey", timeout_minutes=60, grace_minutes=5, max_write_attempts=5
        ),
        analytics=AnalyticsSettings(),
        auth=AuthSettings(access_token_secret=TOKEN_SECRET, algorithm="HS256"),
    )


@pytest.fixture()
def clock():
    """A FixedClock starting at NOW."""
    return FixedClock()


@pytest.fixture()
def fake_server():
    """One fake Valkey server; every client created from it sees the same keys."""
    return fakeredis.FakeServer()


@pytest.fixture()
def fake_redis(fake_server):
    """A clean fakeredis client for each test.

    Uses decode_responses=True to match the real client configuration.
    """
    client = fakeredis.FakeRedis(server=fake_server, decode_responses=True)
    yield client
    client.flushall()
    client.close()


@pytest.fixture()
def valkey_store(fake_redis, settings):
    """A ValkeySessionStore backed by fakeredis."""
    return ValkeySessionStore(client=fake_redis, settings=settings)


@pytest.fixture()
def store_factory(fake_server, settings):
    """Build extra stores with their own connection to the shared fake server."""
    clients = []

    def _make() -> ValkeySessionStore:
        client = fakeredis.FakeRedis(server=fake_server, decode_responses=True)
        clients.append(client)
        return ValkeySessionStore(client=client, settings=settings)

    yield _make
    for client in clients:
        client.close()


@pytest.fixture()
def manager(valkey_store, settings, clock):
    """A SessionLifecycleManager on fakeredis with JWT renewal enabled."""
    return SessionLifecycleManager(
        valkey_store,
        JwtIdentityResolver(settings.auth),
        settings.sessions,
        clock=clock,
    )
