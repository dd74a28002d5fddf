# ==============================================================================
# Tests for ValkeySessionStore
# ==============================================================================
"""
Unit tests for the Valkey session store.

Tests cover:
- Key layout written by replace_active()
- Conditional writes: version guard, no resurrection, end time never
  before start
- Idle sweep, listing and range queries
- WATCH/MULTI/EXEC retries when another client changes a watched key
- Concurrent starts for one user leaving exactly one active session

All tests use fakeredis via fixtures from conftest.py, so no real
Valkey/Redis server is needed.
"""

import threading
from datetime import timedelta

import pytest

from engagement.core.errors import StoreUnavailableError
from engagement.core.models import ClientContext, DeviceInfo
from engagement.infrastructure import session_store as session_store_module

from conftest import NOW


def _start(store, user_id="u1", now=NOW):
    return store.replace_active(user_id, ClientContext(ip_address="203.0.113.5"), now)


# ==============================================================================
# replace_active
# ==============================================================================


class TestReplaceActive:
    """Tests for ValkeySessionStore.replace_active()."""

    def test_writes_hash_and_indexes(self, valkey_store, fake_redis):
        """New session: hash, user set, activity and start indexes."""
        session = _start(valkey_store)

        data = fake_redis.hgetall(f"test:session:{session.id}")
        assert data["user_id"] == "u1"
        assert data["is_active"] == "1"
        assert data["version"] == "0"
        assert fake_redis.smembers("test:user:u1:active") == {session.id}
        assert fake_redis.zscore("test:sessions:active", session.id) == int(NOW.timestamp() * 1000)
        assert fake_redis.zscore("test:sessions:by_start", session.id) is not None

    def test_round_trips_client_context(self, valkey_store):
        context = ClientContext(
            ip_address="203.0.113.5",
            user_agent="ua",
            device_info=DeviceInfo(user_agent="ua", browser="Chrome", os="Android", is_mobile=True),
        )
        session = valkey_store.replace_active("u1", context, NOW)

        stored = valkey_store.get(session.id)
        assert stored.client_context == context
        assert stored.start_time == NOW
        assert stored.end_time is None

    def test_closes_previous_active_session(self, valkey_store, fake_redis):
        first = _start(valkey_store)
        later = NOW + timedelta(minutes=10)
        second = _start(valkey_store, now=later)

        old = valkey_store.get(first.id)
        assert old.is_active is False
        assert old.end_time == later
        assert old.version == 1
        assert fake_redis.smembers("test:user:u1:active") == {second.id}
        assert fake_redis.zscore("test:sessions:active", first.id) is None

    def test_other_users_untouched(self, valkey_store):
        other = _start(valkey_store, user_id="u2")
        _start(valkey_store, user_id="u1")
        assert valkey_store.get(other.id).is_active is True


# ==============================================================================
# Conditional writes
# ==============================================================================


class TestConditionalWrites:
    """Tests for touch(), close_if_version(), deactivate() and set_content_engaged()."""

    def test_touch_with_current_version(self, valkey_store):
        session = _start(valkey_store)
        later = NOW + timedelta(minutes=1)

        updated = valkey_store.touch(session.id, 0, later)

        assert updated.last_active_time == later
        assert updated.version == 1
        assert valkey_store.get(session.id).version == 1

    def test_touch_with_stale_version_writes_nothing(self, valkey_store):
        session = _start(valkey_store)
        valkey_store.touch(session.id, 0, NOW + timedelta(minutes=1))

        assert valkey_store.touch(session.id, 0, NOW + timedelta(minutes=2)) is None
        assert valkey_store.get(session.id).last_active_time == NOW + timedelta(minutes=1)

    def test_touch_never_moves_backwards(self, valkey_store):
        session = _start(valkey_store)
        valkey_store.touch(session.id, 0, NOW + timedelta(minutes=5))

        updated = valkey_store.touch(session.id, 1, NOW + timedelta(minutes=2))

        assert updated.last_active_time == NOW + timedelta(minutes=5)

    def test_touch_closed_session_is_rejected(self, valkey_store):
        session = _start(valkey_store)
        valkey_store.deactivate(session.id, NOW)
        closed = valkey_store.get(session.id)

        assert valkey_store.touch(session.id, closed.version, NOW + timedelta(minutes=1)) is None
        assert valkey_store.get(session.id).is_active is False

    def test_close_if_version(self, valkey_store):
        session = _start(valkey_store)
        end = NOW + timedelta(minutes=5)

        assert valkey_store.close_if_version(session.id, 7, end) is False
        assert valkey_store.close_if_version(session.id, 0, end) is True
        closed = valkey_store.get(session.id)
        assert closed.end_time == end
        assert closed.is_active is False

    def test_deactivate_twice(self, valkey_store):
        session = _start(valkey_store)
        assert valkey_store.deactivate(session.id, NOW + timedelta(minutes=1)) is True
        assert valkey_store.deactivate(session.id, NOW + timedelta(minutes=2)) is False
        assert valkey_store.get(session.id).end_time == NOW + timedelta(minutes=1)

    def test_deactivate_unknown_session(self, valkey_store):
        assert valkey_store.deactivate("missing", NOW) is False

    def test_end_time_clamped_to_start(self, valkey_store):
        session = _start(valkey_store)
        valkey_store.deactivate(session.id, NOW - timedelta(hours=1))
        assert valkey_store.get(session.id).end_time == NOW

    def test_set_content_engaged(self, valkey_store):
        session = _start(valkey_store)
        updated = valkey_store.set_content_engaged(session.id, True)
        assert updated.content_engaged is True
        assert valkey_store.get(session.id).content_engaged is True

    def test_set_content_engaged_on_closed_session(self, valkey_store):
        session = _start(valkey_store)
        valkey_store.deactivate(session.id, NOW)
        assert valkey_store.set_content_engaged(session.id, True) is None


# ==============================================================================
# Bulk operations and queries
# ==============================================================================


class TestBulkAndQueries:
    """Tests for deactivate_user(), expire_idle(), list_active() and range queries."""

    def test_deactivate_user(self, valkey_store, fake_redis):
        _start(valkey_store)
        assert valkey_store.deactivate_user("u1", NOW + timedelta(minutes=1)) == 1
        assert valkey_store.deactivate_user("u1", NOW + timedelta(minutes=2)) == 0
        assert fake_redis.smembers("test:user:u1:active") == set()

    def test_expire_idle_uses_last_activity_plus_grace(self, valkey_store):
        idle = _start(valkey_store, user_id="idle")
        fresh = _start(valkey_store, user_id="fresh", now=NOW + timedelta(minutes=50))

        closed = valkey_store.expire_idle(NOW + timedelta(minutes=10), grace_seconds=300)

        assert closed == 1
        assert valkey_store.get(idle.id).end_time == NOW + timedelta(minutes=5)
        assert valkey_store.get(fresh.id).is_active is True

    def test_expire_idle_skips_session_touched_after_cutoff(self, valkey_store, fake_redis):
        """A session whose index entry is stale is re-checked against its hash."""
        session = _start(valkey_store)
        valkey_store.touch(session.id, 0, NOW + timedelta(minutes=30))
        # Stale score, as if the index lagged the hash
        fake_redis.zadd("test:sessions:active", {session.id: int(NOW.timestamp() * 1000)})

        assert valkey_store.expire_idle(NOW + timedelta(minutes=10), grace_seconds=300) == 0
        assert valkey_store.get(session.id).is_active is True

    def test_list_active_most_recent_first(self, valkey_store):
        a = _start(valkey_store, user_id="a")
        b = _start(valkey_store, user_id="b")
        valkey_store.touch(a.id, 0, NOW + timedelta(minutes=3))
        valkey_store.deactivate(_start(valkey_store, user_id="c").id, NOW)

        assert [s.id for s in valkey_store.list_active()] == [a.id, b.id]
        assert [s.id for s in valkey_store.list_active("b")] == [b.id]

    def test_sessions_started_between(self, valkey_store):
        early = _start(valkey_store, user_id="a", now=NOW - timedelta(days=2))
        inside = _start(valkey_store, user_id="b")
        valkey_store.deactivate(early.id, NOW - timedelta(days=2) + timedelta(minutes=30))

        window = valkey_store.sessions_started_between(NOW - timedelta(hours=1), NOW + timedelta(hours=1))
        assert [s.id for s in window] == [inside.id]

        completed = valkey_store.sessions_started_between(
            NOW - timedelta(days=3), NOW + timedelta(hours=1), completed_only=True
        )
        assert [s.id for s in completed] == [early.id]

    def test_clear_all(self, valkey_store, fake_redis):
        _start(valkey_store)
        fake_redis.set("unrelated", "1")

        assert valkey_store.clear_all() == 4
        assert fake_redis.keys("test:*") == []
        assert fake_redis.get("unrelated") == "1"


# ==============================================================================
# Optimistic transactions
# ==============================================================================


class TestOptimisticTransactions:
    """Tests for WATCH conflicts between clients."""

    def test_conflicting_write_is_retried(self, valkey_store, store_factory):
        """A write by another client between read and EXEC forces a re-read."""
        session = _start(valkey_store)
        other = store_factory()
        original_parse = valkey_store._parse_session
        interleaved = []

        def parse_and_interfere(data):
            if not interleaved:
                interleaved.append(True)
                other.touch(session.id, 0, NOW + timedelta(minutes=1))
            return original_parse(data)

        valkey_store._parse_session = parse_and_interfere

        updated = valkey_store.touch(session.id, 0, NOW + timedelta(minutes=2))

        # The other client's touch bumped the version, so the retry sees a
        # stale version and gives up without writing
        assert updated is None
        stored = valkey_store.get(session.id)
        assert stored.version == 1
        assert stored.last_active_time == NOW + timedelta(minutes=1)

    def test_contention_exhausts_attempts(self, valkey_store, store_factory, monkeypatch):
        session = _start(valkey_store)
        other = store_factory()
        original_parse = valkey_store._parse_session

        def parse_and_interfere(data):
            other.client.hset(f"test:session:{session.id}", "marker", "x")
            return original_parse(data)

        valkey_store._parse_session = parse_and_interfere
        monkeypatch.setattr(session_store_module, "WATCH_ATTEMPTS", 3)

        with pytest.raises(StoreUnavailableError):
            valkey_store.set_content_engaged(session.id, True)

    def test_concurrent_starts_leave_one_active_session(self, store_factory, fake_redis):
        """Eight clients start a session for the same user at once."""
        stores = [store_factory() for _ in range(8)]
        barrier = threading.Barrier(len(stores))
        created, errors = [], []

        def start(store):
            barrier.wait()
            try:
                created.append(_start(store))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=start, args=(store,)) for store in stores]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert len(created) == 8
        active = stores[0].list_active("u1")
        assert len(active) == 1
        assert fake_redis.scard("test:user:u1:active") == 1
        closed = [s for s in (stores[0].get(c.id) for c in created) if not s.is_active]
        assert len(closed) == 7
