"""Tests for the in-memory session store."""

from __future__ import annotations

import threading

from appointment_assistant.models import ChatSession
from appointment_assistant.services.session_store import SessionStore


class _FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestCoreOperations:
    def test_create_and_get(self):
        store = SessionStore()
        sid, session = store.create(ChatSession(username="Jack Rogers"))
        assert store.get(sid) is session
        assert store.entry_count == 1

    def test_get_missing_returns_none(self):
        assert SessionStore().get("nope") is None

    def test_save_overwrites(self):
        store = SessionStore()
        sid, _ = store.create()
        replacement = ChatSession(username="Jack Rogers")
        store.save(sid, replacement)
        assert store.get(sid) is replacement
        assert store.entry_count == 1

    def test_delete(self):
        store = SessionStore()
        sid, _ = store.create()
        assert store.delete(sid) is True
        assert store.delete(sid) is False
        assert not store.has(sid)


class TestExpiry:
    def test_expired_session_is_dropped(self):
        clock = _FakeClock()
        store = SessionStore(ttl_seconds=60, clock=clock)
        sid, _ = store.create()
        clock.now += 61
        assert store.get(sid) is None
        assert not store.has(sid)

    def test_has_sees_expiry_without_refreshing(self):
        clock = _FakeClock()
        store = SessionStore(ttl_seconds=60, clock=clock)
        sid, _ = store.create()
        clock.now += 59
        assert store.has(sid)
        clock.now += 2
        assert not store.has(sid)

    def test_access_slides_the_deadline(self):
        clock = _FakeClock()
        store = SessionStore(ttl_seconds=60, clock=clock)
        sid, session = store.create()
        clock.now += 50
        assert store.get(sid) is session
        clock.now += 50
        assert store.get(sid) is session

    def test_purge_expired(self):
        clock = _FakeClock()
        store = SessionStore(ttl_seconds=60, clock=clock)
        old_sid, _ = store.create()
        clock.now += 45
        new_sid, _ = store.create()
        clock.now += 30
        assert store.purge_expired() == 1
        assert not store.has(old_sid)
        assert store.has(new_sid)


class TestEviction:
    def test_least_recently_used_is_evicted(self):
        store = SessionStore(max_sessions=2)
        first, _ = store.create()
        second, _ = store.create()
        store.get(first)  # first is now most recently used
        third, _ = store.create()
        assert store.has(first)
        assert not store.has(second)
        assert store.has(third)


class TestLocks:
    def test_same_lock_per_session(self):
        store = SessionStore()
        sid, _ = store.create()
        lock = store.lock_for(sid)
        assert isinstance(lock, type(threading.Lock()))
        assert store.lock_for(sid) is lock

    def test_lock_released_with_session(self):
        store = SessionStore()
        sid, _ = store.create()
        lock = store.lock_for(sid)
        store.delete(sid)
        assert store.lock_for(sid) is not lock
