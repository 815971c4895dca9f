"""Thread-safe in-memory store for chat sessions.

The browser only carries a signed cookie holding the session id; the
``ChatSession`` itself (chat history, guided-flow draft, CRM snapshot id)
lives here.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction once ``max_sessions`` is reached.
• **Sliding expiry**: every ``get``/``save`` pushes the deadline out by
  ``ttl_seconds`` (matches the 1-hour cookie max age).
• **threading.Lock** guards the map; a second, per-session lock lets the
  chat route serialise read-modify-write of one session across
  concurrent requests from the same browser.
• Purely ephemeral: sessions are lost on restart; the CRM snapshot is the
  durable copy and is reloaded on the next login or chat turn.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict
from collections.abc import Callable

from appointment_assistant.models import ChatSession

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_SESSIONS = 10_000


class SessionStore:
    """Least-recently-used session map with sliding expiry."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl = ttl_seconds
        self._max_sessions = max_sessions
        self._clock = clock
        # sid → (session, expires_at)
        self._store: OrderedDict[str, tuple[ChatSession, float]] = OrderedDict()
        self._locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    # ── Core operations ──────────────────────────────────────────────

    def create(self, session: ChatSession | None = None) -> tuple[str, ChatSession]:
        """Register a fresh session and return ``(sid, session)``."""
        sid = uuid.uuid4().hex
        session = session or ChatSession()
        self.save(sid, session)
        logger.debug("Session store: created %s", sid)
        return sid, session

    def get(self, sid: str) -> ChatSession | None:
        """Return the live session (refreshing its expiry) or ``None``."""
        with self._lock:
            entry = self._store.get(sid)
            if entry is None:
                return None
            session, expires_at = entry
            now = self._clock()
            if expires_at <= now:
                self._drop(sid)
                logger.info("Session store: %s expired", sid)
                return None
            self._store[sid] = (session, now + self._ttl)
            self._store.move_to_end(sid)
            return session

    def save(self, sid: str, session: ChatSession) -> None:
        """Insert or overwrite *sid*.  Evicts LRU sessions when full."""
        with self._lock:
            if sid in self._store:
                self._store.pop(sid)
            while len(self._store) >= self._max_sessions and self._store:
                evicted_sid, _ = self._store.popitem(last=False)
                self._locks.pop(evicted_sid, None)
                logger.debug("Session store: evicted %s", evicted_sid)
            self._store[sid] = (session, self._clock() + self._ttl)

    def delete(self, sid: str) -> bool:
        """Remove a session.  Returns ``True`` if it existed."""
        with self._lock:
            existed = sid in self._store
            self._drop(sid)
            return existed

    def lock_for(self, sid: str) -> threading.Lock:
        """The per-session lock used to serialise chat turns."""
        with self._lock:
            return self._locks.setdefault(sid, threading.Lock())

    def purge_expired(self) -> int:
        """Drop every expired session.  Returns count removed."""
        with self._lock:
            now = self._clock()
            expired = [sid for sid, (_, exp) in self._store.items() if exp <= now]
            for sid in expired:
                self._drop(sid)
            return len(expired)

    # ── Internal ──────────────────────────────────────────────────────

    def _drop(self, sid: str) -> None:
        self._store.pop(sid, None)
        self._locks.pop(sid, None)

    # ── Introspection ────────────────────────────────────────────────

    @property
    def entry_count(self) -> int:
        return len(self._store)

    def has(self, sid: str) -> bool:
        """Check for a live session *without* refreshing its expiry."""
        with self._lock:
            entry = self._store.get(sid)
            return entry is not None and entry[1] > self._clock()
