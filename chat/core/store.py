"""In-process session registry.

Maps a user id to that user's upstream chat session. Sessions live in memory
only: nothing survives a restart and nothing is shared between processes.
Entries are evicted least-recently-used once the store is full, and dropped
once they have been idle for longer than the configured timeout.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from chat.errors import SessionCreationError
from chat.gemini import ChatSession, SessionFactory


logger = logging.getLogger("gemini_gateway.store")


@dataclass
class _Entry:
    session: ChatSession
    last_used: float


class SessionStore:
    def __init__(
        self,
        factory: SessionFactory,
        max_sessions: int = 1000,
        idle_timeout: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._max_sessions = max_sessions
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._entries: "OrderedDict[str, _Entry]" = OrderedDict()
        self._pending: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            self._drop_expired(self._clock())
            return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        with self._lock:
            entry = self._entries.get(user_id)
            return entry is not None and not self._expired(entry, self._clock())

    def _expired(self, entry: _Entry, now: float) -> bool:
        return self._idle_timeout > 0 and now - entry.last_used > self._idle_timeout

    def _lookup(self, user_id: str, now: float) -> Optional[ChatSession]:
        # caller holds self._lock
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        if self._expired(entry, now):
            del self._entries[user_id]
            logger.debug("Session expired: user_id=%s", user_id)
            return None
        entry.last_used = now
        self._entries.move_to_end(user_id)
        return entry.session

    def _drop_expired(self, now: float) -> int:
        # caller holds self._lock; entries are ordered oldest use first
        dropped = 0
        while self._entries:
            user_id, entry = next(iter(self._entries.items()))
            if not self._expired(entry, now):
                break
            del self._entries[user_id]
            dropped += 1
            logger.debug("Session evicted (idle): user_id=%s", user_id)
        return dropped

    def _evict(self, now: float) -> None:
        # caller holds self._lock
        self._drop_expired(now)
        while self._max_sessions > 0 and len(self._entries) > self._max_sessions:
            user_id, _ = self._entries.popitem(last=False)
            logger.debug("Session evicted (capacity): user_id=%s", user_id)

    def get(self, user_id: str) -> Optional[ChatSession]:
        with self._lock:
            return self._lookup(user_id, self._clock())

    def get_or_create(self, user_id: str) -> ChatSession:
        """Return the user's session, opening one upstream if there is none.

        Only one caller per user id runs the factory; concurrent callers for
        the same user wait for it and share its session or its error. The
        factory runs outside the store lock.
        """
        with self._lock:
            session = self._lookup(user_id, self._clock())
            if session is not None:
                return session
            pending = self._pending.get(user_id)
            owner = pending is None
            if owner:
                pending = Future()
                self._pending[user_id] = pending

        if not owner:
            return pending.result()

        try:
            session = self._factory()
        except Exception as exc:
            error = SessionCreationError(user_id, exc)
            pending.set_exception(error)
            logger.error("Session creation failed: user_id=%s error=%s", user_id, exc)
            raise error from exc
        except BaseException as exc:
            pending.set_exception(SessionCreationError(user_id, exc))
            raise
        else:
            with self._lock:
                now = self._clock()
                self._entries[user_id] = _Entry(session=session, last_used=now)
                self._evict(now)
                count = len(self._entries)
            pending.set_result(session)
        finally:
            # the entry is inserted before the pending marker goes away
            with self._lock:
                self._pending.pop(user_id, None)

        logger.info("Session created: user_id=%s active_sessions=%s", user_id, count)
        return session

    def remove(self, user_id: str) -> bool:
        with self._lock:
            entry = self._entries.pop(user_id, None)
            return entry is not None and not self._expired(entry, self._clock())

    def clear(self) -> int:
        """Forget every session and return how many were still live."""
        with self._lock:
            self._drop_expired(self._clock())
            count = len(self._entries)
            self._entries.clear()
            return count

    def prune(self) -> int:
        """Drop every idle session and return how many were dropped."""
        with self._lock:
            return self._drop_expired(self._clock())
