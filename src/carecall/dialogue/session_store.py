"""
In-memory store of live call sessions.

Dictionary operations are atomic under a threading lock. Handlers for the
same call additionally serialize on a per-call ``asyncio.Lock`` so that a
whole read-decide-write sequence runs without interleaving.
"""

import asyncio
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from carecall.dialogue.models import CallSession


class SessionStore:
    """Concurrent map from call id to the current ``CallSession``."""

    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._mutex = threading.Lock()

    @asynccontextmanager
    async def locked(self, call_id: str) -> AsyncIterator[None]:
        """Hold the per-call lock for the duration of the block.

        The lock is forgotten once no handler holds or waits for it, so a
        later handler can never get a fresh lock while an older one is
        still queued.
        """
        lock = self._checkout(call_id)
        try:
            async with lock:
                yield
        finally:
            self._checkin(call_id)

    def lock_users(self, call_id: str) -> int:
        """Handlers currently holding or waiting for the call's lock."""
        with self._mutex:
            entry = self._locks.get(call_id)
            return entry[1] if entry else 0

    def _checkout(self, call_id: str) -> asyncio.Lock:
        with self._mutex:
            lock, users = self._locks.get(call_id) or (asyncio.Lock(), 0)
            self._locks[call_id] = (lock, users + 1)
            return lock

    def _checkin(self, call_id: str) -> None:
        with self._mutex:
            lock, users = self._locks[call_id]
            if users > 1:
                self._locks[call_id] = (lock, users - 1)
            else:
                del self._locks[call_id]

    def get(self, call_id: str) -> CallSession | None:
        with self._mutex:
            return self._sessions.get(call_id)

    def put_if_absent(self, session: CallSession) -> CallSession:
        """Store ``session`` unless one exists; return whichever is stored."""
        with self._mutex:
            existing = self._sessions.get(session.call_id)
            if existing is not None:
                return existing
            self._sessions[session.call_id] = session
            return session

    def compare_and_set(
        self,
        call_id: str,
        expected: CallSession | None,
        new: CallSession,
    ) -> bool:
        """Replace the stored session only if it is still ``expected``.

        ``expected=None`` means "only if absent".
        """
        with self._mutex:
            current = self._sessions.get(call_id)
            if current is not expected:
                return False
            self._sessions[call_id] = new
            return True

    def remove(self, call_id: str) -> CallSession | None:
        """Atomically take the session out of the store."""
        with self._mutex:
            return self._sessions.pop(call_id, None)

    def __contains__(self, call_id: object) -> bool:
        with self._mutex:
            return call_id in self._sessions

    def __len__(self) -> int:
        with self._mutex:
            return len(self._sessions)
