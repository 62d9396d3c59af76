"""
kudos.engine.locks — Per-key in-process serialization
======================================================

Wallets (``user:<id>``), posts (``post:<id>``) and loans (``loan:<id>``)
each get their own lock so that units of work on the same key run one at
a time while everything else stays parallel.  Row locks
(``SELECT … FOR UPDATE``) and wallet versioning cover the multi-process
case; these locks make the single process deterministic, including on
SQLite which has no row locks.

Thread-safe.  Lock entries are reference counted and dropped when the
last holder releases, so the registry does not grow with the user base.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from kudos.exceptions import ConcurrentModification

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.refs = 0


class KeyedLocks:
    """Registry of one re-entrant lock per string key."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.refs += 1
            return entry

    def _checkin(self, key: str) -> None:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                return
            entry.refs -= 1
            if entry.refs <= 0:
                del self._entries[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Acquire every key in sorted order; release in reverse.

        Sorted acquisition means two multi-key holders can never deadlock.
        Raises :class:`ConcurrentModification` if a lock is not obtained
        within ``timeout`` seconds.
        """
        ordered = sorted(set(keys))
        acquired: list[str] = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                if not entry.lock.acquire(timeout=self.timeout):
                    self._checkin(key)
                    logger.warning("Timed out waiting for lock %s", key)
                    raise ConcurrentModification(key, attempts=1)
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                with self._guard:
                    entry = self._entries.get(key)
                if entry is not None:
                    entry.lock.release()
                self._checkin(key)

    def active_keys(self) -> int:
        with self._guard:
            return len(self._entries)


# Module-level default instance (tests can inject their own)
_default_locks = KeyedLocks()


def get_default_locks() -> KeyedLocks:
    """Return the process-wide :class:`KeyedLocks` registry."""
    return _default_locks


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def post_key(post_id: str) -> str:
    return f"post:{post_id}"


def loan_key(loan_id: str) -> str:
    return f"loan:{loan_id}"


def borrower_key(user_id: str) -> str:
    return f"borrower:{user_id}"
