"""
Per-key mutual exclusion.

Every check-then-act on an agent or task runs while holding the lock for
that entity's id, so two concurrent molts cannot both pass eligibility and
two concurrent claims cannot both observe an open task.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class KeyedLocks:
    """One re-entrant lock per key, created on first use."""

    def __init__(self) -> None:
        self._locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self._lock_for(key)
        with lock:
            yield

    def __len__(self) -> int:
        return len(self._locks)
