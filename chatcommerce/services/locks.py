"""Per-key mutual exclusion for conversation state."""

import threading
from contextlib import contextmanager
from typing import Hashable, Iterator


class KeyedLocks:
    """Hands out one lock per key; idle keys are released so the map stays small."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.Lock] = {}
        self._holders: dict[Hashable, int] = {}

    @contextmanager
    def lock(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            key_lock = self._locks.get(key)
            if key_lock is None:
                key_lock = threading.Lock()
                self._locks[key] = key_lock
            self._holders[key] = self._holders.get(key, 0) + 1

        key_lock.acquire()
        try:
            yield
        finally:
            key_lock.release()
            with self._guard:
                remaining = self._holders[key] - 1
                if remaining:
                    self._holders[key] = remaining
                else:
                    del self._holders[key]
                    del self._locks[key]

    def active_keys(self) -> int:
        with self._guard:
            return len(self._locks)
