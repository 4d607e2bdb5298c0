from __future__ import annotations

import time
from collections import OrderedDict
from threading import Lock
from typing import Callable


class SessionCache:
    """Bounded record of conversations with an established remote session.

    Entries expire ``ttl_seconds`` after they were last written. Once more than
    ``max_entries`` keys are held, the least recently used ones are evicted.
    """

    def __init__(
        self,
        *,
        max_entries: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if int(max_entries) <= 0:
            raise ValueError("max_entries must be greater than zero.")
        if float(ttl_seconds) <= 0:
            raise ValueError("ttl_seconds must be greater than zero.")
        self.max_entries = int(max_entries)
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._lock = Lock()
        self._written_at: OrderedDict[str, float] = OrderedDict()

    def contains(self, key: str) -> bool:
        with self._lock:
            written_at = self._written_at.get(key)
            if written_at is None:
                return False
            if self._clock() - written_at >= self.ttl_seconds:
                del self._written_at[key]
                return False
            self._written_at.move_to_end(key)
            return True

    def mark(self, key: str) -> None:
        with self._lock:
            self._written_at[key] = self._clock()
            self._written_at.move_to_end(key)
            while len(self._written_at) > self.max_entries:
                self._written_at.popitem(last=False)

    def forget(self, key: str) -> bool:
        with self._lock:
            return self._written_at.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._written_at.clear()

    def __len__(self) -> int:
        with self._lock:
            self._purge_expired_locked()
            return len(self._written_at)

    def _purge_expired_locked(self) -> None:
        now = self._clock()
        expired = [key for key, written_at in self._written_at.items() if now - written_at >= self.ttl_seconds]
        for key in expired:
            del self._written_at[key]
