from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from orgscope.infra.config import ADMIN_SCOPE_CACHE_TTL_SECONDS, ROLE_STATEMENT_CACHE_TTL_SECONDS

Clock = Callable[[], float]


@dataclass
class _Entry:
    value: Any
    expires_at: float


class SlidingCache:
    """Process-local cache whose entries expire ``ttl_seconds`` after their last read.

    Entries are never invalidated by writes elsewhere; a hit is served as-is
    until the window lapses. Nothing is shared between processes.
    """

    def __init__(self, ttl_seconds: float, *, sliding: bool = True, clock: Clock | None = None) -> None:
        self.ttl_seconds = ttl_seconds
        self.sliding = sliding
        self._clock = clock or time.monotonic
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= now:
                del self._entries[key]
                return None
            if self.sliding:
                entry.expires_at = now + self.ttl_seconds
            return entry.value

    def set(self, key: str, value: Any) -> None:
        now = self._clock()
        with self._lock:
            self._purge_expired(now)
            self._entries[key] = _Entry(value=value, expires_at=now + self.ttl_seconds)

    def _purge_expired(self, now: float) -> None:
        # Caller holds the lock.
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def get_or_create(self, key: str, factory: Callable[[], Any]) -> Any:
        cached = self.get(key)
        if cached is not None:
            return cached
        # Factory errors propagate and leave nothing cached.
        value = factory()
        self.set(key, value)
        return value

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


admin_scope_cache = SlidingCache(ADMIN_SCOPE_CACHE_TTL_SECONDS)
role_statement_cache = SlidingCache(ROLE_STATEMENT_CACHE_TTL_SECONDS, sliding=False)
