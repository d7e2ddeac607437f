"""
TTL cache for fetched collections.

Entries expire `ttl_seconds` after they were written, or when they are
invalidated explicitly. Expired entries are dropped on read.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar


T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    value: T
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache(Generic[T]):
    """Keyed cache with a single TTL for every entry."""

    def __init__(
        self,
        ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def get(self, key: str) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: T) -> None:
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + self._ttl)

    def replace(self, key: str, value: T) -> bool:
        """
        Swap the value of a live entry without extending its lifetime.

        Missing or expired keys are left absent, so a partial value is
        never cached as if it had been fetched. Returns whether the
        entry was replaced.
        """
        if key not in self:
            return False
        self._entries[key].value = value
        return True

    def invalidate(self, key: str) -> bool:
        """Drop `key`. Returns whether an entry was present."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
