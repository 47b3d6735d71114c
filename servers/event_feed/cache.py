"""Short-lived in-memory cache for ranked feed results."""

import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    data: T
    cache_key: str
    written_at: float


def make_cache_key(lat: float, lng: float, radius_km: float) -> str:
    """Fingerprint of a location query; ~1km of coordinate jitter shares a key."""
    return f"{lat:.2f},{lng:.2f},{radius_km:g}"


class TTLCache(Generic[T]):
    """Last-write-wins cache with a fixed time-to-live.

    Expired entries are kept (up to ``max_entries``) so a caller can fall
    back to stale data when every provider is unavailable.
    """

    def __init__(
        self,
        ttl_seconds: float = 15 * 60,
        max_entries: int = 32,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry[T]] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def is_fresh(self, entry: CacheEntry[T]) -> bool:
        return self._clock() - entry.written_at < self.ttl_seconds

    def get(self, key: str, allow_stale: bool = False) -> Optional[T]:
        """Return the cached value, or None if missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if allow_stale or self.is_fresh(entry):
            return entry.data
        return None

    def set(self, key: str, data: T) -> None:
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(data=data, cache_key=key, written_at=self._clock())
        while len(self._entries) > self.max_entries:
            # dicts keep insertion order, so the first key is the oldest write
            del self._entries[next(iter(self._entries))]

    def clear(self) -> None:
        self._entries.clear()
