import copy
import logging
import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional

from coach_ai.core.config import settings
from coach_ai.schemas.generation import CacheStats

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Any
    inserted_at: float
    expires_at: float
    last_accessed_at: float


class BoundedCache:
    """
    Capacity- and TTL-bounded key/value store with batched LRU eviction.

    Entries are kept in access order, so the least recently used entries sit
    at the front of the OrderedDict. Inserting a new key at capacity first
    drops expired entries, then evicts the oldest ``eviction_fraction`` of the
    capacity in one sweep. Values are deep-copied on the way in and out.
    """

    def __init__(
        self,
        capacity: int = 100,
        default_ttl: float = 300.0,
        eviction_fraction: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if not 0 < eviction_fraction <= 1:
            raise ValueError("eviction_fraction must be in (0, 1]")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.capacity = capacity
        self.default_ttl = default_ttl
        self.eviction_batch = max(1, math.ceil(capacity * eviction_fraction))
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0

    @classmethod
    def from_settings(cls, config=settings) -> "BoundedCache":
        return cls(
            capacity=config.CACHE_CAPACITY,
            default_ttl=config.CACHE_TTL_QUESTION,
            eviction_fraction=config.CACHE_EVICTION_FRACTION,
        )

    def get(self, key: str) -> Optional[Any]:
        """Return a copy of the value, or None on a miss or an expired entry."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            now = self._clock()
            if now > entry.expires_at:
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return None
            entry.last_accessed_at = now
            self._entries.move_to_end(key)
            self._hits += 1
            return copy.deepcopy(entry.value)

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        if value is None:
            raise ValueError("None cannot be cached; it signals a miss")
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        snapshot = copy.deepcopy(value)
        with self._lock:
            now = self._clock()
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self.capacity:
                self._make_room(now)
            self._entries[key] = CacheEntry(
                key=key,
                value=snapshot,
                inserted_at=now,
                expires_at=now + ttl,
                last_accessed_at=now,
            )

    def _make_room(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
        for key in expired:
            del self._entries[key]
        self._expirations += len(expired)
        if len(self._entries) < self.capacity:
            return

        evicted = 0
        while self._entries and evicted < self.eviction_batch:
            self._entries.popitem(last=False)
            evicted += 1
        self._evictions += evicted
        logger.info(f"Cache at capacity ({self.capacity}); evicted {evicted} least recently used entries")

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                capacity=self.capacity,
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                expirations=self._expirations,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and self._clock() <= entry.expires_at
