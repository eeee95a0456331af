"""
TTL + LRU-style cache for knowledge-base query results.

Uses an OrderedDict so the oldest entry can be evicted in O(1) when the
cache is full. Entries expire after ttl_seconds, checked on read.

clear() bumps a generation counter. A caller that started a query before
the clear passes the generation it observed to put(); the stale result is
then dropped instead of re-populating the cache.
"""

import logging
import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, Tuple, TypeVar

from shared_memory.errors import InvalidInputError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueryCache(Generic[T]):
    """
    Bounded query cache with time-based expiry.

    Args:
        ttl_seconds: Lifetime of an entry
        max_entries: Capacity; the oldest entry is evicted beyond it
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise InvalidInputError(f"ttl_seconds must be positive, got {ttl_seconds}")
        if max_entries <= 0:
            raise InvalidInputError(f"max_entries must be positive, got {max_entries}")

        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Hashable, Tuple[float, T]]" = OrderedDict()
        self._generation = 0

        # Stats
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def generation(self) -> int:
        return self._generation

    def get(self, key: Hashable) -> Optional[T]:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None

        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            del self._entries[key]
            self.misses += 1
            logger.debug(f"Cache entry expired: {key!r}")
            return None

        self.hits += 1
        return value

    def put(self, key: Hashable, value: T, generation: Optional[int] = None) -> bool:
        """
        Store a value.

        Args:
            key: Cache key
            value: Value to store
            generation: Generation observed when the value was computed. If the
                cache has been cleared since, the value is discarded.

        Returns:
            True if the value was stored
        """
        if generation is not None and generation != self._generation:
            logger.debug(f"Discarding stale cache entry for {key!r}")
            return False

        self._entries.pop(key, None)
        self._entries[key] = (self._clock(), value)

        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug(f"Evicted oldest cache entry: {evicted!r}")
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._generation += 1

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [
            key
            for key, (stored_at, _) in self._entries.items()
            if now - stored_at >= self.ttl_seconds
        ]
        for key in expired:
            del self._entries[key]
        return len(expired)
