"""
Bounded in-memory store used while the remote store is unreachable.

Only written in degraded mode; a successful remote operation never touches it.
Expired entries are dropped lazily on read. When full, the entry with the
nearest expiry is evicted first.
"""

import heapq
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from cache_common.logging import get_logger


@dataclass(frozen=True)
class CacheEntry:
    """Cache entry with serialized value and expiration."""
    key: str
    value: bytes
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class FallbackStore:
    """Thread-safe bounded map with nearest-expiry eviction."""

    def __init__(self, max_entries: int = 1000, clock: Callable[[], float] = time.monotonic):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        # (expires_at, sequence, entry); entries replaced or removed stay in
        # the heap until popped or compacted.
        self._expiry_heap: List[Tuple[float, int, CacheEntry]] = []
        self._sequence = itertools.count()
        self._lock = threading.Lock()
        self.logger = get_logger("cache.fallback")
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        """Insert or overwrite ``key``, evicting if the store is full."""
        entry = CacheEntry(key=key, value=value, expires_at=self._clock() + ttl_seconds)
        with self._lock:
            if key not in self._entries:
                while len(self._entries) >= self.max_entries:
                    evicted = self._evict_nearest_expiry()
                    if evicted is None:
                        break
                    self.logger.debug("Evicted fallback entry", key=evicted.key)
            self._entries[key] = entry
            heapq.heappush(self._expiry_heap, (entry.expires_at, next(self._sequence), entry))
            if len(self._expiry_heap) > 2 * self.max_entries:
                self._compact()

    def get(self, key: str) -> Optional[bytes]:
        """Return the stored value, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._expiry_heap.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "hits": self._hits,
                "misses": self._misses,
                "evictions": self._evictions,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_nearest_expiry(self) -> Optional[CacheEntry]:
        while self._expiry_heap:
            _, _, entry = heapq.heappop(self._expiry_heap)
            if self._entries.get(entry.key) is entry:
                del self._entries[entry.key]
                self._evictions += 1
                return entry
        return None

    def _compact(self) -> None:
        self._expiry_heap = [
            item for item in self._expiry_heap
            if self._entries.get(item[2].key) is item[2]
        ]
        heapq.heapify(self._expiry_heap)
