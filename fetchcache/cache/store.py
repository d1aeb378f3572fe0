"""
Keyed entry storage with hit/miss counters.

Storage and counters share one lock so a stats snapshot never observes a
half-applied insert or sweep. The lock is only held for dictionary work.
"""
import threading
import logging
from typing import Dict, List, Optional

from .core import CacheEntry, CacheStats

logger = logging.getLogger("cache.store")


class EntryStore:
    """
    Thread-safe map of key -> CacheEntry.

    Capacity policy: when max_entries is set and a new key would overflow
    it, the entry with the earliest created_at is evicted. Ties go to the
    entry inserted first.
    """

    def __init__(self, max_entries: Optional[int] = None):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.RLock()
        self._max_entries = max_entries
        self._hits = 0
        self._misses = 0

    @property
    def max_entries(self) -> Optional[int]:
        return self._max_entries

    def lookup(self, key: str, now: float) -> Optional[bytes]:
        """
        Return the payload for a live entry and count a hit.

        Expired entries are left for the evictor; they are simply not served.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now):
                return None
            self._hits += 1
            return entry.payload

    def insert(self, key: str, entry: CacheEntry, count_miss: bool = True) -> List[str]:
        """
        Store an entry, replacing any previous one for the key.

        Returns:
            Keys evicted to stay within max_entries
        """
        evicted: List[str] = []
        with self._lock:
            # Re-inserting moves the key to the back of the insertion order
            replaced = self._entries.pop(key, None) is not None
            if not replaced and self._max_entries is not None:
                while len(self._entries) >= self._max_entries:
                    oldest = min(self._entries, key=lambda k: self._entries[k].created_at)
                    del self._entries[oldest]
                    evicted.append(oldest)
            self._entries[key] = entry
            if count_miss:
                self._misses += 1

        if evicted:
            logger.info(f"Capacity eviction: {evicted} (max_entries={self._max_entries})")
        return evicted

    def record_hit(self) -> None:
        with self._lock:
            self._hits += 1

    def record_miss(self) -> None:
        with self._lock:
            self._misses += 1

    def evict_expired(self, now: float) -> int:
        """
        Remove every entry with now > expires_at.

        Returns:
            Number of entries removed
        """
        with self._lock:
            if not self._entries:
                return 0
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        """Drop all entries. Counters are kept."""
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def get(self, key: str) -> Optional[CacheEntry]:
        """Raw entry access without hit accounting or expiry checks."""
        with self._lock:
            return self._entries.get(key)

    def snapshot(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, entries=len(self._entries))

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
