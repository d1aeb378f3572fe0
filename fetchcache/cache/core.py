"""
Core cache data structures.
"""
from dataclasses import dataclass
from typing import NamedTuple


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached payload with the timestamps needed for TTL checks.

    Timestamps are readings of the owning cache's clock, in seconds.
    """
    payload: bytes
    created_at: float
    expires_at: float

    @classmethod
    def create(cls, payload: bytes, now: float, ttl_seconds: float) -> "CacheEntry":
        """Build an entry that expires ttl_seconds after now."""
        return cls(payload=payload, created_at=now, expires_at=now + ttl_seconds)

    @property
    def ttl_seconds(self) -> float:
        return self.expires_at - self.created_at

    def age_seconds(self, now: float) -> float:
        """Seconds since the payload was fetched."""
        return now - self.created_at

    def is_expired(self, now: float) -> bool:
        """An entry is expired strictly after its expiry instant."""
        return now > self.expires_at


class CacheStats(NamedTuple):
    """Point-in-time counters, unpackable as (hits, misses, entries)."""
    hits: int
    misses: int
    entries: int

    @property
    def hit_rate_percent(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total * 100, 1) if total > 0 else 0.0
