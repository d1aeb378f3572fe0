"""
Main cache orchestration: TTL storage, request coalescing and background eviction.
"""
import threading
import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Sequence, Union

from .core import CacheEntry, CacheStats
from .context import FetchContext
from .coalescer import RequestCoalescer
from .evictor import Evictor
from .exceptions import (
    CanceledError,
    ClosedCacheError,
    DeadlineExceededError,
    FetchFailureError,
    InvalidArgumentError,
)
from .store import EntryStore

if TYPE_CHECKING:
    from config.settings import Settings
    from fetchcache.fetcher import Fetcher

logger = logging.getLogger("cache.manager")

DEFAULT_CLEANUP_INTERVAL = 60.0

Duration = Union[int, float, timedelta]


def _to_seconds(value: Any, name: str) -> float:
    """Normalize a positive duration (seconds or timedelta) to float seconds."""
    if isinstance(value, timedelta):
        seconds = value.total_seconds()
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        raise InvalidArgumentError(f"{name} must be a number of seconds or timedelta, got {value!r}")
    if seconds <= 0:
        raise InvalidArgumentError(f"{name} must be positive, got {value!r}")
    return seconds


def _to_bytes(payload: Any) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, (bytearray, memoryview)):
        return bytes(payload)
    raise TypeError(f"fetcher returned {type(payload).__name__}, expected bytes")


@dataclass(frozen=True)
class CacheOptions:
    """
    Tunables for a Cache.

    Build directly or chain the with_* helpers:
        CacheOptions().with_cleanup_interval(1).with_max_entries(500)
    """
    cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL
    max_entries: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(
            self, "cleanup_interval", _to_seconds(self.cleanup_interval, "cleanup_interval")
        )
        if self.max_entries is not None and (
            not isinstance(self.max_entries, int)
            or isinstance(self.max_entries, bool)
            or self.max_entries < 1
        ):
            raise InvalidArgumentError(f"max_entries must be a positive int, got {self.max_entries!r}")

    def with_cleanup_interval(self, interval: Duration) -> "CacheOptions":
        return replace(self, cleanup_interval=interval)

    def with_max_entries(self, max_entries: Optional[int]) -> "CacheOptions":
        return replace(self, max_entries=max_entries)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "CacheOptions":
        return cls(
            cleanup_interval=settings.cache_cleanup_interval_seconds,
            max_entries=settings.cache_max_entries,
        )


class Cache:
    """
    In-process cache for fetched payloads with:
    - Per-entry TTL, checked lazily on every read
    - Request coalescing: one fetcher call per key per miss, shared by all callers
    - Background sweep of expired entries
    - Optional capacity bound with oldest-first eviction
    - Hit/miss accounting consistent with storage
    """

    def __init__(
        self,
        default_ttl: Duration,
        options: Optional[CacheOptions] = None,
        fetcher: Optional["Fetcher"] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache and start its evictor.

        Args:
            default_ttl: TTL for entries fetched without an override
            options: Cleanup cadence and capacity bound
            fetcher: Retrieval backend; an HTTPFetcher owned by the cache if omitted
            clock: Monotonic time source in seconds
        """
        self._default_ttl = _to_seconds(default_ttl, "default_ttl")
        self._options = options or CacheOptions()
        self._clock = clock

        # Closed along with the cache only when built here
        self._owns_fetcher = fetcher is None
        if fetcher is None:
            # Import here to avoid pulling requests in for custom fetchers
            from fetchcache.fetcher import HTTPFetcher
            fetcher = HTTPFetcher()
        self._fetcher = fetcher

        self._store = EntryStore(max_entries=self._options.max_entries)
        self._coalescer = RequestCoalescer()

        self._closed = threading.Event()
        self._close_lock = threading.Lock()

        self._evictor = Evictor(self._store, self._options.cleanup_interval, clock=clock)
        self._evictor.start()

        logger.info(
            f"Cache started (ttl={self._default_ttl}s, "
            f"cleanup={self._options.cleanup_interval}s, "
            f"max_entries={self._options.max_entries})"
        )

    @classmethod
    def from_settings(
        cls,
        settings: Optional["Settings"] = None,
        fetcher: Optional["Fetcher"] = None,
    ) -> "Cache":
        """Build a cache (and, unless given, an HTTPFetcher) from Settings."""
        if settings is None:
            from config.settings import settings
        owns_fetcher = fetcher is None
        if owns_fetcher:
            from fetchcache.fetcher import HTTPFetcher
            fetcher = HTTPFetcher.from_settings(settings)
        cache = cls(
            default_ttl=settings.cache_default_ttl_seconds,
            options=CacheOptions.from_settings(settings),
            fetcher=fetcher,
        )
        cache._owns_fetcher = owns_fetcher
        return cache

    @property
    def default_ttl(self) -> float:
        return self._default_ttl

    @property
    def options(self) -> CacheOptions:
        return self._options

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def fetch(
        self,
        key: str,
        ttl_override: Union[None, Duration, Sequence[Duration]] = None,
        ctx: Optional[FetchContext] = None,
    ) -> bytes:
        """
        Return the payload for key, from cache or from the fetcher.

        Args:
            key: Resource identifier passed to the fetcher
            ttl_override: TTL for the entry stored by this call's miss
            ctx: Cancellation/deadline for this caller

        Returns:
            The cached or freshly fetched payload

        Raises:
            InvalidArgumentError: more than one or an invalid ttl_override
            ClosedCacheError: the cache has been closed
            FetchFailureError: the fetcher failed for this key's leader
            CanceledError / DeadlineExceededError: ctx ended while waiting
        """
        if not isinstance(key, str):
            raise InvalidArgumentError(f"key must be a string, got {type(key).__name__}")
        ttl = self._resolve_ttl(ttl_override)
        if self._closed.is_set():
            raise ClosedCacheError()

        payload = self._store.lookup(key, self._clock())
        if payload is not None:
            logger.debug(f"CACHE HIT: {key}")
            return payload

        ctx = ctx or FetchContext.background()
        payload, is_leader = self._coalescer.get_or_fetch(
            key,
            lambda: self._lead_fetch(ctx, key, ttl),
            ctx,
        )
        if not is_leader:
            # Served by another caller's fetch
            self._store.record_hit()
            logger.debug(f"CACHE HIT (coalesced): {key}")
        return payload

    def _resolve_ttl(self, ttl_override: Any) -> float:
        if ttl_override is None:
            return self._default_ttl
        if isinstance(ttl_override, (list, tuple)):
            if len(ttl_override) > 1:
                raise InvalidArgumentError(
                    f"only a single ttl_override is allowed, got {len(ttl_override)}"
                )
            if not ttl_override:
                return self._default_ttl
            ttl_override = ttl_override[0]
        return _to_seconds(ttl_override, "ttl_override")

    def _lead_fetch(self, ctx: FetchContext, key: str, ttl: float) -> bytes:
        """Run by the coalescing leader only."""
        # A previous group may have stored the key since our fast-path lookup
        payload = self._store.lookup(key, self._clock())
        if payload is not None:
            logger.debug(f"CACHE HIT (after coalesce): {key}")
            return payload

        logger.info(f"CACHE MISS: {key}")
        future = None
        try:
            ctx.check()
            future = self._start_fetch(ctx, key)
            payload = _to_bytes(ctx.wait_for(future))
        except (CanceledError, DeadlineExceededError) as e:
            if future is not None:
                future.cancel()
            self._store.record_miss()
            logger.info(f"Fetch abandoned for {key}: {e}")
            raise
        except Exception as e:
            if future is not None:
                future.cancel()
            self._store.record_miss()
            logger.warning(f"Fetch failed for {key}: {e}")
            raise FetchFailureError(key, e) from e

        if self._closed.is_set():
            self._store.record_miss()
            logger.debug(f"Cache closed during fetch, not storing {key}")
            return payload

        self._store.insert(key, CacheEntry.create(payload, self._clock(), ttl))
        return payload

    def _start_fetch(self, ctx: FetchContext, key: str) -> Future:
        """
        Run the fetcher on its own daemon thread so the leader can stop
        waiting on cancel and a hung key never holds up another key.
        """
        future: Future = Future()
        thread = threading.Thread(
            target=self._run_fetch,
            args=(future, ctx, key),
            name="cache-fetch",
            daemon=True,
        )
        thread.start()
        return future

    def _run_fetch(self, future: Future, ctx: FetchContext, key: str) -> None:
        # Cancelled by a leader that stopped waiting before we got here
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(self._fetcher.fetch(ctx, key))
        except BaseException as e:
            future.set_exception(e)

    def stats(self) -> CacheStats:
        """Consistent (hits, misses, entries) snapshot."""
        return self._store.snapshot()

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        snapshot = self._store.snapshot()
        return {
            "entries": snapshot.entries,
            "hits": snapshot.hits,
            "misses": snapshot.misses,
            "hit_rate_percent": snapshot.hit_rate_percent,
            "max_entries": self._options.max_entries,
            "closed": self.closed,
            "coalescer": self._coalescer.get_stats(),
        }

    def invalidate(self, key: str) -> bool:
        """
        Invalidate a specific cache entry.

        Returns:
            True if entry was found and removed
        """
        removed = self._store.delete(key)
        if removed:
            logger.info(f"Invalidated cache: {key}")
        return removed

    def clear(self) -> int:
        """
        Clear all cache entries. Hit/miss counters are kept.

        Returns:
            Number of entries cleared
        """
        count = self._store.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def close(self) -> None:
        """
        Stop the evictor and close the fetcher if the cache built it.

        Idempotent. Outstanding fetches are not waited for; new fetches
        raise ClosedCacheError.
        """
        with self._close_lock:
            if self._closed.is_set():
                return
            self._closed.set()

        self._evictor.stop()
        if self._owns_fetcher:
            try:
                self._fetcher.close()
            except Exception as e:
                logger.warning(f"Error closing fetcher: {e}")
        logger.info("Cache closed")

    def __enter__(self) -> "Cache":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
