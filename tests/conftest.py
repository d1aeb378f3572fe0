"""
Shared fixtures: a controllable clock and fetchers with call accounting.
"""
import threading
import time
from collections import Counter
from typing import Callable, Optional

import pytest

from fetchcache.cache import Cache, CacheOptions


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingFetcher:
    """Returns b"payload:<key>" and counts calls per key."""

    def __init__(self, delay: float = 0.0, error: Optional[Exception] = None):
        self.calls: Counter = Counter()
        self.delay = delay
        self.error = error
        self._lock = threading.Lock()

    @property
    def total_calls(self) -> int:
        with self._lock:
            return sum(self.calls.values())

    def fetch(self, ctx, key: str) -> bytes:
        with self._lock:
            self.calls[key] += 1
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return f"payload:{key}".encode()


class GatedFetcher(CountingFetcher):
    """Blocks inside fetch() until release(), so tests control overlap."""

    def __init__(self, error: Optional[Exception] = None):
        super().__init__(error=error)
        self.started = threading.Event()
        self._gate = threading.Event()

    def release(self) -> None:
        self._gate.set()

    def fetch(self, ctx, key: str) -> bytes:
        with self._lock:
            self.calls[key] += 1
        self.started.set()
        self._gate.wait(timeout=5)
        if self.error is not None:
            raise self.error
        return f"payload:{key}".encode()


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll predicate until it holds or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def waiter_count(cache: Cache) -> int:
    return cache.get_stats()["coalescer"]["waiters"]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fetcher():
    return CountingFetcher()


@pytest.fixture
def gated_fetcher():
    fetcher = GatedFetcher()
    yield fetcher
    fetcher.release()


@pytest.fixture
def make_cache(clock):
    """Factory for caches that are closed after the test."""
    created = []

    def _make(fetcher, default_ttl=60, options=None):
        options = options or CacheOptions(cleanup_interval=3600)
        cache = Cache(default_ttl, options=options, fetcher=fetcher, clock=clock)
        created.append(cache)
        return cache

    yield _make

    for cache in created:
        cache.close()


@pytest.fixture
def cache(make_cache, fetcher):
    return make_cache(fetcher)
