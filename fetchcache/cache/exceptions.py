"""
Cache error taxonomy.
"""
from typing import Optional


class CacheError(Exception):
    """Base class for all cache errors."""
    pass


class InvalidArgumentError(CacheError, ValueError):
    """Raised for bad TTL overrides or option values. Nothing is mutated."""
    pass


class ClosedCacheError(CacheError):
    """Raised by fetch() once the cache has been closed."""

    def __init__(self, message: str = "cache is closed"):
        super().__init__(message)


class CanceledError(CacheError):
    """Raised when the caller's context was cancelled."""

    def __init__(self, message: str = "context canceled"):
        super().__init__(message)


class DeadlineExceededError(CacheError, TimeoutError):
    """Raised when the caller's context deadline passed."""

    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)


class FetchFailureError(CacheError):
    """
    Raised when the fetcher failed for the leader of a coalescing group.

    The same instance is delivered to the leader and every waiter.
    """

    def __init__(self, key: str, cause: Optional[BaseException] = None):
        self.key = key
        self.cause = cause
        super().__init__(f"fetch failed for {key}: {cause}")
