"""
In-process fetch cache with TTL expiry, request coalescing and background eviction.
"""
from .core import CacheEntry, CacheStats
from .context import FetchContext
from .exceptions import (
    CacheError,
    CanceledError,
    ClosedCacheError,
    DeadlineExceededError,
    FetchFailureError,
    InvalidArgumentError,
)
from .store import EntryStore
from .coalescer import InFlightRequest, RequestCoalescer
from .evictor import Evictor
from .manager import Cache, CacheOptions

__all__ = [
    # Core types
    "CacheEntry",
    "CacheStats",
    "FetchContext",
    # Errors
    "CacheError",
    "CanceledError",
    "ClosedCacheError",
    "DeadlineExceededError",
    "FetchFailureError",
    "InvalidArgumentError",
    # Components
    "EntryStore",
    "InFlightRequest",
    "RequestCoalescer",
    "Evictor",
    # Engine
    "Cache",
    "CacheOptions",
]
