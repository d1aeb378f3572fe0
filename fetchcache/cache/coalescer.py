"""
Request coalescing to prevent duplicate fetcher calls.

When multiple concurrent requests ask for the same key, only one
fetch is made and all requesters share the result.
"""
import threading
import time
import logging
from concurrent.futures import Future
from typing import Dict, Optional, Callable, Any, Tuple
from dataclasses import dataclass, field

from .context import FetchContext
from .exceptions import CanceledError, DeadlineExceededError

logger = logging.getLogger("cache.coalescer")


@dataclass
class InFlightRequest:
    """Tracks an outstanding fetch for one key."""
    key: str
    future: Future = field(default_factory=Future)
    started_at: float = field(default_factory=time.monotonic)
    waiter_count: int = 0


class RequestCoalescer:
    """
    Ensures concurrent requests for the same key share one fetch.

    Pattern:
    - First request for a key becomes the leader and runs the fetch
    - Subsequent requests for the same key wait on the leader's future
    - When the fetch completes, all waiters receive the same result or error
    - Each waiter honors its own FetchContext; giving up affects nobody else

    Usage:
        coalescer = RequestCoalescer()
        result, is_leader = coalescer.get_or_fetch(
            key="https://example.com/",
            fetch_fn=lambda: fetcher.fetch(ctx, url),
            ctx=ctx,
        )
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._lock = threading.Lock()

    def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        ctx: Optional[FetchContext] = None,
    ) -> Tuple[Any, bool]:
        """
        Either join an existing in-flight request or lead a new one.

        Args:
            key: Unique key for this request
            fetch_fn: Called by the leader only
            ctx: The caller's context; waiters stop waiting when it ends

        Returns:
            (result, is_leader) - result is shared among all concurrent callers

        Raises:
            CanceledError / DeadlineExceededError: this waiter's own ctx ended
            Exception: any error from fetch_fn, raised in every caller
        """
        ctx = ctx or FetchContext.background()

        with self._lock:
            in_flight = self._in_flight.get(key)
            if in_flight is not None:
                in_flight.waiter_count += 1
                logger.debug(
                    f"Coalescing request for {key} "
                    f"(waiters: {in_flight.waiter_count})"
                )
                is_leader = False
            else:
                in_flight = InFlightRequest(key=key)
                self._in_flight[key] = in_flight
                is_leader = True
                logger.debug(f"Initiating fetch for {key}")

        if is_leader:
            try:
                in_flight.future.set_result(fetch_fn())
            except BaseException as e:
                in_flight.future.set_exception(e)
            finally:
                with self._lock:
                    if self._in_flight.get(key) is in_flight:
                        del self._in_flight[key]
            return in_flight.future.result(), True

        try:
            return ctx.wait_for(in_flight.future), False
        except (CanceledError, DeadlineExceededError) as e:
            # Gave up on our own ctx rather than receiving the leader's error
            if not (in_flight.future.done() and in_flight.future.exception() is e):
                with self._lock:
                    in_flight.waiter_count -= 1
                logger.debug(f"Waiter for {key} gave up: {e}")
            raise

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight.keys()),
                "waiters": sum(r.waiter_count for r in self._in_flight.values()),
            }
