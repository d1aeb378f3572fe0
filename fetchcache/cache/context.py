"""
Cancellation and deadline propagation for cache callers.

A FetchContext is handed to Cache.fetch() and on to the fetcher. Every
blocking point in the cache waits through FetchContext.wait_for(), so a
caller can give up on its own without disturbing anyone else.
"""
import threading
import time
import weakref
from concurrent.futures import FIRST_COMPLETED, Future, wait
from typing import Any, Optional

from .exceptions import CanceledError, DeadlineExceededError, InvalidArgumentError


class FetchContext:
    """
    Carries a cancel signal and an optional deadline.

    Usage:
        ctx = FetchContext(timeout=5.0)
        payload = cache.fetch(url, ctx=ctx)

        # from another thread
        ctx.cancel()
    """

    def __init__(self, timeout: Optional[float] = None, parent: Optional["FetchContext"] = None):
        """
        Args:
            timeout: Seconds from now until the deadline; None for no deadline
            parent: Context whose cancellation and deadline this one inherits
        """
        if timeout is not None and timeout < 0:
            raise InvalidArgumentError(f"timeout must be >= 0, got {timeout}")

        deadline = time.monotonic() + timeout if timeout is not None else None
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)

        self._deadline = deadline
        self._lock = threading.Lock()
        self._cancelled = False
        # Resolved on cancel so waiters can block on it next to their result
        self._done: Future = Future()
        # Weak so a long-lived parent does not keep every derived child alive
        self._children: "weakref.WeakSet[FetchContext]" = weakref.WeakSet()

        # Strong upward link keeps intermediate contexts alive while a descendant is in use
        self._parent = parent
        if parent is not None:
            parent._adopt(self)

    @classmethod
    def background(cls) -> "FetchContext":
        """A context that is never cancelled and never expires."""
        return cls()

    def with_timeout(self, timeout: float) -> "FetchContext":
        """Derive a child context with a tighter deadline."""
        return FetchContext(timeout=timeout, parent=self)

    @property
    def deadline(self) -> Optional[float]:
        """Monotonic deadline, or None."""
        return self._deadline

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def _adopt(self, child: "FetchContext") -> None:
        with self._lock:
            if not self._cancelled:
                self._children.add(child)
                return
        child.cancel()

    def cancel(self) -> None:
        """Cancel the context and every context derived from it. Safe to call more than once."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            children = list(self._children)
            self._children.clear()
        self._done.set_result(None)
        for child in children:
            child.cancel()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline (never negative), or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def error(self) -> Optional[Exception]:
        """The error this context would raise now, if any."""
        if self._cancelled:
            return CanceledError()
        if self.expired:
            return DeadlineExceededError()
        return None

    def check(self) -> None:
        """Raise if the context is cancelled or past its deadline."""
        err = self.error()
        if err is not None:
            raise err

    def wait_for(self, future: Future) -> Any:
        """
        Block until future resolves, the context is cancelled, or the deadline passes.

        Returns:
            The future's result

        Raises:
            CanceledError / DeadlineExceededError: the context ended first
            Exception: whatever the future raised
        """
        self.check()
        wait([future, self._done], timeout=self.remaining(), return_when=FIRST_COMPLETED)

        if future.done():
            return future.result()
        if self._cancelled:
            raise CanceledError()
        raise DeadlineExceededError()

    def __repr__(self) -> str:
        return (
            f"FetchContext(cancelled={self._cancelled}, "
            f"remaining={self.remaining()})"
        )
