"""
Background sweep of expired entries.
"""
import threading
import logging
import time
from typing import Callable, Optional

from .store import EntryStore

logger = logging.getLogger("cache.evictor")


class Evictor:
    """
    Periodically removes expired entries from an EntryStore.

    Reads never depend on the sweep (expiry is also checked lazily on
    lookup); the sweep bounds memory held by keys nobody asks for again.
    """

    def __init__(
        self,
        store: EntryStore,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        join_timeout: float = 2.0,
    ):
        """
        Args:
            store: Store to sweep
            interval: Seconds between sweeps
            clock: Time source shared with the cache
            join_timeout: Max seconds stop() waits for the thread
        """
        self._store = store
        self._interval = interval
        self._clock = clock
        self._join_timeout = join_timeout
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.sweeps = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the sweep thread. No-op if already started or stopped."""
        with self._lock:
            if self._thread is not None or self._stop_event.is_set():
                return
            self._thread = threading.Thread(
                target=self._run,
                daemon=True,
                name="cache-evictor",
            )
            self._thread.start()
        logger.debug(f"Evictor started (interval={self._interval}s)")

    def stop(self) -> None:
        """Stop sweeping. Idempotent; waits at most join_timeout for the thread."""
        self._stop_event.set()
        with self._lock:
            thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._join_timeout)
            if thread.is_alive():
                logger.warning("Evictor thread did not stop within timeout")

    def sweep(self) -> int:
        """Run one sweep now. Returns the number of entries removed."""
        removed = self._store.evict_expired(self._clock())
        self.sweeps += 1
        if removed:
            logger.info(f"Evicted {removed} expired entries")
        return removed

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Eviction sweep failed: {e}")
