"""
Fetchers: the retrieval side of the cache.

The cache only needs an object with fetch(ctx, key) -> bytes. HTTPFetcher
is the default and performs a plain GET of the key.
"""
import logging
from typing import TYPE_CHECKING, Callable, Optional, Protocol

import requests
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

if TYPE_CHECKING:
    from config.settings import Settings
    from fetchcache.cache.context import FetchContext

logger = logging.getLogger("fetcher")

DEFAULT_CONTENT_TYPE = "text/html"
DEFAULT_TIMEOUT_SECONDS = 30.0


class Fetcher(Protocol):
    """
    Interface for retrieval backends.

    Implementations:
    - HTTPFetcher: GET over requests (default)
    - FunctionFetcher: wraps a plain callable
    """

    def fetch(self, ctx: "FetchContext", key: str) -> bytes:
        """
        Retrieve the payload for key.

        Args:
            ctx: Caller context; implementations should respect its deadline
            key: Resource identifier (a URL for HTTPFetcher)

        Returns:
            The full payload
        """
        ...


class FunctionFetcher:
    """Adapts fn(ctx, key) -> bytes to the Fetcher interface."""

    def __init__(self, fn: Callable[["FetchContext", str], bytes]):
        self._fn = fn

    def fetch(self, ctx: "FetchContext", key: str) -> bytes:
        return self._fn(ctx, key)


class HTTPFetcher:
    """
    GET the key as a URL and return the response body.

    Retries happen here, never in the cache: with retry_attempts > 1,
    connection errors and timeouts are retried with exponential backoff.
    HTTP error statuses are not retried.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        content_type: str = DEFAULT_CONTENT_TYPE,
        retry_attempts: int = 1,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            timeout: Per-request timeout ceiling in seconds
            content_type: Value sent in the Content-Type header
            retry_attempts: Total attempts per fetch (1 = no retry)
            session: Shared requests session; one is created if omitted
        """
        self._timeout = timeout
        self._content_type = content_type
        self._retry_attempts = max(1, retry_attempts)
        self._session = session or requests.Session()
        self._retrying = Retrying(
            stop=stop_after_attempt(self._retry_attempts),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    @classmethod
    def from_settings(cls, settings: Optional["Settings"] = None) -> "HTTPFetcher":
        if settings is None:
            from config.settings import settings
        return cls(
            timeout=settings.http_timeout_seconds,
            content_type=settings.http_content_type,
            retry_attempts=settings.http_retry_attempts,
        )

    def fetch(self, ctx: "FetchContext", key: str) -> bytes:
        return self._retrying.copy()(self._get, ctx, key)

    def _get(self, ctx: "FetchContext", url: str) -> bytes:
        ctx.check()

        timeout = self._timeout
        remaining = ctx.remaining()
        if remaining is not None:
            timeout = min(timeout, remaining)

        logger.debug(f"GET {url} (timeout={timeout:.1f}s)")
        response = self._session.get(
            url,
            headers={"Content-Type": self._content_type},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.content

    def close(self) -> None:
        self._session.close()
