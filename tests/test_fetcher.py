"""
Tests for the HTTP fetcher, against a local HTTP server.
"""
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from unittest import mock

import pytest
import requests

from fetchcache.cache import Cache, CacheOptions, CanceledError, FetchContext, FetchFailureError
from fetchcache.fetcher import FunctionFetcher, HTTPFetcher
from config.settings import Settings


# =============================================================================
# Test server
# =============================================================================

class _Handler(BaseHTTPRequestHandler):
    routes = {
        "/test": (200, b"Hello from test server!"),
        "/missing": (404, b"not found"),
    }

    def do_GET(self):
        self.server.requests.append((self.path, self.headers.get("Content-Type")))
        status, body = self.routes.get(self.path, (404, b""))
        self.send_response(status)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def server():
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.requests = []
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield httpd
    httpd.shutdown()
    httpd.server_close()
    thread.join(timeout=5)


def _url(server, path):
    host, port = server.server_address[:2]
    return f"http://{host}:{port}{path}"


def _local_fetcher(**kwargs):
    session = requests.Session()
    # Ignore proxy environment variables for the loopback server
    session.trust_env = False
    return HTTPFetcher(timeout=5, session=session, **kwargs)


# =============================================================================
# HTTPFetcher
# =============================================================================

def test_get_returns_body_and_sends_content_type(server):
    fetcher = _local_fetcher()

    body = fetcher.fetch(FetchContext(), _url(server, "/test"))

    assert body == b"Hello from test server!"
    assert server.requests == [("/test", "text/html")]


def test_custom_content_type(server):
    fetcher = _local_fetcher(content_type="application/json")
    fetcher.fetch(FetchContext(), _url(server, "/test"))

    assert server.requests[0][1] == "application/json"


def test_http_error_status_raises(server):
    with pytest.raises(requests.HTTPError):
        _local_fetcher().fetch(FetchContext(), _url(server, "/missing"))


def test_cancelled_context_skips_the_request(server):
    ctx = FetchContext()
    ctx.cancel()

    with pytest.raises(CanceledError):
        _local_fetcher().fetch(ctx, _url(server, "/test"))
    assert server.requests == []


def test_timeout_is_capped_by_context_deadline():
    session = mock.Mock()
    session.get.return_value.content = b"ok"
    fetcher = HTTPFetcher(timeout=30, session=session)

    fetcher.fetch(FetchContext(timeout=2), "http://example.invalid/")

    timeout = session.get.call_args.kwargs["timeout"]
    assert 0 < timeout <= 2


def test_connection_errors_are_retried():
    session = mock.Mock()
    ok = mock.Mock(content=b"ok")
    session.get.side_effect = [requests.ConnectionError("refused"), ok]
    fetcher = HTTPFetcher(retry_attempts=2, session=session)

    assert fetcher.fetch(FetchContext(), "http://example.invalid/") == b"ok"
    assert session.get.call_count == 2


def test_http_errors_are_not_retried():
    session = mock.Mock()
    session.get.return_value.raise_for_status.side_effect = requests.HTTPError("500")
    fetcher = HTTPFetcher(retry_attempts=3, session=session)

    with pytest.raises(requests.HTTPError):
        fetcher.fetch(FetchContext(), "http://example.invalid/")
    assert session.get.call_count == 1


def test_single_attempt_by_default():
    session = mock.Mock()
    session.get.side_effect = requests.ConnectionError("refused")

    with pytest.raises(requests.ConnectionError):
        HTTPFetcher(session=session).fetch(FetchContext(), "http://example.invalid/")
    assert session.get.call_count == 1


def test_from_settings_reads_http_options():
    settings = Settings(
        http_timeout_seconds=7,
        http_content_type="text/plain",
        http_retry_attempts=4,
    )
    fetcher = HTTPFetcher.from_settings(settings)

    assert fetcher._timeout == 7
    assert fetcher._content_type == "text/plain"
    assert fetcher._retry_attempts == 4
    fetcher.close()


def test_function_fetcher_passes_ctx_and_key():
    seen = []
    fetcher = FunctionFetcher(lambda ctx, key: seen.append((ctx, key)) or b"v")
    ctx = FetchContext()

    assert fetcher.fetch(ctx, "k") == b"v"
    assert seen == [(ctx, "k")]


# =============================================================================
# Cache over HTTP
# =============================================================================

def test_cache_serves_repeat_requests_from_memory(server):
    cache = Cache(180, options=CacheOptions(cleanup_interval=3600), fetcher=_local_fetcher())
    try:
        url = _url(server, "/test")
        first = cache.fetch(url)
        second = cache.fetch(url)

        assert first == second == b"Hello from test server!"
        assert len(server.requests) == 1
        _, _, entries = cache.stats()
        assert entries == 1
    finally:
        cache.close()


def test_cache_wraps_http_errors(server):
    cache = Cache(180, fetcher=_local_fetcher())
    try:
        url = _url(server, "/missing")
        with pytest.raises(FetchFailureError) as exc_info:
            cache.fetch(url)

        assert exc_info.value.key == url
        assert isinstance(exc_info.value.cause, requests.HTTPError)
        assert cache.stats().entries == 0
    finally:
        cache.close()
