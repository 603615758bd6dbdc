"""Shared fixtures for Crawl and Scrape tests."""

from __future__ import annotations

import threading
import time

import pytest

from crawl_scrape.config import Settings
from crawl_scrape.fetcher import FetchError, FetchResponse, parse_html
from crawl_scrape.urls import strip_cache_buster


@pytest.fixture()
def settings() -> Settings:
    """Default limits, but no retries or backoff so failures are immediate."""
    return Settings(max_request_retries=0, retry_backoff=0.0)


SAMPLE_HTML = """\
<!DOCTYPE html>
<html>
<head>
    <title>Test Page</title>
    <script>var x = 1; console.log("hello");</script>
    <style>body { color: red; }</style>
</head>
<body>
    <nav><a href="/home">Home</a><a href="/about">About</a></nav>
    <div class="content">
        <h1>Hello World</h1>
        <p>This is a test page with <a href="https://example.com/other">a link</a>.</p>
        <a href="/about">About again</a>
        <a href="%%%">Broken</a>
        <a>No href</a>
    </div>
    <script>document.write("hidden");</script>
    <!-- This is a comment -->
</body>
</html>
"""


class FakeFetcher:
    """In-memory :class:`~crawl_scrape.fetcher.Fetcher`.

    ``pages`` maps URLs (without the cache-busting token) to HTML strings or
    to exceptions to raise. Unknown URLs behave like a refused connection.
    """

    def __init__(self, pages: dict | None = None, *, delay: float = 0.0) -> None:
        self.pages = pages or {}
        self.delay = delay
        self.calls: list[str] = []
        self.close_calls = 0
        self._lock = threading.Lock()

    def fetch(self, url: str, timeout: float) -> FetchResponse:
        with self._lock:
            self.calls.append(url)
        if self.delay:
            time.sleep(self.delay)
        page = self.pages.get(strip_cache_buster(url))
        if page is None:
            raise FetchError(f"Connection refused: {url}", url=url, retryable=True)
        if isinstance(page, Exception):
            raise page
        return FetchResponse(url=url, final_url=url, status_code=200, content=page.encode("utf-8"))

    def parse_document(self, body: str):
        return parse_html(body)

    def close(self) -> None:
        self.close_calls += 1


def factory_for(fetcher):
    """Fetcher factory that always hands out *fetcher*."""
    return lambda _settings, _limits: fetcher


@pytest.fixture()
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher({"https://example.com/": SAMPLE_HTML})
