"""HTTP fetch capability: one httpx client per crawl, BeautifulSoup parsing."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from bs4 import BeautifulSoup

from crawl_scrape.config import Settings
from crawl_scrape.models import FetchLimits

logger = logging.getLogger(__name__)

SUPPORTED_MIME_TYPES = frozenset(
    {"text/html", "application/xhtml+xml", "text/xml", "application/xml"}
)
RETRYABLE_STATUS_CODES = frozenset({408, 429})


class FetchError(Exception):
    """Raised when a page cannot be fetched."""

    def __init__(self, message: str, *, url: str | None = None, retryable: bool = False) -> None:
        super().__init__(message)
        self.url = url
        self.retryable = retryable


class FetchTimeoutError(FetchError):
    """Raised when a fetch exceeds its time budget."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message, url=url, retryable=True)


@dataclass(frozen=True)
class FetchResponse:
    url: str
    final_url: str
    status_code: int
    content: bytes
    encoding: str = "utf-8"
    content_type: str = ""


class Fetcher(Protocol):
    """What the dispatcher needs from the network and the markup parser."""

    def fetch(self, url: str, timeout: float) -> FetchResponse: ...

    def parse_document(self, body: str) -> Any: ...

    def close(self) -> None: ...


def parse_html(body: str) -> BeautifulSoup:
    return BeautifulSoup(body, "html.parser")


def _mime_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


class HttpxFetcher:
    """:class:`Fetcher` backed by a pooled ``httpx.Client``.

    The client is sized to the crawl's concurrency and lives until
    :meth:`close`; the owning session guarantees that call.
    """

    def __init__(self, settings: Settings, limits: FetchLimits) -> None:
        self._client = httpx.Client(
            headers={"User-Agent": settings.user_agent},
            timeout=httpx.Timeout(limits.per_request_timeout),
            limits=httpx.Limits(
                max_connections=limits.max_concurrency,
                max_keepalive_connections=limits.max_concurrency,
            ),
            follow_redirects=True,
        )

    def fetch(self, url: str, timeout: float) -> FetchResponse:
        """
        GET *url*, reading the body under a wall-clock deadline.

        httpx applies *timeout* to each connect/read phase; the deadline caps
        the whole transfer so a slow trickle cannot outlive the budget.
        """
        deadline = time.monotonic() + timeout
        try:
            with self._client.stream("GET", url, timeout=timeout) as response:
                self._check_response(url, response)
                chunks: list[bytes] = []
                for chunk in response.iter_bytes():
                    if time.monotonic() > deadline:
                        raise FetchTimeoutError(
                            f"Timed out after {timeout:.0f}s reading {url}", url=url
                        )
                    chunks.append(chunk)
                body = b"".join(chunks)
                logger.debug("Fetched %d bytes from %s", len(body), url)
                return FetchResponse(
                    url=url,
                    final_url=str(response.url),
                    status_code=response.status_code,
                    content=body,
                    encoding=response.encoding or "utf-8",
                    content_type=response.headers.get("content-type", ""),
                )
        except FetchError:
            raise
        except httpx.TimeoutException as exc:
            raise FetchTimeoutError(f"Timed out fetching {url}: {exc}", url=url) from exc
        except httpx.InvalidURL as exc:
            raise FetchError(f"Invalid URL {url}: {exc}", url=url) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch {url}: {exc}", url=url, retryable=True) from exc

    def _check_response(self, url: str, response: httpx.Response) -> None:
        status = response.status_code
        if status >= 400:
            raise FetchError(
                f"Request for {url} failed with HTTP {status}",
                url=url,
                retryable=status >= 500 or status in RETRYABLE_STATUS_CODES,
            )
        content_type = response.headers.get("content-type", "")
        if content_type and _mime_type(content_type) not in SUPPORTED_MIME_TYPES:
            raise FetchError(
                f"Unsupported content type {_mime_type(content_type)!r} for {url}", url=url
            )

    def parse_document(self, body: str) -> BeautifulSoup:
        return parse_html(body)

    def close(self) -> None:
        self._client.close()
