"""Crawl session: one request, one dispatcher, guaranteed teardown.

Lifecycle:
  created -> running -> finalizing -> torn_down
Errors raised while running or finalizing move the session to ``errored``
before the error is re-raised; ``close()`` still releases every resource.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from crawl_scrape.aggregator import finalize
from crawl_scrape.config import Settings
from crawl_scrape.dispatcher import FetchDispatcher
from crawl_scrape.fetcher import Fetcher, HttpxFetcher
from crawl_scrape.handlers import get_handler
from crawl_scrape.models import CrawlOutcome, CrawlRequest, FetchLimits

logger = logging.getLogger(__name__)

FetcherFactory = Callable[[Settings, FetchLimits], Fetcher]


class SessionState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    FINALIZING = "finalizing"
    ERRORED = "errored"
    TORN_DOWN = "torn_down"


class CrawlSession:
    """Owns the dispatcher (worker pool + fetcher) for a single crawl request.

    Resources are acquired in the constructor and released by :meth:`close`,
    which the context manager calls on every exit path.
    """

    def __init__(
        self,
        request: CrawlRequest,
        settings: Settings | None = None,
        fetcher_factory: FetcherFactory | None = None,
    ) -> None:
        self.request = request
        self.settings = settings if settings is not None else Settings.from_env()
        self.limits = FetchLimits.for_request(request, self.settings)
        self.handler = get_handler(request.operation, self.settings)
        self.state = SessionState.CREATED
        self.error: BaseException | None = None

        factory = fetcher_factory or HttpxFetcher
        fetcher = factory(self.settings, self.limits)
        try:
            self._dispatcher = FetchDispatcher(self.limits, fetcher, self.settings)
        except Exception:
            fetcher.close()
            raise
        self._closed = False

    def __enter__(self) -> CrawlSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def run(self) -> CrawlOutcome:
        """Run the crawl once and return its outcome."""
        if self.state is not SessionState.CREATED:
            raise RuntimeError(f"Crawl session cannot run from state {self.state.value!r}")

        logger.info(
            "Starting %s for %s (max %d requests, concurrency %d)",
            self.request.operation.value,
            self.request.url,
            self.limits.max_total_requests,
            self.limits.max_concurrency,
        )
        self.state = SessionState.RUNNING
        try:
            report = self._dispatcher.run([self.request.url], self.handler.handle)
            self.state = SessionState.FINALIZING
            return finalize(
                report.results,
                self.request.operation,
                url=self.request.url,
                errors=report.errors,
            )
        except BaseException as exc:
            self.state = SessionState.ERRORED
            self.error = exc
            raise

    def close(self) -> None:
        """Release the dispatcher's resources. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._dispatcher.close()
        except Exception as exc:
            # Never let a teardown failure replace the crawl's own result or error.
            logger.warning("Teardown failed for %s: %s", self.request.url, exc)
        self.state = SessionState.TORN_DOWN


def crawl(
    request: CrawlRequest,
    settings: Settings | None = None,
    fetcher_factory: FetcherFactory | None = None,
) -> CrawlOutcome:
    """Run one crawl request in its own session."""
    with CrawlSession(request, settings=settings, fetcher_factory=fetcher_factory) as session:
        return session.run()
