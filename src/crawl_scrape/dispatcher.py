"""Fetch dispatcher: bounded-concurrency, bounded-volume fetch-and-handle cycles.

Workers in a thread pool fetch pages and run the page handler; the thread that
calls :meth:`FetchDispatcher.run` is the only consumer of their results, so
the accumulated sequence has a single writer.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from crawl_scrape.config import Settings
from crawl_scrape.fetcher import Fetcher, FetchError, FetchTimeoutError
from crawl_scrape.handlers import HandlerError
from crawl_scrape.models import FetchedPage, FetchLimits, PageResult
from crawl_scrape.urls import append_cache_buster

logger = logging.getLogger(__name__)

# Upper bound on how long the coordinator sleeps between timeout checks.
_POLL_INTERVAL = 0.5


class BudgetExhaustedError(Exception):
    """Raised when no request slot is left in the crawl's volume budget."""


class RequestBudget:
    """Thread-safe counter of fetch attempts, capped at ``limit``."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._used = 0
        self._lock = threading.Lock()

    @property
    def used(self) -> int:
        with self._lock:
            return self._used

    @property
    def remaining(self) -> int:
        with self._lock:
            return self.limit - self._used

    def acquire(self) -> bool:
        with self._lock:
            if self._used >= self.limit:
                return False
            self._used += 1
            return True


@dataclass
class CompletionReport:
    """Counts and results of one dispatcher run."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    results: list[PageResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


class _Slot:
    """Book-keeping for one scheduled URL, shared by its worker and the coordinator."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.started_at: float | None = None
        self.abandoned = False
        self.attempts = 0
        self.last_error: BaseException | None = None


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


class FetchDispatcher:
    """Runs fetch-and-handle cycles within a crawl's :class:`FetchLimits`.

    Owns a worker pool sized to ``limits.max_concurrency`` and the injected
    fetcher; both are released by :meth:`close`.
    """

    def __init__(self, limits: FetchLimits, fetcher: Fetcher, settings: Settings) -> None:
        self.limits = limits
        self.settings = settings
        self._fetcher = fetcher
        self._executor = ThreadPoolExecutor(
            max_workers=limits.max_concurrency,
            thread_name_prefix="crawl-fetch",
        )
        self._budget = RequestBudget(limits.max_total_requests)

    def run(
        self,
        seed_urls: Iterable[str],
        on_page: Callable[[FetchedPage], PageResult],
    ) -> CompletionReport:
        """
        Fetch every seed and pass each successful page to *on_page*.

        Fetch failures and timeouts are counted in the report, never raised.
        A :class:`HandlerError` aborts the run and propagates.
        """
        report = CompletionReport()
        pending: dict[Future, _Slot] = {}
        for seed in seed_urls:
            slot = _Slot(append_cache_buster(seed))
            pending[self._executor.submit(self._process, slot, on_page)] = slot

        timeout = self.limits.per_request_timeout
        while pending:
            done, _ = wait(pending, timeout=self._next_check(pending), return_when=FIRST_COMPLETED)
            for future in done:
                slot = pending.pop(future)
                self._collect(future, slot, report, pending)

            now = time.monotonic()
            for future, slot in list(pending.items()):
                if slot.started_at is not None and now - slot.started_at >= timeout:
                    # The worker thread cannot be interrupted; drop its eventual result.
                    slot.abandoned = True
                    future.cancel()
                    del pending[future]
                    report.failed += 1
                    message = str(
                        FetchTimeoutError(f"Request for {slot.url} exceeded {timeout:.0f}s", url=slot.url)
                    )
                    report.errors.append(message)
                    logger.warning("%s", message)

        report.attempted = self._budget.used
        logger.info(
            "Dispatch complete: %d attempted, %d succeeded, %d failed, %d skipped",
            report.attempted, report.succeeded, report.failed, report.skipped,
        )
        return report

    def _next_check(self, pending: dict[Future, _Slot]) -> float:
        now = time.monotonic()
        remaining = [
            slot.started_at + self.limits.per_request_timeout - now
            for slot in pending.values()
            if slot.started_at is not None
        ]
        return max(0.0, min(remaining + [_POLL_INTERVAL, self.limits.per_request_timeout]))

    def _collect(
        self,
        future: Future,
        slot: _Slot,
        report: CompletionReport,
        pending: dict[Future, _Slot],
    ) -> None:
        try:
            result = future.result()
        except HandlerError:
            for other in pending:
                other.cancel()
            for other_slot in pending.values():
                other_slot.abandoned = True
            raise
        except BudgetExhaustedError:
            report.skipped += 1
            logger.warning("Request budget exhausted, skipping %s", slot.url)
        except FetchError as exc:
            report.failed += 1
            report.errors.append(str(exc))
            logger.warning("Request failed: %s", exc)
        else:
            report.succeeded += 1
            report.results.append(result)

    def _process(
        self,
        slot: _Slot,
        on_page: Callable[[FetchedPage], PageResult],
    ) -> PageResult:
        """Worker body: fetch with retries, then hand the page to *on_page*."""

        def before_attempt(state: RetryCallState) -> None:
            slot.started_at = time.monotonic()

        def before_sleep(state: RetryCallState) -> None:
            slot.started_at = None
            slot.last_error = state.outcome.exception()
            logger.warning(
                "Retrying %s (attempt %d failed: %s)",
                slot.url, state.attempt_number, state.outcome.exception(),
            )

        retrying = Retrying(
            stop=stop_after_attempt(self.settings.max_request_retries + 1),
            wait=wait_exponential(multiplier=self.settings.retry_backoff, max=10),
            retry=retry_if_exception(self._should_retry),
            before=before_attempt,
            before_sleep=before_sleep,
            reraise=True,
        )
        return retrying(self._attempt, slot, on_page)

    def _should_retry(self, exc: BaseException) -> bool:
        # No retry without a free slot; tenacity then re-raises the last fetch error.
        return _is_retryable(exc) and self._budget.remaining > 0

    def _attempt(
        self,
        slot: _Slot,
        on_page: Callable[[FetchedPage], PageResult],
    ) -> PageResult:
        if slot.abandoned:
            raise FetchError(f"Request for {slot.url} was abandoned", url=slot.url)
        if not self._budget.acquire():
            if slot.attempts:
                raise FetchError(
                    f"{slot.last_error} (request budget exhausted after {slot.attempts} attempts)",
                    url=slot.url,
                ) from slot.last_error
            raise BudgetExhaustedError(slot.url)
        slot.attempts += 1

        logger.debug("Fetching %s (attempt %d)", slot.url, slot.attempts)
        response = self._fetcher.fetch(slot.url, self.limits.per_request_timeout)
        page = FetchedPage(
            requested_url=response.url,
            final_url=response.final_url,
            body=response.content,
            encoding=response.encoding,
            parser=self._fetcher.parse_document,
        )
        try:
            return on_page(page)
        except Exception as exc:
            raise HandlerError(f"Failed to process {slot.url}: {exc}") from exc

    def close(self) -> None:
        """Release the worker pool and the fetcher's connections."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._fetcher.close()
