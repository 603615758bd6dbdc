"""Reduce per-page results into the single outcome returned to the caller."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from crawl_scrape.models import (
    CrawlOutcome,
    HtmlFound,
    HtmlPayload,
    LinksFound,
    LinksPayload,
    Operation,
    PageResult,
    TextFound,
    TextPayload,
)

logger = logging.getLogger(__name__)


def dedup_links(results: Iterable[LinksFound]) -> list[str]:
    """Flatten link lists into unique URLs, keeping first-seen order."""
    return list(dict.fromkeys(link for result in results for link in result.links))


def _single(results: Sequence[PageResult], expected: type) -> PageResult:
    if len(results) != 1:
        raise ValueError(f"Expected exactly one page result, got {len(results)}")
    result = results[0]
    if not isinstance(result, expected):
        raise ValueError(f"Expected {expected.__name__}, got {type(result).__name__}")
    return result


def finalize(
    results: Sequence[PageResult],
    operation: Operation,
    url: str,
    errors: Sequence[str] = (),
) -> CrawlOutcome:
    """
    Build the caller-facing outcome for one crawl.

    Zero results is a failure; an empty link set is still a success.
    *url* is the caller's seed URL, reported as-is in the payload.
    """
    if not results:
        reason = errors[-1] if errors else "no page was fetched"
        logger.info("Crawl of %s produced no pages: %s", url, reason)
        return CrawlOutcome(
            status="failure",
            message=f"Failed to crawl {url}: {reason}",
        )

    if operation is Operation.EXTRACT_LINKS:
        links = dedup_links(r for r in results if isinstance(r, LinksFound))
        logger.info("Found %d unique links from %d pages", len(links), len(results))
        return CrawlOutcome(
            status="success",
            message="Crawling finished",
            data=LinksPayload(url=url, links=links),
        )

    if operation is Operation.EXTRACT_TEXT:
        result = _single(results, TextFound)
        return CrawlOutcome(
            status="success",
            message="Text extraction finished",
            data=TextPayload(url=url, text=result.text),
        )

    result = _single(results, HtmlFound)
    return CrawlOutcome(
        status="success",
        message="HTML extraction finished",
        data=HtmlPayload(url=url, html=result.html),
    )
