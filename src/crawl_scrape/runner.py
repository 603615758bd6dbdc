"""Per-item processing loop for a host that feeds crawl requests one by one."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from crawl_scrape.config import Settings
from crawl_scrape.fetcher import FetchError
from crawl_scrape.handlers import HandlerError
from crawl_scrape.models import CrawlOutcome, CrawlRequest, RequestValidationError
from crawl_scrape.session import FetcherFactory, crawl

logger = logging.getLogger(__name__)


class ItemError(Exception):
    """A failure confined to one input item."""


class ItemProcessingError(Exception):
    """Raised to the host when an item fails and continue-on-failure is off."""

    def __init__(self, message: str, *, item_index: int) -> None:
        super().__init__(f"Item {item_index}: {message}")
        self.item_index = item_index


@dataclass(frozen=True)
class ItemResult:
    index: int
    outcome: CrawlOutcome | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class OutputRecord(BaseModel):
    """One record handed back to the host."""

    json_data: dict[str, Any] = Field(alias="json")
    error: str | None = None
    paired_item: int

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def process_item(
    index: int,
    item: Mapping[str, Any],
    settings: Settings,
    fetcher_factory: FetcherFactory | None = None,
) -> ItemResult:
    """Crawl one item; any error it raises comes back in the result."""
    try:
        request = CrawlRequest.from_item(item)
        outcome = crawl(request, settings=settings, fetcher_factory=fetcher_factory)
    except (RequestValidationError, FetchError, HandlerError) as exc:
        return ItemResult(index=index, error=exc)
    except Exception as exc:
        logger.exception("Item %d: unexpected error", index)
        return ItemResult(index=index, error=exc)

    if not outcome.ok:
        return ItemResult(index=index, outcome=outcome, error=ItemError(outcome.message))
    return ItemResult(index=index, outcome=outcome)


def run_items(
    items: Iterable[Mapping[str, Any]],
    *,
    continue_on_fail: bool = False,
    settings: Settings | None = None,
    fetcher_factory: FetcherFactory | None = None,
) -> list[OutputRecord]:
    """
    Process items in order, each in its own crawl session.

    With *continue_on_fail*, a failed item is echoed back with its error and
    position; otherwise the first failure raises :class:`ItemProcessingError`.
    """
    if settings is None:
        settings = Settings.from_env()

    records: list[OutputRecord] = []
    for index, item in enumerate(items):
        result = process_item(index, item, settings, fetcher_factory)
        if result.ok:
            logger.info("Item %d: %s", index, result.outcome.message)
            records.append(
                OutputRecord(json=result.outcome.model_dump(mode="json"), paired_item=index)
            )
            continue

        logger.error("Item %d failed: %s", index, result.error)
        if not continue_on_fail:
            raise ItemProcessingError(str(result.error), item_index=index) from result.error
        echoed = dict(item) if isinstance(item, Mapping) else {"item": item}
        records.append(OutputRecord(json=echoed, error=str(result.error), paired_item=index))

    return records
