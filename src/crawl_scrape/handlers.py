"""Per-operation page handlers: turn a fetched page into one page result."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from bs4 import NavigableString

from crawl_scrape.config import Settings
from crawl_scrape.models import (
    FetchedPage,
    HtmlFound,
    LinksFound,
    Operation,
    PageResult,
    TextFound,
)
from crawl_scrape.urls import (
    NormalizationError,
    cache_buster_value,
    normalize,
    strip_cache_buster,
)

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."

# Text under these elements is never rendered.
_HIDDEN_TAGS = ["script", "style", "noscript", "template"]


class HandlerError(Exception):
    """Raised when extraction fails on a fetched page."""


def truncate(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """Cut *text* to *limit* characters, appending *marker* only if something was cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + marker


class PageHandler(ABC):
    """Contract for operation-specific extraction."""

    operation: Operation

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @abstractmethod
    def handle(self, page: FetchedPage) -> PageResult:
        """Extract this handler's result from *page* without keeping a reference to it."""
        ...


class LinksHandler(PageHandler):
    operation = Operation.EXTRACT_LINKS

    def handle(self, page: FetchedPage) -> LinksFound:
        token = cache_buster_value(page.requested_url)
        base = page.final_url if token is None else strip_cache_buster(page.final_url, token)
        logger.debug("Crawling %s", base)

        links: list[str] = []
        skipped = 0
        for anchor in page.document.find_all("a", href=True):
            try:
                links.append(normalize(base, anchor["href"]))
            except NormalizationError as exc:
                skipped += 1
                logger.debug("Skipping link: %s", exc)

        if skipped:
            logger.debug("Skipped %d unparsable links on %s", skipped, base)
        return LinksFound(source_url=page.requested_url, links=links)


class TextHandler(PageHandler):
    operation = Operation.EXTRACT_TEXT

    def handle(self, page: FetchedPage) -> TextFound:
        logger.debug("Extracting text from %s", page.requested_url)
        document = page.document
        root = document.body or document
        # Exact type check drops comments, doctypes and script/style strings.
        text = "".join(
            str(node)
            for node in root.find_all(string=True)
            if type(node) is NavigableString and node.find_parent(_HIDDEN_TAGS) is None
        ).strip()
        return TextFound(
            source_url=page.requested_url,
            text=truncate(text, self.settings.text_max_chars),
        )


class HtmlHandler(PageHandler):
    operation = Operation.EXTRACT_HTML

    def handle(self, page: FetchedPage) -> HtmlFound:
        logger.debug("Extracting HTML from %s", page.requested_url)
        return HtmlFound(
            source_url=page.requested_url,
            html=truncate(page.text, self.settings.html_max_chars),
        )


_HANDLER_REGISTRY: dict[Operation, type[PageHandler]] = {
    Operation.EXTRACT_LINKS: LinksHandler,
    Operation.EXTRACT_TEXT: TextHandler,
    Operation.EXTRACT_HTML: HtmlHandler,
}


def get_handler(operation: Operation, settings: Settings) -> PageHandler:
    """Instantiate the page handler for an operation."""
    try:
        handler_class = _HANDLER_REGISTRY[Operation(operation)]
    except (KeyError, ValueError):
        available = ", ".join(op.value for op in _HANDLER_REGISTRY)
        raise ValueError(f"Unknown operation '{operation}'. Available: {available}") from None
    return handler_class(settings)
