"""Pydantic models for the crawl pipeline."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from functools import cached_property
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from crawl_scrape.config import Settings
from crawl_scrape.urls import is_http_url


class RequestValidationError(ValueError):
    """Raised when a crawl request is missing or has malformed input."""


class Operation(str, Enum):
    EXTRACT_LINKS = "extractLinks"
    EXTRACT_TEXT = "extractText"
    EXTRACT_HTML = "extractHtml"


class CrawlRequest(BaseModel):
    """One caller item: what to fetch and how to extract it."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="Seed URL")
    operation: Operation = Field(default=Operation.EXTRACT_LINKS)
    max_depth: int = Field(
        default=1,
        ge=1,
        description="Crawl depth; only used by extractLinks to size the request budget",
    )

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("URL is required")
        if not is_http_url(value):
            raise ValueError(f"Invalid URL: {value!r}")
        return value

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> CrawlRequest:
        """Build a request from a host record (``url``, ``operation``, ``maxDepth``).

        ``maxDepth`` is only read for extractLinks; other operations ignore it.
        """
        if not isinstance(item, Mapping):
            raise RequestValidationError(
                f"Item must be an object with a url, got {type(item).__name__}"
            )
        url = item.get("url")
        if not isinstance(url, str) or not url.strip():
            raise RequestValidationError("URL is required")

        operation = item.get("operation") or Operation.EXTRACT_LINKS
        fields: dict[str, Any] = {"url": url, "operation": operation}
        if operation == Operation.EXTRACT_LINKS:
            fields["max_depth"] = item.get("maxDepth", item.get("max_depth", 1))
        try:
            return cls(**fields)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )
            raise RequestValidationError(f"Invalid crawl request ({details})") from exc


class FetchLimits(BaseModel):
    """Dispatcher bounds, derived from a request and the settings."""

    model_config = ConfigDict(frozen=True)

    max_total_requests: int = Field(ge=1)
    max_concurrency: int = Field(ge=1)
    per_request_timeout: float = Field(gt=0)

    @classmethod
    def for_request(cls, request: CrawlRequest, settings: Settings) -> FetchLimits:
        if request.operation is Operation.EXTRACT_LINKS:
            return cls(
                max_total_requests=min(
                    settings.max_requests_per_crawl,
                    request.max_depth * settings.requests_per_depth,
                ),
                max_concurrency=settings.links_concurrency,
                per_request_timeout=settings.request_timeout,
            )
        return cls(
            max_total_requests=1,
            max_concurrency=1,
            per_request_timeout=settings.request_timeout,
        )


@dataclass
class FetchedPage:
    """A successful response, handed to exactly one page handler and then dropped.

    ``document`` is parsed on first access so handlers that only need the raw
    body never pay for a parse.
    """

    requested_url: str
    final_url: str
    body: bytes
    encoding: str
    parser: Callable[[str], Any] = field(repr=False)

    @cached_property
    def text(self) -> str:
        return self.body.decode(self.encoding or "utf-8", errors="replace")

    @cached_property
    def document(self) -> Any:
        return self.parser(self.text)


class LinksFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["links"] = "links"
    source_url: str
    links: list[str] = Field(default_factory=list)


class TextFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    source_url: str
    text: str


class HtmlFound(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["html"] = "html"
    source_url: str
    html: str


PageResult = Union[LinksFound, TextFound, HtmlFound]


class LinksPayload(BaseModel):
    url: str
    links: list[str] = Field(default_factory=list)


class TextPayload(BaseModel):
    url: str
    text: str


class HtmlPayload(BaseModel):
    url: str
    html: str


class CrawlOutcome(BaseModel):
    """Terminal result for one caller item."""

    status: Literal["success", "failure"]
    message: str
    data: Union[LinksPayload, TextPayload, HtmlPayload, None] = None

    @property
    def ok(self) -> bool:
        return self.status == "success"
