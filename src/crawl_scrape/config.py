"""Centralized configuration loaded from .env."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _load_env() -> None:
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)
    else:
        load_dotenv()


@dataclass(frozen=True)
class Settings:
    # Fetching
    request_timeout: float = 30.0
    max_request_retries: int = 3
    retry_backoff: float = 0.5
    user_agent: str = "Mozilla/5.0 (compatible; CrawlAndScrape/0.1)"

    # Crawl volume (extractLinks)
    max_requests_per_crawl: int = 100
    requests_per_depth: int = 50
    links_concurrency: int = 5

    # Output caps
    text_max_chars: int = 50_000
    html_max_chars: int = 100_000

    @classmethod
    def from_env(cls) -> Settings:
        _load_env()
        return cls(
            request_timeout=float(os.getenv("CRAWL_REQUEST_TIMEOUT", "30")),
            max_request_retries=int(os.getenv("CRAWL_MAX_RETRIES", "3")),
            retry_backoff=float(os.getenv("CRAWL_RETRY_BACKOFF", "0.5")),
            user_agent=os.getenv(
                "CRAWL_USER_AGENT", "Mozilla/5.0 (compatible; CrawlAndScrape/0.1)"
            ),
            max_requests_per_crawl=int(os.getenv("CRAWL_MAX_REQUESTS", "100")),
            requests_per_depth=int(os.getenv("CRAWL_REQUESTS_PER_DEPTH", "50")),
            links_concurrency=int(os.getenv("CRAWL_LINKS_CONCURRENCY", "5")),
            text_max_chars=int(os.getenv("CRAWL_TEXT_MAX_CHARS", "50000")),
            html_max_chars=int(os.getenv("CRAWL_HTML_MAX_CHARS", "100000")),
        )
