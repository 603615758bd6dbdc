"""Crawl and Scrape - bounded crawling and link/text/HTML extraction."""

__version__ = "0.1.0"

from crawl_scrape.models import CrawlOutcome, CrawlRequest, Operation
from crawl_scrape.runner import run_items
from crawl_scrape.session import CrawlSession, crawl

__all__ = ["CrawlOutcome", "CrawlRequest", "CrawlSession", "Operation", "crawl", "run_items"]
