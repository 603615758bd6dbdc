"""Tests for crawl_scrape.runner module."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from crawl_scrape.handlers import HandlerError, TextHandler
from crawl_scrape.models import RequestValidationError
from crawl_scrape.runner import (
    ItemError,
    ItemProcessingError,
    OutputRecord,
    process_item,
    run_items,
)

from tests.conftest import SAMPLE_HTML, FakeFetcher


class CountingFactory:
    """Fetcher factory that builds a fresh fake per session and counts them."""

    def __init__(self, pages: dict) -> None:
        self.pages = pages
        self.fetchers: list[FakeFetcher] = []

    def __call__(self, _settings, _limits) -> FakeFetcher:
        fetcher = FakeFetcher(self.pages)
        self.fetchers.append(fetcher)
        return fetcher

    @property
    def fetch_calls(self) -> int:
        return sum(len(f.calls) for f in self.fetchers)


@pytest.fixture()
def factory() -> CountingFactory:
    return CountingFactory({"https://example.com/": SAMPLE_HTML})


class TestProcessItem:
    def test_success(self, settings, factory):
        result = process_item(0, {"url": "https://example.com/"}, settings, factory)
        assert result.ok
        assert result.outcome.message == "Crawling finished"

    @pytest.mark.parametrize("operation", ["extractLinks", "extractText", "extractHtml"])
    def test_missing_url_fails_before_network(self, settings, factory, operation):
        result = process_item(3, {"url": "", "operation": operation}, settings, factory)

        assert not result.ok
        assert isinstance(result.error, RequestValidationError)
        assert result.index == 3
        assert factory.fetchers == []
        assert factory.fetch_calls == 0

    def test_failed_outcome_becomes_error(self, settings, factory):
        result = process_item(0, {"url": "https://down.example.com/", "operation": "extractText"}, settings, factory)

        assert isinstance(result.error, ItemError)
        assert result.outcome.status == "failure"
        assert result.outcome.data is None

    def test_handler_error_is_captured(self, settings, factory):
        with patch.object(TextHandler, "handle", side_effect=RuntimeError("bad markup")):
            result = process_item(0, {"url": "https://example.com/", "operation": "extractText"}, settings, factory)

        assert isinstance(result.error, HandlerError)
        assert factory.fetchers[0].close_calls == 1

    def test_stale_depth_on_text_item_is_ignored(self, settings, factory):
        result = process_item(
            0, {"url": "https://example.com/", "operation": "extractText", "maxDepth": 0}, settings, factory
        )
        assert result.ok
        assert result.outcome.message == "Text extraction finished"

    def test_unexpected_error_stays_with_item(self, settings, factory):
        with patch("crawl_scrape.runner.crawl", side_effect=ValueError("Expected exactly one page result")):
            result = process_item(4, {"url": "https://example.com/"}, settings, factory)

        assert result.index == 4
        assert isinstance(result.error, ValueError)


class TestRunItems:
    def test_success_records(self, settings, factory):
        records = run_items(
            [
                {"url": "https://example.com/", "operation": "extractLinks", "maxDepth": 2},
                {"url": "https://example.com/", "operation": "extractHtml"},
            ],
            settings=settings,
            fetcher_factory=factory,
        )

        assert [r.paired_item for r in records] == [0, 1]
        first = records[0].to_dict()
        assert first["json"]["status"] == "success"
        assert first["json"]["message"] == "Crawling finished"
        assert first["json"]["data"]["url"] == "https://example.com/"
        assert len(first["json"]["data"]["links"]) == len(set(first["json"]["data"]["links"]))
        assert "error" not in first
        assert records[1].json_data["data"]["html"] == SAMPLE_HTML

    def test_each_item_gets_its_own_session(self, settings, factory):
        run_items(
            [{"url": "https://example.com/"}, {"url": "https://example.com/"}],
            settings=settings,
            fetcher_factory=factory,
        )
        assert len(factory.fetchers) == 2
        assert all(f.close_calls == 1 for f in factory.fetchers)

    def test_continue_on_fail_annotates_item(self, settings, factory):
        items = [
            {"url": ""},
            {"url": "https://down.example.com/", "operation": "extractText"},
            {"url": "https://example.com/", "operation": "extractText"},
        ]
        records = run_items(items, continue_on_fail=True, settings=settings, fetcher_factory=factory)

        assert len(records) == 3
        assert records[0].json_data == {"url": ""}
        assert records[0].error == "URL is required"
        assert records[0].paired_item == 0
        assert records[1].json_data == items[1]
        assert "down.example.com" in records[1].error
        assert records[1].paired_item == 1
        assert records[2].error is None
        assert records[2].json_data["status"] == "success"

    def test_failure_aborts_batch(self, settings, factory):
        items = [
            {"url": "https://example.com/"},
            {"url": "https://down.example.com/", "operation": "extractHtml"},
            {"url": "https://example.com/"},
        ]
        with pytest.raises(ItemProcessingError, match="Item 1") as excinfo:
            run_items(items, settings=settings, fetcher_factory=factory)

        assert excinfo.value.item_index == 1
        assert isinstance(excinfo.value.__cause__, ItemError)
        assert len(factory.fetchers) == 2

    def test_validation_failure_aborts_with_position(self, settings, factory):
        with pytest.raises(ItemProcessingError, match="URL is required") as excinfo:
            run_items([{"operation": "extractText"}], settings=settings, fetcher_factory=factory)

        assert excinfo.value.item_index == 0
        assert factory.fetch_calls == 0

    def test_non_mapping_item_annotated_with_continue(self, settings, factory):
        records = run_items(
            ["https://example.com/", {"url": "https://example.com/"}],
            continue_on_fail=True,
            settings=settings,
            fetcher_factory=factory,
        )

        assert records[0].json_data == {"item": "https://example.com/"}
        assert "must be an object" in records[0].error
        assert records[0].paired_item == 0
        assert records[1].error is None
        assert len(factory.fetchers) == 1

    def test_non_mapping_item_aborts_with_position(self, settings, factory):
        with pytest.raises(ItemProcessingError, match="Item 1") as excinfo:
            run_items(
                [{"url": "https://example.com/"}, 42], settings=settings, fetcher_factory=factory
            )

        assert excinfo.value.item_index == 1
        assert isinstance(excinfo.value.__cause__, RequestValidationError)


class TestOutputRecord:
    def test_to_dict_uses_host_keys(self):
        record = OutputRecord(json={"url": "x"}, error="boom", paired_item=2)
        assert record.to_dict() == {"json": {"url": "x"}, "error": "boom", "paired_item": 2}
