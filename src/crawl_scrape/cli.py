"""Command-line host for Crawl and Scrape."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

from crawl_scrape.config import Settings
from crawl_scrape.models import Operation
from crawl_scrape.runner import ItemProcessingError, run_items


def _out(msg: str = "") -> None:
    """Print a status message to stderr so it doesn't mix with JSON output."""
    print(msg, file=sys.stderr, flush=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crawl-and-scrape",
        description="Crawl a page and extract its links, text or HTML.",
    )
    parser.add_argument(
        "url",
        nargs="?",
        default=None,
        help="URL to crawl (omit when using --input)",
    )
    parser.add_argument(
        "--operation",
        choices=[op.value for op in Operation],
        default=Operation.EXTRACT_LINKS.value,
        help="What to extract (default: extractLinks)",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=1,
        help="Crawl depth for extractLinks; sizes the request budget (default: 1)",
    )
    parser.add_argument(
        "-i", "--input",
        default=None,
        help="JSON file with a list of items (or one JSON object per line)",
    )
    parser.add_argument(
        "--continue-on-fail",
        action="store_true",
        help="Report failed items in the output instead of aborting",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Per-request timeout in seconds (default: 30)",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=None,
        help="Retries for failed requests (default: 3)",
    )
    parser.add_argument(
        "-o", "--output",
        default=None,
        help="Output file path (default: stdout)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def load_items(path: Path) -> list[dict[str, Any]]:
    """Read items from a JSON array/object or from JSON lines."""
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return [json.loads(line) for line in text.splitlines() if line.strip()]
    return data if isinstance(data, list) else [data]


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.url is None and args.input is None:
        parser.error("a URL or --input is required")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    settings = Settings.from_env()

    # Apply CLI overrides
    overrides = {}
    if args.timeout is not None:
        overrides["request_timeout"] = args.timeout
    if args.max_retries is not None:
        overrides["max_request_retries"] = args.max_retries
    if overrides:
        settings = replace(settings, **overrides)

    if args.input:
        items = load_items(Path(args.input))
        _out(f"Loaded {len(items)} items from {args.input}")
    else:
        items = [{"url": args.url, "operation": args.operation, "maxDepth": args.max_depth}]

    try:
        records = run_items(items, continue_on_fail=args.continue_on_fail, settings=settings)
    except ItemProcessingError as exc:
        _out(f"[!] {exc}")
        return 1

    output = json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(output)
        _out(f"Output written to {args.output}")
    else:
        print(output)

    return 0


if __name__ == "__main__":
    sys.exit(main())
