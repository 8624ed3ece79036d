"""CLI entrypoint."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv as _load_dotenv

from mapsearch import config
from mapsearch.config import CrawlInput, load_crawl_input, validate_crawl_input
from mapsearch.crawler import run_crawl
from mapsearch.pins import PinRecognitionClient


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Collect Google Maps places from search result pages")
    parser.add_argument("--input", type=str, default=None, help="JSON crawl input file")
    parser.add_argument(
        "--search",
        action="append",
        default=None,
        help="Search string (repeatable, replaces the input file searches)",
    )
    parser.add_argument("--max-places", type=int, default=None, help="Run-wide place cap")
    parser.add_argument("--max-places-per-search", type=int, default=None, help="Per-search place cap")
    parser.add_argument(
        "--export-urls",
        action="store_true",
        help="Export place URLs to the dataset instead of queueing detail requests",
    )
    parser.add_argument("--max-zoom-out", type=int, default=None, help="Stop when Google zooms out further")
    parser.add_argument("--concurrency", type=int, default=None, help="Searches run in parallel")
    parser.add_argument("--headed", action="store_true", help="Show the browser window")
    parser.add_argument("--out", type=str, default=config.OUTPUT_DIR)
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def build_crawl_input(args: argparse.Namespace) -> CrawlInput:
    base = load_crawl_input(args.input) if args.input else CrawlInput()
    overrides: Dict[str, Any] = {}
    if args.search:
        overrides["search_strings"] = [s.strip() for s in args.search if s.strip()]
    if args.max_places is not None:
        overrides["max_crawled_places"] = args.max_places
    if args.max_places_per_search is not None:
        overrides["max_crawled_places_per_search"] = args.max_places_per_search
    if args.export_urls:
        overrides["export_place_urls"] = True
    if args.max_zoom_out is not None:
        overrides["max_automatic_zoom_out"] = args.max_zoom_out
    if args.concurrency is not None:
        overrides["max_concurrency"] = args.concurrency
    if args.headed:
        overrides["headless"] = False

    crawl_input = dataclasses.replace(base, **overrides)
    validate_crawl_input(crawl_input)
    return crawl_input


def main(argv: Optional[List[str]] = None) -> int:
    load_env()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        crawl_input = build_crawl_input(args)
        result = asyncio.run(
            run_crawl(
                crawl_input,
                output_dir=args.out,
                pin_recognizer=PinRecognitionClient.from_env(),
            )
        )
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if crawl_input.export_place_urls:
        print(f"Done. Exported {result.pushed} place URLs to {result.output_paths.get('dataset')}")
    else:
        print(f"Done. Enqueued {result.enqueued} place requests to {result.output_paths.get('requests')}")
    print(f"Stats written to {result.output_paths.get('stats')}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
