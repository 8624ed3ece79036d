"""Crawl orchestration: runs the searches of one crawl concurrently."""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from playwright.async_api import async_playwright

from . import config
from .budget import CrawlBudgetTracker
from .cache import ExportDeduper, PlaceCoordinateCache
from .config import CrawlInput
from .context import CrawlContext, PinRecognizer
from .models import PageStats
from .reporting import ensure_dir, write_json_object
from .responses import build_place_url
from .search import enqueue_all_place_details
from .stats import CrawlStats
from .storage import Dataset, KeyValueStore, RequestQueue

logger = logging.getLogger(__name__)

PageFactory = Callable[[], Awaitable[Any]]
SearchFn = Callable[[CrawlContext, Any, Optional[str], str], Awaitable[PageStats]]


@dataclass(frozen=True)
class SearchRequest:
    url: str
    search_string: Optional[str] = None


def build_start_url(crawl_input: CrawlInput) -> str:
    if crawl_input.lat is not None and crawl_input.lng is not None:
        return (
            f"{config.MAPS_BASE_URL}/@{crawl_input.lat},{crawl_input.lng},{crawl_input.zoom}z"
            f"?hl={crawl_input.language}"
        )
    return f"{config.MAPS_BASE_URL}/?hl={crawl_input.language}"


def build_search_requests(crawl_input: CrawlInput) -> List[SearchRequest]:
    start_url = build_start_url(crawl_input)
    requests = [SearchRequest(url=start_url, search_string=s) for s in crawl_input.search_strings]
    requests.extend(SearchRequest(url=url) for url in crawl_input.start_urls)
    return requests


async def enqueue_cached_places(context: CrawlContext, keywords: Iterable[str]) -> int:
    """Queue places remembered from earlier runs that lie in the polygon."""
    if context.request_queue is None:
        return 0
    place_ids = context.places_cache.places_in_polygon(
        context.geolocation,
        max_count=context.budget.max_crawled_places,
        keywords=keywords,
    )
    enqueued = 0
    for place_id in place_ids:
        if not context.budget.can_enqueue_more():
            break
        context.budget.set_enqueued()
        coords = context.places_cache.get_location(place_id)
        try:
            info = await context.request_queue.add_request(
                build_place_url(None, place_id),
                unique_key=place_id,
                user_data={
                    "label": "detail",
                    "searchString": None,
                    "rank": None,
                    "searchPageUrl": None,
                    "coords": coords.to_dict() if coords else None,
                    "addressParsed": None,
                    "isAdvertisement": False,
                    "categories": [],
                },
            )
        except BaseException:
            context.budget.release_enqueued()
            raise
        if info.was_already_present:
            context.budget.release_enqueued()
        else:
            enqueued += 1
    logger.info("Enqueued %s places from the places cache", enqueued)
    return enqueued


class CrawlScheduler:
    """Runs one task per search request, bounded by max_concurrency.

    abort() cancels every outstanding search; it is what the export path
    calls once the run-wide budget is spent.
    """

    def __init__(
        self,
        context: CrawlContext,
        page_factory: PageFactory,
        max_concurrency: int = config.DEFAULT_MAX_CONCURRENCY,
        max_request_retries: int = config.DEFAULT_MAX_REQUEST_RETRIES,
        persist_interval_seconds: float = config.PERSIST_STATE_INTERVAL_SECONDS,
        search_fn: SearchFn = enqueue_all_place_details,
    ) -> None:
        self.context = context
        self.page_factory = page_factory
        self.max_concurrency = max(1, int(max_concurrency))
        self.max_request_retries = max(0, int(max_request_retries))
        self.persist_interval_seconds = persist_interval_seconds
        self.search_fn = search_fn
        self.aborted = False
        self.results: Dict[str, PageStats] = {}
        self._tasks: List[asyncio.Task] = []
        if context.scheduler is None:
            context.scheduler = self

    async def abort(self) -> None:
        if self.aborted:
            return
        self.aborted = True
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        logger.warning("Aborting the crawl, cancelling %s pending searches", len(pending))
        for task in pending:
            task.cancel()

    async def run(self, requests: Iterable[SearchRequest]) -> Dict[str, PageStats]:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        self._tasks = [
            asyncio.create_task(self._run_request(request, semaphore)) for request in requests
        ]
        persister = None
        if self.context.key_value_store is not None and self.persist_interval_seconds > 0:
            persister = asyncio.create_task(self._persist_periodically())
        try:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        finally:
            if persister is not None:
                persister.cancel()
            self.persist_state()
            self.context.stats.log_info(force=True)
        return self.results

    async def _run_request(self, request: SearchRequest, semaphore: asyncio.Semaphore) -> None:
        search_key = request.search_string or request.url
        async with semaphore:
            for attempt in range(1, self.max_request_retries + 2):
                if self.aborted:
                    return
                page = None
                try:
                    page = await self.page_factory()
                    await page.goto(request.url, wait_until="domcontentloaded")
                    page_stats = await self.search_fn(
                        self.context, page, request.search_string, request.url
                    )
                except Exception as exc:
                    if attempt > self.max_request_retries:
                        logger.error(
                            "[SEARCH][%s] Giving up after %s attempts: %s",
                            request.search_string,
                            attempt,
                            exc,
                        )
                        self.context.stats.inc_failed()
                        return
                    logger.warning(
                        "[SEARCH][%s] Attempt %s failed, retrying: %s",
                        request.search_string,
                        attempt,
                        exc,
                    )
                    self.context.stats.inc_retried()
                    continue
                finally:
                    if page is not None:
                        await page.close()
                self.results[search_key] = page_stats
                self.context.stats.inc_ok()
                self.context.stats.log_info()
                return

    async def _persist_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.persist_interval_seconds)
            self.persist_state()

    def persist_state(self) -> None:
        store = self.context.key_value_store
        if store is None:
            return
        self.context.budget.persist(store)
        self.context.places_cache.persist(store)
        if isinstance(self.context.request_queue, RequestQueue):
            self.context.request_queue.persist(store)
        if self.context.export_deduper is not None:
            self.context.export_deduper.persist(store)
        self.context.stats.persist(store)

    def restore_state(self) -> None:
        store = self.context.key_value_store
        if store is None:
            return
        self.context.budget.restore(store)
        self.context.places_cache.restore(store)
        if isinstance(self.context.request_queue, RequestQueue):
            self.context.request_queue.restore(store)
        if self.context.export_deduper is not None:
            self.context.export_deduper.restore(store)


@dataclass
class CrawlResult:
    enqueued: int
    pushed: int
    stats: Dict[str, Any]
    output_paths: Dict[str, str] = field(default_factory=dict)


def build_context(
    crawl_input: CrawlInput,
    output_dir: str,
    pin_recognizer: Optional[PinRecognizer] = None,
) -> CrawlContext:
    ensure_dir(output_dir)
    export = crawl_input.export_place_urls
    return CrawlContext(
        budget=CrawlBudgetTracker(
            crawl_input.max_crawled_places,
            crawl_input.max_crawled_places_per_search,
        ),
        places_cache=PlaceCoordinateCache(),
        stats=CrawlStats(),
        request_queue=None if export else RequestQueue(),
        dataset=Dataset(os.path.join(output_dir, "dataset.jsonl")) if export else None,
        export_deduper=ExportDeduper() if export else None,
        key_value_store=KeyValueStore(os.path.join(output_dir, config.STATE_DB_NAME)),
        pin_recognizer=pin_recognizer,
        export_place_urls=export,
        geolocation=crawl_input.geolocation,
        max_automatic_zoom_out=crawl_input.max_automatic_zoom_out,
    )


async def run_crawl(
    crawl_input: CrawlInput,
    output_dir: str = config.OUTPUT_DIR,
    pin_recognizer: Optional[PinRecognizer] = None,
) -> CrawlResult:
    context = build_context(crawl_input, output_dir, pin_recognizer)
    requests = build_search_requests(crawl_input)
    logger.info("Starting crawl with %s search requests", len(requests))

    try:
        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=crawl_input.headless)
            browser_context = await browser.new_context(
                viewport={"width": 1280, "height": 800},
                locale=crawl_input.language,
            )
            scheduler = CrawlScheduler(
                context,
                page_factory=browser_context.new_page,
                max_concurrency=crawl_input.max_concurrency,
                max_request_retries=crawl_input.max_request_retries,
            )
            scheduler.restore_state()
            if crawl_input.use_cached_places:
                if crawl_input.export_place_urls:
                    logger.warning("useCachedPlaces is ignored when exporting place URLs")
                else:
                    await enqueue_cached_places(context, crawl_input.search_strings)
            try:
                await scheduler.run(requests)
            finally:
                await browser.close()
    finally:
        context.key_value_store.close()

    output_paths: Dict[str, str] = {}
    if context.request_queue is not None:
        requests_path = os.path.join(output_dir, "requests.jsonl")
        context.request_queue.export_jsonl(requests_path)
        output_paths["requests"] = requests_path
    if context.dataset is not None:
        output_paths["dataset"] = context.dataset.path
    stats_path = os.path.join(output_dir, "stats.json")
    write_json_object(stats_path, context.stats.to_dict())
    output_paths["stats"] = stats_path

    return CrawlResult(
        enqueued=len(context.request_queue) if context.request_queue is not None else 0,
        pushed=context.dataset.count if context.dataset is not None else 0,
        stats=context.stats.to_dict(),
        output_paths=output_paths,
    )
