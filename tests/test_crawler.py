import asyncio
import json
import os

import pytest

from mapsearch import config
from mapsearch.budget import CrawlBudgetTracker
from mapsearch.config import CrawlInput
from mapsearch.context import CrawlContext
from mapsearch.crawler import (
    CrawlScheduler,
    SearchRequest,
    build_context,
    build_search_requests,
    build_start_url,
    enqueue_cached_places,
)
from mapsearch.models import Coordinates, PageStats, PlaceCandidate
from mapsearch.responses import CandidateProcessor
from mapsearch.storage import KeyValueStore, RequestQueue

SQUARE = {
    "type": "Polygon",
    "coordinates": [[[14.0, 50.0], [15.0, 50.0], [15.0, 51.0], [14.0, 51.0], [14.0, 50.0]]],
}


class FakePage:
    def __init__(self, registry):
        self.registry = registry
        self.url = None
        self.closed = False
        registry.append(self)

    async def goto(self, url, wait_until=None):
        self.url = url

    async def close(self):
        self.closed = True


def make_scheduler(context, search_fn, pages, **kwargs):
    async def page_factory():
        return FakePage(pages)

    kwargs.setdefault("persist_interval_seconds", 0)
    return CrawlScheduler(context, page_factory, search_fn=search_fn, **kwargs)


def enqueue_context(**kwargs):
    kwargs.setdefault("budget", CrawlBudgetTracker())
    return CrawlContext(request_queue=RequestQueue(), **kwargs)


def test_build_start_url():
    assert build_start_url(CrawlInput(search_strings=["x"])) == "https://www.google.com/maps/?hl=en"
    crawl_input = CrawlInput(search_strings=["x"], lat=50.08, lng=14.42, zoom=14, language="cs")
    assert build_start_url(crawl_input) == "https://www.google.com/maps/@50.08,14.42,14z?hl=cs"


def test_build_search_requests():
    crawl_input = CrawlInput(
        search_strings=["pizza", "sushi"],
        start_urls=["https://www.google.com/maps/search/bars"],
    )
    requests = build_search_requests(crawl_input)
    assert [r.search_string for r in requests] == ["pizza", "sushi", None]
    assert requests[2].url == "https://www.google.com/maps/search/bars"
    assert requests[0].url == "https://www.google.com/maps/?hl=en"


def test_scheduler_retries_then_succeeds():
    context = enqueue_context()
    pages = []
    attempts = []

    async def search_fn(ctx, page, search_string, url):
        attempts.append(search_string)
        if len(attempts) == 1:
            raise RuntimeError("captcha")
        return PageStats(total_found=7)

    scheduler = make_scheduler(context, search_fn, pages, max_request_retries=2)
    results = asyncio.run(scheduler.run([SearchRequest(url="https://maps", search_string="pizza")]))

    assert results["pizza"].total_found == 7
    assert attempts == ["pizza", "pizza"]
    assert context.stats.retried == 1
    assert context.stats.ok == 1
    assert context.stats.failed == 0
    assert len(pages) == 2
    assert all(p.closed for p in pages)
    assert pages[0].url == "https://maps"


def test_scheduler_gives_up_after_retries():
    context = enqueue_context()
    pages = []

    async def search_fn(ctx, page, search_string, url):
        raise RuntimeError("always broken")

    scheduler = make_scheduler(context, search_fn, pages, max_request_retries=1)
    results = asyncio.run(scheduler.run([SearchRequest(url="https://maps", search_string="pizza")]))

    assert results == {}
    assert context.stats.failed == 1
    assert context.stats.retried == 1
    assert len(pages) == 2


def test_scheduler_limits_concurrency():
    context = enqueue_context()
    running = {"now": 0, "max": 0}

    async def search_fn(ctx, page, search_string, url):
        running["now"] += 1
        running["max"] = max(running["max"], running["now"])
        await asyncio.sleep(0.01)
        running["now"] -= 1
        return PageStats()

    scheduler = make_scheduler(context, search_fn, [], max_concurrency=2)
    requests = [SearchRequest(url="https://maps", search_string=f"q{i}") for i in range(5)]
    results = asyncio.run(scheduler.run(requests))

    assert len(results) == 5
    assert running["max"] == 2


def test_abort_cancels_other_searches():
    context = enqueue_context()
    pages = []
    finished = []

    async def search_fn(ctx, page, search_string, url):
        if search_string == "first":
            await asyncio.sleep(0)
            await ctx.scheduler.abort()
            finished.append(search_string)
            return PageStats()
        await asyncio.sleep(10)
        finished.append(search_string)
        return PageStats()

    scheduler = make_scheduler(context, search_fn, pages, max_concurrency=3)
    requests = [
        SearchRequest(url="https://maps", search_string="first"),
        SearchRequest(url="https://maps", search_string="second"),
        SearchRequest(url="https://maps", search_string="third"),
    ]
    results = asyncio.run(scheduler.run(requests))

    assert context.scheduler is scheduler
    assert scheduler.aborted is True
    assert finished == ["first"]
    assert list(results) == ["first"]
    assert all(p.closed for p in pages)


def test_state_is_persisted_and_restored(tmp_path):
    store = KeyValueStore(str(tmp_path / "state.db"))
    context = enqueue_context(key_value_store=store)
    context.places_cache.add_location("p1", Coordinates(50.5, 14.5), "pizza")

    async def search_fn(ctx, page, search_string, url):
        ctx.budget.set_enqueued(search_string)
        return PageStats()

    scheduler = make_scheduler(context, search_fn, [])
    asyncio.run(scheduler.run([SearchRequest(url="https://maps", search_string="pizza")]))
    assert store.get_json(config.STATS_KEY)["ok"] == 1

    fresh = enqueue_context(key_value_store=store)
    make_scheduler(fresh, search_fn, []).restore_state()
    assert fresh.budget.enqueued_for("pizza") == 1
    assert fresh.places_cache.get_location("p1") == Coordinates(50.5, 14.5)
    store.close()


def test_enqueue_cached_places_respects_polygon_and_budget():
    context = enqueue_context(budget=CrawlBudgetTracker(max_crawled_places=2), geolocation=SQUARE)
    context.places_cache.add_location("a", Coordinates(50.1, 14.1), "pizza")
    context.places_cache.add_location("far", Coordinates(52.0, 14.1), "pizza")
    context.places_cache.add_location("b", Coordinates(50.2, 14.2), "pizza")
    context.places_cache.add_location("c", Coordinates(50.3, 14.3), "pizza")
    asyncio.run(context.request_queue.add_request("https://x", unique_key="a"))

    enqueued = asyncio.run(enqueue_cached_places(context, ["pizza"]))

    assert enqueued == 1
    assert [r.unique_key for r in context.request_queue] == ["a", "b"]
    assert context.budget.enqueued_total == 1


def test_build_context_picks_sink_for_mode(tmp_path):
    export = build_context(CrawlInput(search_strings=["x"], export_place_urls=True), str(tmp_path))
    assert export.dataset is not None
    assert export.request_queue is None
    assert export.export_deduper is not None
    export.key_value_store.close()

    enqueue = build_context(CrawlInput(search_strings=["x"], max_crawled_places=3), str(tmp_path))
    assert enqueue.request_queue is not None
    assert enqueue.dataset is None
    assert enqueue.budget.max_crawled_places == 3
    enqueue.key_value_store.close()


def _crawl_once(output_dir, place_ids):
    context = build_context(CrawlInput(search_strings=["pizza"], max_crawled_places=5), output_dir)

    async def search_fn(ctx, page, search_string, url):
        processor = CandidateProcessor(ctx, page, search_string, url)
        stats = PageStats()
        candidates = [PlaceCandidate(place_id=p, coords=Coordinates(50.5, 14.5)) for p in place_ids]
        await processor.process(candidates, url, stats, is_search_page=True)
        return stats

    scheduler = make_scheduler(context, search_fn, [])
    scheduler.restore_state()
    asyncio.run(scheduler.run([SearchRequest(url="https://maps", search_string="pizza")]))
    requests_path = os.path.join(output_dir, "requests.jsonl")
    context.request_queue.export_jsonl(requests_path)
    context.key_value_store.close()
    with open(requests_path, encoding="utf-8") as f:
        exported = [json.loads(line)["uniqueKey"] for line in f]
    return len(context.request_queue), context.budget.enqueued_total, exported


def test_repeated_run_on_same_output_keeps_queued_requests(tmp_path):
    first = _crawl_once(str(tmp_path), [f"p{i}" for i in range(5)])
    second = _crawl_once(str(tmp_path), [f"q{i}" for i in range(5)])

    assert first[:2] == (5, 5)
    assert second[:2] == (5, 5)
    assert sorted(second[2]) == sorted(first[2])
    assert len(second[2]) == 5


class BrokenQueue(RequestQueue):
    async def add_request(self, url, unique_key=None, user_data=None, forefront=False):
        raise RuntimeError("queue unavailable")


def test_enqueue_cached_places_returns_budget_when_queue_fails():
    context = CrawlContext(budget=CrawlBudgetTracker(max_crawled_places=3), request_queue=BrokenQueue())
    context.places_cache.add_location("a", Coordinates(50.1, 14.1), "pizza")

    with pytest.raises(RuntimeError):
        asyncio.run(enqueue_cached_places(context, ["pizza"]))

    assert context.budget.enqueued_total == 0
