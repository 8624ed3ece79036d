"""Turns network responses of a search page into queued requests or exported records."""
from __future__ import annotations

import logging
import re
from typing import Any, List, Optional
from urllib.parse import parse_qs, quote_plus, urlsplit

from . import config
from .context import CrawlContext
from .models import PageStats, PlaceCandidate

logger = logging.getLogger(__name__)

_SEARCH_RE = re.compile(config.SEARCH_RESPONSE_URL_PATTERN)
_PREVIEW_RE = re.compile(config.PREVIEW_RESPONSE_URL_PATTERN)


def compute_rank(page_number: Optional[int], index: int) -> Optional[int]:
    if page_number is None:
        return None
    return (page_number - 1) * config.PLACES_PER_RESPONSE_PAGE + index + 1


def parse_page_number(url: str) -> Optional[int]:
    values = parse_qs(urlsplit(url).query).get(config.PAGE_NUMBER_QUERY_PARAM)
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


def build_place_url(search_string: Optional[str], place_id: str) -> str:
    return (
        f"{config.PLACE_SEARCH_URL}&query={quote_plus(search_string or '')}"
        f"&query_place_id={place_id}"
    )


class CandidateProcessor:
    """Decides per candidate: geofilter, budget, dedup, then enqueue or export."""

    def __init__(
        self,
        context: CrawlContext,
        page: Any,
        search_string: Optional[str],
        request_url: str,
    ) -> None:
        self.context = context
        self.page = page
        self.search_string = search_string
        self.request_url = request_url
        self.search_key = search_string or request_url

    @property
    def log_base(self) -> str:
        return f"[SEARCH][{self.search_string}]"

    async def process(
        self,
        candidates: List[PlaceCandidate],
        response_url: str,
        page_stats: PageStats,
        is_search_page: bool,
    ) -> None:
        ctx = self.context
        search_page_url = self.page.url
        page_number = parse_page_number(response_url)

        page_stats.start_response_page(len(candidates))

        for index, candidate in enumerate(candidates):
            rank = compute_rank(page_number, index)
            from_cache = False
            if candidate.coords is None:
                candidate.coords = ctx.places_cache.get_location(candidate.place_id)
                from_cache = candidate.coords is not None
            place_url = build_place_url(self.search_string, candidate.place_id)
            ctx.places_cache.add_location(candidate.place_id, candidate.coords, self.search_string)

            if not ctx.geo_filter(candidate.coords):
                ctx.stats.add_out_of_polygon_place(
                    url=place_url,
                    search_page_url=search_page_url,
                    coordinates=candidate.coords.to_dict() if candidate.coords else None,
                    cached=from_cache,
                )
                continue

            if ctx.export_place_urls:
                keep_going = await self._export(candidate, place_url, page_stats)
            else:
                keep_going = await self._enqueue(candidate, rank, place_url, search_page_url, page_stats)
            if not keep_going:
                break

        if is_search_page:
            self._log_page_summary(candidates, page_stats)

    async def _export(self, candidate: PlaceCandidate, place_url: str, page_stats: PageStats) -> bool:
        ctx = self.context
        budget = ctx.budget
        if not budget.can_scrape_more(self.search_key):
            return False

        deduper = ctx.export_deduper
        if deduper is not None and deduper.test_duplicate_and_add(candidate.place_id):
            return True

        page_stats.pushed += 1
        page_stats.total_pushed += 1
        await ctx.dataset.push({"url": place_url})
        budget.set_scraped(self.search_key)

        if not budget.can_scrape_more():
            logger.warning(
                "%s Finishing scraping because we reached maxCrawledPlaces --- %s",
                self.log_base,
                self.request_url,
            )
            # Let recently pushed records land before tearing the run down
            await self.page.wait_for_timeout(config.EXPORT_ABORT_GRACE_MS)
            if ctx.scheduler is not None:
                await ctx.scheduler.abort()
            return False
        if not budget.can_scrape_more(self.search_key):
            logger.warning(
                "%s Finishing search because we reached maxCrawledPlacesPerSearch --- %s",
                self.log_base,
                self.request_url,
            )
            return False
        return True

    async def _enqueue(
        self,
        candidate: PlaceCandidate,
        rank: Optional[int],
        place_url: str,
        search_page_url: str,
        page_stats: PageStats,
    ) -> bool:
        ctx = self.context
        budget = ctx.budget
        if not budget.can_enqueue_more(self.search_key):
            self._log_enqueue_limit()
            return False

        # Reserve before awaiting the queue so concurrent searches see the slot taken
        budget.set_enqueued(self.search_key)
        try:
            info = await ctx.request_queue.add_request(
                place_url,
                unique_key=candidate.place_id,
                user_data={
                    "label": "detail",
                    "searchString": self.search_string,
                    "rank": rank,
                    "searchPageUrl": search_page_url,
                    "coords": candidate.coords.to_dict() if candidate.coords else None,
                    "addressParsed": candidate.address_parsed,
                    "isAdvertisement": candidate.is_advertisement,
                    "categories": list(candidate.categories),
                },
                forefront=True,
            )
        except BaseException:
            budget.release_enqueued(self.search_key)
            raise
        if info.was_already_present:
            budget.release_enqueued(self.search_key)
        else:
            page_stats.enqueued += 1
            page_stats.total_enqueued += 1

        if not budget.can_enqueue_more(self.search_key):
            self._log_enqueue_limit()
            return False
        return True

    def _log_enqueue_limit(self) -> None:
        budget = self.context.budget
        logger.warning(
            "%s Finishing search because we enqueued more than maxCrawledPlaces "
            "currently: %s(for this search)/%s(total) --- %s",
            self.log_base,
            budget.enqueued_for(self.search_key),
            budget.enqueued_total,
            self.request_url,
        )

    def _log_page_summary(self, candidates: List[PlaceCandidate], page_stats: PageStats) -> None:
        number_of_ads = sum(1 for c in candidates if c.is_advertisement)
        if self.context.export_place_urls:
            action, count, total = "Pushed", page_stats.pushed, page_stats.total_pushed
        else:
            action, count, total = "Enqueued", page_stats.enqueued, page_stats.total_enqueued
        logger.info(
            "%s[SCROLL: %s]: %s %s/%s places (unique & correct/found) + %s ads for this page. "
            "Total for this search: %s/%s --- %s",
            self.log_base,
            page_stats.page_num,
            action,
            count,
            page_stats.found,
            number_of_ads,
            total,
            page_stats.total_found,
            self.page.url,
        )


class ResponseClassifier:
    """Response callback registered on the search page.

    Never raises: parse failures and unexpected exceptions are parked on
    PageStats for the scroll loop to act on.
    """

    def __init__(self, context: CrawlContext, processor: CandidateProcessor) -> None:
        self.context = context
        self.processor = processor

    @staticmethod
    def classify(url: str) -> Optional[str]:
        if _PREVIEW_RE.search(url):
            return "preview"
        if _SEARCH_RE.search(url):
            return "search"
        return None

    async def handle(self, response: Any, page_stats: PageStats) -> None:
        url = response.url
        kind = self.classify(url)
        if kind is None:
            return

        page_stats.is_data_page = True
        response_status = None
        response_body = None
        try:
            response_status = response.status
            if response_status != 200:
                logger.warning(
                    "Response status is not 200, it is %s. This might mean the response is blocked",
                    response_status,
                )
            response_body = await response.text()
            result = self.context.parser(response_body, kind == "preview")
            if result.error:
                page_stats.set_error(result.error, response_status, response_body)
            await self.processor.process(
                result.candidates,
                url,
                page_stats,
                is_search_page=kind == "search",
            )
        except Exception as exc:
            page_stats.set_error(
                f"Unexpected error during response processing: {exc}",
                response_status,
                response_body,
            )
