"""Drives one search on the Google Maps page: submit, wait for results, scroll."""
from __future__ import annotations

import enum
import logging
import math
import random
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from . import config
from .context import CrawlContext
from .geo import parse_zoom_from_url, viewport_grid_points
from .models import PageStats
from .outcome import SearchOutcome, SearchOutcomeDetector, SearchOutcomeTimeoutError
from .responses import CandidateProcessor, ResponseClassifier

logger = logging.getLogger(__name__)


class SearchRetryError(RuntimeError):
    """A response of the search could not be processed; the page should be retried."""

    def __init__(self, message: str, reason: str, snapshot_url: Optional[str] = None) -> None:
        super().__init__(message)
        self.reason = reason
        self.snapshot_url = snapshot_url


class SearchSubmitError(RuntimeError):
    pass


class ScrollStop(enum.Enum):
    END_OF_RESULTS = "end_of_results"
    STALLED = "stalled"
    BUDGET_EXHAUSTED = "budget_exhausted"
    AUTO_ZOOM = "auto_zoom"
    PAGE_CAP = "page_cap"


async def wait_for_map_loader(page: Any) -> None:
    if await page.query_selector(config.SEARCH_BOX_CONTAINER_SEL) is not None:
        await page.wait_for_function(
            "sel => !document.querySelector(sel).classList.contains('loading')",
            arg=config.SEARCH_BOX_CONTAINER_SEL,
            timeout=config.MAP_LOADER_TIMEOUT_MS,
        )
    await page.wait_for_function(
        "sel => !document.querySelector(sel)",
        arg=config.LOADING_PANE_SEL,
        timeout=config.MAP_LOADER_TIMEOUT_MS,
    )


async def move_mouse_through_page(page: Any, pin_positions: List[Dict[str, float]]) -> int:
    """Hover over every pin (or a grid over the viewport) so the map loads place previews."""
    viewport = page.viewport_size or {"width": 1280, "height": 720}
    positions = pin_positions or viewport_grid_points(
        viewport["width"], viewport["height"], config.MOUSE_SWEEP_STEP_PX
    )
    logger.info(
        "[SEARCH]: Starting moving mouse over the map to gather all places. Width: %s, height: %s, positions: %s",
        viewport["width"],
        viewport["height"],
        len(positions),
    )
    for position in positions:
        await page.mouse.move(position["x"], position["y"], steps=config.MOUSE_SWEEP_MOVE_STEPS)
        await page.wait_for_timeout(config.MOUSE_SWEEP_PAUSE_MS)
    return len(positions)


class SearchScroller:
    """One search invocation on one page.

    The response handler fills PageStats while run() submits the search and
    keeps scrolling until one of the stop conditions holds.
    """

    def __init__(
        self,
        context: CrawlContext,
        page: Any,
        search_string: Optional[str],
        request_url: str,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.context = context
        self.page = page
        self.search_string = search_string
        self.request_url = request_url
        self.search_key = search_string or request_url
        self.rng = rng
        self.page_stats = PageStats()
        self.classifier = ResponseClassifier(
            context, CandidateProcessor(context, page, search_string, request_url)
        )
        self._handler = self._on_response
        self._start_zoom: Optional[float] = None
        self._empty_scrolls = 0
        self._last_total_found = 0

    @property
    def log_base(self) -> str:
        return f"[SEARCH][{self.search_string}]"

    @property
    def log_base_scroll(self) -> str:
        return f"{self.log_base}[SCROLL: {self.page_stats.page_num}]:"

    async def _on_response(self, response: Any) -> None:
        await self.classifier.handle(response, self.page_stats)

    async def run(self) -> PageStats:
        self.page.on("response", self._handler)
        try:
            if self.search_string and self.search_string.startswith(config.ALL_PLACES_SEARCH_PREFIX):
                await self._run_all_places_mode()
                return self.page_stats

            await self._submit_search()
            self._start_zoom = parse_zoom_from_url(self.page.url)

            outcome = await SearchOutcomeDetector(self.page).detect()
            if not self._accept_outcome(outcome):
                return self.page_stats

            await self._scroll_until_done()
            return self.page_stats
        finally:
            self.page.remove_listener("response", self._handler)

    # --- submission ---

    async def _click_search_button(self) -> None:
        await self.page.click(config.SEARCH_BUTTON_SEL)

    async def _click_search_button_element(self) -> None:
        button = await self.page.query_selector(config.SEARCH_BUTTON_SEL)
        if button is None:
            raise SearchSubmitError("Retry click search button was not found on the page.")
        await button.evaluate("b => b.click()")

    async def _press_enter(self) -> None:
        await self.page.keyboard.press("Enter")

    def _submit_strategies(self) -> List[Tuple[str, Callable[[], Awaitable[None]]]]:
        return [
            ("click", self._click_search_button),
            ("element click", self._click_search_button_element),
            ("keyboard enter", self._press_enter),
        ]

    async def _submit_search(self) -> str:
        # no search string when a plain start URL is crawled
        if self.search_string:
            await self.page.wait_for_selector(config.SEARCH_BOX_SEL, timeout=config.SEARCH_BOX_TIMEOUT_MS)
            await self.page.fill(config.SEARCH_BOX_SEL, self.search_string)

        await self.page.wait_for_timeout(config.SUBMIT_SETTLE_MS)
        used = None
        failures = []
        for name, strategy in self._submit_strategies():
            try:
                await strategy()
            except Exception as exc:
                logger.warning("%s Search submit via %s failed: %s", self.log_base, name, exc)
                failures.append(f"{name}: {exc}")
                continue
            used = name
            break
        if used is None:
            raise SearchSubmitError(
                f"{self.log_base} Could not submit the search ({'; '.join(failures)}) - {self.request_url}"
            )

        await self.page.wait_for_timeout(config.SUBMIT_SETTLE_MS)
        await wait_for_map_loader(self.page)
        return used

    def _accept_outcome(self, outcome: SearchOutcome) -> bool:
        if outcome is SearchOutcome.TIMEOUT:
            raise SearchOutcomeTimeoutError(
                f"{self.log_base} Don't recognize the loaded content - {self.request_url}"
            )
        if outcome is SearchOutcome.BAD_QUERY:
            logger.warning(
                "%s Finishing search because this query yielded no results - %s",
                self.log_base,
                self.request_url,
            )
            return False
        if outcome is SearchOutcome.NO_RESULTS:
            logger.warning(
                "%s Finishing search because there are no results for this query - %s",
                self.log_base,
                self.request_url,
            )
            return False
        if outcome is SearchOutcome.SINGLE_PLACE_REDIRECT:
            # The place is still picked up from the preview response
            logger.warning(
                "%s Finishing scroll because we loaded a single place page directly - %s",
                self.log_base,
                self.request_url,
            )
            return False
        return True

    # --- scrolling ---

    def _stop_checks(self) -> List[Callable[[], Awaitable[Optional[ScrollStop]]]]:
        return [
            self._check_end_of_results,
            self._check_stalled,
            self._check_deferred_error,
            self._check_budget,
            self._check_auto_zoom,
            self._check_page_cap,
        ]

    async def _scroll_until_done(self) -> ScrollStop:
        checks = self._stop_checks()
        while True:
            for check in checks:
                stop = await check()
                if stop is not None:
                    return stop
            await self._scroll_once()

    async def _check_end_of_results(self) -> Optional[ScrollStop]:
        if await self.page.query_selector(config.END_OF_RESULTS_SEL) is None:
            return None
        logger.info(
            "%s Finishing search because we reached all %s results - %s",
            self.log_base,
            self.page_stats.total_found,
            self.request_url,
        )
        return ScrollStop.END_OF_RESULTS

    async def _check_stalled(self) -> Optional[ScrollStop]:
        total_found = self.page_stats.total_found
        if total_found == self._last_total_found:
            self._empty_scrolls += 1
        else:
            self._empty_scrolls = 0
        self._last_total_found = total_found
        # Places arrive in XHR batches of 20, so a few empty scrolls are normal
        if self._empty_scrolls < config.MAX_EMPTY_SCROLLS:
            return None
        logger.warning(
            "%s Finishing scroll with %s results because scrolling doesn't yield any more results "
            "(and is less than maximum %s) --- %s",
            self.log_base_scroll,
            total_found,
            config.MAX_PLACES_PER_PAGE,
            self.request_url,
        )
        return ScrollStop.STALLED

    async def _check_deferred_error(self) -> Optional[ScrollStop]:
        error = self.page_stats.take_error()
        if error is None:
            return None
        snapshot_url = None
        store = self.context.key_value_store
        if store is not None:
            snapshot_key = f"{config.SEARCH_ERROR_SNAPSHOT_PREFIX}{uuid.uuid4().hex[:12]}"
            store.put(snapshot_key, error.response_body or "", content_type="text/plain")
            snapshot_url = store.record_url(snapshot_key)
        raise SearchRetryError(
            f"{self.log_base_scroll} Error occured, will retry the page: {error.message}\n"
            f" Storing response body for debugging: {snapshot_url}\n"
            f"{self.request_url}",
            reason=error.message,
            snapshot_url=snapshot_url,
        )

    async def _check_budget(self) -> Optional[ScrollStop]:
        budget = self.context.budget
        if self.context.export_place_urls:
            has_room = budget.can_scrape_more(self.search_key)
        else:
            has_room = budget.can_enqueue_more(self.search_key)
        # already logged by the response handler
        return None if has_room else ScrollStop.BUDGET_EXHAUSTED

    async def _check_auto_zoom(self) -> Optional[ScrollStop]:
        max_zoom_out = self.context.max_automatic_zoom_out
        if max_zoom_out is None or self._start_zoom is None:
            return None
        actual_zoom = parse_zoom_from_url(self.page.url)
        if actual_zoom is None or self._start_zoom - actual_zoom <= max_zoom_out:
            return None
        logger.warning(
            "%s Finishing search because Google zoomed out further than maxAutomaticZoomOut. "
            "Current zoom: %s --- %s - %s",
            self.log_base_scroll,
            actual_zoom,
            self.search_string,
            self.request_url,
        )
        return ScrollStop.AUTO_ZOOM

    async def _check_page_cap(self) -> Optional[ScrollStop]:
        if self.page_stats.total_found < config.MAX_PLACES_PER_PAGE:
            return None
        logger.warning(
            "%s Finishing scrolling with %s results for this page because we found maximum (%s) places per page - %s",
            self.log_base_scroll,
            self.page_stats.total_found,
            config.MAX_PLACES_PER_PAGE,
            self.request_url,
        )
        return ScrollStop.PAGE_CAP

    async def _scroll_once(self) -> None:
        # 2-4 s, randomized
        delay = config.SCROLL_WAIT_MIN_MS + math.ceil(config.SCROLL_WAIT_JITTER_MS * self.rng())
        await self.page.wait_for_timeout(delay)
        # The wheel only scrolls the results panel when the pointer is over it
        x, y = config.SCROLL_POINTER_POSITION
        await self.page.mouse.move(x, y)
        await self.page.wait_for_timeout(config.SCROLL_POINTER_SETTLE_MS)
        await self.page.mouse.wheel(0, config.SCROLL_DELTA_Y)
        self.page_stats.page_num += 1

    # --- special mode ---

    async def _run_all_places_mode(self) -> None:
        await self.page.wait_for_timeout(config.ALL_PLACES_SETTLE_MS)
        overlay = await self.page.query_selector(config.DISMISS_OVERLAY_SEL)
        if overlay is not None:
            await overlay.click()

        pin_positions: List[Dict[str, float]] = []
        if self.search_string.endswith(config.ALL_PLACES_OCR_SUFFIX):
            recognizer = self.context.pin_recognizer
            if recognizer is not None:
                pin_positions = await recognizer(self.page)
            if not pin_positions:
                # no generic sweep fallback in OCR mode
                logger.warning("%s No pins recognized on the map, skipping the mouse sweep", self.log_base)
                return

        await move_mouse_through_page(self.page, pin_positions)
        logger.info(
            "[SEARCH]: Mouse moving finished, enqueued %s/%s out of found: %s",
            self.page_stats.total_enqueued,
            self.page_stats.total_found,
            self.page.url,
        )


async def enqueue_all_place_details(
    context: CrawlContext,
    page: Any,
    search_string: Optional[str],
    request_url: str,
) -> PageStats:
    return await SearchScroller(context, page, search_string, request_url).run()
