"""Classifies what a submitted search loaded."""
from __future__ import annotations

import enum
import logging
import time
from typing import Any, Awaitable, Callable, List, Tuple

from . import config

logger = logging.getLogger(__name__)


class SearchOutcome(enum.Enum):
    TIMEOUT = "timeout"
    BAD_QUERY = "bad_query"
    NO_RESULTS = "no_results"
    SINGLE_PLACE_REDIRECT = "single_place_redirect"
    RESULTS_LOADED = "results_loaded"


class SearchOutcomeTimeoutError(RuntimeError):
    pass


class SearchOutcomeDetector:
    """Polls the page until one of the known outcomes shows up.

    States are evaluated in a fixed priority order on every poll; the first
    one that matches is returned.
    """

    def __init__(
        self,
        page: Any,
        timeout_ms: int = config.SEARCH_WAIT_TIME_MS,
        poll_interval_ms: int = config.CHECK_LOAD_OUTCOMES_EVERY_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.page = page
        self.timeout_ms = timeout_ms
        self.poll_interval_ms = poll_interval_ms
        self.clock = clock

    def _checks(self) -> List[Tuple[SearchOutcome, Callable[[], Awaitable[bool]]]]:
        return [
            (SearchOutcome.BAD_QUERY, self._is_bad_query),
            (SearchOutcome.NO_RESULTS, self._has_no_results),
            (SearchOutcome.SINGLE_PLACE_REDIRECT, self._is_place_detail),
            (SearchOutcome.RESULTS_LOADED, self._has_results),
        ]

    # Class contains-selectors because Google appends ids to the class names
    async def _is_bad_query(self) -> bool:
        return await self.page.query_selector(config.BAD_QUERY_SEL) is not None

    async def _has_no_results(self) -> bool:
        matches = await self.page.query_selector_all(f"xpath={config.NO_RESULT_XPATH}")
        return len(matches) > 0

    async def _is_place_detail(self) -> bool:
        return await self.page.query_selector(config.PLACE_TITLE_SEL) is not None

    async def _has_results(self) -> bool:
        matches = await self.page.query_selector_all(config.RESULT_LINK_SEL)
        return len(matches) > 0

    async def detect(self) -> SearchOutcome:
        start = self.clock()
        checks = self._checks()
        while True:
            if (self.clock() - start) * 1000 > self.timeout_ms:
                return SearchOutcome.TIMEOUT
            for outcome, check in checks:
                if await check():
                    logger.debug("Search outcome: %s", outcome.value)
                    return outcome
            await self.page.wait_for_timeout(self.poll_interval_ms)
