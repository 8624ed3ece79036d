"""Global and per-search caps on places enqueued or exported."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from . import config

logger = logging.getLogger(__name__)


@dataclass
class SearchCounters:
    enqueued: int = 0
    scraped: int = 0


class CrawlBudgetTracker:
    """Counts places per run and per search key.

    A cap of None means unlimited. set_enqueued/set_scraped advance the
    counters first and then report whether there is still room, so the caller
    knows to stop after the current place.
    """

    def __init__(
        self,
        max_crawled_places: Optional[int] = None,
        max_crawled_places_per_search: Optional[int] = None,
    ) -> None:
        self.max_crawled_places = max_crawled_places
        self.max_crawled_places_per_search = max_crawled_places_per_search
        self.enqueued_total = 0
        self.scraped_total = 0
        self.per_search: Dict[str, SearchCounters] = {}

    def _counters(self, search_key: str) -> SearchCounters:
        counters = self.per_search.get(search_key)
        if counters is None:
            counters = SearchCounters()
            self.per_search[search_key] = counters
        return counters

    @staticmethod
    def _has_room(count: int, cap: Optional[int]) -> bool:
        return cap is None or count < cap

    def enqueued_for(self, search_key: str) -> int:
        counters = self.per_search.get(search_key)
        return counters.enqueued if counters else 0

    def can_enqueue_more(self, search_key: Optional[str] = None) -> bool:
        if not self._has_room(self.enqueued_total, self.max_crawled_places):
            return False
        if search_key is not None:
            per_search = self.enqueued_for(search_key)
            if not self._has_room(per_search, self.max_crawled_places_per_search):
                return False
        return True

    def set_enqueued(self, search_key: Optional[str] = None) -> bool:
        self.enqueued_total += 1
        if search_key is not None:
            self._counters(search_key).enqueued += 1
        return self.can_enqueue_more(search_key)

    def release_enqueued(self, search_key: Optional[str] = None) -> None:
        """Undo one set_enqueued() for a place the queue already had."""
        self.enqueued_total = max(0, self.enqueued_total - 1)
        if search_key is not None:
            counters = self._counters(search_key)
            counters.enqueued = max(0, counters.enqueued - 1)

    def can_scrape_more(self, search_key: Optional[str] = None) -> bool:
        if not self._has_room(self.scraped_total, self.max_crawled_places):
            return False
        if search_key is not None:
            counters = self.per_search.get(search_key)
            scraped = counters.scraped if counters else 0
            if not self._has_room(scraped, self.max_crawled_places_per_search):
                return False
        return True

    def set_scraped(self, search_key: Optional[str] = None) -> bool:
        self.scraped_total += 1
        if search_key is not None:
            self._counters(search_key).scraped += 1
        return self.can_scrape_more(search_key)

    def to_state(self) -> Dict[str, Any]:
        return {
            "enqueuedTotal": self.enqueued_total,
            "scrapedTotal": self.scraped_total,
            "perSearch": {
                key: {"enqueued": c.enqueued, "scraped": c.scraped}
                for key, c in self.per_search.items()
            },
        }

    def load_state(self, state: Dict[str, Any]) -> None:
        self.enqueued_total = int(state.get("enqueuedTotal", 0))
        self.scraped_total = int(state.get("scrapedTotal", 0))
        self.per_search = {
            key: SearchCounters(int(c.get("enqueued", 0)), int(c.get("scraped", 0)))
            for key, c in (state.get("perSearch") or {}).items()
        }

    def persist(self, store) -> None:
        store.put_json(config.BUDGET_STATE_KEY, self.to_state())

    def restore(self, store) -> bool:
        state = store.get_json(config.BUDGET_STATE_KEY)
        if state is None:
            return False
        self.load_state(state)
        logger.info(
            "Restored crawl budget state: enqueued=%s scraped=%s searches=%s",
            self.enqueued_total,
            self.scraped_total,
            len(self.per_search),
        )
        return True
