"""Run-wide crawl statistics."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from . import config

logger = logging.getLogger(__name__)


@dataclass
class CrawlStats:
    ok: int = 0
    failed: int = 0
    retried: int = 0
    out_of_polygon: int = 0
    out_of_polygon_cached: int = 0
    out_of_polygon_places: List[Dict[str, Any]] = field(default_factory=list)
    log_interval_seconds: float = 30.0
    _last_log: float = field(default=0.0, repr=False)

    def inc_ok(self) -> None:
        self.ok += 1

    def inc_failed(self) -> None:
        self.failed += 1

    def inc_retried(self) -> None:
        self.retried += 1

    def add_out_of_polygon_place(
        self,
        url: str,
        search_page_url: Optional[str],
        coordinates: Optional[Dict[str, float]],
        cached: bool = False,
    ) -> None:
        self.out_of_polygon += 1
        if cached:
            self.out_of_polygon_cached += 1
        self.out_of_polygon_places.append(
            {"url": url, "searchPageUrl": search_page_url, "coordinates": coordinates}
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "failed": self.failed,
            "retried": self.retried,
            "outOfPolygon": self.out_of_polygon,
            "outOfPolygonCached": self.out_of_polygon_cached,
            "outOfPolygonPlaces": list(self.out_of_polygon_places),
        }

    def log_info(self, force: bool = False) -> None:
        now = time.monotonic()
        if not force and (now - self._last_log) < self.log_interval_seconds:
            return
        self._last_log = now
        logger.info(
            "[STATS]: searches ok=%s failed=%s retried=%s | out of polygon=%s (from cache=%s)",
            self.ok,
            self.failed,
            self.retried,
            self.out_of_polygon,
            self.out_of_polygon_cached,
        )

    def persist(self, store) -> None:
        store.put_json(config.STATS_KEY, self.to_dict())
