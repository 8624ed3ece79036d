"""Run-wide collaborators handed to every search."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from .budget import CrawlBudgetTracker
from .cache import ExportDeduper, PlaceCoordinateCache
from .geo import GeoFilter, make_geo_filter
from .models import ParseResult, QueueOperationInfo
from .parsing import parse_search_places_response_body
from .stats import CrawlStats


class RequestQueueLike(Protocol):
    async def add_request(
        self,
        url: str,
        unique_key: Optional[str] = None,
        user_data: Optional[Dict[str, Any]] = None,
        forefront: bool = False,
    ) -> QueueOperationInfo: ...


class ExportSink(Protocol):
    async def push(self, record: Dict[str, Any]) -> None: ...


class SnapshotStore(Protocol):
    def put(self, key: str, value: Any, content_type: str = "text/plain") -> None: ...

    def record_url(self, key: str) -> str: ...


class Scheduler(Protocol):
    async def abort(self) -> None: ...


ResponseParser = Callable[[str, bool], ParseResult]
PinRecognizer = Callable[[Any], Awaitable[List[Dict[str, float]]]]


@dataclass
class CrawlContext:
    budget: CrawlBudgetTracker
    places_cache: PlaceCoordinateCache = field(default_factory=PlaceCoordinateCache)
    stats: CrawlStats = field(default_factory=CrawlStats)
    request_queue: Optional[RequestQueueLike] = None
    dataset: Optional[ExportSink] = None
    export_deduper: Optional[ExportDeduper] = None
    key_value_store: Optional[SnapshotStore] = None
    scheduler: Optional[Scheduler] = None
    pin_recognizer: Optional[PinRecognizer] = None
    parser: ResponseParser = parse_search_places_response_body
    export_place_urls: bool = False
    geolocation: Optional[Dict[str, Any]] = None
    max_automatic_zoom_out: Optional[float] = None
    _geo_filter: Optional[GeoFilter] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.export_place_urls:
            if self.dataset is None:
                raise ValueError("Exporting place URLs requires a dataset")
        elif self.request_queue is None:
            raise ValueError("Enqueueing places requires a request queue")

    @property
    def geo_filter(self) -> GeoFilter:
        if self._geo_filter is None:
            self._geo_filter = make_geo_filter(self.geolocation)
        return self._geo_filter
