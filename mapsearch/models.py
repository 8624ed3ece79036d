"""Data shapes shared by the response path and the scroll loop."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class Coordinates:
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["Coordinates"]:
        if not data:
            return None
        lat = data.get("lat")
        lng = data.get("lng", data.get("lon"))
        if lat is None or lng is None:
            return None
        return cls(float(lat), float(lng))


@dataclass
class PlaceCandidate:
    place_id: str
    coords: Optional[Coordinates] = None
    rank: Optional[int] = None
    address_parsed: Optional[Dict[str, Any]] = None
    is_advertisement: bool = False
    categories: List[str] = field(default_factory=list)
    title: Optional[str] = None


@dataclass(frozen=True)
class DeferredError:
    message: str
    response_status: Optional[int] = None
    response_body: Optional[str] = None


@dataclass
class PageStats:
    """Counters of one search invocation.

    Written by the response handler and read by the scroll loop. Errors found
    while handling a response are parked here with set_error() and picked up
    exactly once by the loop with take_error().
    """

    page_num: int = 1
    found: int = 0
    total_found: int = 0
    enqueued: int = 0
    total_enqueued: int = 0
    pushed: int = 0
    total_pushed: int = 0
    is_data_page: bool = False
    _error: Optional[DeferredError] = field(default=None, repr=False)

    @property
    def has_error(self) -> bool:
        return self._error is not None

    def set_error(
        self,
        message: str,
        response_status: Optional[int] = None,
        response_body: Optional[str] = None,
    ) -> None:
        # First error wins; later ones describe the same broken page.
        if self._error is None:
            self._error = DeferredError(message, response_status, response_body)

    def take_error(self) -> Optional[DeferredError]:
        error = self._error
        self._error = None
        return error

    def start_response_page(self, found: int) -> None:
        self.enqueued = 0
        self.pushed = 0
        self.found = found
        self.total_found += found


@dataclass(frozen=True)
class QueueOperationInfo:
    request_id: str
    was_already_present: bool
    was_already_handled: bool = False


@dataclass(frozen=True)
class ParseResult:
    candidates: List[PlaceCandidate]
    error: Optional[str] = None
