"""Run-wide place caches shared by all searches."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from . import config
from .geo import make_geo_filter
from .models import Coordinates

logger = logging.getLogger(__name__)


@dataclass
class CachedPlace:
    location: Optional[Coordinates] = None
    keywords: List[str] = field(default_factory=list)


class PlaceCoordinateCache:
    """Last known coordinates per place id.

    Listing responses sometimes omit coordinates for places that an earlier
    response (possibly of another search) already located; those lookups are
    served from here.
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self._places: Dict[str, CachedPlace] = {}

    def __len__(self) -> int:
        return len(self._places)

    def __contains__(self, place_id: str) -> bool:
        return place_id in self._places

    def get_location(self, place_id: str) -> Optional[Coordinates]:
        cached = self._places.get(place_id)
        return cached.location if cached else None

    def add_location(
        self,
        place_id: str,
        location: Optional[Coordinates],
        keyword: Optional[str] = None,
    ) -> None:
        if not self.enabled:
            return
        cached = self._places.get(place_id)
        if cached is None:
            cached = CachedPlace()
            self._places[place_id] = cached
        if location is not None:
            cached.location = location
        if keyword and keyword not in cached.keywords:
            cached.keywords.append(keyword)

    def places_in_polygon(
        self,
        geolocation: Optional[Dict[str, Any]],
        max_count: Optional[int] = None,
        keywords: Optional[Iterable[str]] = None,
    ) -> List[str]:
        """Place ids whose cached location lies in the polygon.

        With keywords given, only places found by at least one of them count.
        Places without a cached location are skipped.
        """
        in_polygon = make_geo_filter(geolocation)
        wanted = set(keywords or [])
        out: List[str] = []
        for place_id, cached in self._places.items():
            if max_count is not None and len(out) >= max_count:
                break
            if cached.location is None or not in_polygon(cached.location):
                continue
            if wanted and not wanted.intersection(cached.keywords):
                continue
            out.append(place_id)
        return out

    def to_state(self) -> Dict[str, Any]:
        return {
            place_id: {
                "location": cached.location.to_dict() if cached.location else None,
                "keywords": list(cached.keywords),
            }
            for place_id, cached in self._places.items()
        }

    def load_state(self, state: Dict[str, Any]) -> None:
        for place_id, entry in state.items():
            self._places[place_id] = CachedPlace(
                location=Coordinates.from_dict(entry.get("location")),
                keywords=list(entry.get("keywords") or []),
            )

    def persist(self, store) -> None:
        if self.enabled:
            store.put_json(config.PLACES_CACHE_KEY, self.to_state())

    def restore(self, store) -> bool:
        if not self.enabled:
            return False
        state = store.get_json(config.PLACES_CACHE_KEY)
        if state is None:
            return False
        self.load_state(state)
        logger.info("Loaded %s cached places", len(self._places))
        return True


class ExportDeduper:
    def __init__(self) -> None:
        self._place_ids: Set[str] = set()

    def __len__(self) -> int:
        return len(self._place_ids)

    def test_duplicate_and_add(self, place_id: str) -> bool:
        """Return True when the place was already exported, else remember it."""
        if place_id in self._place_ids:
            return True
        self._place_ids.add(place_id)
        return False

    def persist(self, store) -> None:
        store.put_json(config.EXPORT_DEDUPER_KEY, sorted(self._place_ids))

    def restore(self, store) -> bool:
        state = store.get_json(config.EXPORT_DEDUPER_KEY)
        if state is None:
            return False
        self._place_ids.update(state)
        return True
