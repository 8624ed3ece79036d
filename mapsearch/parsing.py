"""Parser for the listing-search and place-preview XHR bodies of Google Maps.

Search bodies are a JSON envelope whose "d" member holds another JSON document
behind the )]}' anti-hijacking prefix; the place list sits at index 64 (index
[0][1] in the older layout). Preview bodies carry the prefix directly and keep
the single place at index 6.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Iterator, List, Optional

from .models import Coordinates, ParseResult, PlaceCandidate

logger = logging.getLogger(__name__)

_XSSI_PREFIX = ")]}'"
_ENVELOPE_SUFFIX = '/*""*/'
_AD_MARKERS = ("/aclk?", "googleadservices.com")


def _dig(obj: Any, *path: int) -> Any:
    for idx in path:
        try:
            obj = obj[idx]
        except (IndexError, KeyError, TypeError):
            return None
    return obj


def _strip_xssi(text: str) -> str:
    text = text.lstrip()
    if text.startswith(_XSSI_PREFIX):
        text = text[len(_XSSI_PREFIX):]
    return text


def _iter_strings(obj: Any, depth: int = 0) -> Iterator[str]:
    if depth > 6:
        return
    if isinstance(obj, str):
        yield obj
    elif isinstance(obj, list):
        for item in obj:
            yield from _iter_strings(item, depth + 1)


def _parse_coords(place: List[Any]) -> Optional[Coordinates]:
    lat = _dig(place, 9, 2)
    lng = _dig(place, 9, 3)
    if lat is None or lng is None:
        return None
    return Coordinates(float(lat), float(lng))


def _parse_address(place: List[Any]) -> Optional[dict]:
    detail = _dig(place, 183, 1)
    if not isinstance(detail, list):
        return None
    return {
        "neighborhood": _dig(detail, 1),
        "street": _dig(detail, 2),
        "city": _dig(detail, 3),
        "postalCode": _dig(detail, 4),
        "state": _dig(detail, 5),
        "countryCode": _dig(detail, 6),
    }


def parse_place(place: List[Any], is_advertisement: bool = False) -> Optional[PlaceCandidate]:
    place_id = _dig(place, 78) or _dig(place, 10)
    if not place_id or not isinstance(place_id, str):
        return None
    categories = _dig(place, 13)
    return PlaceCandidate(
        place_id=place_id,
        coords=_parse_coords(place),
        address_parsed=_parse_address(place),
        is_advertisement=is_advertisement,
        categories=[c for c in categories if isinstance(c, str)] if isinstance(categories, list) else [],
        title=_dig(place, 11),
    )


def _search_entries(data: List[Any]) -> Iterator[tuple]:
    """Yield (entry, place) pairs of a decoded search document."""
    current = _dig(data, 64)
    if isinstance(current, list):
        for entry in current:
            place = _dig(entry, 1)
            if isinstance(place, list):
                yield entry, place
        return
    legacy = _dig(data, 0, 1)
    if isinstance(legacy, list):
        for entry in legacy:
            place = _dig(entry, 14)
            if isinstance(place, list):
                yield entry, place


def _is_advertisement(entry: Any) -> bool:
    return any(marker in s for s in _iter_strings(entry) for marker in _AD_MARKERS)


def parse_search_places_response_body(body: str, is_preview: bool) -> ParseResult:
    candidates: List[PlaceCandidate] = []
    try:
        if is_preview:
            data = json.loads(_strip_xssi(body))
        else:
            envelope = json.loads(body.replace(_ENVELOPE_SUFFIX, ""))
    except ValueError:
        return ParseResult(candidates, error="Response body doesn't contain a valid JSON")

    try:
        if is_preview:
            place = _dig(data, 6)
            if isinstance(place, list):
                candidate = parse_place(place)
                if candidate is not None:
                    candidates.append(candidate)
            return ParseResult(candidates)

        data = json.loads(_strip_xssi(envelope["d"]))
        for entry, place in _search_entries(data):
            candidate = parse_place(place, is_advertisement=_is_advertisement(entry))
            if candidate is not None:
                candidates.append(candidate)
    except (KeyError, TypeError, ValueError) as exc:
        return ParseResult([], error=f"Failed parsing JSON response: {exc}")

    logger.debug("Parsed %s places from %s body", len(candidates), "preview" if is_preview else "search")
    return ParseResult(candidates)
