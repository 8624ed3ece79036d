"""Geospatial helpers."""
from __future__ import annotations

import math
import re
from typing import Any, Callable, Dict, List, Optional

from shapely.geometry import Point, shape

from .models import Coordinates

GeoFilter = Callable[[Optional[Coordinates]], bool]

_ZOOM_RE = re.compile(r"@(-?\d+(?:\.\d+)?),(-?\d+(?:\.\d+)?),(-?\d+(?:\.\d+)?)z")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = 6371.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def make_geo_filter(geolocation: Optional[Dict[str, Any]]) -> GeoFilter:
    """Build a containment check for a GeoJSON Polygon, MultiPolygon or Point+radiusKm.

    The returned callable answers True when there is no geolocation or the
    coordinates are unknown, so unresolved places are never dropped.
    """
    if not geolocation:
        return lambda coords: True

    if geolocation.get("type") == "Point":
        center_lng, center_lat = geolocation["coordinates"][:2]
        radius_km = float(geolocation["radiusKm"])

        def in_circle(coords: Optional[Coordinates]) -> bool:
            if coords is None:
                return True
            return haversine_km(center_lat, center_lng, coords.lat, coords.lng) <= radius_km

        return in_circle

    geometry = shape(geolocation)
    if not geometry.is_valid:
        geometry = geometry.buffer(0)

    def in_polygon(coords: Optional[Coordinates]) -> bool:
        if coords is None:
            return True
        # GeoJSON order is (lng, lat)
        return geometry.covers(Point(coords.lng, coords.lat))

    return in_polygon


def check_in_polygon(geolocation: Optional[Dict[str, Any]], coords: Optional[Coordinates]) -> bool:
    return make_geo_filter(geolocation)(coords)


def parse_zoom_from_url(url: str) -> Optional[float]:
    match = _ZOOM_RE.search(url or "")
    if not match:
        return None
    return float(match.group(3))


def viewport_grid_points(width: int, height: int, step: int) -> List[Dict[str, int]]:
    if step <= 0:
        raise ValueError("Grid step must be > 0")
    points = []
    for y in range(step // 2, height, step):
        for x in range(step // 2, width, step):
            points.append({"x": x, "y": y})
    return points
