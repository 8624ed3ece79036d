import pytest

from mapsearch.geo import (
    check_in_polygon,
    haversine_km,
    make_geo_filter,
    parse_zoom_from_url,
    viewport_grid_points,
)
from mapsearch.models import Coordinates

SQUARE = {
    "type": "Polygon",
    "coordinates": [[[14.0, 50.0], [15.0, 50.0], [15.0, 51.0], [14.0, 51.0], [14.0, 50.0]]],
}


def test_polygon_contains_uses_lng_lat_order():
    in_polygon = make_geo_filter(SQUARE)
    assert in_polygon(Coordinates(lat=50.5, lng=14.5))
    assert not in_polygon(Coordinates(lat=14.5, lng=50.5))
    assert not in_polygon(Coordinates(lat=52.0, lng=14.5))


def test_polygon_boundary_counts_as_inside():
    assert check_in_polygon(SQUARE, Coordinates(lat=50.0, lng=14.5))


def test_multipolygon():
    geo = {
        "type": "MultiPolygon",
        "coordinates": [
            SQUARE["coordinates"],
            [[[20.0, 50.0], [21.0, 50.0], [21.0, 51.0], [20.0, 51.0], [20.0, 50.0]]],
        ],
    }
    assert check_in_polygon(geo, Coordinates(lat=50.5, lng=20.5))
    assert not check_in_polygon(geo, Coordinates(lat=50.5, lng=17.0))


def test_point_with_radius():
    geo = {"type": "Point", "coordinates": [14.42, 50.08], "radiusKm": 5}
    assert check_in_polygon(geo, Coordinates(lat=50.09, lng=14.43))
    assert not check_in_polygon(geo, Coordinates(lat=50.5, lng=14.42))


def test_unknown_coordinates_and_missing_geolocation_pass():
    assert check_in_polygon(SQUARE, None)
    assert check_in_polygon(None, Coordinates(lat=0.0, lng=0.0))


def test_haversine_known_distance():
    # Prague -> Brno is roughly 185 km
    distance = haversine_km(50.0755, 14.4378, 49.1951, 16.6068)
    assert 180 < distance < 190


def test_parse_zoom_from_url():
    assert parse_zoom_from_url("https://www.google.com/maps/search/pizza/@50.08,14.42,13.5z?hl=en") == 13.5
    assert parse_zoom_from_url("https://www.google.com/maps/@-33.86,151.2,15z") == 15.0
    assert parse_zoom_from_url("https://www.google.com/maps/place/foo") is None
    assert parse_zoom_from_url("") is None


def test_viewport_grid_points():
    points = viewport_grid_points(200, 100, 50)
    assert points[0] == {"x": 25, "y": 25}
    assert len(points) == 8
    with pytest.raises(ValueError):
        viewport_grid_points(200, 100, 0)
