"""Project configuration.

Keeps the Google Maps URLs, DOM selectors and crawl tuning constants in one
place and loads the per-run crawl input from a JSON file.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

_REPO_ROOT = Path(__file__).resolve().parent.parent

# --- URLs ---

MAPS_BASE_URL = "https://www.google.com/maps"
PLACE_SEARCH_URL = "https://www.google.com/maps/search/?api=1"

# Network responses worth parsing
SEARCH_RESPONSE_URL_PATTERN = r"google\.[a-z.]+/search"
PREVIEW_RESPONSE_URL_PATTERN = r"google\.[a-z.]+/maps/preview/place"
PAGE_NUMBER_QUERY_PARAM = "ech"

# --- Selectors ---

SEARCH_BOX_SEL = "#searchboxinput"
SEARCH_BUTTON_SEL = "#searchbox-searchbutton"
SEARCH_BOX_CONTAINER_SEL = "#searchbox"
LOADING_PANE_SEL = ".loading-pane-section-loading"
BAD_QUERY_SEL = '[class *= "section-bad-query"]'
NO_RESULT_XPATH = '//div[contains(text(), "No results found")]'
PLACE_TITLE_SEL = "h1.DUwDvf"
RESULT_LINK_SEL = "a.hfpxzc"
END_OF_RESULTS_SEL = ".HlvSq"
DISMISS_OVERLAY_SEL = 'button[aria-label*="Dismiss"]'

# --- Search tuning ---

SEARCH_BOX_TIMEOUT_MS = 15_000
MAP_LOADER_TIMEOUT_MS = 60_000
SUBMIT_SETTLE_MS = 5_000
SEARCH_WAIT_TIME_MS = 30_000
CHECK_LOAD_OUTCOMES_EVERY_MS = 500

PLACES_PER_RESPONSE_PAGE = 20
MAX_PLACES_PER_PAGE = 120
MAX_EMPTY_SCROLLS = 10
SCROLL_WAIT_MIN_MS = 2_000
SCROLL_WAIT_JITTER_MS = 2_000
SCROLL_POINTER_POSITION = (10, 300)
SCROLL_POINTER_SETTLE_MS = 100
SCROLL_DELTA_Y = 800

EXPORT_ABORT_GRACE_MS = 5_000

# --- Special "all places" mode ---

ALL_PLACES_SEARCH_PREFIX = "all_places_no_search"
ALL_PLACES_OCR_SUFFIX = "_ocr"
ALL_PLACES_SETTLE_MS = 10_000
MOUSE_SWEEP_STEP_PX = 80
MOUSE_SWEEP_MOVE_STEPS = 5
MOUSE_SWEEP_PAUSE_MS = 50

# --- Storage keys ---

SEARCH_ERROR_SNAPSHOT_PREFIX = "SEARCH-RESPONSE-ERROR-"
BUDGET_STATE_KEY = "MAX_CRAWLED_PLACES_STATE"
PLACES_CACHE_KEY = "PLACES_CACHE"
EXPORT_DEDUPER_KEY = "EXPORT_URLS_DEDUPER"
REQUEST_QUEUE_KEY = "REQUEST_QUEUE_STATE"
STATS_KEY = "STATS"

# --- Run defaults ---

DEFAULT_LANGUAGE = "en"
DEFAULT_ZOOM = 12
DEFAULT_MAX_CONCURRENCY = 2
DEFAULT_MAX_REQUEST_RETRIES = 3
PERSIST_STATE_INTERVAL_SECONDS = 60.0
OUTPUT_DIR = "out"
STATE_DB_NAME = "state.db"

# --- Pin recognition (HTTP collaborator) ---

PIN_RECOGNITION_URL_ENV = "PIN_RECOGNITION_URL"
PIN_RECOGNITION_TOKEN_ENV = "PIN_RECOGNITION_TOKEN"
HTTP_TIMEOUT_SECONDS = 60
HTTP_RETRY_MAX = 3
HTTP_BACKOFF_BASE = 0.5
HTTP_BACKOFF_MAX = 8.0

_GEOLOCATION_TYPES = {"Polygon", "MultiPolygon", "Point"}


@dataclass(frozen=True)
class CrawlInput:
    search_strings: List[str] = field(default_factory=list)
    start_urls: List[str] = field(default_factory=list)
    language: str = DEFAULT_LANGUAGE
    lat: Optional[float] = None
    lng: Optional[float] = None
    zoom: int = DEFAULT_ZOOM
    max_crawled_places: Optional[int] = None
    max_crawled_places_per_search: Optional[int] = None
    export_place_urls: bool = False
    max_automatic_zoom_out: Optional[int] = None
    geolocation: Optional[Dict[str, Any]] = None
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_request_retries: int = DEFAULT_MAX_REQUEST_RETRIES
    headless: bool = True
    use_cached_places: bool = False


# camelCase input keys accepted alongside the snake_case field names
_INPUT_ALIASES = {
    "searchStringsArray": "search_strings",
    "searchStrings": "search_strings",
    "startUrls": "start_urls",
    "maxCrawledPlaces": "max_crawled_places",
    "maxCrawledPlacesPerSearch": "max_crawled_places_per_search",
    "exportPlaceUrls": "export_place_urls",
    "maxAutomaticZoomOut": "max_automatic_zoom_out",
    "maxConcurrency": "max_concurrency",
    "maxRequestRetries": "max_request_retries",
    "useCachedPlaces": "use_cached_places",
}


def _normalize_start_urls(raw: Any) -> List[str]:
    urls: List[str] = []
    for item in raw or []:
        if isinstance(item, dict):
            url = item.get("url")
        else:
            url = item
        if url:
            urls.append(str(url))
    return urls


def crawl_input_from_dict(data: Dict[str, Any]) -> CrawlInput:
    """Build a CrawlInput from a decoded JSON object.

    Unknown keys are ignored so an input file can carry notes or options of
    other tools.
    """
    known = set(CrawlInput.__dataclass_fields__)
    values: Dict[str, Any] = {}
    for key, value in data.items():
        name = _INPUT_ALIASES.get(key, key)
        if name in known:
            values[name] = value

    if "search_strings" in values:
        values["search_strings"] = [s.strip() for s in values["search_strings"] or [] if s and s.strip()]
    if "start_urls" in values:
        values["start_urls"] = _normalize_start_urls(values["start_urls"])
    for name in ("max_crawled_places", "max_crawled_places_per_search", "max_automatic_zoom_out"):
        if values.get(name) is not None:
            values[name] = int(values[name])
    for name in ("lat", "lng"):
        if values.get(name) is not None:
            values[name] = float(values[name])

    crawl_input = CrawlInput(**values)
    validate_crawl_input(crawl_input)
    return crawl_input


def load_crawl_input(path: Optional[str] = None) -> CrawlInput:
    """Load crawl input from a JSON file (default: repo-root crawl_input.json)."""
    if path is None:
        path = str(_REPO_ROOT / "crawl_input.json")
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Crawl input must be a JSON object: {path}")
    return crawl_input_from_dict(data)


def validate_crawl_input(crawl_input: CrawlInput) -> None:
    if not crawl_input.search_strings and not crawl_input.start_urls:
        raise ValueError("Crawl input needs at least one search string or start URL")
    for name in ("max_crawled_places", "max_crawled_places_per_search"):
        value = getattr(crawl_input, name)
        if value is not None and value < 1:
            raise ValueError(f"{name} must be >= 1 when set")
    if crawl_input.max_automatic_zoom_out is not None and crawl_input.max_automatic_zoom_out < 0:
        raise ValueError("max_automatic_zoom_out must be >= 0")
    if crawl_input.max_concurrency < 1:
        raise ValueError("max_concurrency must be >= 1")
    if crawl_input.max_request_retries < 0:
        raise ValueError("max_request_retries must be >= 0")
    if (crawl_input.lat is None) != (crawl_input.lng is None):
        raise ValueError("lat and lng must be set together")

    geo = crawl_input.geolocation
    if geo is not None:
        geo_type = geo.get("type")
        if geo_type not in _GEOLOCATION_TYPES:
            raise ValueError(f"Unsupported geolocation type: {geo_type}")
        if geo_type == "Point" and geo.get("radiusKm") is None:
            raise ValueError("Point geolocation requires radiusKm")
