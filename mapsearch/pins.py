"""Pin recognition through an external screenshot-OCR service."""
from __future__ import annotations

import asyncio
import base64
import logging
import os
from typing import Any, Dict, List, Optional

import requests

from . import config
from .http import HttpClient

logger = logging.getLogger(__name__)


def parse_pin_positions(payload: Dict[str, Any]) -> List[Dict[str, float]]:
    pins = []
    for item in payload.get("pins") or []:
        try:
            pins.append({"x": float(item["x"]), "y": float(item["y"])})
        except (KeyError, TypeError, ValueError):
            continue
    return pins


class PinRecognitionClient:
    """Screenshots the map and asks the service where the place pins are.

    The service receives {"image": <base64 png>, "viewport": {...}} and answers
    {"pins": [{"x": .., "y": ..}, ...]} in page pixels. Any failure yields no
    pins.
    """

    def __init__(self, endpoint: str, http_client: HttpClient) -> None:
        self.endpoint = endpoint
        self.http = http_client

    @classmethod
    def from_env(cls) -> Optional["PinRecognitionClient"]:
        endpoint = (os.environ.get(config.PIN_RECOGNITION_URL_ENV) or "").strip()
        if not endpoint:
            return None
        http_client = HttpClient(
            api_token=os.environ.get(config.PIN_RECOGNITION_TOKEN_ENV) or None,
            timeout=config.HTTP_TIMEOUT_SECONDS,
            retry_max=config.HTTP_RETRY_MAX,
            backoff_base=config.HTTP_BACKOFF_BASE,
            backoff_max=config.HTTP_BACKOFF_MAX,
        )
        return cls(endpoint, http_client)

    async def __call__(self, page: Any) -> List[Dict[str, float]]:
        screenshot = await page.screenshot(type="png")
        body = {
            "image": base64.b64encode(screenshot).decode("ascii"),
            "viewport": page.viewport_size,
        }
        try:
            payload = await asyncio.to_thread(self.http.post_json, self.endpoint, body)
        except (requests.RequestException, ValueError, RuntimeError) as exc:
            logger.warning("Pin recognition failed: %s", exc)
            return []
        pins = parse_pin_positions(payload)
        logger.info("Pin recognition found %s pins", len(pins))
        return pins
