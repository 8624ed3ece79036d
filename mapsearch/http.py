"""HTTP client with retry/backoff for external helper services."""
from __future__ import annotations

import json
import logging
import random
import time
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


class HttpClient:
    def __init__(
        self,
        api_token: Optional[str] = None,
        timeout: int = 20,
        retry_max: int = 5,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
    ) -> None:
        self.api_token = api_token
        self.timeout = timeout
        self.retry_max = retry_max
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.session = requests.Session()

    def post_json(
        self,
        url: str,
        body: Dict[str, Any],
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        if extra_headers:
            headers.update(extra_headers)

        payload = json.dumps(body)
        for attempt in range(1, self.retry_max + 1):
            try:
                resp = self.session.post(url, data=payload, headers=headers, timeout=self.timeout)
            except requests.RequestException as exc:
                logger.warning("POST %s failed: %s (attempt %s)", url, exc, attempt)
                if attempt >= self.retry_max:
                    raise
                self._sleep_backoff(attempt)
                continue

            status = resp.status_code
            if status == 200:
                try:
                    return resp.json()
                except ValueError:
                    logger.error("Non-JSON response from %s", url)
                    raise

            if status in RETRYABLE_STATUSES:
                logger.warning("HTTP %s from %s (attempt %s)", status, url, attempt)
                if attempt >= self.retry_max:
                    resp.raise_for_status()
                if not self._sleep_retry_after(resp):
                    self._sleep_backoff(attempt)
                continue

            logger.error("HTTP %s from %s", status, url)
            resp.raise_for_status()

        raise RuntimeError("Unexpected HTTP retry loop exit")

    def _sleep_backoff(self, attempt: int) -> None:
        base = min(self.backoff_base * (2 ** (attempt - 1)), self.backoff_max)
        jitter = random.uniform(0, self.backoff_base)
        time.sleep(base + jitter)

    def _sleep_retry_after(self, resp: requests.Response) -> bool:
        retry_after = resp.headers.get("Retry-After")
        if not retry_after:
            return False
        try:
            delay = float(retry_after)
        except ValueError:
            return False
        time.sleep(max(0.0, min(delay, self.backoff_max)))
        return True
