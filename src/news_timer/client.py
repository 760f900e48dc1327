"""Blocking HTTP client for the News Timer API.

Transport failures (refused connection, timeout) surface as StoreUnavailable;
error responses are rebuilt into the matching NewsTimerError subclass from
their {error, code} body.
"""

from __future__ import annotations

import logging

import requests

from .config import get_settings
from .errors import NewsTimerError, StoreUnavailable, error_for_status

logger = logging.getLogger(__name__)


class ApiClient:
    def __init__(self, base_url: str | None = None, timeout: float | None = None, session: requests.Session | None = None):
        settings = get_settings() if base_url is None or timeout is None else None
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.timeout
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, json: dict | None = None):
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, json=json, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            logger.warning(f"API: timeout on {method} {path}")
            raise StoreUnavailable("Request timed out") from e
        except requests.exceptions.ConnectionError as e:
            logger.warning(f"API: connection refused on {method} {path}")
            raise StoreUnavailable("News Timer API is unreachable") from e
        except requests.exceptions.RequestException as e:
            logger.warning(f"API: {method} {path} failed: {e}")
            raise StoreUnavailable(str(e)) from e

        if response.status_code >= 400:
            raise self._error_from_response(response)
        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_from_response(response: requests.Response) -> NewsTimerError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("error") or response.reason or f"HTTP {response.status_code}"
        return error_for_status(response.status_code, message, body.get("code"))

    # ---- Sources ----

    def get_sources(self) -> list[dict]:
        return self._request("GET", "/api/sources")

    def add_source(self, name: str, icon: str | None = None, url: str | None = None, allocation: int | None = None) -> dict:
        body = {"name": name}
        if icon:
            body["icon"] = icon
        if url:
            body["url"] = url
        if allocation is not None:
            body["allocation"] = allocation
        return self._request("POST", "/api/sources", json=body)

    def update_source_allocation(self, key: str, allocation: int) -> None:
        self._request("PUT", f"/api/sources/{key}/allocation", json={"allocation": allocation})

    def delete_source(self, key: str) -> None:
        self._request("DELETE", f"/api/sources/{key}")

    # ---- Settings ----

    def get_settings(self) -> dict:
        return self._request("GET", "/api/settings")

    def update_settings(self, total_time_limit: int, auto_start: bool) -> None:
        self._request(
            "PUT",
            "/api/settings",
            json={"totalTimeLimit": total_time_limit, "autoStart": auto_start},
        )

    # ---- Usage ----

    def record_usage(self, payload: dict) -> None:
        """POST /api/usage with {sourceKey, timeUsed, sessions, overrunTime}."""
        self._request("POST", "/api/usage", json=payload)

    def get_stats(self) -> dict:
        return self._request("GET", "/api/stats")

    def reset(self) -> None:
        self._request("POST", "/api/reset")

    def health(self) -> dict:
        return self._request("GET", "/api/health")
