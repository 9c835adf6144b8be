"""Reverse geocoding (lat/lon -> address) against OpenStreetMap Nominatim.

Public Nominatim is rate-limited: keep `min_interval_sec` >= 1 and send a
descriptive User-Agent.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Protocol

import httpx

from .geo import coord_key

logger = logging.getLogger(__name__)


class ReverseGeocoder(Protocol):
    def reverse(self, lat: float, lon: float) -> str | None: ...


@dataclass(frozen=True)
class NominatimConfig:
    base_url: str = "https://nominatim.openstreetmap.org/reverse"
    accept_language: str = "id"
    timeout_sec: float = 10.0
    min_interval_sec: float = 1.0
    user_agent: str = "locintel/0.1.0 (reverse-geocode)"
    precision: int = 4


class NominatimReverseGeocoder:
    def __init__(self, config: NominatimConfig, client: httpx.Client | None = None):
        self._cfg = config
        self._client = client or httpx.Client(timeout=config.timeout_sec)
        self._cache: dict[str, str] = {}
        self._last_request_at = 0.0

    def reverse(self, lat: float, lon: float) -> str | None:
        """Return the display name for a coordinate, or None on any failure."""
        key = coord_key(lat, lon, self._cfg.precision)
        if key in self._cache:
            return self._cache[key]

        self._sleep_if_needed()
        try:
            resp = self._client.get(
                self._cfg.base_url,
                params={"format": "json", "lat": f"{lat:.8f}", "lon": f"{lon:.8f}", "addressdetails": "1"},
                headers={
                    "Accept-Language": self._cfg.accept_language,
                    "User-Agent": self._cfg.user_agent,
                    "Accept": "application/json",
                },
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("reverse geocode failed for %s: %s", key, e)
            return None

        name = str(data.get("display_name") or "") if isinstance(data, dict) else ""
        if not name:
            return None
        self._cache[key] = name
        return name

    def close(self) -> None:
        self._client.close()

    def _sleep_if_needed(self) -> None:
        wait = self._cfg.min_interval_sec - (time.monotonic() - self._last_request_at)
        if wait > 0 and self._last_request_at > 0:
            time.sleep(wait)
        self._last_request_at = time.monotonic()
