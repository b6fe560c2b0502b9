"""Forward geocoding: place name -> WGS84 coordinates.

Two backends are tried in a fixed order: AMap (needs an API key, strong on
Chinese place names, answers in GCJ-02) and OpenStreetMap Nominatim (keyless
fallback, already WGS84). Each backend turns its own response shape into a
`PlaceRecord`; the chain stops at the first usable answer.
"""

from __future__ import annotations

import logging
import re
import threading
import time
from typing import Any, List, Optional, Sequence

import requests

from domain.errors import ProviderError
from domain.models import PlaceRecord, PlaceSource, round_coords
from services.coord_transform import gcj02_to_wgs84
from settings import Settings

AMAP_GEOCODE_URL = "https://restapi.amap.com/v3/geocode/geo"
NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"

logger = logging.getLogger(__name__)
_session = requests.Session()
_last_request_ts: float = 0.0
_lock = threading.Lock()
_logged_ua = False


def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)


def _throttled_get(
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
    min_interval: float = 0.0,
) -> requests.Response:
    """Perform a GET request with a simple global rate limit."""
    global _last_request_ts
    if min_interval > 0:
        with _lock:
            now = time.time()
            delta = now - _last_request_ts
            if delta < min_interval:
                time.sleep(min_interval - delta)
            _last_request_ts = time.time()
    return _session.get(url, params=params, headers=headers, timeout=timeout)


def _get_json(provider: str, query: str, url: str, **kwargs: Any) -> Any:
    """GET + status check + JSON decode, folding every failure into ProviderError."""
    try:
        resp = _throttled_get(url, **kwargs)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise ProviderError(provider, query, str(exc)) from exc
    try:
        return resp.json()
    except ValueError as exc:
        raise ProviderError(provider, query, f"invalid JSON: {exc}") from exc


class GeocodingProvider:
    """One forward-geocoding backend."""

    name: str = "base"

    def is_configured(self) -> bool:
        return True

    def lookup(self, query: str) -> Optional[PlaceRecord]:
        """Return the first usable result, None when the backend has no match.

        Raises ProviderError on transient failures.
        """
        raise NotImplementedError


class AmapProvider(GeocodingProvider):
    name = PlaceSource.AMAP.value

    def __init__(self, api_key: Optional[str], timeout: float = 5.0):
        self.api_key = api_key
        self.timeout = timeout

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def lookup(self, query: str) -> Optional[PlaceRecord]:
        data = _get_json(
            self.name,
            query,
            AMAP_GEOCODE_URL,
            params={"address": query, "key": self.api_key, "output": "json"},
            headers={},
            timeout=self.timeout,
        )
        if not isinstance(data, dict) or str(data.get("status")) != "1":
            info = data.get("info") if isinstance(data, dict) else None
            logger.debug("[GEOCODE] amap returned no result for %r (%s)", query, info)
            return None
        geocodes = data.get("geocodes") or []
        if not geocodes:
            return None
        if not isinstance(geocodes, list) or not isinstance(geocodes[0], dict):
            raise ProviderError(self.name, query, "malformed geocodes list")
        first = geocodes[0]
        try:
            lng_s, lat_s = str(first["location"]).split(",")
            lng, lat = float(lng_s), float(lat_s)
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(self.name, query, f"malformed location: {exc}") from exc

        # AMap answers in GCJ-02
        wgs_lng, wgs_lat = gcj02_to_wgs84(lng, lat)
        # AMap encodes missing fields as empty lists, which fall through here
        display = first.get("formatted_address") or first.get("city") or query
        return PlaceRecord(
            display_name=str(display),
            coords=round_coords(wgs_lng, wgs_lat),
            source=self.name,
        )


class NominatimProvider(GeocodingProvider):
    name = PlaceSource.OSM.value

    def __init__(
        self,
        user_agent: str,
        referer: Optional[str] = None,
        timeout: float = 10.0,
        min_interval: float = 1.1,
    ):
        self.headers = {"User-Agent": user_agent}
        if referer:
            self.headers["Referer"] = referer
        self.timeout = timeout
        self.min_interval = min_interval

    def lookup(self, query: str) -> Optional[PlaceRecord]:
        global _logged_ua
        if not _logged_ua:
            logger.debug("Nominatim User-Agent: %s", _redact_email(self.headers["User-Agent"]))
            _logged_ua = True

        data = _get_json(
            self.name,
            query,
            NOMINATIM_SEARCH_URL,
            params={"q": query, "format": "json", "limit": "1", "addressdetails": "1"},
            headers=self.headers,
            timeout=self.timeout,
            min_interval=self.min_interval,
        )
        if not isinstance(data, list) or not data:
            return None
        item = data[0]
        try:
            lng, lat = float(item["lon"]), float(item["lat"])
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderError(self.name, query, f"malformed coordinates: {exc}") from exc
        display_name = str(item.get("display_name") or "")
        short_name = display_name.split(",")[0].strip() or query
        return PlaceRecord(
            display_name=short_name,
            coords=round_coords(lng, lat),
            source=self.name,
        )


class ProviderChain:
    """Ordered list of providers; first usable answer wins."""

    def __init__(self, providers: Sequence[GeocodingProvider]):
        self.providers: List[GeocodingProvider] = list(providers)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderChain":
        return cls(
            [
                AmapProvider(settings.amap_key, timeout=settings.amap_timeout),
                NominatimProvider(
                    settings.nominatim_user_agent,
                    referer=settings.nominatim_referer,
                    timeout=settings.nominatim_timeout,
                    min_interval=settings.nominatim_min_interval,
                ),
            ]
        )

    def resolve(self, query: str) -> Optional[PlaceRecord]:
        for provider in self.providers:
            if not provider.is_configured():
                logger.debug("[GEOCODE] skipping unconfigured provider %s", provider.name)
                continue
            try:
                result = provider.lookup(query)
            except ProviderError as exc:
                logger.warning("[GEOCODE] %s", exc)
                continue
            if result is not None:
                return result
        return None
