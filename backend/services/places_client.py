"""
Nearby place search using Nominatim (OSM) with shared rate limiting and headers.
"""
from __future__ import annotations

import logging
import math
import re
import sqlite3
from typing import List, Optional, Tuple

from domain.errors import InvalidInput, SearchFailed
from domain.models import NO_ADDRESS, UNKNOWN_NAME, Coordinate, Place
from services.geocoding import NOMINATIM_BASE_URL, fetch_json
from services.places_cache_sqlite import PlacesCache, get_default_places_cache
from settings import settings

METERS_PER_DEGREE_LAT = 111_320.0
MAX_ADDRESS_CHARS = 120

_BOILERPLATE_TOKENS = {
    "united states", "united states of america", "usa", "county", "township",
}


def format_place_address(raw: dict) -> str:
    """
    Produce a readable postal address for a Nominatim record.

    Rules:
    - Start from 'display_name' and drop the leading component when it is the place name.
    - Strip boilerplate (country name, bare ZIP/postal codes).
    - Keep it reasonably short; truncate with '…' if necessary.
    """
    display_name = raw.get("display_name") or ""
    parts = [p.strip() for p in display_name.split(",") if p.strip()]
    name = (raw.get("name") or "").strip()
    if parts and name and parts[0] == name:
        parts = parts[1:]

    filtered = []
    for part in parts:
        if part.lower() in _BOILERPLATE_TOKENS:
            continue
        if re.match(r"^\d{5}(-\d{4})?$", part):
            continue
        filtered.append(part)

    address = ", ".join(filtered)
    if not address:
        return NO_ADDRESS
    if len(address) > MAX_ADDRESS_CHARS:
        address = address[: MAX_ADDRESS_CHARS - 3] + "…"
    return address


def _place_identity(item: dict) -> Optional[str]:
    osm_type = item.get("osm_type")
    osm_id = item.get("osm_id")
    if osm_type and osm_id is not None:
        return f"osm:{osm_type}:{osm_id}"
    if item.get("place_id") is not None:
        return f"nominatim:{item['place_id']}"
    return None


def _place_name(item: dict) -> str:
    namedetails = item.get("namedetails") or {}
    name = item.get("name") or namedetails.get("name")
    if not name:
        display_name = item.get("display_name") or ""
        name = display_name.split(",")[0].strip()
    return name or UNKNOWN_NAME


def viewbox_for_radius(center: Coordinate, radius_m: float) -> Tuple[float, float, float, float]:
    """Return (left, top, right, bottom) in degrees for a square box around center."""
    lat_delta = radius_m / METERS_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(center.latitude)), 1e-6)
    lon_delta = min(radius_m / (METERS_PER_DEGREE_LAT * cos_lat), 180.0)
    left = max(center.longitude - lon_delta, -180.0)
    right = min(center.longitude + lon_delta, 180.0)
    top = min(center.latitude + lat_delta, 90.0)
    bottom = max(center.latitude - lat_delta, -90.0)
    return left, top, right, bottom


class PlacesClient:
    def __init__(
        self,
        provider: str = "osm",
        base_url: Optional[str] = None,
        cache: Optional[PlacesCache] = None,
        use_cache: Optional[bool] = None,
        max_results: Optional[int] = None,
    ):
        self.provider = provider
        self.base_url = (base_url or NOMINATIM_BASE_URL).rstrip("/")
        enabled = settings.PLACES_CACHE_ENABLED if use_cache is None else use_cache
        self.cache = (cache or get_default_places_cache()) if enabled else None
        self.max_results = max_results or settings.PLACES_MAX_RESULTS
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _validate(center: Coordinate, radius_m: float, query: str) -> None:
        center.validate()
        if not isinstance(radius_m, (int, float)) or not math.isfinite(radius_m) or radius_m <= 0:
            raise InvalidInput("radius_m must be a positive number", {"radius_m": radius_m})
        if not query or not query.strip():
            raise InvalidInput("query must not be empty")

    def _parse(self, data: object) -> List[Place]:
        if not isinstance(data, list):
            raise SearchFailed("Place search returned an unexpected payload", {"type": type(data).__name__})
        places: List[Place] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            place_id = _place_identity(item)
            try:
                coordinate = Coordinate(float(item["lat"]), float(item["lon"]))
            except (KeyError, TypeError, ValueError):
                self.logger.debug("[SEARCH] skipping record without coordinate: %s", place_id)
                continue
            if place_id is None:
                self.logger.debug("[SEARCH] skipping record without identity at %s", coordinate)
                continue
            places.append(
                Place(
                    id=place_id,
                    name=_place_name(item),
                    coordinate=coordinate,
                    address=format_place_address(item),
                )
            )
        return places

    def search(
        self,
        center: Coordinate,
        radius_m: float,
        query: str,
        max_results: Optional[int] = None,
    ) -> List[Place]:
        """
        Return places matching `query` within `radius_m` of `center`, in provider relevance order.

        Raises InvalidInput before any network call for bad arguments, and
        SearchFailed for network/provider/format errors. Zero results is an empty list.
        """
        self._validate(center, radius_m, query)
        limit = max_results or self.max_results

        if self.cache is not None:
            try:
                cached = self.cache.get_places(self.provider, center, radius_m, query)
            except sqlite3.Error as exc:
                self.logger.warning("[SEARCH] places cache read failed: %s", exc)
                cached = None
            if cached is not None:
                self.logger.debug("[SEARCH] cache hit %s r=%.0f q=%r (%d places)", center, radius_m, query, len(cached))
                return cached[:limit]

        left, top, right, bottom = viewbox_for_radius(center, radius_m)
        params = {
            "format": "jsonv2",
            "q": query.strip(),
            "viewbox": f"{left:.6f},{top:.6f},{right:.6f},{bottom:.6f}",
            "bounded": "1",
            "addressdetails": "1",
            "namedetails": "1",
            "limit": str(limit),
        }
        data = fetch_json(f"{self.base_url}/search", params, "SEARCH")
        results = self._parse(data)

        if self.cache is not None:
            try:
                self.cache.put_places(self.provider, center, radius_m, query, results)
            except sqlite3.Error as exc:
                self.logger.warning("[SEARCH] places cache write failed: %s", exc)
        self.logger.debug(
            "PlacesClient.search: provider=%s lat=%.6f lon=%.6f radius_m=%.1f query=%r got %d results",
            self.provider,
            center.latitude,
            center.longitude,
            radius_m,
            query,
            len(results),
        )
        return results


_default_places_client: Optional[PlacesClient] = None


def get_default_places_client() -> PlacesClient:
    global _default_places_client
    if _default_places_client is None:
        _default_places_client = PlacesClient()
    return _default_places_client
