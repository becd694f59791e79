"""Lightweight Nominatim (OpenStreetMap) plumbing plus forward address geocoding.

The shared session, headers and rate limiter live here so the places client
and the address geocoder stay inside the Nominatim usage policy together.
"""

from __future__ import annotations

import os
import time
import threading
import logging
import re
import sqlite3
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Optional

import requests

from domain.errors import InvalidInput, SearchFailed
from domain.models import Coordinate

NOMINATIM_BASE_URL = os.getenv("NOMINATIM_BASE_URL", "https://nominatim.openstreetmap.org").rstrip("/")
logger = logging.getLogger(__name__)
_session = requests.Session()
_last_request_ts: float = 0.0
_lock = threading.Lock()
_MIN_INTERVAL_SEC = float(os.getenv("NOMINATIM_MIN_INTERVAL", "1.1"))
_logged_ua = False
NOMINATIM_USER_AGENT = os.getenv("NOMINATIM_USER_AGENT")
NOMINATIM_REFERER = os.getenv("NOMINATIM_REFERER")
NOMINATIM_CACHE_PATH = os.getenv("NOMINATIM_CACHE_PATH")
if not NOMINATIM_CACHE_PATH:
    NOMINATIM_CACHE_PATH = os.path.join(os.path.dirname(__file__), "..", "data", "geocode_cache.sqlite")
NOMINATIM_CACHE_TTL_SECONDS = int(os.getenv("NOMINATIM_CACHE_TTL_SECONDS", str(180 * 24 * 3600)))
NOMINATIM_TIMEOUT_SEC = 5.0

FALLBACK_UA = "library-finder/0.1 (contact: example@example.com)"
if NOMINATIM_USER_AGENT is None:
    logger.warning(
        "NOMINATIM_USER_AGENT not set in environment; using fallback UA. "
        "This may violate Nominatim usage policy."
    )

def _redact_email(ua: str) -> str:
    if "@" not in ua:
        return ua
    return re.sub(r"\S+@\S+", "<redacted>", ua)

_ua_value = NOMINATIM_USER_AGENT or FALLBACK_UA
NOMINATIM_HEADERS = {
    "User-Agent": _ua_value,
}
if NOMINATIM_REFERER:
    NOMINATIM_HEADERS["Referer"] = NOMINATIM_REFERER

_CACHE_DB_LOCK = threading.Lock()
_CACHE_DB: Optional[sqlite3.Connection] = None


@dataclass(frozen=True)
class GeocodedAddress:
    coordinate: Coordinate
    label: str


def _normalize_address(address: str) -> str:
    """Collapse whitespace and case so equivalent inputs share a cache row."""
    return " ".join(address.split()).lower()


def _throttled_get(
    url: str,
    *,
    params: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
) -> requests.Response:
    """Perform a GET request with a simple global rate limit."""
    global _last_request_ts, _logged_ua
    if not _logged_ua:
        logger.debug("Nominatim User-Agent: %s", _redact_email(_ua_value))
        _logged_ua = True
    with _lock:
        now = time.time()
        delta = now - _last_request_ts
        if delta < _MIN_INTERVAL_SEC:
            time.sleep(_MIN_INTERVAL_SEC - delta)
        _last_request_ts = time.time()
    return _session.get(url, params=params, headers=headers, timeout=timeout)


def fetch_json(url: str, params: dict[str, Any], what: str) -> Any:
    """GET a Nominatim endpoint and decode JSON, mapping every failure to SearchFailed."""
    try:
        resp = _throttled_get(url, params=params, headers=NOMINATIM_HEADERS, timeout=NOMINATIM_TIMEOUT_SEC)
        resp.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("[%s] Nominatim request failed: %s", what, exc)
        raise SearchFailed(f"{what} request failed: {exc}", {"url": url}) from exc
    try:
        return resp.json()
    except ValueError as exc:
        logger.warning("[%s] Nominatim returned a non-JSON body: %s", what, exc)
        raise SearchFailed(f"{what} returned malformed JSON", {"url": url}) from exc


def _get_geocode_db() -> sqlite3.Connection:
    """Lazily open the geocode cache DB and ensure schema exists."""
    global _CACHE_DB
    with _CACHE_DB_LOCK:
        if _CACHE_DB is None:
            os.makedirs(os.path.dirname(NOMINATIM_CACHE_PATH), exist_ok=True)
            _CACHE_DB = sqlite3.connect(NOMINATIM_CACHE_PATH, check_same_thread=False)
            _CACHE_DB.execute(
                """
                CREATE TABLE IF NOT EXISTS address_geocodes (
                    query TEXT PRIMARY KEY,
                    lat REAL NOT NULL,
                    lon REAL NOT NULL,
                    label TEXT,
                    fetched_at INTEGER NOT NULL
                )
                """
            )
            _CACHE_DB.commit()
        return _CACHE_DB


def _get_geocode_from_cache(query: str) -> Optional[GeocodedAddress]:
    """Lookup a forward geocode in the SQLite cache respecting TTL."""
    try:
        db = _get_geocode_db()
        row = db.execute(
            "SELECT lat, lon, label, fetched_at FROM address_geocodes WHERE query=?",
            (query,),
        ).fetchone()
    except sqlite3.Error as exc:
        logger.warning("[GEOCODE] cache read failed for %r: %s", query, exc)
        return None
    if not row:
        logger.debug("[GEOCODE] cache miss %r", query)
        return None
    lat, lon, label, fetched_at = row
    if NOMINATIM_CACHE_TTL_SECONDS > 0 and time.time() - (fetched_at or 0) > NOMINATIM_CACHE_TTL_SECONDS:
        logger.debug("[GEOCODE] cache expired %r", query)
        return None
    logger.debug("[GEOCODE] cache hit %r", query)
    return GeocodedAddress(coordinate=Coordinate(float(lat), float(lon)), label=label or query)


def _store_geocode_in_cache(query: str, result: GeocodedAddress) -> None:
    """Upsert a forward geocode into the SQLite cache."""
    try:
        db = _get_geocode_db()
        db.execute(
            "INSERT OR REPLACE INTO address_geocodes (query, lat, lon, label, fetched_at) VALUES (?, ?, ?, ?, ?)",
            (query, result.coordinate.latitude, result.coordinate.longitude, result.label, int(time.time())),
        )
        db.commit()
        logger.debug("[GEOCODE] cache store %r", query)
    except sqlite3.Error as exc:
        logger.warning("[GEOCODE] cache write failed for %r: %s", query, exc)


@lru_cache(maxsize=512)
def geocode_address(address: str) -> GeocodedAddress:
    """Resolve a free-text address into a coordinate using Nominatim.

    Raises InvalidInput for a blank address and SearchFailed for network,
    provider or parsing errors, or when nothing matches. Successful lookups
    are cached in SQLite and in-process.
    """
    if not address or not address.strip():
        raise InvalidInput("Address must not be empty")
    query = _normalize_address(address)

    cached = _get_geocode_from_cache(query)
    if cached:
        return cached

    params = {
        "format": "jsonv2",
        "q": address.strip(),
        "limit": "1",
        "addressdetails": "1",
    }
    data = fetch_json(f"{NOMINATIM_BASE_URL}/search", params, "GEOCODE")
    if not isinstance(data, list):
        raise SearchFailed("Geocoder returned an unexpected payload", {"address": address})
    if not data:
        raise SearchFailed(f"No match for address {address!r}", {"address": address, "reason": "no_match"})

    first = data[0]
    try:
        coordinate = Coordinate(float(first["lat"]), float(first["lon"])).validate()
    except (KeyError, TypeError, ValueError, InvalidInput) as exc:
        raise SearchFailed("Geocoder returned an unusable coordinate", {"address": address}) from exc

    result = GeocodedAddress(coordinate=coordinate, label=first.get("display_name") or address.strip())
    _store_geocode_in_cache(query, result)
    return result
