"""
SQLite-backed cache for nearby place searches.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import threading
import time
from typing import List, Optional

from domain.models import Coordinate, Place

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DATA_DIR = os.path.join(BASE_DIR, "data")
PLACES_CACHE_DB_FILENAME = "places_cache.sqlite"

logger = logging.getLogger(__name__)


def _quantize_coord(value: float, step: float = 0.0005) -> float:
    """Quantize coordinates to reduce cache key diversity (~50m grid)."""
    return round(round(value / step) * step, 6)


def _normalize_query(query: str) -> str:
    return " ".join(query.split()).lower()


class PlacesCache:
    def __init__(self, db_path: Optional[str] = None, default_ttl_seconds: int = 30 * 24 * 3600):
        self.db_path = db_path or os.path.join(DATA_DIR, PLACES_CACHE_DB_FILENAME)
        self.default_ttl_seconds = default_ttl_seconds
        os.makedirs(os.path.dirname(self.db_path), exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS place_search_cache (
                provider TEXT NOT NULL,
                key_lat REAL NOT NULL,
                key_lon REAL NOT NULL,
                radius_m REAL NOT NULL,
                query TEXT NOT NULL,
                response_json TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                ttl_seconds INTEGER NOT NULL,
                PRIMARY KEY (provider, key_lat, key_lon, radius_m, query)
            )
            """
        )
        self._conn.commit()

    @staticmethod
    def _decode(response_json: str) -> List[Place]:
        payload = json.loads(response_json)
        return [
            Place(
                id=item["id"],
                name=item["name"],
                coordinate=Coordinate(float(item["lat"]), float(item["lon"])),
                address=item["address"],
            )
            for item in payload
        ]

    def get_places(
        self,
        provider: str,
        center: Coordinate,
        radius_m: float,
        query: str,
    ) -> Optional[List[Place]]:
        """
        Return the cached result list if a non-expired entry exists for the key.

        An empty list is a valid cached answer; None means miss.
        """
        key = (
            provider,
            _quantize_coord(center.latitude),
            _quantize_coord(center.longitude),
            float(radius_m),
            _normalize_query(query),
        )
        with self._lock:
            row = self._conn.execute(
                """
                SELECT response_json, created_at, ttl_seconds FROM place_search_cache
                WHERE provider=? AND key_lat=? AND key_lon=? AND radius_m=? AND query=?
                """,
                key,
            ).fetchone()
        if not row:
            return None
        response_json, created_at, ttl_seconds = row
        if ttl_seconds > 0 and (time.time() - created_at) > ttl_seconds:
            return None
        try:
            return self._decode(response_json)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("[PLACES_CACHE] dropping undecodable entry for %s: %s", key, exc)
            return None

    def put_places(
        self,
        provider: str,
        center: Coordinate,
        radius_m: float,
        query: str,
        places: List[Place],
        ttl_seconds: Optional[int] = None,
    ) -> None:
        """Store a result list for the key, replacing any previous entry."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds
        payload = [
            {
                "id": p.id,
                "name": p.name,
                "lat": p.latitude,
                "lon": p.longitude,
                "address": p.address,
            }
            for p in places
        ]
        with self._lock:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO place_search_cache
                (provider, key_lat, key_lon, radius_m, query, response_json, created_at, ttl_seconds)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    provider,
                    _quantize_coord(center.latitude),
                    _quantize_coord(center.longitude),
                    float(radius_m),
                    _normalize_query(query),
                    json.dumps(payload),
                    int(time.time()),
                    ttl,
                ),
            )
            self._conn.commit()


_default_places_cache: Optional[PlacesCache] = None


def get_default_places_cache() -> PlacesCache:
    global _default_places_cache
    if _default_places_cache is None:
        _default_places_cache = PlacesCache()
    return _default_places_cache
