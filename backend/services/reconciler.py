"""
Annotation reconciliation: merge fresh search results into the known place set
and derive the viewport that frames them.

The merge and viewport math are pure module-level functions; `AnnotationReconciler`
only owns the state and serializes writers.
"""
from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from domain.errors import InvalidInput, PersistenceWriteFailed
from domain.models import AnnotatedPlace, Coordinate, Place, Viewport
from services.visited_store import VisitedStore

VIEWPORT_PADDING = 1.2

logger = logging.getLogger(__name__)


def merge_places(
    known: Mapping[str, AnnotatedPlace],
    new_results: Iterable[Place],
    seed_visited: Optional[Mapping[str, bool]] = None,
) -> Dict[str, AnnotatedPlace]:
    """
    Build the next known set from `new_results`.

    Identities already known keep their visited flag while taking the fresh
    attributes. Unknown identities use `seed_visited` (the store's view) or
    False. Identities missing from `new_results` are dropped. If the results
    repeat an identity, the first occurrence wins.
    """
    seed = seed_visited or {}
    merged: Dict[str, AnnotatedPlace] = {}
    for place in new_results:
        if place.id in merged:
            continue
        previous = known.get(place.id)
        if previous is not None:
            visited = previous.visited
        else:
            visited = bool(seed.get(place.id, False))
        merged[place.id] = AnnotatedPlace(place=place, visited=visited)
    return merged


def compute_bounding_viewport(places: Sequence[Place], fallback: Viewport) -> Viewport:
    """Smallest region containing every place, padded by 20%; `fallback` when empty."""
    if not places:
        return fallback
    lats = [p.latitude for p in places]
    lons = [p.longitude for p in places]
    min_lat, max_lat = min(lats), max(lats)
    min_lon, max_lon = min(lons), max(lons)
    return Viewport(
        center=Coordinate((min_lat + max_lat) / 2, (min_lon + max_lon) / 2),
        latitude_delta=(max_lat - min_lat) * VIEWPORT_PADDING,
        longitude_delta=(max_lon - min_lon) * VIEWPORT_PADDING,
    )


class AnnotationReconciler:
    """Owns the known place set and the current viewport."""

    def __init__(self, initial_viewport: Viewport, store: Optional[VisitedStore] = None):
        self._known: Dict[str, AnnotatedPlace] = {}
        self._viewport = initial_viewport
        self._store = store
        self._lock = threading.RLock()
        # Held across a toggle's flip and its store write so the store sees toggles in memory order.
        self._write_lock = threading.Lock()

    @property
    def viewport(self) -> Viewport:
        with self._lock:
            return self._viewport

    def known_places(self) -> List[AnnotatedPlace]:
        with self._lock:
            return list(self._known.values())

    def get(self, place_id: str) -> Optional[AnnotatedPlace]:
        with self._lock:
            return self._known.get(place_id)

    def merge(
        self,
        new_results: Sequence[Place],
        seed_visited: Optional[Mapping[str, bool]] = None,
    ) -> List[AnnotatedPlace]:
        """Replace the known set with `new_results`, carrying visited flags over by identity."""
        with self._lock:
            merged = merge_places(self._known, new_results, seed_visited)
            carried = sum(1 for pid in merged if pid in self._known)
            self._known = merged
            logger.debug(
                "[RECONCILE] merged %d results: %d carried over, %d new",
                len(merged),
                carried,
                len(merged) - carried,
            )
            return list(merged.values())

    def bounding_viewport(self, places: Sequence[Place]) -> Viewport:
        """Frame `places`; an empty list leaves the current viewport as is."""
        with self._lock:
            self._viewport = compute_bounding_viewport(places, self._viewport)
            return self._viewport

    def refresh_visited(self, flags: Mapping[str, bool]) -> None:
        """Overwrite cached flags for known identities with values read from the store."""
        with self._lock:
            for place_id, visited in flags.items():
                current = self._known.get(place_id)
                if current is not None and current.visited != visited:
                    self._known[place_id] = AnnotatedPlace(place=current.place, visited=bool(visited))

    def toggle_visited(self, place_id: str) -> bool:
        """
        Flip the visited flag for a known place and persist it.

        Returns the new value. Raises InvalidInput for an unknown identity.
        If the store write fails the in-memory flag stays flipped and
        PersistenceWriteFailed is raised.
        """
        with self._write_lock:
            with self._lock:
                current = self._known.get(place_id)
                if current is None:
                    raise InvalidInput(f"Unknown place {place_id!r}", {"place_id": place_id})
                visited = not current.visited
                self._known[place_id] = AnnotatedPlace(place=current.place, visited=visited)

            if self._store is not None:
                try:
                    self._store.set(place_id, visited)
                except PersistenceWriteFailed:
                    raise
                except Exception as exc:
                    logger.warning("[VISITED] persisting %s=%s failed: %s", place_id, visited, exc)
                    raise PersistenceWriteFailed(place_id, visited) from exc
            return visited
