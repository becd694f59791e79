"""
Library search coordinator.

Issues nearby-place searches, makes sure only the most recently issued one
is applied to the known set, seeds visited flags from the store and derives
the viewport. The search call is the only blocking step and runs without
holding any lock.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional, Sequence

from domain.errors import InvalidInput, PersistenceReadFailed
from domain.models import AnnotatedPlace, Coordinate, Place, SearchOutcome, Viewport
from services.geocoding import geocode_address
from services.places_client import PlacesClient, get_default_places_client
from services.reconciler import AnnotationReconciler
from services.visited_store import VisitedStore, get_default_visited_store
from settings import settings

logger = logging.getLogger(__name__)


def default_viewport() -> Viewport:
    return Viewport(
        center=Coordinate(settings.DEFAULT_CENTER_LAT, settings.DEFAULT_CENTER_LON),
        latitude_delta=settings.DEFAULT_SPAN_DELTA,
        longitude_delta=settings.DEFAULT_SPAN_DELTA,
    )


class LibrarySearchService:
    def __init__(
        self,
        client: PlacesClient,
        store: VisitedStore,
        reconciler: Optional[AnnotationReconciler] = None,
        query: Optional[str] = None,
        radius_m: Optional[float] = None,
        max_workers: int = 2,
    ):
        self.client = client
        self.store = store
        self.reconciler = reconciler or AnnotationReconciler(default_viewport(), store=store)
        self.query = query or settings.LIBRARY_QUERY
        self.radius_m = radius_m or settings.SEARCH_RADIUS_M
        self._issue_lock = threading.Lock()
        self._apply_lock = threading.Lock()
        self._latest_request_id = 0
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="library-search")

    @property
    def latest_request_id(self) -> int:
        with self._issue_lock:
            return self._latest_request_id

    def _issue(self) -> int:
        with self._issue_lock:
            self._latest_request_id += 1
            return self._latest_request_id

    def _seed_flags(self, places: Sequence[Place], warnings: List[str]) -> dict:
        try:
            return self.store.get_many([p.id for p in places])
        except PersistenceReadFailed as exc:
            logger.warning("[SEARCH] visited flags unavailable, defaulting to unvisited: %s", exc)
            warnings.append(f"Visited flags unavailable: {exc.message}")
            return {}

    def _apply(self, request_id: int, center: Coordinate, places: Sequence[Place], warnings: List[str]) -> SearchOutcome:
        seed = self._seed_flags(places, warnings)
        with self._apply_lock:
            if request_id != self.latest_request_id:
                logger.info(
                    "[SEARCH] discarding stale response #%d (latest is #%d)",
                    request_id,
                    self.latest_request_id,
                )
                return SearchOutcome(
                    request_id=request_id,
                    applied=False,
                    center=center,
                    places=self.reconciler.known_places(),
                    viewport=self.reconciler.viewport,
                    warnings=warnings,
                )
            merged = self.reconciler.merge(places, seed)
            viewport = self.reconciler.bounding_viewport([a.place for a in merged])
        return SearchOutcome(
            request_id=request_id,
            applied=True,
            center=center,
            places=merged,
            viewport=viewport,
            warnings=warnings,
        )

    def search_at(
        self,
        center: Coordinate,
        query: Optional[str] = None,
        radius_m: Optional[float] = None,
    ) -> SearchOutcome:
        """
        Search around `center` and reconcile the results into the known set.

        SearchFailed and InvalidInput propagate with the known set untouched.
        If a newer search was issued while this one was in flight, the
        response is dropped and the outcome comes back with applied=False.
        """
        center.validate()
        return self._search_at(self._issue(), center, query, radius_m)

    def _search_at(
        self,
        request_id: int,
        center: Coordinate,
        query: Optional[str],
        radius_m: Optional[float],
    ) -> SearchOutcome:
        q = self.query if query is None else query
        radius = self.radius_m if radius_m is None else radius_m
        logger.debug("[SEARCH] #%d q=%r center=%s radius_m=%s", request_id, q, center, radius)
        places = self.client.search(center, radius, q)
        return self._apply(request_id, center, places, [])

    def _superseded(self, request_id: int, center: Coordinate) -> SearchOutcome:
        logger.info("[SEARCH] request #%d superseded before searching", request_id)
        return SearchOutcome(
            request_id=request_id,
            applied=False,
            center=center,
            places=self.reconciler.known_places(),
            viewport=self.reconciler.viewport,
        )

    def search_address(
        self,
        address: str,
        query: Optional[str] = None,
        radius_m: Optional[float] = None,
    ) -> SearchOutcome:
        """
        Geocode `address`, then search around it. The outcome carries a pin for the address.

        The request id is taken before geocoding, so a search triggered while
        the address is still resolving supersedes this one.
        """
        if not address or not address.strip():
            raise InvalidInput("Address must not be empty")
        request_id = self._issue()
        geocoded = geocode_address(address)
        if request_id != self.latest_request_id:
            outcome = self._superseded(request_id, geocoded.coordinate)
        else:
            outcome = self._search_at(request_id, geocoded.coordinate, query, radius_m)
        outcome.pin = Place.pin(geocoded.coordinate, name=address.strip(), address=geocoded.label)
        return outcome

    def submit(
        self,
        center: Coordinate,
        query: Optional[str] = None,
        radius_m: Optional[float] = None,
    ) -> "Future[SearchOutcome]":
        """Run `search_at` in the background; the future raises whatever the search raised."""
        return self._executor.submit(self.search_at, center, query, radius_m)

    def known_places(self) -> List[AnnotatedPlace]:
        return self.reconciler.known_places()

    @property
    def viewport(self) -> Viewport:
        return self.reconciler.viewport

    def toggle_visited(self, place_id: str) -> bool:
        return self.reconciler.toggle_visited(place_id)

    def refresh_visited(self) -> None:
        """Reload flags for every known place from the store."""
        ids = [a.id for a in self.reconciler.known_places()]
        self.reconciler.refresh_visited(self.store.get_many(ids))

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)


_default_library_search_service: Optional[LibrarySearchService] = None


def get_default_library_search_service() -> LibrarySearchService:
    global _default_library_search_service
    if _default_library_search_service is None:
        _default_library_search_service = LibrarySearchService(
            client=get_default_places_client(),
            store=get_default_visited_store(),
        )
    return _default_library_search_service
