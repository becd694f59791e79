"""
Library search API routes.

Exposes nearby search, address search, the current known set and viewport,
visited toggling and directions hand-off.
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from domain.errors import InvalidInput, PersistenceWriteFailed, SearchFailed
from domain.models import AnnotatedPlace, Coordinate, DirectionsMode, Place, SearchOutcome, Viewport
from services.library_search import get_default_library_search_service
from services.navigation import build_destination
from settings import settings

router = APIRouter()
logger = logging.getLogger(__name__)


class CoordinateSchema(BaseModel):
    latitude: float
    longitude: float


class ViewportResponse(BaseModel):
    center: CoordinateSchema
    latitude_delta: float
    longitude_delta: float


class PlaceResponse(BaseModel):
    id: str
    name: str
    latitude: float
    longitude: float
    address: str
    visited: bool = False


class SearchResponse(BaseModel):
    request_id: int
    applied: bool
    center: CoordinateSchema
    places: List[PlaceResponse]
    viewport: ViewportResponse
    warnings: List[str] = []
    pin: Optional[PlaceResponse] = None


class KnownPlacesResponse(BaseModel):
    places: List[PlaceResponse]
    viewport: ViewportResponse


class AddressSearchRequest(BaseModel):
    address: str = Field(..., min_length=1)
    radius_m: Optional[float] = Field(default=None, gt=0)
    query: Optional[str] = None


class ToggleVisitedResponse(BaseModel):
    place_id: str
    visited: bool
    persisted: bool
    warning: Optional[str] = None


class DirectionsResponse(BaseModel):
    place_id: str
    label: str
    mode: str
    destination: CoordinateSchema
    apple_maps_url: str
    google_maps_app_url: str
    google_maps_web_url: str


def viewport_to_response(viewport: Viewport) -> ViewportResponse:
    """Convert a domain Viewport to API response, applying the minimum viewable span."""
    vp = viewport.with_min_span(settings.MIN_VIEWPORT_SPAN)
    return ViewportResponse(
        center=CoordinateSchema(**vp.center.to_dict()),
        latitude_delta=vp.latitude_delta,
        longitude_delta=vp.longitude_delta,
    )


def place_to_response(place: Place, visited: bool = False) -> PlaceResponse:
    return PlaceResponse(visited=visited, **place.to_dict())


def annotated_to_response(item: AnnotatedPlace) -> PlaceResponse:
    return place_to_response(item.place, item.visited)


def outcome_to_response(outcome: SearchOutcome) -> SearchResponse:
    return SearchResponse(
        request_id=outcome.request_id,
        applied=outcome.applied,
        center=CoordinateSchema(**outcome.center.to_dict()),
        places=[annotated_to_response(a) for a in outcome.places],
        viewport=viewport_to_response(outcome.viewport),
        warnings=outcome.warnings,
        pin=place_to_response(outcome.pin) if outcome.pin else None,
    )


def _service():
    return get_default_library_search_service()


@router.get("/nearby", response_model=SearchResponse)
def search_nearby(
    lat: float,
    lon: float,
    radius_m: Optional[float] = Query(default=None, gt=0),
    query: Optional[str] = None,
):
    """Search for libraries around a coordinate ("search here" / device location)."""
    try:
        outcome = _service().search_at(Coordinate(lat, lon), query=query, radius_m=radius_m)
    except InvalidInput as exc:
        raise HTTPException(status_code=422, detail=exc.message)
    except SearchFailed as exc:
        logger.warning("[SEARCH] nearby search failed at %s,%s: %s", lat, lon, exc.message)
        raise HTTPException(status_code=502, detail=exc.message)
    return outcome_to_response(outcome)


@router.post("/search-address", response_model=SearchResponse)
def search_address(payload: AddressSearchRequest):
    """Geocode an address and search for libraries around it."""
    try:
        outcome = _service().search_address(payload.address, query=payload.query, radius_m=payload.radius_m)
    except InvalidInput as exc:
        raise HTTPException(status_code=422, detail=exc.message)
    except SearchFailed as exc:
        logger.warning("[SEARCH] address search failed for %r: %s", payload.address, exc.message)
        raise HTTPException(status_code=502, detail=exc.message)
    return outcome_to_response(outcome)


@router.get("", response_model=KnownPlacesResponse)
def list_known_places():
    """Current known set and viewport, as left by the last applied search."""
    service = _service()
    return KnownPlacesResponse(
        places=[annotated_to_response(a) for a in service.known_places()],
        viewport=viewport_to_response(service.viewport),
    )


@router.get("/viewport", response_model=ViewportResponse)
def get_viewport():
    return viewport_to_response(_service().viewport)


@router.post("/{place_id}/visited/toggle", response_model=ToggleVisitedResponse)
def toggle_visited(place_id: str):
    """Flip the visited flag. A failed write keeps the flag and reports persisted=false."""
    try:
        visited = _service().toggle_visited(place_id)
    except InvalidInput as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    except PersistenceWriteFailed as exc:
        return ToggleVisitedResponse(
            place_id=place_id,
            visited=exc.visited,
            persisted=False,
            warning=exc.message,
        )
    return ToggleVisitedResponse(place_id=place_id, visited=visited, persisted=True)


@router.get("/{place_id}/directions", response_model=DirectionsResponse)
def get_directions(place_id: str, mode: DirectionsMode = DirectionsMode.DRIVING):
    item = _service().reconciler.get(place_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Place not found")
    dest = build_destination(item.place, mode)
    return DirectionsResponse(
        place_id=place_id,
        label=dest.label,
        mode=dest.mode.value,
        destination=CoordinateSchema(**dest.coordinate.to_dict()),
        apple_maps_url=dest.apple_maps_url,
        google_maps_app_url=dest.google_maps_app_url,
        google_maps_web_url=dest.google_maps_web_url,
    )
