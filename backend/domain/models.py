"""
Core domain models for the library finder.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional
import math
import uuid

from domain.errors import InvalidInput

UNKNOWN_NAME = "Unknown"
NO_ADDRESS = "No address available"


class DirectionsMode(str, Enum):
    """Travel mode handed to external navigation apps."""
    DRIVING = "driving"
    WALKING = "walking"
    TRANSIT = "transit"


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def validate(self) -> "Coordinate":
        """Raise InvalidInput unless this is a usable WGS84 coordinate."""
        lat, lon = self.latitude, self.longitude
        if not (isinstance(lat, (int, float)) and isinstance(lon, (int, float))):
            raise InvalidInput("Coordinate components must be numbers", {"lat": lat, "lon": lon})
        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise InvalidInput("Coordinate components must be finite", {"lat": lat, "lon": lon})
        if not -90.0 <= lat <= 90.0:
            raise InvalidInput("Latitude out of range [-90, 90]", {"lat": lat})
        if not -180.0 <= lon <= 180.0:
            raise InvalidInput("Longitude out of range [-180, 180]", {"lon": lon})
        return self

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class Place:
    """
    A named, geolocated point of interest.

    `id` is assigned once, either by the search provider or locally for
    ad-hoc pins, and is the only key used to match places across searches.
    """
    id: str
    name: str
    coordinate: Coordinate
    address: str = NO_ADDRESS

    @classmethod
    def pin(cls, coordinate: Coordinate, name: Optional[str] = None, address: Optional[str] = None) -> "Place":
        """Synthesize a place for a dropped/searched pin with a fresh local identity."""
        return cls(
            id=f"pin:{uuid.uuid4()}",
            name=name or UNKNOWN_NAME,
            coordinate=coordinate,
            address=address or NO_ADDRESS,
        )

    @property
    def latitude(self) -> float:
        return self.coordinate.latitude

    @property
    def longitude(self) -> float:
        return self.coordinate.longitude

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "address": self.address,
        }


@dataclass(frozen=True)
class AnnotatedPlace:
    """A place paired with its visited flag."""
    place: Place
    visited: bool = False

    @property
    def id(self) -> str:
        return self.place.id

    def to_dict(self) -> dict:
        data = self.place.to_dict()
        data["visited"] = self.visited
        return data


@dataclass(frozen=True)
class Viewport:
    """Map region: a center coordinate plus latitude/longitude deltas."""
    center: Coordinate
    latitude_delta: float
    longitude_delta: float

    def with_min_span(self, min_delta: float) -> "Viewport":
        """Return a copy whose deltas are at least `min_delta` (single-place results have zero span)."""
        return replace(
            self,
            latitude_delta=max(self.latitude_delta, min_delta),
            longitude_delta=max(self.longitude_delta, min_delta),
        )

    def to_dict(self) -> dict:
        return {
            "center": self.center.to_dict(),
            "latitude_delta": self.latitude_delta,
            "longitude_delta": self.longitude_delta,
        }


@dataclass(frozen=True)
class NavigationDestination:
    """Destination descriptor handed to external map apps."""
    coordinate: Coordinate
    label: str
    mode: DirectionsMode
    apple_maps_url: str
    google_maps_app_url: str
    google_maps_web_url: str


@dataclass
class SearchOutcome:
    """Result of one search request as seen by the caller."""
    request_id: int
    applied: bool
    center: Coordinate
    places: List[AnnotatedPlace]
    viewport: Viewport
    warnings: List[str] = field(default_factory=list)
    pin: Optional[Place] = None
