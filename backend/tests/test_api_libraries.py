from fastapi import FastAPI
from fastapi.testclient import TestClient
from unittest.mock import patch

import pytest

from api.routes import libraries as libraries_router
from domain.errors import SearchFailed
from domain.models import Coordinate, Place
from services.geocoding import GeocodedAddress
from services.library_search import LibrarySearchService
from services.visited_store import InMemoryVisitedStore


class FakeClient:
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error

    def search(self, center, radius_m, query, max_results=None):
        if self.error:
            raise self.error
        return list(self.results)


class FailingStore(InMemoryVisitedStore):
    def set(self, place_id, visited):
        raise RuntimeError("disk full")


PLACES = [
    Place(id="osm:node:1", name="Main Library", coordinate=Coordinate(37.0, -122.0), address="1 Main St"),
    Place(id="osm:node:2", name="Branch Library", coordinate=Coordinate(38.0, -121.0), address="2 Side St"),
]


@pytest.fixture
def fake_client():
    return FakeClient(PLACES)


@pytest.fixture
def service(fake_client):
    svc = LibrarySearchService(client=fake_client, store=InMemoryVisitedStore(), query="Public Library", radius_m=5000)
    yield svc
    svc.shutdown()


@pytest.fixture
def client(service):
    app = FastAPI()
    app.include_router(libraries_router.router, prefix="/libraries")
    with patch.object(libraries_router, "get_default_library_search_service", return_value=service):
        yield TestClient(app)


def test_nearby_returns_places_and_viewport(client):
    resp = client.get("/libraries/nearby", params={"lat": 37.5, "lon": -121.5})
    assert resp.status_code == 200
    data = resp.json()
    assert data["applied"] is True
    assert [p["id"] for p in data["places"]] == ["osm:node:1", "osm:node:2"]
    assert data["places"][0]["visited"] is False
    assert data["viewport"]["center"] == {"latitude": 37.5, "longitude": -121.5}
    assert data["viewport"]["latitude_delta"] == pytest.approx(1.2)


def test_nearby_invalid_coordinate_is_422(client):
    resp = client.get("/libraries/nearby", params={"lat": 123.0, "lon": 0.0})
    assert resp.status_code == 422


def test_nearby_provider_failure_is_502(client, fake_client):
    fake_client.error = SearchFailed("provider down")
    resp = client.get("/libraries/nearby", params={"lat": 37.5, "lon": -121.5})
    assert resp.status_code == 502


def test_single_result_viewport_gets_min_span(client, fake_client):
    fake_client.results = PLACES[:1]
    resp = client.get("/libraries/nearby", params={"lat": 37.0, "lon": -122.0})
    viewport = resp.json()["viewport"]
    assert viewport["latitude_delta"] == libraries_router.settings.MIN_VIEWPORT_SPAN
    assert viewport["longitude_delta"] == libraries_router.settings.MIN_VIEWPORT_SPAN


def test_toggle_visited_and_list(client):
    client.get("/libraries/nearby", params={"lat": 37.5, "lon": -121.5})

    resp = client.post("/libraries/osm:node:1/visited/toggle")
    assert resp.status_code == 200
    assert resp.json() == {"place_id": "osm:node:1", "visited": True, "persisted": True, "warning": None}

    listing = client.get("/libraries").json()
    assert {p["id"]: p["visited"] for p in listing["places"]} == {"osm:node:1": True, "osm:node:2": False}


def test_toggle_unknown_place_is_404(client):
    resp = client.post("/libraries/osm:node:999/visited/toggle")
    assert resp.status_code == 404


def test_toggle_reports_failed_persistence(fake_client):
    svc = LibrarySearchService(client=fake_client, store=FailingStore(), query="Public Library", radius_m=5000)
    app = FastAPI()
    app.include_router(libraries_router.router, prefix="/libraries")
    with patch.object(libraries_router, "get_default_library_search_service", return_value=svc):
        test_client = TestClient(app)
        test_client.get("/libraries/nearby", params={"lat": 37.5, "lon": -121.5})
        resp = test_client.post("/libraries/osm:node:2/visited/toggle")
    svc.shutdown()

    assert resp.status_code == 200
    data = resp.json()
    assert data["visited"] is True
    assert data["persisted"] is False
    assert data["warning"]


def test_directions_for_known_place(client):
    client.get("/libraries/nearby", params={"lat": 37.5, "lon": -121.5})
    resp = client.get("/libraries/osm:node:1/directions", params={"mode": "walking"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["label"] == "Main Library"
    assert data["mode"] == "walking"
    assert "travelmode=walking" in data["google_maps_web_url"]


def test_directions_unknown_place_is_404(client):
    assert client.get("/libraries/nope/directions").status_code == 404


@patch("services.library_search.geocode_address")
def test_search_address_returns_pin(mock_geocode, client):
    mock_geocode.return_value = GeocodedAddress(coordinate=Coordinate(37.5, -121.5), label="Somewhere, CA")
    resp = client.post("/libraries/search-address", json={"address": "123 Somewhere"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["pin"]["name"] == "123 Somewhere"
    assert data["pin"]["address"] == "Somewhere, CA"
    assert len(data["places"]) == 2


def test_viewport_defaults_before_any_search(client):
    data = client.get("/libraries/viewport").json()
    assert data["center"] == {
        "latitude": libraries_router.settings.DEFAULT_CENTER_LAT,
        "longitude": libraries_router.settings.DEFAULT_CENTER_LON,
    }
