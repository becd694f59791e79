import threading
from unittest.mock import patch

import pytest

from domain.errors import InvalidInput, PersistenceReadFailed, SearchFailed
from domain.models import Coordinate, Place
from services.geocoding import GeocodedAddress
from services.library_search import LibrarySearchService
from services.visited_store import InMemoryVisitedStore


def _place(pid: str, lat: float, lon: float) -> Place:
    return Place(id=pid, name=f"Library {pid}", coordinate=Coordinate(lat, lon), address="Somewhere")


class FakeClient:
    def __init__(self, results=None, error=None):
        self.results = results or []
        self.error = error
        self.calls = []

    def search(self, center, radius_m, query, max_results=None):
        self.calls.append((center, radius_m, query))
        if self.error:
            raise self.error
        return list(self.results)


class GatedClient:
    """Blocks each search until its gate (keyed by latitude) is opened."""

    def __init__(self, responses):
        self.responses = responses
        self.entered = {lat: threading.Event() for lat in responses}
        self.gates = {lat: threading.Event() for lat in responses}

    def search(self, center, radius_m, query, max_results=None):
        key = center.latitude
        self.entered[key].set()
        self.gates[key].wait(timeout=5)
        return list(self.responses[key])


def _service(client, store=None):
    return LibrarySearchService(client=client, store=store or InMemoryVisitedStore(), query="Public Library", radius_m=5000)


def test_search_at_merges_and_frames_results():
    client = FakeClient([_place("a", 37.0, -122.0), _place("b", 38.0, -121.0)])
    service = _service(client)

    outcome = service.search_at(Coordinate(37.5, -121.5))

    assert outcome.applied is True
    assert outcome.request_id == 1
    assert [p.id for p in outcome.places] == ["a", "b"]
    assert outcome.viewport.latitude_delta == pytest.approx(1.2)
    assert client.calls[0][1:] == (5000, "Public Library")


def test_visited_flags_survive_a_repeat_search():
    client = FakeClient([_place("a", 37.0, -122.0)])
    service = _service(client)
    service.search_at(Coordinate(37.0, -122.0))
    service.toggle_visited("a")

    outcome = service.search_at(Coordinate(37.0, -122.0))
    assert outcome.places[0].visited is True


def test_new_places_are_seeded_from_store():
    store = InMemoryVisitedStore({"b": True})
    service = _service(FakeClient([_place("a", 1.0, 1.0), _place("b", 2.0, 2.0)]), store)

    outcome = service.search_at(Coordinate(1.5, 1.5))
    assert {p.id: p.visited for p in outcome.places} == {"a": False, "b": True}


def test_unreadable_store_seeds_unvisited_with_warning():
    class BrokenStore(InMemoryVisitedStore):
        def get_many(self, place_ids):
            raise PersistenceReadFailed("db locked")

    service = _service(FakeClient([_place("a", 1.0, 1.0)]), BrokenStore())
    outcome = service.search_at(Coordinate(1.0, 1.0))

    assert outcome.applied is True
    assert outcome.places[0].visited is False
    assert outcome.warnings and "db locked" in outcome.warnings[0]


def test_search_failure_leaves_state_untouched():
    client = FakeClient([_place("a", 37.0, -122.0), _place("b", 38.0, -121.0)])
    service = _service(client)
    service.search_at(Coordinate(37.5, -121.5))
    before_places = service.known_places()
    before_viewport = service.viewport

    client.error = SearchFailed("provider down")
    with pytest.raises(SearchFailed):
        service.search_at(Coordinate(10.0, 10.0))

    assert service.known_places() == before_places
    assert service.viewport == before_viewport


def test_zero_results_empties_set_but_keeps_viewport():
    client = FakeClient([_place("a", 37.0, -122.0), _place("b", 38.0, -121.0)])
    service = _service(client)
    first = service.search_at(Coordinate(37.5, -121.5))

    client.results = []
    outcome = service.search_at(Coordinate(37.5, -121.5))
    assert outcome.applied is True
    assert outcome.places == []
    assert outcome.viewport == first.viewport


def test_invalid_center_rejected_before_search():
    client = FakeClient()
    service = _service(client)
    with pytest.raises(InvalidInput):
        service.search_at(Coordinate(95.0, 0.0))
    assert client.calls == []
    assert service.latest_request_id == 0


def test_stale_response_is_discarded():
    client = GatedClient({
        10.0: [_place("stale", 10.0, 10.0)],
        20.0: [_place("fresh", 20.0, 20.0)],
    })
    client.gates[20.0].set()
    service = _service(client)

    future_a = service.submit(Coordinate(10.0, 10.0))
    assert client.entered[10.0].wait(timeout=5)

    outcome_b = service.search_at(Coordinate(20.0, 20.0))
    client.gates[10.0].set()
    outcome_a = future_a.result(timeout=5)
    service.shutdown()

    assert outcome_b.applied is True
    assert outcome_a.applied is False
    assert outcome_a.request_id < outcome_b.request_id
    assert [p.id for p in service.known_places()] == ["fresh"]
    assert service.viewport.center == Coordinate(20.0, 20.0)


def test_submit_returns_future_with_outcome():
    service = _service(FakeClient([_place("a", 5.0, 5.0)]))
    outcome = service.submit(Coordinate(5.0, 5.0)).result(timeout=5)
    service.shutdown()
    assert outcome.applied is True
    assert outcome.places[0].id == "a"


@patch("services.library_search.geocode_address")
def test_search_address_geocodes_then_searches(mock_geocode):
    mock_geocode.return_value = GeocodedAddress(
        coordinate=Coordinate(41.88, -87.63),
        label="Harold Washington Library, Chicago",
    )
    client = FakeClient([_place("a", 41.87, -87.62)])
    service = _service(client)

    outcome = service.search_address("400 S State St, Chicago")

    assert client.calls[0][0] == Coordinate(41.88, -87.63)
    assert outcome.center == Coordinate(41.88, -87.63)
    assert outcome.pin is not None
    assert outcome.pin.id.startswith("pin:")
    assert outcome.pin.address == "Harold Washington Library, Chicago"


@patch("services.library_search.geocode_address", side_effect=SearchFailed("no match"))
def test_search_address_failure_propagates(mock_geocode):
    client = FakeClient([_place("a", 1.0, 1.0)])
    service = _service(client)
    with pytest.raises(SearchFailed):
        service.search_address("nowhere at all")
    assert client.calls == []


def test_refresh_visited_reloads_from_store():
    store = InMemoryVisitedStore()
    service = _service(FakeClient([_place("a", 1.0, 1.0)]), store)
    service.search_at(Coordinate(1.0, 1.0))

    store.set("a", True)
    service.refresh_visited()
    assert service.known_places()[0].visited is True


def test_address_search_overtaken_while_geocoding_is_discarded():
    entered = threading.Event()
    gate = threading.Event()

    def slow_geocode(address):
        entered.set()
        gate.wait(timeout=5)
        return GeocodedAddress(coordinate=Coordinate(10.0, 10.0), label=address)

    client = FakeClient([_place("near-20", 20.0, 20.0)])
    service = _service(client)
    result = {}

    with patch("services.library_search.geocode_address", side_effect=slow_geocode):
        worker = threading.Thread(
            target=lambda: result.setdefault("outcome", service.search_address("10 Slow Lane"))
        )
        worker.start()
        assert entered.wait(timeout=5)

        newer = service.search_at(Coordinate(20.0, 20.0))
        gate.set()
        worker.join(timeout=5)

    address_outcome = result["outcome"]
    assert newer.applied is True
    assert address_outcome.applied is False
    assert address_outcome.request_id < newer.request_id
    assert address_outcome.pin is not None
    assert [c[0] for c in client.calls] == [Coordinate(20.0, 20.0)]
    assert [p.id for p in service.known_places()] == ["near-20"]


@pytest.mark.parametrize("query, radius_m", [("", None), ("   ", None), (None, 0), (None, -5)])
def test_explicit_empty_query_or_radius_is_not_replaced_by_defaults(query, radius_m):
    class ValidatingClient(FakeClient):
        def search(self, center, radius_m, query, max_results=None):
            self.calls.append((center, radius_m, query))
            if not query.strip() or radius_m <= 0:
                raise InvalidInput("bad search arguments")
            return []

    client = ValidatingClient()
    service = _service(client)
    with pytest.raises(InvalidInput):
        service.search_at(Coordinate(1.0, 1.0), query=query, radius_m=radius_m)
    assert client.calls[0][1:] == (5000 if radius_m is None else radius_m, "Public Library" if query is None else query)


def test_blank_address_rejected_without_issuing_request():
    service = _service(FakeClient())
    with pytest.raises(InvalidInput):
        service.search_address("  ")
    assert service.latest_request_id == 0
