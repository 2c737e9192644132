import threading

import googlemaps
import pytest
import requests

from driver_tracking.api import directions
from driver_tracking.api.directions import GoogleRouteService, OsrmRouteService, RouteCache
from driver_tracking.api.errors import NoRoute, RouteProviderError, RouteTimeout
from driver_tracking.api.models import Coordinate
from fakes import EXAMPLE_POLYLINE, BlockingRouter, FakeResponse, FakeRouter


class FakeDirectionsClient:
    def __init__(self, routes=None, error=None):
        self.routes = routes
        self.error = error
        self.calls = []

    def directions(self, origin, destination, mode=None):
        self.calls.append((origin, destination, mode))
        if self.error is not None:
            raise self.error
        return self.routes


def _google_route():
    return [{
        "overview_polyline": {"points": EXAMPLE_POLYLINE},
        "legs": [
            {"distance": {"value": 1200, "text": "1.2 km"}, "duration": {"value": 300, "text": "5 mins"}},
            {"distance": {"value": 800, "text": "0.8 km"}, "duration": {"value": 120, "text": "2 mins"}},
        ],
    }]


def test_google_route_sums_legs(depot, customer):
    client = FakeDirectionsClient(_google_route())

    route = GoogleRouteService(client).fetch_route(depot, customer)

    assert client.calls == [((depot.latitude, depot.longitude), (customer.latitude, customer.longitude), "driving")]
    assert route.distance_meters == 2000
    assert route.duration_seconds == 420
    assert route.distance_text == "1.2 km"
    assert len(route.polyline) == 3
    assert route.polyline[0].latitude == pytest.approx(38.5)


@pytest.mark.parametrize("error, expected", [
    (googlemaps.exceptions.ApiError("ZERO_RESULTS"), NoRoute),
    (googlemaps.exceptions.ApiError("NOT_FOUND"), NoRoute),
    (googlemaps.exceptions.ApiError("REQUEST_DENIED"), RouteProviderError),
    (googlemaps.exceptions.Timeout(), RouteTimeout),
    (googlemaps.exceptions.TransportError("reset"), RouteProviderError),
])
def test_google_route_error_mapping(depot, customer, error, expected):
    with pytest.raises(expected):
        GoogleRouteService(FakeDirectionsClient(error=error)).fetch_route(depot, customer)


def test_google_route_empty_is_no_route(depot, customer):
    with pytest.raises(NoRoute):
        GoogleRouteService(FakeDirectionsClient([])).fetch_route(depot, customer)


def test_osrm_route(monkeypatch, depot, customer):
    captured = {}

    def fake_get(url, params=None, timeout=None):
        captured.update(url=url, params=params)
        return FakeResponse(payload={
            "code": "Ok",
            "routes": [{"geometry": EXAMPLE_POLYLINE, "distance": 2500.0, "duration": 3900.0}],
        })

    monkeypatch.setattr(directions.requests, "get", fake_get)

    route = OsrmRouteService(base_url="https://osrm.test", profile="driving").fetch_route(depot, customer)

    # OSRM takes lon,lat pairs
    assert captured["url"] == (
        f"https://osrm.test/route/v1/driving/"
        f"{depot.longitude},{depot.latitude};{customer.longitude},{customer.latitude}"
    )
    assert captured["params"] == {"overview": "full", "geometries": "polyline"}
    assert route.distance_text == "2.5 km"
    assert route.duration_text == "1 h 5 min"


def test_osrm_no_route(monkeypatch, depot, customer):
    monkeypatch.setattr(
        directions.requests, "get",
        lambda *a, **kw: FakeResponse(payload={"code": "NoRoute", "message": "Impossible route"}),
    )

    with pytest.raises(NoRoute):
        OsrmRouteService(base_url="https://osrm.test").fetch_route(depot, customer)


def test_osrm_timeout(monkeypatch, depot, customer):
    def fake_get(*args, **kwargs):
        raise requests.exceptions.Timeout()

    monkeypatch.setattr(directions.requests, "get", fake_get)

    with pytest.raises(RouteTimeout):
        OsrmRouteService(base_url="https://osrm.test").fetch_route(depot, customer)


def test_route_cache_fetches_once_per_destination(depot, customer):
    router = FakeRouter()
    cache = RouteCache(router)

    first = cache.get(depot, customer)
    moved = Coordinate(depot.latitude + 0.01, depot.longitude)
    second = cache.get(moved, customer)

    assert first is second
    assert len(router.calls) == 1


def test_route_cache_ignores_destination_jitter(depot, customer):
    router = FakeRouter()
    cache = RouteCache(router, precision=5)

    cache.get(depot, customer)
    cache.get(depot, Coordinate(customer.latitude + 0.000001, customer.longitude))

    assert len(router.calls) == 1


def test_route_cache_destination_change_discards_previous(depot, customer):
    router = FakeRouter()
    cache = RouteCache(router)
    old = cache.get(depot, customer)

    other = Coordinate(51.4700, -0.4543)
    new = cache.get(depot, other)

    assert len(router.calls) == 2
    assert router.calls[1] == (depot, other)
    assert new is not old
    assert cache.result is new


def test_route_cache_refetches_after_drift(depot, customer):
    router = FakeRouter()
    cache = RouteCache(router, drift_threshold_m=100)
    cache.get(depot, customer)

    cache.get(Coordinate(depot.latitude + 0.0001, depot.longitude), customer)
    assert len(router.calls) == 1

    cache.get(Coordinate(depot.latitude + 0.01, depot.longitude), customer)
    assert len(router.calls) == 2


def test_route_cache_error_clears_and_next_call_retries(depot, customer):
    router = FakeRouter(error=NoRoute("island"))
    cache = RouteCache(router)

    with pytest.raises(NoRoute):
        cache.get(depot, customer)
    assert cache.result is None

    router.error = None
    assert cache.get(depot, customer) is not None
    assert len(router.calls) == 2


def test_route_cache_invalidate(depot, customer):
    router = FakeRouter()
    cache = RouteCache(router)
    cache.get(depot, customer)

    cache.invalidate()
    cache.get(depot, customer)

    assert len(router.calls) == 2


def test_route_cache_skips_fetch_when_no_longer_wanted(depot, customer):
    router = FakeRouter()
    cache = RouteCache(router)

    assert cache.get(depot, customer, should_fetch=lambda: False) is None
    assert router.calls == []


def test_route_cache_concurrent_callers_share_one_fetch(depot, customer):
    router = BlockingRouter()
    cache = RouteCache(router)
    results = []

    threads = [threading.Thread(target=lambda: results.append(cache.get(depot, customer))) for _ in range(3)]
    threads[0].start()
    assert router.entered.wait(2)
    for thread in threads[1:]:
        thread.start()
    router.release.set()
    for thread in threads:
        thread.join(2)

    assert len(router.calls) == 1
    assert len(results) == 3
    assert all(result is results[0] for result in results)


def test_route_cache_drops_result_invalidated_mid_fetch(depot, customer):
    router = BlockingRouter()
    cache = RouteCache(router)

    worker = threading.Thread(target=cache.get, args=(depot, customer))
    worker.start()
    assert router.entered.wait(2)
    cache.invalidate()
    router.release.set()
    worker.join(2)

    assert cache.result is None
