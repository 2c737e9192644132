import googlemaps
import pytest
import requests

from driver_tracking.api import geocoding
from driver_tracking.api.errors import GeocodeNotFound, GeocodeProviderError
from driver_tracking.api.geocoding import GeocodeCache, GoogleGeocoder, NominatimGeocoder
from driver_tracking.api.models import Coordinate
from fakes import FakeGeocoder, FakeResponse


class FakeGmaps:
    def __init__(self, results=None, error=None):
        self.results = results if results is not None else []
        self.error = error
        self.calls = 0

    def geocode(self, address, language=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.results


def test_google_geocoder_returns_first_result():
    client = FakeGmaps([
        {"geometry": {"location": {"lat": 51.5033, "lng": -0.1196}}},
        {"geometry": {"location": {"lat": 0, "lng": 0}}},
    ])

    assert GoogleGeocoder(client).geocode("London Eye") == Coordinate(51.5033, -0.1196)


def test_google_geocoder_zero_results_is_not_found():
    with pytest.raises(GeocodeNotFound):
        GoogleGeocoder(FakeGmaps([])).geocode("nowhere at all")


@pytest.mark.parametrize("error", [
    googlemaps.exceptions.Timeout(),
    googlemaps.exceptions.ApiError("OVER_QUERY_LIMIT"),
    googlemaps.exceptions.TransportError("connection reset"),
])
def test_google_geocoder_provider_failures(error):
    with pytest.raises(GeocodeProviderError):
        GoogleGeocoder(FakeGmaps(error=error)).geocode("London Eye")


def test_google_geocoder_without_api_key(monkeypatch):
    monkeypatch.setattr(geocoding, "_gmaps", None)

    with pytest.raises(GeocodeProviderError, match="GOOGLE_MAPS_API_KEY"):
        GoogleGeocoder().geocode("London Eye")


def test_nominatim_geocoder(monkeypatch):
    captured = {}

    def fake_get(url, params=None, headers=None, timeout=None):
        captured.update(url=url, params=params, headers=headers)
        return FakeResponse(payload=[{"lat": "48.8584", "lon": "2.2945"}])

    monkeypatch.setattr(geocoding.requests, "get", fake_get)

    coordinate = NominatimGeocoder(base_url="https://nominatim.test", user_agent="tests").geocode("Eiffel Tower")

    assert coordinate == Coordinate(48.8584, 2.2945)
    assert captured["url"] == "https://nominatim.test/search"
    assert captured["params"]["q"] == "Eiffel Tower"
    assert captured["headers"]["User-Agent"] == "tests"


def test_nominatim_empty_result_is_not_found(monkeypatch):
    monkeypatch.setattr(geocoding.requests, "get", lambda *a, **kw: FakeResponse(payload=[]))

    with pytest.raises(GeocodeNotFound):
        NominatimGeocoder(base_url="https://nominatim.test").geocode("nowhere")


def test_nominatim_transport_failure(monkeypatch):
    def fake_get(*args, **kwargs):
        raise requests.exceptions.ConnectionError("down")

    monkeypatch.setattr(geocoding.requests, "get", fake_get)

    with pytest.raises(GeocodeProviderError):
        NominatimGeocoder(base_url="https://nominatim.test").geocode("Eiffel Tower")


def test_cache_issues_one_provider_call_per_address(depot):
    provider = FakeGeocoder({"depot": depot})
    cache = GeocodeCache(provider)

    assert cache.lookup("depot") == depot
    assert cache.lookup("depot") == depot
    assert provider.calls == ["depot"]
    assert len(cache) == 1


def test_cache_blank_address_skips_provider():
    provider = FakeGeocoder()
    cache = GeocodeCache(provider)

    with pytest.raises(GeocodeNotFound):
        cache.lookup("   ")
    assert provider.calls == []


def test_cache_does_not_store_failures(depot):
    provider = FakeGeocoder()
    cache = GeocodeCache(provider)

    with pytest.raises(GeocodeNotFound):
        cache.lookup("depot")

    provider.addresses["depot"] = depot
    assert cache.lookup("depot") == depot
    assert provider.calls == ["depot", "depot"]


def test_cache_clear(depot):
    provider = FakeGeocoder({"depot": depot})
    cache = GeocodeCache(provider)
    cache.lookup("depot")

    cache.clear()
    cache.lookup("depot")

    assert len(provider.calls) == 2
