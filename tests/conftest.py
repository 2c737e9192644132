import pytest

from driver_tracking.api.models import Coordinate


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep a developer's .env or shell from leaking into tests."""
    for name in (
        "GOOGLE_MAPS_API_KEY",
        "GEOCODER",
        "ROUTER",
        "BACKEND_URL",
        "TRIP_STREAM_URL",
        "POSITION_TRANSPORT",
        "POSITION_WS_URL",
        "ROUTE_REFRESH_DRIFT_M",
        "TRACKING_INTERVAL_MS",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def depot():
    return Coordinate(51.5033, -0.1196)


@pytest.fixture
def customer():
    return Coordinate(51.5194, -0.1270)
