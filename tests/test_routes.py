import pytest
from flask import Flask

from driver_tracking.api.feed import TripFeed
from driver_tracking.api.models import Coordinate, TrackedPosition
from driver_tracking.api.services.tracking_service import TrackingService
from driver_tracking.api.session_manager import SessionManager
from driver_tracking.api.tracking import TrackingMode
from driver_tracking.routes import tracking as tracking_routes
from driver_tracking.routes.tracking import create_tracking_blueprint
from fakes import FakeGeocoder, FakeRouter, RecordingSink


@pytest.fixture
def manager(monkeypatch, customer):
    manager = SessionManager(
        start_cleanup=False,
        sink_factory=lambda driver_id, **kwargs: RecordingSink(),
        geocoder_factory=lambda: FakeGeocoder({"customer": customer}),
        router_factory=FakeRouter,
    )
    monkeypatch.setattr(tracking_routes, "get_session_manager", lambda: manager)
    yield manager
    manager.end_all()


@pytest.fixture
def client(manager):
    app = Flask(__name__)
    app.register_blueprint(create_tracking_blueprint())
    return app.test_client()


@pytest.fixture
def tracked(manager, depot):
    session = manager.create_session("d-1")
    manager.start_tracking(session.session_id, lambda p: None, interval_ms=1, mode=TrackingMode.WATCH)
    session.provider.push(TrackedPosition(coordinate=depot))
    return session


def test_health(client):
    response = client.get("/tracking/health")

    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_config(client):
    data = client.get("/tracking/api/config").get_json()

    assert data["geocoder"] == "google"
    assert data["interval_ms"] == 5000


def test_sessions_stats(client, tracked):
    data = client.get("/tracking/api/sessions").get_json()

    assert data["active_sessions"] == 1
    assert data["drivers"] == ["d-1"]


def test_unknown_driver(client):
    assert client.get("/tracking/api/sessions/nobody").status_code == 404


def test_set_destination_and_snapshot(client, tracked, customer):
    response = client.post("/tracking/api/sessions/d-1/destination", json={"address": "customer"})

    assert response.status_code == 200
    body = response.get_json()
    assert body["destination"] == customer.to_dict()
    assert body["route"]["distance_text"] == "1.0 km"

    snapshot = client.get("/tracking/api/sessions/d-1").get_json()
    assert snapshot["session_id"] == tracked.session_id
    assert snapshot["eta"] == "2 mins (1.0 km)"


def test_set_destination_not_found(client, tracked):
    response = client.post("/tracking/api/sessions/d-1/destination", json={"address": "Atlantis"})

    assert response.status_code == 404
    assert response.get_json()["reason"] == "not_found"
    assert tracked.tracking.is_active


def test_set_destination_requires_body(client, tracked):
    assert client.post("/tracking/api/sessions/d-1/destination", json={}).status_code == 400


def test_geocode_endpoint(client, monkeypatch):
    monkeypatch.setattr(
        TrackingService, "build_geocoder",
        staticmethod(lambda name=None: FakeGeocoder({"depot": Coordinate(1.0, 2.0)})),
    )

    assert client.get("/tracking/api/geocode?address=depot").get_json() == {"latitude": 1.0, "longitude": 2.0}
    assert client.get("/tracking/api/geocode?address=nowhere").status_code == 404
    assert client.get("/tracking/api/geocode").status_code == 400


def test_trips(client, monkeypatch):
    feed = TripFeed()
    feed.apply_message({"type": "trip_created", "trip": {"id": "1", "status": "active"}})
    monkeypatch.setattr(tracking_routes, "get_trip_feed", lambda: feed)

    data = client.get("/tracking/api/trips").get_json()

    assert [t["id"] for t in data["trips"]] == ["1"]
