import threading
import time

import pytest

from driver_tracking.api.errors import GeocodeNotFound, NoRoute, PermissionDenied
from driver_tracking.api.location import PushLocationProvider, ReplayLocationProvider
from driver_tracking.api.models import Coordinate, TrackedPosition
from driver_tracking.api.tracking import TrackingMode, TrackingSession
from fakes import BlockingProvider, BlockingRouter, FakeGeocoder, FakeRouter, RecordingSink


class Updates:
    """on_update callback that records fixes and signals the first one."""

    def __init__(self):
        self.positions = []
        self.first = threading.Event()

    def __call__(self, position):
        self.positions.append(position)
        self.first.set()


def test_permission_denied_acquires_nothing():
    provider = ReplayLocationProvider([Coordinate(0, 0)], permission_granted=False)
    session = TrackingSession(provider)

    with pytest.raises(PermissionDenied):
        session.start_tracking(Updates(), interval_ms=1000)

    assert provider.permission_requests == 1
    assert provider.acquisitions == 0
    assert not session.is_active
    assert isinstance(session.last_error, PermissionDenied)


def test_interval_must_be_positive():
    session = TrackingSession(ReplayLocationProvider([]))

    with pytest.raises(ValueError):
        session.start_tracking(Updates(), interval_ms=0)


def test_poll_delivers_fixes_and_updates_heading():
    provider = ReplayLocationProvider([Coordinate(0, 0), Coordinate(0, 0.01)])
    session = TrackingSession(provider)
    updates = Updates()

    handle = session.start_tracking(updates, interval_ms=60000)
    try:
        assert updates.first.wait(2)
        second = session.poll_once()
    finally:
        handle.cancel()

    assert [p.coordinate for p in updates.positions] == [Coordinate(0, 0), Coordinate(0, 0.01)]
    assert second.coordinate == Coordinate(0, 0.01)
    assert session.heading == pytest.approx(90)


def test_start_twice_is_rejected():
    session = TrackingSession(ReplayLocationProvider([Coordinate(0, 0)]))
    handle = session.start_tracking(Updates(), interval_ms=60000)
    try:
        with pytest.raises(RuntimeError):
            session.start_tracking(Updates(), interval_ms=60000)
    finally:
        handle.cancel()


def test_cancel_discards_in_flight_acquisition():
    provider = BlockingProvider()
    session = TrackingSession(provider)
    updates = Updates()

    handle = session.start_tracking(updates, interval_ms=60000)
    assert provider.entered.wait(2)

    handle.cancel(timeout=0.1)
    provider.release_fix.set()
    handle.join(2)

    assert updates.positions == []
    assert session.position is None
    assert not handle.active


def test_cancel_is_idempotent():
    session = TrackingSession(ReplayLocationProvider([Coordinate(0, 0)]))
    stops = []
    session.on_stopped = stops.append

    handle = session.start_tracking(Updates(), interval_ms=60000)
    handle.cancel()
    handle.cancel()

    assert stops == [None]


def test_transmit_failure_does_not_stop_tracking():
    provider = ReplayLocationProvider([Coordinate(0, 0), Coordinate(0, 0.001)], loop=True)
    sink = RecordingSink(fail=True, notify_after=3)
    session = TrackingSession(provider, sink=sink)

    handle = session.start_tracking(Updates(), interval_ms=10)
    try:
        assert sink.reached.wait(5)
        assert session.is_active
    finally:
        handle.cancel()


def test_each_fix_is_transmitted():
    provider = PushLocationProvider()
    sink = RecordingSink(notify_after=1)
    session = TrackingSession(provider, sink=sink)
    handle = session.start_tracking(Updates(), interval_ms=1, mode=TrackingMode.WATCH)
    try:
        provider.push(TrackedPosition(coordinate=Coordinate(1, 1)))
        assert sink.reached.wait(2)
    finally:
        handle.cancel()

    assert sink.sent[0].coordinate == Coordinate(1, 1)


def _watching_session(depot, customer, router=None, geocoder=None):
    provider = PushLocationProvider()
    session = TrackingSession(
        provider,
        geocoder=geocoder or FakeGeocoder({"customer": customer, "depot": depot}),
        router=router or FakeRouter(),
    )
    handle = session.start_tracking(Updates(), interval_ms=1, mode=TrackingMode.WATCH)
    return provider, session, handle


def test_destination_fetches_route_once(depot, customer):
    router = FakeRouter()
    provider, session, handle = _watching_session(depot, customer, router=router)
    routes = []
    session.on_route_update = routes.append
    try:
        provider.push(TrackedPosition(coordinate=depot))
        session.set_destination("customer")
        session.refresh_route()
    finally:
        handle.cancel()

    assert len(router.calls) == 1
    assert len(routes) == 1
    assert routes[0] is session.route
    assert session.destination == customer
    assert session.destination_address == "customer"


def test_destination_change_refetches(depot, customer):
    router = FakeRouter()
    other = Coordinate(51.4700, -0.4543)
    geocoder = FakeGeocoder({"customer": customer, "airport": other})
    provider, session, handle = _watching_session(depot, customer, router=router, geocoder=geocoder)
    try:
        provider.push(TrackedPosition(coordinate=depot))
        session.set_destination("customer")
        first = session.route
        session.set_destination("airport")
    finally:
        handle.cancel()

    assert len(router.calls) == 2
    assert router.calls[1][1] == other
    assert session.route is not first


def test_geocode_failure_clears_destination_and_keeps_tracking(depot, customer):
    provider, session, handle = _watching_session(depot, customer)
    try:
        provider.push(TrackedPosition(coordinate=depot))
        session.set_destination("customer")

        with pytest.raises(GeocodeNotFound):
            session.set_destination("Atlantis")

        assert session.destination is None
        assert session.route is None
        assert session.is_active
    finally:
        handle.cancel()


def test_route_failure_is_reported_not_raised(depot, customer):
    errors = []
    provider, session, handle = _watching_session(depot, customer, router=FakeRouter(error=NoRoute("island")))
    session.on_route_error = errors.append
    try:
        provider.push(TrackedPosition(coordinate=depot))
        session.set_destination("customer")
    finally:
        handle.cancel()

    assert session.route is None
    assert len(errors) == 1
    assert isinstance(errors[0], NoRoute)


def test_route_result_after_cancel_is_discarded(depot, customer):
    router = BlockingRouter()
    provider, session, handle = _watching_session(depot, customer, router=router)
    routes = []
    session.on_route_update = routes.append
    provider.push(TrackedPosition(coordinate=depot))

    worker = threading.Thread(target=session.set_destination_coordinate, args=(customer,))
    worker.start()
    assert router.entered.wait(2)

    threading.Timer(0.1, router.release.set).start()
    handle.cancel()
    worker.join(2)

    assert routes == []
    assert session.route is None


def test_queued_refresh_does_not_fetch_after_cancel(depot, customer):
    active_at_call = []
    router = BlockingRouter(error=NoRoute("island"))
    provider, session, handle = _watching_session(depot, customer, router=router)
    router.on_call = lambda: active_at_call.append(session.is_active)
    errors = []
    session.on_route_error = errors.append
    provider.push(TrackedPosition(coordinate=depot))

    first = threading.Thread(target=session.set_destination_coordinate, args=(customer,))
    first.start()
    assert router.entered.wait(2)
    second = threading.Thread(target=session.refresh_route)
    second.start()
    time.sleep(0.05)

    handle.cancel()
    router.release.set()
    first.join(2)
    second.join(2)

    assert len(router.calls) == 1
    assert active_at_call == [True]
    assert errors == []


def test_transmits_continue_while_route_fetch_blocks(depot, customer):
    router = BlockingRouter()
    provider = PushLocationProvider()
    sink = RecordingSink(notify_after=8)
    session = TrackingSession(provider, sink=sink, router=router, max_workers=1)
    # no position yet, so this does not fetch
    session.set_destination_coordinate(customer)
    handle = session.start_tracking(Updates(), interval_ms=1, mode=TrackingMode.WATCH)
    try:
        for i in range(8):
            provider.push(TrackedPosition(coordinate=Coordinate(depot.latitude, depot.longitude + 0.001 * i)))
            time.sleep(0.01)

        assert router.entered.wait(2)
        assert sink.reached.wait(2)
        assert not router.release.is_set()
    finally:
        router.release.set()
        handle.cancel()

    assert len(sink.sent) == 8


def test_snapshot(depot, customer):
    provider, session, handle = _watching_session(depot, customer)
    try:
        provider.push(TrackedPosition(coordinate=depot))
        session.set_destination("customer")
        snapshot = session.snapshot()
    finally:
        handle.cancel()

    assert snapshot["active"] is True
    assert snapshot["position"]["latitude"] == depot.latitude
    assert snapshot["destination"]["address"] == "customer"
    assert snapshot["route"]["distance_meters"] == 1000.0
    assert snapshot["straight_line_km"] == pytest.approx(1.9, abs=0.1)


def test_stop_clears_caches(depot, customer):
    geocoder = FakeGeocoder({"customer": customer})
    provider, session, handle = _watching_session(depot, customer, geocoder=geocoder)
    session.set_destination("customer")

    handle.cancel()

    assert len(session.geocode_cache) == 0
    assert session.route_cache.result is None
