"""Live position tracking and routing for one driver.

A ``TrackingSession`` owns everything one driver's tracking needs: the
location provider, the position sink, the geocode and route caches, the
poll timer thread and a small pool for transmissions and route refreshes.

Typical usage:

    session = TrackingSession(provider, sink=sink, geocoder=geocoder, router=router)
    handle = session.start_tracking(on_update=print, interval_ms=5000)
    session.set_destination("221B Baker Street, London")
    ...
    handle.cancel()
"""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional

from driver_tracking.api.directions import RouteCache, RouteService
from driver_tracking.api.errors import (
    GeocodeError,
    LocationUnavailable,
    PermissionDenied,
    RouteError,
    TrackingError,
)
from driver_tracking.api.geocoding import GeocodeCache, Geocoder
from driver_tracking.api.geometry import compute_heading, haversine_distance_km
from driver_tracking.api.location import LocationProvider
from driver_tracking.api.models import Coordinate, RouteResult, TrackedPosition
from driver_tracking.api.sinks import PositionSink, transmit_position

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[TrackedPosition], None]


def _log_task_failure(future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Background tracking task failed: %s", exc, exc_info=exc)


class TrackingMode(str, enum.Enum):
    POLL = "poll"
    WATCH = "watch"


class TrackingHandle:
    """Returned by ``start_tracking``; cancelling it stops the session."""

    def __init__(self, session: TrackingSession):
        self._session = session

    @property
    def active(self) -> bool:
        return self._session.is_active

    def cancel(self, timeout: float = 2.0) -> None:
        """Stop tracking. Idempotent, and safe after the session stopped itself."""
        self._session.stop(timeout=timeout)

    def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the poll thread to exit."""
        self._session.join(timeout)


class TrackingSession:
    """Tracks one driver: acquire, transmit, and keep a route to the destination."""

    def __init__(
        self,
        provider: LocationProvider,
        sink: Optional[PositionSink] = None,
        geocoder: Optional[Geocoder] = None,
        router: Optional[RouteService] = None,
        *,
        route_precision: int = 5,
        route_drift_m: Optional[float] = None,
        min_distance_m: float = 0.0,
        max_workers: int = 4,
    ):
        self.provider = provider
        self.sink = sink
        self.geocode_cache = GeocodeCache(geocoder) if geocoder else None
        self.route_cache = RouteCache(router, route_precision, route_drift_m) if router else None
        self.min_distance_m = min_distance_m
        self.max_workers = max_workers

        # RLock: on_update runs under it and may call back into the session
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None  # transmissions
        self._route_executor: Optional[ThreadPoolExecutor] = None  # one refresh at a time
        self._route_pending = False
        self._unwatch: Optional[Callable[[], None]] = None
        self._on_update: Optional[UpdateCallback] = None
        self._active = False
        self._generation = 0  # bumped on stop; stale route results are dropped

        # Caller-visible state, replaced atomically per tick
        self.position: Optional[TrackedPosition] = None
        self.heading: float = 0.0
        self.destination_address: Optional[str] = None
        self.destination: Optional[Coordinate] = None
        self.route: Optional[RouteResult] = None
        self.last_error: Optional[TrackingError] = None

        # Optional notification hooks (set by the caller)
        self.on_route_update: Optional[Callable[[RouteResult], None]] = None
        self.on_route_error: Optional[Callable[[RouteError], None]] = None
        self.on_stopped: Optional[Callable[[Optional[TrackingError]], None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        return self._active

    def start_tracking(
        self,
        on_update: UpdateCallback,
        interval_ms: int,
        mode: TrackingMode = TrackingMode.POLL,
    ) -> TrackingHandle:
        """Start acquiring positions.

        Raises:
            ValueError: If ``interval_ms`` is not positive
            PermissionDenied: If the device refuses location access
            RuntimeError: If the session is already tracking
        """
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")

        with self._lock:
            if self._active:
                raise RuntimeError("Tracking already started")

            if not self.provider.request_permission():
                logger.warning("Location permission denied")
                self.last_error = PermissionDenied("Location permission denied")
                raise self.last_error

            self._on_update = on_update
            self._stop.clear()
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="tracking"
            )
            self._route_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="tracking-route")
            self._route_pending = False
            self._active = True
            self.last_error = None

            interval_s = interval_ms / 1000.0
            if TrackingMode(mode) is TrackingMode.WATCH:
                self._unwatch = self.provider.watch(
                    self._deliver, min_interval_s=interval_s, min_distance_m=self.min_distance_m
                )
            else:
                self._thread = threading.Thread(
                    target=self._poll_loop, args=(interval_s,), daemon=True,
                    name="tracking-poll",
                )
                self._thread.start()

        logger.info("Tracking started (%s, every %dms)", TrackingMode(mode).value, interval_ms)
        return TrackingHandle(self)

    def stop(self, timeout: float = 2.0, error: Optional[TrackingError] = None) -> None:
        """Stop tracking and discard session-owned caches. Idempotent."""
        with self._lock:
            if not self._active:
                return
            self._active = False
            self._generation += 1
            self._stop.set()
            self._on_update = None
            if error is not None:
                self.last_error = error

            if self._unwatch:
                self._unwatch()
                self._unwatch = None
            for executor in (self._executor, self._route_executor):
                if executor:
                    executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
            self._route_executor = None

            self.provider.release()
            if self.geocode_cache:
                self.geocode_cache.clear()
            if self.route_cache:
                self.route_cache.clear()
            thread = self._thread
            on_stopped = self.on_stopped

        if thread and thread is not threading.current_thread():
            thread.join(timeout)
        logger.info("Tracking stopped%s", f" ({error})" if error else "")
        if on_stopped:
            on_stopped(error)

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout)

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    def _poll_loop(self, interval_s: float) -> None:
        while not self._stop.is_set():
            self.poll_once()
            if self._stop.wait(interval_s):
                break

    def poll_once(self) -> Optional[TrackedPosition]:
        """Acquire one position and deliver it. Returns the delivered fix."""
        if not self._active:
            return None
        try:
            position = self.provider.get_current_position()
        except PermissionDenied as e:
            logger.error("Location permission revoked: %s", e)
            self.stop(error=e)
            return None
        except LocationUnavailable as e:
            logger.warning(f"No location fix this tick: {e}")
            return None

        if position is None:
            return None
        return position if self._deliver(position) else None

    def _deliver(self, position: TrackedPosition) -> bool:
        with self._lock:
            # cancelled while the acquisition was in flight: discard
            if not self._active:
                return False

            previous = self.position
            self.position = position
            if previous is not None:
                self.heading = compute_heading(previous.coordinate, position.coordinate, self.heading)
            elif position.heading is not None:
                self.heading = position.heading % 360

            if self._on_update:
                self._on_update(position)

            if self.sink is not None:
                self._submit(self._executor, transmit_position, position, self.sink)
            # at most one refresh queued; it reads the newest position when it runs
            if (self.destination is not None and self.route_cache is not None
                    and not self._route_pending):
                self._route_pending = self._submit(self._route_executor, self._pooled_refresh)
        return True

    def _pooled_refresh(self) -> None:
        with self._lock:
            self._route_pending = False
        self.refresh_route()

    def _submit(self, executor: Optional[ThreadPoolExecutor], fn, *args) -> bool:
        if executor is None:
            return False
        try:
            future = executor.submit(fn, *args)
        except RuntimeError:
            # executor shut down between the check and the submit
            logger.debug("Dropped task after shutdown")
            return False
        future.add_done_callback(_log_task_failure)
        return True

    # ------------------------------------------------------------------
    # Destination and route
    # ------------------------------------------------------------------

    def geocode(self, address: str) -> Coordinate:
        """Resolve an address through the session cache."""
        if self.geocode_cache is None:
            raise RuntimeError("No geocoder configured")
        return self.geocode_cache.lookup(address)

    def fetch_route(self, origin: Coordinate, destination: Coordinate) -> RouteResult:
        """Fetch (or reuse) the route for ``origin`` -> ``destination``."""
        if self.route_cache is None:
            raise RuntimeError("No router configured")
        return self.route_cache.get(origin, destination)

    def set_destination(self, address: str) -> Coordinate:
        """Geocode ``address`` and make it the destination.

        On GeocodeError the destination is cleared and the error re-raised;
        tracking itself carries on without a destination.
        """
        try:
            coordinate = self.geocode(address)
        except GeocodeError as e:
            logger.warning(f"Could not geocode destination '{address}': {e}")
            with self._lock:
                self.destination_address = address
                self.destination = None
                self.route = None
                self.last_error = e
            raise

        self.set_destination_coordinate(coordinate, address=address)
        return coordinate

    def set_destination_coordinate(self, coordinate: Coordinate,
                                   address: Optional[str] = None) -> None:
        with self._lock:
            changed = self.destination != coordinate
            self.destination = coordinate
            self.destination_address = address
            if changed:
                self.route = None
            has_position = self.position is not None

        if changed and has_position:
            self.refresh_route()

    def clear_destination(self) -> None:
        with self._lock:
            self.destination = None
            self.destination_address = None
            self.route = None
        if self.route_cache:
            self.route_cache.invalidate()

    def refresh_route(self) -> Optional[RouteResult]:
        """Bring ``route`` up to date with the current position and destination.

        Never raises RouteError; on failure ``route`` is cleared and
        ``on_route_error`` is notified.
        """
        with self._lock:
            position = self.position
            destination = self.destination
            generation = self._generation
        if position is None or destination is None or self.route_cache is None:
            return None

        def still_wanted() -> bool:
            # read without the session lock; stop() holds it while clearing the cache
            return (self._active and generation == self._generation
                    and self.destination == destination)

        try:
            result = self.route_cache.get(position.coordinate, destination, should_fetch=still_wanted)
        except RouteError as e:
            logger.warning(f"Route unavailable: {e}")
            with self._lock:
                if generation != self._generation or self.destination != destination:
                    return None
                self.route = None
                self.last_error = e
            if self.on_route_error:
                self.on_route_error(e)
            return None
        if result is None:
            return None

        with self._lock:
            # stopped, or destination changed, while the request was in flight
            if generation != self._generation or self.destination != destination:
                return None
            changed = result is not self.route
            self.route = result
        if changed and self.on_route_update:
            self.on_route_update(result)
        return result

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def straight_line_km(self) -> Optional[float]:
        with self._lock:
            if self.position is None or self.destination is None:
                return None
            return haversine_distance_km(self.position.coordinate, self.destination)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-ready view of the session state."""
        with self._lock:
            route = self.route
            return {
                "active": self._active,
                "position": self.position.to_dict() if self.position else None,
                "heading": self.heading,
                "destination": {
                    "address": self.destination_address,
                    **(self.destination.to_dict() if self.destination else {}),
                } if self.destination_address or self.destination else None,
                "route": route.to_dict() if route else None,
                "straight_line_km": self.straight_line_km(),
                "last_error": str(self.last_error) if self.last_error else None,
            }


__all__ = ["TrackingSession", "TrackingHandle", "TrackingMode"]
