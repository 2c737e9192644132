# driver_tracking/api/directions.py
"""Route computation: Google Directions or OSRM, plus the per-session route cache."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Tuple

import googlemaps
import requests

from driver_tracking.api.config import get_routing_config
from driver_tracking.api.errors import NoRoute, RouteProviderError, RouteTimeout
from driver_tracking.api.geocoding import get_client
from driver_tracking.api.geometry import haversine_distance_m
from driver_tracking.api.models import Coordinate, RouteResult
from driver_tracking.api.polyline import decode_polyline

logger = logging.getLogger(__name__)

NO_ROUTE_STATUSES = {"ZERO_RESULTS", "NOT_FOUND"}


def _format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{int(round(meters))} m"
    return f"{meters / 1000:.1f} km"


def _format_duration(seconds: float) -> str:
    minutes = max(1, int(round(seconds / 60)))
    if minutes < 60:
        return f"{minutes} min"
    hours, minutes = divmod(minutes, 60)
    return f"{hours} h {minutes} min"


class RouteService:
    """Interface: fetch a driving route between two coordinates."""

    def fetch_route(self, origin: Coordinate, destination: Coordinate) -> RouteResult:
        """Raises RouteTimeout, NoRoute or RouteProviderError."""
        raise NotImplementedError


class GoogleRouteService(RouteService):
    """Routing via the Google Directions API."""

    def __init__(self, client: Optional[googlemaps.Client] = None, mode: str = "driving"):
        self._client = client
        self.mode = mode

    @property
    def client(self) -> googlemaps.Client:
        if self._client is None:
            try:
                self._client = get_client()
            except ValueError as e:
                raise RouteProviderError(str(e)) from e
        return self._client

    def fetch_route(self, origin: Coordinate, destination: Coordinate) -> RouteResult:
        try:
            routes = self.client.directions(
                (origin.latitude, origin.longitude),
                (destination.latitude, destination.longitude),
                mode=self.mode,
            )
        except googlemaps.exceptions.Timeout as e:
            raise RouteTimeout("Directions request timed out") from e
        except googlemaps.exceptions.ApiError as e:
            if e.status in NO_ROUTE_STATUSES:
                raise NoRoute(f"No route: {e.status}") from e
            raise RouteProviderError(f"Directions API error: {e}") from e
        except googlemaps.exceptions.TransportError as e:
            raise RouteProviderError(f"Directions transport error: {e}") from e

        if not routes:
            raise NoRoute("Directions returned no routes")

        try:
            route = routes[0]
            points = route["overview_polyline"]["points"]
            legs = route["legs"]
            distance = sum(leg["distance"]["value"] for leg in legs)
            duration = sum(leg["duration"]["value"] for leg in legs)
            distance_text = legs[0]["distance"].get("text")
            duration_text = legs[0]["duration"].get("text")
            polyline = tuple(decode_polyline(points))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise RouteProviderError(f"Malformed directions response: {e}") from e

        return RouteResult(
            polyline=polyline,
            distance_meters=float(distance),
            duration_seconds=float(duration),
            distance_text=distance_text,
            duration_text=duration_text,
        )


class OsrmRouteService(RouteService):
    """Routing via an OSRM server's /route service."""

    def __init__(self, base_url: Optional[str] = None, profile: Optional[str] = None,
                 timeout: Optional[float] = None):
        cfg = get_routing_config()
        self.base_url = (base_url or cfg["osrm_base_url"]).rstrip("/")
        self.profile = profile or cfg["osrm_profile"]
        self.timeout = timeout if timeout is not None else cfg["timeout"]

    @staticmethod
    def format_coordinates(*coords: Coordinate) -> str:
        """OSRM wants 'lon,lat;lon,lat'."""
        return ";".join(f"{c.longitude},{c.latitude}" for c in coords)

    def fetch_route(self, origin: Coordinate, destination: Coordinate) -> RouteResult:
        url = f"{self.base_url}/route/v1/{self.profile}/{self.format_coordinates(origin, destination)}"
        try:
            response = requests.get(
                url,
                params={"overview": "full", "geometries": "polyline"},
                timeout=self.timeout,
            )
            data = response.json()
        except requests.exceptions.Timeout as e:
            raise RouteTimeout("OSRM request timed out") from e
        except requests.exceptions.RequestException as e:
            raise RouteProviderError(f"OSRM request failed: {e}") from e
        except ValueError as e:
            raise RouteProviderError("OSRM returned invalid JSON") from e

        code = data.get("code")
        if code == "NoRoute" or (code == "Ok" and not data.get("routes")):
            raise NoRoute("OSRM found no route")
        if code != "Ok":
            raise RouteProviderError(f"OSRM error: {data.get('message', code or 'Unknown error')}")

        try:
            route = data["routes"][0]
            polyline = tuple(decode_polyline(route["geometry"]))
            distance = float(route["distance"])
            duration = float(route["duration"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise RouteProviderError(f"Malformed OSRM response: {e}") from e

        return RouteResult(
            polyline=polyline,
            distance_meters=distance,
            duration_seconds=duration,
            distance_text=_format_distance(distance),
            duration_text=_format_duration(duration),
        )


class RouteCache:
    """Per-session route cache.

    Fetches once per destination (rounded to ``precision`` digits so GPS
    jitter does not count as a change). With ``drift_threshold_m`` set, the
    route is also refetched once the origin moves farther than that from the
    origin the cached route was computed for.

    The lock is not held during the provider call. Concurrent callers wait
    for the fetch in flight and then reuse its result.
    """

    def __init__(self, router: RouteService, precision: int = 5,
                 drift_threshold_m: Optional[float] = None):
        self.router = router
        self.precision = precision
        self.drift_threshold_m = drift_threshold_m
        self._cond = threading.Condition()
        self._fetching = False
        self._epoch = 0  # bumped by invalidate(); an older fetch is not stored
        self._destination_key: Optional[Tuple[float, float]] = None
        self._origin: Optional[Coordinate] = None
        self._result: Optional[RouteResult] = None

    @property
    def result(self) -> Optional[RouteResult]:
        return self._result

    def _is_stale(self, origin: Coordinate, destination_key: Tuple[float, float]) -> bool:
        if self._result is None or destination_key != self._destination_key:
            return True
        if self.drift_threshold_m is None or self._origin is None:
            return False
        if origin.rounded(self.precision) == self._origin.rounded(self.precision):
            return False
        return haversine_distance_m(self._origin, origin) > self.drift_threshold_m

    def get(self, origin: Coordinate, destination: Coordinate,
            should_fetch: Optional[Callable[[], bool]] = None) -> Optional[RouteResult]:
        """Return the cached route or fetch a new one. Errors clear the cache.

        Args:
            origin: Current position
            destination: Route target
            should_fetch: Checked right before a provider call; when it
                returns False no request is made and None is returned

        Raises:
            RouteTimeout, NoRoute or RouteProviderError from the provider
        """
        destination_key = destination.rounded(self.precision)
        with self._cond:
            while self._fetching:
                self._cond.wait()
            if destination_key != self._destination_key:
                self._result = None
            if not self._is_stale(origin, destination_key):
                return self._result
            if should_fetch is not None and not should_fetch():
                logger.debug("Route fetch skipped for %s", destination_key)
                return None

            logger.info(
                "Fetching route %s -> %s",
                origin.rounded(self.precision), destination_key,
            )
            self._fetching = True
            self._destination_key = destination_key
            epoch = self._epoch

        try:
            result = self.router.fetch_route(origin, destination)
        except Exception:
            with self._cond:
                if epoch == self._epoch:
                    self._result = None
                    self._origin = None
                self._fetching = False
                self._cond.notify_all()
            raise

        with self._cond:
            if epoch == self._epoch:
                self._result = result
                self._origin = origin
            self._fetching = False
            self._cond.notify_all()
        return result

    def invalidate(self) -> None:
        with self._cond:
            self._epoch += 1
            self._result = None
            self._origin = None
            self._destination_key = None

    clear = invalidate


__all__ = [
    "RouteService",
    "GoogleRouteService",
    "OsrmRouteService",
    "RouteCache",
]
