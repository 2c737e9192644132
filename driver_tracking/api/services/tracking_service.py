# driver_tracking/api/services/tracking_service.py
"""Service layer wiring configuration to tracking components."""

import logging
from typing import Any, Callable, Dict, Optional

from driver_tracking.api.config import (
    get_backend_config,
    get_routing_config,
    get_tracking_config,
    get_websocket_config,
)
from driver_tracking.api.backend import BackendClient
from driver_tracking.api.directions import GoogleRouteService, OsrmRouteService, RouteService
from driver_tracking.api.geocoding import Geocoder, GoogleGeocoder, NominatimGeocoder
from driver_tracking.api.models import Coordinate
from driver_tracking.api.sinks import (
    HttpPositionSink,
    NullPositionSink,
    PositionSink,
    WebSocketPositionSink,
)
from driver_tracking.api.tracking import TrackingSession

logger = logging.getLogger(__name__)


class TrackingService:
    """Builds geocoders, routers and sinks from configuration."""

    @staticmethod
    def build_geocoder(name: Optional[str] = None) -> Geocoder:
        """Create the configured geocoder.

        Args:
            name: ``google`` or ``nominatim``; defaults to ``GEOCODER``

        Returns:
            Geocoder instance
        """
        name = (name or get_routing_config()["geocoder"]).lower()
        if name == "nominatim":
            return NominatimGeocoder()
        if name == "google":
            return GoogleGeocoder()
        raise ValueError(f"Unknown geocoder: {name}")

    @staticmethod
    def build_router(name: Optional[str] = None) -> RouteService:
        """Create the configured route service (``google`` or ``osrm``)."""
        name = (name or get_routing_config()["router"]).lower()
        if name == "osrm":
            return OsrmRouteService()
        if name == "google":
            return GoogleRouteService()
        raise ValueError(f"Unknown router: {name}")

    @staticmethod
    def build_sink(
        driver_id: str,
        trip_id: Optional[str] = None,
        transport: Optional[str] = None,
        on_message: Optional[Callable[[Dict[str, Any]], None]] = None,
    ) -> PositionSink:
        """Create the position sink for a driver.

        HTTP transport posts to the trip endpoint when a trip is known and to
        the driver endpoint otherwise. Falls back to a null sink when no
        backend is configured.

        Args:
            driver_id: Driver identifier
            trip_id: Optional active trip
            transport: ``http``, ``websocket`` or ``none``
            on_message: Hook for messages received on a WebSocket channel

        Returns:
            PositionSink instance
        """
        transport = (transport or get_tracking_config()["transport"]).lower()

        if transport == "websocket":
            return WebSocketPositionSink(get_websocket_config()["url"], driver_id, on_message=on_message)

        if transport == "http":
            base_url = get_backend_config()["base_url"]
            if not base_url:
                logger.warning("BACKEND_URL not set; positions will not be transmitted")
                return NullPositionSink()
            if trip_id:
                return HttpPositionSink.for_trip(base_url, trip_id)
            return HttpPositionSink.for_driver(base_url, driver_id)

        return NullPositionSink()

    @staticmethod
    def set_destination(
        tracking: TrackingSession,
        address: Optional[str] = None,
        dispatch_id: Optional[str] = None,
        backend: Optional[BackendClient] = None,
    ) -> Coordinate:
        """Point a tracking session at an address or at a dispatch's location.

        Args:
            tracking: Session to update
            address: Free-text destination
            dispatch_id: Dispatch whose ``location`` is the destination
            backend: Client used to look the dispatch up

        Returns:
            Resolved destination coordinate

        Raises:
            ValueError: If neither address nor dispatch_id is given
            BackendError: If the dispatch cannot be fetched
            GeocodeError: If the address cannot be resolved
        """
        if not address and dispatch_id:
            backend = backend or BackendClient()
            address = backend.get_dispatch_address(dispatch_id)
            logger.info(f"Dispatch {dispatch_id} destination: {address}")
        if not address:
            raise ValueError("address or dispatch_id is required")
        return tracking.set_destination(address)

    @staticmethod
    def validate_coordinates(lat: float, lng: float) -> bool:
        """Validate that coordinates are within valid ranges."""
        return -90 <= lat <= 90 and -180 <= lng <= 180

    @staticmethod
    def format_eta(snapshot: Dict[str, Any]) -> Optional[str]:
        """Short ETA line for a session snapshot, or None without a route.

        Args:
            snapshot: Output of ``TrackingSession.snapshot()``

        Returns:
            e.g. "12 min (4.3 km)"
        """
        route = snapshot.get("route")
        if not route:
            return None
        duration = route.get("duration_text") or f"{max(1, round(route['duration_seconds'] / 60))} min"
        distance = route.get("distance_text") or f"{route['distance_meters'] / 1000:.1f} km"
        return f"{duration} ({distance})"


# Export for use in other modules
__all__ = ['TrackingService']
