# driver_tracking/routes/websocket/tracking.py
"""WebSocket handlers for driver tracking: start/stop, location pushes, destination."""

import logging
import time
from flask import request, session

from driver_tracking.api.errors import BackendError, GeocodeError, PermissionDenied
from driver_tracking.api.feed import get_trip_feed
from driver_tracking.api.models import TrackedPosition
from driver_tracking.api.services.tracking_service import TrackingService
from driver_tracking.api.session_manager import get_session_manager
from driver_tracking.api.tracking import TrackingMode
from .base import BaseWebSocketHandler, NAMESPACE, SESSION_KEY
from .callback_helpers import make_position_emitter, wire_tracking_callbacks

logger = logging.getLogger(__name__)


def _permission_granted(value) -> bool:
    """Only an explicit false or "denied" counts as a refusal."""
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "denied")
    return value is not False


class TrackingHandler(BaseWebSocketHandler):
    """Handles tracking-related WebSocket events."""

    def register_handlers(self):
        """Register tracking event handlers."""

        @self.socketio.on("start_tracking", namespace=NAMESPACE)
        def handle_start_tracking(data=None):
            """Create a tracking session for the driver and start it."""
            data = data or {}
            driver_id = data.get("driver_id")
            if not driver_id:
                self.emit_error("bad_request", "driver_id is required", "start_tracking")
                return

            manager = get_session_manager()
            previous = session.pop(SESSION_KEY, None)
            if previous:
                manager.end_session(previous, "restarted")

            try:
                mode = TrackingMode(data.get("mode", TrackingMode.POLL.value))
                interval_ms = data.get("interval_ms")
                if interval_ms is not None:
                    interval_ms = int(interval_ms)
                driver_session = manager.create_session(
                    str(driver_id),
                    permission_granted=_permission_granted(data.get("permission", True)),
                    trip_id=data.get("trip_id"),
                    transport=data.get("transport"),
                    on_message=get_trip_feed().apply_message,
                )
            except (TypeError, ValueError) as exc:
                self.handle_error(exc, "start_tracking", code="bad_request")
                return

            sid = request.sid
            wire_tracking_callbacks(self.socketio, driver_session, sid, NAMESPACE)
            try:
                manager.start_tracking(
                    driver_session.session_id,
                    make_position_emitter(self.socketio, driver_session, sid, NAMESPACE),
                    interval_ms=interval_ms,
                    mode=mode,
                )
            except PermissionDenied as exc:
                manager.end_session(driver_session.session_id, "permission_denied")
                self.emit_error("permission_denied", "Location permission denied", "start_tracking")
                logger.warning(f"Driver {driver_id} denied location permission: {exc}")
                return
            except (TypeError, ValueError) as exc:
                manager.end_session(driver_session.session_id, "bad_request")
                self.handle_error(exc, "start_tracking", code="bad_request")
                return

            session[SESSION_KEY] = driver_session.session_id
            self.emit_to_client("tracking_started", {
                "session_id": driver_session.session_id,
                "driver_id": driver_session.driver_id,
                "mode": mode.value,
                "timestamp": time.time(),
            })

        @self.socketio.on("location", namespace=NAMESPACE)
        def handle_location(data=None):
            """A position fix pushed by the device."""
            driver_session = self.current_driver_session()
            if driver_session is None:
                self.emit_error("no_session", "No tracking session")
                return
            try:
                position = TrackedPosition.from_payload(data or {})
            except ValueError as exc:
                self.handle_error(exc, "location", code="bad_request")
                return
            driver_session.provider.push(position)

        @self.socketio.on("set_destination", namespace=NAMESPACE)
        def handle_set_destination(data=None):
            """Resolve and set the destination (address or dispatch id)."""
            data = data or {}
            driver_session = self.current_driver_session()
            if driver_session is None:
                self.emit_error("no_session", "No tracking session")
                return

            try:
                coordinate = TrackingService.set_destination(
                    driver_session.tracking,
                    address=data.get("address"),
                    dispatch_id=data.get("dispatch_id"),
                )
            except GeocodeError as exc:
                # non-blocking notice; tracking continues without a destination
                self.emit_to_client("geocode_failed", {
                    "message": str(exc),
                    "reason": type(exc).__name__,
                })
                return
            except (BackendError, ValueError) as exc:
                self.handle_error(exc, "set_destination", code="bad_request")
                return

            self.emit_to_client("destination_set", {
                "destination": coordinate.to_dict(),
                "address": driver_session.tracking.destination_address,
                "straight_line_km": driver_session.tracking.straight_line_km(),
            })

        @self.socketio.on("stop_tracking", namespace=NAMESPACE)
        def handle_stop_tracking(data=None):
            """Stop and end the current tracking session."""
            session_id = session.pop(SESSION_KEY, None)
            if not session_id:
                self.emit_to_client("tracking_stopped", {"reason": "no_session"})
                return
            get_session_manager().end_session(session_id, "client_stop")

        @self.socketio.on("get_state", namespace=NAMESPACE)
        def handle_get_state(data=None):
            """Current session snapshot for debugging / re-sync."""
            driver_session = self.current_driver_session()
            if driver_session is None:
                self.emit_to_client("state", {"error": "No session"})
                return
            self.emit_to_client("state", driver_session.tracking.snapshot())
