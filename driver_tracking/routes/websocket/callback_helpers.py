# driver_tracking/routes/websocket/callback_helpers.py
"""Helper functions for wiring tracking callbacks to Socket.IO events."""

import logging
from typing import Optional

from driver_tracking.api.errors import RouteError, TrackingError
from driver_tracking.api.models import RouteResult, TrackedPosition

logger = logging.getLogger(__name__)


def make_position_emitter(socketio, driver_session, sid: str, namespace: str = "/tracking/ws"):
    """Return an ``on_update`` callback that pushes each fix to the device."""
    tracking = driver_session.tracking

    def _on_update(position: TrackedPosition) -> None:
        try:
            socketio.emit(
                "position_update",
                {
                    "position": position.to_dict(),
                    "heading": tracking.heading,
                    "straight_line_km": tracking.straight_line_km(),
                },
                room=sid,
                namespace=namespace,
            )
        except Exception as exc:
            logger.exception("Failed emitting position_update: %s", exc)

    return _on_update


def wire_tracking_callbacks(socketio, driver_session, sid: str, namespace: str = "/tracking/ws") -> None:
    """Bridge TrackingSession route/lifecycle hooks to Socket.IO events."""
    tracking = driver_session.tracking

    def _on_route_update(route: RouteResult) -> None:
        try:
            socketio.emit("route_update", route.to_dict(), room=sid, namespace=namespace)
        except Exception as exc:
            logger.exception("Failed emitting route_update: %s", exc)

    def _on_route_error(error: RouteError) -> None:
        # ETA and distance stay absent on the client
        try:
            socketio.emit(
                "route_unavailable",
                {"message": "Route unavailable", "reason": type(error).__name__},
                room=sid,
                namespace=namespace,
            )
        except Exception as exc:
            logger.exception("Failed emitting route_unavailable: %s", exc)

    def _on_stopped(error: Optional[TrackingError]) -> None:
        try:
            socketio.emit(
                "tracking_stopped",
                {
                    "session_id": driver_session.session_id,
                    "reason": type(error).__name__ if error else "stopped",
                    "message": str(error) if error else None,
                },
                room=sid,
                namespace=namespace,
            )
        except Exception as exc:
            logger.exception("Failed emitting tracking_stopped: %s", exc)

    tracking.on_route_update = _on_route_update
    tracking.on_route_error = _on_route_error
    tracking.on_stopped = _on_stopped
