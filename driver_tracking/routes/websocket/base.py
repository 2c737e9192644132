# driver_tracking/routes/websocket/base.py
"""Shared plumbing for the tracking Socket.IO handlers."""

import logging
from flask import request, session
from flask_socketio import emit

from driver_tracking.api.session_manager import get_session_manager

logger = logging.getLogger(__name__)

NAMESPACE = "/tracking/ws"

# Flask session key holding the connection's tracking session id
SESSION_KEY = "tracking_session_id"


class BaseWebSocketHandler:
    """Emit helpers plus lookup of the connection's DriverSession."""

    def __init__(self, socketio, namespace=NAMESPACE):
        self.socketio = socketio
        self.namespace = namespace

    def emit_to_client(self, event, data, room=None):
        """Emit to the calling client, or to ``room`` from outside a handler."""
        try:
            if room:
                self.socketio.emit(event, data, room=room, namespace=self.namespace)
            else:
                emit(event, data, namespace=self.namespace)
        except Exception as e:
            logger.error(f"Failed to emit {event}: {e}")

    def emit_error(self, code, message, event_name=""):
        """Send a ``tracking_error`` the device can switch on by ``code``."""
        self.emit_to_client("tracking_error", {"code": code, "message": message, "event": event_name})

    def current_driver_session(self):
        """DriverSession bound to this connection, or None."""
        session_id = session.get(SESSION_KEY)
        if not session_id:
            return None
        return get_session_manager().get_session(session_id)

    def log_event(self, event_name, data=None):
        sid = request.sid
        driver_session = self.current_driver_session()
        driver = driver_session.driver_id if driver_session else "-"
        if data:
            logger.info(f"[WS] {event_name} - Client: {sid}, Driver: {driver}, Data: {data}")
        else:
            logger.info(f"[WS] {event_name} - Client: {sid}, Driver: {driver}")

    def handle_error(self, error, event_name="", code="internal_error"):
        """Log a handler failure and report it to the device."""
        logger.error(f"[WS] Error in {event_name} - Client: {request.sid}, Error: {error}")
        self.emit_error(code, str(error), event_name)
