# driver_tracking/routes/websocket/connection.py
"""WebSocket connection and disconnection handlers."""

import time
import logging
from flask import request, session
from flask_socketio import join_room, leave_room

from driver_tracking.api.feed import get_trip_feed
from driver_tracking.api.session_manager import get_session_manager
from .base import BaseWebSocketHandler, NAMESPACE, SESSION_KEY

logger = logging.getLogger(__name__)

TRIPS_ROOM = "trips"


class ConnectionHandler(BaseWebSocketHandler):
    """Handles WebSocket connection lifecycle events."""

    def register_handlers(self):
        """Register connection-related event handlers."""

        @self.socketio.on('connect', namespace=NAMESPACE)
        def handle_connect(auth=None):
            """Handle a driver device connecting."""
            self.log_event('connect')
            self.emit_to_client('connected', {
                'sid': request.sid,
                'status': 'connected',
                'timestamp': time.time(),
            })

        @self.socketio.on('disconnect', namespace=NAMESPACE)
        def handle_disconnect(*args):
            """End the device's tracking session, if any."""
            session_id = session.pop(SESSION_KEY, None)
            if session_id:
                try:
                    get_session_manager().end_session(session_id, 'client_disconnect')
                    logger.info(f"🔌 WebSocket disconnected, session {session_id} ended")
                except Exception as e:
                    logger.error(f"Error ending session {session_id} on disconnect: {e}")
            else:
                self.log_event('disconnect', {'no_session': True})

        @self.socketio.on('subscribe_trips', namespace=NAMESPACE)
        def handle_subscribe_trips(data=None):
            """Join the live trip feed and receive the current state."""
            join_room(TRIPS_ROOM)
            self.emit_to_client('trips_update', get_trip_feed().to_dict())

        @self.socketio.on('unsubscribe_trips', namespace=NAMESPACE)
        def handle_unsubscribe_trips(data=None):
            leave_room(TRIPS_ROOM)

        @self.socketio.on('ping', namespace=NAMESPACE)
        def handle_ping():
            """Handle ping for connection testing."""
            self.emit_to_client('pong', {'timestamp': time.time()})

    def register_feed_broadcast(self):
        """Push trip feed changes to every subscribed client."""
        def _broadcast(feed):
            try:
                self.socketio.emit('trips_update', feed.to_dict(), room=TRIPS_ROOM, namespace=self.namespace)
            except Exception as e:
                logger.error(f"Failed to broadcast trips_update: {e}")

        get_trip_feed().add_listener(_broadcast)
