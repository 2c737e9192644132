# driver_tracking/routes/websocket/__init__.py
"""WebSocket route handlers initialization."""

import logging

from .connection import ConnectionHandler
from .tracking import TrackingHandler
from .base import NAMESPACE

logger = logging.getLogger(__name__)


def register_websocket_handlers(socketio):
    """Register all WebSocket event handlers with SocketIO.

    Args:
        socketio: Flask-SocketIO instance
    """
    logger.info("Registering tracking WebSocket handlers...")

    try:
        connection_handler = ConnectionHandler(socketio, NAMESPACE)
        tracking_handler = TrackingHandler(socketio, NAMESPACE)

        logger.info(f"Registering connection handler for namespace: {NAMESPACE}")
        connection_handler.register_handlers()
        connection_handler.register_feed_broadcast()

        logger.info(f"Registering tracking handler for namespace: {NAMESPACE}")
        tracking_handler.register_handlers()

        logger.info("✅ WebSocket handlers registered successfully")

    except Exception as e:
        logger.error(f"❌ Failed to register WebSocket handlers: {e}")
        logger.exception("WebSocket registration error:")
        raise


__all__ = ['register_websocket_handlers', 'NAMESPACE']
