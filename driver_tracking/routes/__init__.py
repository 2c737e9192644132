# driver_tracking/routes/__init__.py
from .tracking import create_tracking_blueprint
from .websocket import register_websocket_handlers, NAMESPACE

__all__ = ['create_tracking_blueprint', 'register_websocket_handlers', 'NAMESPACE']
