"""
Driver tracking – main application entry point

* Flask app + Socket.IO in threading mode. Each driver's tracking session
  runs its own poll thread and worker pool, so no eventlet/gevent monkey
  patching is wanted.
* Driver devices connect to the `/tracking/ws` namespace and push fixes;
  position, route and trip-feed updates are emitted back on the same socket.
"""

import os
import logging

from flask import Flask
from flask_cors import CORS
from flask_socketio import SocketIO
from dotenv import load_dotenv

# --------------------------------------------------------------------------- #
# Environment & logging
# --------------------------------------------------------------------------- #
load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

from driver_tracking.api.config import (  # noqa: E402
    get_port,
    get_websocket_config,
    validate_tracking_config,
)
from driver_tracking.api.feed import start_trip_stream  # noqa: E402
from driver_tracking.api.session_manager import get_session_manager  # noqa: E402
from driver_tracking.routes import (  # noqa: E402
    NAMESPACE,
    create_tracking_blueprint,
    register_websocket_handlers,
)

validate_tracking_config()

# --------------------------------------------------------------------------- #
# Flask initialisation
# --------------------------------------------------------------------------- #
app = Flask(__name__)

flask_secret_key = os.getenv("FLASK_SECRET_KEY") or os.urandom(32).hex()
if "FLASK_SECRET_KEY" not in os.environ:
    logger.warning("No FLASK_SECRET_KEY found. Generated a temporary key.")
app.secret_key = flask_secret_key

app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE="Lax",
)

ws_config = get_websocket_config()
CORS(app, origins=ws_config["cors_allowed_origins"], supports_credentials=True)

# --------------------------------------------------------------------------- #
# Socket.IO – threading mode
# --------------------------------------------------------------------------- #
socketio = SocketIO(
    app,
    cors_allowed_origins=ws_config["cors_allowed_origins"],
    async_mode="threading",
    ping_interval=ws_config["ping_interval"],
    ping_timeout=ws_config["ping_timeout"],
    logger=False,
    engineio_logger=False,
)
logger.info("Socket.IO initialised (async_mode=threading)")

# --------------------------------------------------------------------------- #
# Blueprints & WebSocket handlers
# --------------------------------------------------------------------------- #
app.register_blueprint(create_tracking_blueprint())
register_websocket_handlers(socketio)


@app.route("/debug")
def debug():
    """Simple JSON health endpoint."""
    return {
        "status": "ok",
        "socketio_initialized": True,
        "sessions": get_session_manager().get_stats()["active_sessions"],
        "endpoints": {
            "health": "/tracking/health",
            "websocket_namespace": NAMESPACE,
        },
    }


# --------------------------------------------------------------------------- #
# Local development runner ( `python main.py` )
# --------------------------------------------------------------------------- #
if __name__ == "__main__":
    start_trip_stream()
    port = get_port()
    logger.info("Starting tracking service on http://localhost:%d", port)
    try:
        socketio.run(app, host="0.0.0.0", port=port, debug=False, allow_unsafe_werkzeug=True)
    finally:
        get_session_manager().end_all()

__all__ = ["app", "socketio"]
