"""Position sinks: where a tracking session sends each fix.

* ``HttpPositionSink`` fire-and-forget PUT/POST of ``{latitude, longitude}``.
* ``WebSocketPositionSink`` persistent duplex channel carrying
  ``{driverId, latitude, longitude}``; uses *websocket-client*'s built-in
  keep-alive (``ping_interval``) in a daemon thread.

Sinks raise ``TransmitError``; ``transmit_position`` is the boundary that logs
and swallows it so the tracking loop never stops on a failed send.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Dict, Optional

import requests
import websocket  # websocket-client >= 1.7.0
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from driver_tracking.api.config import get_backend_config, get_websocket_config
from driver_tracking.api.errors import TransmitError
from driver_tracking.api.models import TrackedPosition

logger = logging.getLogger(__name__)


class PositionSink:
    """Interface for a remote position sink."""

    def send(self, position: TrackedPosition) -> None:
        """Deliver one position. Raises TransmitError on failure."""
        raise NotImplementedError

    def close(self) -> None:
        pass


def transmit_position(position: TrackedPosition, sink: PositionSink) -> bool:
    """Send one position; log and swallow any failure.

    Returns:
        True if the sink accepted the position
    """
    try:
        sink.send(position)
        logger.debug("Transmitted %.5f,%.5f", position.latitude, position.longitude)
        return True
    except TransmitError as e:
        logger.warning(f"Position transmit failed, retrying next tick: {e}")
        return False


class HttpPositionSink(PositionSink):
    """Sends positions to a backend HTTP endpoint."""

    def __init__(self, url: str, method: str = "POST", timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        if not url:
            raise ValueError("Position endpoint URL not set")
        self.url = url
        self.method = method.upper()
        self.timeout = timeout if timeout is not None else get_backend_config()["timeout"]
        self._session = session or requests.Session()

    @classmethod
    def for_trip(cls, base_url: str, trip_id: str, **kwargs) -> HttpPositionSink:
        """``PUT /admin/trips/{id}/location``"""
        return cls(f"{base_url.rstrip('/')}/admin/trips/{trip_id}/location", "PUT", **kwargs)

    @classmethod
    def for_driver(cls, base_url: str, driver_id: str, **kwargs) -> HttpPositionSink:
        """``POST /driver/{id}/location``"""
        return cls(f"{base_url.rstrip('/')}/driver/{driver_id}/location", "POST", **kwargs)

    def send(self, position: TrackedPosition) -> None:
        payload = {"latitude": position.latitude, "longitude": position.longitude}
        try:
            response = self._session.request(
                self.method, self.url, json=payload, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise TransmitError(f"{self.method} {self.url} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise TransmitError(f"{self.method} {self.url} returned HTTP {response.status_code}")

    def close(self) -> None:
        self._session.close()


class WebSocketPositionSink(PositionSink):
    """Streams positions over a persistent WebSocket."""

    def __init__(self, url: str, driver_id: str,
                 on_message: Optional[Callable[[Dict[str, Any]], None]] = None):
        if not url:
            raise ValueError("WebSocket URL not set")
        self.url = url
        self.driver_id = driver_id
        self.config = get_websocket_config()
        self.on_message = on_message

        self._ws_app: Optional[websocket.WebSocketApp] = None
        self._thread: Optional[threading.Thread] = None
        self._opened = threading.Event()
        self._lock = threading.Lock()
        self.is_connected: bool = False

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        retry=retry_if_exception_type(TransmitError),
        reraise=True,
    )
    def open(self) -> None:
        """Connect, retrying the handshake a few times before giving up."""
        self._connect_once()

    def _connect_once(self) -> None:
        with self._lock:
            if self.is_connected:
                return
            self._teardown()
            self._opened.clear()

            self._ws_app = websocket.WebSocketApp(
                self.url,
                on_open=self._on_open,
                on_message=self._on_message,
                on_error=self._on_error,
                on_close=self._on_close,
            )
            self._thread = threading.Thread(
                target=self._ws_app.run_forever,
                kwargs={
                    "ping_interval": self.config["ping_interval"],
                    "ping_timeout": self.config["ping_timeout"],
                },
                daemon=True,
            )
            self._thread.start()

        if not self._opened.wait(self.config["connect_timeout"]):
            raise TransmitError(f"WebSocket connection to {self.url} timed out")

    def _teardown(self) -> None:
        if self._ws_app:
            self._ws_app.close()
            self._ws_app = None
        self.is_connected = False
        if self._thread and self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        self._thread = None

    def close(self) -> None:
        """Close the socket and join the worker thread."""
        with self._lock:
            self._teardown()

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, position: TrackedPosition) -> None:
        if not self.is_connected:
            # one bounded reconnect attempt per tick
            self._connect_once()

        payload = json.dumps({
            "driverId": self.driver_id,
            "latitude": position.latitude,
            "longitude": position.longitude,
        })
        try:
            self._ws_app.send(payload)
        except (websocket.WebSocketException, OSError, AttributeError) as e:
            self.is_connected = False
            raise TransmitError(f"WebSocket send failed: {e}") from e

    # ------------------------------------------------------------------
    # websocket-client callbacks
    # ------------------------------------------------------------------

    def _on_open(self, ws):
        logger.info("Position channel connected for driver %s", self.driver_id)
        self.is_connected = True
        self._opened.set()

    def _on_message(self, ws, message):
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON message: %s", message[:120])
            return
        if self.on_message and isinstance(data, dict):
            self.on_message(data)

    def _on_error(self, ws, error):
        logger.error("Position channel error: %s", error)

    def _on_close(self, ws, code, reason):
        logger.info("Position channel closed: %s - %s", code, reason)
        self.is_connected = False


class NullPositionSink(PositionSink):
    """Discards positions (``POSITION_TRANSPORT=none``)."""

    def send(self, position: TrackedPosition) -> None:
        pass


__all__ = [
    "PositionSink",
    "HttpPositionSink",
    "WebSocketPositionSink",
    "NullPositionSink",
    "transmit_position",
]
