"""Live trip feed from the dispatch backend.

``TripFeed`` holds the current trips and remote-driver markers and applies
streamed messages to them. ``TripStream`` reads the backend's Server-Sent
Events endpoint in a daemon thread and feeds every event into a TripFeed.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Dict, Iterable, Iterator, List, Optional

import requests

from driver_tracking.api.config import get_backend_config
from driver_tracking.api.models import Coordinate, Trip

logger = logging.getLogger(__name__)

FeedListener = Callable[["TripFeed"], None]


class TripFeed:
    """Current trips plus the last known coordinate of each remote driver."""

    def __init__(self):
        self._lock = threading.Lock()
        self._trips: Dict[str, Trip] = {}
        self._drivers: Dict[str, Coordinate] = {}
        self._listeners: List[FeedListener] = []

    def add_listener(self, listener: FeedListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: FeedListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def trips(self) -> List[Trip]:
        with self._lock:
            return list(self._trips.values())

    @property
    def drivers(self) -> Dict[str, Coordinate]:
        with self._lock:
            return dict(self._drivers)

    def apply_message(self, message: dict) -> bool:
        """Apply one streamed message. Returns True if state changed."""
        msg_type = message.get("type")
        changed = False

        with self._lock:
            if msg_type in ("trip_created", "trip_updated", "location_update") and message.get("trip"):
                try:
                    trip = Trip.from_dict(message["trip"])
                except (KeyError, TypeError, ValueError, AttributeError):
                    logger.debug("Ignoring malformed trip message: %s", message)
                    return False

            if msg_type == "trip_created" and message.get("trip"):
                self._trips[trip.id] = trip
                changed = True
            elif msg_type in ("trip_updated", "location_update") and message.get("trip"):
                # only trips we already know about are replaced
                if trip.id in self._trips:
                    self._trips[trip.id] = trip
                    changed = True
            elif msg_type in ("trip_deleted", "trip_completed"):
                trip_id = message.get("tripId")
                if trip_id is not None and self._trips.pop(str(trip_id), None) is not None:
                    changed = True
            elif msg_type is None and "driverId" in message:
                # raw coordinate message from the position channel
                try:
                    coordinate = Coordinate(float(message["latitude"]), float(message["longitude"]))
                except (KeyError, TypeError, ValueError):
                    logger.debug("Ignoring malformed driver message: %s", message)
                else:
                    self._drivers[str(message["driverId"])] = coordinate
                    changed = True
            else:
                logger.debug("Ignoring feed message type %s", msg_type)

        if changed:
            for listener in list(self._listeners):
                listener(self)
        return changed

    def load(self, trips: Iterable[dict]) -> None:
        """Replace the trip set, e.g. from an initial REST fetch."""
        with self._lock:
            self._trips = {}
            for data in trips:
                trip = Trip.from_dict(data)
                self._trips[trip.id] = trip
        for listener in list(self._listeners):
            listener(self)

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "trips": [t.to_dict() for t in self._trips.values()],
                "drivers": {k: v.to_dict() for k, v in self._drivers.items()},
            }


def iter_sse_events(lines: Iterable[str]) -> Iterator[dict]:
    """Group raw SSE lines into ``{"event", "data", "id", "retry"}`` dicts.

    Multiple ``data:`` lines are joined with newlines; a blank line ends an
    event; lines starting with ``:`` are comments.
    """
    event: dict = {}
    data: List[str] = []
    for line in lines:
        if line is None:
            continue
        if line == "":
            if data:
                event["data"] = "\n".join(data)
                event.setdefault("event", "message")
                yield event
            event, data = {}, []
            continue
        if line.startswith(":"):
            continue

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data.append(value)
        elif field in ("event", "id"):
            event[field] = value
        elif field == "retry" and value.isdigit():
            event["retry"] = int(value)

    if data:
        event["data"] = "\n".join(data)
        event.setdefault("event", "message")
        yield event


class TripStream:
    """Consumes ``GET /admin/trips/stream`` and applies events to a TripFeed."""

    def __init__(self, url: str, feed: TripFeed, *, connect_timeout: float = 8.0,
                 read_timeout: Optional[float] = 60.0, retry_seconds: float = 3.0):
        if not url:
            raise ValueError("Trip stream URL not set")
        self.url = url
        self.feed = feed
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.retry_seconds = retry_seconds

        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._response: Optional[requests.Response] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name="trip-stream")
        self._thread.start()
        logger.info("Trip stream started: %s", self.url)

    def stop(self, timeout: float = 2.0) -> None:
        self._stop.set()
        response = self._response
        if response is not None:
            response.close()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        logger.info("Trip stream stopped")

    def handle_event(self, event: dict) -> None:
        if event.get("event", "message") != "message":
            return
        try:
            message = json.loads(event["data"])
        except (KeyError, json.JSONDecodeError):
            return
        if isinstance(message, dict):
            self.feed.apply_message(message)

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                with requests.get(
                    self.url,
                    stream=True,
                    headers={"Accept": "text/event-stream"},
                    timeout=(self.connect_timeout, self.read_timeout),
                ) as response:
                    response.raise_for_status()
                    self._response = response
                    lines = response.iter_lines(decode_unicode=True)
                    for event in iter_sse_events(lines):
                        if self._stop.is_set():
                            break
                        if "retry" in event:
                            self.retry_seconds = event["retry"] / 1000.0
                        self.handle_event(event)
            except requests.exceptions.RequestException as e:
                if not self._stop.is_set():
                    logger.warning(f"Trip stream interrupted: {e}")
            except Exception as e:
                # closing the response from stop() can surface as anything
                if not self._stop.is_set():
                    logger.error(f"Error in trip stream: {e}")
            finally:
                self._response = None

            if self._stop.wait(self.retry_seconds):
                break


# Global feed / stream instances
_trip_feed: Optional[TripFeed] = None
_trip_stream: Optional[TripStream] = None


def get_trip_feed() -> TripFeed:
    """Get the global TripFeed instance."""
    global _trip_feed
    if _trip_feed is None:
        _trip_feed = TripFeed()
    return _trip_feed


def start_trip_stream() -> Optional[TripStream]:
    """Start following the backend trip stream if one is configured."""
    global _trip_stream
    url = get_backend_config()["trip_stream_url"]
    if not url:
        logger.info("No trip stream configured")
        return None
    if _trip_stream is None:
        _trip_stream = TripStream(url, get_trip_feed(),
                                  connect_timeout=get_backend_config()["timeout"])
    _trip_stream.start()
    return _trip_stream


__all__ = ["TripFeed", "TripStream", "iter_sse_events", "get_trip_feed", "start_trip_stream"]
