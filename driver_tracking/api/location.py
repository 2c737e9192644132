"""
Location providers: pluggable sources for the driver's current position.

Implementations:
- PushLocationProvider: fixes pushed by the driver's device over Socket.IO.
- ReplayLocationProvider: replays a fixed track (simulations, tests).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Iterable, List, Optional, Sequence

from driver_tracking.api.geometry import haversine_distance_m
from driver_tracking.api.models import Coordinate, TrackedPosition

logger = logging.getLogger(__name__)

PositionCallback = Callable[[TrackedPosition], None]


class LocationProvider:
    """Interface for a device location source."""

    def request_permission(self) -> bool:
        """Return True if location access is granted."""
        raise NotImplementedError

    def get_current_position(self) -> Optional[TrackedPosition]:
        """Return a fresh fix, or None if nothing new is available.

        May raise LocationUnavailable, or PermissionDenied if access was
        revoked mid-session.
        """
        raise NotImplementedError

    def watch(
        self,
        callback: PositionCallback,
        min_interval_s: float = 0.0,
        min_distance_m: float = 0.0,
    ) -> Callable[[], None]:
        """Subscribe to continuous updates; return an unsubscribe callable."""
        raise NotImplementedError(f"{type(self).__name__} does not support watch mode")

    def release(self) -> None:
        """Release the location subsystem. No-op by default."""
        pass


class PushLocationProvider(LocationProvider):
    """Holds fixes pushed by the device; permission is what the device reported."""

    def __init__(self, permission_granted: bool = True):
        self.permission_granted = permission_granted
        self._lock = threading.Lock()
        self._latest: Optional[TrackedPosition] = None
        self._fresh = False
        self._watchers: List[_Watcher] = []

    def request_permission(self) -> bool:
        return self.permission_granted

    def push(self, position: TrackedPosition) -> None:
        """Record a fix from the device and notify watchers."""
        with self._lock:
            self._latest = position
            self._fresh = True
            watchers = list(self._watchers)

        for watcher in watchers:
            watcher.offer(position)

    def get_current_position(self) -> Optional[TrackedPosition]:
        with self._lock:
            if not self._fresh:
                return None
            self._fresh = False
            return self._latest

    def watch(self, callback, min_interval_s=0.0, min_distance_m=0.0):
        watcher = _Watcher(callback, min_interval_s, min_distance_m)
        with self._lock:
            self._watchers.append(watcher)

        def unsubscribe():
            with self._lock:
                if watcher in self._watchers:
                    self._watchers.remove(watcher)

        return unsubscribe

    def release(self) -> None:
        with self._lock:
            self._watchers.clear()
            self._fresh = False


class _Watcher:
    """Forwards fixes that pass both the time and distance filters."""

    def __init__(self, callback: PositionCallback, min_interval_s: float, min_distance_m: float):
        self.callback = callback
        self.min_interval_s = min_interval_s
        self.min_distance_m = min_distance_m
        self._last: Optional[TrackedPosition] = None
        self._last_at = 0.0
        # held through the callback so fixes are delivered in order
        self._lock = threading.Lock()

    def offer(self, position: TrackedPosition) -> None:
        with self._lock:
            now = time.monotonic()
            if self._last is not None:
                if now - self._last_at < self.min_interval_s:
                    return
                moved = haversine_distance_m(self._last.coordinate, position.coordinate)
                if moved < self.min_distance_m:
                    logger.debug("Watch filter dropped fix (moved %.1fm)", moved)
                    return
            self._last = position
            self._last_at = now
            self.callback(position)


class ReplayLocationProvider(LocationProvider):
    """Replays a fixed sequence of coordinates, one per acquisition.

    Returns None once the track is exhausted, unless ``loop`` is set.
    """

    def __init__(
        self,
        coordinates: Iterable[Coordinate],
        *,
        permission_granted: bool = True,
        loop: bool = False,
    ):
        self.coordinates: Sequence[Coordinate] = list(coordinates)
        self.permission_granted = permission_granted
        self.loop = loop
        self.permission_requests = 0
        self.acquisitions = 0
        self._index = 0
        self._lock = threading.Lock()

    def request_permission(self) -> bool:
        self.permission_requests += 1
        return self.permission_granted

    def get_current_position(self) -> Optional[TrackedPosition]:
        with self._lock:
            self.acquisitions += 1
            if self._index >= len(self.coordinates):
                if not self.loop or not self.coordinates:
                    return None
                self._index = 0
            coordinate = self.coordinates[self._index]
            self._index += 1
        return TrackedPosition(coordinate=coordinate)


__all__ = [
    "LocationProvider",
    "PushLocationProvider",
    "ReplayLocationProvider",
    "PositionCallback",
]
