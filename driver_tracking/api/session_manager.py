# driver_tracking/api/session_manager.py
"""Lifecycle management for per-connection driver tracking sessions."""

import time
import threading
import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from driver_tracking.api.config import get_tracking_config
from driver_tracking.api.errors import PermissionDenied, TransmitError
from driver_tracking.api.location import PushLocationProvider
from driver_tracking.api.models import TrackedPosition
from driver_tracking.api.services.tracking_service import TrackingService
from driver_tracking.api.sinks import PositionSink, WebSocketPositionSink
from driver_tracking.api.tracking import TrackingHandle, TrackingMode, TrackingSession

logger = logging.getLogger(__name__)


class DriverSession:
    """One connected driver device and its tracking session."""

    def __init__(self, session_id: str, driver_id: str, tracking: TrackingSession,
                 provider: PushLocationProvider, trip_id: Optional[str] = None):
        self.session_id = session_id
        self.driver_id = driver_id
        self.trip_id = trip_id
        self.tracking = tracking
        self.provider = provider
        self.handle: Optional[TrackingHandle] = None

        # Timestamps
        self.created_at = datetime.now()
        self.last_activity = datetime.now()

        # Stats
        self.positions_received = 0

    @property
    def is_active(self) -> bool:
        return self.tracking.is_active

    def touch(self):
        self.last_activity = datetime.now()


class SessionManager:
    """Manages concurrent driver tracking sessions."""

    def __init__(self, start_cleanup: bool = True,
                 sink_factory: Callable[..., PositionSink] = TrackingService.build_sink,
                 geocoder_factory: Callable = TrackingService.build_geocoder,
                 router_factory: Callable = TrackingService.build_router):
        self.config = get_tracking_config()
        self.sessions: Dict[str, DriverSession] = {}
        self.sink_factory = sink_factory
        self.geocoder_factory = geocoder_factory
        self.router_factory = router_factory

        # Thread safety
        self.lock = threading.Lock()

        self.cleanup_thread = None
        if start_cleanup:
            self.cleanup_thread = threading.Thread(
                target=self._cleanup_loop,
                daemon=True
            )
            self.cleanup_thread.start()

        logger.info("SessionManager initialized")

    def create_session(self, driver_id: str, permission_granted: bool = True,
                       trip_id: Optional[str] = None,
                       transport: Optional[str] = None,
                       on_message: Optional[Callable[[Dict[str, Any]], None]] = None) -> DriverSession:
        """Create a tracking session for a driver.

        A driver has at most one session; an existing one is ended first.

        Args:
            driver_id: Driver identifier
            permission_granted: Location permission as reported by the device
            trip_id: Optional active trip (selects the trip location endpoint)
            transport: Position transport override
            on_message: Hook for messages received on the position channel

        Returns:
            DriverSession object
        """
        provider = PushLocationProvider(permission_granted=permission_granted)
        tracking = TrackingSession(
            provider,
            sink=self.sink_factory(driver_id, trip_id=trip_id, transport=transport,
                                   on_message=on_message),
            geocoder=self.geocoder_factory(),
            router=self.router_factory(),
            route_precision=self.config["route_precision"],
            route_drift_m=self.config["route_drift_m"],
            min_distance_m=self.config["min_distance_m"],
            max_workers=self.config["max_workers"],
        )

        session_id = f"trk_{secrets.token_urlsafe(16)}"
        session = DriverSession(session_id, driver_id, tracking, provider, trip_id=trip_id)
        # swap under one lock hold so concurrent creates leave one session
        with self.lock:
            replaced = [s for s in self.sessions.values() if s.driver_id == driver_id]
            for old in replaced:
                del self.sessions[old.session_id]
            self.sessions[session_id] = session

        for old in replaced:
            logger.info(f"Replacing session {old.session_id} for driver {driver_id}")
            self._shutdown(old, "replaced")

        logger.info(f"Created session {session_id} for driver {driver_id}")
        return session

    def start_tracking(self, session_id: str,
                       on_update: Callable[[TrackedPosition], None],
                       interval_ms: Optional[int] = None,
                       mode: TrackingMode = TrackingMode.POLL) -> TrackingHandle:
        """Open the session's position channel and start tracking.

        Raises:
            KeyError: If the session does not exist
            PermissionDenied: If the device reported no location permission
        """
        session = self.get_session(session_id)
        if session is None:
            raise KeyError(session_id)

        # nothing is opened for a device that refused location access
        if not session.provider.request_permission():
            session.tracking.last_error = PermissionDenied("Location permission denied")
            raise session.tracking.last_error

        sink = session.tracking.sink
        if isinstance(sink, WebSocketPositionSink):
            try:
                sink.open()
            except TransmitError as e:
                # send() reconnects on the next tick
                logger.warning(f"Position channel unavailable for {session.driver_id}: {e}")

        def _on_update(position: TrackedPosition):
            session.positions_received += 1
            session.touch()
            on_update(position)

        session.handle = session.tracking.start_tracking(
            _on_update, interval_ms or self.config["interval_ms"], mode
        )
        return session.handle

    def get_session(self, session_id: str) -> Optional[DriverSession]:
        """Get an existing session by ID, marking it active."""
        with self.lock:
            session = self.sessions.get(session_id)
            if session:
                session.touch()
            return session

    def get_session_by_driver(self, driver_id: str) -> Optional[DriverSession]:
        """Most recent session for a driver, or None."""
        with self.lock:
            matching = [s for s in self.sessions.values() if s.driver_id == driver_id]
            if matching:
                return max(matching, key=lambda s: s.created_at)
            return None

    def end_session(self, session_id: str, reason: str = "manual"):
        """Stop tracking, close the sink and forget the session.

        Args:
            session_id: Session ID to end
            reason: Reason for ending
        """
        with self.lock:
            session = self.sessions.pop(session_id, None)
        if session:
            self._shutdown(session, reason)

    def _shutdown(self, session: DriverSession, reason: str):
        session.tracking.stop()
        if session.tracking.sink is not None:
            session.tracking.sink.close()

        duration = (datetime.now() - session.created_at).total_seconds()
        logger.info(
            f"Ended session {session.session_id} - "
            f"Reason: {reason}, Duration: {duration:.1f}s, "
            f"Positions: {session.positions_received}"
        )

    def end_all(self, reason: str = "shutdown"):
        with self.lock:
            session_ids = list(self.sessions)
        for session_id in session_ids:
            self.end_session(session_id, reason)

    def get_stats(self) -> Dict[str, Any]:
        """Get overall session manager statistics."""
        with self.lock:
            sessions = list(self.sessions.values())
        return {
            "total_sessions": len(sessions),
            "active_sessions": sum(1 for s in sessions if s.is_active),
            "total_positions": sum(s.positions_received for s in sessions),
            "drivers": sorted({s.driver_id for s in sessions}),
            "config": {
                "interval_ms": self.config["interval_ms"],
                "transport": self.config["transport"],
                "timeout_seconds": self.config["session_timeout_seconds"],
            },
        }

    def _cleanup_loop(self):
        """Background thread to end idle sessions."""
        while True:
            try:
                time.sleep(30)  # Check every 30 seconds
                self.cleanup_expired_sessions()
            except Exception as e:
                logger.error(f"Error in cleanup loop: {e}")

    def cleanup_expired_sessions(self) -> int:
        """End sessions idle for longer than the configured timeout."""
        timeout_seconds = self.config["session_timeout_seconds"]
        cutoff_time = datetime.now() - timedelta(seconds=timeout_seconds)

        with self.lock:
            expired = [sid for sid, s in self.sessions.items() if s.last_activity < cutoff_time]

        for sid in expired:
            self.end_session(sid, "timeout")

        if expired:
            logger.info(f"Cleaned up {len(expired)} expired sessions")
        return len(expired)


# Global session manager instance
_session_manager = None


def get_session_manager() -> SessionManager:
    """Get the global SessionManager instance."""
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager()
    return _session_manager
