"""Shared data structures for position tracking and routing.

Every module exchanges positions as these frozen dataclasses rather than
ad-hoc ``{"lat": .., "lng": ..}`` dicts; the ``to_dict`` helpers produce the
JSON shapes the driver app and the backend expect.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class Coordinate:
    """A WGS84 point."""

    latitude: float
    longitude: float

    def __post_init__(self):
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"Latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"Longitude out of range: {self.longitude}")

    def rounded(self, precision: int = 5) -> tuple[float, float]:
        return round(self.latitude, precision), round(self.longitude, precision)

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class TrackedPosition:
    """A device fix: coordinate plus capture time and optional metadata."""

    coordinate: Coordinate
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    accuracy: Optional[float] = None  # metres
    heading: Optional[float] = None  # degrees, as reported by the device

    @property
    def latitude(self) -> float:
        return self.coordinate.latitude

    @property
    def longitude(self) -> float:
        return self.coordinate.longitude

    @classmethod
    def from_payload(cls, payload: dict) -> TrackedPosition:
        """Build a position from the JSON a device sends.

        ``timestamp`` may be epoch milliseconds (what JS ``Date.now()`` gives)
        or epoch seconds; it defaults to now.

        Raises:
            ValueError: If coordinates are missing or out of range, or the
                timestamp, accuracy or heading cannot be read
        """
        try:
            coordinate = Coordinate(float(payload["latitude"]), float(payload["longitude"]))
        except (KeyError, TypeError) as e:
            raise ValueError(f"Invalid position payload: {e}") from e

        raw_ts = payload.get("timestamp")
        accuracy = payload.get("accuracy")
        heading = payload.get("heading")
        try:
            if raw_ts is None:
                timestamp = datetime.now(timezone.utc)
            else:
                seconds = float(raw_ts)
                if seconds > 1e11:
                    seconds /= 1000.0
                timestamp = datetime.fromtimestamp(seconds, tz=timezone.utc)
            accuracy = float(accuracy) if accuracy is not None else None
            heading = float(heading) if heading is not None else None
        except (OverflowError, OSError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid position payload: {e}") from e

        return cls(coordinate=coordinate, timestamp=timestamp, accuracy=accuracy, heading=heading)

    def to_dict(self) -> dict:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "timestamp": self.timestamp.isoformat(),
            "accuracy": self.accuracy,
            "heading": self.heading,
        }


@dataclass(frozen=True)
class RouteResult:
    """A decoded route. Replaced wholesale on every recompute."""

    polyline: tuple[Coordinate, ...]
    distance_meters: float
    duration_seconds: float
    distance_text: Optional[str] = None
    duration_text: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "polyline": [[c.latitude, c.longitude] for c in self.polyline],
            "distance_meters": self.distance_meters,
            "duration_seconds": self.duration_seconds,
            "distance_text": self.distance_text,
            "duration_text": self.duration_text,
        }


@dataclass
class Trip:
    """One driver's execution of a dispatch, as streamed by the backend."""

    id: str
    status: Optional[str] = None
    driver_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> Trip:
        lat = data.get("latitude", data.get("lat"))
        lng = data.get("longitude", data.get("lng", data.get("lon")))
        driver_id = data.get("driverId", data.get("driver_id"))
        return cls(
            id=str(data["id"]),
            status=data.get("status"),
            driver_id=str(driver_id) if driver_id is not None else None,
            latitude=float(lat) if lat is not None else None,
            longitude=float(lng) if lng is not None else None,
            raw=dict(data),
        )

    def to_dict(self) -> dict:
        return {
            **self.raw,
            "id": self.id,
            "status": self.status,
            "latitude": self.latitude,
            "longitude": self.longitude,
        }
