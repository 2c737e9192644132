"""Error taxonomy for tracking, transmission, geocoding and routing."""


class TrackingError(Exception):
    """Base class for every error raised by the tracking package."""


class PermissionDenied(TrackingError):
    """The device refused location access. Fatal to a tracking session."""


class LocationUnavailable(TrackingError):
    """The provider could not produce a fix this time."""


class TransmitError(TrackingError):
    """A position could not be delivered to its sink."""


class GeocodeError(TrackingError):
    """An address could not be resolved to a coordinate."""


class GeocodeNotFound(GeocodeError):
    """The provider returned zero results."""


class GeocodeProviderError(GeocodeError):
    """Transport or provider failure while geocoding."""


class RouteError(TrackingError):
    """A route between two coordinates is unavailable."""


class RouteTimeout(RouteError):
    pass


class NoRoute(RouteError):
    pass


class RouteProviderError(RouteError):
    pass


class BackendError(TrackingError):
    """A read from the dispatch backend failed."""


__all__ = [
    "TrackingError",
    "PermissionDenied",
    "LocationUnavailable",
    "TransmitError",
    "GeocodeError",
    "GeocodeNotFound",
    "GeocodeProviderError",
    "RouteError",
    "RouteTimeout",
    "NoRoute",
    "RouteProviderError",
    "BackendError",
]
