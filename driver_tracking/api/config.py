# api/config.py
"""Configuration management for the driver tracking service."""
import os
from dotenv import load_dotenv

load_dotenv()

VALID_GEOCODERS = ("google", "nominatim")
VALID_ROUTERS = ("google", "osrm")
VALID_TRANSPORTS = ("http", "websocket", "none")


def _optional_float(name):
    """Read a float variable, treating unset, empty and zero as disabled."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    value = float(raw)
    return value if value > 0 else None


def get_google_maps_config():
    """Get Google Maps configuration."""
    return {
        "api_key": os.getenv("GOOGLE_MAPS_API_KEY", ""),
        "timeout": float(os.getenv("ROUTING_TIMEOUT_SECONDS", "8")),
    }


def get_routing_config():
    """Get geocoder / router selection and their endpoints."""
    return {
        "geocoder": os.getenv("GEOCODER", "google").lower(),
        "router": os.getenv("ROUTER", "google").lower(),
        "nominatim_url": os.getenv("NOMINATIM_URL", "https://nominatim.openstreetmap.org"),
        "osrm_base_url": os.getenv("OSRM_BASE_URL", "https://router.project-osrm.org"),
        "osrm_profile": os.getenv("OSRM_PROFILE", "driving"),
        "timeout": float(os.getenv("ROUTING_TIMEOUT_SECONDS", "8")),
        "user_agent": os.getenv("GEOCODER_USER_AGENT", "driver-tracking/0.1"),
    }


def get_backend_config():
    """Get dispatch backend configuration."""
    base_url = os.getenv("BACKEND_URL", "").rstrip("/")
    return {
        "base_url": base_url,
        "timeout": float(os.getenv("BACKEND_TIMEOUT_SECONDS", "8")),
        "trip_stream_url": os.getenv(
            "TRIP_STREAM_URL", f"{base_url}/admin/trips/stream" if base_url else ""
        ),
    }


def get_tracking_config():
    """Get tracking session configuration."""
    return {
        "interval_ms": int(os.getenv("TRACKING_INTERVAL_MS", "5000")),
        "min_distance_m": float(os.getenv("TRACKING_MIN_DISTANCE_M", "0")),
        "transport": os.getenv("POSITION_TRANSPORT", "http").lower(),
        "route_precision": int(os.getenv("ROUTE_CACHE_PRECISION", "5")),
        "route_drift_m": _optional_float("ROUTE_REFRESH_DRIFT_M"),
        "session_timeout_seconds": int(os.getenv("TRACKING_SESSION_TIMEOUT_SECONDS", "900")),
        "max_workers": int(os.getenv("TRACKING_MAX_WORKERS", "4")),
    }


def get_websocket_config():
    """Get WebSocket position channel configuration."""
    return {
        "url": os.getenv("POSITION_WS_URL", ""),
        "ping_interval": int(os.getenv("WEBSOCKET_PING_INTERVAL", "20")),
        "ping_timeout": int(os.getenv("WEBSOCKET_PING_TIMEOUT", "10")),
        "connect_timeout": float(os.getenv("WEBSOCKET_CONNECT_TIMEOUT", "5")),
        "cors_allowed_origins": os.getenv("WEBSOCKET_CORS_ORIGINS", "*").split(","),
    }


def get_port():
    """Get port configuration."""
    return int(os.getenv("PORT", 5000))


def validate_tracking_config():
    """Validate tracking configuration is properly set."""
    routing = get_routing_config()
    tracking = get_tracking_config()

    if routing["geocoder"] not in VALID_GEOCODERS:
        raise ValueError(f"Invalid GEOCODER. Must be one of: {', '.join(VALID_GEOCODERS)}")
    if routing["router"] not in VALID_ROUTERS:
        raise ValueError(f"Invalid ROUTER. Must be one of: {', '.join(VALID_ROUTERS)}")
    if tracking["transport"] not in VALID_TRANSPORTS:
        raise ValueError(
            f"Invalid POSITION_TRANSPORT. Must be one of: {', '.join(VALID_TRANSPORTS)}"
        )
    if tracking["interval_ms"] <= 0:
        raise ValueError("TRACKING_INTERVAL_MS must be positive")
    if tracking["transport"] == "websocket" and not get_websocket_config()["url"]:
        raise ValueError("POSITION_WS_URL must be set when POSITION_TRANSPORT=websocket")

    return True
