# driver_tracking/routes/tracking.py
"""Tracking HTTP routes and blueprint configuration."""

import logging
from flask import Blueprint, jsonify, request

from driver_tracking.api.config import get_google_maps_config, get_routing_config, get_tracking_config
from driver_tracking.api.errors import BackendError, GeocodeError, GeocodeNotFound
from driver_tracking.api.feed import get_trip_feed
from driver_tracking.api.services.tracking_service import TrackingService
from driver_tracking.api.session_manager import get_session_manager

logger = logging.getLogger(__name__)


def create_tracking_blueprint():
    """Create and configure the tracking blueprint.

    Returns:
        Configured Flask Blueprint
    """
    tracking_bp = Blueprint("tracking", __name__, url_prefix="/tracking")

    @tracking_bp.route("/api/config")
    def api_config():
        """Return map/routing configuration for the driver app."""
        maps = get_google_maps_config()
        routing = get_routing_config()
        tracking = get_tracking_config()
        return jsonify({
            "google_maps_api_key": maps["api_key"],
            "geocoder": routing["geocoder"],
            "router": routing["router"],
            "interval_ms": tracking["interval_ms"],
            "transport": tracking["transport"],
        })

    @tracking_bp.route("/api/sessions")
    def api_sessions():
        """Session manager statistics."""
        return jsonify(get_session_manager().get_stats())

    @tracking_bp.route("/api/sessions/<driver_id>")
    def api_session_state(driver_id):
        """Snapshot of a driver's tracking session."""
        driver_session = get_session_manager().get_session_by_driver(driver_id)
        if driver_session is None:
            return jsonify({"error": f"No session for driver {driver_id}"}), 404

        snapshot = driver_session.tracking.snapshot()
        snapshot["session_id"] = driver_session.session_id
        snapshot["eta"] = TrackingService.format_eta(snapshot)
        return jsonify(snapshot)

    @tracking_bp.route("/api/sessions/<driver_id>/destination", methods=["POST"])
    def api_set_destination(driver_id):
        """Set a driver's destination from ``{address}`` or ``{dispatch_id}``."""
        driver_session = get_session_manager().get_session_by_driver(driver_id)
        if driver_session is None:
            return jsonify({"error": f"No session for driver {driver_id}"}), 404

        data = request.get_json(silent=True) or {}
        try:
            coordinate = TrackingService.set_destination(
                driver_session.tracking,
                address=data.get("address"),
                dispatch_id=data.get("dispatch_id"),
            )
        except GeocodeNotFound as e:
            return jsonify({"error": str(e), "reason": "not_found"}), 404
        except GeocodeError as e:
            return jsonify({"error": str(e), "reason": "provider_error"}), 502
        except BackendError as e:
            return jsonify({"error": str(e)}), 502
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        return jsonify({
            "destination": coordinate.to_dict(),
            "route": driver_session.tracking.route.to_dict() if driver_session.tracking.route else None,
        })

    @tracking_bp.route("/api/geocode")
    def api_geocode():
        """Stateless geocoding helper."""
        address = request.args.get("address", "")
        if not address.strip():
            return jsonify({"error": "address is required"}), 400
        try:
            coordinate = TrackingService.build_geocoder().geocode(address)
        except GeocodeNotFound as e:
            return jsonify({"error": str(e), "reason": "not_found"}), 404
        except GeocodeError as e:
            logger.warning(f"Geocoding failed for '{address}': {e}")
            return jsonify({"error": str(e), "reason": "provider_error"}), 502
        return jsonify(coordinate.to_dict())

    @tracking_bp.route("/api/trips")
    def api_trips():
        """Trips and remote-driver markers from the live feed."""
        return jsonify(get_trip_feed().to_dict())

    @tracking_bp.route("/health")
    def health():
        """Health check endpoint."""
        return jsonify({"status": "ok", "service": "tracking"})

    return tracking_bp


__all__ = ['create_tracking_blueprint']
