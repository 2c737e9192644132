# driver_tracking/api/geocoding.py
from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

import googlemaps
import requests

from driver_tracking.api.config import get_google_maps_config, get_routing_config
from driver_tracking.api.errors import GeocodeNotFound, GeocodeProviderError
from driver_tracking.api.models import Coordinate

logger = logging.getLogger(__name__)

_gmaps: googlemaps.Client | None = None


def get_client() -> googlemaps.Client:
    """Return a shared googlemaps.Client instance.

    Raises:
        ValueError: If no API key is configured
    """
    global _gmaps
    if _gmaps is None:
        cfg = get_google_maps_config()
        api_key = cfg.get("api_key", "")
        if not api_key:
            raise ValueError("GOOGLE_MAPS_API_KEY not set")
        logger.info(f"Initializing Google Maps client with key: {api_key[:10]}...")
        # retry_timeout bounds googlemaps' own retries on 5xx / rate limits
        _gmaps = googlemaps.Client(
            key=api_key, timeout=cfg["timeout"], retry_timeout=cfg["timeout"]
        )
    return _gmaps


class Geocoder:
    """Interface: resolve a free-text address to a coordinate."""

    def geocode(self, address: str) -> Coordinate:
        """Raises GeocodeNotFound or GeocodeProviderError."""
        raise NotImplementedError


class GoogleGeocoder(Geocoder):
    """Geocoding via the Google Maps Geocoding API."""

    def __init__(self, client: Optional[googlemaps.Client] = None):
        self._client = client

    @property
    def client(self) -> googlemaps.Client:
        if self._client is None:
            try:
                self._client = get_client()
            except ValueError as e:
                raise GeocodeProviderError(str(e)) from e
        return self._client

    def geocode(self, address: str) -> Coordinate:
        logger.debug(f"Geocoding address: {address}")
        try:
            results = self.client.geocode(address, language="en")
        except googlemaps.exceptions.Timeout as e:
            raise GeocodeProviderError(f"Geocoding timed out for '{address}'") from e
        except (googlemaps.exceptions.ApiError, googlemaps.exceptions.TransportError) as e:
            raise GeocodeProviderError(f"Geocoding failed for '{address}': {e}") from e

        if not results:
            raise GeocodeNotFound(f"No results found for address: {address}")

        try:
            loc = results[0]["geometry"]["location"]
            coordinate = Coordinate(float(loc["lat"]), float(loc["lng"]))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise GeocodeProviderError(f"Malformed geocoding response for '{address}'") from e

        logger.debug(f"Geocoded {address} to {coordinate.latitude}, {coordinate.longitude}")
        return coordinate


class NominatimGeocoder(Geocoder):
    """Geocoding via OpenStreetMap Nominatim (free, no key)."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 user_agent: Optional[str] = None):
        cfg = get_routing_config()
        self.base_url = (base_url or cfg["nominatim_url"]).rstrip("/")
        self.timeout = timeout if timeout is not None else cfg["timeout"]
        # Nominatim's usage policy requires an identifying User-Agent
        self.user_agent = user_agent or cfg["user_agent"]

    def geocode(self, address: str) -> Coordinate:
        params = {"format": "json", "limit": 1, "q": address}
        try:
            response = requests.get(
                f"{self.base_url}/search",
                params=params,
                headers={"User-Agent": self.user_agent},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise GeocodeProviderError(f"Nominatim request failed for '{address}': {e}") from e
        except ValueError as e:
            raise GeocodeProviderError(f"Nominatim returned invalid JSON for '{address}'") from e

        if not data:
            raise GeocodeNotFound(f"No results found for address: {address}")

        try:
            return Coordinate(float(data[0]["lat"]), float(data[0]["lon"]))
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise GeocodeProviderError(f"Malformed Nominatim response for '{address}'") from e


class GeocodeCache:
    """Per-session cache: one provider call per distinct address string.

    Failures are not cached so the next trigger retries the lookup.
    """

    def __init__(self, geocoder: Geocoder):
        self.geocoder = geocoder
        self._cache: Dict[str, Coordinate] = {}
        self._lock = threading.Lock()

    def lookup(self, address: str) -> Coordinate:
        if not address or not address.strip():
            raise GeocodeNotFound("Empty address")

        # held across the provider call so concurrent lookups of one address
        # still issue a single request
        with self._lock:
            cached = self._cache.get(address)
            if cached is not None:
                return cached
            coordinate = self.geocoder.geocode(address)
            self._cache[address] = coordinate
            return coordinate

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)


__all__ = [
    "Geocoder",
    "GoogleGeocoder",
    "NominatimGeocoder",
    "GeocodeCache",
    "get_client",
]
