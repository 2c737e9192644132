"""Read-only client for the dispatch backend's REST endpoints."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from driver_tracking.api.config import get_backend_config
from driver_tracking.api.errors import BackendError

logger = logging.getLogger(__name__)

RETRYABLE = (requests.exceptions.ConnectionError, requests.exceptions.Timeout)


class BackendClient:
    """Fetches driver, trip and dispatch records as JSON."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None):
        cfg = get_backend_config()
        self.base_url = (base_url or cfg["base_url"]).rstrip("/")
        self.timeout = timeout if timeout is not None else cfg["timeout"]
        self._session = session or requests.Session()

        if not self.base_url:
            raise ValueError("Backend base URL not set. Please set BACKEND_URL in the .env file.")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=4),
        retry=retry_if_exception_type(RETRYABLE),
        reraise=True,
    )
    def _get_with_retry(self, url: str) -> requests.Response:
        return self._session.get(url, timeout=self.timeout)

    def _get(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._get_with_retry(url)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Backend request failed: GET {path}: {e}")
            raise BackendError(f"GET {path} failed: {e}") from e
        except ValueError as e:
            raise BackendError(f"GET {path} returned invalid JSON") from e

    def get_driver(self, driver_id: str) -> Dict[str, Any]:
        return self._get(f"/driver/{driver_id}")

    def get_driver_trips(self, driver_id: str) -> List[Dict[str, Any]]:
        return self._get(f"/admin/drivers/{driver_id}/trips")

    def get_dispatch_trips(self, dispatch_id: str) -> List[Dict[str, Any]]:
        return self._get(f"/dispatches/{dispatch_id}/trips")

    def get_dispatch(self, dispatch_id: str) -> Dict[str, Any]:
        return self._get(f"/admin/dispatches/{dispatch_id}")

    def get_dispatch_address(self, dispatch_id: str) -> str:
        """Return the dispatch's destination address (its ``location`` field)."""
        dispatch = self.get_dispatch(dispatch_id)
        address = dispatch.get("location") if isinstance(dispatch, dict) else None
        if not address:
            raise BackendError(f"Dispatch {dispatch_id} has no location")
        return address

    def close(self) -> None:
        self._session.close()


__all__ = ["BackendClient"]
