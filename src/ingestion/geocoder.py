"""
WasteWatch - Reverse Geocoder
Turns report coordinates into a street address via Nominatim.
"""

import logging
import time
from typing import Optional

import httpx

from src.core.config import settings

logger = logging.getLogger(__name__)


class NominatimGeocoder:
    """
    Reverse geocoding client for the OpenStreetMap Nominatim API.
    Rate limited to 1 request per second.

    Lookup failures return None; an address is a convenience, never a
    requirement for accepting a report.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        min_interval: float = 1.0
    ):
        """
        Initialize the geocoder.

        Args:
            base_url: Nominatim base URL
            timeout: Request timeout in seconds
            user_agent: User-Agent header Nominatim requires
            transport: Custom httpx transport (tests use httpx.MockTransport)
            min_interval: Minimum seconds between requests
        """
        self.base_url = (base_url or settings.nominatim_url).rstrip("/")
        self.timeout = timeout or settings.geocoder_timeout_seconds
        self.user_agent = user_agent or settings.geocoder_user_agent
        self.transport = transport
        self.min_interval = min_interval
        self._client: Optional[httpx.Client] = None
        self._last_request_time = 0.0

    def __enter__(self):
        self._get_client()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=self.transport,
            )
        return self._client

    def _rate_limit(self):
        """Ensure we don't exceed rate limits."""
        elapsed = time.time() - self._last_request_time
        if elapsed < self.min_interval:
            time.sleep(self.min_interval - elapsed)
        self._last_request_time = time.time()

    def reverse(self, latitude: float, longitude: float) -> Optional[str]:
        """
        Reverse geocode coordinates to an address.

        Args:
            latitude: Location latitude
            longitude: Location longitude

        Returns:
            Address string or None
        """
        self._rate_limit()

        params = {
            "lat": latitude,
            "lon": longitude,
            "format": "json",
        }

        try:
            response = self._get_client().get(f"{self.base_url}/reverse", params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Reverse geocoding failed for ({latitude}, {longitude}): {e}")
            return None

        if not isinstance(data, dict):
            return None
        return data.get("display_name")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
