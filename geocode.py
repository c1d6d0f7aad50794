"""
Reverse geocoding proxy (OpenStreetMap Nominatim).
"""
import logging
from typing import Optional

import requests

from config import Config
from errors import UpstreamError

logger = logging.getLogger(__name__)


class ReverseGeocoder:
    def __init__(
        self,
        url: str = Config.GEOCODER_URL,
        user_agent: str = Config.GEOCODER_USER_AGENT,
        timeout: float = Config.REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.user_agent = user_agent
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, lat: float, lng: float, referer: Optional[str] = None) -> dict:
        """Return the geocoder's JSON description of the place at (lat, lng)."""
        params = {
            "format": "json",
            "lat": lat,
            "lon": lng,
            "zoom": 18,
            "addressdetails": 1,
        }
        headers = {"User-Agent": self.user_agent}
        if referer:
            headers["Referer"] = referer

        try:
            response = self.session.get(self.url, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            logger.error("Geocoding error for %s,%s: %s", lat, lng, e)
            raise UpstreamError(f"Geocoder request failed: {e}") from e
        except ValueError as e:
            raise UpstreamError("Geocoder returned a non-JSON payload") from e

    def close(self):
        self.session.close()
