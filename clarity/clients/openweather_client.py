"""OpenWeather API client for precipitation.

Uses the Current Weather API only, which is what the free plan allows:
no hourly/daily forecasts and no history. The 72-hour summary therefore
reflects the precipitation currently being reported.
Free plan: 60 calls/minute.
"""

import asyncio
import logging
from typing import Optional

import requests

from clarity.clients.models import PrecipitationSummary, SourceResult
from clarity.config import DEFAULT_LAT, DEFAULT_LON, OPENWEATHER_URL
from clarity.units import truncate_to_hour, utcnow


logger = logging.getLogger(__name__)


class OpenWeatherClient:
    """Client for fetching current precipitation from OpenWeather."""

    def __init__(
        self,
        api_key: str = "",
        lat: float = DEFAULT_LAT,
        lon: float = DEFAULT_LON,
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            api_key: OpenWeather API key. Empty disables the client.
            lat: Latitude
            lon: Longitude
            timeout: Per-request timeout in seconds
            session: Optional requests session
        """
        self.api_key = api_key or ""
        self.lat = lat
        self.lon = lon
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key.strip())

    def get_precipitation(self) -> PrecipitationSummary:
        """Get current precipitation (rain + snow) in millimeters.

        Raises:
            OpenWeatherError: If the request fails or the key is missing
        """
        if not self.is_configured:
            raise OpenWeatherError("OpenWeather API key not configured")

        try:
            response = self.session.get(
                OPENWEATHER_URL,
                params={
                    "lat": self.lat,
                    "lon": self.lon,
                    "appid": self.api_key,
                    "units": "metric",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise OpenWeatherError(f"OpenWeather API error: {e}") from e

        if not isinstance(data, dict):
            raise OpenWeatherError("Invalid OpenWeather response format")

        rain = data.get("rain") or {}
        snow = data.get("snow") or {}
        current_rain = rain.get("1h") or rain.get("3h") or 0
        current_snow = snow.get("1h") or snow.get("3h") or 0
        current_precip = float(current_rain) + float(current_snow)

        logger.info(f"OpenWeather current precipitation: {current_precip}mm")

        return PrecipitationSummary(
            last_72h_mm=current_precip,
            windowed_mm={truncate_to_hour(utcnow()): current_precip},
        )

    async def fetch(self) -> SourceResult[PrecipitationSummary]:
        """Fetch precipitation without raising; failures become unavailable."""
        try:
            summary = await asyncio.to_thread(self.get_precipitation)
        except Exception as e:
            logger.warning(f"Failed to fetch precipitation data: {e}")
            return SourceResult.unavailable(str(e))
        return SourceResult.ok(summary)


class OpenWeatherError(Exception):
    """Exception raised for OpenWeather client errors."""

    pass
