"""Stormglass API client for wave height and period.

The free plan allows 10 requests per day, so this client is always used
behind a RateLimitGate (see clarity.core.gate).
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

import pandas as pd
import requests

from clarity.clients.models import SourceResult, WaveReading
from clarity.config import DEFAULT_LAT, DEFAULT_LON, STORMGLASS_URL
from clarity.units import truncate_to_hour, utcnow


logger = logging.getLogger(__name__)

WAVE_PARAMS = "waveHeight,wavePeriod"
PREFERRED_SOURCE = "sg"


def _pick_source(value) -> Optional[float]:
    """Pick the Stormglass aggregate, falling back to any reported source."""
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, dict) or not value:
        return None
    if value.get(PREFERRED_SOURCE) is not None:
        return float(value[PREFERRED_SOURCE])
    for candidate in value.values():
        if candidate is not None:
            return float(candidate)
    return None


class StormglassClient:
    """Client for fetching wave conditions from Stormglass."""

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
            api_key: Stormglass API key. Empty disables the client.
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

    def get_latest_waves(self, now: Optional[datetime] = None) -> WaveReading:
        """Get the wave reading for the current hour.

        Raises:
            StormglassError: If the request fails or no hours are returned
        """
        if not self.is_configured:
            raise StormglassError("Stormglass API key not configured")

        start = truncate_to_hour(now or utcnow())
        end = start + timedelta(hours=1)

        try:
            response = self.session.get(
                STORMGLASS_URL,
                params={
                    "lat": self.lat,
                    "lng": self.lon,
                    "params": WAVE_PARAMS,
                    "start": int(start.timestamp()),
                    "end": int(end.timestamp()),
                },
                headers={"Authorization": self.api_key},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise StormglassError(f"Stormglass API error: {e}") from e

        hours = data.get("hours") if isinstance(data, dict) else None
        if not isinstance(hours, list) or not hours:
            raise StormglassError("No wave data available")

        latest = hours[0]
        height = _pick_source(latest.get("waveHeight"))
        if height is None:
            raise StormglassError("Wave height missing from Stormglass response")

        try:
            time = pd.to_datetime(latest.get("time") or start, utc=True).to_pydatetime()
        except (ValueError, TypeError) as e:
            raise StormglassError(f"Invalid Stormglass timestamp: {latest.get('time')}") from e

        return WaveReading(
            time=time,
            height_m=height,
            period_s=_pick_source(latest.get("wavePeriod")),
        )

    async def fetch(self) -> SourceResult[WaveReading]:
        """Fetch waves without raising; failures become unavailable."""
        try:
            waves = await asyncio.to_thread(self.get_latest_waves)
        except Exception as e:
            logger.warning(f"Failed to fetch wave data: {e}")
            return SourceResult.unavailable(str(e))
        logger.info(f"Stormglass waves: Hs={waves.height_m}m, Tp={waves.period_s}s")
        return SourceResult.ok(waves)


class StormglassError(Exception):
    """Exception raised for Stormglass client errors."""

    pass
