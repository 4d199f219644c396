"""NOAA CO-OPS API client for hourly water levels.

Provides hourly tide predictions for the Woods Hole station (8447930),
spanning recent history plus the forecast horizon so tidal flow can be
derived for every forecast hour.
"""

import asyncio
import logging
from datetime import datetime
from typing import Literal, Optional

import pandas as pd
import requests

from clarity.clients.models import SourceResult, WaterLevel
from clarity.config import MAX_FORECAST_HOURS, NOAA_COOPS_BASE_URL, TIDE_HISTORY_HOURS
from clarity.units import hours_ago, hours_from_now, meters_to_feet, utcnow


logger = logging.getLogger(__name__)

APPLICATION = "WoodsHoleClarity"


class NOAATidesClient:
    """Client for fetching water levels from NOAA CO-OPS API."""

    def __init__(
        self,
        station_id: str = "8447930",
        history_hours: int = TIDE_HISTORY_HOURS,
        horizon_hours: int = MAX_FORECAST_HOURS,
        units: Literal["english", "metric"] = "english",
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the NOAA Tides client.

        Args:
            station_id: NOAA station ID
            history_hours: Hours of history to request before now
            horizon_hours: Hours to request after now
            units: Units requested from CO-OPS; metric levels are converted to feet
            timeout: Per-request timeout in seconds
            session: Optional requests session
        """
        self.station_id = station_id
        self.history_hours = history_hours
        self.horizon_hours = horizon_hours
        self.units = units
        self.timeout = timeout
        self.session = session or requests.Session()

    def _fetch_data(self, params: dict) -> list:
        """Fetch data from CO-OPS API."""
        try:
            response = self.session.get(NOAA_COOPS_BASE_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise NOAATidesError(f"Failed to fetch tide data: {e}") from e

        if "error" in data:
            raise NOAATidesError(f"CO-OPS API error: {data['error'].get('message', 'Unknown error')}")

        rows = data.get("predictions", data.get("data"))
        if not isinstance(rows, list):
            raise NOAATidesError("Invalid CO-OPS response format")

        return rows

    def get_hourly_levels(self, now: Optional[datetime] = None) -> pd.DataFrame:
        """Get hourly water levels around the current time.

        Args:
            now: Reference time. Defaults to the current UTC time.

        Returns:
            DataFrame with columns: time (UTC), water_level_ft, sorted by time
        """
        now = now or utcnow()
        start_date = hours_ago(self.history_hours, now)
        end_date = hours_from_now(self.horizon_hours, now)

        params = {
            "station": self.station_id,
            "begin_date": start_date.strftime("%Y%m%d %H:%M"),
            "end_date": end_date.strftime("%Y%m%d %H:%M"),
            "product": "predictions",
            "application": APPLICATION,
            "datum": "MLLW",
            "units": self.units,
            "time_zone": "gmt",
            "interval": "h",
            "format": "json",
        }

        rows = self._fetch_data(params)

        df = pd.DataFrame(
            {
                "time": [row.get("t") for row in rows],
                "water_level_ft": [row.get("v") for row in rows],
            }
        )
        if df.empty:
            return df

        df["time"] = pd.to_datetime(df["time"], utc=True, errors="coerce")
        df["water_level_ft"] = pd.to_numeric(df["water_level_ft"], errors="coerce")
        df = df.dropna().sort_values("time").reset_index(drop=True)

        if self.units == "metric":
            df["water_level_ft"] = df["water_level_ft"].map(meters_to_feet)

        return df

    def get_water_levels(self, now: Optional[datetime] = None) -> list[WaterLevel]:
        """Get hourly water levels as canonical records.

        Raises:
            NOAATidesError: If the request fails or yields no usable rows
        """
        df = self.get_hourly_levels(now)
        if df.empty:
            raise NOAATidesError(f"No water level data for station {self.station_id}")

        return [
            WaterLevel(time=row.time.to_pydatetime(), level_ft=float(row.water_level_ft))
            for row in df.itertuples(index=False)
        ]

    async def fetch(self) -> SourceResult[list[WaterLevel]]:
        """Fetch water levels without raising; failures become unavailable."""
        try:
            levels = await asyncio.to_thread(self.get_water_levels)
        except Exception as e:
            logger.warning(f"Failed to fetch water levels: {e}")
            return SourceResult.unavailable(str(e))
        return SourceResult.ok(levels)


class NOAATidesError(Exception):
    """Exception raised for NOAA Tides client errors."""

    pass
