"""NDBC buoy client for the latest wind observation.

Tries several NDBC endpoints for the same station in order and keeps the
first payload that yields both wind direction and speed. Speeds are
normalized to knots.

Supported formats:
- realtime2/{station}.txt: columnar, units declared on the second header line
- latest_obs/{station}.txt: plain text ("Wind: SW (220°), 13.6 kt")
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Optional

import requests

from clarity.clients.models import SourceResult, WindReading
from clarity.config import NDBC_BASE_URL
from clarity.units import mps_to_knots, utcnow


logger = logging.getLogger(__name__)

MISSING_VALUES = ("MM", "999", "99.0", "9999", "99.00")

LATEST_WIND_RE = re.compile(
    r"Wind:\s*[A-Z]*\s*\((\d+(?:\.\d+)?)\D*\),\s*(\d+(?:\.\d+)?)\s*(kts?|m/s)",
    re.IGNORECASE,
)
LATEST_GUST_RE = re.compile(r"Gust:\s*(\d+(?:\.\d+)?)\s*(kts?|m/s)", re.IGNORECASE)
LATEST_TIME_RE = re.compile(r"(\d{2})(\d{2})\s+GMT\s+(\d{2})/(\d{2})/(\d{2})")


def _to_knots(value: float, unit: Optional[str]) -> float:
    """Convert a speed to knots based on its declared unit.

    NDBC reports m/s unless stated otherwise, so an undeclared unit is
    treated as m/s.
    """
    if unit is None:
        return mps_to_knots(value)
    unit = unit.lower()
    if unit.startswith("kt"):
        return value
    return mps_to_knots(value)


def _safe_float(value: str) -> Optional[float]:
    """Safely convert to float, returning None for missing values."""
    if value in MISSING_VALUES:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class NDBCWindClient:
    """Client for fetching the latest wind observation from NDBC."""

    def __init__(
        self,
        station_id: str = "44013",
        base_url: str = NDBC_BASE_URL,
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the wind client.

        Args:
            station_id: NDBC station ID
            base_url: NDBC base URL
            timeout: Per-request timeout in seconds
            session: Optional requests session
        """
        self.station_id = station_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def endpoints(self) -> list[str]:
        """Candidate URLs, tried in order."""
        return [
            f"{self.base_url}/data/realtime2/{self.station_id}.txt",
            f"{self.base_url}/data/latest_obs/{self.station_id}.txt",
        ]

    def parse_standard(self, text: str) -> WindReading:
        """Parse the columnar realtime2 format (latest row only).

        Raises:
            NDBCWindError: If the payload lacks direction or speed
        """
        lines = [line for line in text.strip().split("\n") if line.strip()]
        if len(lines) < 3:
            raise NDBCWindError("Invalid NDBC response format")

        headers = [h.lstrip("#") for h in lines[0].split()]
        units = [u.lstrip("#") for u in lines[1].split()]
        values = lines[2].split()

        if "WDIR" not in headers or "WSPD" not in headers:
            raise NDBCWindError("Required wind columns not found")

        wdir_idx = headers.index("WDIR")
        wspd_idx = headers.index("WSPD")
        gst_idx = headers.index("GST") if "GST" in headers else None

        def unit_at(idx: int) -> Optional[str]:
            return units[idx] if idx < len(units) else None

        try:
            direction = _safe_float(values[wdir_idx])
            speed = _safe_float(values[wspd_idx])
        except IndexError as e:
            raise NDBCWindError("Truncated NDBC data row") from e

        if direction is None or speed is None:
            raise NDBCWindError("Invalid wind data values")

        gust = None
        if gst_idx is not None and gst_idx < len(values):
            gust_raw = _safe_float(values[gst_idx])
            if gust_raw is not None:
                gust = _to_knots(gust_raw, unit_at(gst_idx))

        return WindReading(
            time=self._parse_row_time(headers, values),
            direction_deg=direction,
            speed_kt=_to_knots(speed, unit_at(wspd_idx)),
            gust_kt=gust,
        )

    def _parse_row_time(self, headers: list[str], values: list[str]) -> datetime:
        """Observation time from the YY MM DD hh mm columns, or now."""
        try:
            year_idx = next(i for i, h in enumerate(headers) if h in ("YY", "YYYY"))
            year = int(values[year_idx])
            if year < 100:
                year += 2000
            month, day, hour, minute = (int(v) for v in values[year_idx + 1:year_idx + 5])
            return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)
        except (StopIteration, ValueError, IndexError):
            return utcnow()

    def parse_latest_obs(self, text: str) -> WindReading:
        """Parse the plain-text latest_obs format.

        Raises:
            NDBCWindError: If no wind line is present
        """
        match = LATEST_WIND_RE.search(text)
        if not match:
            raise NDBCWindError("No wind observation in latest_obs payload")

        direction = float(match.group(1))
        speed = _to_knots(float(match.group(2)), match.group(3))

        gust = None
        gust_match = LATEST_GUST_RE.search(text)
        if gust_match:
            gust = _to_knots(float(gust_match.group(1)), gust_match.group(2))

        time = utcnow()
        time_match = LATEST_TIME_RE.search(text)
        if time_match:
            hh, mm, month, day, yy = (int(g) for g in time_match.groups())
            try:
                time = datetime(2000 + yy, month, day, hh, mm, tzinfo=timezone.utc)
            except ValueError:
                pass

        return WindReading(time=time, direction_deg=direction, speed_kt=speed, gust_kt=gust)

    def _parse(self, text: str) -> WindReading:
        if LATEST_WIND_RE.search(text):
            return self.parse_latest_obs(text)
        return self.parse_standard(text)

    def get_latest_wind(self) -> WindReading:
        """Get the latest wind observation from the first working endpoint.

        Raises:
            NDBCWindError: If every endpoint fails
        """
        last_error: Optional[Exception] = None

        for url in self.endpoints:
            logger.debug(f"Trying NDBC URL: {url}")
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                return self._parse(response.text)
            except (requests.RequestException, NDBCWindError) as e:
                logger.debug(f"NDBC endpoint {url} failed: {e}")
                last_error = e

        raise NDBCWindError(f"All NDBC endpoints failed: {last_error}")

    async def fetch(self) -> SourceResult[WindReading]:
        """Fetch the latest wind without raising; failures become unavailable."""
        try:
            wind = await asyncio.to_thread(self.get_latest_wind)
        except Exception as e:
            logger.warning(f"Failed to fetch wind data: {e}")
            return SourceResult.unavailable(str(e))
        return SourceResult.ok(wind)


class NDBCWindError(Exception):
    """Exception raised for NDBC wind client errors."""

    pass
