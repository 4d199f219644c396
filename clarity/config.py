"""Runtime configuration loaded from environment variables or a .env file."""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# Public endpoints (no keys needed)
NOAA_COOPS_BASE_URL = "https://api.tidesandcurrents.noaa.gov/api/prod/datagetter"
NDBC_BASE_URL = "https://www.ndbc.noaa.gov"
OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"
STORMGLASS_URL = "https://api.stormglass.io/v2/weather/point"

# Woods Hole center
DEFAULT_LAT = 41.523
DEFAULT_LON = -70.671

MAX_FORECAST_HOURS = 72
TIDE_HISTORY_HOURS = 36  # How far back to fetch for derivatives


def _load_env_file() -> dict[str, str]:
    """Read KEY=VALUE pairs from the project .env file, if one exists."""
    env_paths = [
        Path(__file__).parent.parent / ".env",
        Path.cwd() / ".env",
    ]
    for env_path in env_paths:
        if not env_path.exists():
            continue
        values = {}
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                values[key.strip()] = value.strip().strip('"').strip("'")
        return values
    return {}


def _get(name: str, default: str, file_values: dict[str, str]) -> str:
    value = os.environ.get(name)
    if value:
        return value
    return file_values.get(name, default)


@dataclass(frozen=True)
class Settings:
    """Service settings.

    API keys are optional: an empty key disables the corresponding
    metered source instead of failing startup.
    """
    openweather_api_key: str = ""
    stormglass_api_key: str = ""
    refresh_minutes: int = 60
    stormglass_cache_hours: float = 3
    stormglass_max_daily_requests: int = 8
    openweather_max_requests_per_minute: int = 50
    source_timeout_seconds: float = 15
    coops_station: str = "8447930"  # Woods Hole tide station
    ndbc_station: str = "44013"     # Boston buoy, closest reliable NDBC station
    lat: float = DEFAULT_LAT
    lon: float = DEFAULT_LON
    max_forecast_hours: int = MAX_FORECAST_HOURS
    tide_history_hours: int = TIDE_HISTORY_HOURS
    sites_path: Optional[Path] = None

    @property
    def openweather_enabled(self) -> bool:
        return bool(self.openweather_api_key.strip())

    @property
    def stormglass_enabled(self) -> bool:
        return bool(self.stormglass_api_key.strip())

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the environment, falling back to .env values."""
        file_values = _load_env_file()
        sites_path = _get("CLARITY_SITES_PATH", "", file_values)

        return cls(
            openweather_api_key=_get("OPENWEATHER_API_KEY", "", file_values),
            stormglass_api_key=_get("STORMGLASS_API_KEY", "", file_values),
            refresh_minutes=int(_get("REFRESH_MINUTES", "60", file_values)),
            stormglass_cache_hours=float(_get("STORMGLASS_CACHE_HOURS", "3", file_values)),
            stormglass_max_daily_requests=int(
                _get("STORMGLASS_MAX_DAILY_REQUESTS", "8", file_values)
            ),
            openweather_max_requests_per_minute=int(
                _get("OPENWEATHER_MAX_REQUESTS_PER_MINUTE", "50", file_values)
            ),
            source_timeout_seconds=float(_get("SOURCE_TIMEOUT_SECONDS", "15", file_values)),
            coops_station=_get("COOPS_STATION", "8447930", file_values),
            ndbc_station=_get("NDBC_STATION", "44013", file_values),
            sites_path=Path(sites_path) if sites_path else None,
        )
