"""API clients for environmental data sources."""

from clarity.clients.models import (
    PrecipitationSummary,
    SourceResult,
    WaterLevel,
    WaveReading,
    WindReading,
)
from clarity.clients.ndbc_wind_client import NDBCWindClient, NDBCWindError
from clarity.clients.noaa_tides_client import NOAATidesClient, NOAATidesError
from clarity.clients.openweather_client import OpenWeatherClient, OpenWeatherError
from clarity.clients.stormglass_client import StormglassClient, StormglassError

__all__ = [
    # Records
    "PrecipitationSummary",
    "SourceResult",
    "WaterLevel",
    "WaveReading",
    "WindReading",
    # Clients
    "NDBCWindClient",
    "NDBCWindError",
    "NOAATidesClient",
    "NOAATidesError",
    "OpenWeatherClient",
    "OpenWeatherError",
    "StormglassClient",
    "StormglassError",
]
