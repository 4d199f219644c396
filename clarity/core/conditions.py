"""Shared environmental snapshot.

A snapshot holds the latest known value per source. It is replaced
wholesale on each refresh, so readers always see either the previous or
the next complete state.
"""

from dataclasses import dataclass, field
from typing import Optional

from clarity.clients.models import (
    PrecipitationSummary,
    WaterLevel,
    WaveReading,
    WindReading,
)


@dataclass(frozen=True)
class SourceStatus:
    """Which sources produced data on the last refresh."""
    coops: bool = False
    ndbc: bool = False
    openweather: bool = False
    stormglass: bool = False

    def to_dict(self) -> dict:
        return {
            "coops": self.coops,
            "ndbc": self.ndbc,
            "openweather": self.openweather,
            "stormglass": self.stormglass,
        }


@dataclass(frozen=True)
class EnvironmentalSnapshot:
    """Latest environmental conditions; each source independently nullable."""
    water_levels: list[WaterLevel] = field(default_factory=list)
    wind: Optional[WindReading] = None
    precipitation: Optional[PrecipitationSummary] = None
    waves: Optional[WaveReading] = None
    sources: SourceStatus = field(default_factory=SourceStatus)

    @property
    def critical_sources_available(self) -> bool:
        """Tide and wind are critical; rain and waves are optional."""
        return self.sources.coops and self.sources.ndbc
