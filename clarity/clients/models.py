"""Canonical records produced by the source clients.

Every client normalizes its upstream response into one of these records,
or reports the source as unavailable through SourceResult.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class WaterLevel:
    """Hourly water level."""
    time: datetime  # UTC
    level_ft: float


@dataclass(frozen=True)
class WindReading:
    """Latest wind observation, speeds in knots."""
    time: datetime
    direction_deg: float  # Meteorological direction (FROM)
    speed_kt: float
    gust_kt: Optional[float] = None


@dataclass(frozen=True)
class PrecipitationSummary:
    """Precipitation accumulated over the last 72 hours."""
    last_72h_mm: float
    windowed_mm: dict[datetime, float] = field(default_factory=dict)


@dataclass(frozen=True)
class WaveReading:
    """Latest wave observation."""
    time: datetime
    height_m: float  # Significant wave height
    period_s: Optional[float] = None  # Peak period


@dataclass(frozen=True)
class SourceResult(Generic[T]):
    """Either a normalized record or an explicit "unavailable" marker."""
    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def ok(cls, value: T) -> "SourceResult[T]":
        return cls(value=value)

    @classmethod
    def unavailable(cls, reason: str) -> "SourceResult[T]":
        return cls(value=None, reason=reason)

    @property
    def available(self) -> bool:
        return self.value is not None
