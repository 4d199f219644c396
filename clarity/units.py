"""Time arithmetic, angle math and unit conversions."""

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

KNOTS_PER_MPS = 1.94384
METERS_PER_FOOT = 0.3048


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def truncate_to_hour(value: datetime) -> datetime:
    """Drop minutes, seconds and microseconds."""
    return value.replace(minute=0, second=0, microsecond=0)


def hours_ago(hours: float, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(hours=hours)


def hours_from_now(hours: float, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) + timedelta(hours=hours)


def hourly_timestamps(start: datetime, hours: int) -> list[datetime]:
    """Generate hour-aligned timestamps beginning at the hour containing start.

    Args:
        start: Any time inside the first hour
        hours: Number of timestamps to generate

    Returns:
        List of hour-truncated datetimes, one per hour
    """
    first = truncate_to_hour(start)
    return [first + timedelta(hours=i) for i in range(max(0, hours))]


def day_marker(value: datetime) -> str:
    """Quota window marker for a daily ceiling (YYYY-MM-DD, UTC)."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%d")


def minute_marker(value: datetime) -> str:
    """Quota window marker for a per-minute ceiling (YYYY-MM-DDTHH:MM, UTC)."""
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M")


def clamp(value: float, lower: float, upper: float) -> float:
    return min(max(value, lower), upper)


def degrees_to_radians(degrees: float) -> float:
    return degrees * math.pi / 180


def normalize_angle(degrees: float) -> float:
    """Normalize an angle into [0, 360)."""
    return ((degrees % 360) + 360) % 360


def angle_between(from_deg: float, to_deg: float) -> float:
    """Clockwise offset from to_deg to from_deg, in [0, 360)."""
    return normalize_angle(from_deg - to_deg)


def mps_to_knots(mps: float) -> float:
    return mps * KNOTS_PER_MPS


def meters_to_feet(meters: float) -> float:
    return meters / METERS_PER_FOOT
