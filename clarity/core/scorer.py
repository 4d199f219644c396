"""Water clarity scoring using a weighted penalty system.

Scoring approach:
- Each environmental factor yields a non-negative penalty magnitude
- Total penalty = weighted sum of the five penalties
- Score = 100 - total penalty, clamped to [0, 100]

Penalty functions:
- Wind: 0 up to 5 kt, then (speed - 5) ** 1.3. Chop-induced turbidity is
  imperceptible below the threshold and grows superlinearly above it.
- Onshore: component of wind speed blowing toward shore; offshore wind
  contributes zero, never a bonus.
- Tide flow: |ft/hr| * 2. Strong currents stir up sediment.
- Rain: 72h accumulation / 3, capped at 20. Runoff raises turbidity.
- Swell: Hs * 10, * 1.2 when the period is under 7 s, scaled by site
  exposure so sheltered sites discount open-water swell.

A missing source contributes zero to its penalty: absence is treated as
no evidence of a penalty.
"""

import math
from dataclasses import asdict, dataclass, fields, replace
from typing import Optional

from clarity.clients.models import WaveReading, WindReading
from clarity.core.site import Site
from clarity.units import angle_between, clamp, degrees_to_radians, utcnow


WIND_THRESHOLD_KT = 5.0
WIND_EXPONENT = 1.3
TIDE_FLOW_SCALE = 2.0
RAIN_DIVISOR = 3.0
RAIN_MAX_PENALTY = 20.0
SWELL_SCALE = 10.0
SHORT_PERIOD_S = 7.0
SHORT_PERIOD_MULTIPLIER = 1.2


@dataclass(frozen=True)
class Weights:
    """Penalty weights, one per category."""
    wind: float = 2.0       # Wind speed penalty
    onshore: float = 2.5    # Onshore wind component penalty
    tide_flow: float = 1.5  # Tidal current penalty
    rain: float = 1.0       # Precipitation penalty
    swell: float = 1.0      # Wave/swell penalty

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if value < 0 or not math.isfinite(value):
                raise ValueError(f"Weight {f.name} must be a non-negative number, got {value}")

    def update(self, **changes: float) -> "Weights":
        """Return new weights with some values replaced.

        Raises:
            ValueError: On unknown or negative weights
        """
        known = {f.name for f in fields(self)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown weights: {', '.join(sorted(unknown))}")
        return replace(self, **{k: float(v) for k, v in changes.items() if v is not None})

    def to_dict(self) -> dict:
        return asdict(self)


DEFAULT_WEIGHTS = Weights()


@dataclass(frozen=True)
class ScoreComponents:
    """Per-category penalty magnitudes before weighting."""
    wind: float = 0.0
    onshore: float = 0.0
    tide_flow: float = 0.0
    rain: float = 0.0
    swell: float = 0.0

    def weighted_total(self, weights: Weights) -> float:
        return (
            weights.wind * self.wind
            + weights.onshore * self.onshore
            + weights.tide_flow * self.tide_flow
            + weights.rain * self.rain
            + weights.swell * self.swell
        )

    def to_dict(self) -> dict:
        return {
            "wind": self.wind,
            "onshore": self.onshore,
            "tideFlow": self.tide_flow,
            "rain": self.rain,
            "swell": self.swell,
        }


@dataclass(frozen=True)
class ScoringResult:
    """Score plus the breakdown that produced it."""
    score: float
    components: ScoreComponents


def wind_penalty(speed_kt: float) -> float:
    """Wind speed penalty; zero at or below the 5 kt threshold."""
    if speed_kt <= WIND_THRESHOLD_KT:
        return 0.0
    return (speed_kt - WIND_THRESHOLD_KT) ** WIND_EXPONENT


def onshore_component(
    wind_direction_from: float,
    wind_speed_kt: float,
    shoreline_bearing_toward_shore: float,
) -> float:
    """Portion of wind speed blowing toward shore.

    Args:
        wind_direction_from: Meteorological wind direction (FROM), degrees
        wind_speed_kt: Wind speed
        shoreline_bearing_toward_shore: Direction from sea toward shore, degrees

    Returns:
        Onshore speed in knots; 0 for offshore or alongshore wind
    """
    offset = angle_between(wind_direction_from, shoreline_bearing_toward_shore)
    return max(0.0, wind_speed_kt * math.cos(degrees_to_radians(offset)))


def tide_flow_penalty(flow_ft_per_hr: float) -> float:
    return abs(flow_ft_per_hr) * TIDE_FLOW_SCALE


def rain_penalty(mm_72h: float) -> float:
    """Scale 0-60mm of rain to 0-20 penalty points."""
    return clamp(mm_72h / RAIN_DIVISOR, 0.0, RAIN_MAX_PENALTY)


def swell_penalty(height_m: float, period_s: Optional[float] = None) -> float:
    """Swell penalty before site exposure scaling."""
    multiplier = SHORT_PERIOD_MULTIPLIER if period_s is not None and period_s < SHORT_PERIOD_S else 1.0
    return max(0.0, height_m) * SWELL_SCALE * multiplier


def describe_score(score: float) -> str:
    """Short label for a clarity score."""
    if score > 80:
        return "Excellent conditions"
    elif score > 60:
        return "Good conditions"
    return "Fair conditions"


class ClarityScorer:
    """Scores water clarity for a site from one environmental snapshot."""

    def __init__(self, weights: Weights = DEFAULT_WEIGHTS):
        self.weights = weights

    def calculate_components(
        self,
        site: Site,
        wind: Optional[WindReading],
        tide_flow: float,
        rain_72h_mm: float,
        waves: Optional[WaveReading],
    ) -> ScoreComponents:
        """Compute unweighted penalties; missing sources contribute zero."""
        wind_value = 0.0
        onshore_value = 0.0
        if wind is not None:
            wind_value = wind_penalty(wind.speed_kt)
            onshore_value = onshore_component(
                wind.direction_deg,
                wind.speed_kt,
                site.shoreline_bearing_toward_shore,
            )

        swell_value = 0.0
        if waves is not None:
            swell_value = swell_penalty(waves.height_m, waves.period_s) * site.exposure

        return ScoreComponents(
            wind=wind_value,
            onshore=onshore_value,
            tide_flow=tide_flow_penalty(tide_flow or 0.0),
            rain=rain_penalty(rain_72h_mm or 0.0),
            swell=swell_value,
        )

    def calculate_score(
        self,
        site: Site,
        wind: Optional[WindReading],
        tide_flow: float,
        rain_72h_mm: float,
        waves: Optional[WaveReading],
    ) -> ScoringResult:
        """Calculate the clarity score for a site.

        Score = 100 - weighted penalties, clamped to [0, 100].
        100 means no penalties; 0 means very poor clarity.

        Args:
            site: The site being scored
            wind: Latest wind, or None when unavailable
            tide_flow: Tidal flow magnitude in ft/hr
            rain_72h_mm: Precipitation over the last 72 hours
            waves: Latest waves, or None when unavailable

        Returns:
            ScoringResult with score and components
        """
        components = self.calculate_components(site, wind, tide_flow, rain_72h_mm, waves)
        total_penalty = components.weighted_total(self.weights)
        score = clamp(100.0 - total_penalty, 0.0, 100.0)
        return ScoringResult(score=score, components=components)


def quick_score(
    site: Site,
    wind_speed_kt: float = 0.0,
    wind_direction_deg: float = 0.0,
    tide_flow: float = 0.0,
    rain_72h_mm: float = 0.0,
    wave_height_m: Optional[float] = None,
    wave_period_s: Optional[float] = None,
    weights: Weights = DEFAULT_WEIGHTS,
) -> ScoringResult:
    """Score a site from bare numbers with default weights.

    Convenience function for simple scoring.
    """
    now = utcnow()
    wind = WindReading(time=now, direction_deg=wind_direction_deg, speed_kt=wind_speed_kt)
    waves = None
    if wave_height_m is not None:
        waves = WaveReading(time=now, height_m=wave_height_m, period_s=wave_period_s)

    return ClarityScorer(weights).calculate_score(site, wind, tide_flow, rain_72h_mm, waves)
