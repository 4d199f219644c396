"""Forecast table construction.

Expands the scorer over every site and every forecast hour. Only tide flow
varies hour to hour; wind, rain and waves are the latest observations held
constant across the horizon, since no per-hour forecast exists for them.
The table is always rebuilt whole.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import pandas as pd

from clarity.clients.models import WaterLevel
from clarity.config import MAX_FORECAST_HOURS
from clarity.core.conditions import EnvironmentalSnapshot
from clarity.core.scorer import ClarityScorer, ScoreComponents
from clarity.core.site import Site
from clarity.units import hourly_timestamps, truncate_to_hour, utcnow


logger = logging.getLogger(__name__)

# Hour-truncated UTC time -> unsigned flow in ft/hr
TideFlowSeries = dict[datetime, float]


@dataclass(frozen=True)
class ForecastPoint:
    """Score for one site at one hour."""
    time: datetime
    score: float
    components: ScoreComponents

    def to_dict(self) -> dict:
        return {
            "t": self.time.isoformat(),
            "score": self.score,
            "components": self.components.to_dict(),
        }


ForecastTable = dict[str, dict[datetime, ForecastPoint]]


def compute_tide_flow(water_levels: list[WaterLevel]) -> TideFlowSeries:
    """Compute tidal flow rates from a water level series.

    Flow = |delta level| / delta time (ft/hr), keyed by the later sample's
    hour. Samples with no elapsed time are skipped.

    Args:
        water_levels: Water levels in any order

    Returns:
        New TideFlowSeries; empty when fewer than two samples exist
    """
    if len(water_levels) < 2:
        return {}

    df = pd.DataFrame(
        {
            "time": [pd.Timestamp(w.time) for w in water_levels],
            "level_ft": [w.level_ft for w in water_levels],
        }
    ).sort_values("time", kind="stable")

    elapsed_hours = df["time"].diff().dt.total_seconds() / 3600
    level_change = df["level_ft"].diff().abs()
    df["flow"] = level_change / elapsed_hours
    df = df[elapsed_hours > 0]

    tide_flow: TideFlowSeries = {}
    for row in df.itertuples(index=False):
        tide_flow[truncate_to_hour(row.time.to_pydatetime())] = float(row.flow)

    return tide_flow


def tide_phase(flow_ft_per_hr: float) -> str:
    """Classify tidal flow: slack, moderate-flow or strong-flow."""
    if flow_ft_per_hr < 0.5:
        return "slack"
    elif flow_ft_per_hr > 1.5:
        return "strong-flow"
    return "moderate-flow"


class ForecastBuilder:
    """Builds the site x hour forecast table."""

    def __init__(
        self,
        sites: list[Site],
        scorer: ClarityScorer,
        max_hours: int = MAX_FORECAST_HOURS,
    ):
        self.sites = sites
        self.scorer = scorer
        self.max_hours = max_hours

    def build(
        self,
        snapshot: EnvironmentalSnapshot,
        tide_flow: TideFlowSeries,
        hours: Optional[int] = None,
        start: Optional[datetime] = None,
    ) -> ForecastTable:
        """Build a forecast table for all sites.

        Args:
            snapshot: Current environmental snapshot
            tide_flow: Flow per hour; missing hours count as zero flow
            hours: Horizon in hours, capped at max_hours. Defaults to max_hours.
            start: Any time within the first forecast hour. Defaults to now.

        Returns:
            Mapping of site id to {hour: ForecastPoint}, one point per hour
        """
        hours = self.max_hours if hours is None else min(max(0, hours), self.max_hours)
        timestamps = hourly_timestamps(start or utcnow(), hours)

        rain_72h = snapshot.precipitation.last_72h_mm if snapshot.precipitation else 0.0

        table: ForecastTable = {}
        for site in self.sites:
            points: dict[datetime, ForecastPoint] = {}
            for timestamp in timestamps:
                result = self.scorer.calculate_score(
                    site,
                    snapshot.wind,
                    tide_flow.get(timestamp, 0.0),
                    rain_72h,
                    snapshot.waves,
                )
                points[timestamp] = ForecastPoint(
                    time=timestamp,
                    score=result.score,
                    components=result.components,
                )
            table[site.id] = points

        logger.debug(f"Built forecast table: {len(self.sites)} sites x {len(timestamps)} hours")
        return table
