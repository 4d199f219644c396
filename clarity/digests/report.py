"""Clarity report generation.

Collects current conditions, best windows and source status from a
refreshed ClarityService into one report object for formatting.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from clarity.clients.models import PrecipitationSummary, WaveReading, WindReading
from clarity.core.conditions import SourceStatus
from clarity.core.gate import GateStatus
from clarity.core.ranker import BestWindow
from clarity.core.service import DEFAULT_RANKING_HOURS, ClarityService
from clarity.core.site import Site


logger = logging.getLogger(__name__)


@dataclass
class SiteSummary:
    """One site's line in the report."""
    site: Site
    current_score: float = 0
    trend: str = "flat"
    tide_phase: str = "slack"
    onshore_kt: Optional[float] = None
    best_window_today: Optional[BestWindow] = None
    top_windows: list[BestWindow] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "site": self.site.to_dict(),
            "currentScore": self.current_score,
            "trendNext6h": self.trend,
            "tidePhase": self.tide_phase,
            "onshoreKt": self.onshore_kt,
            "bestWindowToday": self.best_window_today.to_dict() if self.best_window_today else None,
            "top3": [w.to_dict() for w in self.top_windows],
        }


@dataclass
class ClarityReport:
    """Snapshot of clarity conditions across all sites."""
    generated_at: datetime
    hours: int = DEFAULT_RANKING_HOURS

    last_refreshed_at: Optional[datetime] = None
    degraded: bool = False
    sources: SourceStatus = field(default_factory=SourceStatus)

    # Latest conditions
    wind: Optional[WindReading] = None
    precipitation: Optional[PrecipitationSummary] = None
    waves: Optional[WaveReading] = None

    # Sites ordered by best window over `hours`
    sites: list[SiteSummary] = field(default_factory=list)
    best_site_id: Optional[str] = None
    best_reason: Optional[str] = None

    gate_statuses: list[GateStatus] = field(default_factory=list)

    # Errors during generation
    errors: list[str] = field(default_factory=list)

    @property
    def best_site(self) -> Optional[SiteSummary]:
        for summary in self.sites:
            if summary.site.id == self.best_site_id:
                return summary
        return None

    def to_dict(self) -> dict:
        return {
            "generatedAt": self.generated_at.isoformat(),
            "hours": self.hours,
            "lastRefreshedAt": self.last_refreshed_at.isoformat() if self.last_refreshed_at else None,
            "degraded": self.degraded,
            "sources": self.sources.to_dict(),
            "wind": {
                "dirDeg": self.wind.direction_deg,
                "speedKt": round(self.wind.speed_kt, 1),
            } if self.wind else None,
            "rain": {"last72h_mm": round(self.precipitation.last_72h_mm, 1)} if self.precipitation else None,
            "waves": {"Hs_m": self.waves.height_m, "Tp_s": self.waves.period_s} if self.waves else None,
            "bestSiteNow": {"siteId": self.best_site_id, "reason": self.best_reason},
            "sites": [s.to_dict() for s in self.sites],
            "gates": [g.to_dict() for g in self.gate_statuses],
            "errors": self.errors,
        }


class ReportGenerator:
    """Builds ClarityReports from a ClarityService."""

    def __init__(self, service: ClarityService):
        self.service = service

    def generate(self, hours: int = DEFAULT_RANKING_HOURS) -> ClarityReport:
        """Generate a report from the service's current state.

        Does not refresh; call service.refresh() first for live data.

        Args:
            hours: Horizon for best window ranking.

        Returns:
            ClarityReport with per-site summaries, best first.
        """
        service = self.service
        snapshot = service.get_snapshot()
        report = ClarityReport(
            generated_at=service.clock(),
            hours=min(hours, service.settings.max_forecast_hours),
            last_refreshed_at=service.last_refreshed_at,
            degraded=service.degraded,
            sources=snapshot.sources,
            wind=snapshot.wind,
            precipitation=snapshot.precipitation,
            waves=snapshot.waves,
        )

        try:
            current = service.current_conditions()
            by_site = {c["siteId"]: c for c in current["sites"]}

            for ranking in service.rankings(report.hours):
                site = service.site_db.require_site(ranking.site_id)
                conditions = by_site.get(site.id, {})
                wind = conditions.get("wind")
                best_today = conditions.get("bestWindowToday")

                report.sites.append(SiteSummary(
                    site=site,
                    current_score=conditions.get("currentScore", 0),
                    trend=conditions.get("trendNext6h", "flat"),
                    tide_phase=conditions.get("tidePhase", "slack"),
                    onshore_kt=wind["onshoreKt"] if wind else None,
                    best_window_today=BestWindow.from_dict(best_today) if best_today else None,
                    top_windows=ranking.top,
                ))

            best = current["bestSiteNow"]
            if best["siteId"]:
                report.best_site_id = best["siteId"]
                report.best_reason = best["reason"]

            report.gate_statuses = [
                service.get_gate_status("openweather"),
                service.get_gate_status("stormglass"),
            ]

        except Exception as e:
            logger.error(f"Error generating report: {e}")
            report.errors.append(str(e))

        return report


def generate_report(service: ClarityService, hours: int = DEFAULT_RANKING_HOURS) -> ClarityReport:
    """Convenience function to generate a report."""
    return ReportGenerator(service).generate(hours)
