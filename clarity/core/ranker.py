"""Best time window ranking.

Slides a fixed-size window over a site's hourly forecast and ranks every
window by its mean score. Windows overlap (every start hour is
considered) and never run past the last available hour.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from clarity.core.forecast import ForecastPoint, ForecastTable

DEFAULT_WINDOW_HOURS = 2
TOP_WINDOWS = 3


@dataclass(frozen=True)
class BestWindow:
    """A contiguous block of forecast hours."""
    start: datetime
    end: datetime  # Start of the last hour in the window
    average_score: float

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "avgScore": self.average_score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BestWindow":
        return cls(
            start=datetime.fromisoformat(data["start"]),
            end=datetime.fromisoformat(data["end"]),
            average_score=data["avgScore"],
        )


@dataclass(frozen=True)
class SiteRanking:
    """A site's best window and runners-up."""
    site_id: str
    best_window: Optional[BestWindow]
    top: list[BestWindow]

    def to_dict(self) -> dict:
        return {
            "siteId": self.site_id,
            "bestWindow": self.best_window.to_dict() if self.best_window else None,
            "top3": [w.to_dict() for w in self.top],
        }


def rank_windows(
    points: Iterable[ForecastPoint],
    hours: int,
    window_size: int = DEFAULT_WINDOW_HOURS,
) -> list[BestWindow]:
    """Rank all contiguous windows by average score.

    Args:
        points: Forecast points for one site, any order
        hours: Only the first `hours` points (chronologically) are considered
        window_size: Window length in hours

    Returns:
        Windows sorted by average score, highest first. Ties keep
        chronological order, so the earliest start wins.
    """
    if window_size < 1 or hours < 1:
        return []

    ordered = sorted(points, key=lambda p: p.time)[:hours]

    windows = []
    for i in range(len(ordered) - window_size + 1):
        block = ordered[i:i + window_size]
        average = sum(p.score for p in block) / len(block)
        windows.append(BestWindow(
            start=block[0].time,
            end=block[-1].time,
            average_score=round(average, 1),
        ))

    # sort() is stable, so equal averages stay in start order
    windows.sort(key=lambda w: w.average_score, reverse=True)
    return windows


def rank_sites(
    table: ForecastTable,
    hours: int,
    window_size: int = DEFAULT_WINDOW_HOURS,
) -> list[SiteRanking]:
    """Rank sites by their best window over the next `hours`.

    Returns:
        One SiteRanking per site, best first; sites without any window last
    """
    rankings = []
    for site_id, site_points in table.items():
        windows = rank_windows(site_points.values(), hours, window_size)
        rankings.append(SiteRanking(
            site_id=site_id,
            best_window=windows[0] if windows else None,
            top=windows[:TOP_WINDOWS],
        ))

    rankings.sort(
        key=lambda r: r.best_window.average_score if r.best_window else 0,
        reverse=True,
    )
    return rankings
