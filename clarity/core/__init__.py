"""Core clarity scoring, forecasting and ranking engine."""

from clarity.core.conditions import EnvironmentalSnapshot, SourceStatus
from clarity.core.forecast import (
    ForecastBuilder,
    ForecastPoint,
    ForecastTable,
    TideFlowSeries,
    compute_tide_flow,
    tide_phase,
)
from clarity.core.gate import (
    GateStatus,
    QuotaWindow,
    RateLimitExceeded,
    RateLimitGate,
)
from clarity.core.observations import Observation, ObservationLog
from clarity.core.ranker import BestWindow, SiteRanking, rank_sites, rank_windows
from clarity.core.scorer import (
    DEFAULT_WEIGHTS,
    ClarityScorer,
    ScoreComponents,
    ScoringResult,
    Weights,
    describe_score,
    quick_score,
)
from clarity.core.site import (
    Coordinates,
    Site,
    SiteDatabase,
    UnknownSiteError,
    get_site_database,
)
from clarity.core.service import ClarityService
from clarity.core.scheduler import RefreshScheduler

__all__ = [
    # Conditions
    "EnvironmentalSnapshot",
    "SourceStatus",
    # Forecast
    "ForecastBuilder",
    "ForecastPoint",
    "ForecastTable",
    "TideFlowSeries",
    "compute_tide_flow",
    "tide_phase",
    # Gate
    "GateStatus",
    "QuotaWindow",
    "RateLimitExceeded",
    "RateLimitGate",
    # Observations
    "Observation",
    "ObservationLog",
    # Ranker
    "BestWindow",
    "SiteRanking",
    "rank_sites",
    "rank_windows",
    # Scorer
    "DEFAULT_WEIGHTS",
    "ClarityScorer",
    "ScoreComponents",
    "ScoringResult",
    "Weights",
    "describe_score",
    "quick_score",
    # Site
    "Coordinates",
    "Site",
    "SiteDatabase",
    "UnknownSiteError",
    "get_site_database",
    # Service
    "ClarityService",
    "RefreshScheduler",
]
