"""Clarity service: refresh orchestration and query operations.

This is the main orchestration layer that connects:
- Site registry (site.py)
- Source clients (clients/), the metered ones behind rate gates (gate.py)
- Scoring and forecast table (scorer.py, forecast.py)
- Best window ranking (ranker.py)

All state lives on one ClarityService instance. A refresh fetches every
source concurrently and then swaps in the new snapshot, tide flow and
forecast table in one synchronous step, so queries never observe a
partially updated state.
"""

import asyncio
import logging
import time
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from clarity.clients.models import SourceResult, WaveReading
from clarity.clients.ndbc_wind_client import NDBCWindClient
from clarity.clients.noaa_tides_client import NOAATidesClient
from clarity.clients.openweather_client import OpenWeatherClient
from clarity.clients.stormglass_client import StormglassClient
from clarity.config import Settings
from clarity.core.conditions import EnvironmentalSnapshot, SourceStatus
from clarity.core.forecast import (
    ForecastBuilder,
    ForecastPoint,
    ForecastTable,
    TideFlowSeries,
    compute_tide_flow,
    tide_phase,
)
from clarity.core.gate import GateStatus, QuotaWindow, RateLimitGate
from clarity.core.observations import ObservationLog, Observation
from clarity.core.ranker import (
    DEFAULT_WINDOW_HOURS,
    TOP_WINDOWS,
    BestWindow,
    SiteRanking,
    rank_sites,
    rank_windows,
)
from clarity.core.scorer import (
    DEFAULT_WEIGHTS,
    ClarityScorer,
    Weights,
    describe_score,
    onshore_component,
)
from clarity.core.site import SiteDatabase, get_site_database
from clarity.units import hourly_timestamps, truncate_to_hour, utcnow


logger = logging.getLogger(__name__)

DEFAULT_FORECAST_HOURS = 48
DEFAULT_RANKING_HOURS = 24
TREND_HOURS = 6
TREND_THRESHOLD = 5


class ClarityService:
    """Owns the environmental snapshot, rate gates and forecast table."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        site_db: Optional[SiteDatabase] = None,
        tides_client: Optional[NOAATidesClient] = None,
        wind_client: Optional[NDBCWindClient] = None,
        openweather_client: Optional[OpenWeatherClient] = None,
        stormglass_client: Optional[StormglassClient] = None,
        weights: Weights = DEFAULT_WEIGHTS,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the service with optional dependency injection.

        Args:
            settings: Service settings. Defaults to Settings.from_env().
            site_db: Site registry. Defaults to config/sites.yaml.
            tides_client: NOAA CO-OPS water level client.
            wind_client: NDBC wind client.
            openweather_client: OpenWeather precipitation client.
            stormglass_client: Stormglass wave client.
            weights: Initial penalty weights.
            clock: Returns the current UTC time.
        """
        self.settings = settings or Settings.from_env()
        self.clock = clock

        if site_db is None:
            site_db = SiteDatabase(self.settings.sites_path) if self.settings.sites_path else get_site_database()
        self.site_db = site_db

        timeout = self.settings.source_timeout_seconds
        self.tides = tides_client or NOAATidesClient(
            station_id=self.settings.coops_station,
            history_hours=self.settings.tide_history_hours,
            horizon_hours=self.settings.max_forecast_hours,
            timeout=timeout,
        )
        self.wind = wind_client or NDBCWindClient(station_id=self.settings.ndbc_station, timeout=timeout)
        self.openweather = openweather_client or OpenWeatherClient(
            api_key=self.settings.openweather_api_key,
            lat=self.settings.lat,
            lon=self.settings.lon,
            timeout=timeout,
        )
        self.stormglass = stormglass_client or StormglassClient(
            api_key=self.settings.stormglass_api_key,
            lat=self.settings.lat,
            lon=self.settings.lon,
            timeout=timeout,
        )

        # Wind may walk through several endpoints, each with its own timeout
        self.fetch_timeout = timeout * 3

        self.wave_gate: RateLimitGate[WaveReading] = RateLimitGate(
            name="stormglass",
            fetcher=self.stormglass.fetch,
            ceiling=self.settings.stormglass_max_daily_requests,
            window=QuotaWindow.DAY,
            cache_duration=timedelta(hours=self.settings.stormglass_cache_hours),
            enabled=getattr(self.stormglass, "is_configured", True),
            timeout=self.fetch_timeout,
            clock=clock,
        )
        self.precip_gate = RateLimitGate(
            name="openweather",
            fetcher=self.openweather.fetch,
            ceiling=self.settings.openweather_max_requests_per_minute,
            window=QuotaWindow.MINUTE,
            enabled=getattr(self.openweather, "is_configured", True),
            timeout=self.fetch_timeout,
            clock=clock,
        )
        self._gates = {
            "stormglass": self.wave_gate,
            "waves": self.wave_gate,
            "openweather": self.precip_gate,
            "precipitation": self.precip_gate,
        }

        self.scorer = ClarityScorer(weights)
        self.builder = ForecastBuilder(
            self.site_db.get_all_sites(),
            self.scorer,
            max_hours=self.settings.max_forecast_hours,
        )
        self.observations = ObservationLog(self.site_db, clock=clock)

        self.snapshot = EnvironmentalSnapshot()
        self.tide_flow: TideFlowSeries = {}
        self.forecast_table: ForecastTable = {}
        self.degraded = False
        self.last_refreshed_at: Optional[datetime] = None
        self._table_start: Optional[datetime] = None
        self._refreshing = False

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def _settle(
        self,
        name: str,
        call: Callable[[], Awaitable[SourceResult]],
        timeout: Optional[float],
    ) -> SourceResult:
        """Await a source, optionally bounded; any failure is unavailable.

        Gated sources pass no timeout: the gate bounds its own live fetch.
        """
        try:
            return await asyncio.wait_for(call(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{name} timed out after {timeout}s")
            return SourceResult.unavailable(f"{name} timed out")
        except Exception as e:
            logger.error(f"{name} failed unexpectedly: {e}")
            return SourceResult.unavailable(str(e))

    @property
    def is_refreshing(self) -> bool:
        return self._refreshing

    async def refresh(self) -> bool:
        """Fetch all sources and rebuild the forecast table.

        An overlapping call is skipped and reports the current state.

        Returns:
            True if running in degraded mode (tide or wind unavailable)
        """
        if self._refreshing:
            logger.warning("Refresh already in progress - skipping")
            return self.degraded

        self._refreshing = True
        try:
            return await self._refresh()
        finally:
            self._refreshing = False

    async def _refresh(self) -> bool:
        logger.info("Refreshing data from all sources...")
        started = time.monotonic()

        tides, wind, precip, waves = await asyncio.gather(
            self._settle("tides", self.tides.fetch, self.fetch_timeout),
            self._settle("wind", self.wind.fetch, self.fetch_timeout),
            self._settle("precipitation", self.precip_gate.get, None),
            self._settle("waves", self.wave_gate.get, None),
        )

        # A forced wave fetch may have landed while the others were in flight
        latest_waves = self.wave_gate.state.cached_value if waves.available else None

        snapshot = EnvironmentalSnapshot(
            water_levels=list(tides.value or []),
            wind=wind.value,
            precipitation=precip.value,
            waves=latest_waves,
            sources=SourceStatus(
                coops=bool(tides.value),
                ndbc=wind.available,
                openweather=precip.available,
                stormglass=waves.available,
            ),
        )
        tide_flow = compute_tide_flow(snapshot.water_levels)

        degraded = not snapshot.critical_sources_available
        if degraded:
            logger.warning("Critical data sources unavailable - operating in degraded mode")

        start = self.clock()
        table = self.builder.build(snapshot, tide_flow, start=start)

        self.snapshot = snapshot
        self.tide_flow = tide_flow
        self.forecast_table = table
        self._table_start = truncate_to_hour(start)
        self.degraded = degraded
        self.last_refreshed_at = self.clock()

        duration_ms = round((time.monotonic() - started) * 1000)
        logger.info(
            f"Data refresh completed in {duration_ms}ms - "
            f"tides={len(snapshot.water_levels)}h, "
            f"wind={'OK' if wind.available else 'FAIL'}, "
            f"rain={'OK' if precip.available else 'SKIP'}, "
            f"waves={'OK' if waves.available else 'SKIP'}"
        )
        return degraded

    def mark_degraded(self) -> None:
        self.degraded = True

    def rebuild_forecast(self) -> None:
        """Recompute the whole forecast table from the current snapshot."""
        start = self.clock()
        self.forecast_table = self.builder.build(self.snapshot, self.tide_flow, start=start)
        self._table_start = truncate_to_hour(start)

    def _ensure_current_table(self) -> None:
        """Rebuild once the clock has moved past the table's first hour."""
        if self._table_start is not None and self._table_start < truncate_to_hour(self.clock()):
            logger.debug("Forecast table starts in a past hour - rebuilding")
            self.rebuild_forecast()

    async def force_wave_refresh(self) -> Optional[WaveReading]:
        """Fetch waves now, bypassing the cache but not the daily quota.

        Raises:
            RateLimitExceeded: If the daily quota is used up
        """
        result = await self.wave_gate.force_refresh()

        if result.available:
            self.snapshot = replace(
                self.snapshot,
                waves=result.value,
                sources=replace(self.snapshot.sources, stormglass=True),
            )
            self.rebuild_forecast()

        return result.value

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def get_weights(self) -> Weights:
        return self.scorer.weights

    def set_weights(self, **changes: float) -> Weights:
        """Merge new weights and rebuild the forecast table.

        Raises:
            ValueError: On unknown or negative weights
        """
        self.scorer.weights = self.scorer.weights.update(**changes)
        self.rebuild_forecast()
        logger.info(f"Weights updated: {self.scorer.weights.to_dict()}")
        return self.scorer.weights

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_snapshot(self) -> EnvironmentalSnapshot:
        return self.snapshot

    def _site_points(self, site_id: str, hours: int) -> list[ForecastPoint]:
        """Chronological points for a site from the current hour on."""
        self._ensure_current_table()
        current_hour = truncate_to_hour(self.clock())
        points = self.forecast_table.get(site_id, {})
        upcoming = sorted(
            (p for t, p in points.items() if t >= current_hour),
            key=lambda p: p.time,
        )
        return upcoming[:max(0, hours)]

    def get_forecast_table(self, hours: int = DEFAULT_FORECAST_HOURS) -> ForecastTable:
        """Forecast points per site for the next `hours` (capped at the maximum)."""
        self._ensure_current_table()
        hours = min(hours, self.settings.max_forecast_hours)
        return {
            site_id: {p.time: p for p in self._site_points(site_id, hours)}
            for site_id in self.forecast_table
        }

    def rank_windows(
        self,
        site_id: str,
        hours: int,
        window_size: int = DEFAULT_WINDOW_HOURS,
    ) -> list[BestWindow]:
        """Best windows for one site over the next `hours`.

        Raises:
            UnknownSiteError: If the site is not in the registry
        """
        self.site_db.require_site(site_id)
        return rank_windows(self._site_points(site_id, hours), hours, window_size)

    def rankings(
        self,
        hours: int = DEFAULT_RANKING_HOURS,
        window_size: int = DEFAULT_WINDOW_HOURS,
    ) -> list[SiteRanking]:
        """Sites ranked by their best window."""
        hours = min(hours, self.settings.max_forecast_hours)
        return rank_sites(self.get_forecast_table(hours), hours, window_size)

    def site_forecast(self, site_id: str, hours: int = DEFAULT_FORECAST_HOURS) -> dict:
        """A site's hourly forecast with its top windows.

        Raises:
            UnknownSiteError: If the site is not in the registry
        """
        site = self.site_db.require_site(site_id)
        hours = min(hours, self.settings.max_forecast_hours)
        return {
            "site": site.to_dict(),
            "forecast": [p.to_dict() for p in self._site_points(site_id, hours)],
            "bestWindows": [w.to_dict() for w in self.rank_windows(site_id, hours)[:TOP_WINDOWS]],
        }

    def current_conditions(self) -> dict:
        """Current score, trend and best remaining window for every site."""
        self._ensure_current_table()
        now = self.clock()
        current_hour = truncate_to_hour(now)
        snapshot = self.snapshot
        sites = []
        best_site = {"siteId": "", "score": 0, "reason": ""}

        for site in self.site_db.get_all_sites():
            site_points = self.forecast_table.get(site.id)
            if not site_points:
                continue

            current = site_points.get(current_hour)
            current_score = current.score if current else 0

            trend_scores = [
                site_points[t].score if t in site_points else 0
                for t in hourly_timestamps(now, TREND_HOURS)
            ]
            change = trend_scores[-1] - trend_scores[0]
            if change > TREND_THRESHOLD:
                trend = "rising"
            elif change < -TREND_THRESHOLD:
                trend = "falling"
            else:
                trend = "flat"

            hours_remaining = 24 - now.hour
            windows = rank_windows(self._site_points(site.id, hours_remaining), hours_remaining)

            wind: Optional[dict[str, Any]] = None
            if snapshot.wind is not None:
                onshore = onshore_component(
                    snapshot.wind.direction_deg,
                    snapshot.wind.speed_kt,
                    site.shoreline_bearing_toward_shore,
                )
                wind = {
                    "t": snapshot.wind.time.isoformat(),
                    "dirDeg": snapshot.wind.direction_deg,
                    "speedKt": round(snapshot.wind.speed_kt, 1),
                    "onshoreKt": round(onshore, 1),
                }

            sites.append({
                "siteId": site.id,
                "currentScore": round(current_score),
                "trendNext6h": trend,
                "tidePhase": tide_phase(self.tide_flow.get(current_hour, 0.0)),
                "wind": wind,
                "rain": {"last72h_mm": round(snapshot.precipitation.last_72h_mm, 1)}
                if snapshot.precipitation else None,
                "waves": {"Hs_m": round(snapshot.waves.height_m, 1), "Tp_s": snapshot.waves.period_s}
                if snapshot.waves else None,
                "bestWindowToday": windows[0].to_dict() if windows else None,
            })

            if current_score > best_site["score"]:
                best_site = {
                    "siteId": site.id,
                    "score": round(current_score),
                    "reason": describe_score(current_score),
                }

        return {
            "generatedAt": now.isoformat(),
            "bestSiteNow": best_site,
            "sites": sites,
            "degraded": self.degraded,
        }

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_gate_status(self, source: str) -> GateStatus:
        """Quota and cache status of a metered source.

        Raises:
            KeyError: If the source is not gated
        """
        return self._gates[source.lower()].status()

    def health(self) -> dict:
        return {
            "ok": True,
            "lastRefreshedAt": self.last_refreshed_at.isoformat() if self.last_refreshed_at else None,
            "degraded": self.degraded,
            "sources": self.snapshot.sources.to_dict(),
            "openweather": self.precip_gate.status().to_dict(),
            "stormglass": self.wave_gate.status().to_dict(),
        }

    def raw_tides(self) -> dict:
        return {
            "waterLevels": [
                {"t": w.time.isoformat(), "level_ft": w.level_ft} for w in self.snapshot.water_levels
            ],
            "tideFlow": {t.isoformat(): flow for t, flow in sorted(self.tide_flow.items())},
        }

    def raw_wave_cache(self) -> dict:
        waves = self.snapshot.waves
        return {
            "current": {"t": waves.time.isoformat(), "Hs_m": waves.height_m, "Tp_s": waves.period_s}
            if waves else None,
            "cache": self.wave_gate.status().to_dict(),
        }

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    def add_observation(self, site_id: str, **fields: Any) -> Observation:
        return self.observations.add(site_id, **fields)

    def list_observations(self, site_id: Optional[str] = None, limit: int = 50) -> list[Observation]:
        return self.observations.recent(site_id, limit)
