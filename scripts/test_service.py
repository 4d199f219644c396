#!/usr/bin/env python3
"""Tests for the clarity service refresh cycle, queries and scheduler.

Sources are replaced by in-memory fakes and time by a controllable clock.

Run from project root:
    python scripts/test_service.py
    pytest scripts/test_service.py
"""

import asyncio
import math
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clarity.clients.models import (
    PrecipitationSummary,
    SourceResult,
    WaterLevel,
    WaveReading,
    WindReading,
)
from clarity.config import Settings
from clarity.core.gate import RateLimitExceeded
from clarity.core.scheduler import RefreshScheduler
from clarity.core.service import ClarityService
from clarity.core.site import Coordinates, Site, SiteDatabase, UnknownSiteError
from clarity.digests.formatter import ReportFormatter
from clarity.digests.report import ReportGenerator


START = datetime(2024, 6, 1, 10, 20, tzinfo=timezone.utc)

SITES = [
    Site("north", "North Ledge", Coordinates(41.52, -70.67), 315, 0.35),
    Site("east", "East Rocks", Coordinates(41.52, -70.66), 90, 0.7),
]


class Clock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def __call__(self) -> datetime:
        return self.now


class FakeClient:
    """Stands in for a source client; returns queued results."""

    def __init__(self, *results, configured: bool = True, delay: float = 0):
        self.results = list(results)
        self.is_configured = configured
        self.delay = delay
        self.calls = 0

    async def fetch(self) -> SourceResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def tide_levels(around: datetime) -> list[WaterLevel]:
    """Semidiurnal tide from 36h back to 72h ahead."""
    first = around.replace(minute=0, second=0, microsecond=0) - timedelta(hours=36)
    return [
        WaterLevel(
            time=first + timedelta(hours=i),
            level_ft=2.0 + 1.5 * math.sin(2 * math.pi * i / 12.42),
        )
        for i in range(36 + 72)
    ]


def wind(speed: float = 6.0, direction: float = 200.0) -> WindReading:
    return WindReading(time=START, direction_deg=direction, speed_kt=speed)


def waves(height: float = 0.5) -> WaveReading:
    return WaveReading(time=START, height_m=height, period_s=8)


def make_service(
    clock: Clock,
    tides=None,
    wind_client=None,
    rain=None,
    wave_client=None,
    **settings,
) -> ClarityService:
    return ClarityService(
        settings=Settings(openweather_api_key="ow", stormglass_api_key="sg", **settings),
        site_db=SiteDatabase(sites=SITES),
        tides_client=tides or FakeClient(SourceResult.ok(tide_levels(clock()))),
        wind_client=wind_client or FakeClient(SourceResult.ok(wind())),
        openweather_client=rain or FakeClient(SourceResult.ok(PrecipitationSummary(last_72h_mm=3.0))),
        stormglass_client=wave_client or FakeClient(SourceResult.ok(waves())),
        clock=clock,
    )


def test_refresh_builds_table():
    """A healthy refresh fills the snapshot and the whole table."""
    clock = Clock(START)
    service = make_service(clock)

    degraded = asyncio.run(service.refresh())

    assert degraded is False
    snapshot = service.get_snapshot()
    assert snapshot.sources.to_dict() == {
        "coops": True, "ndbc": True, "openweather": True, "stormglass": True,
    }
    assert snapshot.waves.height_m == 0.5
    assert service.last_refreshed_at == START

    table = service.get_forecast_table(24)
    assert set(table) == {"north", "east"}
    for site_points in table.values():
        assert len(site_points) == 24
        assert min(site_points) == datetime(2024, 6, 1, 10, tzinfo=timezone.utc)
        assert all(0 <= p.score <= 100 for p in site_points.values())

    assert all(len(points) == 72 for points in service.get_forecast_table(500).values())


def test_refresh_idempotent():
    """Unchanged inputs rebuild an identical table."""
    clock = Clock(START)
    service = make_service(clock)

    asyncio.run(service.refresh())
    first = service.get_forecast_table(72)
    asyncio.run(service.refresh())
    second = service.get_forecast_table(72)

    assert first == second


def test_degraded_policy():
    """Missing tide or wind degrades; missing rain or waves does not."""
    clock = Clock(START)
    service = make_service(clock, wind_client=FakeClient(SourceResult.unavailable("503")))

    assert asyncio.run(service.refresh()) is True
    assert service.degraded
    assert service.get_snapshot().wind is None
    assert all(len(points) == 72 for points in service.get_forecast_table(72).values())

    service = make_service(
        clock,
        rain=FakeClient(SourceResult.unavailable("429")),
        wave_client=FakeClient(SourceResult.unavailable("402")),
    )
    assert asyncio.run(service.refresh()) is False
    assert not service.get_snapshot().sources.stormglass


def test_source_exception_is_isolated():
    """An adapter blowing up only marks its own source unavailable."""
    clock = Clock(START)
    service = make_service(clock, tides=FakeClient(RuntimeError("boom")))

    assert asyncio.run(service.refresh()) is True
    snapshot = service.get_snapshot()
    assert snapshot.water_levels == []
    assert snapshot.wind is not None
    assert service.tide_flow == {}


def test_unconfigured_sources_skipped():
    """Sources without API keys are never called."""
    clock = Clock(START)
    rain = FakeClient(SourceResult.ok(PrecipitationSummary(last_72h_mm=3.0)), configured=False)
    wave_client = FakeClient(SourceResult.ok(waves()), configured=False)
    service = make_service(clock, rain=rain, wave_client=wave_client)

    assert asyncio.run(service.refresh()) is False
    assert rain.calls == 0
    assert wave_client.calls == 0
    assert service.get_gate_status("stormglass").enabled is False


def test_overlapping_refresh_skipped():
    clock = Clock(START)
    tides = FakeClient(SourceResult.ok(tide_levels(START)), delay=0.01)
    service = make_service(clock, tides=tides)

    async def run_both():
        return await asyncio.gather(service.refresh(), service.refresh())

    asyncio.run(run_both())

    assert tides.calls == 1
    assert not service.is_refreshing


def test_hung_source_is_bounded():
    """A source that never answers is cut off and marked unavailable."""
    clock = Clock(START)
    tides = FakeClient(SourceResult.ok(tide_levels(START)))
    wind_client = FakeClient(SourceResult.ok(wind()), delay=1)
    service = make_service(clock, tides=tides, wind_client=wind_client, source_timeout_seconds=0.01)

    assert asyncio.run(service.refresh()) is True
    snapshot = service.get_snapshot()
    assert snapshot.wind is None
    assert snapshot.sources.ndbc is False
    assert snapshot.sources.coops is True
    assert snapshot.waves.height_m == 0.5
    assert service.last_refreshed_at == START
    assert all(len(points) == 24 for points in service.get_forecast_table(24).values())


def test_hung_wave_source_serves_stale():
    """A timed-out wave fetch keeps the last cached reading and still counts."""
    clock = Clock(START)
    wave_client = FakeClient(SourceResult.ok(waves(0.5)), SourceResult.ok(waves(1.5)))
    service = make_service(clock, wave_client=wave_client, source_timeout_seconds=0.01)
    asyncio.run(service.refresh())

    clock.advance(hours=4)
    wave_client.delay = 1
    degraded = asyncio.run(service.refresh())

    assert degraded is False
    snapshot = service.get_snapshot()
    assert snapshot.waves.height_m == 0.5
    assert snapshot.sources.stormglass is True
    assert service.get_gate_status("stormglass").requests_used == 2


def test_table_rolls_past_hour_boundary():
    """Queries after the hour turns still see a full horizon from the current hour."""
    clock = Clock(START)
    service = make_service(clock)
    asyncio.run(service.refresh())

    clock.advance(minutes=45)
    current_hour = datetime(2024, 6, 1, 11, tzinfo=timezone.utc)

    table = service.get_forecast_table(72)
    for site_points in table.values():
        assert len(site_points) == 72
        assert min(site_points) == current_hour
        assert max(site_points) == current_hour + timedelta(hours=71)

    windows = service.rank_windows("north", 72)
    assert len(windows) == 71
    assert all(current_hour <= w.start and w.end <= current_hour + timedelta(hours=71) for w in windows)
    assert len(service.site_forecast("east", 72)["forecast"]) == 72
    assert service.last_refreshed_at == START


def test_forced_waves_during_refresh_kept():
    """A forced wave reading that lands mid-refresh is not replaced by the older one."""
    clock = Clock(START)
    tides = FakeClient(SourceResult.ok(tide_levels(START)), delay=0.05)
    wave_client = FakeClient(SourceResult.ok(waves(0.5)), SourceResult.ok(waves(1.5)))
    service = make_service(clock, tides=tides, wave_client=wave_client, stormglass_max_daily_requests=2)

    async def force_later():
        await asyncio.sleep(0.01)
        return await service.force_wave_refresh()

    async def run_both():
        return await asyncio.gather(service.refresh(), force_later())

    _, forced = asyncio.run(run_both())

    assert forced.height_m == 1.5
    assert wave_client.calls == 2
    assert service.get_snapshot().waves.height_m == 1.5
    assert service.raw_wave_cache()["current"]["Hs_m"] == 1.5


def test_set_weights_rebuilds():
    """Recalibrated weights apply to the whole table."""
    clock = Clock(START)
    service = make_service(clock)
    asyncio.run(service.refresh())
    before = service.get_forecast_table(24)

    weights = service.set_weights(wind=0)

    assert weights.wind == 0
    assert service.get_weights().onshore == 2.5
    after = service.get_forecast_table(24)
    for site_id, points in after.items():
        for t, point in points.items():
            assert point.score > before[site_id][t].score

    with pytest.raises(ValueError):
        service.set_weights(rain=-1)
    assert service.get_weights().rain == 1.0


def test_rank_windows():
    clock = Clock(START)
    service = make_service(clock)
    asyncio.run(service.refresh())

    windows = service.rank_windows("north", 24)
    assert len(windows) == 23
    assert windows[0].average_score >= windows[-1].average_score

    assert len(service.rank_windows("north", 24, window_size=4)) == 21

    with pytest.raises(UnknownSiteError):
        service.rank_windows("nowhere", 24)


def test_wave_quota_day_boundary_via_refresh():
    """The daily wave quota resets on the first refresh of a new UTC day."""
    clock = Clock(datetime(2024, 6, 1, 23, 30, tzinfo=timezone.utc))
    wave_client = FakeClient(SourceResult.ok(waves()))
    service = make_service(clock, wave_client=wave_client, stormglass_max_daily_requests=1)

    asyncio.run(service.refresh())
    clock.advance(hours=4)
    asyncio.run(service.refresh())

    assert wave_client.calls == 2
    status = service.get_gate_status("stormglass")
    assert status.requests_used == 1
    assert status.window_marker == "2024-06-02"


def test_wave_quota_day_boundary_via_status():
    """A status query after midnight already shows the reset counter."""
    clock = Clock(datetime(2024, 6, 1, 23, 30, tzinfo=timezone.utc))
    service = make_service(clock)

    asyncio.run(service.refresh())
    assert service.get_gate_status("stormglass").requests_used == 1

    clock.advance(hours=1)
    assert service.get_gate_status("stormglass").requests_used == 0
    assert service.health()["stormglass"]["requestsUsed"] == 0


def test_wave_cache_between_refreshes():
    """Hourly refreshes reuse waves until the cache expires."""
    clock = Clock(START)
    wave_client = FakeClient(SourceResult.ok(waves()))
    service = make_service(clock, wave_client=wave_client)

    for _ in range(3):
        asyncio.run(service.refresh())
        clock.advance(hours=1)

    assert wave_client.calls == 1
    asyncio.run(service.refresh())  # 3h after the first fetch
    assert wave_client.calls == 2


def test_force_wave_refresh():
    """Forced refresh updates waves and the table, within the quota."""
    clock = Clock(START)
    wave_client = FakeClient(SourceResult.ok(waves(0.5)), SourceResult.ok(waves(1.5)))
    service = make_service(clock, wave_client=wave_client, stormglass_max_daily_requests=2)
    asyncio.run(service.refresh())
    before = service.get_forecast_table(24)

    reading = asyncio.run(service.force_wave_refresh())

    assert reading.height_m == 1.5
    assert service.get_snapshot().waves.height_m == 1.5
    after = service.get_forecast_table(24)
    for t, point in after["east"].items():
        assert point.score < before["east"][t].score

    with pytest.raises(RateLimitExceeded):
        asyncio.run(service.force_wave_refresh())
    assert wave_client.calls == 2


def test_gate_status_unknown_source():
    service = make_service(Clock(START))
    assert service.get_gate_status("openweather").ceiling == 50
    with pytest.raises(KeyError):
        service.get_gate_status("ndbc")


def test_current_conditions():
    clock = Clock(START)
    service = make_service(clock)
    asyncio.run(service.refresh())

    now = service.current_conditions()

    assert now["degraded"] is False
    assert [s["siteId"] for s in now["sites"]] == ["north", "east"]
    for site in now["sites"]:
        assert site["trendNext6h"] in ("rising", "falling", "flat")
        assert site["tidePhase"] in ("slack", "moderate-flow", "strong-flow")
        assert site["wind"]["onshoreKt"] == 0.0  # Wind from 200 is offshore at both
        assert site["bestWindowToday"] is not None
        assert site["rain"] == {"last72h_mm": 3.0}
    assert now["bestSiteNow"]["siteId"] in ("north", "east")
    assert now["bestSiteNow"]["reason"] == "Excellent conditions"


def test_site_forecast_and_rankings():
    clock = Clock(START)
    service = make_service(clock)
    asyncio.run(service.refresh())

    forecast = service.site_forecast("east", hours=12)
    assert forecast["site"]["id"] == "east"
    assert len(forecast["forecast"]) == 12
    assert len(forecast["bestWindows"]) == 3

    rankings = service.rankings()
    assert {r.site_id for r in rankings} == {"north", "east"}
    assert rankings[0].best_window.average_score >= rankings[1].best_window.average_score

    with pytest.raises(UnknownSiteError):
        service.site_forecast("nowhere")


def test_raw_views_and_health():
    clock = Clock(START)
    service = make_service(clock)

    health = service.health()
    assert health["lastRefreshedAt"] is None

    asyncio.run(service.refresh())

    health = service.health()
    assert health["ok"] is True
    assert health["lastRefreshedAt"] == START.isoformat()
    assert health["sources"]["coops"] is True
    assert len(service.raw_tides()["waterLevels"]) == 108
    assert service.raw_wave_cache()["current"]["Hs_m"] == 0.5
    assert service.raw_wave_cache()["cache"]["cacheValid"] is True


def test_observations():
    clock = Clock(START)
    service = make_service(clock)

    first = service.add_observation("north", secchi_meters=4.5, clarity_note="good")
    clock.advance(minutes=5)
    second = service.add_observation("east", clarity_note="murky")

    assert [o.id for o in service.list_observations()] == [second.id, first.id]
    assert service.list_observations(site_id="north") == [first]
    assert service.list_observations(limit=1) == [second]

    with pytest.raises(UnknownSiteError):
        service.add_observation("nowhere")
    with pytest.raises(ValueError):
        service.add_observation("north", clarity_note="sparkly")
    with pytest.raises(ValueError):
        service.add_observation("north", secchi_meters=-1)


def test_report_formatting():
    clock = Clock(START)
    service = make_service(clock)
    asyncio.run(service.refresh())

    report = ReportGenerator(service).generate(hours=24)

    assert report.errors == []
    assert len(report.sites) == 2
    assert report.best_site is not None
    conditions = {c["siteId"]: c for c in service.current_conditions()["sites"]}
    for summary in report.sites:
        best_today = service.rank_windows(summary.site.id, 24 - START.hour)[0]
        assert summary.best_window_today == best_today
        assert summary.best_window_today.to_dict() == conditions[summary.site.id]["bestWindowToday"]
    text = ReportFormatter(report).format_text()
    assert "WOODS HOLE WATER CLARITY" in text
    assert "North Ledge" in text
    assert '"bestSiteNow"' in ReportFormatter(report).format_json()


def test_site_registry_yaml():
    """The bundled registry loads with valid bearings and exposures."""
    site_db = SiteDatabase()

    assert site_db.site_count == 4
    stoney = site_db.require_site("stoney-beach")
    assert stoney.shoreline_bearing_toward_shore == 315
    assert stoney.exposure == 0.35
    for site in site_db.get_all_sites():
        assert 0 <= site.exposure <= 1
        assert 0 <= site.shoreline_bearing_toward_shore < 360

    assert site_db.get_site("nowhere") is None
    with pytest.raises(UnknownSiteError):
        site_db.require_site("nowhere")


def test_scheduler_marks_degraded_on_error():
    service = make_service(Clock(START))

    async def broken_refresh():
        raise RuntimeError("boom")

    service.refresh = broken_refresh
    scheduler = RefreshScheduler(service, interval_minutes=60)

    asyncio.run(scheduler.run_once())

    assert service.degraded


def test_scheduler_start_stop():
    """The scheduler refreshes immediately and stops cleanly."""
    service = make_service(Clock(START))
    seen = []

    async def run():
        refreshed = asyncio.Event()

        def on_refresh(svc):
            seen.append(svc)
            refreshed.set()

        scheduler = RefreshScheduler(service, interval_minutes=60, on_refresh=on_refresh)
        scheduler.start()
        assert scheduler.running
        await asyncio.wait_for(refreshed.wait(), timeout=5)
        await scheduler.stop()
        return scheduler

    scheduler = asyncio.run(run())

    assert not scheduler.running
    assert seen == [service]
    assert service.last_refreshed_at == START

    with pytest.raises(ValueError):
        RefreshScheduler(service, interval_minutes=0)


def run_all_tests():
    """Run all service tests."""
    print("\n" + "="*60)
    print("CLARITY SERVICE TEST SUITE")
    print("="*60)

    tests = [
        ("Refresh Builds Table", test_refresh_builds_table),
        ("Refresh Idempotent", test_refresh_idempotent),
        ("Degraded Policy", test_degraded_policy),
        ("Source Exception Isolated", test_source_exception_is_isolated),
        ("Unconfigured Sources Skipped", test_unconfigured_sources_skipped),
        ("Overlapping Refresh Skipped", test_overlapping_refresh_skipped),
        ("Hung Source Is Bounded", test_hung_source_is_bounded),
        ("Hung Wave Source Serves Stale", test_hung_wave_source_serves_stale),
        ("Table Rolls Past Hour Boundary", test_table_rolls_past_hour_boundary),
        ("Forced Waves During Refresh Kept", test_forced_waves_during_refresh_kept),
        ("Set Weights Rebuilds", test_set_weights_rebuilds),
        ("Rank Windows", test_rank_windows),
        ("Wave Quota Day Boundary (refresh)", test_wave_quota_day_boundary_via_refresh),
        ("Wave Quota Day Boundary (status)", test_wave_quota_day_boundary_via_status),
        ("Wave Cache Between Refreshes", test_wave_cache_between_refreshes),
        ("Force Wave Refresh", test_force_wave_refresh),
        ("Gate Status Unknown Source", test_gate_status_unknown_source),
        ("Current Conditions", test_current_conditions),
        ("Site Forecast And Rankings", test_site_forecast_and_rankings),
        ("Raw Views And Health", test_raw_views_and_health),
        ("Observations", test_observations),
        ("Report Formatting", test_report_formatting),
        ("Site Registry YAML", test_site_registry_yaml),
        ("Scheduler Marks Degraded", test_scheduler_marks_degraded_on_error),
        ("Scheduler Start/Stop", test_scheduler_start_stop),
    ]

    passed = 0
    failed = 0

    for name, test_func in tests:
        try:
            test_func()
            passed += 1
            print(f"  ✓ {name}")
        except AssertionError as e:
            failed += 1
            print(f"\n  ✗ FAILED: {name}")
            print(f"    Error: {e}")
        except Exception as e:
            failed += 1
            print(f"\n  ✗ ERROR: {name}")
            print(f"    Exception: {e}")

    print("\n" + "="*60)
    print(f"  Passed: {passed}  Failed: {failed}  Total: {len(tests)}")
    print("="*60)

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
