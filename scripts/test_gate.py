#!/usr/bin/env python3
"""Tests for the rate-limited cache gate.

Run from project root:
    python scripts/test_gate.py
    pytest scripts/test_gate.py
"""

import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from clarity.clients.models import SourceResult, WaveReading
from clarity.core.gate import QuotaWindow, RateLimitExceeded, RateLimitGate


class Clock:
    """Controllable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)

    def __call__(self) -> datetime:
        return self.now


class FakeSource:
    """Counts calls and returns queued results."""

    def __init__(self, *results: SourceResult):
        self.results = list(results)
        self.calls = 0

    async def fetch(self) -> SourceResult:
        self.calls += 1
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


class SlowSource(FakeSource):
    """FakeSource that sleeps before answering."""

    def __init__(self, *results: SourceResult, delay: float = 0):
        super().__init__(*results)
        self.delay = delay

    async def fetch(self) -> SourceResult:
        await asyncio.sleep(self.delay)
        return await super().fetch()


def wave(height: float) -> WaveReading:
    return WaveReading(time=datetime(2024, 6, 1, tzinfo=timezone.utc), height_m=height, period_s=8)


def make_gate(source: FakeSource, clock: Clock, ceiling: int = 8, hours: float = 3) -> RateLimitGate:
    return RateLimitGate(
        name="stormglass",
        fetcher=source.fetch,
        ceiling=ceiling,
        window=QuotaWindow.DAY,
        cache_duration=timedelta(hours=hours),
        clock=clock,
    )


def test_cache_window():
    """A fresh cached value is served without a network call."""
    clock = Clock(datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc))
    source = FakeSource(SourceResult.ok(wave(0.6)), SourceResult.ok(wave(0.9)))
    gate = make_gate(source, clock)

    first = asyncio.run(gate.get())
    clock.advance(hours=2, minutes=59)
    second = asyncio.run(gate.get())

    assert first.value.height_m == 0.6
    assert second.value.height_m == 0.6
    assert source.calls == 1
    assert gate.status().requests_used == 1

    clock.advance(minutes=1)  # Exactly 3h old: stale
    third = asyncio.run(gate.get())
    assert third.value.height_m == 0.9
    assert source.calls == 2
    assert gate.status().requests_used == 2


def test_quota_exhaustion_serves_stale():
    """Throttled gate returns the last value regardless of age."""
    clock = Clock(datetime(2024, 6, 1, 0, 30, tzinfo=timezone.utc))
    source = FakeSource(SourceResult.ok(wave(0.5)))
    gate = make_gate(source, clock, ceiling=2)

    for _ in range(2):
        asyncio.run(gate.get())
        clock.advance(hours=4)

    assert source.calls == 2
    result = asyncio.run(gate.get())
    assert result.available
    assert result.value.height_m == 0.5
    assert source.calls == 2  # No call past the ceiling

    status = gate.status()
    assert status.requests_used == 2
    assert not status.cache_valid


def test_quota_exhausted_without_cache():
    """Throttled gate with an empty cache is unavailable."""
    clock = Clock(datetime(2024, 6, 1, 0, 30, tzinfo=timezone.utc))
    source = FakeSource(SourceResult.unavailable("503"))
    gate = make_gate(source, clock, ceiling=1)

    first = asyncio.run(gate.get())
    second = asyncio.run(gate.get())

    assert not first.available
    assert not second.available
    assert source.calls == 1
    assert gate.status().requests_used == 1  # Failed request still counts


def test_stale_if_error():
    """A failed fetch falls back to the cached value."""
    clock = Clock(datetime(2024, 6, 1, 6, 0, tzinfo=timezone.utc))
    source = FakeSource(SourceResult.ok(wave(1.1)), SourceResult.unavailable("timeout"))
    gate = make_gate(source, clock)

    asyncio.run(gate.get())
    clock.advance(hours=4)
    result = asyncio.run(gate.get())

    assert result.value.height_m == 1.1
    assert source.calls == 2
    # Failed fetch does not refresh the cache timestamp
    assert gate.status().last_fetched_at == datetime(2024, 6, 1, 6, 0, tzinfo=timezone.utc)


def test_slow_fetch_serves_stale():
    """A live fetch that outlasts the timeout falls back to the cached value."""
    clock = Clock(datetime(2024, 6, 1, 6, 0, tzinfo=timezone.utc))
    source = SlowSource(SourceResult.ok(wave(1.1)), SourceResult.ok(wave(2.0)))
    gate = RateLimitGate(
        name="stormglass",
        fetcher=source.fetch,
        ceiling=8,
        cache_duration=timedelta(hours=3),
        timeout=0.05,
        clock=clock,
    )

    asyncio.run(gate.get())
    clock.advance(hours=4)
    source.delay = 1
    result = asyncio.run(gate.get())

    assert result.available
    assert result.value.height_m == 1.1
    # The abandoned request still counts
    assert gate.status().requests_used == 2
    assert gate.status().last_fetched_at == datetime(2024, 6, 1, 6, 0, tzinfo=timezone.utc)


def test_slow_fetch_without_cache():
    clock = Clock(datetime(2024, 6, 1, 6, 0, tzinfo=timezone.utc))
    source = SlowSource(SourceResult.ok(3.0), delay=1)
    gate = RateLimitGate("openweather", source.fetch, ceiling=2, window=QuotaWindow.MINUTE,
                         timeout=0.05, clock=clock)

    result = asyncio.run(gate.get())

    assert not result.available
    assert "timed out" in result.reason
    assert gate.status().requests_used == 1


def test_day_boundary_reset_on_get():
    """The counter resets when the UTC day changes."""
    clock = Clock(datetime(2024, 6, 1, 23, 0, tzinfo=timezone.utc))
    source = FakeSource(SourceResult.ok(wave(0.4)))
    gate = make_gate(source, clock, ceiling=1)

    asyncio.run(gate.get())
    assert not gate.can_fetch()

    clock.advance(hours=4)  # 03:00 next day, cache stale
    asyncio.run(gate.get())

    assert source.calls == 2
    assert gate.status().requests_used == 1
    assert gate.status().window_marker == "2024-06-02"


def test_day_boundary_reset_on_status():
    """A status query alone rolls the window over."""
    clock = Clock(datetime(2024, 6, 1, 22, 0, tzinfo=timezone.utc))
    source = FakeSource(SourceResult.ok(wave(0.4)))
    gate = make_gate(source, clock)

    asyncio.run(gate.get())
    asyncio.run(gate.force_refresh())
    assert gate.status().requests_used == 2

    clock.advance(hours=3)
    status = gate.status()
    assert status.requests_used == 0
    assert status.window_marker == "2024-06-02"


def test_force_refresh():
    """Forced refresh bypasses a fresh cache but not the ceiling."""
    clock = Clock(datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc))
    source = FakeSource(SourceResult.ok(wave(0.3)), SourceResult.ok(wave(0.7)))
    gate = make_gate(source, clock, ceiling=2)

    asyncio.run(gate.get())
    forced = asyncio.run(gate.force_refresh())
    assert forced.value.height_m == 0.7
    assert source.calls == 2

    with pytest.raises(RateLimitExceeded) as exc_info:
        asyncio.run(gate.force_refresh())
    assert exc_info.value.requests_used == 2
    assert exc_info.value.ceiling == 2
    assert source.calls == 2


def test_disabled_gate():
    """Without credentials the gate never fetches."""
    clock = Clock(datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc))
    source = FakeSource(SourceResult.ok(wave(0.3)))
    gate = RateLimitGate("stormglass", source.fetch, ceiling=8, enabled=False, clock=clock)

    assert not asyncio.run(gate.get()).available
    assert not asyncio.run(gate.force_refresh()).available
    assert source.calls == 0
    assert gate.status().requests_used == 0


def test_minute_window():
    """Per-minute ceilings reset each minute; zero duration never caches."""
    clock = Clock(datetime(2024, 6, 1, 8, 0, 5, tzinfo=timezone.utc))
    source = FakeSource(SourceResult.ok(3.0))
    gate = RateLimitGate("openweather", source.fetch, ceiling=2, window=QuotaWindow.MINUTE, clock=clock)

    for _ in range(3):
        asyncio.run(gate.get())
    assert source.calls == 2
    assert gate.status().window_marker == "2024-06-01T08:00"

    clock.advance(seconds=60)
    asyncio.run(gate.get())
    assert source.calls == 3
    assert gate.status().requests_used == 1


def run_all_tests():
    """Run all gate tests."""
    print("\n" + "="*60)
    print("RATE LIMIT GATE TEST SUITE")
    print("="*60)

    tests = [
        ("Cache Window", test_cache_window),
        ("Quota Exhaustion Serves Stale", test_quota_exhaustion_serves_stale),
        ("Quota Exhausted Without Cache", test_quota_exhausted_without_cache),
        ("Stale If Error", test_stale_if_error),
        ("Slow Fetch Serves Stale", test_slow_fetch_serves_stale),
        ("Slow Fetch Without Cache", test_slow_fetch_without_cache),
        ("Day Boundary Reset On Get", test_day_boundary_reset_on_get),
        ("Day Boundary Reset On Status", test_day_boundary_reset_on_status),
        ("Force Refresh", test_force_refresh),
        ("Disabled Gate", test_disabled_gate),
        ("Minute Window", test_minute_window),
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
