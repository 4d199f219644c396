"""Rate-limited cache gate for metered data sources.

Wraps a source fetcher with two orthogonal checks:

- Staleness: a cached value younger than cache_duration is returned
  without a network call or quota consumption.
- Quota: otherwise a live fetch is attempted only while the request
  counter for the current window is below the ceiling. The counter is
  incremented before the response is interpreted, so failed requests
  still consume quota.

When a fetch fails (stale-if-error) or quota is exhausted
(stale-if-throttled) the last cached value is served regardless of age.

The window counter resets when the window marker (day or minute string)
changes. The reset check runs on every path that reads or increments the
counter, including status queries.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from clarity.clients.models import SourceResult
from clarity.units import day_marker, minute_marker, utcnow


logger = logging.getLogger(__name__)

T = TypeVar("T")


class QuotaWindow(Enum):
    """Granularity of a request ceiling."""
    DAY = "day"
    MINUTE = "minute"

    def marker(self, when: datetime) -> str:
        if self is QuotaWindow.DAY:
            return day_marker(when)
        return minute_marker(when)


class RateLimitExceeded(Exception):
    """Raised when a forced refresh is requested with no quota left."""

    def __init__(self, source: str, requests_used: int, ceiling: int, window: QuotaWindow):
        self.source = source
        self.requests_used = requests_used
        self.ceiling = ceiling
        self.window = window
        super().__init__(
            f"{source} rate limit exceeded: already made {requests_used}/{ceiling} "
            f"requests this {window.value}"
        )


@dataclass
class RateLimitState(Generic[T]):
    """Mutable per-source quota and cache state."""
    window_marker: str
    cached_value: Optional[T] = None
    cached_at: Optional[datetime] = None
    requests_used: int = 0


@dataclass(frozen=True)
class GateStatus:
    """Observability snapshot of a gate."""
    name: str
    enabled: bool
    requests_used: int
    ceiling: int
    window: str
    window_marker: str
    cache_valid: bool
    last_fetched_at: Optional[datetime]
    cache_age_minutes: Optional[int]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "requestsUsed": self.requests_used,
            "ceiling": self.ceiling,
            "window": self.window,
            "windowMarker": self.window_marker,
            "cacheValid": self.cache_valid,
            "lastFetchedAt": self.last_fetched_at.isoformat() if self.last_fetched_at else None,
            "cacheAgeMinutes": self.cache_age_minutes,
        }


class RateLimitGate(Generic[T]):
    """Quota-tracking, staleness-aware cache in front of one source."""

    def __init__(
        self,
        name: str,
        fetcher: Callable[[], Awaitable[SourceResult[T]]],
        ceiling: int,
        window: QuotaWindow = QuotaWindow.DAY,
        cache_duration: timedelta = timedelta(0),
        enabled: bool = True,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize the gate.

        Args:
            name: Source name used in logs and status
            fetcher: Async no-argument fetch returning a SourceResult
            ceiling: Maximum live requests per window
            window: Quota window granularity
            cache_duration: Age below which the cached value is served as fresh.
                A zero duration never counts as fresh.
            enabled: Disabled gates never fetch and report unavailable
            timeout: Seconds a live fetch may run before it counts as failed
            clock: Returns the current UTC time
        """
        if ceiling < 0:
            raise ValueError("ceiling must be non-negative")

        self.name = name
        self.fetcher = fetcher
        self.ceiling = ceiling
        self.window = window
        self.cache_duration = cache_duration
        self.enabled = enabled
        self.timeout = timeout
        self.clock = clock
        self.state: RateLimitState[T] = RateLimitState(window_marker=window.marker(clock()))

    def reset_window_if_needed(self) -> None:
        """Zero the request counter when the quota window has rolled over."""
        current = self.window.marker(self.clock())
        if self.state.window_marker != current:
            self.state.requests_used = 0
            self.state.window_marker = current
            logger.info(f"{self.name} {self.window.value} request count reset")

    def is_cache_valid(self) -> bool:
        """Whether the cached value is younger than the cache duration."""
        if self.state.cached_value is None or self.state.cached_at is None:
            return False
        return self.clock() - self.state.cached_at < self.cache_duration

    def can_fetch(self) -> bool:
        """Whether a live request is allowed in the current window."""
        self.reset_window_if_needed()
        return self.state.requests_used < self.ceiling

    def _cache_age_minutes(self) -> Optional[int]:
        if self.state.cached_at is None:
            return None
        return round((self.clock() - self.state.cached_at).total_seconds() / 60)

    def _cached_result(self, reason: str) -> SourceResult[T]:
        if self.state.cached_value is not None:
            return SourceResult.ok(self.state.cached_value)
        return SourceResult.unavailable(reason)

    async def _fetch_live(self) -> SourceResult[T]:
        # Counted before the response is looked at: the request was made.
        self.state.requests_used += 1
        logger.info(
            f"Fetching fresh {self.name} data "
            f"(request {self.state.requests_used}/{self.ceiling} this {self.window.value})"
        )

        try:
            result = await asyncio.wait_for(self.fetcher(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{self.name} fetch timed out after {self.timeout}s")
            result = SourceResult.unavailable(f"{self.name} timed out")

        if result.available:
            self.state.cached_value = result.value
            self.state.cached_at = self.clock()
            return result

        if self.state.cached_value is not None:
            logger.info(f"Returning stale cached {self.name} data due to fetch error")
        return self._cached_result(result.reason or f"{self.name} fetch failed")

    async def get(self) -> SourceResult[T]:
        """Return the freshest value the cache and quota allow.

        Never raises; an empty cache with no live data is unavailable.
        """
        if not self.enabled:
            return SourceResult.unavailable(f"{self.name} not configured")

        self.reset_window_if_needed()

        if self.is_cache_valid():
            logger.debug(f"Using cached {self.name} data (age: {self._cache_age_minutes()} minutes)")
            return SourceResult.ok(self.state.cached_value)

        if not self.can_fetch():
            logger.warning(
                f"{self.name} rate limit reached "
                f"({self.state.requests_used}/{self.ceiling} requests this {self.window.value}). "
                "Using cached data."
            )
            return self._cached_result(f"{self.name} rate limit reached")

        return await self._fetch_live()

    async def force_refresh(self) -> SourceResult[T]:
        """Fetch regardless of cache freshness, still honoring the ceiling.

        Raises:
            RateLimitExceeded: If no quota is left in the current window
        """
        if not self.enabled:
            return SourceResult.unavailable(f"{self.name} not configured")

        if not self.can_fetch():
            raise RateLimitExceeded(self.name, self.state.requests_used, self.ceiling, self.window)

        return await self._fetch_live()

    def status(self) -> GateStatus:
        """Current gate status with an up-to-date request count."""
        self.reset_window_if_needed()
        return GateStatus(
            name=self.name,
            enabled=self.enabled,
            requests_used=self.state.requests_used,
            ceiling=self.ceiling,
            window=self.window.value,
            window_marker=self.state.window_marker,
            cache_valid=self.is_cache_valid(),
            last_fetched_at=self.state.cached_at,
            cache_age_minutes=self._cache_age_minutes(),
        )
