"""Periodic refresh of the clarity service."""

import asyncio
import logging
from typing import Callable, Optional

from clarity.core.service import ClarityService


logger = logging.getLogger(__name__)


class RefreshScheduler:
    """Runs ClarityService.refresh at start and then every interval.

    The loop survives refresh failures: an unexpected exception is logged
    and the service is marked degraded until the next successful refresh.
    """

    def __init__(
        self,
        service: ClarityService,
        interval_minutes: Optional[float] = None,
        on_refresh: Optional[Callable[[ClarityService], None]] = None,
    ):
        """Initialize the scheduler.

        Args:
            service: The service to refresh.
            interval_minutes: Minutes between refreshes. Defaults to the
                service's REFRESH_MINUTES setting.
            on_refresh: Called with the service after every refresh attempt.
        """
        if interval_minutes is None:
            interval_minutes = service.settings.refresh_minutes
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")

        self.service = service
        self.interval_seconds = interval_minutes * 60
        self.on_refresh = on_refresh
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        try:
            await self.service.refresh()
        except Exception as e:
            logger.error(f"Scheduled refresh failed: {e}")
            self.service.mark_degraded()

        if self.on_refresh:
            self.on_refresh(self.service)

    async def _run(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> asyncio.Task:
        """Start the refresh loop on the running event loop."""
        if self.running:
            return self._task

        logger.info(f"Starting refresh scheduler (every {self.interval_seconds / 60:g} minutes)")
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Cancel the refresh loop and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Refresh scheduler stopped")
