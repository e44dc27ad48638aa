"""Periodic background jobs for the alert service.

Two fixed-interval loops run on their own tasks:

- expiry sweep: ``AlertService.expire_old_alerts()``, first run at start
- statistics: logs the unacknowledged-alert count

A job that raises is logged and the loop waits for its next run.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from smartagri.alerts.clock import SYSTEM_CLOCK, Clock
from smartagri.alerts.config import AlertConfig
from smartagri.alerts.service import AlertService

logger = logging.getLogger(__name__)


class AlertScheduler:
    """Drives the expiry sweep and statistics jobs on timers."""

    def __init__(
        self,
        service: AlertService,
        config: AlertConfig | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._service = service
        self._config = config or AlertConfig()
        self._clock = clock
        self._tasks: list[asyncio.Task] = []
        self._running = False
        self.last_expired_count: int | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Spawn the periodic job tasks."""
        if self._running:
            return

        self._running = True
        self._tasks = [
            asyncio.create_task(
                self._run_periodic(
                    "expiry-sweep",
                    self.run_expiry_sweep,
                    self._config.expiry_sweep_interval_seconds,
                ),
                name="alert-scheduler-expiry",
            ),
            asyncio.create_task(
                self._run_periodic(
                    "statistics",
                    self.log_statistics,
                    self._config.statistics_interval_seconds,
                ),
                name="alert-scheduler-statistics",
            ),
        ]
        logger.info(
            "AlertScheduler started (expiry every %.0fs, statistics every %.0fs)",
            self._config.expiry_sweep_interval_seconds,
            self._config.statistics_interval_seconds,
        )

    async def stop(self) -> None:
        """Cancel the job tasks and wait for them to finish."""
        self._running = False

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("AlertScheduler stopped")

    async def run_expiry_sweep(self) -> int:
        """Expire overdue alerts once."""
        expired = await self._service.expire_old_alerts()
        self.last_expired_count = expired
        logger.debug("Expiry sweep finished: %d alerts expired", expired)
        return expired

    async def log_statistics(self) -> int:
        """Log the current number of unacknowledged alerts once."""
        unacknowledged = await self._service.count_unacknowledged()
        logger.info("Unacknowledged alerts: %d", unacknowledged)
        return unacknowledged

    async def _run_periodic(
        self,
        name: str,
        job: Callable[[], Awaitable[object]],
        interval: float,
    ) -> None:
        while self._running:
            try:
                await job()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Scheduled job %s failed: %s", name, e)

            await self._clock.sleep(interval)
