"""Notification dispatcher delivering alerts to matched subscribers.

Alert creation hands matched subscriptions to ``submit()``, which enqueues
one job per subscription and returns immediately. A pool of worker tasks
drains the queue; each job runs the retry policy against the
``NotificationSender`` collaborator. Delivery failures are logged and never
reach the code that created the alert.

Pattern: Orchestrator over a stateless sender, with an asyncio.Queue handoff.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from smartagri.alerts.clock import SYSTEM_CLOCK, Clock
from smartagri.alerts.schemas import Alert, AlertSubscription
from smartagri.alerts.senders import NotificationSender

logger = logging.getLogger(__name__)

# Channels used for each notification method; ALL fans out to two channels
METHOD_CHANNELS: dict[str, tuple[str, ...]] = {
    "EMAIL": ("email",),
    "SMS": ("sms",),
    "PUSH": ("push",),
    "IN_APP": ("in_app",),
    "ALL": ("email", "push"),
}


class NotificationConfig(BaseSettings):
    """Configuration for notification dispatch."""

    model_config = SettingsConfigDict(
        env_prefix="NOTIFICATIONS_",
        case_sensitive=False,
        extra="ignore",
    )

    retry_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum delivery attempts per subscription per alert",
    )
    retry_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Fixed delay in seconds between delivery attempts",
    )
    worker_count: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Concurrent delivery workers",
    )
    queue_max_size: int = Field(
        default=1000,
        ge=1,
        description="Pending jobs accepted before new jobs are dropped",
    )
    drain_timeout_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Seconds stop() waits for queued jobs before cancelling",
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Timeout for notification gateway requests",
    )
    recent_results_size: int = Field(
        default=100,
        ge=0,
        description="Delivery results retained for diagnostics",
    )


@dataclass
class NotificationJob:
    """One (alert, subscription) pair waiting for delivery."""

    alert: Alert
    subscription: AlertSubscription


@dataclass
class DeliveryResult:
    """Outcome of delivering one alert to one subscription."""

    alert_id: int | None
    subscription_id: int | None
    user_id: str
    method: str
    success: bool
    attempts: int
    delivered_channels: list[str] = field(default_factory=list)
    error: str | None = None
    completed_at: datetime | None = None


class NotificationDispatcher:
    """Queues and delivers subscriber notifications with bounded retry.

    Lifecycle:
        1. ``start()`` spawns the worker tasks
        2. ``submit(alert, subscriptions)`` enqueues jobs (never blocks)
        3. ``stop()`` drains the queue for a bounded time, then cancels
    """

    def __init__(
        self,
        sender: NotificationSender,
        config: NotificationConfig | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._config = config or NotificationConfig()
        self._clock = clock
        self._senders = {
            "email": sender.send_email,
            "sms": sender.send_sms,
            "push": sender.send_push,
            "in_app": sender.send_in_app,
        }
        self._queue: asyncio.Queue[NotificationJob] = asyncio.Queue(
            maxsize=self._config.queue_max_size
        )
        self._workers: list[asyncio.Task] = []
        self._recent: deque[DeliveryResult] = deque(
            maxlen=self._config.recent_results_size
        )
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def pending_jobs(self) -> int:
        """Jobs queued but not yet picked up by a worker."""
        return self._queue.qsize()

    @property
    def recent_deliveries(self) -> list[DeliveryResult]:
        """Most recent delivery results, oldest first."""
        return list(self._recent)

    async def start(self) -> None:
        """Spawn the delivery worker tasks."""
        if self._running:
            return

        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(), name=f"notification-worker-{i}")
            for i in range(self._config.worker_count)
        ]
        logger.info(
            "NotificationDispatcher started (workers=%d, attempts=%d, delay=%.1fs)",
            self._config.worker_count,
            self._config.retry_max_attempts,
            self._config.retry_delay_seconds,
        )

    async def stop(self) -> None:
        """Wait for queued jobs up to the drain timeout, then cancel workers."""
        if not self._running:
            return

        self._running = False
        try:
            await asyncio.wait_for(
                self._queue.join(), timeout=self._config.drain_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Notification queue not drained within %.1fs, %d jobs dropped",
                self._config.drain_timeout_seconds,
                self._queue.qsize(),
            )

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("NotificationDispatcher stopped")

    def submit(
        self,
        alert: Alert,
        subscriptions: list[AlertSubscription],
    ) -> int:
        """Enqueue one delivery job per subscription.

        Returns immediately. Jobs that don't fit in the queue are dropped
        with an error log.

        Args:
            alert: Persisted alert to deliver.
            subscriptions: Subscriptions matched for the alert.

        Returns:
            Number of jobs enqueued.
        """
        queued = 0
        for subscription in subscriptions:
            try:
                self._queue.put_nowait(NotificationJob(alert, subscription))
                queued += 1
            except asyncio.QueueFull:
                logger.error(
                    "Notification queue full, dropping alert %s for user %s",
                    alert.id, subscription.user_id,
                )
        if queued:
            logger.debug("Queued %d notifications for alert %s", queued, alert.id)
        return queued

    async def _worker(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.deliver(job.subscription, job.alert)
            except Exception:
                logger.exception(
                    "Unexpected error delivering alert %s to user %s",
                    job.alert.id, job.subscription.user_id,
                )
            finally:
                self._queue.task_done()

    def _address_for(self, channel: str, subscription: AlertSubscription) -> str | None:
        if channel == "email":
            return subscription.email
        if channel == "sms":
            return subscription.phone_number
        return subscription.user_id

    async def deliver(
        self,
        subscription: AlertSubscription,
        alert: Alert,
    ) -> DeliveryResult:
        """Deliver an alert to one subscription with retries.

        Each attempt sends on the channels that have not yet succeeded.
        Between attempts the dispatcher waits ``retry_delay_seconds``.

        Args:
            subscription: Target subscription.
            alert: Alert to deliver.

        Returns:
            DeliveryResult describing the outcome.
        """
        method = subscription.notification_method
        pending: dict[str, str] = {}
        for channel in METHOD_CHANNELS[method]:
            address = self._address_for(channel, subscription)
            if address and address.strip():
                pending[channel] = address
            else:
                logger.warning(
                    "Subscription %s has no address for %s, skipping channel",
                    subscription.id, channel,
                )

        delivered: list[str] = []
        last_error: str | None = None
        attempts = 0
        max_attempts = self._config.retry_max_attempts

        if not pending:
            last_error = "no deliverable channel"

        while pending and attempts < max_attempts:
            attempts += 1
            for channel, address in list(pending.items()):
                try:
                    success = await self._senders[channel](address, alert)
                    if not success:
                        last_error = f"{channel} delivery rejected"
                except Exception as e:
                    success = False
                    last_error = f"{channel}: {e}"
                    logger.warning(
                        "Channel %s send error for alert %s (attempt %d): %s",
                        channel, alert.id, attempts, e,
                    )

                if success:
                    del pending[channel]
                    delivered.append(channel)

            if pending and attempts < max_attempts:
                await self._clock.sleep(self._config.retry_delay_seconds)

        result = DeliveryResult(
            alert_id=alert.id,
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            method=method,
            success=not pending and bool(delivered),
            attempts=attempts,
            delivered_channels=delivered,
            error=None if not pending and delivered else last_error,
            completed_at=self._clock.now(),
        )
        self._record_delivery(result)
        return result

    def _record_delivery(self, result: DeliveryResult) -> None:
        """Log a delivery outcome and keep it for diagnostics."""
        self._recent.append(result)

        if result.success:
            if result.attempts > 1:
                logger.info(
                    "Alert %s delivered to user %s via %s on attempt %d",
                    result.alert_id, result.user_id, result.method, result.attempts,
                )
            else:
                logger.debug(
                    "Alert %s delivered to user %s via %s",
                    result.alert_id, result.user_id, result.method,
                )
        else:
            logger.error(
                "Failed to deliver alert %s to user %s via %s after %d attempts: %s",
                result.alert_id, result.user_id, result.method,
                result.attempts, result.error,
            )
