"""Alert service: the single authority for alert state transitions.

Creates alerts, applies acknowledge/dismiss/expire transitions, writes the
history trail, answers active-alert queries and computes statistics. New
alerts are handed to the ``SubscriptionMatcher`` and the
``NotificationDispatcher``; notification problems are logged and never fail
alert creation.

State machine per alert::

    create -> ACTIVE,UNACK --ack--> ACTIVE,ACK
    ACTIVE,* --dismiss/expire--> INACTIVE   (terminal)
"""

import logging
from collections import Counter
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any

from smartagri.alerts.clock import SYSTEM_CLOCK, Clock
from smartagri.alerts.config import AlertConfig
from smartagri.alerts.dispatcher import NotificationDispatcher
from smartagri.alerts.errors import (
    AlertNotFoundError,
    AlertServiceError,
    InternalError,
    InvalidInputError,
    SubscriptionNotFoundError,
)
from smartagri.alerts.matcher import SubscriptionMatcher
from smartagri.alerts.schemas import (
    SYSTEM_ACTOR,
    Alert,
    AlertHistory,
    AlertSearchCriteria,
    AlertSubscription,
    AlertTrends,
    ensure_utc,
    parse_alert_type,
    parse_severity,
    require_text,
)
from smartagri.alerts.store import AlertStore, SubscriptionStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _store_errors(operation: str) -> AsyncIterator[None]:
    """Re-raise unexpected store failures as ``InternalError``."""
    try:
        yield
    except AlertServiceError:
        raise
    except Exception as e:
        logger.error("Store failure during %s: %s", operation, e)
        raise InternalError(f"Internal error during {operation}") from e


class AlertService:
    """Orchestrator for the alert lifecycle.

    Stores are injected as interfaces so the service runs unchanged over
    PostgreSQL or the in-memory backend. The dispatcher is optional; without
    one, alerts are created but nobody is notified.
    """

    def __init__(
        self,
        alert_store: AlertStore,
        subscription_store: SubscriptionStore,
        dispatcher: NotificationDispatcher | None = None,
        config: AlertConfig | None = None,
        clock: Clock = SYSTEM_CLOCK,
    ) -> None:
        self._alerts = alert_store
        self._subscriptions = subscription_store
        self._dispatcher = dispatcher
        self._matcher = SubscriptionMatcher(subscription_store)
        self._config = config or AlertConfig()
        self._clock = clock

    # -- creation -----------------------------------------------------------

    async def create_alert(
        self,
        alert_type: str,
        severity: str,
        title: str,
        message: str,
        parcel_id: int | None = None,
        location: str | None = None,
        expiry_seconds: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Alert:
        """Persist a new alert and notify matching subscribers.

        Args:
            alert_type: Alert type name (case-insensitive).
            severity: Severity name (case-insensitive).
            title: Non-empty short summary.
            message: Non-empty description.
            parcel_id: Parcel the alert concerns, if any.
            location: Free-form location label.
            expiry_seconds: Lifetime in seconds; None or <= 0 means no expiry.
            metadata: Free-form JSON context.

        Returns:
            The persisted alert with its assigned id.

        Raises:
            InvalidInputError: If a field is missing, an enum is unknown, or
                the expiry lies beyond the representable date range.
            InternalError: If the store fails.
        """
        now = self._clock.now()
        expiry_time = None
        if expiry_seconds is not None and expiry_seconds > 0:
            try:
                expiry_time = now + timedelta(seconds=expiry_seconds)
            except OverflowError:
                raise InvalidInputError("Expiry seconds out of range") from None

        alert = Alert(
            alert_type=alert_type,
            severity=severity,
            title=title,
            message=message,
            parcel_id=parcel_id,
            location=location,
            alert_time=now,
            expiry_time=expiry_time,
            metadata=dict(metadata or {}),
        )

        async with _store_errors("create alert"):
            created = await self._alerts.create(alert)
            await self._record(created, "CREATED", None, "Alert created", now)

        logger.info(
            "Alert created: id=%s type=%s severity=%s parcel=%s",
            created.id, created.alert_type, created.severity, created.parcel_id,
        )

        await self._notify_subscribers(created)
        return created

    async def _notify_subscribers(self, alert: Alert) -> None:
        """Match subscriptions and enqueue deliveries (never raises)."""
        if self._dispatcher is None:
            return
        try:
            subscriptions = await self._matcher.find_matching(alert)
            if subscriptions:
                self._dispatcher.submit(alert, subscriptions)
        except Exception as e:
            logger.error("Notification dispatch failed for alert %s: %s", alert.id, e)

    async def _record(
        self,
        alert: Alert,
        action: str,
        performed_by: str | None,
        notes: str | None,
        at: datetime,
    ) -> AlertHistory:
        return await self._alerts.append_history(
            AlertHistory(
                alert_id=alert.id,
                action=action,
                performed_by=performed_by,
                notes=notes,
                action_time=at,
            )
        )

    # -- queries ------------------------------------------------------------

    async def get_alert_by_id(self, alert_id: int) -> Alert:
        """Get an alert, raising ``AlertNotFoundError`` if absent."""
        async with _store_errors("get alert"):
            alert = await self._alerts.get_by_id(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)
        return alert

    async def get_active_alerts(self) -> list[Alert]:
        async with _store_errors("list active alerts"):
            return await self._alerts.find_active()

    async def get_active_alerts_by_parcel(self, parcel_id: int) -> list[Alert]:
        async with _store_errors("list active alerts"):
            return await self._alerts.find_active(parcel_id=parcel_id)

    async def get_active_alerts_by_type(self, alert_type: str) -> list[Alert]:
        normalized = parse_alert_type(alert_type)
        async with _store_errors("list active alerts"):
            return await self._alerts.find_active(alert_type=normalized)

    async def get_active_alerts_by_severity(self, severity: str) -> list[Alert]:
        normalized = parse_severity(severity)
        async with _store_errors("list active alerts"):
            return await self._alerts.find_active(severity=normalized)

    async def get_active_alerts_since(self, since: datetime) -> list[Alert]:
        async with _store_errors("list active alerts"):
            return await self._alerts.find_active(since=ensure_utc(since))

    async def find_active_alerts(
        self,
        parcel_id: int | None = None,
        alert_type: str | None = None,
        severity: str | None = None,
        limit: int | None = None,
    ) -> list[Alert]:
        """Active alerts for the boundary's single-filter query.

        Only one filter applies, chosen in the order parcel, type,
        severity. Results are capped at ``limit`` (when positive) and at
        the configured list maximum.
        """
        if parcel_id is not None:
            alerts = await self.get_active_alerts_by_parcel(parcel_id)
        elif alert_type:
            alerts = await self.get_active_alerts_by_type(alert_type)
        elif severity:
            alerts = await self.get_active_alerts_by_severity(severity)
        else:
            alerts = await self.get_active_alerts()

        cap = self._config.max_list_limit
        if limit is not None and limit > 0:
            cap = min(cap, limit)
        return alerts[:cap]

    async def get_unacknowledged_alerts(self) -> list[Alert]:
        """Active, unacknowledged alerts, most severe first, then newest."""
        async with _store_errors("list unacknowledged alerts"):
            return await self._alerts.find_unacknowledged()

    async def count_unacknowledged(self, parcel_id: int | None = None) -> int:
        async with _store_errors("count unacknowledged alerts"):
            return await self._alerts.count(
                parcel_id=parcel_id, is_active=True, acknowledged=False,
            )

    async def search_alerts(
        self,
        criteria: AlertSearchCriteria,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Alert]:
        """Search alerts; all set criteria fields must match."""
        if limit < 1:
            raise InvalidInputError("Limit must be at least 1")
        if offset < 0:
            raise InvalidInputError("Offset must not be negative")
        limit = min(limit, self._config.max_list_limit)

        async with _store_errors("search alerts"):
            return await self._alerts.search(criteria, limit=limit, offset=offset)

    async def get_alert_history(self, alert_id: int) -> list[AlertHistory]:
        """History rows for an existing alert, in the order they were written."""
        await self.get_alert_by_id(alert_id)
        async with _store_errors("get alert history"):
            return await self._alerts.get_history(alert_id)

    # -- transitions --------------------------------------------------------

    async def acknowledge_alert(self, alert_id: int, acknowledged_by: str) -> Alert:
        """Acknowledge an alert.

        Idempotent: an already-acknowledged alert is returned unchanged and
        no history row is written.

        Raises:
            AlertNotFoundError: If the alert does not exist.
            InvalidInputError: If ``acknowledged_by`` is empty or the alert
                is no longer active.
        """
        require_text(acknowledged_by, "Acknowledged by")

        async with _store_errors("acknowledge alert"):
            alert = await self._alerts.get_by_id(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            if alert.acknowledged:
                return alert
            if not alert.is_active:
                raise InvalidInputError(f"Alert {alert_id} is no longer active")

            now = self._clock.now()
            alert.mark_acknowledged(acknowledged_by, now)
            updated = await self._alerts.update(alert)
            await self._record(updated, "ACKNOWLEDGED", acknowledged_by,
                               "Alert acknowledged", now)

        logger.info("Alert %s acknowledged by %s", alert_id, acknowledged_by)
        return updated

    async def acknowledge_multiple(
        self,
        alert_ids: Iterable[int],
        acknowledged_by: str,
    ) -> list[Alert]:
        """Best-effort bulk acknowledgement.

        Missing, inactive and already-acknowledged alerts are skipped, and
        a failure on one id never aborts the batch.

        Returns:
            Only the alerts this call transitioned.
        """
        require_text(acknowledged_by, "Acknowledged by")

        ids = list(alert_ids)
        acknowledged: list[Alert] = []
        for alert_id in ids:
            try:
                alert = await self._alerts.get_by_id(alert_id)
                if alert is None:
                    logger.warning("Skipping acknowledge of missing alert %s", alert_id)
                    continue

                now = self._clock.now()
                if not alert.mark_acknowledged(acknowledged_by, now):
                    logger.debug(
                        "Skipping alert %s (acknowledged=%s, active=%s)",
                        alert_id, alert.acknowledged, alert.is_active,
                    )
                    continue

                updated = await self._alerts.update(alert)
                await self._record(updated, "ACKNOWLEDGED", acknowledged_by,
                                   "Alert acknowledged (bulk)", now)
                acknowledged.append(updated)
            except Exception as e:
                logger.error("Failed to acknowledge alert %s: %s", alert_id, e)

        logger.info(
            "Bulk acknowledge by %s: %d of %d alerts",
            acknowledged_by, len(acknowledged), len(ids),
        )
        return acknowledged

    async def dismiss_alert(self, alert_id: int, dismissed_by: str) -> Alert:
        """Deactivate an alert whether or not it was acknowledged.

        Dismissing an alert that is already inactive changes nothing and
        writes no history row.

        Raises:
            AlertNotFoundError: If the alert does not exist.
            InvalidInputError: If ``dismissed_by`` is empty.
        """
        require_text(dismissed_by, "Dismissed by")

        async with _store_errors("dismiss alert"):
            alert = await self._alerts.get_by_id(alert_id)
            if alert is None:
                raise AlertNotFoundError(alert_id)
            if not alert.deactivate():
                return alert

            now = self._clock.now()
            updated = await self._alerts.update(alert)
            await self._record(updated, "DISMISSED", dismissed_by,
                               "Alert dismissed", now)

        logger.info("Alert %s dismissed by %s", alert_id, dismissed_by)
        return updated

    async def expire_old_alerts(self) -> int:
        """Deactivate every active alert whose expiry time has passed.

        Each alert is handled independently; a failure on one is logged
        and the sweep continues.

        Returns:
            Number of alerts expired by this call.
        """
        now = self._clock.now()
        async with _store_errors("expire alerts"):
            candidates = await self._alerts.find_expired(now)

        expired = 0
        for alert in candidates:
            try:
                if not alert.deactivate():
                    continue
                updated = await self._alerts.update(alert)
                await self._record(updated, "EXPIRED", SYSTEM_ACTOR,
                                   "Alert expired automatically", now)
                expired += 1
            except Exception as e:
                logger.error("Failed to expire alert %s: %s", alert.id, e)

        if expired:
            logger.info("Expired %d alerts", expired)
        return expired

    # -- statistics ---------------------------------------------------------

    async def get_alert_statistics(self, parcel_id: int | None = None) -> dict[str, Any]:
        """Total, active and unacknowledged counts, scoped or global."""
        async with _store_errors("compute alert statistics"):
            total = await self._alerts.count(parcel_id=parcel_id)
            active = await self._alerts.count(parcel_id=parcel_id, is_active=True)
            unacknowledged = await self._alerts.count(
                parcel_id=parcel_id, is_active=True, acknowledged=False,
            )

        return {
            "parcel_id": parcel_id,
            "total_alerts": total,
            "active_alerts": active,
            "unacknowledged_alerts": unacknowledged,
            "timestamp": self._clock.now().isoformat(),
        }

    async def get_alert_trends(
        self,
        parcel_id: int | None = None,
        days: int | None = None,
    ) -> AlertTrends:
        """Aggregate alerts raised in the trailing ``days`` window.

        The acknowledgement rate is a percentage of all alerts in the window.
        Average response time covers acknowledged alerts with a recorded
        acknowledgement time, in minutes.
        """
        if days is None:
            days = self._config.default_trend_days
        if days < 1:
            raise InvalidInputError("Days must be at least 1")

        start = self._clock.now() - timedelta(days=days)
        async with _store_errors("compute alert trends"):
            alerts = await self._alerts.find_since(start, parcel_id=parcel_id)

        total = len(alerts)
        acknowledged = [a for a in alerts if a.acknowledged]
        response_minutes = [
            (a.acknowledged_at - a.alert_time).total_seconds() / 60.0
            for a in acknowledged
            if a.acknowledged_at is not None
        ]

        return AlertTrends(
            days=days,
            parcel_id=parcel_id,
            total_alerts=total,
            by_type=dict(Counter(a.alert_type for a in alerts)),
            by_severity=dict(Counter(a.severity for a in alerts)),
            acknowledged_rate=(
                round(len(acknowledged) / total * 100.0, 2) if total else 0.0
            ),
            avg_response_time_minutes=(
                round(sum(response_minutes) / len(response_minutes), 2)
                if response_minutes else 0.0
            ),
        )

    # -- subscriptions ------------------------------------------------------

    async def subscribe(
        self,
        user_id: str,
        notification_method: str,
        parcel_id: int | None = None,
        alert_types: Iterable[str] | None = None,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> AlertSubscription:
        """Create an enabled subscription.

        Raises:
            InvalidInputError: If the user id is empty, the method or an
                alert type is unknown, or the contact field the method
                needs is missing.
        """
        subscription = AlertSubscription(
            user_id=user_id,
            notification_method=notification_method,
            parcel_id=parcel_id,
            alert_types=frozenset(alert_types or ()),
            email=email,
            phone_number=phone_number,
            created_at=self._clock.now(),
        )

        async with _store_errors("create subscription"):
            created = await self._subscriptions.create(subscription)

        logger.info(
            "Subscription %s created for user %s (parcel=%s, method=%s)",
            created.id, created.user_id, created.parcel_id,
            created.notification_method,
        )
        return created

    async def get_subscription(
        self,
        user_id: str,
        parcel_id: int | None = None,
    ) -> AlertSubscription:
        """The user's subscription for a parcel, or their first one."""
        require_text(user_id, "User ID")

        async with _store_errors("get subscription"):
            if parcel_id is not None:
                subscription = await self._subscriptions.find_by_user_and_parcel(
                    user_id, parcel_id,
                )
            else:
                found = await self._subscriptions.find_by_user(user_id)
                subscription = found[0] if found else None

        if subscription is None:
            raise SubscriptionNotFoundError(user_id, parcel_id)
        return subscription

    async def get_subscriptions_for_parcel(self, parcel_id: int) -> list[AlertSubscription]:
        async with _store_errors("list parcel subscriptions"):
            return await self._subscriptions.find_enabled_by_parcel(parcel_id)

    # -- health -------------------------------------------------------------

    async def get_service_health(self) -> dict[str, Any]:
        """Report store reachability and headline counts. Never raises."""
        timestamp = self._clock.now().isoformat()
        try:
            active = await self._alerts.count(is_active=True)
            unacknowledged = await self._alerts.count(
                is_active=True, acknowledged=False,
            )
            subscriptions = await self._subscriptions.count_enabled()
        except Exception as e:
            logger.error("Health check failed: %s", e)
            return {"status": "DOWN", "error": str(e), "timestamp": timestamp}

        return {
            "status": "UP",
            "active_alerts": active,
            "unacknowledged_alerts": unacknowledged,
            "enabled_subscriptions": subscriptions,
            "timestamp": timestamp,
        }
