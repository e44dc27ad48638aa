"""Persistence contracts for alerts, history rows and subscriptions.

``AlertService`` depends only on these interfaces. Two backends implement
them: ``repository.py`` (PostgreSQL via asyncpg) and ``memory.py``
(in-process, for development and tests).

Ordering contract: every ``find_*`` method that returns alerts orders them
newest first by ``alert_time`` unless documented otherwise.
"""

from abc import ABC, abstractmethod
from datetime import datetime

from smartagri.alerts.schemas import (
    Alert,
    AlertHistory,
    AlertSearchCriteria,
    AlertSubscription,
)


class AlertStore(ABC):
    """Abstract store for alert rows and their history."""

    @abstractmethod
    async def create(self, alert: Alert) -> Alert:
        """Insert a new alert and return it with its assigned id."""

    @abstractmethod
    async def update(self, alert: Alert) -> Alert:
        """Persist the mutable fields of an existing alert (last write wins)."""

    @abstractmethod
    async def get_by_id(self, alert_id: int) -> Alert | None:
        """Get an alert by id, or None if absent."""

    @abstractmethod
    async def find_active(
        self,
        *,
        parcel_id: int | None = None,
        alert_type: str | None = None,
        severity: str | None = None,
        since: datetime | None = None,
    ) -> list[Alert]:
        """Active alerts matching every given filter, newest first."""

    @abstractmethod
    async def find_unacknowledged(self) -> list[Alert]:
        """Active, unacknowledged alerts ordered by severity desc, then time desc."""

    @abstractmethod
    async def find_expired(self, now: datetime) -> list[Alert]:
        """Active alerts whose expiry time is before ``now``."""

    @abstractmethod
    async def find_since(
        self,
        start: datetime,
        parcel_id: int | None = None,
    ) -> list[Alert]:
        """All alerts (active or not) raised after ``start``."""

    @abstractmethod
    async def search(
        self,
        criteria: AlertSearchCriteria,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Alert]:
        """Alerts matching all set criteria fields, newest first."""

    @abstractmethod
    async def count(
        self,
        *,
        parcel_id: int | None = None,
        is_active: bool | None = None,
        acknowledged: bool | None = None,
    ) -> int:
        """Count alerts matching every given filter."""

    @abstractmethod
    async def append_history(self, history: AlertHistory) -> AlertHistory:
        """Append an audit row; rows are never updated or deleted."""

    @abstractmethod
    async def get_history(self, alert_id: int) -> list[AlertHistory]:
        """History rows for an alert in append order."""


class SubscriptionStore(ABC):
    """Abstract store for alert subscriptions."""

    @abstractmethod
    async def create(self, subscription: AlertSubscription) -> AlertSubscription:
        """Insert a subscription and return it with its assigned id."""

    @abstractmethod
    async def find_by_user(self, user_id: str) -> list[AlertSubscription]:
        """All subscriptions for a user, oldest first."""

    @abstractmethod
    async def find_by_user_and_parcel(
        self,
        user_id: str,
        parcel_id: int,
    ) -> AlertSubscription | None:
        """The user's subscription scoped exactly to ``parcel_id``."""

    @abstractmethod
    async def find_enabled_for_parcel(self, parcel_id: int) -> list[AlertSubscription]:
        """Enabled subscriptions scoped to ``parcel_id`` or to all parcels."""

    @abstractmethod
    async def find_enabled_by_parcel(self, parcel_id: int) -> list[AlertSubscription]:
        """Enabled subscriptions scoped exactly to ``parcel_id``."""

    @abstractmethod
    async def find_all_enabled(self) -> list[AlertSubscription]:
        """Every enabled subscription."""

    @abstractmethod
    async def count_enabled(self) -> int:
        """Number of enabled subscriptions."""
