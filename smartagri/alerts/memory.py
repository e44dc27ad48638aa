"""In-process alert and subscription stores.

Used when ``STORAGE_BACKEND=memory`` and throughout the test suite. Rows
are deep-copied on the way in and out, so a caller holding an ``Alert``
cannot change stored state without calling ``update()``.
"""

import asyncio
import copy
import itertools
from datetime import datetime

from smartagri.alerts.errors import AlertNotFoundError
from smartagri.alerts.schemas import (
    Alert,
    AlertHistory,
    AlertSearchCriteria,
    AlertSubscription,
)
from smartagri.alerts.store import AlertStore, SubscriptionStore


def _newest_first(alerts: list[Alert]) -> list[Alert]:
    return sorted(alerts, key=lambda a: (a.alert_time, a.id or 0), reverse=True)


def _contains(haystack: str | None, needle: str) -> bool:
    return haystack is not None and needle.lower() in haystack.lower()


class InMemoryAlertStore(AlertStore):
    """Dict-backed ``AlertStore``."""

    def __init__(self) -> None:
        self._alerts: dict[int, Alert] = {}
        self._history: list[AlertHistory] = []
        self._alert_ids = itertools.count(1)
        self._history_ids = itertools.count(1)
        self._lock = asyncio.Lock()

    async def create(self, alert: Alert) -> Alert:
        async with self._lock:
            stored = copy.deepcopy(alert)
            stored.id = next(self._alert_ids)
            self._alerts[stored.id] = stored
            return copy.deepcopy(stored)

    async def update(self, alert: Alert) -> Alert:
        async with self._lock:
            if alert.id not in self._alerts:
                raise AlertNotFoundError(alert.id)
            stored = copy.deepcopy(alert)
            # Deactivation is terminal even against a stale copy
            stored.is_active = stored.is_active and self._alerts[stored.id].is_active
            self._alerts[stored.id] = stored
            return copy.deepcopy(stored)

    async def get_by_id(self, alert_id: int) -> Alert | None:
        alert = self._alerts.get(alert_id)
        return copy.deepcopy(alert) if alert is not None else None

    async def find_active(
        self,
        *,
        parcel_id: int | None = None,
        alert_type: str | None = None,
        severity: str | None = None,
        since: datetime | None = None,
    ) -> list[Alert]:
        matches = [
            a
            for a in self._alerts.values()
            if a.is_active
            and (parcel_id is None or a.parcel_id == parcel_id)
            and (alert_type is None or a.alert_type == alert_type)
            and (severity is None or a.severity == severity)
            and (since is None or a.alert_time >= since)
        ]
        return copy.deepcopy(_newest_first(matches))

    async def find_unacknowledged(self) -> list[Alert]:
        matches = [
            a for a in self._alerts.values() if a.is_active and not a.acknowledged
        ]
        matches.sort(
            key=lambda a: (a.severity_rank, a.alert_time, a.id or 0),
            reverse=True,
        )
        return copy.deepcopy(matches)

    async def find_expired(self, now: datetime) -> list[Alert]:
        matches = [a for a in self._alerts.values() if a.is_expired(now)]
        matches.sort(key=lambda a: (a.expiry_time, a.id or 0))
        return copy.deepcopy(matches)

    async def find_since(
        self,
        start: datetime,
        parcel_id: int | None = None,
    ) -> list[Alert]:
        matches = [
            a
            for a in self._alerts.values()
            if a.alert_time > start
            and (parcel_id is None or a.parcel_id == parcel_id)
        ]
        return copy.deepcopy(_newest_first(matches))

    async def search(
        self,
        criteria: AlertSearchCriteria,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Alert]:
        def matches(a: Alert) -> bool:
            if criteria.parcel_id is not None and a.parcel_id != criteria.parcel_id:
                return False
            if criteria.alert_type is not None and a.alert_type != criteria.alert_type:
                return False
            if criteria.severity is not None and a.severity != criteria.severity:
                return False
            if criteria.is_active is not None and a.is_active != criteria.is_active:
                return False
            if (
                criteria.acknowledged is not None
                and a.acknowledged != criteria.acknowledged
            ):
                return False
            if criteria.start_date is not None and a.alert_time < criteria.start_date:
                return False
            if criteria.end_date is not None and a.alert_time > criteria.end_date:
                return False
            if criteria.search_text is not None:
                text = criteria.search_text.strip()
                if not (_contains(a.title, text) or _contains(a.message, text)):
                    return False
            if criteria.location is not None and not _contains(
                a.location, criteria.location.strip()
            ):
                return False
            return True

        found = _newest_first([a for a in self._alerts.values() if matches(a)])
        return copy.deepcopy(found[offset : offset + limit])

    async def count(
        self,
        *,
        parcel_id: int | None = None,
        is_active: bool | None = None,
        acknowledged: bool | None = None,
    ) -> int:
        return sum(
            1
            for a in self._alerts.values()
            if (parcel_id is None or a.parcel_id == parcel_id)
            and (is_active is None or a.is_active == is_active)
            and (acknowledged is None or a.acknowledged == acknowledged)
        )

    async def append_history(self, history: AlertHistory) -> AlertHistory:
        async with self._lock:
            stored = copy.deepcopy(history)
            stored.id = next(self._history_ids)
            self._history.append(stored)
            return copy.deepcopy(stored)

    async def get_history(self, alert_id: int) -> list[AlertHistory]:
        return copy.deepcopy([h for h in self._history if h.alert_id == alert_id])


class InMemorySubscriptionStore(SubscriptionStore):
    """List-backed ``SubscriptionStore``."""

    def __init__(self) -> None:
        self._subscriptions: list[AlertSubscription] = []
        self._ids = itertools.count(1)

    async def create(self, subscription: AlertSubscription) -> AlertSubscription:
        stored = copy.deepcopy(subscription)
        stored.id = next(self._ids)
        self._subscriptions.append(stored)
        return copy.deepcopy(stored)

    async def find_by_user(self, user_id: str) -> list[AlertSubscription]:
        return copy.deepcopy([s for s in self._subscriptions if s.user_id == user_id])

    async def find_by_user_and_parcel(
        self,
        user_id: str,
        parcel_id: int,
    ) -> AlertSubscription | None:
        for sub in self._subscriptions:
            if sub.user_id == user_id and sub.parcel_id == parcel_id:
                return copy.deepcopy(sub)
        return None

    async def find_enabled_for_parcel(self, parcel_id: int) -> list[AlertSubscription]:
        return copy.deepcopy([
            s
            for s in self._subscriptions
            if s.is_enabled and (s.parcel_id is None or s.parcel_id == parcel_id)
        ])

    async def find_enabled_by_parcel(self, parcel_id: int) -> list[AlertSubscription]:
        return copy.deepcopy([
            s for s in self._subscriptions if s.is_enabled and s.parcel_id == parcel_id
        ])

    async def find_all_enabled(self) -> list[AlertSubscription]:
        return copy.deepcopy([s for s in self._subscriptions if s.is_enabled])

    async def count_enabled(self) -> int:
        return sum(1 for s in self._subscriptions if s.is_enabled)
