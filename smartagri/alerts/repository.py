"""PostgreSQL-backed alert and subscription repositories.

Hand-written SQL over the shared ``Database`` pool (asyncpg), providing
the ``AlertStore`` and ``SubscriptionStore`` contracts. Filters are built
with an incrementing ``$n`` placeholder index.
"""

import json
import logging
from datetime import datetime
from typing import Any

from smartagri.alerts.errors import AlertNotFoundError
from smartagri.alerts.schemas import (
    SEVERITY_RANK,
    Alert,
    AlertHistory,
    AlertSearchCriteria,
    AlertSubscription,
)
from smartagri.alerts.store import AlertStore, SubscriptionStore
from smartagri.storage.database import Database

logger = logging.getLogger(__name__)

_SEVERITY_ORDER_SQL = "CASE severity {} ELSE 0 END".format(
    " ".join(
        f"WHEN '{name}' THEN {rank}" for name, rank in SEVERITY_RANK.items()
    )
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS alerts (
    id BIGSERIAL PRIMARY KEY,
    alert_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    parcel_id BIGINT,
    location TEXT,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    alert_time TIMESTAMPTZ NOT NULL,
    expiry_time TIMESTAMPTZ,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    acknowledged BOOLEAN NOT NULL DEFAULT FALSE,
    acknowledged_at TIMESTAMPTZ,
    acknowledged_by TEXT,
    metadata JSONB NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT alerts_expiry_after_alert_time
        CHECK (expiry_time IS NULL OR expiry_time >= alert_time)
);

CREATE INDEX IF NOT EXISTS idx_alerts_parcel
    ON alerts(parcel_id);
CREATE INDEX IF NOT EXISTS idx_alerts_active_time
    ON alerts(is_active, alert_time DESC);
CREATE INDEX IF NOT EXISTS idx_alerts_type
    ON alerts(alert_type);
CREATE INDEX IF NOT EXISTS idx_alerts_expiry
    ON alerts(expiry_time)
    WHERE is_active;

CREATE TABLE IF NOT EXISTS alert_history (
    id BIGSERIAL PRIMARY KEY,
    alert_id BIGINT NOT NULL REFERENCES alerts(id),
    action TEXT NOT NULL,
    performed_by TEXT,
    notes TEXT,
    action_time TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_alert_history_alert
    ON alert_history(alert_id, id);

CREATE TABLE IF NOT EXISTS alert_subscriptions (
    id BIGSERIAL PRIMARY KEY,
    user_id TEXT NOT NULL,
    parcel_id BIGINT,
    alert_types TEXT[] NOT NULL DEFAULT '{}',
    notification_method TEXT NOT NULL,
    email TEXT,
    phone_number TEXT,
    is_enabled BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_subscriptions_user
    ON alert_subscriptions(user_id);
CREATE INDEX IF NOT EXISTS idx_subscriptions_parcel
    ON alert_subscriptions(parcel_id);
"""


async def create_tables(database: Database) -> None:
    """Create the alert tables and indexes if they don't exist."""
    await database.execute(SCHEMA_SQL)
    logger.info("Alert tables ensured")


class _Where:
    """Accumulates AND-ed conditions with positional ``$n`` parameters."""

    def __init__(self) -> None:
        self.conditions: list[str] = []
        self.params: list[Any] = []

    def add(self, template: str, value: Any) -> None:
        self.params.append(value)
        self.conditions.append(template.format(f"${len(self.params)}"))

    def next_placeholder(self) -> str:
        return f"${len(self.params) + 1}"

    def clause(self) -> str:
        if not self.conditions:
            return ""
        return "WHERE " + " AND ".join(self.conditions)


class AlertRepository(AlertStore):
    """Repository for alert and alert-history persistence.

    Tables:
        - alerts: One row per alert, mutated only through update()
        - alert_history: Append-only audit trail
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create(self, alert: Alert) -> Alert:
        sql = """
            INSERT INTO alerts (
                alert_type, severity, parcel_id, location, title, message,
                alert_time, expiry_time, is_active, acknowledged,
                acknowledged_at, acknowledged_by, metadata
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            alert.alert_type,
            alert.severity,
            alert.parcel_id,
            alert.location,
            alert.title,
            alert.message,
            alert.alert_time,
            alert.expiry_time,
            alert.is_active,
            alert.acknowledged,
            alert.acknowledged_at,
            alert.acknowledged_by,
            json.dumps(alert.metadata),
        )
        return _row_to_alert(row)

    async def update(self, alert: Alert) -> Alert:
        sql = """
            UPDATE alerts SET
                is_active = is_active AND $2,
                acknowledged = $3,
                acknowledged_at = $4,
                acknowledged_by = $5,
                expiry_time = $6,
                metadata = $7
            WHERE id = $1
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            alert.id,
            alert.is_active,
            alert.acknowledged,
            alert.acknowledged_at,
            alert.acknowledged_by,
            alert.expiry_time,
            json.dumps(alert.metadata),
        )
        if row is None:
            raise AlertNotFoundError(alert.id)
        return _row_to_alert(row)

    async def get_by_id(self, alert_id: int) -> Alert | None:
        row = await self._db.fetchrow("SELECT * FROM alerts WHERE id = $1", alert_id)
        if row is None:
            return None
        return _row_to_alert(row)

    async def find_active(
        self,
        *,
        parcel_id: int | None = None,
        alert_type: str | None = None,
        severity: str | None = None,
        since: datetime | None = None,
    ) -> list[Alert]:
        where = _Where()
        where.conditions.append("is_active = TRUE")
        if parcel_id is not None:
            where.add("parcel_id = {}", parcel_id)
        if alert_type is not None:
            where.add("alert_type = {}", alert_type)
        if severity is not None:
            where.add("severity = {}", severity)
        if since is not None:
            where.add("alert_time >= {}", since)

        sql = f"""
            SELECT * FROM alerts
            {where.clause()}
            ORDER BY alert_time DESC, id DESC
        """
        rows = await self._db.fetch(sql, *where.params)
        return [_row_to_alert(row) for row in rows]

    async def find_unacknowledged(self) -> list[Alert]:
        sql = f"""
            SELECT * FROM alerts
            WHERE is_active = TRUE AND acknowledged = FALSE
            ORDER BY {_SEVERITY_ORDER_SQL} DESC, alert_time DESC, id DESC
        """
        rows = await self._db.fetch(sql)
        return [_row_to_alert(row) for row in rows]

    async def find_expired(self, now: datetime) -> list[Alert]:
        sql = """
            SELECT * FROM alerts
            WHERE is_active = TRUE AND expiry_time < $1
            ORDER BY expiry_time ASC, id ASC
        """
        rows = await self._db.fetch(sql, now)
        return [_row_to_alert(row) for row in rows]

    async def find_since(
        self,
        start: datetime,
        parcel_id: int | None = None,
    ) -> list[Alert]:
        where = _Where()
        where.add("alert_time > {}", start)
        if parcel_id is not None:
            where.add("parcel_id = {}", parcel_id)

        sql = f"""
            SELECT * FROM alerts
            {where.clause()}
            ORDER BY alert_time DESC, id DESC
        """
        rows = await self._db.fetch(sql, *where.params)
        return [_row_to_alert(row) for row in rows]

    async def search(
        self,
        criteria: AlertSearchCriteria,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Alert]:
        where = _Where()
        if criteria.parcel_id is not None:
            where.add("parcel_id = {}", criteria.parcel_id)
        if criteria.alert_type is not None:
            where.add("alert_type = {}", criteria.alert_type)
        if criteria.severity is not None:
            where.add("severity = {}", criteria.severity)
        if criteria.is_active is not None:
            where.add("is_active = {}", criteria.is_active)
        if criteria.acknowledged is not None:
            where.add("acknowledged = {}", criteria.acknowledged)
        if criteria.start_date is not None:
            where.add("alert_time >= {}", criteria.start_date)
        if criteria.end_date is not None:
            where.add("alert_time <= {}", criteria.end_date)
        if criteria.search_text is not None:
            where.add(
                "(title ILIKE {0} OR message ILIKE {0})",
                f"%{criteria.search_text.strip()}%",
            )
        if criteria.location is not None:
            where.add("location ILIKE {}", f"%{criteria.location.strip()}%")

        limit_ph = where.next_placeholder()
        sql = f"""
            SELECT * FROM alerts
            {where.clause()}
            ORDER BY alert_time DESC, id DESC
            LIMIT {limit_ph} OFFSET ${len(where.params) + 2}
        """
        rows = await self._db.fetch(sql, *where.params, limit, offset)
        return [_row_to_alert(row) for row in rows]

    async def count(
        self,
        *,
        parcel_id: int | None = None,
        is_active: bool | None = None,
        acknowledged: bool | None = None,
    ) -> int:
        where = _Where()
        if parcel_id is not None:
            where.add("parcel_id = {}", parcel_id)
        if is_active is not None:
            where.add("is_active = {}", is_active)
        if acknowledged is not None:
            where.add("acknowledged = {}", acknowledged)

        sql = f"SELECT COUNT(*) FROM alerts {where.clause()}"
        count = await self._db.fetchval(sql, *where.params)
        return count or 0

    async def append_history(self, history: AlertHistory) -> AlertHistory:
        sql = """
            INSERT INTO alert_history (alert_id, action, performed_by, notes, action_time)
            VALUES ($1, $2, $3, $4, $5)
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            history.alert_id,
            history.action,
            history.performed_by,
            history.notes,
            history.action_time,
        )
        return _row_to_history(row)

    async def get_history(self, alert_id: int) -> list[AlertHistory]:
        sql = "SELECT * FROM alert_history WHERE alert_id = $1 ORDER BY id ASC"
        rows = await self._db.fetch(sql, alert_id)
        return [_row_to_history(row) for row in rows]


class SubscriptionRepository(SubscriptionStore):
    """Repository for the ``alert_subscriptions`` table."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create(self, subscription: AlertSubscription) -> AlertSubscription:
        sql = """
            INSERT INTO alert_subscriptions (
                user_id, parcel_id, alert_types, notification_method,
                email, phone_number, is_enabled, created_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            RETURNING *
        """
        row = await self._db.fetchrow(
            sql,
            subscription.user_id,
            subscription.parcel_id,
            sorted(subscription.alert_types),
            subscription.notification_method,
            subscription.email,
            subscription.phone_number,
            subscription.is_enabled,
            subscription.created_at,
        )
        return _row_to_subscription(row)

    async def find_by_user(self, user_id: str) -> list[AlertSubscription]:
        sql = "SELECT * FROM alert_subscriptions WHERE user_id = $1 ORDER BY id ASC"
        rows = await self._db.fetch(sql, user_id)
        return [_row_to_subscription(row) for row in rows]

    async def find_by_user_and_parcel(
        self,
        user_id: str,
        parcel_id: int,
    ) -> AlertSubscription | None:
        sql = """
            SELECT * FROM alert_subscriptions
            WHERE user_id = $1 AND parcel_id = $2
            ORDER BY id ASC
            LIMIT 1
        """
        row = await self._db.fetchrow(sql, user_id, parcel_id)
        if row is None:
            return None
        return _row_to_subscription(row)

    async def find_enabled_for_parcel(self, parcel_id: int) -> list[AlertSubscription]:
        sql = """
            SELECT * FROM alert_subscriptions
            WHERE is_enabled = TRUE AND (parcel_id = $1 OR parcel_id IS NULL)
            ORDER BY id ASC
        """
        rows = await self._db.fetch(sql, parcel_id)
        return [_row_to_subscription(row) for row in rows]

    async def find_enabled_by_parcel(self, parcel_id: int) -> list[AlertSubscription]:
        sql = """
            SELECT * FROM alert_subscriptions
            WHERE is_enabled = TRUE AND parcel_id = $1
            ORDER BY id ASC
        """
        rows = await self._db.fetch(sql, parcel_id)
        return [_row_to_subscription(row) for row in rows]

    async def find_all_enabled(self) -> list[AlertSubscription]:
        sql = "SELECT * FROM alert_subscriptions WHERE is_enabled = TRUE ORDER BY id ASC"
        rows = await self._db.fetch(sql)
        return [_row_to_subscription(row) for row in rows]

    async def count_enabled(self) -> int:
        sql = "SELECT COUNT(*) FROM alert_subscriptions WHERE is_enabled = TRUE"
        count = await self._db.fetchval(sql)
        return count or 0


def _row_to_alert(row: Any) -> Alert:
    """Convert an asyncpg Record to an Alert."""
    metadata = row.get("metadata") or {}
    if isinstance(metadata, str):
        metadata = json.loads(metadata)

    return Alert(
        id=row["id"],
        alert_type=row["alert_type"],
        severity=row["severity"],
        parcel_id=row.get("parcel_id"),
        location=row.get("location"),
        title=row["title"],
        message=row["message"],
        alert_time=row["alert_time"],
        expiry_time=row.get("expiry_time"),
        is_active=row.get("is_active", True),
        acknowledged=row.get("acknowledged", False),
        acknowledged_at=row.get("acknowledged_at"),
        acknowledged_by=row.get("acknowledged_by"),
        metadata=metadata,
    )


def _row_to_history(row: Any) -> AlertHistory:
    """Convert an asyncpg Record to an AlertHistory."""
    return AlertHistory(
        id=row["id"],
        alert_id=row["alert_id"],
        action=row["action"],
        performed_by=row.get("performed_by"),
        notes=row.get("notes"),
        action_time=row["action_time"],
    )


def _row_to_subscription(row: Any) -> AlertSubscription:
    """Convert an asyncpg Record to an AlertSubscription."""
    return AlertSubscription(
        id=row["id"],
        user_id=row["user_id"],
        parcel_id=row.get("parcel_id"),
        alert_types=frozenset(row.get("alert_types") or ()),
        notification_method=row["notification_method"],
        email=row.get("email"),
        phone_number=row.get("phone_number"),
        is_enabled=row.get("is_enabled", True),
        created_at=row["created_at"],
    )
