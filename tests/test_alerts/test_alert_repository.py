"""Tests for the PostgreSQL repositories with a mocked Database."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from smartagri.alerts.errors import AlertNotFoundError
from smartagri.alerts.repository import (
    AlertRepository,
    SubscriptionRepository,
    _row_to_alert,
    _row_to_subscription,
    create_tables,
)
from smartagri.alerts.schemas import Alert, AlertHistory, AlertSearchCriteria, AlertSubscription

NOW = datetime(2026, 3, 1, 6, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_db():
    return AsyncMock()


@pytest.fixture
def repo(mock_db):
    return AlertRepository(mock_db)


@pytest.fixture
def sub_repo(mock_db):
    return SubscriptionRepository(mock_db)


def _make_db_row(**overrides):
    """Create a mock asyncpg Record as a dict."""
    row = {
        "id": 1,
        "alert_type": "WEATHER",
        "severity": "HIGH",
        "parcel_id": 10,
        "location": "North field",
        "title": "Frost warning",
        "message": "Frost expected tonight",
        "alert_time": NOW,
        "expiry_time": None,
        "is_active": True,
        "acknowledged": False,
        "acknowledged_at": None,
        "acknowledged_by": None,
        "metadata": {"temperature_c": -2},
    }
    row.update(overrides)
    return row


def _make_subscription_row(**overrides):
    row = {
        "id": 3,
        "user_id": "farmer-1",
        "parcel_id": None,
        "alert_types": ["PEST", "WEATHER"],
        "notification_method": "EMAIL",
        "email": "farmer@example.com",
        "phone_number": None,
        "is_enabled": True,
        "created_at": NOW,
    }
    row.update(overrides)
    return row


class TestRowConversion:
    def test_alert_row(self):
        alert = _row_to_alert(_make_db_row())
        assert alert.id == 1
        assert alert.parcel_id == 10
        assert alert.metadata == {"temperature_c": -2}

    def test_metadata_as_string(self):
        alert = _row_to_alert(_make_db_row(metadata='{"key": "val"}'))
        assert alert.metadata == {"key": "val"}

    def test_subscription_row(self):
        sub = _row_to_subscription(_make_subscription_row())
        assert sub.alert_types == frozenset({"PEST", "WEATHER"})
        assert sub.parcel_id is None


class TestCreateTables:
    @pytest.mark.asyncio
    async def test_executes_schema(self, mock_db):
        await create_tables(mock_db)
        sql = mock_db.execute.call_args[0][0]
        assert "CREATE TABLE IF NOT EXISTS alerts" in sql
        assert "CREATE TABLE IF NOT EXISTS alert_history" in sql
        assert "CREATE TABLE IF NOT EXISTS alert_subscriptions" in sql


class TestAlertRepository:
    @pytest.mark.asyncio
    async def test_create_returns_stored_row(self, repo, mock_db):
        mock_db.fetchrow.return_value = _make_db_row(id=17)
        alert = Alert(
            alert_type="WEATHER",
            severity="HIGH",
            title="Frost warning",
            message="Frost expected tonight",
            alert_time=NOW,
        )

        result = await repo.create(alert)

        assert result.id == 17
        args = mock_db.fetchrow.call_args[0]
        assert "INSERT INTO alerts" in args[0]
        assert args[-1] == "{}"

    @pytest.mark.asyncio
    async def test_update_never_reactivates(self, repo, mock_db):
        mock_db.fetchrow.return_value = _make_db_row(id=5, is_active=False)
        alert = _row_to_alert(_make_db_row(id=5))

        result = await repo.update(alert)

        sql, alert_id, is_active = mock_db.fetchrow.call_args[0][:3]
        assert "is_active = is_active AND $2" in sql
        assert (alert_id, is_active) == (5, True)
        assert result.is_active is False

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, repo, mock_db):
        mock_db.fetchrow.return_value = None
        alert = _row_to_alert(_make_db_row(id=5))

        with pytest.raises(AlertNotFoundError):
            await repo.update(alert)

    @pytest.mark.asyncio
    async def test_get_by_id_missing(self, repo, mock_db):
        mock_db.fetchrow.return_value = None
        assert await repo.get_by_id(9) is None

    @pytest.mark.asyncio
    async def test_find_active_builds_filters(self, repo, mock_db):
        mock_db.fetch.return_value = [_make_db_row()]

        result = await repo.find_active(parcel_id=10, severity="HIGH")

        assert len(result) == 1
        sql, *params = mock_db.fetch.call_args[0]
        assert "is_active = TRUE" in sql
        assert "parcel_id = $1" in sql
        assert "severity = $2" in sql
        assert "ORDER BY alert_time DESC" in sql
        assert params == [10, "HIGH"]

    @pytest.mark.asyncio
    async def test_find_unacknowledged_orders_by_severity(self, repo, mock_db):
        mock_db.fetch.return_value = []
        await repo.find_unacknowledged()
        sql = mock_db.fetch.call_args[0][0]
        assert "WHEN 'CRITICAL' THEN 4" in sql
        assert "acknowledged = FALSE" in sql

    @pytest.mark.asyncio
    async def test_find_expired(self, repo, mock_db):
        mock_db.fetch.return_value = [
            _make_db_row(expiry_time=NOW + timedelta(minutes=5))
        ]
        later = NOW + timedelta(hours=1)

        result = await repo.find_expired(later)

        assert result[0].expiry_time == NOW + timedelta(minutes=5)
        assert mock_db.fetch.call_args[0][1] == later

    @pytest.mark.asyncio
    async def test_search_parameters(self, repo, mock_db):
        mock_db.fetch.return_value = []
        criteria = AlertSearchCriteria(
            alert_type="pest",
            search_text=" aphid ",
            location="orchard",
        )

        await repo.search(criteria, limit=20, offset=40)

        sql, *params = mock_db.fetch.call_args[0]
        assert "alert_type = $1" in sql
        assert "(title ILIKE $2 OR message ILIKE $2)" in sql
        assert "location ILIKE $3" in sql
        assert "LIMIT $4 OFFSET $5" in sql
        assert params == ["PEST", "%aphid%", "%orchard%", 20, 40]

    @pytest.mark.asyncio
    async def test_count_without_filters(self, repo, mock_db):
        mock_db.fetchval.return_value = None
        assert await repo.count() == 0
        assert mock_db.fetchval.call_args[0][0].strip() == "SELECT COUNT(*) FROM alerts"

    @pytest.mark.asyncio
    async def test_append_history(self, repo, mock_db):
        mock_db.fetchrow.return_value = {
            "id": 8,
            "alert_id": 1,
            "action": "ACKNOWLEDGED",
            "performed_by": "alice",
            "notes": "Alert acknowledged",
            "action_time": NOW,
        }

        row = await repo.append_history(
            AlertHistory(alert_id=1, action="ACKNOWLEDGED", performed_by="alice")
        )

        assert row.id == 8
        assert row.performed_by == "alice"


class TestSubscriptionRepository:
    @pytest.mark.asyncio
    async def test_create_sorts_alert_types(self, sub_repo, mock_db):
        mock_db.fetchrow.return_value = _make_subscription_row()
        sub = AlertSubscription(
            user_id="farmer-1",
            notification_method="EMAIL",
            email="farmer@example.com",
            alert_types=frozenset({"WEATHER", "PEST"}),
        )

        result = await sub_repo.create(sub)

        assert result.id == 3
        assert mock_db.fetchrow.call_args[0][3] == ["PEST", "WEATHER"]

    @pytest.mark.asyncio
    async def test_find_enabled_for_parcel_includes_unscoped(self, sub_repo, mock_db):
        mock_db.fetch.return_value = [_make_subscription_row()]

        result = await sub_repo.find_enabled_for_parcel(10)

        assert len(result) == 1
        sql = mock_db.fetch.call_args[0][0]
        assert "parcel_id IS NULL" in sql

    @pytest.mark.asyncio
    async def test_find_by_user_and_parcel_missing(self, sub_repo, mock_db):
        mock_db.fetchrow.return_value = None
        assert await sub_repo.find_by_user_and_parcel("farmer-1", 10) is None

    @pytest.mark.asyncio
    async def test_count_enabled(self, sub_repo, mock_db):
        mock_db.fetchval.return_value = 4
        assert await sub_repo.count_enabled() == 4
