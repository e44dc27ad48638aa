"""Tests for alert REST API endpoints."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from smartagri.alerts.errors import AlertNotFoundError, InternalError
from smartagri.alerts.service import AlertService
from smartagri.api.app import create_app
from smartagri.api.auth import verify_api_key
from smartagri.api.dependencies import get_alert_service
from smartagri.config.settings import get_settings
from tests.test_api.conftest import _make_alert


def _create(client, **overrides):
    body = {
        "alert_type": "WEATHER",
        "severity": "HIGH",
        "title": "Frost warning",
        "message": "Frost expected tonight",
    }
    body.update(overrides)
    return client.post("/alerts", json=body)


# ── POST /alerts ─────────────────────────────────────────


class TestCreateAlert:
    def test_creates_alert(self, client, mock_dispatcher):
        resp = _create(client, parcel_id=4, expiry_seconds=3600, metadata={"min_temp_c": -2})

        assert resp.status_code == 201
        data = resp.json()
        assert data["id"] == 1
        assert data["alert_type"] == "WEATHER"
        assert data["is_active"] is True
        assert data["acknowledged"] is False
        assert data["expiry_time"] is not None
        assert data["metadata"] == {"min_temp_c": -2}

    def test_lowercase_enums_accepted(self, client):
        resp = _create(client, alert_type="pest", severity="low")
        assert resp.status_code == 201
        assert resp.json()["alert_type"] == "PEST"

    def test_unknown_type_is_invalid_input(self, client):
        resp = _create(client, alert_type="FLOOD")

        assert resp.status_code == 422
        data = resp.json()
        assert data["error_type"] == "invalid_input"
        assert "FLOOD" in data["detail"]

    def test_blank_title_is_invalid_input(self, client):
        resp = _create(client, title="  ")
        assert resp.status_code == 422
        assert resp.json()["error_type"] == "invalid_input"

    def test_expiry_out_of_range_is_invalid_input(self, client):
        resp = _create(client, expiry_seconds=10**12)

        assert resp.status_code == 422
        assert resp.json() == {
            "detail": "Expiry seconds out of range",
            "error_type": "invalid_input",
        }

    def test_missing_field_rejected(self, client):
        resp = client.post("/alerts", json={"alert_type": "WEATHER"})
        assert resp.status_code == 422


# ── GET /alerts/active ───────────────────────────────────


class TestListActive:
    def test_empty(self, client):
        resp = client.get("/alerts/active")
        assert resp.status_code == 200
        data = resp.json()
        assert data["alerts"] == []
        assert data["total"] == 0
        assert "latency_ms" in data

    def test_filters(self, client):
        _create(client, parcel_id=1, alert_type="PEST")
        _create(client, parcel_id=2, severity="CRITICAL")

        by_parcel = client.get("/alerts/active", params={"parcel_id": 1}).json()
        assert [a["parcel_id"] for a in by_parcel["alerts"]] == [1]

        by_severity = client.get("/alerts/active", params={"severity": "critical"}).json()
        assert [a["parcel_id"] for a in by_severity["alerts"]] == [2]

        limited = client.get("/alerts/active", params={"limit": 1}).json()
        assert limited["total"] == 1

    def test_invalid_severity(self, client):
        resp = client.get("/alerts/active", params={"severity": "SEVERE"})
        assert resp.status_code == 422
        assert resp.json()["error_type"] == "invalid_input"

    def test_dismissed_alert_not_listed(self, client):
        alert_id = _create(client).json()["id"]
        client.post(f"/alerts/{alert_id}/dismiss", json={"dismissed_by": "bob"})

        assert client.get("/alerts/active").json()["total"] == 0


# ── GET /alerts/unacknowledged, /alerts/search ───────────


class TestQueries:
    def test_unacknowledged_most_severe_first(self, client):
        _create(client, severity="LOW")
        _create(client, severity="CRITICAL")
        acked = _create(client, severity="HIGH").json()["id"]
        client.post(f"/alerts/{acked}/acknowledge", json={"acknowledged_by": "alice"})

        data = client.get("/alerts/unacknowledged").json()
        assert [a["severity"] for a in data["alerts"]] == ["CRITICAL", "LOW"]

    def test_search(self, client):
        _create(client, title="Aphid pressure", alert_type="PEST", location="North Orchard")
        _create(client, title="Frost warning")

        data = client.get("/alerts/search", params={"q": "aphid"}).json()
        assert [a["title"] for a in data["alerts"]] == ["Aphid pressure"]

        data = client.get("/alerts/search", params={"location": "orchard", "alert_type": "PEST"}).json()
        assert data["total"] == 1

    def test_search_dates_without_timezone(self, client):
        _create(client, title="Frost warning")

        resp = client.get("/alerts/search", params={"start_date": "2000-01-01T00:00:00"})
        assert resp.status_code == 200
        assert resp.json()["total"] == 1

        resp = client.get("/alerts/search", params={"end_date": "2020-01-01T00:00:00"})
        assert resp.status_code == 200
        assert resp.json()["total"] == 0

    def test_search_limit_bounds(self, client):
        resp = client.get("/alerts/search", params={"limit": 0})
        assert resp.status_code == 422


# ── GET /alerts/{id}, /alerts/{id}/history ───────────────


class TestGetAlert:
    def test_get(self, client):
        alert_id = _create(client).json()["id"]

        resp = client.get(f"/alerts/{alert_id}")

        assert resp.status_code == 200
        assert resp.json()["title"] == "Frost warning"

    def test_not_found(self, client):
        resp = client.get("/alerts/999")

        assert resp.status_code == 404
        assert resp.json() == {
            "detail": "Alert not found with ID: 999",
            "error_type": "not_found",
        }

    def test_history(self, client):
        alert_id = _create(client).json()["id"]
        client.post(f"/alerts/{alert_id}/acknowledge", json={"acknowledged_by": "alice"})
        client.post(f"/alerts/{alert_id}/dismiss", json={"dismissed_by": "bob"})

        data = client.get(f"/alerts/{alert_id}/history").json()

        assert data["alert_id"] == alert_id
        assert data["total"] == 3
        assert [h["action"] for h in data["history"]] == ["CREATED", "ACKNOWLEDGED", "DISMISSED"]
        assert data["history"][2]["performed_by"] == "bob"

    def test_history_not_found(self, client):
        assert client.get("/alerts/999/history").status_code == 404


# ── Transitions ──────────────────────────────────────────


class TestTransitions:
    def test_acknowledge(self, client):
        alert_id = _create(client).json()["id"]

        resp = client.post(f"/alerts/{alert_id}/acknowledge", json={"acknowledged_by": "alice"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["acknowledged"] is True
        assert data["acknowledged_by"] == "alice"
        assert data["acknowledged_at"] is not None

    def test_acknowledge_twice_keeps_first(self, client):
        alert_id = _create(client).json()["id"]
        client.post(f"/alerts/{alert_id}/acknowledge", json={"acknowledged_by": "alice"})

        resp = client.post(f"/alerts/{alert_id}/acknowledge", json={"acknowledged_by": "bob"})

        assert resp.status_code == 200
        assert resp.json()["acknowledged_by"] == "alice"

    def test_acknowledge_not_found(self, client):
        resp = client.post("/alerts/999/acknowledge", json={"acknowledged_by": "alice"})
        assert resp.status_code == 404

    def test_acknowledge_blank_actor(self, client):
        alert_id = _create(client).json()["id"]
        resp = client.post(f"/alerts/{alert_id}/acknowledge", json={"acknowledged_by": ""})
        assert resp.status_code == 422
        assert resp.json()["error_type"] == "invalid_input"

    def test_dismiss(self, client):
        alert_id = _create(client).json()["id"]

        resp = client.post(f"/alerts/{alert_id}/dismiss", json={"dismissed_by": "bob"})

        assert resp.status_code == 200
        assert resp.json()["is_active"] is False

    def test_bulk_acknowledge(self, client):
        first = _create(client).json()["id"]
        second = _create(client).json()["id"]

        resp = client.post(
            "/alerts/acknowledge",
            json={"alert_ids": [first, second, 999], "acknowledged_by": "alice"},
        )

        assert resp.status_code == 200
        data = resp.json()
        assert data["requested"] == 3
        assert data["total"] == 2
        assert {a["id"] for a in data["acknowledged"]} == {first, second}


# ── Statistics ───────────────────────────────────────────


class TestStatistics:
    def test_statistics(self, client):
        _create(client, parcel_id=1)
        dismissed = _create(client, parcel_id=1).json()["id"]
        client.post(f"/alerts/{dismissed}/dismiss", json={"dismissed_by": "bob"})

        data = client.get("/alerts/statistics", params={"parcel_id": 1}).json()

        assert data["parcel_id"] == 1
        assert data["total_alerts"] == 2
        assert data["active_alerts"] == 1
        assert data["unacknowledged_alerts"] == 1

    def test_trends(self, client):
        _create(client, alert_type="PEST")
        alert_id = _create(client).json()["id"]
        client.post(f"/alerts/{alert_id}/acknowledge", json={"acknowledged_by": "alice"})

        data = client.get("/alerts/trends", params={"days": 3}).json()

        assert data["days"] == 3
        assert data["total_alerts"] == 2
        assert data["by_type"] == {"PEST": 1, "WEATHER": 1}
        assert data["acknowledged_rate"] == 50.0

    def test_trends_invalid_days(self, client):
        resp = client.get("/alerts/trends", params={"days": 0})
        assert resp.status_code == 422
        assert resp.json()["detail"] == "Days must be at least 1"


# ── Error mapping ────────────────────────────────────────


class TestErrorMapping:
    @pytest.fixture
    def failing_client(self):
        service = AsyncMock(spec=AlertService)
        app = create_app()
        app.dependency_overrides[verify_api_key] = lambda: "test-key"
        app.dependency_overrides[get_alert_service] = lambda: service
        with TestClient(app) as c:
            yield c, service
        app.dependency_overrides.clear()

    def test_internal_error_hides_detail(self, failing_client):
        client, service = failing_client
        service.get_alert_by_id.side_effect = InternalError("Internal error during get alert")

        resp = client.get("/alerts/1")

        assert resp.status_code == 500
        assert resp.json() == {"detail": "Internal server error", "error_type": "internal"}

    def test_mocked_not_found(self, failing_client):
        client, service = failing_client
        service.get_alert_by_id.side_effect = AlertNotFoundError(5)

        assert client.get("/alerts/5").status_code == 404

    def test_mocked_alert_serialized(self, failing_client):
        client, service = failing_client
        service.get_alert_by_id.return_value = _make_alert(alert_id=5, parcel_id=3)

        data = client.get("/alerts/5").json()

        assert data["id"] == 5
        assert data["alert_time"] == "2026-03-01T06:00:00+00:00"


# ── Auth ─────────────────────────────────────────────────


class TestAuth:
    @pytest.fixture
    def secured_client(self, monkeypatch, alert_service):
        monkeypatch.setenv("API_KEYS", "key-1, key-2")
        get_settings.cache_clear()
        app = create_app()
        app.dependency_overrides[get_alert_service] = lambda: alert_service
        with TestClient(app) as c:
            yield c
        app.dependency_overrides.clear()

    def test_missing_key(self, secured_client):
        resp = secured_client.get("/alerts/active")
        assert resp.status_code == 401

    def test_invalid_key(self, secured_client):
        resp = secured_client.get("/alerts/active", headers={"X-API-KEY": "nope"})
        assert resp.status_code == 401

    def test_valid_key(self, secured_client):
        resp = secured_client.get("/alerts/active", headers={"X-API-KEY": "key-2"})
        assert resp.status_code == 200

    def test_health_needs_no_key(self, secured_client):
        assert secured_client.get("/health").status_code == 200
