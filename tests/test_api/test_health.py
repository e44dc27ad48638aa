"""Tests for the health endpoint and application-level middleware."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from smartagri.alerts.memory import InMemoryAlertStore, InMemorySubscriptionStore
from smartagri.alerts.service import AlertService
from smartagri.api.app import create_app
from smartagri.api.dependencies import get_alert_service, get_dispatcher, get_stream_manager


def _make_client(service: AlertService, active_streams: int = 0, pending: int = 0) -> TestClient:
    """Create a test client with stubbed stream and dispatcher state."""
    app = create_app()
    app.dependency_overrides[get_alert_service] = lambda: service
    app.dependency_overrides[get_stream_manager] = lambda: MagicMock(active_sessions=active_streams)
    app.dependency_overrides[get_dispatcher] = lambda: MagicMock(pending_jobs=pending)
    return TestClient(app)


class TestHealth:
    def test_up(self, alert_service):
        client = _make_client(alert_service, active_streams=2, pending=3)

        resp = client.get("/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "UP"
        assert data["active_alerts"] == 0
        assert data["enabled_subscriptions"] == 0
        assert data["active_streams"] == 2
        assert data["pending_notifications"] == 3
        assert data["error"] is None

    def test_down_when_store_fails(self):
        broken = AsyncMock(spec=InMemoryAlertStore)
        broken.count.side_effect = ConnectionError("connection refused")
        service = AlertService(broken, InMemorySubscriptionStore())
        client = _make_client(service)

        resp = client.get("/health")

        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "DOWN"
        assert data["error"] == "connection refused"
        assert data["active_alerts"] is None

    def test_without_dispatcher(self, alert_service):
        app = create_app()
        app.dependency_overrides[get_alert_service] = lambda: alert_service
        app.dependency_overrides[get_stream_manager] = lambda: MagicMock(active_sessions=0)
        app.dependency_overrides[get_dispatcher] = lambda: None

        data = TestClient(app).get("/health").json()

        assert data["pending_notifications"] == 0


class TestMiddleware:
    @pytest.fixture
    def plain_client(self, alert_service):
        return _make_client(alert_service)

    def test_request_id_generated(self, plain_client):
        resp = plain_client.get("/health")
        assert resp.headers.get("X-Request-ID")

    def test_request_id_propagated(self, plain_client):
        resp = plain_client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"

    def test_root(self, plain_client):
        data = plain_client.get("/").json()
        assert data["service"] == "SmartAgri Alert API"
        assert data["docs"] == "/docs"

    def test_cors_preflight(self, plain_client):
        resp = plain_client.options(
            "/alerts/active",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"
