"""Shared fixtures for API tests."""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from smartagri.alerts.schemas import Alert
from smartagri.alerts.service import AlertService
from smartagri.api.app import create_app
from smartagri.api.auth import verify_api_key
from smartagri.api.dependencies import get_alert_service
from smartagri.config.settings import get_settings


def _make_alert(alert_id: int = 1, **kwargs) -> Alert:
    """Helper to create an Alert with sensible defaults."""
    return Alert(
        id=alert_id,
        alert_type=kwargs.pop("alert_type", "WEATHER"),
        severity=kwargs.pop("severity", "HIGH"),
        title=kwargs.pop("title", "Frost warning"),
        message=kwargs.pop("message", "Frost expected tonight"),
        alert_time=kwargs.pop(
            "alert_time", datetime(2026, 3, 1, 6, 0, 0, tzinfo=timezone.utc)
        ),
        **kwargs,
    )


@pytest.fixture(autouse=True)
def memory_backend(monkeypatch):
    """Run the app lifespan against in-memory stores with auth in dev mode."""
    monkeypatch.setenv("STORAGE_BACKEND", "memory")
    monkeypatch.delenv("API_KEYS", raising=False)
    monkeypatch.delenv("NOTIFICATION_GATEWAY_URL", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_dispatcher():
    return MagicMock()


@pytest.fixture
def alert_service(alert_store, subscription_store, mock_dispatcher):
    """Real AlertService over in-memory stores."""
    return AlertService(
        alert_store=alert_store,
        subscription_store=subscription_store,
        dispatcher=mock_dispatcher,
    )


@pytest.fixture
def client(alert_service):
    """FastAPI TestClient with the alert service overridden."""
    app = create_app()

    app.dependency_overrides[verify_api_key] = lambda: "test-key"
    app.dependency_overrides[get_alert_service] = lambda: alert_service

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
