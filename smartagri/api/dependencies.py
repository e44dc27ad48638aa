"""
Dependency injection for FastAPI endpoints.

Services are process-wide singletons built on first use (or by
``startup_services()`` during the app lifespan) and torn down by
``shutdown_services()``.
"""

import logging

from smartagri.alerts.config import AlertConfig
from smartagri.alerts.dispatcher import NotificationConfig, NotificationDispatcher
from smartagri.alerts.memory import InMemoryAlertStore, InMemorySubscriptionStore
from smartagri.alerts.repository import AlertRepository, SubscriptionRepository
from smartagri.alerts.scheduler import AlertScheduler
from smartagri.alerts.senders import (
    GatewayNotificationSender,
    LogNotificationSender,
    NotificationSender,
)
from smartagri.alerts.service import AlertService
from smartagri.alerts.store import AlertStore, SubscriptionStore
from smartagri.alerts.streams import StreamConfig, StreamManager
from smartagri.config.settings import get_settings
from smartagri.storage.database import Database

logger = logging.getLogger(__name__)

# Global service instances (initialized on first request)
_database: Database | None = None
_dispatcher: NotificationDispatcher | None = None
_alert_service: AlertService | None = None
_stream_manager: StreamManager | None = None
_scheduler: AlertScheduler | None = None


async def get_database() -> Database:
    """Get the shared database pool, connecting on first use."""
    global _database

    if _database is None:
        _database = Database()
        await _database.connect()

    return _database


async def _build_stores() -> tuple[AlertStore, SubscriptionStore]:
    settings = get_settings()
    if settings.uses_memory_store:
        logger.warning("Using in-memory alert storage; data is lost on restart")
        return InMemoryAlertStore(), InMemorySubscriptionStore()

    database = await get_database()
    return AlertRepository(database), SubscriptionRepository(database)


def _build_sender(config: NotificationConfig) -> NotificationSender:
    settings = get_settings()
    if settings.notification_gateway_configured:
        return GatewayNotificationSender(
            base_url=settings.notification_gateway_url,
            token=settings.notification_gateway_token,
            timeout=config.http_timeout_seconds,
        )
    logger.info("No notification gateway configured, notifications will be logged")
    return LogNotificationSender()


async def get_alert_service() -> AlertService:
    """
    Get alert service instance.

    Creates the stores, notification dispatcher and service on first use.
    """
    global _alert_service, _dispatcher

    if _alert_service is None:
        alert_store, subscription_store = await _build_stores()
        notification_config = NotificationConfig()
        _dispatcher = NotificationDispatcher(
            sender=_build_sender(notification_config),
            config=notification_config,
        )
        _alert_service = AlertService(
            alert_store=alert_store,
            subscription_store=subscription_store,
            dispatcher=_dispatcher,
            config=AlertConfig(),
        )

    return _alert_service


async def get_dispatcher() -> NotificationDispatcher | None:
    """Get the notification dispatcher (None until the service exists)."""
    return _dispatcher


async def get_stream_manager() -> StreamManager:
    """Get the alert stream manager."""
    global _stream_manager

    if _stream_manager is None:
        service = await get_alert_service()
        _stream_manager = StreamManager(service=service, config=StreamConfig())

    return _stream_manager


async def startup_services() -> None:
    """Build services and start the dispatcher workers and scheduler."""
    global _scheduler

    service = await get_alert_service()
    await get_stream_manager()

    if _dispatcher is not None:
        await _dispatcher.start()

    if _scheduler is None:
        _scheduler = AlertScheduler(service=service, config=AlertConfig())
    await _scheduler.start()


async def shutdown_services() -> None:
    """Stop background work and release connections."""
    global _database, _dispatcher, _alert_service, _stream_manager, _scheduler

    if _stream_manager is not None:
        await _stream_manager.shutdown()
        _stream_manager = None
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
    if _dispatcher is not None:
        await _dispatcher.stop()
        _dispatcher = None
    _alert_service = None
    if _database is not None:
        await _database.close()
        _database = None
