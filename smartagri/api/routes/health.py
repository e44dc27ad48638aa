"""
Health check endpoint.
"""

import structlog
from fastapi import APIRouter, Depends

from smartagri.alerts.dispatcher import NotificationDispatcher
from smartagri.alerts.service import AlertService
from smartagri.alerts.streams import StreamManager
from smartagri.api.dependencies import get_alert_service, get_dispatcher, get_stream_manager
from smartagri.api.models import HealthResponse

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Store reachability, headline counts and background work. No auth required.",
)
async def health_check(
    service: AlertService = Depends(get_alert_service),
    streams: StreamManager = Depends(get_stream_manager),
    dispatcher: NotificationDispatcher | None = Depends(get_dispatcher),
) -> HealthResponse:
    health = await service.get_service_health()
    if health["status"] != "UP":
        logger.warning("Health check degraded", error=health.get("error"))

    return HealthResponse(
        **health,
        active_streams=streams.active_sessions,
        pending_notifications=dispatcher.pending_jobs if dispatcher is not None else 0,
    )
