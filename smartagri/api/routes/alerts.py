"""Alert endpoints: create, query, acknowledge, dismiss, statistics."""

import time
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query, status

from smartagri.alerts.schemas import AlertSearchCriteria
from smartagri.alerts.service import AlertService
from smartagri.api.auth import verify_api_key
from smartagri.api.dependencies import get_alert_service
from smartagri.api.models import (
    AcknowledgeRequest,
    AlertCreateRequest,
    AlertHistoryItem,
    AlertHistoryResponse,
    AlertItem,
    AlertsResponse,
    AlertStatisticsResponse,
    AlertTrendsResponse,
    BulkAcknowledgeRequest,
    BulkAcknowledgeResponse,
    DismissRequest,
    ErrorResponse,
)

logger = structlog.get_logger(__name__)
router = APIRouter()

_ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Invalid API key"},
    422: {"model": ErrorResponse, "description": "Invalid input"},
    500: {"model": ErrorResponse, "description": "Server error"},
}
_NOT_FOUND = {404: {"model": ErrorResponse, "description": "Alert not found"}}


def _elapsed_ms(start_time: float) -> float:
    return round((time.perf_counter() - start_time) * 1000, 2)


def _alerts_response(alerts, start_time: float) -> AlertsResponse:
    items = [AlertItem.from_alert(a) for a in alerts]
    return AlertsResponse(alerts=items, total=len(items), latency_ms=_elapsed_ms(start_time))


@router.post(
    "/alerts",
    response_model=AlertItem,
    status_code=status.HTTP_201_CREATED,
    responses=_ERROR_RESPONSES,
    summary="Create alert",
    description="Create an alert and notify matching subscribers in the background.",
)
async def create_alert(
    request: AlertCreateRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertItem:
    alert = await service.create_alert(
        alert_type=request.alert_type,
        severity=request.severity,
        title=request.title,
        message=request.message,
        parcel_id=request.parcel_id,
        location=request.location,
        expiry_seconds=request.expiry_seconds,
        metadata=request.metadata,
    )
    logger.info(
        "Alert created",
        alert_id=alert.id,
        alert_type=alert.alert_type,
        severity=alert.severity,
        parcel_id=alert.parcel_id,
    )
    return AlertItem.from_alert(alert)


@router.get(
    "/alerts/active",
    response_model=AlertsResponse,
    responses=_ERROR_RESPONSES,
    summary="List active alerts",
    description=(
        "List active alerts, newest first. Only one filter applies, chosen in "
        "the order parcel_id, alert_type, severity."
    ),
)
async def list_active_alerts(
    parcel_id: int | None = Query(default=None, description="Filter by parcel"),
    alert_type: str | None = Query(default=None, description="Filter by alert type"),
    severity: str | None = Query(default=None, description="Filter by severity"),
    limit: int | None = Query(default=None, ge=1, description="Maximum alerts to return"),
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertsResponse:
    start_time = time.perf_counter()
    alerts = await service.find_active_alerts(
        parcel_id=parcel_id,
        alert_type=alert_type,
        severity=severity,
        limit=limit,
    )
    response = _alerts_response(alerts, start_time)
    logger.info(
        "Active alerts listed",
        total=response.total,
        parcel_id=parcel_id,
        alert_type=alert_type,
        severity=severity,
        latency_ms=response.latency_ms,
    )
    return response


@router.get(
    "/alerts/unacknowledged",
    response_model=AlertsResponse,
    responses=_ERROR_RESPONSES,
    summary="List unacknowledged alerts",
    description="Active, unacknowledged alerts, most severe first, then newest.",
)
async def list_unacknowledged_alerts(
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertsResponse:
    start_time = time.perf_counter()
    alerts = await service.get_unacknowledged_alerts()
    return _alerts_response(alerts, start_time)


@router.get(
    "/alerts/search",
    response_model=AlertsResponse,
    responses=_ERROR_RESPONSES,
    summary="Search alerts",
    description="Search all alerts; every given filter must match. Newest first.",
)
async def search_alerts(
    parcel_id: int | None = Query(default=None, description="Filter by parcel"),
    alert_type: str | None = Query(default=None, description="Filter by alert type"),
    severity: str | None = Query(default=None, description="Filter by severity"),
    is_active: bool | None = Query(default=None, description="Filter by active flag"),
    acknowledged: bool | None = Query(default=None, description="Filter by acknowledgement"),
    start_date: datetime | None = Query(default=None, description="Raised at or after"),
    end_date: datetime | None = Query(default=None, description="Raised at or before"),
    q: str | None = Query(default=None, description="Text to find in title or message"),
    location: str | None = Query(default=None, description="Text to find in location"),
    limit: int = Query(default=50, ge=1, le=500, description="Maximum alerts to return"),
    offset: int = Query(default=0, ge=0, description="Offset for pagination"),
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertsResponse:
    start_time = time.perf_counter()
    criteria = AlertSearchCriteria(
        parcel_id=parcel_id,
        alert_type=alert_type,
        severity=severity,
        is_active=is_active,
        acknowledged=acknowledged,
        start_date=start_date,
        end_date=end_date,
        search_text=q,
        location=location,
    )
    alerts = await service.search_alerts(criteria, limit=limit, offset=offset)
    response = _alerts_response(alerts, start_time)
    logger.info("Alerts searched", total=response.total, latency_ms=response.latency_ms)
    return response


@router.get(
    "/alerts/statistics",
    response_model=AlertStatisticsResponse,
    responses=_ERROR_RESPONSES,
    summary="Alert statistics",
)
async def get_alert_statistics(
    parcel_id: int | None = Query(default=None, description="Scope to a parcel"),
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertStatisticsResponse:
    stats = await service.get_alert_statistics(parcel_id=parcel_id)
    return AlertStatisticsResponse(**stats)


@router.get(
    "/alerts/trends",
    response_model=AlertTrendsResponse,
    responses=_ERROR_RESPONSES,
    summary="Alert trends",
    description="Counts by type and severity, acknowledgement rate and response time.",
)
async def get_alert_trends(
    parcel_id: int | None = Query(default=None, description="Scope to a parcel"),
    days: int | None = Query(default=None, description="Trailing window in days"),
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertTrendsResponse:
    trends = await service.get_alert_trends(parcel_id=parcel_id, days=days)
    return AlertTrendsResponse(**trends.to_dict())


@router.post(
    "/alerts/acknowledge",
    response_model=BulkAcknowledgeResponse,
    responses=_ERROR_RESPONSES,
    summary="Acknowledge several alerts",
    description="Best effort: missing or already handled alerts are skipped.",
)
async def acknowledge_alerts(
    request: BulkAcknowledgeRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> BulkAcknowledgeResponse:
    start_time = time.perf_counter()
    alerts = await service.acknowledge_multiple(request.alert_ids, request.acknowledged_by)
    latency_ms = _elapsed_ms(start_time)
    logger.info(
        "Alerts acknowledged",
        requested=len(request.alert_ids),
        acknowledged=len(alerts),
        acknowledged_by=request.acknowledged_by,
        latency_ms=latency_ms,
    )
    return BulkAcknowledgeResponse(
        acknowledged=[AlertItem.from_alert(a) for a in alerts],
        requested=len(request.alert_ids),
        total=len(alerts),
        latency_ms=latency_ms,
    )


@router.get(
    "/alerts/{alert_id}",
    response_model=AlertItem,
    responses={**_ERROR_RESPONSES, **_NOT_FOUND},
    summary="Get alert",
)
async def get_alert(
    alert_id: int,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertItem:
    alert = await service.get_alert_by_id(alert_id)
    return AlertItem.from_alert(alert)


@router.get(
    "/alerts/{alert_id}/history",
    response_model=AlertHistoryResponse,
    responses={**_ERROR_RESPONSES, **_NOT_FOUND},
    summary="Get alert history",
)
async def get_alert_history(
    alert_id: int,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertHistoryResponse:
    rows = await service.get_alert_history(alert_id)
    return AlertHistoryResponse(
        alert_id=alert_id,
        history=[AlertHistoryItem.from_history(h) for h in rows],
        total=len(rows),
    )


@router.post(
    "/alerts/{alert_id}/acknowledge",
    response_model=AlertItem,
    responses={**_ERROR_RESPONSES, **_NOT_FOUND},
    summary="Acknowledge alert",
    description="Idempotent: acknowledging twice returns the original acknowledgement.",
)
async def acknowledge_alert(
    alert_id: int,
    request: AcknowledgeRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertItem:
    alert = await service.acknowledge_alert(alert_id, request.acknowledged_by)
    logger.info("Alert acknowledged", alert_id=alert_id, acknowledged_by=alert.acknowledged_by)
    return AlertItem.from_alert(alert)


@router.post(
    "/alerts/{alert_id}/dismiss",
    response_model=AlertItem,
    responses={**_ERROR_RESPONSES, **_NOT_FOUND},
    summary="Dismiss alert",
)
async def dismiss_alert(
    alert_id: int,
    request: DismissRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> AlertItem:
    alert = await service.dismiss_alert(alert_id, request.dismissed_by)
    logger.info("Alert dismissed", alert_id=alert_id, dismissed_by=request.dismissed_by)
    return AlertItem.from_alert(alert)
