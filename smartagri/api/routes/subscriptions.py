"""Subscription endpoints."""

import structlog
from fastapi import APIRouter, Depends, Query, status

from smartagri.alerts.service import AlertService
from smartagri.api.auth import verify_api_key
from smartagri.api.dependencies import get_alert_service
from smartagri.api.models import (
    ErrorResponse,
    SubscriptionCreateRequest,
    SubscriptionItem,
    SubscriptionsResponse,
)

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.post(
    "/subscriptions",
    response_model=SubscriptionItem,
    status_code=status.HTTP_201_CREATED,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        422: {"model": ErrorResponse, "description": "Invalid subscription"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
    summary="Subscribe to alerts",
    description=(
        "EMAIL subscriptions need an email address and SMS subscriptions a "
        "phone number. An empty alert_types list subscribes to every type."
    ),
)
async def create_subscription(
    request: SubscriptionCreateRequest,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> SubscriptionItem:
    subscription = await service.subscribe(
        user_id=request.user_id,
        notification_method=request.notification_method,
        parcel_id=request.parcel_id,
        alert_types=request.alert_types,
        email=request.email,
        phone_number=request.phone_number,
    )
    logger.info(
        "Subscription created",
        subscription_id=subscription.id,
        user_id=subscription.user_id,
        parcel_id=subscription.parcel_id,
        method=subscription.notification_method,
    )
    return SubscriptionItem.from_subscription(subscription)


@router.get(
    "/subscriptions",
    response_model=SubscriptionItem,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        404: {"model": ErrorResponse, "description": "Subscription not found"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
    summary="Get a user's subscription",
)
async def get_subscription(
    user_id: str = Query(..., description="Subscriber identifier"),
    parcel_id: int | None = Query(default=None, description="Parcel scope"),
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> SubscriptionItem:
    subscription = await service.get_subscription(user_id, parcel_id)
    return SubscriptionItem.from_subscription(subscription)


@router.get(
    "/subscriptions/parcel/{parcel_id}",
    response_model=SubscriptionsResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Invalid API key"},
        500: {"model": ErrorResponse, "description": "Server error"},
    },
    summary="List a parcel's subscriptions",
    description="Enabled subscriptions scoped to exactly this parcel.",
)
async def list_parcel_subscriptions(
    parcel_id: int,
    api_key: str = Depends(verify_api_key),
    service: AlertService = Depends(get_alert_service),
) -> SubscriptionsResponse:
    subscriptions = await service.get_subscriptions_for_parcel(parcel_id)
    return SubscriptionsResponse(
        subscriptions=[SubscriptionItem.from_subscription(s) for s in subscriptions],
        total=len(subscriptions),
    )
