"""
Request and response models for the alert API.
"""

from typing import Any

from pydantic import BaseModel, Field

from smartagri.alerts.schemas import Alert, AlertHistory, AlertSubscription


class ErrorResponse(BaseModel):
    """Response model for errors."""

    detail: str = Field(
        ...,
        description="Error message",
    )
    error_type: str = Field(
        default="error",
        description="Error type: not_found, invalid_input, internal",
    )


# Alert models


class AlertCreateRequest(BaseModel):
    """Request model for creating an alert."""

    alert_type: str = Field(
        ...,
        description="WEATHER, PEST, DISEASE, THRESHOLD, IRRIGATION, FERTILIZATION, HARVEST or SYSTEM",
    )
    severity: str = Field(..., description="LOW, MEDIUM, HIGH or CRITICAL")
    title: str = Field(..., description="Short human-readable summary")
    message: str = Field(..., description="Detailed alert description")
    parcel_id: int | None = Field(default=None, description="Parcel the alert concerns")
    location: str | None = Field(default=None, description="Free-form location label")
    expiry_seconds: int | None = Field(
        default=None,
        description="Seconds until the alert expires; omit or <= 0 for no expiry",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific context",
    )


class AlertItem(BaseModel):
    """Single alert record."""

    id: int = Field(..., description="Alert identifier")
    alert_type: str = Field(..., description="Alert type")
    severity: str = Field(..., description="Severity level")
    parcel_id: int | None = Field(default=None, description="Parcel identifier")
    location: str | None = Field(default=None, description="Location label")
    title: str = Field(..., description="Short human-readable summary")
    message: str = Field(..., description="Detailed alert description")
    alert_time: str = Field(..., description="Alert creation timestamp (ISO format)")
    expiry_time: str | None = Field(default=None, description="Expiry timestamp (ISO format)")
    is_active: bool = Field(..., description="False once dismissed or expired")
    acknowledged: bool = Field(..., description="Whether the alert has been reviewed")
    acknowledged_at: str | None = Field(default=None, description="Acknowledgement timestamp")
    acknowledged_by: str | None = Field(default=None, description="Who acknowledged the alert")
    metadata: dict[str, Any] = Field(default_factory=dict, description="Event-specific context")

    @classmethod
    def from_alert(cls, alert: Alert) -> "AlertItem":
        return cls(**alert.to_dict())


class AlertsResponse(BaseModel):
    """Response model for listing alerts."""

    alerts: list[AlertItem] = Field(..., description="List of alerts")
    total: int = Field(..., description="Number of alerts returned")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


class AcknowledgeRequest(BaseModel):
    """Request model for acknowledging an alert."""

    acknowledged_by: str = Field(..., description="User acknowledging the alert")


class BulkAcknowledgeRequest(BaseModel):
    """Request model for acknowledging several alerts at once."""

    alert_ids: list[int] = Field(..., max_length=500, description="Alert identifiers")
    acknowledged_by: str = Field(..., description="User acknowledging the alerts")


class BulkAcknowledgeResponse(BaseModel):
    """Response model for bulk acknowledgement."""

    acknowledged: list[AlertItem] = Field(
        ...,
        description="Alerts transitioned by this request",
    )
    requested: int = Field(..., description="Number of ids in the request")
    total: int = Field(..., description="Number of alerts acknowledged")
    latency_ms: float = Field(..., description="Processing latency in milliseconds")


class DismissRequest(BaseModel):
    """Request model for dismissing an alert."""

    dismissed_by: str = Field(..., description="User dismissing the alert")


class AlertHistoryItem(BaseModel):
    """Single audit row."""

    id: int | None = Field(default=None, description="History row identifier")
    alert_id: int = Field(..., description="Alert identifier")
    action: str = Field(..., description="CREATED, ACKNOWLEDGED, DISMISSED or EXPIRED")
    performed_by: str | None = Field(default=None, description="Who performed the action")
    notes: str | None = Field(default=None, description="Free-form notes")
    action_time: str = Field(..., description="When the action happened (ISO format)")

    @classmethod
    def from_history(cls, history: AlertHistory) -> "AlertHistoryItem":
        return cls(**history.to_dict())


class AlertHistoryResponse(BaseModel):
    """Response model for an alert's history."""

    alert_id: int = Field(..., description="Alert identifier")
    history: list[AlertHistoryItem] = Field(..., description="Rows in append order")
    total: int = Field(..., description="Number of rows")


class AlertStatisticsResponse(BaseModel):
    """Response model for alert counts."""

    parcel_id: int | None = Field(default=None, description="Parcel scope, if any")
    total_alerts: int = Field(..., description="All alerts")
    active_alerts: int = Field(..., description="Active alerts")
    unacknowledged_alerts: int = Field(..., description="Active, unacknowledged alerts")
    timestamp: str = Field(..., description="When the counts were taken")


class AlertTrendsResponse(BaseModel):
    """Response model for alert trends."""

    days: int = Field(..., description="Trailing window in days")
    parcel_id: int | None = Field(default=None, description="Parcel scope, if any")
    total_alerts: int = Field(..., description="Alerts raised in the window")
    by_type: dict[str, int] = Field(default_factory=dict, description="Counts per type")
    by_severity: dict[str, int] = Field(default_factory=dict, description="Counts per severity")
    acknowledged_rate: float = Field(..., description="Acknowledged share in percent")
    avg_response_time_minutes: float = Field(
        ...,
        description="Mean minutes from alert to acknowledgement",
    )


# Subscription models


class SubscriptionCreateRequest(BaseModel):
    """Request model for subscribing to alerts."""

    user_id: str = Field(..., description="Subscriber identifier")
    notification_method: str = Field(..., description="EMAIL, SMS, PUSH, IN_APP or ALL")
    parcel_id: int | None = Field(default=None, description="Parcel scope; omit for all parcels")
    alert_types: list[str] = Field(
        default_factory=list,
        description="Alert types of interest; empty for all types",
    )
    email: str | None = Field(default=None, description="Required for EMAIL")
    phone_number: str | None = Field(default=None, description="Required for SMS")


class SubscriptionItem(BaseModel):
    """Single subscription record."""

    id: int = Field(..., description="Subscription identifier")
    user_id: str = Field(..., description="Subscriber identifier")
    parcel_id: int | None = Field(default=None, description="Parcel scope")
    alert_types: list[str] = Field(default_factory=list, description="Alert types of interest")
    notification_method: str = Field(..., description="Delivery method")
    email: str | None = Field(default=None, description="Email address")
    phone_number: str | None = Field(default=None, description="Phone number")
    is_enabled: bool = Field(..., description="Whether notifications are sent")
    created_at: str = Field(..., description="Creation timestamp (ISO format)")

    @classmethod
    def from_subscription(cls, subscription: AlertSubscription) -> "SubscriptionItem":
        return cls(**subscription.to_dict())


class SubscriptionsResponse(BaseModel):
    """Response model for listing subscriptions."""

    subscriptions: list[SubscriptionItem] = Field(..., description="Subscriptions")
    total: int = Field(..., description="Number of subscriptions returned")


# Health


class HealthResponse(BaseModel):
    """Response model for health check."""

    status: str = Field(..., description="UP or DOWN")
    active_alerts: int | None = Field(default=None, description="Active alerts")
    unacknowledged_alerts: int | None = Field(
        default=None,
        description="Active, unacknowledged alerts",
    )
    enabled_subscriptions: int | None = Field(
        default=None,
        description="Enabled subscriptions",
    )
    active_streams: int = Field(default=0, description="Open alert streams")
    pending_notifications: int = Field(default=0, description="Queued notification jobs")
    error: str | None = Field(default=None, description="Failure reason when DOWN")
    timestamp: str = Field(..., description="When the check ran")
