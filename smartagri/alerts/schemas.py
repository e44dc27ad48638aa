"""Schema definitions for alert, history and subscription records.

Maps 1:1 to the ``alerts``, ``alert_history`` and ``alert_subscriptions``
tables. An alert is a notification-worthy event on a parcel (frost,
pests, irrigation thresholds, ...); history rows are the append-only audit
trail of its state transitions; subscriptions are standing requests to be
notified about matching alerts.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from smartagri.alerts.errors import InvalidInputError

AlertType = Literal[
    "WEATHER",
    "PEST",
    "DISEASE",
    "THRESHOLD",
    "IRRIGATION",
    "FERTILIZATION",
    "HARVEST",
    "SYSTEM",
]

VALID_ALERT_TYPES: frozenset[str] = frozenset({
    "WEATHER",
    "PEST",
    "DISEASE",
    "THRESHOLD",
    "IRRIGATION",
    "FERTILIZATION",
    "HARVEST",
    "SYSTEM",
})

AlertSeverity = Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]

# Ordering used for sorting and tie-breaks (higher is more urgent)
SEVERITY_RANK: dict[str, int] = {
    "LOW": 1,
    "MEDIUM": 2,
    "HIGH": 3,
    "CRITICAL": 4,
}

VALID_SEVERITIES: frozenset[str] = frozenset(SEVERITY_RANK)

HistoryAction = Literal["CREATED", "ACKNOWLEDGED", "DISMISSED", "EXPIRED"]

VALID_HISTORY_ACTIONS: frozenset[str] = frozenset({
    "CREATED",
    "ACKNOWLEDGED",
    "DISMISSED",
    "EXPIRED",
})

NotificationMethod = Literal["EMAIL", "SMS", "PUSH", "IN_APP", "ALL"]

VALID_NOTIFICATION_METHODS: frozenset[str] = frozenset({
    "EMAIL",
    "SMS",
    "PUSH",
    "IN_APP",
    "ALL",
})

# Performer recorded for transitions made by the scheduler
SYSTEM_ACTOR = "SYSTEM"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_choice(value: Any, valid: frozenset[str], label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{label.capitalize()} is required")
    normalized = value.strip().upper()
    if normalized not in valid:
        raise InvalidInputError(
            f"Invalid {label} {value!r}. Must be one of: {sorted(valid)}"
        )
    return normalized


def parse_alert_type(value: Any) -> str:
    """Normalize an alert type name, raising InvalidInputError if unknown."""
    return _parse_choice(value, VALID_ALERT_TYPES, "alert type")


def parse_severity(value: Any) -> str:
    """Normalize a severity name, raising InvalidInputError if unknown."""
    return _parse_choice(value, VALID_SEVERITIES, "severity")


def parse_notification_method(value: Any) -> str:
    """Normalize a notification method, raising InvalidInputError if unknown."""
    return _parse_choice(value, VALID_NOTIFICATION_METHODS, "notification method")


def require_text(value: str | None, label: str) -> str:
    """Return ``value`` unchanged if it has non-whitespace content."""
    if value is None or not str(value).strip():
        raise InvalidInputError(f"{label} is required")
    return value


def ensure_utc(value: datetime | None) -> datetime | None:
    """Read a naive datetime as UTC; aware values pass through unchanged."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class Alert:
    """A persisted alert record from the alerts table.

    Attributes:
        alert_type: Category of the event (WEATHER, PEST, ...).
        severity: Urgency level (LOW, MEDIUM, HIGH, CRITICAL).
        title: Short human-readable summary.
        message: Detailed description of the condition.
        id: Store-assigned identifier (None until persisted).
        parcel_id: Parcel the alert concerns, if any.
        location: Free-form location label.
        alert_time: When the alert was raised.
        expiry_time: When the alert stops being relevant, if ever.
        is_active: False once dismissed or expired (terminal).
        acknowledged: Whether a user has reviewed the alert.
        acknowledged_at: When the acknowledgement happened.
        acknowledged_by: Who acknowledged it.
        metadata: JSONB payload with event-specific context.
    """

    alert_type: str
    severity: str
    title: str
    message: str
    id: int | None = None
    parcel_id: int | None = None
    location: str | None = None
    alert_time: datetime = field(default_factory=_utcnow)
    expiry_time: datetime | None = None
    is_active: bool = True
    acknowledged: bool = False
    acknowledged_at: datetime | None = None
    acknowledged_by: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.alert_type = parse_alert_type(self.alert_type)
        self.severity = parse_severity(self.severity)
        require_text(self.title, "Title")
        require_text(self.message, "Message")
        if self.expiry_time is not None and self.expiry_time < self.alert_time:
            raise InvalidInputError("Expiry time must not precede alert time")

    @property
    def severity_rank(self) -> int:
        return SEVERITY_RANK[self.severity]

    def is_expired(self, now: datetime) -> bool:
        """True if the alert is still active but its expiry time has passed."""
        return (
            self.is_active
            and self.expiry_time is not None
            and self.expiry_time < now
        )

    def mark_acknowledged(self, acknowledged_by: str, at: datetime) -> bool:
        """Record an acknowledgement.

        Acknowledgement fields are set together, once, and only while the
        alert is active.

        Returns:
            True if the alert transitioned, False if it was already
            acknowledged or is no longer active.
        """
        if self.acknowledged or not self.is_active:
            return False
        self.acknowledged = True
        self.acknowledged_by = acknowledged_by
        self.acknowledged_at = at
        return True

    def deactivate(self) -> bool:
        """Move the alert to the terminal inactive state.

        Returns:
            True if the alert transitioned, False if it was already inactive.
        """
        if not self.is_active:
            return False
        self.is_active = False
        return True

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "alert_type": self.alert_type,
            "severity": self.severity,
            "parcel_id": self.parcel_id,
            "location": self.location,
            "title": self.title,
            "message": self.message,
            "alert_time": self.alert_time.isoformat(),
            "expiry_time": _isoformat(self.expiry_time),
            "is_active": self.is_active,
            "acknowledged": self.acknowledged,
            "acknowledged_at": _isoformat(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "metadata": self.metadata,
        }


@dataclass
class AlertHistory:
    """One append-only audit row describing an alert state transition."""

    alert_id: int
    action: str
    performed_by: str | None = None
    notes: str | None = None
    action_time: datetime = field(default_factory=_utcnow)
    id: int | None = None

    def __post_init__(self) -> None:
        if self.action not in VALID_HISTORY_ACTIONS:
            raise InvalidInputError(
                f"Invalid history action {self.action!r}. "
                f"Must be one of: {sorted(VALID_HISTORY_ACTIONS)}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "alert_id": self.alert_id,
            "action": self.action,
            "performed_by": self.performed_by,
            "notes": self.notes,
            "action_time": self.action_time.isoformat(),
        }


@dataclass
class AlertSubscription:
    """A user's standing request to be notified about matching alerts.

    Attributes:
        user_id: Subscriber identifier.
        notification_method: EMAIL, SMS, PUSH, IN_APP or ALL.
        parcel_id: Parcel scope; None means all parcels.
        alert_types: Alert type names of interest; empty means all types.
        email: Destination for EMAIL (and the email leg of ALL).
        phone_number: Destination for SMS.
        is_enabled: Disabled subscriptions are never notified.
        id: Store-assigned identifier.
        created_at: When the subscription was created.
    """

    user_id: str
    notification_method: str
    parcel_id: int | None = None
    alert_types: frozenset[str] = field(default_factory=frozenset)
    email: str | None = None
    phone_number: str | None = None
    is_enabled: bool = True
    id: int | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        require_text(self.user_id, "User ID")
        self.notification_method = parse_notification_method(
            self.notification_method
        )
        self.alert_types = frozenset(
            parse_alert_type(t) for t in (self.alert_types or ())
        )

        if self.notification_method == "EMAIL" and not (self.email or "").strip():
            raise InvalidInputError(
                "Email is required for EMAIL notification method"
            )
        if self.notification_method == "SMS" and not (self.phone_number or "").strip():
            raise InvalidInputError(
                "Phone number is required for SMS notification method"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "parcel_id": self.parcel_id,
            "alert_types": sorted(self.alert_types),
            "notification_method": self.notification_method,
            "email": self.email,
            "phone_number": self.phone_number,
            "is_enabled": self.is_enabled,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class AlertSearchCriteria:
    """Optional filters for alert search; unset fields do not constrain."""

    parcel_id: int | None = None
    alert_type: str | None = None
    severity: str | None = None
    is_active: bool | None = None
    acknowledged: bool | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search_text: str | None = None
    location: str | None = None

    def __post_init__(self) -> None:
        if self.alert_type is not None:
            self.alert_type = parse_alert_type(self.alert_type)
        if self.severity is not None:
            self.severity = parse_severity(self.severity)
        self.start_date = ensure_utc(self.start_date)
        self.end_date = ensure_utc(self.end_date)
        if self.search_text is not None and not self.search_text.strip():
            self.search_text = None


@dataclass
class AlertTrends:
    """Aggregates over alerts raised in a trailing window."""

    days: int
    parcel_id: int | None
    total_alerts: int
    by_type: dict[str, int]
    by_severity: dict[str, int]
    acknowledged_rate: float
    avg_response_time_minutes: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "days": self.days,
            "parcel_id": self.parcel_id,
            "total_alerts": self.total_alerts,
            "by_type": self.by_type,
            "by_severity": self.by_severity,
            "acknowledged_rate": self.acknowledged_rate,
            "avg_response_time_minutes": self.avg_response_time_minutes,
        }
