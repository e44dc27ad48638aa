"""Exceptions raised by the alert service.

``AlertNotFoundError``/``SubscriptionNotFoundError`` and
``InvalidInputError`` are surfaced to callers with descriptive messages.
``InternalError`` wraps store or infrastructure failures and carries a
generic message; the original exception is chained as ``__cause__``.
"""


class AlertServiceError(Exception):
    """Base exception for alert service errors."""


class AlertNotFoundError(AlertServiceError):
    """Raised when a referenced alert does not exist."""

    def __init__(self, alert_id: int):
        super().__init__(f"Alert not found with ID: {alert_id}")
        self.alert_id = alert_id


class SubscriptionNotFoundError(AlertServiceError):
    """Raised when no subscription matches a lookup."""

    def __init__(self, user_id: str, parcel_id: int | None = None):
        scope = f" and parcel {parcel_id}" if parcel_id is not None else ""
        super().__init__(f"Subscription not found for user: {user_id}{scope}")
        self.user_id = user_id
        self.parcel_id = parcel_id


class InvalidInputError(AlertServiceError, ValueError):
    """Raised for missing/empty required fields or unknown enum values."""


class InternalError(AlertServiceError):
    """Raised when the store or other infrastructure fails unexpectedly."""


class StreamRejectedError(AlertServiceError):
    """Raised when a new alert stream cannot be started."""
