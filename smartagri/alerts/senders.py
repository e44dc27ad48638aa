"""Notification senders for subscriber delivery.

``NotificationSender`` is the per-channel delivery contract used by the
dispatcher. Each method returns True on success; returning False or
raising counts as a failed attempt and triggers the retry policy.

``GatewayNotificationSender`` posts to an HTTP notification gateway.
``LogNotificationSender`` only logs, for deployments without a gateway.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from smartagri.alerts.schemas import Alert

logger = logging.getLogger(__name__)


class NotificationSender(ABC):
    """Abstract delivery channels for alert notifications."""

    @abstractmethod
    async def send_email(self, address: str, alert: Alert) -> bool:
        """Send ``alert`` to an email address."""

    @abstractmethod
    async def send_sms(self, phone_number: str, alert: Alert) -> bool:
        """Send ``alert`` as a text message."""

    @abstractmethod
    async def send_push(self, user_id: str, alert: Alert) -> bool:
        """Send ``alert`` as a push notification to a user's devices."""

    @abstractmethod
    async def send_in_app(self, user_id: str, alert: Alert) -> bool:
        """Deliver ``alert`` to a user's in-app inbox."""


class GatewayNotificationSender(NotificationSender):
    """Delivers notifications as JSON POSTs to ``{base_url}/{channel}``.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling).
    Transport errors and non-2xx responses are reported as False.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._timeout = timeout

    def _build_payload(self, recipient: str, alert: Alert) -> dict[str, Any]:
        return {
            "recipient": recipient,
            "alert_id": alert.id,
            "alert_type": alert.alert_type,
            "severity": alert.severity,
            "parcel_id": alert.parcel_id,
            "title": alert.title,
            "message": alert.message,
            "timestamp": alert.alert_time.isoformat(),
        }

    async def _post(self, channel: str, recipient: str, alert: Alert) -> bool:
        url = f"{self._base_url}/{channel}"
        payload = self._build_payload(recipient, alert)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=payload, headers=self._headers)
                if resp.is_success:
                    return True
                logger.warning(
                    "Gateway %s returned %d for alert %s",
                    url, resp.status_code, alert.id,
                )
                return False
        except httpx.TimeoutException:
            logger.warning("Gateway %s timed out for alert %s", url, alert.id)
            return False
        except httpx.HTTPError as e:
            logger.warning("Gateway %s failed for alert %s: %s", url, alert.id, e)
            return False

    async def send_email(self, address: str, alert: Alert) -> bool:
        return await self._post("email", address, alert)

    async def send_sms(self, phone_number: str, alert: Alert) -> bool:
        return await self._post("sms", phone_number, alert)

    async def send_push(self, user_id: str, alert: Alert) -> bool:
        return await self._post("push", user_id, alert)

    async def send_in_app(self, user_id: str, alert: Alert) -> bool:
        return await self._post("in_app", user_id, alert)


class LogNotificationSender(NotificationSender):
    """Logs every notification and reports success."""

    async def _log(self, channel: str, recipient: str, alert: Alert) -> bool:
        logger.info(
            "Notification via %s to %s: alert %s [%s] %s",
            channel, recipient, alert.id, alert.severity, alert.title,
        )
        return True

    async def send_email(self, address: str, alert: Alert) -> bool:
        return await self._log("email", address, alert)

    async def send_sms(self, phone_number: str, alert: Alert) -> bool:
        return await self._log("sms", phone_number, alert)

    async def send_push(self, user_id: str, alert: Alert) -> bool:
        return await self._log("push", user_id, alert)

    async def send_in_app(self, user_id: str, alert: Alert) -> bool:
        return await self._log("in_app", user_id, alert)
