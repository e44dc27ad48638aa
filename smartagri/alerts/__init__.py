"""Alert lifecycle and subscriber notification.

Components:
- Alert / AlertHistory / AlertSubscription: Dataclasses mapping to the tables
- AlertStore / SubscriptionStore: Persistence interfaces
- AlertRepository / SubscriptionRepository: asyncpg implementations
- InMemoryAlertStore / InMemorySubscriptionStore: In-process implementations
- AlertService: Creation, transitions, queries, statistics
- SubscriptionMatcher: Resolves subscribers for an alert
- NotificationSender / GatewayNotificationSender / LogNotificationSender: Channels
- NotificationConfig / NotificationDispatcher: Queued delivery with retry
- StreamConfig / StreamManager: Polling alert streams
- AlertScheduler: Periodic expiry sweep and statistics
"""

from smartagri.alerts.clock import SYSTEM_CLOCK, Clock
from smartagri.alerts.config import AlertConfig
from smartagri.alerts.dispatcher import (
    DeliveryResult,
    NotificationConfig,
    NotificationDispatcher,
)
from smartagri.alerts.errors import (
    AlertNotFoundError,
    AlertServiceError,
    InternalError,
    InvalidInputError,
    StreamRejectedError,
    SubscriptionNotFoundError,
)
from smartagri.alerts.matcher import (
    SubscriptionMatcher,
    filter_subscriptions,
    subscription_matches,
)
from smartagri.alerts.memory import InMemoryAlertStore, InMemorySubscriptionStore
from smartagri.alerts.repository import (
    AlertRepository,
    SubscriptionRepository,
    create_tables,
)
from smartagri.alerts.scheduler import AlertScheduler
from smartagri.alerts.schemas import (
    VALID_ALERT_TYPES,
    VALID_NOTIFICATION_METHODS,
    VALID_SEVERITIES,
    Alert,
    AlertHistory,
    AlertSearchCriteria,
    AlertSeverity,
    AlertSubscription,
    AlertTrends,
    AlertType,
    NotificationMethod,
)
from smartagri.alerts.senders import (
    GatewayNotificationSender,
    LogNotificationSender,
    NotificationSender,
)
from smartagri.alerts.service import AlertService
from smartagri.alerts.store import AlertStore, SubscriptionStore
from smartagri.alerts.streams import (
    AlertObserver,
    StreamConfig,
    StreamFilter,
    StreamManager,
    StreamSession,
)

__all__ = [
    "Alert",
    "AlertConfig",
    "AlertHistory",
    "AlertNotFoundError",
    "AlertObserver",
    "AlertRepository",
    "AlertScheduler",
    "AlertSearchCriteria",
    "AlertService",
    "AlertServiceError",
    "AlertSeverity",
    "AlertStore",
    "AlertSubscription",
    "AlertTrends",
    "AlertType",
    "Clock",
    "DeliveryResult",
    "GatewayNotificationSender",
    "InMemoryAlertStore",
    "InMemorySubscriptionStore",
    "InternalError",
    "InvalidInputError",
    "LogNotificationSender",
    "NotificationConfig",
    "NotificationDispatcher",
    "NotificationMethod",
    "NotificationSender",
    "StreamConfig",
    "StreamFilter",
    "StreamManager",
    "StreamRejectedError",
    "StreamSession",
    "SubscriptionMatcher",
    "SubscriptionNotFoundError",
    "SubscriptionRepository",
    "SubscriptionStore",
    "SYSTEM_CLOCK",
    "VALID_ALERT_TYPES",
    "VALID_NOTIFICATION_METHODS",
    "VALID_SEVERITIES",
    "create_tables",
    "filter_subscriptions",
    "subscription_matches",
]
