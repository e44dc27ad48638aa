"""Subscription matching for newly created alerts.

Stateless filtering lives in plain functions so it can be tested without a
store; ``SubscriptionMatcher`` only adds the candidate query.
"""

import logging
from collections.abc import Iterable

from smartagri.alerts.schemas import Alert, AlertSubscription
from smartagri.alerts.store import SubscriptionStore

logger = logging.getLogger(__name__)


def subscription_matches(subscription: AlertSubscription, alert: Alert) -> bool:
    """Check whether a subscription wants to hear about an alert.

    A subscription matches when it is enabled, its parcel scope is either
    unset or equal to the alert's parcel, and its alert-type set is empty
    or contains the alert's type exactly.
    """
    if not subscription.is_enabled:
        return False
    if subscription.parcel_id is not None and subscription.parcel_id != alert.parcel_id:
        return False
    if subscription.alert_types and alert.alert_type not in subscription.alert_types:
        return False
    return True


def filter_subscriptions(
    alert: Alert,
    subscriptions: Iterable[AlertSubscription],
) -> list[AlertSubscription]:
    """Keep the subscriptions that match ``alert``, preserving input order."""
    return [s for s in subscriptions if subscription_matches(s, alert)]


class SubscriptionMatcher:
    """Resolves the subscriber set for an alert."""

    def __init__(self, subscription_store: SubscriptionStore) -> None:
        self._subscriptions = subscription_store

    async def find_matching(self, alert: Alert) -> list[AlertSubscription]:
        """Query candidate subscriptions and filter them for ``alert``.

        Alerts with a parcel consider that parcel's subscriptions plus
        global ones; alerts without a parcel consider every enabled
        subscription.
        """
        if alert.parcel_id is not None:
            candidates = await self._subscriptions.find_enabled_for_parcel(
                alert.parcel_id
            )
        else:
            candidates = await self._subscriptions.find_all_enabled()

        matched = filter_subscriptions(alert, candidates)
        logger.debug(
            "Alert %s matched %d of %d candidate subscriptions",
            alert.id, len(matched), len(candidates),
        )
        return matched
