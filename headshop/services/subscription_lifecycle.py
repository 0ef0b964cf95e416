# -*- coding: utf-8 -*-
"""
Subscription Lifecycle.

    none -> ACTIVE -> PAUSED -> CANCELED

User actions pause, resume and cancel; the payment processor reports its own
view through preapproval webhooks; administrators may override. Recurring
charge retries are the processor's policy (up to 4 attempts over 10 days,
auto-cancel after 3 consecutive rejections) and are only observed here.
"""
from typing import Optional

from headshop.infra.log import get_logger
from headshop.models import Subscription, SubscriptionStatus
from headshop.repositories import subscription_repository
from headshop.repositories.subscription_repository import ActiveSubscriptionExists
from headshop.services.payment_status import map_preapproval_status

logger = get_logger('headshop.subscriptions')

ALLOWED_TRANSITIONS = {
    SubscriptionStatus.ACTIVE: {SubscriptionStatus.PAUSED, SubscriptionStatus.CANCELED},
    SubscriptionStatus.PAUSED: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.CANCELED: set(),
}


class InvalidTransition(Exception):
    """The requested status change is not allowed from the current status."""

    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"Cannot move subscription from {from_status} to {to_status}")
        self.from_status = from_status
        self.to_status = to_status


def is_preapproval_id(provider_sub_id: Optional[str]) -> bool:
    """Payment ids are numeric; preapproval ids are hex strings."""
    return bool(provider_sub_id) and not str(provider_sub_id).isdigit()


class SubscriptionLifecycle:
    """Applies status changes to subscriptions, keeping the processor in step."""

    def __init__(self, gateway, metrics=None):
        self.gateway = gateway
        self.metrics = metrics

    def pause(self, subscription: Subscription) -> Subscription:
        return self._user_transition(subscription, SubscriptionStatus.PAUSED, "pause_preapproval")

    def resume(self, subscription: Subscription) -> Subscription:
        return self._user_transition(subscription, SubscriptionStatus.ACTIVE, "resume_preapproval")

    def cancel(self, subscription: Subscription) -> Subscription:
        return self._user_transition(subscription, SubscriptionStatus.CANCELED, "cancel_preapproval")

    def _user_transition(self, subscription: Subscription, to_status: str, gateway_op: str) -> Subscription:
        from_status = subscription.status
        if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
            raise InvalidTransition(from_status, to_status)

        if to_status == SubscriptionStatus.ACTIVE:
            active = subscription_repository.find_user_active_subscription(subscription.user_id)
            if active is not None and active.id != subscription.id:
                raise ActiveSubscriptionExists(subscription.user_id)

        # Processor first; a gateway error leaves the local row untouched
        if is_preapproval_id(subscription.provider_sub_id):
            getattr(self.gateway, gateway_op)(subscription.provider_sub_id)

        return self._persist(subscription, to_status, source="user")

    def apply_provider_status(self, subscription: Subscription, preapproval_status: str) -> bool:
        """
        Mirror a preapproval status reported by the processor.

        Returns True when the local subscription changed.
        """
        target = map_preapproval_status(preapproval_status)
        if target is None or target == subscription.status:
            return False
        if subscription.status == SubscriptionStatus.CANCELED:
            logger.warning(
                "Ignoring provider status for canceled subscription",
                subscription_id=subscription.id,
                provider_status=preapproval_status,
            )
            return False

        self._persist(subscription, target, source="webhook")
        return True

    def set_status_admin(self, subscription: Subscription, status: str) -> Subscription:
        """Administrative override. Local only; CANCELED -> ACTIVE reactivates."""
        if status not in SubscriptionStatus.ALL:
            raise InvalidTransition(subscription.status, status)
        if status == subscription.status:
            return subscription
        return self._persist(subscription, status, source="admin")

    def _persist(self, subscription: Subscription, to_status: str, source: str) -> Subscription:
        from_status = subscription.status
        subscription_repository.update_subscription_status(subscription, to_status)

        logger.log_transition(
            "subscription", subscription.id, from_status, to_status, source=source)
        if self.metrics is not None:
            self.metrics.record_subscription_transition(from_status, to_status, source)
        return subscription
