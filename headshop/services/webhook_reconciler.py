# -*- coding: utf-8 -*-
"""
Mercado Pago Webhook Reconciler.

Keeps local Order, Payment and Subscription records in step with the
payment processor. A notification only tells us which entity changed; its
state is always re-fetched from the API before anything is written.

Notification topics handled:
- payment: created, approved, rejected, refunded, cancelled
- subscription_preapproval / preapproval: authorized, paused, cancelled

Every delivery is acknowledged and stored as a `WebhookEvent` row.
"""
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import ValidationError

from headshop.infra.db import db
from headshop.infra.log import get_logger
from headshop.models import (
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    WebhookEvent,
)
from headshop.models.base import utcnow
from headshop.repositories import order_repository, payment_repository, subscription_repository
from headshop.repositories.subscription_repository import ActiveSubscriptionExists
from headshop.schemas.gateway import GatewayPayment, WebhookNotification
from headshop.services.mercadopago.errors import GatewayNotFoundError
from headshop.services.payment_status import map_payment_status
from headshop.services.structured_logging import log_unverified_webhook
from headshop.services.subscription_lifecycle import SubscriptionLifecycle
from headshop.services.webhook_signature import SignatureOutcome, verify_signature

logger = get_logger('headshop.webhooks')

PROVIDER = "MERCADO_PAGO"

PAYMENT_TOPICS = ("payment",)
PREAPPROVAL_TOPICS = ("subscription_preapproval", "preapproval")

CARD_METHODS = ("credit_card", "debit_card")

RENEWAL_PAYLOAD_TYPE = "subscription_renewal"


class WebhookResult:
    PROCESSED = "processed"
    NO_ACTION = "no_action"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    ERROR = "error"


def resolve_notification(body: Optional[Dict[str, Any]], query: Mapping[str, str]) -> Tuple[Optional[str], Optional[str], Optional[str], bool]:
    """
    Work out (topic, action, resource_id, legacy) for a delivery.

    The JSON body wins; the `?id=&topic=` (or `?data.id=&type=`) query
    format is only consulted when the body names no entity.
    """
    notification = WebhookNotification()
    if isinstance(body, dict):
        try:
            notification = WebhookNotification.model_validate(body)
        except ValidationError as e:
            logger.warning("Unreadable webhook body", errors=e.error_count())

    if notification.resource_id:
        return notification.kind, notification.action, notification.resource_id, False

    resource_id = query.get("id") or query.get("data.id")
    topic = query.get("topic") or query.get("type")
    if resource_id:
        return topic, None, str(resource_id), True
    return notification.kind, notification.action, None, False


class WebhookReconciler:
    """Processes one webhook delivery end to end."""

    def __init__(self, gateway, webhook_secret: str = "", metrics=None, lifecycle: Optional[SubscriptionLifecycle] = None):
        self.gateway = gateway
        self.webhook_secret = webhook_secret or ""
        self.metrics = metrics
        self.lifecycle = lifecycle or SubscriptionLifecycle(gateway, metrics=metrics)

    def handle(self, body: Optional[Dict[str, Any]], query: Mapping[str, str], headers: Mapping[str, str]) -> WebhookEvent:
        topic, action, resource_id, legacy = resolve_notification(body, query)
        request_id = headers.get("x-request-id")

        outcome = verify_signature(
            self.webhook_secret,
            headers.get("x-signature"),
            request_id,
            resource_id,
            legacy=legacy,
        )
        if self.metrics is not None:
            self.metrics.record_webhook_signature(outcome)
        if outcome != SignatureOutcome.VALID:
            self.accept_unverified(outcome, topic=topic, resource_id=resource_id, request_id=request_id)

        logger.info(
            "Webhook received",
            topic=topic,
            action=action,
            resource_id=resource_id,
            signature=outcome,
            legacy=legacy,
        )

        error = None
        try:
            result = self.dispatch(topic, resource_id)
        except Exception as e:
            db.session.rollback()
            logger.exception("Webhook processing failed", topic=topic, resource_id=resource_id)
            result = WebhookResult.ERROR
            error = str(e)

        event = WebhookEvent(
            provider=PROVIDER,
            topic=topic,
            action=action,
            resource_id=resource_id,
            request_id=request_id,
            signature_status=outcome,
            legacy=legacy,
            payload=body if isinstance(body, dict) else dict(query),
            result=result,
            error=error,
        )
        db.session.add(event)
        db.session.commit()

        if self.metrics is not None:
            self.metrics.record_webhook_event(topic, result)
        return event

    def accept_unverified(self, reason: str, **context):
        """
        Continue with a delivery whose signature could not be verified.

        Nothing in the body is trusted: state is re-fetched from the API,
        so a forged notification can at most trigger a redundant lookup.
        """
        log_unverified_webhook("mercadopago", reason, **context)
        if self.metrics is not None:
            self.metrics.record_unverified_webhook(reason)

    def dispatch(self, topic: Optional[str], resource_id: Optional[str]) -> str:
        if not resource_id:
            logger.warning("Webhook without entity id", topic=topic)
            return WebhookResult.IGNORED

        try:
            if topic in PAYMENT_TOPICS:
                return self.process_payment(resource_id)
            elif topic in PREAPPROVAL_TOPICS:
                return self.process_preapproval(resource_id)
        except GatewayNotFoundError:
            logger.warning("Notified entity not found at provider", topic=topic, resource_id=resource_id)
            return WebhookResult.NOT_FOUND

        logger.info("Unhandled notification type", topic=topic)
        return WebhookResult.IGNORED

    # -- Payments ------------------------------------------------------------

    def process_payment(self, mp_payment_id: str) -> str:
        mp_payment = self.gateway.get_payment(mp_payment_id)

        payment, order, renewal = self._locate_payment(mp_payment)
        if payment is None:
            return WebhookResult.NOT_FOUND

        target = map_payment_status(mp_payment.status)
        if target == payment.status:
            logger.info(
                "No action needed for status",
                payment_id=payment.id,
                mp_status=mp_payment.status,
            )
            return WebhookResult.NO_ACTION

        from_status = payment.status
        if target == PaymentStatus.PAID:
            self._apply_paid(payment, order, mp_payment, renewal)
        elif target == PaymentStatus.FAILED:
            payment_repository.mark_payment_as_failed(payment, {
                "status": mp_payment.status,
                "statusDetail": mp_payment.status_detail,
                "mpPaymentId": mp_payment.id,
            })
        elif target == PaymentStatus.REFUNDED:
            self._apply_refund(payment, order, mp_payment)
        elif target == PaymentStatus.CANCELED:
            payment_repository.update_payment_status(payment, PaymentStatus.CANCELED)
            if order.status == OrderStatus.PENDING:
                order_repository.cancel_order(order)
        else:
            return WebhookResult.NO_ACTION

        logger.log_transition("payment", payment.id, from_status, target, mp_payment_id=mp_payment.id)
        if self.metrics is not None:
            self.metrics.record_payment_transition(from_status, target)
        return WebhookResult.PROCESSED

    def _locate_payment(self, mp_payment: GatewayPayment) -> Tuple[Optional[Payment], Optional[Order], bool]:
        """
        Find the local payment a provider payment belongs to.

        By transaction id first, then through the order named in
        `external_reference`. A new charge on an order whose latest payment
        was already paid under another transaction id is a recurring renewal
        and gets its own Payment row.
        """
        payment = payment_repository.find_payment_by_transaction_id(mp_payment.id)
        if payment is not None:
            # a renewal first seen as pending keeps its tag until approval
            renewal = (payment.payload or {}).get("type") == RENEWAL_PAYLOAD_TYPE
            return payment, payment.order, renewal

        if not mp_payment.external_reference:
            logger.error("No external_reference in payment", mp_payment_id=mp_payment.id)
            return None, None, False

        order = order_repository.find_order_by_id(mp_payment.external_reference)
        if order is None:
            logger.error("Order not found", order_id=mp_payment.external_reference)
            return None, None, False

        latest = payment_repository.find_latest_order_payment(order.id)
        if latest is None:
            logger.error("Payment record not found for order", order_id=order.id)
            return None, order, False

        if latest.status == PaymentStatus.PAID and latest.transaction_id and latest.transaction_id != mp_payment.id:
            renewal = payment_repository.create_payment(
                order_id=order.id,
                amount=mp_payment.transaction_amount if mp_payment.transaction_amount is not None else latest.amount,
                method=mp_payment.payment_type_id if mp_payment.payment_type_id in CARD_METHODS else latest.method,
                transaction_id=mp_payment.id,
                payload={"type": RENEWAL_PAYLOAD_TYPE, "mpPaymentId": mp_payment.id},
            )
            logger.info("Recurring charge recorded", order_id=order.id, payment_id=renewal.id)
            return renewal, order, True

        return latest, order, False

    def _apply_paid(self, payment: Payment, order: Order, mp_payment: GatewayPayment, renewal: bool):
        payload = {}
        if renewal:
            payload["type"] = RENEWAL_PAYLOAD_TYPE
        payload.update({
            "status": mp_payment.status,
            "statusDetail": mp_payment.status_detail,
            "mpPaymentId": mp_payment.id,
            "approvedAt": mp_payment.date_approved.isoformat() if mp_payment.date_approved else None,
            "cardLastFour": mp_payment.card_last_four,
            "cardBrand": mp_payment.payment_method_id,
        })
        payment_repository.mark_payment_as_paid(payment, mp_payment.id, payload)
        if order.status == OrderStatus.PENDING:
            order_repository.mark_order_as_paid(order)

        amount = mp_payment.transaction_amount if mp_payment.transaction_amount is not None else payment.amount
        subscription = self._subscription_for_charge(mp_payment, order, renewal)
        if subscription is not None:
            if not subscription_repository.cycle_exists_for_payment(payment.id):
                cycle = subscription_repository.create_renewal_cycle(subscription, amount, payment.id)
                logger.info("Renewal cycle recorded", subscription_id=subscription.id, cycle_id=cycle.id)
            return

        metadata = mp_payment.metadata
        if not (metadata.is_subscription and metadata.plan_id and metadata.user_id):
            return

        if subscription_repository.user_has_any_active_subscription(metadata.user_id):
            logger.info("User already has active subscription", user_id=metadata.user_id)
            return

        try:
            subscription = subscription_repository.create_subscription_with_first_cycle(
                user_id=metadata.user_id,
                plan_id=metadata.plan_id,
                amount=amount,
                order_id=order.id,
                payment_id=payment.id,
                provider=PROVIDER,
                provider_sub_id=mp_payment.id,
            )
        except ActiveSubscriptionExists:
            logger.info("Concurrent subscription creation lost the race", user_id=metadata.user_id)
            return

        if self.metrics is not None:
            self.metrics.record_subscription_transition("none", SubscriptionStatus.ACTIVE, "webhook")

    def _subscription_for_charge(self, mp_payment: GatewayPayment, order: Order, renewal: bool) -> Optional[Subscription]:
        """The live subscription an approved charge renews, if any."""
        live = (SubscriptionStatus.ACTIVE, SubscriptionStatus.PAUSED)
        preapproval_id = mp_payment.metadata.preapproval_id
        if preapproval_id:
            return subscription_repository.find_by_provider_sub_id(preapproval_id, statuses=live)

        subscription = subscription_repository.find_by_provider_sub_id(mp_payment.id, statuses=live)
        if subscription is None and renewal:
            subscription = subscription_repository.find_by_order_id(order.id)
            if subscription is not None and subscription.status not in live:
                subscription = None
        return subscription

    def _apply_refund(self, payment: Payment, order: Order, mp_payment: GatewayPayment):
        payload = dict(payment.payload or {})
        payload.update({
            "refundedAt": utcnow().isoformat(),
            "originalStatus": mp_payment.status,
            "statusDetail": mp_payment.status_detail,
        })
        payment_repository.mark_payment_as_refunded(payment, payload)

        metadata = mp_payment.metadata
        subscription = None
        if metadata.is_subscription and metadata.user_id and metadata.plan_id:
            subscription = subscription_repository.find_user_plan_subscription(metadata.user_id, metadata.plan_id)
        elif order.is_subscription:
            subscription = subscription_repository.find_by_order_id(order.id)

        if subscription is None or subscription.status == SubscriptionStatus.CANCELED:
            return

        from_status = subscription.status
        subscription_repository.cancel_subscription(subscription)
        logger.log_transition(
            "subscription", subscription.id, from_status, SubscriptionStatus.CANCELED, reason="refund")
        if self.metrics is not None:
            self.metrics.record_subscription_transition(from_status, SubscriptionStatus.CANCELED, "webhook")

    # -- Preapprovals --------------------------------------------------------

    def process_preapproval(self, preapproval_id: str) -> str:
        preapproval = self.gateway.get_preapproval(preapproval_id)

        subscription = subscription_repository.find_by_provider_sub_id(
            preapproval.id, statuses=SubscriptionStatus.ALL)
        if subscription is None:
            logger.warning("No subscription for preapproval", preapproval_id=preapproval.id)
            return WebhookResult.NOT_FOUND

        try:
            changed = self.lifecycle.apply_provider_status(subscription, preapproval.status)
        except ActiveSubscriptionExists:
            logger.warning(
                "Preapproval reactivation conflicts with another active subscription",
                subscription_id=subscription.id,
            )
            return WebhookResult.CONFLICT

        return WebhookResult.PROCESSED if changed else WebhookResult.NO_ACTION
