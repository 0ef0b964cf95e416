# -*- coding: utf-8 -*-
"""Tests for the Mercado Pago webhook endpoint and reconciler."""
import hmac
from hashlib import sha256
from unittest.mock import MagicMock, patch

import pytest
from prometheus_client import REGISTRY

from headshop.models import (
    CycleStatus,
    OrderStatus,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    WebhookEvent,
)
from headshop.repositories import payment_repository, subscription_repository
from headshop.services.webhook_reconciler import WebhookResult, resolve_notification

MP_PAYMENT_ID = "1234567890"
PREAPPROVAL_ID = "2c938084726fca480172750000000000"
WEBHOOK_URL = '/api/webhooks/mercadopago'


def _notification(resource_id, kind="payment"):
    return {"type": kind, "action": f"{kind}.updated", "data": {"id": resource_id}}


def _last_event():
    return WebhookEvent.query.order_by(WebhookEvent.received_at.desc()).first()


@pytest.fixture
def pix_order(subscription_order):
    """Subscription order whose PIX charge was created at the gateway."""
    order, payment = subscription_order
    payment_repository.store_pix_data(payment, MP_PAYMENT_ID, "qr", "qr64", None, None)
    return order, payment


def _gateway_payment(gateway, order, user, plan, status="approved", mp_id=MP_PAYMENT_ID, **extra):
    return gateway.add_payment(
        id=mp_id,
        status=status,
        external_reference=order.id,
        transaction_amount=65.80,
        payment_method_id="pix",
        payment_type_id="bank_transfer",
        metadata={"type": "subscription", "plan_id": plan.id, "user_id": user.id, "order_id": order.id},
        **extra,
    )


class TestResolveNotification:

    def test_body_format(self):
        assert resolve_notification(_notification(123), {}) == ("payment", "payment.updated", "123", False)

    def test_legacy_query_format(self):
        assert resolve_notification(None, {"id": "55", "topic": "payment"}) == ("payment", None, "55", True)

    def test_legacy_data_id_format(self):
        topic, _, resource_id, legacy = resolve_notification(None, {"data.id": "56", "type": "payment"})
        assert (topic, resource_id, legacy) == ("payment", "56", True)

    def test_body_wins_over_query(self):
        _, _, resource_id, legacy = resolve_notification(_notification("111"), {"id": "999", "topic": "payment"})
        assert resource_id == "111"
        assert legacy is False

    def test_nothing_to_process(self):
        assert resolve_notification({}, {}) == (None, None, None, False)


class TestPaymentWebhook:
    """Payment notifications re-fetch state and reconcile it."""

    def test_pix_approval_creates_subscription(self, client, gateway, pix_order, user, plan):
        order, payment = pix_order
        _gateway_payment(gateway, order, user, plan)

        response = client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))

        assert response.status_code == 200
        assert response.get_json() == {"received": True}
        assert payment.status == PaymentStatus.PAID
        assert payment.payload["mpPaymentId"] == MP_PAYMENT_ID
        assert order.status == OrderStatus.PAID

        sub = subscription_repository.find_user_active_subscription(user.id)
        assert sub is not None
        assert sub.provider_sub_id == MP_PAYMENT_ID
        assert sub.order_id == order.id
        assert [c.status for c in sub.cycles] == [CycleStatus.PAID]
        assert _last_event().result == WebhookResult.PROCESSED

    def test_replay_is_idempotent(self, client, gateway, pix_order, user, plan):
        order, _ = pix_order
        _gateway_payment(gateway, order, user, plan)

        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))
        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))

        subs = Subscription.query.filter_by(user_id=user.id).all()
        assert len(subs) == 1
        assert len(subs[0].cycles) == 1
        assert _last_event().result == WebhookResult.NO_ACTION
        assert WebhookEvent.query.count() == 2

    def test_located_by_external_reference(self, client, gateway, subscription_order, user, plan):
        order, payment = subscription_order
        _gateway_payment(gateway, order, user, plan)

        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))

        assert payment.status == PaymentStatus.PAID
        assert payment.transaction_id == MP_PAYMENT_ID

    def test_rejected_marks_failed(self, client, gateway, pix_order, user, plan):
        order, payment = pix_order
        _gateway_payment(gateway, order, user, plan, status="rejected", status_detail="cc_rejected_other_reason")

        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))

        assert payment.status == PaymentStatus.FAILED
        assert order.status == OrderStatus.PENDING
        assert subscription_repository.find_user_active_subscription(user.id) is None

    def test_cancelled_cancels_pending_order(self, client, gateway, pix_order, user, plan):
        order, payment = pix_order
        _gateway_payment(gateway, order, user, plan, status="cancelled")

        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))

        assert payment.status == PaymentStatus.CANCELED
        assert order.status == OrderStatus.CANCELED

    def test_refund_cancels_subscription_once(self, client, gateway, metrics, pix_order, user, plan):
        order, payment = pix_order
        _gateway_payment(gateway, order, user, plan)
        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))

        _gateway_payment(gateway, order, user, plan, status="refunded")
        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))
        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))

        assert payment.status == PaymentStatus.REFUNDED
        assert payment.payload["originalStatus"] == "refunded"
        assert "refundedAt" in payment.payload
        sub = Subscription.query.filter_by(user_id=user.id).one()
        assert sub.status == SubscriptionStatus.CANCELED
        assert REGISTRY.get_sample_value(
            "headshop_subscription_transitions_total",
            {"from_status": "ACTIVE", "to_status": "CANCELED", "source": "webhook"},
        ) == 1

    def test_recurring_charge_adds_cycle(self, client, gateway, pix_order, user, plan):
        order, _ = pix_order
        _gateway_payment(gateway, order, user, plan)
        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))

        gateway.add_payment(
            id="2222222222", status="approved", external_reference=order.id,
            transaction_amount=65.80, payment_type_id="credit_card")
        client.post(WEBHOOK_URL, json=_notification("2222222222"))
        client.post(WEBHOOK_URL, json=_notification("2222222222"))

        renewal = payment_repository.find_payment_by_transaction_id("2222222222")
        assert renewal.status == PaymentStatus.PAID
        assert renewal.method == "credit_card"
        assert renewal.payload["mpPaymentId"] == "2222222222"
        sub = Subscription.query.filter_by(user_id=user.id).one()
        assert len(sub.cycles) == 2
        assert len(payment_repository.find_order_payments(order.id)) == 2

    def test_recurring_charge_pending_then_approved(self, client, gateway, pix_order, user, plan):
        order, _ = pix_order
        _gateway_payment(gateway, order, user, plan)
        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))
        sub = Subscription.query.filter_by(user_id=user.id).one()
        billing_before = sub.next_billing_at

        gateway.add_payment(
            id="2222222222", status="pending", external_reference=order.id,
            transaction_amount=65.80, payment_type_id="credit_card")
        client.post(WEBHOOK_URL, json=_notification("2222222222"))

        renewal = payment_repository.find_payment_by_transaction_id("2222222222")
        assert renewal.status == PaymentStatus.PENDING
        assert len(sub.cycles) == 1

        gateway.add_payment(
            id="2222222222", status="approved", external_reference=order.id,
            transaction_amount=65.80, payment_type_id="credit_card")
        client.post(WEBHOOK_URL, json=_notification("2222222222"))
        client.post(WEBHOOK_URL, json=_notification("2222222222"))

        assert renewal.status == PaymentStatus.PAID
        assert len(sub.cycles) == 2
        assert sub.next_billing_at != billing_before
        assert len(payment_repository.find_order_payments(order.id)) == 2

    def test_preapproval_charge_renews_by_metadata(self, client, gateway, pix_order, user, plan):
        order, payment = pix_order
        payment_repository.mark_payment_as_paid(payment, MP_PAYMENT_ID)
        sub = subscription_repository.create_subscription_with_first_cycle(
            user.id, plan.id, order.total_amount, order_id=order.id,
            payment_id=payment.id, provider_sub_id=PREAPPROVAL_ID)

        gateway.add_payment(
            id="3333333333", status="approved", external_reference=order.id,
            metadata={"preapproval_id": PREAPPROVAL_ID})
        client.post(WEBHOOK_URL, json=_notification("3333333333"))

        assert len(sub.cycles) == 2

    def test_unknown_entity(self, client):
        response = client.post(WEBHOOK_URL, json=_notification("404404"))
        assert response.get_json() == {"received": True}
        assert _last_event().result == WebhookResult.NOT_FOUND

    def test_unknown_order(self, client, gateway):
        gateway.add_payment(id="77", status="approved", external_reference="no-such-order")
        client.post(WEBHOOK_URL, json=_notification("77"))
        assert _last_event().result == WebhookResult.NOT_FOUND

    def test_processing_error_still_acknowledged(self, client, gateway):
        gateway.get_payment = MagicMock(side_effect=RuntimeError("boom"))

        response = client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID))

        assert response.status_code == 200
        assert response.get_json() == {"received": True, "error": "Processing error"}
        event = _last_event()
        assert event.result == WebhookResult.ERROR
        assert event.error == "boom"


class TestDeliveryFormats:

    def test_legacy_query_notification(self, client, gateway, pix_order, user, plan):
        order, payment = pix_order
        _gateway_payment(gateway, order, user, plan)

        response = client.post(f"{WEBHOOK_URL}?id={MP_PAYMENT_ID}&topic=payment")

        assert response.status_code == 200
        assert payment.status == PaymentStatus.PAID
        event = _last_event()
        assert event.legacy is True
        assert event.signature_status == "legacy"
        assert event.payload == {"id": MP_PAYMENT_ID, "topic": "payment"}

    def test_body_wins_over_query(self, client, gateway, pix_order, user, plan):
        order, _ = pix_order
        _gateway_payment(gateway, order, user, plan)

        client.post(f"{WEBHOOK_URL}?id=999&topic=payment", json=_notification(MP_PAYMENT_ID))

        assert gateway.called("get_payment") == [MP_PAYMENT_ID]
        assert _last_event().resource_id == MP_PAYMENT_ID

    def test_unhandled_topic(self, client):
        client.post(WEBHOOK_URL, json=_notification("1", kind="merchant_order"))
        assert _last_event().result == WebhookResult.IGNORED

    def test_missing_entity_id(self, client, gateway):
        response = client.post(WEBHOOK_URL, json={"type": "payment"})
        assert response.status_code == 200
        assert _last_event().result == WebhookResult.IGNORED
        assert gateway.calls == []

    def test_status_endpoint(self, client):
        response = client.get(WEBHOOK_URL)
        assert response.status_code == 200
        assert response.get_json()["message"] == "Mercado Pago Webhook endpoint is active"


class TestSignatures:

    def test_unverified_is_logged_and_metered(self, client):
        with patch("headshop.services.webhook_reconciler.log_unverified_webhook") as mock_log:
            client.post(WEBHOOK_URL, json=_notification("404404"))

        mock_log.assert_called_once()
        assert mock_log.call_args.args == ("mercadopago", "skipped")
        assert REGISTRY.get_sample_value(
            "headshop_webhook_unverified_total", {"reason": "skipped"}) == 1
        assert _last_event().signature_status == "skipped"

    def test_valid_signature(self, app, client):
        app.config["MP_WEBHOOK_SECRET"] = "webhook-secret"
        manifest = "id:404404;request-id:req-1;ts:1700000000;"
        digest = hmac.new(b"webhook-secret", manifest.encode(), sha256).hexdigest()

        with patch("headshop.services.webhook_reconciler.log_unverified_webhook") as mock_log:
            client.post(WEBHOOK_URL, json=_notification("404404"), headers={
                "x-signature": f"ts=1700000000,v1={digest}",
                "x-request-id": "req-1",
            })

        mock_log.assert_not_called()
        event = _last_event()
        assert event.signature_status == "valid"
        assert event.request_id == "req-1"

    def test_mismatch_still_processed(self, app, client, gateway, pix_order, user, plan):
        app.config["MP_WEBHOOK_SECRET"] = "webhook-secret"
        order, payment = pix_order
        _gateway_payment(gateway, order, user, plan)

        client.post(WEBHOOK_URL, json=_notification(MP_PAYMENT_ID), headers={
            "x-signature": "ts=1700000000,v1=00ff",
            "x-request-id": "req-1",
        })

        assert payment.status == PaymentStatus.PAID
        assert _last_event().signature_status == "mismatch"
        assert REGISTRY.get_sample_value(
            "headshop_webhook_unverified_total", {"reason": "mismatch"}) == 1


class TestPreapprovalWebhook:

    @pytest.fixture
    def subscription(self, app, user, plan):
        return subscription_repository.create_subscription_with_first_cycle(
            user.id, plan.id, plan.price, provider_sub_id=PREAPPROVAL_ID)

    def test_provider_pause(self, client, gateway, subscription):
        gateway.add_preapproval(id=PREAPPROVAL_ID, status="paused")

        client.post(WEBHOOK_URL, json=_notification(PREAPPROVAL_ID, kind="subscription_preapproval"))

        assert subscription.status == SubscriptionStatus.PAUSED
        assert _last_event().result == WebhookResult.PROCESSED
        assert gateway.called("pause_preapproval") == []

    def test_provider_cancel(self, client, gateway, subscription):
        gateway.add_preapproval(id=PREAPPROVAL_ID, status="cancelled")
        client.post(WEBHOOK_URL, json=_notification(PREAPPROVAL_ID, kind="preapproval"))
        assert subscription.status == SubscriptionStatus.CANCELED

    def test_unchanged_status(self, client, gateway, subscription):
        gateway.add_preapproval(id=PREAPPROVAL_ID, status="authorized")
        client.post(WEBHOOK_URL, json=_notification(PREAPPROVAL_ID, kind="subscription_preapproval"))
        assert _last_event().result == WebhookResult.NO_ACTION

    def test_unknown_subscription(self, client, gateway):
        gateway.add_preapproval(id="ffff", status="paused")
        client.post(WEBHOOK_URL, json=_notification("ffff", kind="subscription_preapproval"))
        assert _last_event().result == WebhookResult.NOT_FOUND

    def test_reactivation_conflict(self, client, gateway, subscription, user, plan):
        subscription_repository.update_subscription_status(subscription, SubscriptionStatus.PAUSED)
        subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        gateway.add_preapproval(id=PREAPPROVAL_ID, status="authorized")

        client.post(WEBHOOK_URL, json=_notification(PREAPPROVAL_ID, kind="subscription_preapproval"))

        assert _last_event().result == WebhookResult.CONFLICT
        assert subscription_repository.find_subscription_by_id(subscription.id).status == SubscriptionStatus.PAUSED
