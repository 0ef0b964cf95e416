# -*- coding: utf-8 -*-
"""Tests for the back-office endpoints."""
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from headshop.models import OrderStatus, PaymentStatus
from headshop.repositories import payment_repository, subscription_repository
from headshop.services.mercadopago.errors import GatewayServerError


class TestAdminAuth:

    def test_missing_token(self, client, subscription_order):
        order, _ = subscription_order
        response = client.post(f'/api/admin/orders/{order.id}/approve-payment')
        assert response.status_code == 401
        assert response.get_json()["errorCode"] == "ADMIN_TOKEN_REQUIRED"

    def test_wrong_token(self, client):
        response = client.get('/api/admin/shipping-profiles', headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.get_json()["errorCode"] == "INVALID_ADMIN_TOKEN"

    def test_raw_token_accepted(self, client):
        response = client.get('/api/admin/shipping-profiles', headers={"Authorization": "test-admin-token"})
        assert response.status_code == 200

    def test_not_configured(self, app, client, admin_headers):
        app.config["HEADSHOP_ADMIN_TOKEN"] = ""
        response = client.get('/api/admin/shipping-profiles', headers=admin_headers)
        assert response.status_code == 500
        assert response.get_json()["errorCode"] == "ADMIN_NOT_CONFIGURED"


class TestSubscriptionOverride:

    @pytest.fixture
    def subscription(self, app, user, plan):
        return subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)

    def test_set_status(self, client, admin_headers, subscription):
        response = client.patch(f'/api/admin/user-subscriptions/{subscription.id}',
                                json={"status": "PAUSED"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.get_json()["data"]["status"] == "PAUSED"

    def test_reactivate_canceled(self, client, admin_headers, subscription):
        subscription_repository.cancel_subscription(subscription)
        response = client.patch(f'/api/admin/user-subscriptions/{subscription.id}',
                                json={"status": "ACTIVE"}, headers=admin_headers)
        assert response.get_json()["data"]["status"] == "ACTIVE"

    def test_reactivate_conflict(self, client, admin_headers, subscription, user, plan):
        subscription_repository.cancel_subscription(subscription)
        subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)

        response = client.patch(f'/api/admin/user-subscriptions/{subscription.id}',
                                json={"status": "ACTIVE"}, headers=admin_headers)

        assert response.status_code == 409
        assert response.get_json()["errorCode"] == "ALREADY_SUBSCRIBED"

    def test_invalid_status(self, client, admin_headers, subscription):
        response = client.patch(f'/api/admin/user-subscriptions/{subscription.id}',
                                json={"status": "EXPIRED"}, headers=admin_headers)
        assert response.status_code == 400
        assert response.get_json()["error"] == "Status inválido"

    def test_not_found(self, client, admin_headers):
        response = client.patch('/api/admin/user-subscriptions/missing',
                                json={"status": "PAUSED"}, headers=admin_headers)
        assert response.status_code == 404


class TestApprovePayment:

    def test_approve_creates_subscription(self, client, admin_headers, subscription_order, user, plan):
        order, payment = subscription_order

        response = client.post(f'/api/admin/orders/{order.id}/approve-payment', headers=admin_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data["message"] == "Pagamento aprovado com sucesso"
        assert data["order"]["status"] == OrderStatus.PAID
        assert data["payment"]["status"] == PaymentStatus.PAID
        assert data["subscription"]["created"] is True
        assert payment.payload["manualApproval"] is True

        sub = subscription_repository.find_user_active_subscription(user.id)
        assert sub.id == data["subscription"]["id"]
        assert sub.plan_id == plan.id

    def test_plan_id_from_notes(self, client, admin_headers, subscription_order, user, plan):
        from headshop.database import db
        order, _ = subscription_order
        order.plan_id = None
        db.session.commit()

        response = client.post(f'/api/admin/orders/{order.id}/approve-payment', headers=admin_headers)

        assert response.get_json()["subscription"]["created"] is True
        assert subscription_repository.find_user_active_subscription(user.id).plan_id == plan.id

    def test_inactive_plan_skips_subscription(self, client, admin_headers, subscription_order, user, plan):
        from headshop.database import db
        order, _ = subscription_order
        plan.active = False
        db.session.commit()

        response = client.post(f'/api/admin/orders/{order.id}/approve-payment', headers=admin_headers)

        assert response.status_code == 200
        data = response.get_json()
        assert data["order"]["status"] == OrderStatus.PAID
        assert data["subscription"] == {"created": False, "id": None}
        assert subscription_repository.find_user_active_subscription(user.id) is None

    def test_gateway_must_confirm(self, client, admin_headers, subscription_order, gateway):
        order, payment = subscription_order
        payment_repository.store_pix_data(payment, "1234567890", "qr", None, None, None)
        gateway.add_payment(id="1234567890", status="pending")

        response = client.post(f'/api/admin/orders/{order.id}/approve-payment', headers=admin_headers)

        assert response.status_code == 400
        data = response.get_json()
        assert data["errorCode"] == "NOT_APPROVED"
        assert data["mpStatus"] == "pending"
        assert payment.status == PaymentStatus.PENDING

    def test_gateway_unreachable_proceeds(self, client, admin_headers, subscription_order, gateway):
        order, payment = subscription_order
        payment_repository.store_pix_data(payment, "1234567890", "qr", None, None, None)
        gateway.get_payment = MagicMock(side_effect=GatewayServerError("down", 503))

        response = client.post(f'/api/admin/orders/{order.id}/approve-payment', headers=admin_headers)

        assert response.status_code == 200
        assert payment.status == PaymentStatus.PAID

    def test_already_paid(self, client, admin_headers, subscription_order):
        order, payment = subscription_order
        payment_repository.mark_payment_as_paid(payment)
        response = client.post(f'/api/admin/orders/{order.id}/approve-payment', headers=admin_headers)
        assert response.get_json()["errorCode"] == "ALREADY_PAID"

    def test_payment_selected_by_transaction_id(self, client, admin_headers, subscription_order):
        order, payment = subscription_order
        payment_repository.store_pix_data(payment, "1234567890", "qr", None, None, None)
        response = client.post(f'/api/admin/orders/{order.id}/approve-payment',
                               json={"paymentId": "999"}, headers=admin_headers)
        assert response.status_code == 404
        assert response.get_json()["errorCode"] == "PAYMENT_NOT_FOUND"

    def test_existing_subscription_not_duplicated(self, client, admin_headers, subscription_order, user, plan):
        order, _ = subscription_order
        subscription_repository.create_subscription_with_first_cycle(user.id, plan.id, plan.price)
        response = client.post(f'/api/admin/orders/{order.id}/approve-payment', headers=admin_headers)
        assert response.get_json()["subscription"] == {"created": False, "id": None}

    def test_order_not_found(self, client, admin_headers):
        response = client.post('/api/admin/orders/missing/approve-payment', headers=admin_headers)
        assert response.status_code == 404
        assert response.get_json()["errorCode"] == "ORDER_NOT_FOUND"


class TestShippingProfiles:

    def test_create_and_list(self, client, admin_headers):
        response = client.post('/api/admin/shipping-profiles', headers=admin_headers, json={
            "name": "Caixa Pequena", "weightKg": 0.3, "widthCm": 15, "heightCm": 5, "lengthCm": 20,
        })
        assert response.status_code == 201
        assert response.get_json()["data"]["weightKg"] == 0.3

        listed = client.get('/api/admin/shipping-profiles', headers=admin_headers).get_json()["data"]
        assert [p["name"] for p in listed] == ["Caixa Pequena"]

    def test_create_validation(self, client, admin_headers):
        response = client.post('/api/admin/shipping-profiles', headers=admin_headers, json={
            "name": "X", "weightKg": 50, "widthCm": 15, "heightCm": 5, "lengthCm": 20,
        })
        assert response.status_code == 400
        assert response.get_json()["errorCode"] == "VALIDATION_ERROR"

    def test_update(self, client, admin_headers, shipping_profile):
        response = client.patch(f'/api/admin/shipping-profiles/{shipping_profile.id}',
                                json={"weightKg": 2.25}, headers=admin_headers)
        data = response.get_json()["data"]
        assert data["weightKg"] == 2.25
        assert data["name"] == "Caixa Média"
        assert shipping_profile.weight_kg == Decimal("2.250")

    def test_toggle_and_filter(self, client, admin_headers, shipping_profile):
        response = client.post(f'/api/admin/shipping-profiles/{shipping_profile.id}/toggle-active',
                               headers=admin_headers)
        assert response.get_json()["data"]["isActive"] is False

        active = client.get('/api/admin/shipping-profiles?active=true', headers=admin_headers).get_json()["data"]
        assert active == []

    def test_delete_in_use(self, client, admin_headers, plan, shipping_profile):
        response = client.delete(f'/api/admin/shipping-profiles/{shipping_profile.id}', headers=admin_headers)
        assert response.status_code == 400
        assert response.get_json()["errorCode"] == "PROFILE_IN_USE"

    def test_delete(self, client, admin_headers, shipping_profile):
        response = client.delete(f'/api/admin/shipping-profiles/{shipping_profile.id}', headers=admin_headers)
        assert response.status_code == 200
        missing = client.delete(f'/api/admin/shipping-profiles/{shipping_profile.id}', headers=admin_headers)
        assert missing.status_code == 404
