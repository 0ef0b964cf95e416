# -*- coding: utf-8 -*-
"""
Subscription checkout.

PIX: the charge is created and the buyer pays later; the subscription is
created by the webhook once the payment is approved.

Card: the first month is charged synchronously. When approved, a
preapproval takes over the following months (first recurring charge in 30
days) and the subscription is created right away.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from headshop.infra.db import db
from headshop.infra.log import get_logger
from headshop.models import Address, Order, Payment, SubscriptionPlan, SubscriptionStatus, User
from headshop.models.base import isoformat, naive_utc
from headshop.repositories import order_repository, payment_repository, subscription_repository
from headshop.repositories.subscription_repository import ActiveSubscriptionExists
from headshop.schemas.checkout import CardPaymentData, SubscriptionCheckoutRequest
from headshop.schemas.gateway import (
    CardChargeRequest,
    ChargeRequest,
    Payer,
    PayerIdentification,
    PreapprovalRequest,
)
from headshop.services.mercadopago.errors import GatewayError, user_message
from headshop.services.shipping import ShippingService

logger = get_logger('headshop.checkout')

RECURRENCE_START_DAYS = 30

APPROVED = "approved"
PENDING_STATUSES = ("pending", "in_process", "authorized")


class CheckoutError(Exception):
    """A checkout that ends in an error response."""

    def __init__(self, message: str, error_code: str, status_code: int = 400, **extra):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.extra = extra


def recurrence_start(now: Optional[datetime] = None) -> datetime:
    """Midnight UTC, 30 days from now."""
    now = now or datetime.now(timezone.utc)
    start = now + timedelta(days=RECURRENCE_START_DAYS)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def find_user_address(address_id: str, user_id: str) -> Optional[Address]:
    return Address.query.filter_by(id=address_id, user_id=user_id).first()


class CheckoutService:
    """Orchestrates a subscription purchase across the database and the gateway."""

    def __init__(self, gateway, shipping: ShippingService, metrics=None):
        self.gateway = gateway
        self.shipping = shipping
        self.metrics = metrics

    def _record(self, method: str, outcome: str):
        if self.metrics is not None:
            self.metrics.record_checkout(method, outcome)

    @staticmethod
    def validate_request(req: SubscriptionCheckoutRequest):
        """Checks that need neither the database nor the gateway."""
        if not req.address_id:
            raise CheckoutError("Endereço de entrega é obrigatório", "ADDRESS_REQUIRED")
        if req.shipping_option is None:
            raise CheckoutError("Selecione uma opção de frete", "SHIPPING_REQUIRED")
        if isinstance(req.payment_data, CardPaymentData) and not req.payment_data.token:
            raise CheckoutError("Token do cartão é obrigatório", "MISSING_CARD_TOKEN")

    def checkout_subscription(self, user_id: str, req: SubscriptionCheckoutRequest) -> dict:
        """
        Run a subscription checkout and return the response `data`.

        Raises:
            CheckoutError: validation, ownership or payment failures
        """
        self.validate_request(req)

        user = db.session.get(User, user_id)
        if user is None:
            raise CheckoutError("Usuário não encontrado", "USER_NOT_FOUND", 404)
        if user.is_blocked:
            raise CheckoutError("Conta bloqueada. Entre em contato com o suporte.", "USER_BLOCKED", 403)

        plan = subscription_repository.find_plan_by_slug(req.plan_slug)
        if plan is None:
            raise CheckoutError("Plano não encontrado ou inativo", "PLAN_NOT_FOUND", 404)

        if subscription_repository.user_has_any_active_subscription(user.id):
            raise CheckoutError(
                "Você já possui uma assinatura ativa. Cancele a atual antes de assinar outro plano.",
                "ALREADY_SUBSCRIBED",
            )

        address = find_user_address(req.address_id, user.id)
        if address is None:
            raise CheckoutError("Endereço não encontrado", "ADDRESS_NOT_FOUND", 404)

        option = req.shipping_option
        profile = self.shipping.resolve_profile(plan_id=plan.id)
        shipping_data = self.shipping.build_order_shipping_data(option, address.zip_code, profile)

        order = order_repository.create_subscription_order(
            user.id,
            plan,
            address.snapshot(user),
            shipping_amount=option.price,
            shipping_data=shipping_data,
        )
        payment = payment_repository.create_payment(
            order_id=order.id,
            amount=order.total_amount,
            method=req.payment_data.method,
        )
        logger.info(
            "Subscription order created",
            user_id=user.id,
            plan_id=plan.id,
            order_id=order.id,
            payment_id=payment.id,
            total=float(order.total_amount),
            method=req.payment_data.method,
        )

        if req.is_pix:
            return self._pay_with_pix(user, plan, order, payment)
        return self._pay_with_card(user, plan, order, payment, req.payment_data)

    def _charge_fields(self, user: User, plan: SubscriptionPlan, order: Order, payment: Payment,
                       identification: Optional[PayerIdentification] = None, email: Optional[str] = None) -> dict:
        first_name, last_name = user.split_name()
        return {
            "amount": float(order.total_amount),
            "description": f"Assinatura {plan.name}",
            "external_reference": order.id,
            "payer": Payer(
                email=email or user.email,
                first_name=first_name,
                last_name=last_name,
                identification=identification,
            ),
            "metadata": {
                "type": "subscription",
                "planId": plan.id,
                "planSlug": plan.slug,
                "userId": user.id,
                "orderId": order.id,
                "paymentId": payment.id,
            },
        }

    # -- PIX -----------------------------------------------------------------

    def _pay_with_pix(self, user: User, plan: SubscriptionPlan, order: Order, payment: Payment) -> dict:
        try:
            charge = self.gateway.create_pix_payment(
                ChargeRequest(**self._charge_fields(user, plan, order, payment)))
        except GatewayError as e:
            logger.error("PIX charge failed", order_id=order.id, error=e.message, code=e.code)
            payment_repository.mark_payment_as_failed(payment, {"error": e.message, "errorCode": e.code})
            self._record("pix", "rejected")
            raise CheckoutError(e.user_message, "PIX_ERROR")

        payment_repository.store_pix_data(
            payment,
            transaction_id=charge.payment_id,
            qr_code=charge.qr_code,
            qr_code_base64=charge.qr_code_base64,
            ticket_url=charge.ticket_url,
            expires_at=charge.expiration_date,
        )
        self._record("pix", "pending")
        logger.info("PIX charge created", order_id=order.id, mp_payment_id=charge.payment_id)

        return {
            "orderId": order.id,
            "paymentId": payment.id,
            "status": charge.status,
            "paymentPreference": {
                "id": charge.payment_id,
                "qrCode": charge.qr_code,
                "qrCodeBase64": charge.qr_code_base64,
                "pixCopyPaste": charge.qr_code,
                "initPoint": charge.ticket_url,
                "expirationDate": isoformat(naive_utc(charge.expiration_date)),
            },
        }

    # -- Card ----------------------------------------------------------------

    def _pay_with_card(self, user: User, plan: SubscriptionPlan, order: Order, payment: Payment,
                       card: CardPaymentData) -> dict:
        identification = None
        if card.identification_type and card.identification_number:
            identification = PayerIdentification(
                type=card.identification_type, number=card.identification_number)

        try:
            result = self.gateway.create_card_payment(CardChargeRequest(
                token=card.token,
                payment_method_id=card.payment_method_id,
                issuer_id=card.issuer_id,
                installments=1,
                **self._charge_fields(user, plan, order, payment, identification, card.payer_email),
            ))
        except GatewayError as e:
            logger.error("Card charge failed", order_id=order.id, error=e.message, code=e.code)
            payment_repository.mark_payment_as_failed(payment, {
                "error": e.message,
                "errorCode": e.code,
            })
            self._record(card.method, "rejected")
            raise CheckoutError(e.user_message, e.code or "PAYMENT_REJECTED")

        if result.status in PENDING_STATUSES:
            payment_repository.update_payment_status(
                payment,
                payment.status,
                transaction_id=result.id,
                payload={
                    "type": "subscription_initial",
                    "status": result.status,
                    "statusDetail": result.status_detail,
                },
            )
            self._record(card.method, "pending")
            return {
                "orderId": order.id,
                "paymentId": payment.id,
                "mpPaymentId": result.id,
                "status": "pending",
                "message": "Pagamento sendo processado. Você receberá confirmação em breve.",
            }

        if result.status != APPROVED:
            payment_repository.mark_payment_as_failed(payment, {
                "error": result.status,
                "errorCode": result.status_detail,
                "statusDetail": result.status_detail,
                "mpPaymentId": result.id,
            })
            self._record(card.method, "rejected")
            raise CheckoutError(user_message(result.status_detail), "PAYMENT_REJECTED",
                                mpStatus=result.status, statusDetail=result.status_detail)

        payment_repository.mark_payment_as_paid(payment, result.id, {
            "type": "subscription_initial",
            "cardLastFour": result.card_last_four,
            "cardBrand": result.payment_method_id,
        })
        order_repository.mark_order_as_paid(order)
        self._record(card.method, "approved")

        return self._start_recurrence(user, plan, order, payment, card, result)

    def _start_recurrence(self, user, plan, order, payment, card, result) -> dict:
        next_billing = recurrence_start()
        preapproval = None
        try:
            preapproval = self.gateway.create_preapproval(PreapprovalRequest(
                reason=f"Assinatura {plan.name}",
                payer_email=card.payer_email or user.email,
                card_token_id=card.token,
                external_reference=order.id,
                amount=float(order.total_amount),
                start_date=next_billing,
            ))
        except GatewayError as e:
            logger.error(
                "Preapproval failed after approved first payment",
                order_id=order.id,
                mp_payment_id=result.id,
                error=e.message,
                code=e.code,
            )

        try:
            subscription = subscription_repository.create_subscription_with_first_cycle(
                user_id=user.id,
                plan_id=plan.id,
                amount=order.total_amount,
                order_id=order.id,
                payment_id=payment.id,
                provider_sub_id=preapproval.id if preapproval else None,
                next_billing_at=naive_utc(next_billing),
            )
        except ActiveSubscriptionExists:
            # The payment webhook got here first
            subscription = subscription_repository.find_user_active_subscription(user.id)
        else:
            if self.metrics is not None:
                self.metrics.record_subscription_transition("none", SubscriptionStatus.ACTIVE, "user")

        data = {
            "subscriptionId": subscription.id,
            "orderId": order.id,
            "paymentId": payment.id,
            "mpPaymentId": result.id,
            "status": "approved",
            "cardLastFour": result.card_last_four,
            "cardBrand": result.payment_method_id,
        }
        if preapproval is None:
            data.update({
                "warning": "Pagamento aprovado, mas houve problema ao configurar recorrência. Entre em contato conosco.",
                "message": "Primeira mensalidade paga com sucesso!",
            })
            return data

        data.update({
            "mpSubscriptionId": preapproval.id,
            "nextPaymentDate": isoformat(naive_utc(preapproval.next_payment_date or next_billing)),
            "message": "Assinatura ativada com sucesso! Primeira mensalidade paga.",
        })
        return data
