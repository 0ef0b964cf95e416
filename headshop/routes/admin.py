# -*- coding: utf-8 -*-
"""
Back-office routes, protected by HEADSHOP_ADMIN_TOKEN.

Subscription overrides, manual approval of payments whose webhook never
arrived, and shipping profile management.
"""
import re
from decimal import Decimal

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from headshop.infra.db import db
from headshop.infra.log import get_logger
from headshop.middleware.auth import require_admin_token
from headshop.middleware.errors import error_response, validation_error_response
from headshop.models import OrderStatus, PaymentStatus
from headshop.models.base import utcnow
from headshop.repositories import order_repository, payment_repository, shipping_repository, subscription_repository
from headshop.repositories.shipping_repository import ProfileInUse, ProfileNotFound
from headshop.repositories.subscription_repository import ActiveSubscriptionExists
from headshop.schemas.checkout import AdminStatusUpdate, ApprovePaymentRequest
from headshop.schemas.shipping import ShippingProfileRequest, ShippingProfileUpdate
from headshop.services.mercadopago import GatewayError, get_gateway
from headshop.services.metrics import get_metrics_service
from headshop.services.subscription_lifecycle import InvalidTransition, SubscriptionLifecycle

logger = get_logger('headshop.admin')

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')

PLAN_ID_IN_NOTES = re.compile(r"Plan ID: ([a-f0-9-]+)")


# -- Subscriptions -----------------------------------------------------------

@admin_bp.route('/user-subscriptions/<subscription_id>', methods=['PATCH'])
@require_admin_token
def update_user_subscription(subscription_id):
    try:
        data = AdminStatusUpdate(**(request.get_json(silent=True) or {}))
    except ValidationError:
        return error_response('Status inválido', 'INVALID_STATUS')

    subscription = subscription_repository.find_subscription_by_id(subscription_id)
    if subscription is None:
        return error_response('Assinatura não encontrada', 'SUBSCRIPTION_NOT_FOUND', 404)

    lifecycle = SubscriptionLifecycle(get_gateway(), metrics=get_metrics_service())
    try:
        lifecycle.set_status_admin(subscription, data.status)
    except ActiveSubscriptionExists:
        return error_response(
            'Usuário já possui outra assinatura ativa.', 'ALREADY_SUBSCRIBED', 409)
    except InvalidTransition:
        return error_response('Status inválido', 'INVALID_STATUS')

    logger.info("Subscription status set by admin", subscription_id=subscription.id, status=data.status)
    return jsonify({'success': True, 'data': subscription.to_dict(include_plan=True)}), 200


# -- Orders ------------------------------------------------------------------

@admin_bp.route('/orders/<order_id>/approve-payment', methods=['POST'])
@require_admin_token
def approve_payment(order_id):
    """
    Approve a payment by hand when its webhook was lost.

    When the payment has a gateway transaction id the gateway must report
    it as approved; if the gateway cannot be reached the approval proceeds.
    """
    try:
        data = ApprovePaymentRequest(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return validation_error_response(e)

    order = order_repository.find_order_by_id(order_id)
    if order is None:
        return error_response('Pedido não encontrado', 'ORDER_NOT_FOUND', 404)

    if data.payment_id:
        payment = next(
            (p for p in order.payments if data.payment_id in (p.id, p.transaction_id)),
            None,
        )
    else:
        payment = payment_repository.find_latest_order_payment(order.id)
    if payment is None:
        return error_response('Pagamento não encontrado neste pedido', 'PAYMENT_NOT_FOUND', 404)

    if payment.status == PaymentStatus.PAID:
        return error_response('Pagamento já está aprovado', 'ALREADY_PAID')

    if payment.transaction_id:
        try:
            mp_payment = get_gateway().get_payment(payment.transaction_id)
            if mp_payment.status != 'approved':
                return error_response(
                    f'Pagamento não está aprovado no Mercado Pago (status: {mp_payment.status})',
                    'NOT_APPROVED',
                    mpStatus=mp_payment.status,
                )
        except GatewayError as e:
            logger.warning(
                "Could not confirm payment with gateway, approving anyway",
                payment_id=payment.id,
                error=e.message,
            )

    try:
        payload = dict(payment.payload or {})
        payload.update({'manualApproval': True, 'approvedAt': utcnow().isoformat()})
        payment_repository.mark_payment_as_paid(payment, payload=payload)
        if order.status == OrderStatus.PENDING:
            order_repository.mark_order_as_paid(order)

        subscription_result = {'created': False, 'id': None}
        plan_id = order.plan_id
        if not plan_id and order.notes:
            match = PLAN_ID_IN_NOTES.search(order.notes)
            plan_id = match.group(1) if match else None
        if plan_id and subscription_repository.find_plan_by_id(plan_id) is None:
            logger.warning("Plan not found or inactive, no subscription created",
                           order_id=order.id, plan_id=plan_id)
            plan_id = None

        if plan_id and not subscription_repository.user_has_any_active_subscription(order.user_id):
            try:
                subscription = subscription_repository.create_subscription_with_first_cycle(
                    user_id=order.user_id,
                    plan_id=plan_id,
                    amount=payment.amount,
                    order_id=order.id,
                    payment_id=payment.id,
                    provider_sub_id=payment.transaction_id,
                )
                subscription_result = {'created': True, 'id': subscription.id}
            except ActiveSubscriptionExists:
                logger.info("User already has active subscription", user_id=order.user_id)
    except Exception:
        db.session.rollback()
        logger.exception("Manual payment approval failed", order_id=order_id)
        return error_response('Erro ao aprovar pagamento', 'INTERNAL_ERROR', 500)

    logger.info("Payment approved manually", order_id=order.id, payment_id=payment.id)
    return jsonify({
        'success': True,
        'message': 'Pagamento aprovado com sucesso',
        'order': {'id': order.id, 'status': order.status},
        'payment': {'id': payment.id, 'status': payment.status},
        'subscription': subscription_result,
    }), 200


# -- Shipping profiles -------------------------------------------------------

@admin_bp.route('/shipping-profiles', methods=['GET'])
@require_admin_token
def list_shipping_profiles():
    active_only = request.args.get('active', '').lower() == 'true'
    profiles = shipping_repository.list_profiles(active_only=active_only)
    return jsonify({'success': True, 'data': [p.to_dict() for p in profiles]}), 200


@admin_bp.route('/shipping-profiles', methods=['POST'])
@require_admin_token
def create_shipping_profile():
    try:
        data = ShippingProfileRequest(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return validation_error_response(e)

    profile = shipping_repository.create_profile(
        name=data.name,
        weight_kg=Decimal(str(data.weight_kg)),
        width_cm=data.width_cm,
        height_cm=data.height_cm,
        length_cm=data.length_cm,
        is_active=data.is_active,
    )
    logger.info("Shipping profile created", profile_id=profile.id)
    return jsonify({'success': True, 'data': profile.to_dict()}), 201


@admin_bp.route('/shipping-profiles/<profile_id>', methods=['PATCH'])
@require_admin_token
def update_shipping_profile(profile_id):
    try:
        data = ShippingProfileUpdate(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        return validation_error_response(e)

    changes = data.model_dump(exclude_none=True)
    if 'weight_kg' in changes:
        changes['weight_kg'] = Decimal(str(changes['weight_kg']))
    try:
        profile = shipping_repository.update_profile(profile_id, **changes)
    except ProfileNotFound:
        return error_response('Perfil de frete não encontrado', 'PROFILE_NOT_FOUND', 404)
    return jsonify({'success': True, 'data': profile.to_dict()}), 200


@admin_bp.route('/shipping-profiles/<profile_id>/toggle-active', methods=['POST'])
@require_admin_token
def toggle_shipping_profile(profile_id):
    try:
        profile = shipping_repository.toggle_profile_active(profile_id)
    except ProfileNotFound:
        return error_response('Perfil de frete não encontrado', 'PROFILE_NOT_FOUND', 404)
    return jsonify({'success': True, 'data': profile.to_dict()}), 200


@admin_bp.route('/shipping-profiles/<profile_id>', methods=['DELETE'])
@require_admin_token
def delete_shipping_profile(profile_id):
    try:
        shipping_repository.delete_profile(profile_id)
    except ProfileNotFound:
        return error_response('Perfil de frete não encontrado', 'PROFILE_NOT_FOUND', 404)
    except ProfileInUse as e:
        return error_response(str(e), 'PROFILE_IN_USE')
    return jsonify({'success': True}), 200
