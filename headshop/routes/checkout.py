# -*- coding: utf-8 -*-
"""
Checkout routes: subscription purchase, payment-status polling and
recovery of an unpaid PIX code.
"""
from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from headshop.infra.db import db
from headshop.infra.log import get_logger
from headshop.middleware.auth import get_current_user_id
from headshop.middleware.errors import auth_required_response, error_response, validation_error_response
from headshop.models.base import isoformat, utcnow
from headshop.repositories import order_repository, payment_repository
from headshop.schemas.checkout import SubscriptionCheckoutRequest
from headshop.services.checkout import CheckoutError, CheckoutService
from headshop.services.mercadopago import GatewayError, get_gateway
from headshop.services.metrics import get_metrics_service
from headshop.services.payment_status import map_polling_status
from headshop.services.rate_limiter import CHECKOUT_RATE_LIMIT, limiter
from headshop.services.shipping import ShippingService

logger = get_logger('headshop.checkout')

checkout_bp = Blueprint('checkout', __name__, url_prefix='/api/checkout')


@checkout_bp.route('/subscription', methods=['POST'])
@limiter.limit(CHECKOUT_RATE_LIMIT)
def checkout_subscription():
    """Buy a subscription plan with PIX or a tokenized card."""
    user_id = get_current_user_id()
    if not user_id:
        return auth_required_response()

    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        return error_response('Body da requisição inválido', 'INVALID_JSON')

    try:
        checkout_request = SubscriptionCheckoutRequest(**body)
    except ValidationError as e:
        return validation_error_response(e)

    metrics = get_metrics_service()
    service = CheckoutService(
        get_gateway(),
        ShippingService.from_config(current_app.config, metrics=metrics),
        metrics=metrics,
    )

    try:
        data = service.checkout_subscription(user_id, checkout_request)
    except CheckoutError as e:
        logger.info("Checkout rejected", user_id=user_id, error_code=e.error_code)
        return error_response(e.message, e.error_code, e.status_code, **e.extra)
    except Exception:
        db.session.rollback()
        logger.exception("Subscription checkout failed", user_id=user_id)
        return error_response(
            'Erro interno ao processar assinatura. Tente novamente.',
            'INTERNAL_ERROR',
            500,
        )

    return jsonify({'success': True, 'data': data}), 200


@checkout_bp.route('/payment-status/<payment_id>', methods=['GET'])
def payment_status(payment_id):
    """
    Current status of a gateway payment, polled by the checkout page.

    Gateway failures answer "pending" so the client keeps polling.
    """
    user_id = get_current_user_id()
    if not user_id:
        return jsonify({'success': False, 'error': 'Não autorizado'}), 401

    order_id = request.args.get('orderId')
    if order_id and not order_repository.order_belongs_to_user(order_id, user_id):
        return jsonify({'success': False, 'error': 'Pedido não encontrado'}), 404

    try:
        mp_payment = get_gateway().get_payment(payment_id)
    except GatewayError as e:
        logger.warning("Payment status lookup failed", payment_id=payment_id, error=e.message)
        return jsonify({'success': True, 'status': 'pending', 'error': e.message}), 200

    return jsonify({
        'success': True,
        'status': map_polling_status(mp_payment.status),
        'statusDetail': mp_payment.status_detail,
        'paymentId': mp_payment.id,
    }), 200


@checkout_bp.route('/pending-pix', methods=['GET'])
def pending_pix():
    """The caller's unpaid, unexpired PIX code, if any."""
    user_id = get_current_user_id()
    if not user_id:
        return auth_required_response()

    payment = payment_repository.find_pending_pix_payment(user_id)
    if payment is None:
        return jsonify({'success': True, 'hasPendingPix': False, 'data': None}), 200

    order = payment.order
    remaining = int((payment.pix_expires_at - utcnow()).total_seconds())
    plan_info = None
    if order.is_subscription:
        plan_info = {'planId': order.plan_id, 'notes': order.notes}

    return jsonify({
        'success': True,
        'hasPendingPix': True,
        'data': {
            'paymentId': payment.transaction_id or payment.id,
            'orderId': order.id,
            'amount': float(payment.amount),
            'qrCode': payment.pix_qr_code,
            'qrCodeBase64': payment.pix_qr_code_base64,
            'ticketUrl': payment.pix_ticket_url,
            'expiresAt': isoformat(payment.pix_expires_at),
            'remainingSeconds': max(0, remaining),
            'planInfo': plan_info,
        },
    }), 200
