# -*- coding: utf-8 -*-
"""
Mercado Pago Webhook Handler.

Deliveries are always acknowledged with 200 so the provider does not retry
forever; failures are logged and kept on the stored WebhookEvent.
"""
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from headshop.infra.db import db
from headshop.infra.log import get_logger
from headshop.services.mercadopago import get_gateway
from headshop.services.metrics import get_metrics_service
from headshop.services.webhook_reconciler import WebhookReconciler, WebhookResult

logger = get_logger('headshop.webhooks')

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/api/webhooks')


@webhooks_bp.route('/mercadopago', methods=['POST'])
def mercadopago_webhook():
    reconciler = WebhookReconciler(
        get_gateway(),
        webhook_secret=current_app.config.get('MP_WEBHOOK_SECRET', ''),
        metrics=get_metrics_service(),
    )

    try:
        event = reconciler.handle(
            request.get_json(silent=True),
            request.args.to_dict(),
            request.headers,
        )
    except Exception:
        db.session.rollback()
        logger.exception("Error processing webhook")
        return jsonify({'received': True, 'error': 'Processing error'}), 200

    if event.result == WebhookResult.ERROR:
        return jsonify({'received': True, 'error': 'Processing error'}), 200
    return jsonify({'received': True}), 200


@webhooks_bp.route('/mercadopago', methods=['GET'])
def mercadopago_webhook_status():
    return jsonify({
        'status': 'ok',
        'message': 'Mercado Pago Webhook endpoint is active',
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }), 200
