# -*- coding: utf-8 -*-
from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from headshop.infra.log import get_logger
from headshop.schemas.shipping import ShippingQuoteRequest
from headshop.services.metrics import get_metrics_service
from headshop.services.shipping import ShippingService

logger = get_logger('headshop.shipping')

shipping_bp = Blueprint('shipping', __name__, url_prefix='/api/shipping')


@shipping_bp.route('/quote', methods=['POST'])
def quote():
    """Quote delivery options for a CEP."""
    try:
        data = ShippingQuoteRequest(**(request.get_json(silent=True) or {}))
    except ValidationError as e:
        logger.info("Invalid shipping quote request", errors=e.error_count())
        return jsonify({'success': False, 'error': 'CEP é obrigatório'}), 400

    service = ShippingService.from_config(current_app.config, metrics=get_metrics_service())
    result = service.calculate_shipping(
        data.cep,
        shipping_profile_id=data.shipping_profile_id,
        product_ids=data.product_ids,
        plan_id=data.plan_id,
    )
    if not result['success']:
        return jsonify({'success': False, 'error': result['error']}), 400

    return jsonify({'success': True, 'data': result}), 200
