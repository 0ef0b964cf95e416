# -*- coding: utf-8 -*-
"""
Subscription routes: the plan catalog and the signed-in user's own
subscription (view, pause, resume, cancel).
"""
from flask import Blueprint, jsonify

from headshop.infra.db import db
from headshop.infra.log import get_logger
from headshop.middleware.auth import get_current_user_id
from headshop.middleware.errors import auth_required_response, error_response
from headshop.models.base import isoformat
from headshop.repositories import subscription_repository
from headshop.repositories.subscription_repository import ActiveSubscriptionExists
from headshop.services.mercadopago import GatewayError, get_gateway
from headshop.services.metrics import get_metrics_service
from headshop.services.subscription_lifecycle import InvalidTransition, SubscriptionLifecycle

logger = get_logger('headshop.subscriptions')

subscriptions_bp = Blueprint('subscriptions', __name__, url_prefix='/api')

USER_ACTIONS = ('pause', 'resume', 'cancel')


@subscriptions_bp.route('/subscriptions/plans', methods=['GET'])
def list_plans():
    plans = subscription_repository.find_active_plans()
    return jsonify({'success': True, 'data': [plan.to_dict() for plan in plans]}), 200


@subscriptions_bp.route('/user/subscription', methods=['GET'])
def current_subscription():
    user_id = get_current_user_id()
    if not user_id:
        return jsonify({'isLoggedIn': False, 'subscription': None}), 200

    subscription = subscription_repository.find_user_current_subscription(user_id)
    if subscription is None:
        return jsonify({'isLoggedIn': True, 'subscription': None}), 200

    return jsonify({
        'isLoggedIn': True,
        'subscription': {
            'id': subscription.id,
            'status': subscription.status,
            'startedAt': isoformat(subscription.started_at),
            'nextBillingAt': isoformat(subscription.next_billing_at),
            'plan': subscription.plan.to_dict() if subscription.plan else None,
        },
    }), 200


@subscriptions_bp.route('/user/subscription/<action>', methods=['POST'])
def change_subscription(action):
    """Pause, resume or cancel the caller's subscription."""
    if action not in USER_ACTIONS:
        return error_response('Ação inválida', 'INVALID_ACTION', 404)

    user_id = get_current_user_id()
    if not user_id:
        return auth_required_response()

    subscription = subscription_repository.find_user_current_subscription(user_id)
    if subscription is None:
        return error_response('Assinatura não encontrada', 'SUBSCRIPTION_NOT_FOUND', 404)

    lifecycle = SubscriptionLifecycle(get_gateway(), metrics=get_metrics_service())
    try:
        getattr(lifecycle, action)(subscription)
    except InvalidTransition as e:
        return error_response(
            f'Não é possível executar esta ação em uma assinatura {e.from_status}',
            'INVALID_TRANSITION',
        )
    except ActiveSubscriptionExists:
        return error_response('Você já possui uma assinatura ativa.', 'ALREADY_SUBSCRIBED')
    except GatewayError as e:
        logger.error(
            "Gateway rejected subscription change",
            subscription_id=subscription.id,
            action=action,
            error=e.message,
        )
        return error_response(
            'Não foi possível atualizar a assinatura. Tente novamente.',
            'GATEWAY_ERROR',
            502,
        )
    except Exception:
        db.session.rollback()
        logger.exception("Subscription change failed", subscription_id=subscription.id, action=action)
        return error_response('Erro interno. Tente novamente.', 'INTERNAL_ERROR', 500)

    return jsonify({'success': True, 'data': subscription.to_dict(include_plan=True)}), 200
