# -*- coding: utf-8 -*-

from flask import Blueprint, jsonify
from sqlalchemy import text
import time

from headshop.infra.db import db
from headshop.services.circuit_breaker import get_all_circuit_states

health_bp = Blueprint('health', __name__)


@health_bp.route('/health', methods=['GET', 'HEAD'])
@health_bp.route('/healthz', methods=['GET', 'HEAD'])
def healthz():
    """Liveness check (available at both /health and /healthz)."""
    return jsonify({
        'status': 'healthy',
        'service': 'headshop-api',
        'timestamp': time.time()
    }), 200


@health_bp.route('/readyz', methods=['GET', 'HEAD'])
def readyz():
    """Readiness check: the database answers a trivial query."""
    try:
        db.session.execute(text('SELECT 1'))
        database_ok = True
    except Exception:
        db.session.rollback()
        database_ok = False

    return jsonify({
        'status': 'ready' if database_ok else 'not_ready',
        'service': 'headshop-api',
        'timestamp': time.time(),
        'checks': {
            'database': database_ok,
            'circuits': get_all_circuit_states(),
        }
    }), 200 if database_ok else 503
