"""
Error handling middleware.

Maps database failures to consistent JSON responses and provides the
response builders shared by the API blueprints.
"""
from flask import jsonify
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError, ProgrammingError, IntegrityError

from headshop.database import db
from headshop.infra.log import get_logger

logger = get_logger(__name__)


def register_error_handlers(app):
    """Register app-wide error handlers."""

    @app.errorhandler(OperationalError)
    def handle_operational_error(e):
        """Handle database operational errors (connection, table not found, etc.)"""
        db.session.rollback()
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)

        if 'does not exist' in error_msg or 'no such table' in error_msg:
            logger.error(f"Database table not found: {error_msg}")
            return jsonify({
                'success': False,
                'error': 'Serviço temporariamente indisponível.',
                'errorCode': 'FEATURE_NOT_READY'
            }), 503

        logger.error(f"Database operational error: {error_msg}")
        return jsonify({
            'success': False,
            'error': 'Serviço temporariamente indisponível. Tente novamente.',
            'errorCode': 'DATABASE_ERROR'
        }), 503

    @app.errorhandler(ProgrammingError)
    def handle_programming_error(e):
        """Handle database programming errors (SQL syntax, schema issues)"""
        db.session.rollback()
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        logger.error(f"Database programming error: {error_msg}")

        return jsonify({
            'success': False,
            'error': 'Erro interno. Tente novamente.',
            'errorCode': 'DATABASE_SCHEMA_ERROR'
        }), 500

    @app.errorhandler(IntegrityError)
    def handle_integrity_error(e):
        """Handle database integrity errors (foreign key, unique constraint)"""
        db.session.rollback()
        error_msg = str(e.orig) if hasattr(e, 'orig') else str(e)
        logger.error(f"Database integrity error: {error_msg}")

        if 'foreign key' in error_msg.lower():
            return jsonify({
                'success': False,
                'error': 'Registro relacionado não encontrado.',
                'errorCode': 'INVALID_REFERENCE'
            }), 400

        if 'unique' in error_msg.lower() or 'duplicate' in error_msg.lower():
            return jsonify({
                'success': False,
                'error': 'Registro já existe.',
                'errorCode': 'DUPLICATE_ENTRY'
            }), 409

        return jsonify({
            'success': False,
            'error': 'Dados inconsistentes.',
            'errorCode': 'INTEGRITY_ERROR'
        }), 400


def error_response(message: str, error_code: str, status_code: int = 400, **extra):
    """Build the `{success: false, error, errorCode}` envelope."""
    body = {
        'success': False,
        'error': message,
        'errorCode': error_code,
    }
    body.update(extra)
    return jsonify(body), status_code


def validation_error_response(exc: ValidationError, error_code: str = 'VALIDATION_ERROR'):
    """Turn a pydantic ValidationError into a 400 with per-field details."""
    details = [
        {
            'field': '.'.join(str(part) for part in err.get('loc', ())),
            'message': err.get('msg', ''),
        }
        for err in exc.errors()
    ]
    message = details[0]['message'] if details else 'Dados inválidos'
    if message.startswith('Value error, '):
        message = message[len('Value error, '):]
    return error_response(message, error_code, 400, details=details)


def auth_required_response():
    """Consistent response when the caller is not identified."""
    return error_response(
        'Não autorizado. Faça login para continuar.',
        'UNAUTHORIZED',
        401,
    )
