# -*- coding: utf-8 -*-
"""
Caller identification.

Sessions are owned by the storefront; it forwards the signed-in user as
`X-User-ID`. Back-office endpoints are guarded by a static bearer token.
"""
import hmac
from functools import wraps
from typing import Optional

from flask import current_app, request

from headshop.middleware.errors import error_response


def get_current_user_id() -> Optional[str]:
    user_id = (request.headers.get('X-User-ID') or '').strip()
    return user_id or None


def require_admin_token(f):
    """Decorator to require HEADSHOP_ADMIN_TOKEN for admin endpoints."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        admin_token = current_app.config.get('HEADSHOP_ADMIN_TOKEN')
        if not admin_token:
            return error_response('Admin token not configured', 'ADMIN_NOT_CONFIGURED', 500)

        provided_token = request.headers.get('Authorization')
        if not provided_token:
            return error_response('Authorization header required', 'ADMIN_TOKEN_REQUIRED', 401)

        # Support both "Bearer <token>" and direct token formats
        if provided_token.startswith('Bearer '):
            provided_token = provided_token[7:]

        if not hmac.compare_digest(provided_token.encode('utf-8'), admin_token.encode('utf-8')):
            return error_response('Invalid admin token', 'INVALID_ADMIN_TOKEN', 401)

        return f(*args, **kwargs)
    return decorated_function
