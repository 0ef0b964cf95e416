# -*- coding: utf-8 -*-
"""
Rate limiting for the checkout endpoints.

Uses Flask-Limiter keyed by the signed-in user, or the client IP for
anonymous calls. Storage comes from `RATELIMIT_STORAGE_URI` (in-memory by
default); `RATELIMIT_ENABLED=false` turns limiting off.
"""
from flask import Flask, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from headshop.infra.log import get_logger
from headshop.middleware.errors import error_response

logger = get_logger('headshop.ratelimit')

CHECKOUT_RATE_LIMIT = "5 per minute"


def get_actor_identifier() -> str:
    user_id = (request.headers.get('X-User-ID') or '').strip()
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address()}"


limiter = Limiter(
    key_func=get_actor_identifier,
    strategy="fixed-window",
    headers_enabled=True,
)


def rate_limit_exceeded_handler(e):
    logger.warning(
        "Rate limit exceeded",
        path=request.path,
        actor=get_actor_identifier(),
        limit=str(getattr(e, 'description', '')),
    )
    return error_response(
        'Muitas requisições. Por favor, aguarde um momento.',
        'RATE_LIMIT_EXCEEDED',
        429,
    )


def init_rate_limiter(app: Flask) -> Limiter:
    """Bind the shared limiter to the app; reads RATELIMIT_* from app.config."""
    limiter.init_app(app)
    app.register_error_handler(429, rate_limit_exceeded_handler)
    return limiter
