"""
Mercado Pago integration.

The client is built once per application by `init_gateway` and kept in
`app.extensions['mercadopago']`. Routes fetch it with `get_gateway()` and
pass it to the services they construct; tests swap the extension for a fake.
"""
from flask import Flask, current_app

from headshop.services.mercadopago.client import MercadoPagoClient
from headshop.services.mercadopago.errors import (
    GatewayError,
    GatewayNotConfiguredError,
    GatewayPayloadError,
    GatewayTimeoutError,
    GatewayValidationError,
    user_message,
)

EXTENSION_KEY = 'mercadopago'


def build_gateway(config, metrics=None) -> MercadoPagoClient:
    """Construct a client from a Flask config mapping."""
    return MercadoPagoClient(
        access_token=config.get("MP_ACCESS_TOKEN", ""),
        base_url=config.get("MP_API_BASE_URL", "https://api.mercadopago.com"),
        timeout=config.get("MP_TIMEOUT_SECONDS", 10),
        max_retries=config.get("MP_MAX_RETRIES", 3),
        notification_url=config.get("MP_NOTIFICATION_URL"),
        back_url=config.get("MP_BACK_URL"),
        pix_expiration_minutes=config.get("PIX_EXPIRATION_MINUTES", 30),
        metrics=metrics,
    )


def init_gateway(app: Flask) -> MercadoPagoClient:
    client = build_gateway(app.config, metrics=app.extensions.get('metrics'))
    app.extensions[EXTENSION_KEY] = client
    if not client.configured:
        app.logger.warning("MP_ACCESS_TOKEN not configured; gateway calls will fail")
    return client


def get_gateway():
    """The gateway client bound to the current application."""
    return current_app.extensions[EXTENSION_KEY]


__all__ = [
    "MercadoPagoClient",
    "GatewayError",
    "GatewayNotConfiguredError",
    "GatewayPayloadError",
    "GatewayTimeoutError",
    "GatewayValidationError",
    "build_gateway",
    "init_gateway",
    "get_gateway",
    "user_message",
]
