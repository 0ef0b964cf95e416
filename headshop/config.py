import os


def _env_flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).lower() in ("1", "true", "yes")


class Config:
    """Environment-driven settings, read when the app is created."""

    def __init__(self):
        self.SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
        self.HEADSHOP_ENV = os.environ.get("HEADSHOP_ENV", "development")
        self.TESTING = _env_flag("TESTING")

        # Mercado Pago
        self.MP_ACCESS_TOKEN = os.environ.get("MP_ACCESS_TOKEN", "")
        self.MP_WEBHOOK_SECRET = os.environ.get("MP_WEBHOOK_SECRET", "")
        self.MP_API_BASE_URL = os.environ.get("MP_API_BASE_URL", "https://api.mercadopago.com")
        self.MP_TIMEOUT_SECONDS = int(os.environ.get("MP_TIMEOUT_SECONDS", "10"))
        self.MP_MAX_RETRIES = int(os.environ.get("MP_MAX_RETRIES", "3"))
        self.MP_NOTIFICATION_URL = os.environ.get("MP_NOTIFICATION_URL", "")
        self.MP_BACK_URL = os.environ.get("MP_BACK_URL", "")
        self.PIX_EXPIRATION_MINUTES = int(os.environ.get("PIX_EXPIRATION_MINUTES", "30"))

        # Shipping
        self.SHIPPING_ORIGIN_CEP = os.environ.get("SHIPPING_ORIGIN_CEP", "01310100")
        self.SHIPPING_USE_EXTERNAL_API = os.environ.get("SHIPPING_USE_EXTERNAL_API") == "true"
        self.SHIPPING_API_TIMEOUT_SECONDS = int(os.environ.get("SHIPPING_API_TIMEOUT_SECONDS", "10"))
        self.MELHOR_ENVIO_TOKEN = os.environ.get("MELHOR_ENVIO_TOKEN", "")
        self.MELHOR_ENVIO_URL = os.environ.get("MELHOR_ENVIO_URL") or (
            "https://www.melhorenvio.com.br/api/v2/me/shipment/calculate"
            if self.HEADSHOP_ENV == "production"
            else "https://sandbox.melhorenvio.com.br/api/v2/me/shipment/calculate"
        )

        # Back-office
        self.HEADSHOP_ADMIN_TOKEN = os.environ.get("HEADSHOP_ADMIN_TOKEN", "")

        self.CORS_ALLOWED_ORIGINS = [
            origin.strip()
            for origin in os.environ.get("CORS_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ]

        # Flask-Limiter
        self.RATELIMIT_ENABLED = _env_flag("RATELIMIT_ENABLED", "true")
        self.RATELIMIT_STORAGE_URI = os.environ.get("RATELIMIT_STORAGE_URI", "memory://")
        self.RATELIMIT_HEADERS_ENABLED = True
