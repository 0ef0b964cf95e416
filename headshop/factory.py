# -*- coding: utf-8 -*-
import os
from flask import Flask
from flask_cors import CORS

from headshop.config import Config
from headshop.database import db

# Observability imports
from headshop.services.metrics import init_metrics
from headshop.services.request_context import init_request_context
from headshop.services.structured_logging import init_logging


def _normalize_db_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://") and "+psycopg://" not in url:
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _migrate_db(app):
    """Run Alembic migrations to head using the app's DB URL."""
    from pathlib import Path
    from alembic import command
    from alembic.config import Config as AlembicConfig

    BASE_DIR = Path(__file__).resolve().parent.parent
    cfg = AlembicConfig()  # in-memory config, avoid alembic.ini dependency
    cfg.set_main_option("script_location", str(BASE_DIR / "migrations"))
    cfg.set_main_option("sqlalchemy.url", app.config["SQLALCHEMY_DATABASE_URI"])

    try:
        command.upgrade(cfg, "head")
        app.logger.info("Database migrations applied successfully")
    except Exception as e:
        app.logger.error(f"Migration failed: {e}")
        raise


def create_app() -> Flask:
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    # --- Core config ---
    app.config.from_object(Config())

    # --- DB config ---
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        db_path = os.path.join(
            os.path.dirname(__file__),
            "..",
            "instance",
            "app.db")
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
        db_url = f"sqlite:///{db_path}"
    else:
        db_url = _normalize_db_url(db_url)

    app.config["SQLALCHEMY_DATABASE_URI"] = db_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    if db_url.startswith("postgresql"):
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_pre_ping": True,
            "pool_recycle": 300,
        }
    db.init_app(app)

    # --- CORS ---
    CORS(app, resources={
        r"/api/*": {
            "origins": app.config["CORS_ALLOWED_ORIGINS"],
            "methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-User-ID", "X-Request-ID"],
            "supports_credentials": False,
            "max_age": 600,
        }}
    )

    # --- Initialize observability ---
    init_logging(app)
    init_request_context(app)
    init_metrics(app)

    # --- Error handlers ---
    from headshop.middleware.errors import register_error_handlers
    register_error_handlers(app)

    # --- Payment gateway (after metrics, it records into them) ---
    from headshop.services.mercadopago import init_gateway
    init_gateway(app)

    # --- Rate limiting ---
    from headshop.services.rate_limiter import init_rate_limiter
    init_rate_limiter(app)

    # --- Mount blueprints ---
    with app.app_context():
        from headshop.routes import admin, checkout, health, shipping, subscriptions, webhooks
        app.register_blueprint(health.health_bp)
        app.register_blueprint(webhooks.webhooks_bp)
        app.register_blueprint(checkout.checkout_bp)
        app.register_blueprint(shipping.shipping_bp)
        app.register_blueprint(subscriptions.subscriptions_bp)
        app.register_blueprint(admin.admin_bp)

    # --- DB init ---
    with app.app_context():
        import headshop.models  # noqa: F401  (register every table on the metadata)

        # Only auto-create tables in testing or if explicitly enabled
        is_testing = app.config.get("TESTING")
        if is_testing or os.getenv("HEADSHOP_DB_AUTOCREATE", "false").lower() == "true":
            db.create_all()

        # Skip migrations in test mode since db.create_all() already creates correct schema
        if not is_testing and os.getenv("HEADSHOP_DB_MIGRATE_ON_START", "true").lower() == "true":
            _migrate_db(app)

    return app
