"""
Lake Authority Licensing Portal
Flask Application Factory.

Usage:
    from portal import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from portal.config import config
from portal.core.error_handlers import register_error_handlers
from portal.integrations.paymob_gateway import PaymobGateway
from portal.middleware.jwt_auth import init_jwt_middleware
from portal.middleware.logging_config import configure_logging
from portal.middleware.rate_limiter import init_rate_limits
from portal.middleware.request_guard import init_request_guard
from portal.middleware.security_headers import init_security_headers
from portal.middleware.timing import init_request_timing
from portal.models import db
from portal.services.cache_service import init_cache

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine  # noqa: E402


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # limits are attached per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(
        __name__,
        instance_relative_config=True,
        static_folder="../static",
        template_folder="../templates",
    )
    # Instantiated so ProductionConfig can refuse to start without its secrets
    app.config.from_object(config[config_name]())
    if not app.config["JWT_SECRET_KEY"]:
        app.config["JWT_SECRET_KEY"] = app.config["SECRET_KEY"]
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()],
             supports_credentials=True)
    else:
        CORS(app)

    # ── Injected clients (closed on shutdown) ────────────────────────────
    init_cache(app)
    app.extensions["paymob"] = PaymobGateway.from_config(app.config)

    # ── Security headers (CSP, HSTS, X-Frame-Options, etc.) ─────────────
    init_security_headers(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── JWT auth middleware ──────────────────────────────────────────────
    init_jwt_middleware(app)

    # ── Request guards (body size + Content-Type) ────────────────────────
    init_request_guard(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from portal.models import application as _application_models  # noqa: F401
    from portal.models import audit as _audit_models              # noqa: F401
    from portal.models import document as _document_models        # noqa: F401
    from portal.models import news as _news_models                # noqa: F401
    from portal.models import notification as _notification_models  # noqa: F401
    from portal.models import payment as _payment_models          # noqa: F401
    from portal.models import pricing as _pricing_models          # noqa: F401
    from portal.models import user as _user_models                # noqa: F401

    # ── Create missing tables ────────────────────────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from portal.blueprints.admin_bp import admin_bp
    from portal.blueprints.application_bp import application_bp
    from portal.blueprints.auth_bp import auth_bp
    from portal.blueprints.financial_bp import financial_bp
    from portal.blueprints.health_bp import health_bp
    from portal.blueprints.notification_bp import notification_bp
    from portal.blueprints.payment_bp import payment_bp
    from portal.blueprints.public_bp import public_bp
    from portal.blueprints.user_bp import user_bp
    from portal.blueprints.view_bp import view_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(application_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(financial_bp)
    app.register_blueprint(payment_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(public_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(view_bp)

    # ── Rate limits (after blueprints are registered) ────────────────────
    init_rate_limits(app, limiter)

    # ── Error handlers ───────────────────────────────────────────────────
    register_error_handlers(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-portal")
    def seed_portal_cmd():
        """Seed statuses, default prices, required documents and the super admin."""
        from portal.services.seed_service import seed_all
        summary = seed_all(app.config)
        logger.info("Seeded portal reference data: %s", summary)

    return app


def close_app_resources(app):
    """Release the cache and payment gateway clients of ``app``."""
    for name in ("paymob", "cache"):
        client = app.extensions.get(name)
        if client is not None:
            client.close()
