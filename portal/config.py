"""
Lake Authority Licensing Portal
Configuration classes for the Flask app factory.

Usage:
    config_name = os.getenv("APP_ENV", "development")
    app.config.from_object(config[config_name]())
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Local fallbacks when DATABASE_URL is unset
_SQLITE_DEV = f"sqlite:///{os.path.join(basedir, 'instance', 'portal_dev.db')}"
_SQLITE_TEST = "sqlite:///:memory:"

# Per-process key: development sessions do not survive a restart
_DEV_SECRET = secrets.token_hex(32)


def _db_url(default=None):
    # SQLAlchemy only accepts the postgresql:// scheme
    raw = os.getenv("DATABASE_URL", "")
    return raw.replace("postgres://", "postgresql://", 1) if raw else default


class Config:
    """Settings shared by every environment; values come from the environment."""

    SECRET_KEY = os.getenv("SECRET_KEY", _DEV_SECRET)
    ENV_NAME = "base"
    DEBUG = False
    TESTING = False

    # SQLAlchemy
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
    }

    # JWT
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
    JWT_ACCESS_EXPIRES = int(os.getenv("JWT_ACCESS_EXPIRES", "7200"))      # 2 hours
    JWT_REFRESH_EXPIRES = int(os.getenv("JWT_REFRESH_EXPIRES", "604800"))  # 7 days
    JWT_COOKIE_SECURE = os.getenv("JWT_COOKIE_SECURE", "false").lower() == "true"

    # Login lockout
    LOGIN_MAX_ATTEMPTS = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5"))
    LOGIN_LOCK_MINUTES = int(os.getenv("LOGIN_LOCK_MINUTES", "30"))
    PASSWORD_RESET_EXPIRES_MINUTES = int(os.getenv("PASSWORD_RESET_EXPIRES_MINUTES", "10"))
    # Echo the reset token in the API response (no SMS channel outside production)
    EXPOSE_RESET_TOKEN = True

    # Applications
    APPLICATION_NUMBER_PREFIX = os.getenv("APPLICATION_NUMBER_PREFIX", "BRD")

    # Uploads
    UPLOAD_FOLDER = os.getenv("UPLOAD_FOLDER", os.path.join(basedir, "uploads"))
    MAX_UPLOAD_SIZE = int(os.getenv("MAX_UPLOAD_SIZE", str(5 * 1024 * 1024)))  # 5 MB per file
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", str(25 * 1024 * 1024)))
    ALLOWED_UPLOAD_EXTENSIONS = {"pdf", "jpg", "jpeg", "png", "webp"}

    # Paymob payment gateway
    PAYMOB_BASE_URL = os.getenv("PAYMOB_BASE_URL", "https://accept.paymob.com/api")
    PAYMOB_API_KEY = os.getenv("PAYMOB_API_KEY", "")
    PAYMOB_INTEGRATION_ID = os.getenv("PAYMOB_INTEGRATION_ID", "")
    PAYMOB_IFRAME_ID = os.getenv("PAYMOB_IFRAME_ID", "")
    PAYMOB_HMAC_SECRET = os.getenv("PAYMOB_HMAC_SECRET", "")
    PAYMOB_TIMEOUT = int(os.getenv("PAYMOB_TIMEOUT", "30"))

    # Redis (cache + rate-limit storage); memory:// keeps everything in-process
    REDIS_URL = os.getenv("REDIS_URL", "memory://")

    # CORS
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # Seed
    SUPER_ADMIN_NATIONAL_ID = os.getenv("SUPER_ADMIN_NATIONAL_ID")
    SUPER_ADMIN_PASSWORD = os.getenv("SUPER_ADMIN_PASSWORD")
    SUPER_ADMIN_PHONE = os.getenv("SUPER_ADMIN_PHONE", "01000000000")


class DevelopmentConfig(Config):
    """Local development: debug on, SQLite under instance/."""

    ENV_NAME = "development"
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _db_url(_SQLITE_DEV)


class TestingConfig(Config):
    """pytest: in-memory SQLite, memory cache, fixed secrets, no rate limits."""

    ENV_NAME = "testing"
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", _SQLITE_TEST)
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    REDIS_URL = "memory://"
    JWT_SECRET_KEY = "test-jwt-secret"
    PAYMOB_API_KEY = "test-api-key"
    PAYMOB_INTEGRATION_ID = "123456"
    PAYMOB_IFRAME_ID = "7890"
    PAYMOB_HMAC_SECRET = "test-hmac-secret"


class ProductionConfig(Config):
    """Production: secrets and DATABASE_URL are mandatory."""

    ENV_NAME = "production"
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _db_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    JWT_COOKIE_SECURE = True
    EXPOSE_RESET_TOKEN = False

    SQLALCHEMY_ENGINE_OPTIONS = {
        **Config.SQLALCHEMY_ENGINE_OPTIONS,
        "pool_size": int(os.getenv("DB_POOL_SIZE", "5")),
        "max_overflow": 10,
    }

    def __init__(self):
        missing = [name for name in ("DATABASE_URL", "SECRET_KEY") if not os.getenv(name)]
        if missing:
            raise RuntimeError(f"Missing required production settings: {', '.join(missing)}")


# APP_ENV -> config class
config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
