"""
Per-blueprint request limits (Flask-Limiter).

The Limiter in ``portal/__init__.py`` has no default limit; this module
attaches one to each blueprint group below.  Limits are keyed by remote
address and stored in ``REDIS_URL`` when that is a Redis server.
"""

import logging

logger = logging.getLogger(__name__)

AUTH_LIMIT = "20/minute"
WRITE_LIMIT = "60/minute"

# Credential endpoints: every method counts
CREDENTIAL_BLUEPRINTS = ("auth_bp",)
# Only state-changing requests count
WRITE_BLUEPRINTS = (
    "application_bp", "admin_bp", "financial_bp", "payment_bp", "user_bp", "notification_bp",
)
EXEMPT_BLUEPRINTS = ("health_bp", "public_bp")
WRITE_METHODS = ["POST", "PUT", "PATCH", "DELETE"]


def init_rate_limits(app, limiter):
    """Apply the limits; a no-op when RATELIMIT_ENABLED is false (tests)."""
    if not app.config.get("RATELIMIT_ENABLED", True):
        logger.info("Rate limiting disabled")
        return

    for name in CREDENTIAL_BLUEPRINTS:
        if name in app.blueprints:
            limiter.limit(AUTH_LIMIT)(app.blueprints[name])
    for name in WRITE_BLUEPRINTS:
        if name in app.blueprints:
            limiter.limit(WRITE_LIMIT, methods=WRITE_METHODS)(app.blueprints[name])
    for name in EXEMPT_BLUEPRINTS:
        if name in app.blueprints:
            limiter.exempt(app.blueprints[name])

    logger.info("Rate limits: credentials %s, writes %s", AUTH_LIMIT, WRITE_LIMIT)
