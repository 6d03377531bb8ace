"""
Health probes.

    GET /api/v1/health/ready  — process is up (load balancer probe)
    GET /api/v1/health        — database and cache status
    GET /api/v1/health/live   — same as above

The database is required; a cache failure is reported but does not fail
the probe because the portal runs on cache misses.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from portal.models import db
from portal.services.cache_service import get_cache

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _check_database() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except Exception as exc:
        db.session.rollback()
        logger.error("Database health check failed: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"})


@health_bp.route("", methods=["GET"])
@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _check_database(),
        "cache": get_cache().health_check(),
        "app": {"env": current_app.config.get("ENV_NAME"), "testing": current_app.testing},
    }
    healthy = checks["database"]["status"] == "ok"
    return jsonify({"status": "ok" if healthy else "degraded", "checks": checks}), 200 if healthy else 503
