"""
Request id and duration tracking.

Every response carries ``X-Request-ID`` (echoed from the caller when
given) and ``X-Request-Duration-Ms``.  Slow requests and 5xx responses
are logged with the acting user and the request id.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000
QUIET_PREFIXES = ("/api/v1/health", "/static/")


def _request_id() -> str:
    supplied = (request.headers.get("X-Request-ID") or "").strip()
    return supplied[:64] if supplied else uuid.uuid4().hex[:12]


def init_request_timing(app: Flask):
    @app.before_request
    def _start_clock():
        g.request_start = time.perf_counter()
        g.request_id = _request_id()

    @app.after_request
    def _stop_clock(response):
        started = getattr(g, "request_start", None)
        if started is None:
            return response
        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        if request.path.startswith(QUIET_PREFIXES):
            return response

        context = {
            "request_id": g.request_id,
            "user_id": getattr(g, "jwt_user_id", None),
            "status": response.status_code,
            "duration_ms": round(elapsed, 1),
        }
        line = f"{request.method} {request.path} -> {response.status_code} in {elapsed:.0f}ms"
        if response.status_code >= 500:
            logger.error(line, extra=context)
        elif elapsed > SLOW_THRESHOLD_MS:
            logger.warning("Slow request: %s", line, extra=context)
        else:
            logger.debug(line, extra=context)
        return response
