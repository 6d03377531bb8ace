"""
Request guards: body size cap and Content-Type validation for API writes.
"""

from flask import abort, request

# Webhooks and multipart uploads are checked by their own handlers
_CONTENT_TYPE_EXEMPT = ("/api/v1/payments/callback",)


def init_request_guard(app):
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")

        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            if request.path.startswith(_CONTENT_TYPE_EXEMPT):
                return None
            ct = request.content_type or ""
            if request.content_length and "json" not in ct and "multipart/form-data" not in ct \
                    and "application/x-www-form-urlencoded" not in ct:
                abort(415, description="Content-Type must be application/json or multipart/form-data")
        return None
