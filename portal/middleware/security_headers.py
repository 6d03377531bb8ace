"""
Response hardening for the portal.

Pages get a Content-Security-Policy that allows the Arabic web fonts and
a form post to the Paymob checkout host; API responses are marked
``no-store`` because they carry tokens and national ids.

Usage:
    from portal.middleware.security_headers import init_security_headers
    init_security_headers(app)
"""

from urllib.parse import urlsplit

from flask import request

STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
}


def build_csp(checkout_origin: str) -> str:
    directives = {
        "default-src": "'self'",
        "script-src": "'self' 'unsafe-inline'",
        "style-src": "'self' 'unsafe-inline' https://fonts.googleapis.com",
        "font-src": "'self' data: https://fonts.gstatic.com",
        "img-src": "'self' data: blob:",
        "connect-src": "'self'",
        "frame-ancestors": "'self'",
        "base-uri": "'self'",
        "form-action": f"'self' {checkout_origin}".strip(),
    }
    return "; ".join(f"{name} {value}" for name, value in directives.items())


def _origin(url: str | None) -> str:
    parts = urlsplit(url or "")
    return f"{parts.scheme}://{parts.netloc}" if parts.scheme and parts.netloc else ""


def init_security_headers(app):
    """Register the after_request hook that stamps the headers."""
    csp = build_csp(_origin(app.config.get("PAYMOB_BASE_URL")))

    @app.after_request
    def _harden(response):
        for name, value in STATIC_HEADERS.items():
            response.headers.setdefault(name, value)
        if request.path.startswith("/api/"):
            response.headers.setdefault("Cache-Control", "no-store")
        else:
            response.headers.setdefault("Content-Security-Policy", csp)
        response.headers.pop("Server", None)
        return response
