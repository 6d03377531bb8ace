"""Machine-readable error codes and the JSON error body.

Every JSON error the portal returns has the shape
``{"error": <message>, "code": <E.*>, ...}``.  Exceptions in
``portal.core.exceptions`` carry one of these codes; the app error
handlers use ``api_error`` for failures raised outside the service layer
(werkzeug aborts, integrity errors, bad tokens).
"""

from flask import jsonify


class E:
    # 400
    VALIDATION = "ERR_VALIDATION"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    # 401 / 403 / 423
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    FORBIDDEN = "ERR_FORBIDDEN"
    ACCOUNT_LOCKED = "ERR_ACCOUNT_LOCKED"
    # 404
    NOT_FOUND = "ERR_NOT_FOUND"
    # 409
    CONFLICT = "ERR_CONFLICT"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    # request shape
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"
    UNSUPPORTED_MEDIA = "ERR_UNSUPPORTED_MEDIA"
    RATE_LIMITED = "ERR_RATE_LIMITED"
    # 5xx
    GATEWAY = "ERR_GATEWAY"
    INTERNAL = "ERR_INTERNAL"


HTTP_STATUS_CODES = {
    400: E.VALIDATION_INVALID,
    401: E.UNAUTHENTICATED,
    403: E.FORBIDDEN,
    404: E.NOT_FOUND,
    405: E.METHOD_NOT_ALLOWED,
    413: E.PAYLOAD_TOO_LARGE,
    415: E.UNSUPPORTED_MEDIA,
    429: E.RATE_LIMITED,
}


def code_for_status(status: int) -> str:
    return HTTP_STATUS_CODES.get(status, E.INTERNAL if status >= 500 else E.VALIDATION_INVALID)


def api_error(code: str, message: str, *, status: int, details: dict | None = None):
    """``(response, status)`` tuple with the standard error body."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status
