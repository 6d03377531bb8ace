"""
Portal-wide exception hierarchy.

Services raise these; ``portal.core.error_handlers`` translates them into
a JSON body or a rendered error page with the carried HTTP status.

Usage:
    from portal.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Application", resource_id=42)
    raise ValidationError("licenseCategory is not allowed", details={"license_category": "..."})
"""

from portal.utils.errors import E


class PortalError(Exception):
    """Operational (expected) failure carrying an HTTP status.

    Args:
        message: Human-readable explanation, safe to show to the caller.
        status_code: HTTP status the handler responds with.
    """

    status_code = 400
    code = E.VALIDATION

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class NotFoundError(PortalError):
    """Raised when a requested resource does not exist or is not visible to the caller.

    Ownership failures on citizen-scoped resources also raise this, so a
    citizen cannot probe which application ids exist.
    """

    status_code = 404
    code = E.NOT_FOUND

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(PortalError):
    """Input was well-formed but violated a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    status_code = 400
    code = E.VALIDATION

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.details:
            d["details"] = self.details
        return d


class ConflictError(PortalError):
    """Raised when an operation would duplicate a unique value, or lost a concurrent race."""

    status_code = 409
    code = E.CONFLICT

    def __init__(self, resource: str, field: str | None = None, value: str | None = None,
                 message: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        if message is None:
            message = f"{resource} with {field}={value!r} already exists"
        super().__init__(message)


class AuthenticationError(PortalError):
    status_code = 401
    code = E.UNAUTHENTICATED


class PermissionDeniedError(PortalError):
    status_code = 403
    code = E.FORBIDDEN


class AccountLockedError(PortalError):
    """Too many failed logins; ``lock_until`` says when the account reopens."""

    status_code = 423
    code = E.ACCOUNT_LOCKED

    def __init__(self, message: str, lock_until=None) -> None:
        super().__init__(message)
        self.lock_until = lock_until

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.lock_until is not None:
            d["lock_until"] = self.lock_until.isoformat()
        return d


class TransitionError(PortalError):
    """Raised when a lifecycle event is not allowed from the application's current status."""

    status_code = 409
    code = E.INVALID_TRANSITION

    def __init__(self, number: str, event: str, current: str, reason: str | None = None):
        msg = f"Cannot '{event}' application {number} (status={current})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.number = number
        self.event = event
        self.current_status = current
        self.reason = reason

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["current_status"] = self.current_status
        d["event"] = self.event
        return d


class GatewayError(PortalError):
    """The external payment gateway failed or answered with an unusable response."""

    status_code = 502
    code = E.GATEWAY
