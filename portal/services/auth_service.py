"""
Auth Service — registration, national-id login with lockout, token
refresh rotation, logout and password flows.

Lockout policy:
    Each failed password increments ``login_attempts``.  Reaching
    LOGIN_MAX_ATTEMPTS locks the account for LOGIN_LOCK_MINUTES and resets
    the counter.  A successful login clears both.

Password change and reset revoke every refresh session of the user.
"""

import logging
import re
from datetime import datetime, timedelta, timezone

import jwt
from email_validator import EmailNotValidError, validate_email
from flask import current_app

from portal.core.exceptions import (
    AccountLockedError,
    AuthenticationError,
    ConflictError,
    PermissionDeniedError,
    ValidationError,
)
from portal.models import db
from portal.models.user import ROLE_CITIZEN, User
from portal.services import jwt_service
from portal.utils.crypto import generate_one_time_token, hash_password, sha256_hex, verify_password
from portal.utils.helpers import commit_or_raise
from portal.utils.national_id import normalize, validate_national_id

logger = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^(01|05)[0-9]{8,9}$")
MIN_PASSWORD_LENGTH = 8


# ═══════════════════════════════════════════════════════════════
# Validation helpers
# ═══════════════════════════════════════════════════════════════

def validate_password_pair(password: str, confirm: str | None, field="password") -> None:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters",
            details={field: "too_short"},
        )
    if confirm is not None and password != confirm:
        raise ValidationError("Password and confirmation do not match",
                              details={"password_confirm": "mismatch"})


def validate_phone(phone: str) -> str:
    phone = (phone or "").strip()
    if not PHONE_RE.match(phone):
        raise ValidationError("Phone must be an Egyptian number (01xxxxxxxxx)", details={"phone": "invalid"})
    return phone


def normalize_email(email: str | None) -> str | None:
    email = (email or "").strip()
    if not email:
        return None
    try:
        return validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError as exc:
        raise ValidationError(str(exc), details={"email": "invalid"}) from exc


def _issue_tokens(user: User, ip_address: str | None, user_agent: str | None) -> dict:
    tokens = jwt_service.generate_token_pair(user.id, user.role)
    jwt_service.create_session(
        user.id, tokens["token_hash"], ip_address, user_agent, tokens["expires_at"],
    )
    return {
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }


# ═══════════════════════════════════════════════════════════════
# Register / Login
# ═══════════════════════════════════════════════════════════════

def register_user(data: dict, ip_address: str | None = None, user_agent: str | None = None) -> dict:
    """Create a citizen account and log it in.

    Returns:
        {"user": {...}, "tokens": {...}}
    """
    national_id = normalize(data.get("national_id"))
    problems = validate_national_id(national_id)
    if problems:
        raise ValidationError("Invalid national ID", details={"national_id": problems})

    phone = validate_phone(data.get("phone"))
    first_name = (data.get("first_name_ar") or "").strip()
    last_name = (data.get("last_name_ar") or "").strip()
    if len(first_name) < 2 or len(last_name) < 2:
        raise ValidationError("First and last name are required",
                              details={"first_name_ar": "required", "last_name_ar": "required"})
    validate_password_pair(data.get("password"), data.get("password_confirm"))
    email = normalize_email(data.get("email"))

    if User.query.filter_by(national_id=national_id).first():
        raise ConflictError("User", "national_id", national_id)
    if User.query.filter_by(phone=phone).first():
        raise ConflictError("User", "phone", phone)

    user = User(
        national_id=national_id,
        phone=phone,
        email=email,
        first_name_ar=first_name,
        last_name_ar=last_name,
        first_name_en=(data.get("first_name_en") or "").strip() or None,
        last_name_en=(data.get("last_name_en") or "").strip() or None,
        password_hash=hash_password(data["password"]),
        role=ROLE_CITIZEN,
        status="active",
    )
    db.session.add(user)
    db.session.flush()

    tokens = _issue_tokens(user, ip_address, user_agent)
    commit_or_raise("User")
    logger.info("Registered citizen user_id=%s", user.id)
    return {"user": user.to_dict(), "tokens": tokens}


def authenticate(national_id: str, password: str,
                 ip_address: str | None = None, user_agent: str | None = None) -> dict:
    """Verify credentials, apply the lockout policy, and issue a token pair.

    Raises:
        AuthenticationError (401): unknown id or wrong password
        PermissionDeniedError (403): suspended account
        AccountLockedError (423): too many failed attempts
    """
    national_id = normalize(national_id)
    if not national_id or not password:
        raise ValidationError("National ID and password are required")

    user = User.query.filter_by(national_id=national_id).first()
    if not user:
        logger.warning("Login failed: unknown national id")
        raise AuthenticationError("Invalid national ID or password")

    if user.status == "suspended":
        raise PermissionDeniedError("Account is suspended")

    if user.is_locked:
        raise AccountLockedError("Account is temporarily locked; try again later",
                                 lock_until=user.lock_until)

    if not verify_password(password, user.password_hash):
        _register_failed_attempt(user)
        raise AuthenticationError("Invalid national ID or password")

    user.login_attempts = 0
    user.lock_until = None
    user.last_login_at = datetime.now(timezone.utc)
    tokens = _issue_tokens(user, ip_address, user_agent)
    commit_or_raise("User")
    logger.info("Login ok user_id=%s role=%s", user.id, user.role)
    return {"user": user.to_dict(), "tokens": tokens}


def _register_failed_attempt(user: User) -> None:
    max_attempts = current_app.config.get("LOGIN_MAX_ATTEMPTS", 5)
    lock_minutes = current_app.config.get("LOGIN_LOCK_MINUTES", 30)

    user.login_attempts = (user.login_attempts or 0) + 1
    if user.login_attempts >= max_attempts:
        user.lock_until = datetime.now(timezone.utc) + timedelta(minutes=lock_minutes)
        user.login_attempts = 0
        logger.warning("Account locked user_id=%s for %s min", user.id, lock_minutes)
    else:
        logger.warning("Login failed user_id=%s attempt=%s", user.id, user.login_attempts)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Refresh / Logout
# ═══════════════════════════════════════════════════════════════

def refresh_tokens(refresh_token: str, ip_address: str | None = None,
                   user_agent: str | None = None) -> dict:
    """Rotate a refresh token: revoke the presented one, issue a new pair."""
    if not refresh_token:
        raise ValidationError("refresh_token is required")
    try:
        payload = jwt_service.decode_refresh_token(refresh_token)
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("Refresh token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError("Invalid refresh token") from exc

    user_id = int(payload["sub"])
    session = jwt_service.get_active_session_by_token(user_id, jwt_service.hash_token(refresh_token))
    if not session:
        raise AuthenticationError("Refresh token revoked or unknown")
    if session.is_expired:
        session.is_active = False
        db.session.commit()
        raise AuthenticationError("Refresh session expired")

    user = db.session.get(User, user_id)
    if not user or user.status != "active":
        raise AuthenticationError("User not found or inactive")

    tokens = jwt_service.generate_token_pair(user.id, user.role)
    jwt_service.rotate_session(
        session, user.id, tokens["token_hash"], tokens["expires_at"], ip_address, user_agent,
    )
    commit_or_raise("RefreshSession")
    return {
        "access_token": tokens["access_token"],
        "refresh_token": tokens["refresh_token"],
        "token_type": tokens["token_type"],
        "expires_in": tokens["expires_in"],
    }


def logout(refresh_token: str | None = None, user_id: int | None = None, everywhere=False) -> int:
    """Revoke one refresh session, or all of a user's sessions. Returns the count revoked."""
    revoked = 0
    if everywhere and user_id is not None:
        revoked = jwt_service.revoke_all_user_sessions(user_id)
    elif refresh_token:
        revoked = int(jwt_service.revoke_session_by_token(jwt_service.hash_token(refresh_token)))
    db.session.commit()
    return revoked


# ═══════════════════════════════════════════════════════════════
# Password flows
# ═══════════════════════════════════════════════════════════════

def request_password_reset(national_id: str) -> str | None:
    """Issue a reset token for the account, if it exists.

    Returns the raw token (to be delivered out of band) or None when the
    account is unknown.  Callers must not reveal which case happened.
    """
    user = User.query.filter_by(national_id=normalize(national_id)).first()
    if not user:
        return None
    raw, digest = generate_one_time_token()
    minutes = current_app.config.get("PASSWORD_RESET_EXPIRES_MINUTES", 10)
    user.password_reset_token = digest
    user.password_reset_expires = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    db.session.commit()
    logger.info("Password reset issued user_id=%s", user.id)
    return raw


def reset_password(token: str, password: str, password_confirm: str | None) -> User:
    if not token:
        raise ValidationError("token is required")
    validate_password_pair(password, password_confirm)

    user = User.query.filter_by(password_reset_token=sha256_hex(token)).first()
    if (
        not user
        or not user.password_reset_expires
        or user.password_reset_expires.replace(tzinfo=timezone.utc) < datetime.now(timezone.utc)
    ):
        raise ValidationError("Reset token is invalid or has expired")

    _set_password(user, password)
    user.password_reset_token = None
    user.password_reset_expires = None
    user.login_attempts = 0
    user.lock_until = None
    commit_or_raise("User")
    logger.info("Password reset completed user_id=%s", user.id)
    return user


def change_password(user: User, current_password: str, new_password: str,
                    password_confirm: str | None) -> None:
    if not verify_password(current_password or "", user.password_hash):
        raise AuthenticationError("Current password is incorrect")
    validate_password_pair(new_password, password_confirm, field="new_password")
    _set_password(user, new_password)
    commit_or_raise("User")
    logger.info("Password changed user_id=%s", user.id)


def _set_password(user: User, password: str) -> None:
    user.password_hash = hash_password(password)
    user.password_changed_at = datetime.now(timezone.utc)
    jwt_service.revoke_all_user_sessions(user.id)
