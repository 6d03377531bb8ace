"""
Token service for portal logins.

Access tokens are short-lived HS256 JWTs carrying the user id (``sub``),
role and a ``jti``; refresh tokens are JWTs of type ``refresh`` whose
SHA-256 digest is kept in ``refresh_sessions``.  A refresh token is only
honoured while its session row is active, so logout, password changes and
role changes revoke it immediately.

Lifetimes come from JWT_ACCESS_EXPIRES / JWT_REFRESH_EXPIRES (seconds).
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

from portal.models import db
from portal.models.user import RefreshSession
from portal.utils.crypto import sha256_hex

ALGORITHM = "HS256"
ISSUER = "bardawil-portal"
ACCESS, REFRESH = "access", "refresh"

DEFAULT_LIFETIMES = {ACCESS: 7200, REFRESH: 604800}
_LIFETIME_KEYS = {ACCESS: "JWT_ACCESS_EXPIRES", REFRESH: "JWT_REFRESH_EXPIRES"}


def _secret() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def lifetime(token_type: str) -> int:
    return int(current_app.config.get(_LIFETIME_KEYS[token_type], DEFAULT_LIFETIMES[token_type]))


def _encode(user_id: int, token_type: str, **claims) -> tuple[str, datetime]:
    issued = datetime.now(timezone.utc)
    expires = issued + timedelta(seconds=lifetime(token_type))
    payload = {
        "sub": str(user_id),
        "type": token_type,
        "iss": ISSUER,
        "iat": issued,
        "exp": expires,
        "jti": uuid.uuid4().hex,
        **claims,
    }
    return jwt.encode(payload, _secret(), algorithm=ALGORITHM), expires


# ── Issue ────────────────────────────────────────────────────────────────

def generate_access_token(user_id: int, role: str) -> str:
    token, _ = _encode(user_id, ACCESS, role=role)
    return token


def generate_refresh_token(user_id: int) -> tuple[str, str, datetime]:
    """Returns ``(raw_token, token_hash, expires_at)``; only the hash is stored."""
    token, expires_at = _encode(user_id, REFRESH)
    return token, hash_token(token), expires_at


def generate_token_pair(user_id: int, role: str) -> dict:
    refresh_token, token_hash, expires_at = generate_refresh_token(user_id)
    return {
        "access_token": generate_access_token(user_id, role),
        "refresh_token": refresh_token,
        "token_hash": token_hash,
        "expires_at": expires_at,
        "token_type": "Bearer",
        "expires_in": lifetime(ACCESS),
    }


# ── Verify ───────────────────────────────────────────────────────────────

def decode_token(token: str, expected_type: str = ACCESS) -> dict:
    """Verify signature, expiry, issuer and token type.

    Raises PyJWT's ``InvalidTokenError`` family; the app error handlers
    map those to 401.
    """
    payload = jwt.decode(
        token, _secret(), algorithms=[ALGORITHM], issuer=ISSUER,
        options={"require": ["sub", "exp", "type"]},
    )
    if payload["type"] != expected_type:
        raise jwt.InvalidTokenError(f"Expected a {expected_type} token")
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, ACCESS)


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, REFRESH)


def hash_token(token: str) -> str:
    return sha256_hex(token)


# ── Refresh sessions (callers commit) ────────────────────────────────────

def create_session(
    user_id: int,
    token_hash: str,
    ip_address: str | None,
    user_agent: str | None,
    expires_at: datetime,
) -> RefreshSession:
    row = RefreshSession(
        user_id=user_id,
        token_hash=token_hash,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:500],
        expires_at=expires_at,
    )
    db.session.add(row)
    return row


def get_active_session_by_token(user_id: int, token_hash: str) -> RefreshSession | None:
    row = RefreshSession.query.filter_by(user_id=user_id, token_hash=token_hash, is_active=True).first()
    if row is not None and row.is_expired:
        row.is_active = False
        return None
    return row


def revoke_session_by_token(token_hash: str) -> bool:
    row = RefreshSession.query.filter_by(token_hash=token_hash, is_active=True).first()
    if row is None:
        return False
    row.is_active = False
    return True


def revoke_all_user_sessions(user_id: int) -> int:
    """Deactivate every live session of the user; returns how many."""
    return RefreshSession.query.filter_by(user_id=user_id, is_active=True).update(
        {"is_active": False}, synchronize_session=False,
    )


def rotate_session(
    old_session: RefreshSession,
    user_id: int,
    new_token_hash: str,
    new_expires_at: datetime,
    ip_address: str | None,
    user_agent: str | None,
) -> RefreshSession:
    """Retire ``old_session`` and stage its replacement in the same transaction."""
    old_session.is_active = False
    old_session.last_used_at = datetime.now(timezone.utc)
    return create_session(user_id, new_token_hash, ip_address, user_agent, new_expires_at)
