"""
Crypto utilities — bcrypt password hashing and one-time token helpers.

Reset tokens are random URL-safe strings handed to the user once; only
their SHA-256 digest is stored.
"""

import hashlib
import secrets

import bcrypt


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password with bcrypt (12 rounds)."""
    salt = bcrypt.gensalt(rounds=12)
    return bcrypt.hashpw(plain_password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain_password: str, password_hash: str) -> bool:
    """Verify a plain-text password against its bcrypt hash."""
    if not password_hash or not plain_password:
        return False
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            password_hash.encode("utf-8"),
        )
    except ValueError:
        # Not a bcrypt hash
        return False


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def generate_one_time_token() -> tuple[str, str]:
    """Return ``(raw_token, sha256_digest)``; persist only the digest."""
    raw = secrets.token_hex(32)
    return raw, sha256_hex(raw)
