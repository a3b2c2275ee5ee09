"""Password hashing and JWT access tokens.

Passwords are stored as ``pbkdf2_sha256$<iterations>$<salt_hex>$<hash_hex>``
so the iteration count can be raised later without invalidating existing
hashes.  Tokens are HS256 JWTs issued with PyJWT; logout adds the token's
``jti`` to a volatile in-process revocation list.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import threading
import time
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

from assistant.config import (
    JWT_ALGORITHM,
    JWT_EXPIRE_MINUTES,
    JWT_SECRET,
    PASSWORD_HASH_ITERATIONS,
)
from assistant.errors import AuthenticationError

logger = logging.getLogger(__name__)

_HASH_SCHEME = "pbkdf2_sha256"


# ── Passwords ────────────────────────────────────────────────────────


def hash_password(password: str, *, iterations: int | None = None) -> str:
    iterations = iterations or PASSWORD_HASH_ITERATIONS
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{_HASH_SCHEME}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    """Constant-time check of *password* against a stored hash."""
    try:
        scheme, iterations, salt_hex, digest_hex = encoded.split("$")
    except ValueError:
        logger.warning("Malformed password hash encountered")
        return False
    if scheme != _HASH_SCHEME:
        return False
    candidate = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), int(iterations),
    )
    return hmac.compare_digest(candidate.hex(), digest_hex)


# ── Revocation list ──────────────────────────────────────────────────


class TokenRevocationList:
    """Thread-safe set of revoked token IDs, each kept until its expiry."""

    def __init__(self) -> None:
        self._revoked: dict[str, float] = {}
        self._lock = threading.Lock()

    def revoke(self, jti: str, expires_at: float) -> None:
        with self._lock:
            self._purge(time.time())
            self._revoked[jti] = expires_at

    def is_revoked(self, jti: str) -> bool:
        with self._lock:
            return jti in self._revoked

    def _purge(self, now: float) -> None:
        expired = [jti for jti, exp in self._revoked.items() if exp <= now]
        for jti in expired:
            del self._revoked[jti]


revoked_tokens = TokenRevocationList()


# ── Tokens ───────────────────────────────────────────────────────────


def create_access_token(
    user_id: uuid.UUID | str,
    *,
    expires_minutes: int | None = None,
    extra_claims: dict[str, Any] | None = None,
) -> str:
    now = datetime.now(UTC)
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes or JWT_EXPIRE_MINUTES),
        "jti": uuid.uuid4().hex,
    }
    if extra_claims:
        claims.update(extra_claims)
    return jwt.encode(claims, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Validate *token* and return its claims.

    Raises:
        AuthenticationError: expired, tampered, malformed or revoked.
    """
    try:
        claims = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["sub", "exp", "jti"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired.") from None
    except jwt.InvalidTokenError as exc:
        logger.debug("Rejected token: %s", exc)
        raise AuthenticationError("Invalid authentication token.") from None

    if revoked_tokens.is_revoked(claims["jti"]):
        raise AuthenticationError("Token has been revoked.")
    return claims


def revoke_access_token(claims: dict[str, Any]) -> None:
    revoked_tokens.revoke(claims["jti"], float(claims["exp"]))
