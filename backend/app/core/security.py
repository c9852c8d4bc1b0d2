"""Security utilities: JWT tokens, password hashing and token revocation."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict
import logging

import jwt
from jwt.exceptions import PyJWTError
import bcrypt
import redis
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain password against a hash.

    Uses bcrypt's built-in timing-safe comparison.
    """
    try:
        return bcrypt.checkpw(
            plain_password.encode('utf-8'),
            hashed_password.encode('utf-8')
        )
    except ValueError as e:
        logger.warning(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(
        password.encode('utf-8'),
        bcrypt.gensalt()
    ).decode('utf-8')


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token with a unique JTI for logout support."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)

    if expires_delta:
        expire = now + expires_delta
    else:
        expire = now + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
    })
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """Decode and validate a JWT token. Returns None for invalid or revoked tokens."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"require_exp": True}
        )
    except PyJWTError as e:
        logger.debug(f"JWT decode error: {e}")
        return None

    jti = payload.get("jti")
    if jti and _is_token_revoked(jti):
        logger.debug(f"Token {jti} has been revoked")
        return None

    return payload


def revoke_token(payload: dict[str, Any]) -> bool:
    """Revoke a decoded token until its natural expiry (used at logout).

    The jti is stored in Redis with a TTL matching the token's expiry when
    ``redis_url`` is set, otherwise in the in-memory fallback.
    """
    jti = payload.get("jti")
    if not jti:
        return False

    exp = payload.get("exp", 0)
    ttl = max(int(exp - datetime.now(timezone.utc).timestamp()), 60)

    client = _redis_client(socket_connect_timeout=2)
    if client is not None:
        try:
            client.setex(f"{REVOKED_KEY_PREFIX}{jti}", ttl, "1")
            return True
        except RedisError as e:
            logger.warning(f"Redis revocation failed: {e}")

    _purge_expired()
    _revoked_tokens[jti] = datetime.now(timezone.utc) + timedelta(seconds=ttl)
    return True


def _redis_client(socket_connect_timeout: int = 1):
    if not settings.redis_url:
        return None
    return redis.from_url(settings.redis_url, socket_connect_timeout=socket_connect_timeout)


def _purge_expired() -> None:
    now = datetime.now(timezone.utc)
    for jti in [k for k, expiry in _revoked_tokens.items() if expiry <= now]:
        del _revoked_tokens[jti]


def _is_token_revoked(jti: str) -> bool:
    client = _redis_client()
    if client is not None:
        try:
            return bool(client.get(f"{REVOKED_KEY_PREFIX}{jti}"))
        except RedisError as e:
            logger.warning(f"Redis revocation check failed (token may be allowed through): {e}")

    expiry = _revoked_tokens.get(jti)
    if expiry:
        if datetime.now(timezone.utc) < expiry:
            return True
        del _revoked_tokens[jti]
    return False


REVOKED_KEY_PREFIX = "token_blacklist:"

# In-memory fallback for when Redis is not configured or unavailable
_revoked_tokens: Dict[str, datetime] = {}
