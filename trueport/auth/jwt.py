"""
Server side of a session: signed tokens, logout and password hashes.

One token is minted per successful sign-in. The client may present it as a
bearer header, as its own `auth-token` cookie, or through the HTTP-only
`session` cookie the backend sets. All three forms are the same JWT, so
revoking its `jti` ends every form at once.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone

import jwt
from pydantic import BaseModel

from trueport.config import get_settings
from trueport.core.models import Identity
from trueport.core.utils import generate_id, utc_now
from trueport.storage import CacheStorage

logger = logging.getLogger(__name__)

TOKEN_TYPE = "session"
PBKDF2_ROUNDS = 100_000


class TokenPayload(BaseModel):
    sub: str
    exp: datetime
    iat: datetime
    type: str
    jti: str
    email: str | None = None
    role: str | None = None


# =============================================================================
# Errors
# =============================================================================


class TokenError(Exception):
    """The presented token cannot establish a session."""


class TokenExpiredError(TokenError):
    pass


class TokenInvalidError(TokenError):
    pass


class TokenRevokedError(TokenError):
    pass


# =============================================================================
# Passwords
# =============================================================================


def _pbkdf2(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), iterations=PBKDF2_ROUNDS
    ).hex()


def hash_password(password: str) -> str:
    """PBKDF2-SHA256 digest stored as `salt:hex`."""
    salt = secrets.token_hex(32)
    return f"{salt}:{_pbkdf2(password, salt)}"


def verify_password(password: str, password_hash: str) -> bool:
    salt, sep, expected = (password_hash or "").partition(":")
    if not sep or not salt:
        return False
    return secrets.compare_digest(_pbkdf2(password, salt), expected)


# =============================================================================
# Tokens
# =============================================================================


def create_session_token(identity: Identity) -> str:
    settings = get_settings()
    issued = utc_now()
    claims = {
        "sub": identity.id,
        "iat": issued,
        "exp": issued + timedelta(days=settings.session_expire_days),
        "type": TOKEN_TYPE,
        "jti": generate_id("sess"),
        "email": identity.email,
        "role": identity.role.value if identity.role else None,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> TokenPayload:
    """
    Check the signature and expiry of a session token.

    Raises TokenExpiredError or TokenInvalidError. Revocation is not
    checked here; see validate_session_token.
    """
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise TokenExpiredError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenInvalidError(f"Invalid token: {e}")

    if claims.get("type") != TOKEN_TYPE:
        raise TokenInvalidError(f"Expected session token, got {claims.get('type')}")

    return TokenPayload(
        sub=claims["sub"],
        exp=datetime.fromtimestamp(claims["exp"], tz=timezone.utc),
        iat=datetime.fromtimestamp(claims["iat"], tz=timezone.utc),
        type=claims["type"],
        jti=claims.get("jti", ""),
        email=claims.get("email"),
        role=claims.get("role"),
    )


def _revoked_key(jti: str) -> str:
    return f"revoked:{jti}"


async def validate_session_token(token: str, cache: CacheStorage) -> TokenPayload:
    payload = decode_token(token)
    if payload.jti and await cache.exists(_revoked_key(payload.jti)):
        raise TokenRevokedError("Session has been logged out")
    return payload


async def revoke_session_token(token: str, cache: CacheStorage) -> bool:
    """
    Log a session out. The revocation marker lives only as long as the
    token would have, and False means the token was already unusable.
    """
    try:
        payload = decode_token(token)
    except TokenError:
        return False

    remaining = int((payload.exp - utc_now()).total_seconds())
    if remaining <= 0:
        return False

    await cache.set(_revoked_key(payload.jti), True, ttl=remaining)
    logger.info(f"Revoked session {payload.jti} for {payload.sub}")
    return True
