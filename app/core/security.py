"""Password hashing and the token authority: access/refresh JWT creation and verification."""

import secrets
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import bcrypt
import jwt

from app.core.config import settings

# Bcrypt cost (rounds); 12 is a good default for security vs speed.
BCRYPT_ROUNDS = 12

PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128


class TokenDomain(str, Enum):
    """Signing domain of a token; each domain has its own secret and lifetime."""

    ACCESS = "access"
    REFRESH = "refresh"


class TokenError(Exception):
    """Raised when a token cannot be verified. reason is expired, malformed or signature_invalid."""

    EXPIRED = "expired"
    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


def hash_password(plain_password: str) -> str:
    """Hash a plain-text password for storage. Do not store plain passwords."""
    # bcrypt has a 72-byte limit; truncate to avoid errors (validation already limits length).
    pw_bytes = plain_password.encode("utf-8")[:72]
    return bcrypt.hashpw(pw_bytes, bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed: str) -> bool:
    """Verify a plain password against a stored hash."""
    pw_bytes = plain_password.encode("utf-8")[:72]
    try:
        return bcrypt.checkpw(pw_bytes, hashed.encode("utf-8"))
    except (ValueError, TypeError):
        return False


def _secret_for(domain: TokenDomain) -> str:
    if domain is TokenDomain.ACCESS:
        return settings.JWT_SECRET.get_secret_value()
    return settings.JWT_REFRESH_SECRET.get_secret_value()


def create_access_token(user_id: str, role: str) -> str:
    """Create a short-lived access token carrying the user id (sub) and role."""
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "role": role,
        "typ": TokenDomain.ACCESS.value,
        "iat": now,
        "exp": now + timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(payload, _secret_for(TokenDomain.ACCESS), algorithm=settings.JWT_ALGORITHM)


def create_refresh_token(user_id: str) -> str:
    """
    Create a refresh token for user_id.

    jti makes every token unique, so a later login always invalidates the stored
    value even when both are minted within the same second.
    """
    now = datetime.now(UTC)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "typ": TokenDomain.REFRESH.value,
        "jti": secrets.token_hex(16),
        "iat": now,
        "exp": now + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    }
    return jwt.encode(payload, _secret_for(TokenDomain.REFRESH), algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str, domain: TokenDomain) -> dict[str, Any]:
    """
    Decode and validate a token in the given domain; return its claims.

    Stateless (no store access). Raises TokenError on an expired, malformed or
    wrongly signed token, including a token minted for the other domain.
    """
    try:
        payload = jwt.decode(
            token,
            _secret_for(domain),
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub", "exp", "iat"]},
        )
    except jwt.ExpiredSignatureError as e:
        raise TokenError(TokenError.EXPIRED) from e
    except jwt.InvalidSignatureError as e:
        raise TokenError(TokenError.SIGNATURE_INVALID) from e
    except jwt.PyJWTError as e:
        raise TokenError(TokenError.MALFORMED) from e
    if payload.get("typ") != domain.value:
        raise TokenError(TokenError.SIGNATURE_INVALID)
    if not isinstance(payload.get("sub"), str) or not payload["sub"]:
        raise TokenError(TokenError.MALFORMED)
    return payload
