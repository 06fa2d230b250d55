"""Password hashing and access tokens.

Passwords are stored as `pbkdf2_sha256$<iterations>$<salt>$<hash>` strings.
Access tokens are HS256 JWTs whose `sub` claim is the user id.
"""
import base64
import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID

import jwt

from .config import Settings, get_settings
from .errors import AuthenticationError

logger = logging.getLogger("ticketflow-core.security")

PBKDF2_ALGORITHM = "pbkdf2_sha256"
PBKDF2_ITERATIONS = 260_000


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii").strip()


def hash_password(password: str, iterations: int = PBKDF2_ITERATIONS) -> str:
    """
    Hash a password with a random salt.

    Args:
        password: Plain-text password
        iterations: PBKDF2 iteration count

    Returns:
        Encoded hash string safe to store in `users.password_hash`
    """
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"{PBKDF2_ALGORITHM}${iterations}${salt}${_b64(digest)}"


def verify_password(password: str, encoded: str) -> bool:
    """Check a plain-text password against a stored hash (constant time)."""
    try:
        algorithm, iterations, salt, expected = encoded.split("$", 3)
        iterations = int(iterations)
    except (ValueError, AttributeError):
        logger.warning("Stored password hash has an unknown format")
        return False

    if algorithm != PBKDF2_ALGORITHM:
        return False

    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return hmac.compare_digest(_b64(digest), expected)


def create_access_token(
    user_id: UUID,
    settings: Optional[Settings] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Issue a signed access token for a user.

    Args:
        user_id: Subject of the token
        settings: Settings to read the secret and expiry from
        expires_delta: Override for the configured lifetime

    Returns:
        Encoded JWT
    """
    settings = settings or get_settings()
    now = datetime.now(timezone.utc)
    expires = now + (expires_delta or timedelta(minutes=settings.jwt_expires_minutes))
    payload = {"sub": str(user_id), "iat": now, "exp": expires}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Optional[Settings] = None) -> UUID:
    """
    Validate a token and return the user id it was issued for.

    Raises:
        AuthenticationError: If the token is malformed, has a bad signature or has expired
    """
    settings = settings or get_settings()
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected token: {e}")
        raise AuthenticationError("Invalid token")

    try:
        return UUID(claims["sub"])
    except (ValueError, TypeError):
        raise AuthenticationError("Invalid token")
