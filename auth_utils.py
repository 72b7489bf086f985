"""
Authentication utilities: Password hashing, opaque token generation and JWT token management
"""

import re
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext

from utils.shared_utils import utcnow

# Password hashing context with a fixed cost so every hash costs the same
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto",
    argon2__rounds=3,
    argon2__memory_cost=65536,
    argon2__parallelism=4,
)

# JWT configuration
ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"

# Claims the service always controls, whatever a claims strategy returns
RESERVED_CLAIMS = ("user_id", "type", "iat", "exp")

# Fallback lifetime for expiry strings that do not parse
DEFAULT_EXPIRES_IN = timedelta(days=7)

_EXPIRES_IN_PATTERN = re.compile(r'^(\d+)(ms|s|m|h|d)$')
_UNIT_TO_TIMEDELTA = {
    "ms": lambda v: timedelta(milliseconds=v),
    "s": lambda v: timedelta(seconds=v),
    "m": lambda v: timedelta(minutes=v),
    "h": lambda v: timedelta(hours=v),
    "d": lambda v: timedelta(days=v),
}


def hash_password(password: str) -> str:
    """Hash a password using argon2"""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash"""
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError):
        # Unrecognized or corrupted hash
        return False


def generate_token(nbytes: int = 32) -> str:
    """Generate a cryptographically random single-use token (hex encoded)"""
    return secrets.token_hex(nbytes)


def parse_expires_in(expires_in: str) -> timedelta:
    """
    Parse an expiry string such as "15m", "1h" or "30d".

    Accepted units are ms, s, m, h and d. Anything that does not match
    falls back to DEFAULT_EXPIRES_IN instead of raising.

    Args:
        expires_in: Integer followed by a unit

    Returns:
        The lifetime as a timedelta
    """
    match = _EXPIRES_IN_PATTERN.match(expires_in or "")
    if not match:
        return DEFAULT_EXPIRES_IN
    value, unit = int(match.group(1)), match.group(2)
    return _UNIT_TO_TIMEDELTA[unit](value)


def create_jwt(
    user_id: str,
    secret_key: Optional[str],
    expires_in: timedelta,
    extra_claims: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Create a signed access token for a user.

    Extra claims named in RESERVED_CLAIMS are dropped; those claims are
    always set here.
    """
    if not secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot create JWT token.")

    now = utcnow()
    payload: Dict[str, Any] = {
        key: value for key, value in (extra_claims or {}).items()
        if key not in RESERVED_CLAIMS
    }
    payload.update({
        "user_id": user_id,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": now + expires_in,
    })
    return jwt.encode(payload, secret_key, algorithm=ALGORITHM)


def decode_jwt(token: str, secret_key: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode a JWT token. Returns None if invalid."""
    if not secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot decode JWT token.")

    try:
        payload = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None

    if payload.get("type") != ACCESS_TOKEN_TYPE:
        return None
    return payload


def create_expired_jwt(user_id: str, secret_key: str, expired_seconds_ago: int = 1) -> str:
    """
    Create an expired JWT token for testing purposes.

    Args:
        user_id: User ID to include in token
        secret_key: Signing secret
        expired_seconds_ago: How many seconds ago the token should have expired (default: 1)

    Returns:
        Expired JWT token string
    """
    return create_jwt(user_id, secret_key, timedelta(seconds=-expired_seconds_ago))
