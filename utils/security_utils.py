"""
Security utilities for credential input validation
"""
import re

from services.exceptions import ValidationError, ErrorCodes

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

DEFAULT_PASSWORD_MIN_LENGTH = 8


def normalize_email(email: str) -> str:
    """Trim surrounding whitespace and lowercase an email address"""
    return (email or "").strip().lower()


def validate_email(email: str) -> bool:
    """Validate email format"""
    return EMAIL_PATTERN.match(email or "") is not None


def validate_password_strength(password: str, min_length: int = DEFAULT_PASSWORD_MIN_LENGTH) -> None:
    """
    Validate password strength.

    Args:
        password: Plaintext password to check
        min_length: Minimum number of characters required

    Raises:
        ValidationError: If the password is shorter than min_length
    """
    if password is None or len(password) < min_length:
        raise ValidationError(
            f"Password must be at least {min_length} characters",
            code=ErrorCodes.WEAK_PASSWORD,
        )
