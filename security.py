"""Hashing, token and input-sanitizing helpers."""

import re
import secrets
from typing import Optional

import bleach
from email_validator import EmailNotValidError, validate_email
from werkzeug.security import check_password_hash, generate_password_hash

from errors import ValidationError

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, stored_hash: str) -> bool:
    if not stored_hash:
        return False
    return check_password_hash(stored_hash, password)


def new_session_token() -> str:
    return secrets.token_urlsafe(32)


def new_share_token() -> str:
    """128 bits from the OS CSPRNG, hex encoded. Unrelated to any record id."""
    return secrets.token_hex(16)


def sanitize(value: Optional[str]) -> Optional[str]:
    """Trim and strip every HTML tag from user input."""
    if not isinstance(value, str):
        return value
    return bleach.clean(value.strip(), tags=set(), attributes={}, strip=True).strip()


def normalize_email(email: str) -> str:
    """Validate email format and return it lowercased."""
    try:
        info = validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        raise ValidationError("Please provide a valid email address")
    return info.normalized.lower()


def check_password_policy(password: str) -> None:
    if len(password) < PASSWORD_MIN_LENGTH or len(password) > PASSWORD_MAX_LENGTH:
        raise ValidationError(
            f"Password must be between {PASSWORD_MIN_LENGTH} and {PASSWORD_MAX_LENGTH} characters"
        )
    if not re.search(r"[A-Z]", password) or not re.search(r"[a-z]", password) or not re.search(r"\d", password):
        raise ValidationError(
            "Password must contain at least one uppercase letter, one lowercase letter and one number"
        )
