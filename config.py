"""Application configuration.

Reads settings from environment variables (and an optional .env file).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file (noop if not present)
load_dotenv()


def _get_int(name: str, default: int) -> int:
    """Get integer from environment variable with fallback."""
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_str(name: str, default: str = "") -> str:
    return os.getenv(name, default)


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str]
    database_name: Optional[str]
    frontend_url: str
    session_ttl_days: int
    admin_email: Optional[str]
    admin_password: Optional[str]
    admin_display_name: str
    log_level: str
    port: int


def load_settings() -> Settings:
    """Build settings from the current environment."""
    return Settings(
        database_url=os.getenv("DATABASE_URL"),
        database_name=os.getenv("DATABASE_NAME"),
        frontend_url=_get_str("FRONTEND_URL", "http://localhost:5173").rstrip("/"),
        session_ttl_days=_get_int("SESSION_TTL_DAYS", 30),
        admin_email=os.getenv("ADMIN_EMAIL"),
        admin_password=os.getenv("ADMIN_PASSWORD"),
        admin_display_name=_get_str("ADMIN_DISPLAY_NAME", "Administrator"),
        log_level=_get_str("LOG_LEVEL", "INFO").upper(),
        port=_get_int("PORT", 8000),
    )


settings = load_settings()
