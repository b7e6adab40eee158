"""Application-wide exception classes.

Each error carries the HTTP status it maps to; the handlers in main.py
render every one of them as ``{"error": message}``.
"""

from __future__ import annotations


class AppError(Exception):
    """Base exception for all application errors."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """Raised when input is malformed or out of range."""

    status_code = 400
    default_message = "Invalid input"


class AuthError(AppError):
    """Raised when credentials are missing or wrong."""

    status_code = 401
    default_message = "Not authenticated"


class ForbiddenError(AppError):
    """Raised when an authenticated caller is not permitted."""

    status_code = 403
    default_message = "Not authorized"


class NotFoundError(AppError):
    """Raised when an entity is missing or soft-deleted."""

    status_code = 404
    default_message = "Not found"


class ConflictError(AppError):
    """Raised on a uniqueness violation."""

    status_code = 409
    default_message = "Conflict"


class InternalError(AppError):
    """Raised on unexpected storage failures. Message is always generic."""

    status_code = 500

    def __init__(self, message: str | None = None):
        # keep the detail for logs only
        self.detail = message
        super().__init__(self.default_message)
