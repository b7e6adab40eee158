"""
Identity & credential store: registration, login, sessions.

Users and sessions live in the "user" and "session" collections. A session
token is an opaque random string; the bearer header carries it verbatim.
"""

from datetime import timedelta
from typing import Optional
import logging

from pymongo.errors import DuplicateKeyError

from config import settings
from database import as_utc, create_document, get_db, now, serialize_datetime, to_object_id
from errors import AuthError, ConflictError, ForbiddenError, NotFoundError, ValidationError
from policy import can_deactivate_user
from schemas import Session as SessionSchema, User as UserSchema
from security import (
    check_password_policy,
    hash_password,
    new_session_token,
    normalize_email,
    sanitize,
    verify_password,
)

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"


def public_user(user: dict) -> dict:
    """The only shape a user record ever leaves the API in."""
    return {
        "id": str(user["_id"]),
        "displayName": user.get("display_name"),
        "email": user.get("email"),
        "role": user.get("role", "member"),
        "isActive": user.get("is_active", True),
        "createdAt": serialize_datetime(user.get("created_at")),
    }


def _issue_session(user_id: str) -> str:
    token = new_session_token()
    session = SessionSchema(
        user_id=user_id,
        token=token,
        expires_at=now() + timedelta(days=settings.session_ttl_days),
    )
    create_document("session", session)
    return token


def register(display_name: Optional[str], email: Optional[str], password: Optional[str]) -> dict:
    if not display_name or not email or not password:
        raise ValidationError("Please provide all required fields")

    display_name = sanitize(display_name)
    if len(display_name) < 2 or len(display_name) > 50:
        raise ValidationError("Display name must be between 2 and 50 characters")
    email = normalize_email(sanitize(email))
    check_password_policy(password)

    users = get_db()["user"]
    if users.find_one({"email": email}):
        raise ConflictError("Email already registered")

    user = UserSchema(display_name=display_name, email=email, password_hash=hash_password(password))
    try:
        doc = create_document("user", user)
    except DuplicateKeyError:
        # lost a race with a concurrent registration for the same email
        raise ConflictError("Email already registered")

    logger.info("Registered user %s", doc["_id"])
    return {"token": _issue_session(str(doc["_id"])), "user": public_user(doc)}


def login(email: Optional[str], password: Optional[str]) -> dict:
    if not email or not password:
        raise ValidationError("Please provide email and password")

    user = get_db()["user"].find_one({"email": sanitize(email).lower()})
    # same message for every failure so callers cannot probe for accounts
    if not user or not user.get("is_active", True):
        raise AuthError(INVALID_CREDENTIALS)
    if not verify_password(password, user.get("password_hash", "")):
        raise AuthError(INVALID_CREDENTIALS)

    return {"token": _issue_session(str(user["_id"])), "user": public_user(user)}


def get_current_user(token: Optional[str]) -> dict:
    """Resolve a bearer token to its user document."""
    if not token:
        raise AuthError("Not authenticated")
    database = get_db()
    session = database["session"].find_one({"token": token})
    if not session:
        raise AuthError("Not authenticated")
    expires_at = session.get("expires_at")
    if expires_at is None or as_utc(expires_at) < now():
        raise AuthError("Session expired")

    user = database["user"].find_one({"_id": to_object_id(session["user_id"])})
    if not user:
        raise NotFoundError("User not found")
    if not user.get("is_active", True):
        raise AuthError("Account is deactivated")
    return user


def deactivate_user(user_id: str, actor: Optional[dict]) -> dict:
    if not can_deactivate_user(actor):
        raise ForbiddenError("Only admins can deactivate accounts")
    users = get_db()["user"]
    oid = to_object_id(user_id)
    result = users.update_one({"_id": oid}, {"$set": {"is_active": False, "updated_at": now()}})
    if result.matched_count == 0:
        raise NotFoundError("User not found")
    logger.info("User %s deactivated by %s", user_id, actor["_id"])
    return public_user(users.find_one({"_id": oid}))


def bootstrap_admin() -> None:
    """Create (or promote) the admin account named in the environment."""
    if not settings.admin_email or not settings.admin_password:
        return
    email = normalize_email(settings.admin_email)
    users = get_db()["user"]
    existing = users.find_one({"email": email})
    if existing:
        if existing.get("role") != "admin":
            users.update_one({"_id": existing["_id"]}, {"$set": {"role": "admin", "updated_at": now()}})
            logger.info("Promoted %s to admin", existing["_id"])
        return

    try:
        check_password_policy(settings.admin_password)
    except ValidationError as e:
        logger.error("Not creating admin account %s: %s", email, e.message)
        return

    admin = UserSchema(
        display_name=settings.admin_display_name,
        email=email,
        password_hash=hash_password(settings.admin_password),
        role="admin",
    )
    doc = create_document("user", admin)
    logger.info("Created admin account %s", doc["_id"])
