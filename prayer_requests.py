"""
Prayer request aggregate.

A request document owns its counters (prayed_count, comment_count) and
its status. Counters are only ever changed with storage-level operators
($inc, or the compare-and-set recount in comments.py), never with a
read-modify-write in Python.
"""

import math
from typing import Optional
import logging

from pymongo.errors import DuplicateKeyError

from config import settings
from database import create_document, get_db, now, serialize_datetime, to_object_id
from errors import ForbiddenError, InternalError, NotFoundError, ValidationError
from policy import can_delete_request, can_generate_share_link, can_update_status
from schemas import STATUSES, Deleted, PrayerRequest as PrayerRequestSchema
from security import new_share_token, sanitize

logger = logging.getLogger(__name__)

COLLECTION = "prayer_request"
ACTIVE = {"lifecycle.state": "active"}

BODY_MIN_LENGTH = 10
BODY_MAX_LENGTH = 1000
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
DEFAULT_STATUS_FILTER = "open"
SHARE_TOKEN_ATTEMPTS = 5

PRAYED_MESSAGE = "Your prayer has been noted. Thank you for lifting this up."


def public_request(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "body": doc.get("body"),
        "authorName": doc.get("author_name", "Anonymous"),
        "isAnonymous": doc.get("is_anonymous", True),
        "prayedCount": doc.get("prayed_count", 0),
        "commentCount": doc.get("comment_count", 0),
        "status": doc.get("status", "open"),
        "author": doc.get("author"),
        "createdAt": serialize_datetime(doc.get("created_at")),
        "updatedAt": serialize_datetime(doc.get("updated_at")),
    }


def get_live_request(request_id: str) -> dict:
    """Fetch a request that exists and is not soft-deleted."""
    doc = get_db()[COLLECTION].find_one({"_id": to_object_id(request_id), **ACTIVE})
    if not doc:
        raise NotFoundError("Request not found")
    return doc


def create_request(body: Optional[str], is_anonymous: Optional[bool], actor: Optional[dict]) -> dict:
    body = sanitize(body) if isinstance(body, str) else ""
    if len(body) < BODY_MIN_LENGTH or len(body) > BODY_MAX_LENGTH:
        raise ValidationError(
            f"Request body must be between {BODY_MIN_LENGTH} and {BODY_MAX_LENGTH} characters"
        )

    if is_anonymous is None:
        is_anonymous = True

    if actor is None:
        # guest posts are always anonymous
        request = PrayerRequestSchema(body=body, is_anonymous=True)
    else:
        request = PrayerRequestSchema(
            body=body,
            is_anonymous=is_anonymous,
            author=str(actor["_id"]),
            author_name="Anonymous" if is_anonymous else actor.get("display_name", "Anonymous"),
        )

    doc = create_document(COLLECTION, request)
    logger.info("Created request %s (author=%s)", doc["_id"], doc.get("author"))
    return public_request(doc)


def list_requests(page: int = 1, limit: int = DEFAULT_PAGE_SIZE, status: Optional[str] = None) -> dict:
    """List live requests newest first.

    Paging input is clamped rather than rejected, and an unknown status
    filter simply matches nothing.
    """
    status = status or DEFAULT_STATUS_FILTER
    page = max(page, 1)
    if limit < 1:
        limit = DEFAULT_PAGE_SIZE
    limit = min(limit, MAX_PAGE_SIZE)

    query = dict(ACTIVE)
    if status != "all":
        query["status"] = status

    collection = get_db()[COLLECTION]
    total = collection.count_documents(query)
    cursor = (
        collection.find(query)
        .sort([("created_at", -1), ("_id", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )

    return {
        "requests": [public_request(d) for d in cursor],
        "pagination": {
            "page": page,
            "limit": limit,
            "totalPages": math.ceil(total / limit),
            "totalCount": total,
        },
    }


def increment_prayed(match: dict) -> int:
    """Atomically add one prayer to the live request matching ``match``."""
    collection = get_db()[COLLECTION]
    result = collection.update_one(
        {**match, **ACTIVE},
        {"$inc": {"prayed_count": 1}, "$set": {"updated_at": now()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Request not found")
    doc = collection.find_one(match)
    if not doc:
        raise NotFoundError("Request not found")
    return doc.get("prayed_count", 0)


def pray(request_id: str) -> dict:
    count = increment_prayed({"_id": to_object_id(request_id)})
    return {"prayedCount": count, "message": PRAYED_MESSAGE}


def update_status(request_id: str, status: Optional[str], actor: Optional[dict]) -> dict:
    if status not in STATUSES:
        raise ValidationError(f"Status must be one of: {', '.join(STATUSES)}")

    request = get_live_request(request_id)
    if not can_update_status(actor, request, status):
        if status == "answered":
            raise ForbiddenError("Only the author can mark as answered")
        if status in ("hidden", "archived"):
            raise ForbiddenError("Only admins can hide or archive")
        raise ForbiddenError("Not authorized")

    collection = get_db()[COLLECTION]
    result = collection.update_one(
        {"_id": request["_id"], **ACTIVE},
        {"$set": {"status": status, "updated_at": now()}},
    )
    if result.matched_count == 0:
        # deleted between the read and the write
        raise NotFoundError("Request not found")

    logger.info("Request %s status -> %s by %s", request_id, status, actor["_id"])
    return public_request(collection.find_one({"_id": request["_id"]}))


def delete_request(request_id: str, actor: Optional[dict]) -> None:
    if not can_delete_request(actor):
        raise ForbiddenError("Only admins can remove requests")

    oid = to_object_id(request_id)
    collection = get_db()[COLLECTION]
    deleted = Deleted(by=str(actor["_id"]), at=now())
    result = collection.update_one(
        {"_id": oid, **ACTIVE},
        {"$set": {"lifecycle": deleted.model_dump(), "updated_at": deleted.at}},
    )
    if result.matched_count == 0 and collection.count_documents({"_id": oid}) == 0:
        raise NotFoundError("Request not found")
    # an already-deleted request keeps its first deletion record
    logger.info("Request %s removed by %s", request_id, actor["_id"])


def share_url(token: str) -> str:
    return f"{settings.frontend_url}/shared/{token}"


def generate_share_link(request_id: str, actor: Optional[dict]) -> dict:
    """Issue the request's share token, or return the one it already has."""
    request = get_live_request(request_id)
    if not can_generate_share_link(actor, request):
        raise ForbiddenError("Only the author or an admin can share this request")

    collection = get_db()[COLLECTION]
    token = request.get("share_token")
    attempts = 0
    while not token:
        if attempts >= SHARE_TOKEN_ATTEMPTS:
            raise InternalError(f"Could not issue a share token for {request_id}")
        attempts += 1
        try:
            # only matches while no token is set; a concurrent issuer wins cleanly
            collection.update_one(
                {"_id": request["_id"], "share_token": None},
                {"$set": {"share_token": new_share_token(), "updated_at": now()}},
            )
        except DuplicateKeyError:
            logger.warning("Share token collision for request %s, retrying", request_id)
            continue
        current = collection.find_one({"_id": request["_id"]})
        if not current:
            raise NotFoundError("Request not found")
        token = current.get("share_token")

    return {"shareToken": token, "shareUrl": share_url(token)}
