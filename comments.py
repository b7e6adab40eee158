"""
Comment aggregate.

The parent request's comment_count is never incremented or decremented.
Every mutation bumps the parent's comment_seq, then recounts live comments
and stores the result only if comment_seq has not moved since it was read.
Whichever mutation bumps the sequence last writes a count taken after all
earlier writes landed, so the stored count converges on the true one. Until
that final recount lands, readers may see the previous value.
"""

from typing import Optional
import logging

from bson import ObjectId

from database import create_document, get_db, now, serialize_datetime, to_object_id
from errors import ForbiddenError, NotFoundError, ValidationError
from policy import can_create_comment, can_delete_comment
from prayer_requests import ACTIVE, get_live_request
from schemas import Comment as CommentSchema, Deleted
from security import sanitize

logger = logging.getLogger(__name__)

COLLECTION = "comment"

BODY_MIN_LENGTH = 1
BODY_MAX_LENGTH = 500
AUTHOR_NAME_MAX_LENGTH = 50
DEFAULT_AUTHOR_NAME = "Anonymous"

ADDED_MESSAGE = "Comment added successfully"


def public_comment(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "requestId": doc.get("request_id"),
        "body": doc.get("body"),
        "authorName": doc.get("author_name"),
        "authorId": doc.get("author"),
        "createdAt": serialize_datetime(doc.get("created_at")),
    }


def recount(request_id: str) -> None:
    """Bump the parent's sequence and store a fresh count of live comments."""
    database = get_db()
    requests = database["prayer_request"]
    oid = ObjectId(request_id)

    requests.update_one({"_id": oid}, {"$inc": {"comment_seq": 1}})
    parent = requests.find_one({"_id": oid})
    if not parent:
        return
    seq = parent.get("comment_seq", 0)
    count = database[COLLECTION].count_documents({"request_id": request_id, **ACTIVE})
    result = requests.update_one(
        {"_id": oid, "comment_seq": seq},
        {"$set": {"comment_count": count}},
    )
    if result.matched_count == 0:
        # a later mutation bumped the sequence and will store its own count
        logger.debug("Recount for %s superseded at seq %s", request_id, seq)


def _author_name(actor: Optional[dict], guest_name: Optional[str], default_name: str) -> str:
    if actor is not None:
        return actor.get("display_name") or default_name
    name = sanitize(guest_name) if isinstance(guest_name, str) else None
    if not name:
        return default_name
    return name[:AUTHOR_NAME_MAX_LENGTH]


def create_comment(
    request_id: str,
    body: Optional[str],
    actor: Optional[dict] = None,
    author_name: Optional[str] = None,
    default_name: str = DEFAULT_AUTHOR_NAME,
) -> dict:
    body = sanitize(body) if isinstance(body, str) else ""
    if len(body) < BODY_MIN_LENGTH or len(body) > BODY_MAX_LENGTH:
        raise ValidationError(
            f"Comment must be between {BODY_MIN_LENGTH} and {BODY_MAX_LENGTH} characters"
        )

    request = get_live_request(request_id)
    if not can_create_comment(request):
        raise NotFoundError("Request not found")

    request_id = str(request["_id"])
    comment = CommentSchema(
        request_id=request_id,
        author=str(actor["_id"]) if actor is not None else None,
        author_name=_author_name(actor, author_name, default_name),
        body=body,
    )
    doc = create_document(COLLECTION, comment)
    recount(request_id)

    logger.info("Comment %s added to request %s", doc["_id"], request_id)
    return public_comment(doc)


def list_comments(request_id: str) -> dict:
    cursor = get_db()[COLLECTION].find({"request_id": request_id, **ACTIVE}).sort(
        [("created_at", 1), ("_id", 1)]
    )
    comments = [public_comment(d) for d in cursor]
    return {"comments": comments, "count": len(comments)}


def delete_comment(comment_id: str, actor: Optional[dict]) -> dict:
    """Soft-delete a comment and return it as it was."""
    collection = get_db()[COLLECTION]
    oid = to_object_id(comment_id)
    comment = collection.find_one({"_id": oid, **ACTIVE})
    if not comment:
        raise NotFoundError("Comment not found")
    if not can_delete_comment(actor, comment):
        raise ForbiddenError("Not authorized to delete this comment")

    deleted = Deleted(by=str(actor["_id"]), at=now())
    result = collection.update_one(
        {"_id": oid, **ACTIVE},
        {"$set": {"lifecycle": deleted.model_dump(), "updated_at": deleted.at}},
    )
    if result.matched_count == 0:
        raise NotFoundError("Comment not found")

    recount(comment["request_id"])
    logger.info("Comment %s removed by %s", comment_id, actor["_id"])
    return public_comment(comment)
