"""
Public share-link access.

Possession of a request's share token is the only credential here: the
holder may read the request, pray for it and comment on it. Lookups are
exact equality matches on the token, and deleted requests are invisible.
"""

from typing import Optional

from comments import create_comment, list_comments
from database import get_db
from errors import NotFoundError
from prayer_requests import ACTIVE, COLLECTION, PRAYED_MESSAGE, increment_prayed, public_request

SHARED_DEFAULT_AUTHOR_NAME = "A Friend"


def _resolve(token: Optional[str]) -> dict:
    if not isinstance(token, str) or not token:
        raise NotFoundError("Shared request not found")
    doc = get_db()[COLLECTION].find_one({"share_token": token, **ACTIVE})
    if not doc:
        raise NotFoundError("Shared request not found")
    return doc


def get_by_share_token(token: str) -> dict:
    request = _resolve(token)
    comments = list_comments(str(request["_id"]))["comments"]
    return {"request": public_request(request), "comments": comments}


def pray_by_share_token(token: str) -> dict:
    request = _resolve(token)
    count = increment_prayed({"_id": request["_id"], "share_token": token})
    return {"prayedCount": count, "message": PRAYED_MESSAGE}


def comment_shared(token: str, body: Optional[str], author_name: Optional[str]) -> dict:
    request = _resolve(token)
    return create_comment(
        str(request["_id"]),
        body,
        actor=None,
        author_name=author_name,
        default_name=SHARED_DEFAULT_AUTHOR_NAME,
    )
