"""
Access control policy.

Every privilege decision in the API goes through one of these functions.
They are pure: they look only at the actor (a user document, or None for a
guest) and the target documents, and never touch storage.
"""

from typing import Optional

from schemas import is_active

# Target statuses that need a specific role. Anything not listed here may be
# set by the author or an admin. There is no transition graph: any status can
# move to any other one if the actor holds the right role.
AUTHOR_ONLY_STATUSES = frozenset({"answered"})
ADMIN_ONLY_STATUSES = frozenset({"hidden", "archived"})


def _is_admin(actor: Optional[dict]) -> bool:
    return actor is not None and actor.get("role") == "admin"


def _is_author(actor: Optional[dict], doc: dict) -> bool:
    author = doc.get("author")
    return actor is not None and author is not None and author == str(actor["_id"])


def can_create_comment(request: Optional[dict]) -> bool:
    """Anyone, guest or member, may comment on a live request."""
    return is_active(request)


def can_delete_comment(actor: Optional[dict], comment: dict) -> bool:
    return _is_author(actor, comment) or _is_admin(actor)


def can_update_status(actor: Optional[dict], request: dict, target_status: str) -> bool:
    if actor is None:
        return False
    if target_status in AUTHOR_ONLY_STATUSES:
        return _is_author(actor, request)
    if target_status in ADMIN_ONLY_STATUSES:
        return _is_admin(actor)
    return _is_author(actor, request) or _is_admin(actor)


def can_delete_request(actor: Optional[dict]) -> bool:
    return _is_admin(actor)


def can_generate_share_link(actor: Optional[dict], request: dict) -> bool:
    return _is_author(actor, request) or _is_admin(actor)


def can_deactivate_user(actor: Optional[dict]) -> bool:
    return _is_admin(actor)
