"""
Database Schemas for Prayer Board

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase of the class name (PrayerRequest -> "prayer_request").

Soft delete is stored as a tagged ``lifecycle`` sub-document rather than
loose flags, so a deleted record always carries who deleted it and when.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

ROLES = ("member", "admin")
STATUSES = ("open", "answered", "archived", "hidden")

Role = Literal["member", "admin"]
Status = Literal["open", "answered", "archived", "hidden"]


class Active(BaseModel):
    state: Literal["active"] = "active"


class Deleted(BaseModel):
    state: Literal["deleted"] = "deleted"
    by: str = Field(..., description="Id of the user who deleted the record")
    at: datetime


Lifecycle = Annotated[Union[Active, Deleted], Field(discriminator="state")]
_lifecycle_adapter = TypeAdapter(Lifecycle)


def lifecycle_of(doc: dict) -> Union[Active, Deleted]:
    """Parse the stored lifecycle of a document."""
    return _lifecycle_adapter.validate_python(doc.get("lifecycle") or {"state": "active"})


def is_active(doc: Optional[dict]) -> bool:
    return doc is not None and isinstance(lifecycle_of(doc), Active)


class User(BaseModel):
    """
    Registered accounts
    Collection: "user"
    """
    display_name: str = Field(..., min_length=2, max_length=50)
    email: str = Field(..., description="Lowercased, unique")
    password_hash: str = Field(..., description="Salted password hash, never serialized out")
    role: Role = "member"
    is_active: bool = True


class Session(BaseModel):
    """
    Bearer credentials issued at register/login
    Collection: "session"
    """
    user_id: str
    token: str
    expires_at: datetime


class PrayerRequest(BaseModel):
    """
    Requests posted to the wall
    Collection: "prayer_request"

    ``share_token`` is deliberately not a field: it is only written once a
    share link is issued, so unshared requests never hold a shared value.
    """
    body: str = Field(..., min_length=10, max_length=1000)
    is_anonymous: bool = True
    author: Optional[str] = Field(None, description="Author user id; None for guest posts")
    author_name: str = "Anonymous"
    prayed_count: int = Field(0, ge=0)
    comment_count: int = Field(0, ge=0)
    comment_seq: int = Field(0, ge=0, description="Bumped on every comment mutation")
    status: Status = "open"
    lifecycle: Lifecycle = Field(default_factory=Active)


class Comment(BaseModel):
    """
    Comments on requests
    Collection: "comment"
    """
    request_id: str
    author: Optional[str] = Field(None, description="Author user id; None for guests")
    author_name: str = Field(..., max_length=50)
    body: str = Field(..., min_length=1, max_length=500)
    lifecycle: Lifecycle = Field(default_factory=Active)
