"""
Database Helper Functions

MongoDB helper functions with graceful fallback.
- Primary: real MongoDB via DATABASE_URL + DATABASE_NAME
- Fallback: Mongita (embedded MongoDB-compatible) so the app fully works without external DB

The handle is opened lazily on first use; tests replace ``database.db``
with an in-memory double before touching any service.
"""

from datetime import datetime, timezone
from typing import Union
import logging

from bson import ObjectId
from bson.errors import InvalidId
from mongita import MongitaClientDisk
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from config import settings
from errors import InternalError, NotFoundError

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_NAME = "prayer_board_local"

db = None
_client = None
# "mongodb" when talking to a real server; index creation depends on it
backend = None


def connect():
    """Open the database handle, preferring a real MongoDB server."""
    global db, _client, backend

    if settings.database_url and settings.database_name:
        try:
            _client = MongoClient(settings.database_url, serverSelectionTimeoutMS=2000)
            _client.admin.command("ping")  # ensure reachable now
            db = _client[settings.database_name]
            backend = "mongodb"
            logger.info("Connected to MongoDB database %s", settings.database_name)
            return db
        except PyMongoError as e:
            logger.warning("MongoDB not reachable (%s); falling back to Mongita", e)
            _client = None
            db = None

    _client = MongitaClientDisk()
    db = _client[settings.database_name or DEFAULT_DATABASE_NAME]
    backend = "mongita"
    logger.info("Using embedded Mongita database")
    return db


def get_db():
    """Return the open database handle, connecting on first use."""
    if db is None:
        try:
            connect()
        except Exception as e:
            logger.exception("Database connection failed")
            raise InternalError(f"Database not available: {e}") from e
    return db


def ensure_indexes(database) -> None:
    """Create the indexes the uniqueness and query guarantees rely on.

    Mongita has no unique indexes, so this only runs against MongoDB
    (or a pymongo-compatible double in tests).
    """
    database["user"].create_index("email", unique=True)
    database["session"].create_index("token", unique=True)
    # MongoDB drops a session once expires_at has passed
    database["session"].create_index("expires_at", expireAfterSeconds=0)
    # sparse: requests that were never shared have no share_token field at all
    database["prayer_request"].create_index("share_token", unique=True, sparse=True)
    database["prayer_request"].create_index(
        [("lifecycle.state", ASCENDING), ("status", ASCENDING), ("created_at", DESCENDING)]
    )
    database["comment"].create_index([("request_id", ASCENDING), ("created_at", ASCENDING)])


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str: str) -> ObjectId:
    """Parse an id from a URL; anything unparseable cannot exist."""
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFoundError("Not found")


def create_document(collection_name: str, data: Union[BaseModel, dict]):
    """Insert a single document with timestamps and return it with its _id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)

    stamp = now()
    data_dict['created_at'] = stamp
    data_dict['updated_at'] = stamp

    result = get_db()[collection_name].insert_one(data_dict)
    data_dict["_id"] = result.inserted_id
    return data_dict


def as_utc(value: datetime) -> datetime:
    """BSON hands datetimes back naive; they are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def serialize_datetime(value):
    if value is None:
        return None
    return as_utc(value).isoformat()
