import asyncio
import json
import logging
from typing import Dict, Optional, Tuple

from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

import broadcast
import comments
import database
import identity
import prayer_requests
import sharing
from config import settings
from errors import AppError, AuthError, NotFoundError
from logger import setup_logger

setup_logger(settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Prayer Board API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handling: every failure leaves as {"error": "..."}

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, getattr(exc, "detail", None))
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# Schemas for requests

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterPayload(_CamelModel):
    display_name: Optional[str] = Field(None, alias="displayName")
    email: Optional[str] = None
    password: Optional[str] = None


class LoginPayload(_CamelModel):
    email: Optional[str] = None
    password: Optional[str] = None


class RequestCreate(_CamelModel):
    body: Optional[str] = None
    is_anonymous: Optional[bool] = Field(None, alias="isAnonymous")


class StatusUpdate(_CamelModel):
    status: Optional[str] = None


class CommentCreate(_CamelModel):
    body: Optional[str] = None
    author_name: Optional[str] = Field(None, alias="authorName")


# Auth dependencies

def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def get_current_user(authorization: Optional[str] = Header(None)) -> dict:
    return identity.get_current_user(_bearer_token(authorization))


def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[dict]:
    """Guests get None; a stale or bogus credential also counts as a guest."""
    token = _bearer_token(authorization)
    if not token:
        return None
    try:
        return identity.get_current_user(token)
    except (AuthError, NotFoundError):
        return None


@app.on_event("startup")
def prepare_database():
    db = database.get_db()
    if database.backend == "mongodb":
        database.ensure_indexes(db)
    identity.bootstrap_admin()


@app.get("/")
def read_root():
    return {"message": "Prayer Board API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        db = database.get_db()
        response["database"] = f"✅ {database.backend}"
        response["connection_status"] = "Connected"
        response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        response["database"] = "⚠️  Connected but Error"
    return response


# Auth

@app.post("/auth/register", status_code=201)
def register(payload: RegisterPayload):
    return identity.register(payload.display_name, payload.email, payload.password)


@app.post("/auth/login")
def login(payload: LoginPayload):
    return identity.login(payload.email, payload.password)


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return {"user": identity.public_user(user)}


@app.post("/users/{user_id}/deactivate")
def deactivate_user(user_id: str, user=Depends(get_current_user)):
    return {"user": identity.deactivate_user(user_id, user)}


# Prayer requests

def _int_param(value: Optional[str], default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@app.get("/requests")
def list_requests(
    page: Optional[str] = Query(None),
    limit: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
):
    return prayer_requests.list_requests(
        page=_int_param(page, 1),
        limit=_int_param(limit, prayer_requests.DEFAULT_PAGE_SIZE),
        status=status,
    )


@app.post("/requests", status_code=201)
def create_request(payload: RequestCreate, user=Depends(get_optional_user)):
    return {"request": prayer_requests.create_request(payload.body, payload.is_anonymous, user)}


@app.post("/requests/{request_id}/pray")
def pray(request_id: str):
    return prayer_requests.pray(request_id)


@app.patch("/requests/{request_id}/status")
def update_status(request_id: str, payload: StatusUpdate, user=Depends(get_current_user)):
    return {"request": prayer_requests.update_status(request_id, payload.status, user)}


@app.delete("/requests/{request_id}")
def delete_request(request_id: str, user=Depends(get_current_user)):
    prayer_requests.delete_request(request_id, user)
    return {"message": "Request removed"}


@app.post("/requests/{request_id}/share")
def share_request(request_id: str, user=Depends(get_current_user)):
    return prayer_requests.generate_share_link(request_id, user)


# Shared links (public: the token is the credential)

@app.get("/shared/{token}")
def get_shared(token: str):
    return sharing.get_by_share_token(token)


@app.post("/shared/{token}/pray")
def pray_shared(token: str):
    return sharing.pray_by_share_token(token)


@app.post("/shared/{token}/comments", status_code=201)
def comment_shared(token: str, payload: CommentCreate):
    comment = sharing.comment_shared(token, payload.body, payload.author_name)
    return {"comment": comment, "message": comments.ADDED_MESSAGE}


# Comments

def _notify_comment_created(comment: dict) -> None:
    try:
        author = prayer_requests.get_live_request(comment["requestId"]).get("author")
    except NotFoundError:
        author = None
    except Exception:
        # the comment is already stored; only the author notification is lost
        logger.exception("Could not look up the author of request %s", comment["requestId"])
        author = None
    broadcast.comment_created(comment, author)


@app.get("/requests/{request_id}/comments")
def list_comments(request_id: str):
    return comments.list_comments(request_id)


@app.post("/requests/{request_id}/comments", status_code=201)
def add_comment(request_id: str, payload: CommentCreate, user=Depends(get_optional_user)):
    comment = comments.create_comment(request_id, payload.body, actor=user, author_name=payload.author_name)
    _notify_comment_created(comment)
    return {"comment": comment, "message": comments.ADDED_MESSAGE}


@app.delete("/comments/{comment_id}")
def delete_comment(comment_id: str, user=Depends(get_current_user)):
    comment = comments.delete_comment(comment_id, user)
    broadcast.comment_deleted(comment)
    return {"message": "Comment removed"}


# Live updates

async def forward_events(websocket: WebSocket, subscription: broadcast.Subscription) -> None:
    """Relay one subscription to the socket until either side goes away."""
    try:
        async for event in subscription:
            await websocket.send_json(event)
    except (WebSocketDisconnect, RuntimeError):
        # socket went away mid-send; the receive loop cleans up
        subscription.close()
    except Exception:
        logger.exception("Dropping live updates for %s", subscription.channel)
        subscription.close()


@app.websocket("/ws")
async def live_updates(websocket: WebSocket, token: Optional[str] = None):
    """
    Clients send {"action": "join" | "leave", "requestId": "..."} and receive
    an ack followed by events for the requests they joined. Passing
    ?token=<session token> also delivers notifications for the user's own
    requests.
    """
    await websocket.accept()
    channels: Dict[str, Tuple[broadcast.Subscription, asyncio.Task]] = {}

    def open_channel(channel: str) -> None:
        if channel not in channels:
            subscription = broadcast.bus.subscribe(channel)
            channels[channel] = (subscription, asyncio.create_task(forward_events(websocket, subscription)))

    def close_channel(channel: str) -> None:
        entry = channels.pop(channel, None)
        if entry:
            subscription, task = entry
            subscription.close()
            task.cancel()

    try:
        if token:
            try:
                user = await run_in_threadpool(identity.get_current_user, token)
                open_channel(broadcast.user_channel(str(user["_id"])))
            except AppError:
                await websocket.send_json({"type": "error", "error": "Invalid token; notifications disabled"})

        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await websocket.send_json({"type": "error", "error": "Messages must be JSON"})
                continue

            action = message.get("action") if isinstance(message, dict) else None
            request_id = message.get("requestId") if isinstance(message, dict) else None
            if action not in ("join", "leave") or not isinstance(request_id, str) or not request_id:
                await websocket.send_json({"type": "error", "error": "Expected an action and a requestId"})
                continue

            channel = broadcast.request_channel(request_id)
            if action == "join":
                open_channel(channel)
                await websocket.send_json({"type": "joined", "requestId": request_id})
            else:
                close_channel(channel)
                await websocket.send_json({"type": "left", "requestId": request_id})
    except WebSocketDisconnect:
        pass
    finally:
        for channel in list(channels):
            close_channel(channel)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
