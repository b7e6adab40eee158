"""
Real-time fan-out of comment events.

Channels:
- ``request:<id>``: viewers of one request get ``new-comment`` and
  ``comment-deleted`` events.
- ``user:<id>``: a request author gets a ``notification`` when someone
  else comments on their request.

Delivery is advisory: events are not persisted, may be dropped when a
subscriber falls behind, and are not ordered against the database. A
client that misses one re-fetches. Publishing never raises.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Set

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 100


class Subscription:
    """An async stream of the events published to one channel."""

    def __init__(self, broker: "InMemoryBroadcaster", channel: str, loop: asyncio.AbstractEventLoop, maxsize: int):
        self.broker = broker
        self.channel = channel
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def _offer(self, event: Dict[str, Any]) -> None:
        # runs on the subscriber's loop
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Subscriber on %s is behind; dropped %s", self.channel, event.get("type"))

    async def get(self) -> Dict[str, Any]:
        return await self.queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> Dict[str, Any]:
        if self.closed:
            raise StopAsyncIteration
        return await self.get()

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.broker._unsubscribe(self)


class Broadcaster(ABC):
    """Publish/subscribe bus. Aggregates never depend on the implementation."""

    @abstractmethod
    def publish(self, channel: str, event: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def subscribe(self, channel: str) -> Subscription:
        ...


class InMemoryBroadcaster(Broadcaster):
    """Single-process bus; nothing survives a restart.

    ``publish`` may be called from any thread (sync route handlers run in a
    worker pool); events are handed to each subscriber's own event loop.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE):
        self.queue_size = queue_size
        self._channels: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, channel: str) -> Subscription:
        subscription = Subscription(self, channel, asyncio.get_running_loop(), self.queue_size)
        with self._lock:
            self._channels.setdefault(channel, set()).add(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            subscribers = self._channels.get(subscription.channel)
            if subscribers is None:
                return
            subscribers.discard(subscription)
            if not subscribers:
                del self._channels[subscription.channel]

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._channels.get(channel, ()))

    def publish(self, channel: str, event: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._channels.get(channel, ()))
        for subscription in subscribers:
            try:
                subscription.loop.call_soon_threadsafe(subscription._offer, event)
            except RuntimeError:
                # the subscriber's loop is gone; it will be cleaned up on close
                logger.warning("Dropped %s for closed subscriber on %s", event.get("type"), channel)


bus: Broadcaster = InMemoryBroadcaster()


def request_channel(request_id: str) -> str:
    return f"request:{request_id}"


def user_channel(user_id: str) -> str:
    return f"user:{user_id}"


def _safe_publish(channel: str, event: Dict[str, Any]) -> None:
    try:
        bus.publish(channel, event)
    except Exception:
        logger.exception("Broadcast to %s failed", channel)


def comment_created(comment: Dict[str, Any], request_author: Optional[str]) -> None:
    """Fan out a new comment, and notify the request author if it is not theirs."""
    request_id = comment["requestId"]
    _safe_publish(request_channel(request_id), {
        "type": "new-comment",
        "requestId": request_id,
        "comment": comment,
    })
    if request_author and request_author != comment.get("authorId"):
        _safe_publish(user_channel(request_author), {
            "type": "notification",
            "requestId": request_id,
            "message": f"{comment.get('authorName')} commented on your prayer request",
        })


def comment_deleted(comment: Dict[str, Any]) -> None:
    request_id = comment["requestId"]
    _safe_publish(request_channel(request_id), {
        "type": "comment-deleted",
        "requestId": request_id,
        "commentId": comment["id"],
    })
