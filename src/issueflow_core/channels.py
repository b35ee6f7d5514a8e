"""In-process publish/subscribe channels for live issue and notification events.

Channel names:
- ``issues/{issue_id}``: comment and issue mutation events for one issue
- ``users/{username}/notifications``: notifications for one user

Publishing is at-most-once with no acknowledgement. Within one channel,
subscribers see events in publish-call order.
"""
import asyncio
import enum
import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional, Protocol
from uuid import UUID, uuid4

from .config import get_settings

logger = logging.getLogger("issueflow-core.channels")


class ChannelEventKind(str, enum.Enum):
    """Kinds of events published on channels."""

    COMMENT_ADDED = "COMMENT_ADDED"
    COMMENT_UPDATED = "COMMENT_UPDATED"
    COMMENT_DELETED = "COMMENT_DELETED"
    ISSUE_UPDATED = "ISSUE_UPDATED"
    NOTIFICATION_CREATED = "NOTIFICATION_CREATED"


@dataclass
class ChannelEvent:
    """A single event delivered to channel subscribers."""

    kind: str
    payload: dict
    timestamp: str
    id: str = field(default_factory=lambda: str(uuid4()))

    def to_sse(self) -> str:
        """Format event as SSE message."""
        lines = [
            f"id: {self.id}",
            f"event: {self.kind}",
            f"data: {json.dumps(self.to_dict(), default=str)}",
        ]
        return "\n".join(lines) + "\n\n"

    def to_dict(self) -> dict:
        return asdict(self)


def make_event(kind: ChannelEventKind, payload: dict) -> ChannelEvent:
    """Create an event stamped with the current time."""
    return ChannelEvent(
        kind=kind.value,
        payload=payload,
        timestamp=datetime.utcnow().isoformat(),
    )


def issue_channel(issue_id: UUID) -> str:
    return f"issues/{issue_id}"


def user_notification_channel(username: str) -> str:
    return f"users/{username}/notifications"


class ChannelPublisher(Protocol):
    """Anything that can deliver an event to a named channel."""

    def publish(self, channel: str, event: ChannelEvent) -> None:
        ...


@dataclass(eq=False)
class _Subscriber:
    queue: asyncio.Queue
    loop: asyncio.AbstractEventLoop


class ChannelBroker:
    """Fans events out to asyncio subscribers, per channel.

    ``publish`` is called from sync route handlers running in FastAPI's
    threadpool, so queues are fed through ``loop.call_soon_threadsafe``
    on the subscriber's own event loop. A subscriber whose queue is full,
    or whose loop has gone away, is dropped.
    """

    def __init__(self, queue_size: int = 100):
        self._queue_size = queue_size
        self._subscribers: dict[str, list[_Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(
        self,
        channel: str,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> asyncio.Queue:
        """Subscribe to a channel, returns a queue to receive its events.

        Must be called from the event loop that will consume the queue
        unless ``loop`` is given.
        """
        loop = loop or asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        with self._lock:
            self._subscribers.setdefault(channel, []).append(_Subscriber(queue=queue, loop=loop))
        logger.debug(f"Subscribed to {channel}")
        return queue

    def unsubscribe(self, channel: str, queue: asyncio.Queue) -> None:
        """Unsubscribe a queue from a channel (no-op if already gone)."""
        with self._lock:
            remaining = [s for s in self._subscribers.get(channel, []) if s.queue is not queue]
            if remaining:
                self._subscribers[channel] = remaining
            else:
                self._subscribers.pop(channel, None)
        logger.debug(f"Unsubscribed from {channel}")

    def subscriber_count(self, channel: str) -> int:
        with self._lock:
            return len(self._subscribers.get(channel, []))

    def publish(self, channel: str, event: ChannelEvent) -> None:
        """Publish an event to every current subscriber of a channel."""
        with self._lock:
            subscribers = list(self._subscribers.get(channel, []))

        logger.debug(f"Publishing {event.kind} on {channel} to {len(subscribers)} subscriber(s)")
        for subscriber in subscribers:
            try:
                subscriber.loop.call_soon_threadsafe(self._deliver, channel, subscriber.queue, event)
            except RuntimeError:
                logger.warning(f"Event loop closed, dropping subscriber on {channel}")
                self.unsubscribe(channel, subscriber.queue)

    def _deliver(self, channel: str, queue: asyncio.Queue, event: ChannelEvent) -> None:
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping subscriber on {channel}")
            self.unsubscribe(channel, queue)


# Global broker instance
_broker: Optional[ChannelBroker] = None
_broker_lock = threading.Lock()


def get_broker() -> ChannelBroker:
    """Get or create the process-wide broker."""
    global _broker
    with _broker_lock:
        if _broker is None:
            _broker = ChannelBroker(queue_size=get_settings().subscriber_queue_size)
        return _broker
