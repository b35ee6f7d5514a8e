"""Server-Sent Events endpoints streaming issue and notification channels."""
import asyncio
import logging
from collections.abc import AsyncGenerator
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from issueflow_core import crud, models
from issueflow_core.channels import ChannelBroker, issue_channel, user_notification_channel
from issueflow_core.config import get_settings

from ...database import get_db
from ..dependencies import DOMAIN_ERRORS, get_current_user, get_publisher, to_http_error

logger = logging.getLogger("issueflow-core.events")

router = APIRouter(tags=["events"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _readable_issue_channel(
    issue_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
) -> str:
    """Check read access to the issue and return its channel name."""
    try:
        issue = crud.get_issue(db, issue_id, current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)
    return issue_channel(issue.id)


async def _channel_stream(
    request: Request,
    broker: ChannelBroker,
    channel: str,
) -> AsyncGenerator[str, None]:
    """
    Generate an SSE stream for one channel subscription.

    The subscription is opened when the stream starts and closed when it
    ends, so a client that never reads the body leaves nothing registered.
    Emits queued events as they arrive and a comment line as heartbeat when
    the channel is idle, so proxies keep the connection open.
    """
    heartbeat_seconds = get_settings().sse_heartbeat_seconds
    queue = broker.subscribe(channel)
    try:
        yield ": connected\n\n"
        while True:
            if await request.is_disconnected():
                logger.debug(f"Client disconnected from {channel}")
                break
            try:
                event = await asyncio.wait_for(queue.get(), timeout=heartbeat_seconds)
                yield event.to_sse()
            except asyncio.TimeoutError:
                yield ": heartbeat\n\n"
    except asyncio.CancelledError:
        logger.debug(f"Stream cancelled for {channel}")
        raise
    finally:
        broker.unsubscribe(channel, queue)


@router.get("/issues/{issue_id}/events")
async def stream_issue_events(
    request: Request,
    channel: str = Depends(_readable_issue_channel),
    broker: ChannelBroker = Depends(get_publisher),
) -> StreamingResponse:
    """
    Live events for one issue.

    Event kinds: COMMENT_ADDED, COMMENT_UPDATED, COMMENT_DELETED, ISSUE_UPDATED.
    """
    return StreamingResponse(
        _channel_stream(request, broker, channel),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/notifications/stream")
async def stream_notifications(
    request: Request,
    current_user: models.User = Depends(get_current_user),
    broker: ChannelBroker = Depends(get_publisher),
) -> StreamingResponse:
    """Live NOTIFICATION_CREATED events for the caller."""
    channel = user_notification_channel(current_user.username)
    return StreamingResponse(
        _channel_stream(request, broker, channel),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
