"""Server-Sent Events stream of the current user's bookmark changes."""
import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from api.dependencies import get_settings, get_stream_user, require_change_feed
from core.config import Settings
from models.user import User
from schemas.bookmark import BookmarkChangeEvent
from services.change_feed import ChangeFeed, Subscription

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"])

# SSE headers prevent proxy/browser buffering of streamed events.
SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
    "Connection": "keep-alive",
}


def format_sse(event: BookmarkChangeEvent) -> str:
    """Encode one change event as an SSE frame."""
    return f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"


async def change_event_stream(
    subscription: Subscription,
    queue: asyncio.Queue[BookmarkChangeEvent | None],
    keepalive_seconds: float,
) -> AsyncGenerator[str]:
    """
    Yield SSE frames for the events `subscription` puts on `queue`.

    A None on the queue means the channel was lost; the stream then ends so the
    client can reconnect. The channel is released when the generator finishes for
    any reason (client disconnect, cancellation, error).
    """
    async with subscription:
        yield ": connected\n\n"
        while True:
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive_seconds)
            except TimeoutError:
                yield ": keepalive\n\n"
                continue
            if event is None:
                logger.info(
                    "Change stream for user %s ended: channel lost", subscription.owner_id,
                )
                return
            yield format_sse(event)


@router.get("/changes")
async def stream_changes(
    current_user: User = Depends(get_stream_user),
    feed: ChangeFeed = Depends(require_change_feed),
    settings: Settings = Depends(get_settings),
) -> StreamingResponse:
    """
    Stream INSERT and DELETE events for the current user's bookmarks.

    Each event is `event: <INSERT|DELETE>` followed by `data: <json>`. Comment
    frames are sent as keepalives.
    """
    queue: asyncio.Queue[BookmarkChangeEvent | None] = asyncio.Queue()
    # Subscribe before the response starts so a full channel pool is a clean 503
    subscription = await feed.subscribe(
        current_user.id,
        queue.put_nowait,
        on_lost=lambda: queue.put_nowait(None),
    )
    logger.info("Change stream opened for user %s", current_user.id)
    return StreamingResponse(
        change_event_stream(subscription, queue, settings.change_keepalive_seconds),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        # Covers a body that is never iterated; unsubscribe is idempotent
        background=BackgroundTask(subscription.unsubscribe),
    )
