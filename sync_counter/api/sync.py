"""Live update stream: one server-sent-events connection per viewer."""

import logging

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from sync_counter.api.dependencies import get_broadcast_hub, get_session_factory
from sync_counter.core.config import settings
from sync_counter.services.broadcast import BroadcastHub
from sync_counter.services.counter_store import counter_store, counter_to_dict
from sync_counter.services.live_stream import LiveUpdateStream

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Cache-Control",
}


async def _event_source(stream: LiveUpdateStream):
    try:
        async for message in stream.messages():
            yield {"data": message}
    finally:
        stream.close()


@router.get("")
async def live_updates(
    hub: BroadcastHub = Depends(get_broadcast_hub),
    session_factory=Depends(get_session_factory),
) -> EventSourceResponse:
    """Server-Sent Events stream of counter changes.

    The first message is ``initial`` with the full counter list; every later
    message is one counter_* event, exactly as the hub published it.
    """

    def snapshot():
        with session_factory() as db:
            return [counter_to_dict(c) for c in counter_store.list(db)]

    stream = LiveUpdateStream(hub, snapshot, queue_size=settings.STREAM_QUEUE_SIZE)
    return EventSourceResponse(
        _event_source(stream),
        headers=STREAM_HEADERS,
        ping=settings.STREAM_PING_SECONDS,
    )
