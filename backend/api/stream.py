"""Server-Sent-Events framing for run event queues."""

import asyncio
from collections.abc import AsyncIterator

import structlog
from fastapi.responses import StreamingResponse

from events import EventBus, EventType, RunEvent

logger = structlog.get_logger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def iter_sse_frames(
    event_bus: EventBus,
    run_id: str,
    queue: asyncio.Queue[RunEvent],
) -> AsyncIterator[str]:
    """Yield SSE frames from a subscribed queue until the run closes.

    A client disconnect cancels this generator only; the run keeps executing
    and its remaining events stay in the bus history.
    """
    frames_sent = 0
    try:
        while True:
            event = await queue.get()
            if event.type == EventType.RUN_CLOSED:
                break
            frames_sent += 1
            yield event.to_sse()
    finally:
        event_bus.unsubscribe(run_id, queue)
        logger.debug("sse_stream_closed", run_id=run_id, frames_sent=frames_sent)


def sse_response(
    event_bus: EventBus,
    run_id: str,
    queue: asyncio.Queue[RunEvent],
) -> StreamingResponse:
    return StreamingResponse(
        iter_sse_frames(event_bus, run_id, queue),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
