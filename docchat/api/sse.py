"""Server-sent events transport for stream events."""

from collections.abc import AsyncIterable, AsyncIterator

from fastapi.responses import StreamingResponse
from pydantic import BaseModel

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable nginx buffering
}


def format_sse(event: BaseModel) -> str:
    """Serialise one event as a ``data:`` frame with camelCase keys."""
    return f"data: {event.model_dump_json(by_alias=True, exclude_none=True)}\n\n"


async def _frames(events: AsyncIterable[BaseModel]) -> AsyncIterator[str]:
    async for event in events:
        yield format_sse(event)


def sse_response(events: AsyncIterable[BaseModel]) -> StreamingResponse:
    """Stream events to the client as ``text/event-stream``."""
    return StreamingResponse(_frames(events), media_type="text/event-stream", headers=SSE_HEADERS)
