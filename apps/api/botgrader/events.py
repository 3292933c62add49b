"""
ProgressEvent <-> Server-Sent Events. One SSE frame per event: `event:` is the event type,
`data:` the event JSON (snake_case, nulls omitted). Server side feeds EventSourceResponse;
client side parses the line stream back into ProgressEvents.
"""
from __future__ import annotations

import logging
from typing import AsyncGenerator, AsyncIterable, AsyncIterator

from pydantic import ValidationError
from sse_starlette import ServerSentEvent

from botgrader.schemas import ProgressEvent

logger = logging.getLogger(__name__)


def to_sse(event: ProgressEvent) -> ServerSentEvent:
    return ServerSentEvent(data=event.model_dump_json(exclude_none=True), event=event.type.value)


async def sse_stream(events: AsyncGenerator[ProgressEvent, None]) -> AsyncIterator[ServerSentEvent]:
    try:
        async for event in events:
            yield to_sse(event)
    finally:
        # Client went away mid-stream: close the producer so it releases its session lease now
        await events.aclose()


async def parse_sse_lines(lines: AsyncIterable[str]) -> AsyncIterator[ProgressEvent]:
    """Decode an SSE line stream. Comments, ids and retry hints are ignored; undecodable frames are logged and skipped."""
    data: list[str] = []
    async for raw in lines:
        line = raw.rstrip("\r")
        if line == "":
            if data:
                event = _decode("\n".join(data))
                data = []
                if event is not None:
                    yield event
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            data.append(value)
    # Stream closed without a trailing blank line
    if data:
        event = _decode("\n".join(data))
        if event is not None:
            yield event


def _decode(payload: str) -> ProgressEvent | None:
    try:
        return ProgressEvent.model_validate_json(payload)
    except ValidationError as e:
        logger.warning("Skipping malformed progress frame: %s", e.errors()[:1])
        return None
