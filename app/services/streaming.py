"""Server-Sent Events transport for research progress.

Wire contract: every event is one ``data: <json>\\n\\n`` frame whose JSON is
``{"type": <kind>, "payload": {...}}``; the stream ends with ``data: [DONE]``.
"""
from __future__ import annotations

import asyncio
from typing import AsyncIterator

from app.models.events import (
    DONE_SENTINEL,
    Activity,
    ActivityEvent,
    CompleteEvent,
    CompletePayload,
    ErrorEvent,
    ErrorPayload,
    Report,
    ReportChunk,
    ReportEvent,
    Source,
    SourceEvent,
    StreamEvent,
    stream_event_adapter,
)

DONE_FRAME = f"data: {DONE_SENTINEL}\n\n"


def activity_event(activity: Activity) -> ActivityEvent:
    return ActivityEvent(payload=activity)


def source_event(source: Source) -> SourceEvent:
    return SourceEvent(payload=source)


def report_event(content: str, *, chunk_index: int = 0, is_final: bool = True) -> ReportEvent:
    return ReportEvent(
        payload=ReportChunk(content=content, chunk_index=chunk_index, is_final=is_final)
    )


def complete_event(report: Report | None = None) -> CompleteEvent:
    return CompleteEvent(payload=CompletePayload(report=report))


def error_event(message: str) -> ErrorEvent:
    return ErrorEvent(payload=ErrorPayload(message=message))


def format_event(event: StreamEvent) -> str:
    return event.format()


def frame_data(record: str) -> str | None:
    """Join the ``data:`` lines of one SSE record; None if it carries no data."""
    data_lines: list[str] = []
    for line in record.splitlines():
        if not line.startswith("data:"):
            # comments (": ping"), event:, id:, retry: carry nothing we use
            continue
        value = line[5:]
        if value.startswith(" "):
            value = value[1:]
        data_lines.append(value)
    if not data_lines:
        return None
    return "\n".join(data_lines)


def parse_frame(frame: str) -> StreamEvent | None:
    """Inverse of ``format_event``; None for the terminal sentinel."""
    data = frame_data(frame)
    if data is None or data.strip() == DONE_SENTINEL:
        return None
    return stream_event_adapter.validate_json(data)


class EventStream:
    """Single-writer outbound channel backing one streamed HTTP response.

    ``write`` never blocks: frames are queued and the response generator
    drains them through ``frames``.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: StreamEvent) -> None:
        if self._closed:
            raise RuntimeError("Cannot write to an ended event stream")
        self._queue.put_nowait(format_event(event))

    def end(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(DONE_FRAME)
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[str]:
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame
