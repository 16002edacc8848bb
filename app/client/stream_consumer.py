"""Incremental decoding of the research event stream."""
from __future__ import annotations

import codecs
import json
from typing import AsyncIterable, Callable

from loguru import logger
from pydantic import ValidationError

from app.client.reducer import ResearchView, finish, reduce
from app.models.events import DONE_SENTINEL, StreamEvent, stream_event_adapter
from app.services.streaming import frame_data

_FLAT_RESERVED = ("type", "payload")


class SSEDecoder:
    """Turns arbitrary byte chunks into complete ``data`` payloads.

    A multi-byte character or a record split across reads is held back
    until the rest arrives.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def _drain(self, final: bool = False) -> list[str]:
        self._buffer = self._buffer.replace("\r\n", "\n")
        *records, self._buffer = self._buffer.split("\n\n")
        if final:
            records.append(self._buffer)
            self._buffer = ""
        payloads = []
        for record in records:
            data = frame_data(record)
            if data is not None:
                payloads.append(data)
        return payloads

    def feed(self, chunk: bytes) -> list[str]:
        self._buffer += self._decoder.decode(chunk)
        return self._drain()

    def flush(self) -> list[str]:
        """Payload of a final record the server did not terminate, if any."""
        self._buffer += self._decoder.decode(b"", final=True)
        return self._drain(final=True)


def is_done(data: str) -> bool:
    return data.strip() == DONE_SENTINEL


def _nest_flat_event(raw: dict) -> dict:
    """Accept ``{"type": "source", "url": ...}`` as well as the payload form."""
    payload = {k: v for k, v in raw.items() if k not in _FLAT_RESERVED}
    if raw.get("type") == "activity":
        # the activity's own kind travels as activityType in the flat form
        payload["type"] = payload.pop("activityType", "planning")
        payload.setdefault("message", "")
    return {"type": raw.get("type"), "payload": payload}


def decode_event(data: str) -> StreamEvent | None:
    """Parse one payload; malformed or unknown events are logged and skipped."""
    if is_done(data):
        return None
    try:
        raw = json.loads(data)
    except json.JSONDecodeError as e:
        logger.warning(f"Skipping unparseable stream record ({e}): {data[:120]}")
        return None

    if isinstance(raw, dict) and "payload" not in raw:
        raw = _nest_flat_event(raw)
    try:
        return stream_event_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(f"Skipping invalid stream event: {e.errors()[:1]}")
        return None


async def consume(
    byte_chunks: AsyncIterable[bytes],
    view: ResearchView,
    on_update: Callable[[ResearchView], None] | None = None,
) -> ResearchView:
    """Fold the byte stream into ``view`` until the sentinel or end of stream."""
    decoder = SSEDecoder()

    def apply(current: ResearchView, payloads: list[str]) -> tuple[ResearchView, bool]:
        for data in payloads:
            if is_done(data):
                return current, True
            event = decode_event(data)
            if event is None:
                continue
            current = reduce(current, event)
            if on_update is not None:
                on_update(current)
        return current, False

    async for chunk in byte_chunks:
        view, done = apply(view, decoder.feed(chunk))
        if done:
            return finish(view)

    view, _ = apply(view, decoder.flush())
    return finish(view)
