from __future__ import annotations

import time
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

ActivityType = Literal[
    "planning",
    "search",
    "extract",
    "analyze",
    "generate",
    "summarize",
    "question",
    "clarify",
    "error",
]
ActivityStatus = Literal["pending", "complete", "warning", "error"]

DONE_SENTINEL = "[DONE]"


def now_ms() -> int:
    return int(time.time() * 1000)


class WireModel(BaseModel):
    """Base for everything that crosses the stream; camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Activity(WireModel):
    id: str
    type: ActivityType
    status: ActivityStatus
    message: str
    timestamp: int = Field(default_factory=now_ms)
    details: str | None = None


class Source(WireModel):
    url: str
    title: str = ""
    snippet: str | None = None
    relevance: float | None = None


class ReportFinding(WireModel):
    id: str
    summary: str
    details: str = ""
    sources: list[Source] = Field(default_factory=list)


class ReportSection(WireModel):
    id: str
    title: str
    content: str = ""
    findings: list[ReportFinding] = Field(default_factory=list)


class Report(WireModel):
    title: str = ""
    introduction: str = ""
    sections: list[ReportSection] = Field(default_factory=list)
    conclusion: str = ""
    references: list[Source] = Field(default_factory=list)
    content: str | None = None
    is_plain_text: bool = False
    generated_at: int = Field(default_factory=now_ms)
    status: str | None = None


class ReportChunk(WireModel):
    content: str = ""
    chunk_index: int | None = None
    is_final: bool = True


class CompletePayload(WireModel):
    report: Report | None = None


class ErrorPayload(WireModel):
    message: str
    timestamp: int = Field(default_factory=now_ms)


class _StreamEventBase(WireModel):
    def format(self) -> str:
        return f"data: {self.model_dump_json(by_alias=True)}\n\n"


class ActivityEvent(_StreamEventBase):
    type: Literal["activity"] = "activity"
    payload: Activity


class SourceEvent(_StreamEventBase):
    type: Literal["source"] = "source"
    payload: Source


class ReportEvent(_StreamEventBase):
    type: Literal["report"] = "report"
    payload: ReportChunk


class CompleteEvent(_StreamEventBase):
    type: Literal["complete"] = "complete"
    payload: CompletePayload = Field(default_factory=CompletePayload)


class ErrorEvent(_StreamEventBase):
    type: Literal["error"] = "error"
    payload: ErrorPayload


StreamEvent = Annotated[
    Union[ActivityEvent, SourceEvent, ReportEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)
