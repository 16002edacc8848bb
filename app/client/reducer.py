from __future__ import annotations

from typing import Literal
from uuid import uuid4

from pydantic import ConfigDict

from app.client.report_parser import report_from_markdown
from app.models.events import (
    Activity,
    ActivityEvent,
    CompleteEvent,
    ErrorEvent,
    Report,
    ReportEvent,
    Source,
    SourceEvent,
    StreamEvent,
    WireModel,
    now_ms,
)

ResearchStateName = Literal["idle", "researching", "completed", "error"]
TERMINAL_STATES = ("completed", "error")


class ResearchView(WireModel):
    """Client-side picture of one research request. Never mutated in place."""

    model_config = ConfigDict(frozen=True)

    topic: str = ""
    research_state: ResearchStateName = "idle"
    activities: tuple[Activity, ...] = ()
    sources: tuple[Source, ...] = ()
    streaming_content: str = ""
    applied_chunks: tuple[int, ...] = ()
    report: Report | None = None

    @property
    def is_terminal(self) -> bool:
        return self.research_state in TERMINAL_STATES


def start(topic: str) -> ResearchView:
    return ResearchView(topic=topic, research_state="researching")


def _upsert_activity(view: ResearchView, activity: Activity) -> ResearchView:
    activities = list(view.activities)
    for index, existing in enumerate(activities):
        if existing.id == activity.id:
            activities[index] = activity
            break
    else:
        activities.append(activity)
    return view.model_copy(update={"activities": tuple(activities)})


def _finalize(view: ResearchView, report: Report | None) -> ResearchView:
    previous_at = view.report.generated_at if view.report is not None else None

    if report is None:
        final = view.report
        if view.streaming_content.strip():
            final = report_from_markdown(
                view.topic, view.streaming_content, generated_at=previous_at
            )
    else:
        content = report.content or view.streaming_content
        if report.is_plain_text or not report.sections:
            parsed = report_from_markdown(view.topic, content, generated_at=report.generated_at)
            final = parsed.model_copy(
                update={"title": report.title or parsed.title, "status": report.status}
            )
        else:
            final = report.model_copy(
                update={
                    "title": report.title or f"{view.topic}研究报告",
                    "content": content or None,
                }
            )

    return view.model_copy(update={"report": final, "research_state": "completed"})


def fail(
    view: ResearchView,
    message: str,
    details: str | None = None,
    *,
    activity_id: str | None = None,
    timestamp: int | None = None,
) -> ResearchView:
    """Terminal error state plus a synthetic error activity."""
    activity = Activity(
        id=activity_id or str(uuid4()),
        type="error",
        status="error",
        message=message,
        timestamp=timestamp if timestamp is not None else now_ms(),
        details=details,
    )
    return view.model_copy(
        update={
            "activities": view.activities + (activity,),
            "research_state": "error",
        }
    )


def reduce(view: ResearchView, event: StreamEvent) -> ResearchView:
    """Apply one stream event and return the next view."""
    if isinstance(event, ActivityEvent):
        return _upsert_activity(view, event.payload)

    if isinstance(event, SourceEvent):
        if any(s.url == event.payload.url for s in view.sources):
            return view
        return view.model_copy(update={"sources": view.sources + (event.payload,)})

    if isinstance(event, ReportEvent):
        index = event.payload.chunk_index
        # indices are unique per request; a redelivered chunk is a no-op
        if index is not None and index in view.applied_chunks:
            return view
        content = view.streaming_content + event.payload.content
        update: dict = {"streaming_content": content}
        if index is not None:
            update["applied_chunks"] = view.applied_chunks + (index,)
        if event.payload.is_final:
            update["report"] = report_from_markdown(view.topic, content)
        return view.model_copy(update=update)

    if isinstance(event, CompleteEvent):
        return _finalize(view, event.payload.report)

    if isinstance(event, ErrorEvent):
        activity_id = f"error-{event.payload.timestamp}"
        if any(a.id == activity_id for a in view.activities):
            return view
        return fail(
            view,
            "研究过程出错",
            event.payload.message,
            activity_id=activity_id,
            timestamp=event.payload.timestamp,
        )

    return view


def finish(view: ResearchView) -> ResearchView:
    """The stream ended (sentinel or EOF) without an explicit terminal event."""
    if view.is_terminal:
        return view
    return _finalize(view, None)
