from __future__ import annotations

from uuid import uuid4

from loguru import logger

from app.models.events import Activity, ActivityStatus, ActivityType, Report, Source, now_ms
from app.services import streaming
from app.services.streaming import EventStream


class ActivityTracker:
    """Append/update log of research activities mirrored onto the event stream.

    Every mutation is forwarded immediately, so the client sees activities in
    the order the pipeline produces them. Sources are de-duplicated by url
    (first one wins) and report chunks are accumulated for the final payload.
    """

    def __init__(self, stream: EventStream):
        self.stream = stream
        self._activities: list[Activity] = []
        self._sources: list[Source] = []
        self._source_urls: set[str] = set()
        self._report_parts: list[str] = []
        self._chunk_index = 0

    @property
    def activities(self) -> list[Activity]:
        return list(self._activities)

    @property
    def sources(self) -> list[Source]:
        return list(self._sources)

    @property
    def report_content(self) -> str:
        return "".join(self._report_parts)

    def add(
        self,
        type: ActivityType,
        status: ActivityStatus,
        message: str,
        details: str | None = None,
    ) -> str:
        activity = Activity(
            id=str(uuid4()),
            type=type,
            status=status,
            message=message,
            timestamp=now_ms(),
            details=details,
        )
        self._activities.append(activity)
        self.stream.write(streaming.activity_event(activity))
        return activity.id

    def update(
        self,
        id: str,
        status: ActivityStatus,
        message: str | None = None,
    ) -> Activity | None:
        for index, existing in enumerate(self._activities):
            if existing.id != id:
                continue
            updated = existing.model_copy(
                update={
                    "status": status,
                    "message": message or existing.message,
                    "timestamp": now_ms(),
                }
            )
            self._activities[index] = updated
            self.stream.write(streaming.activity_event(updated))
            return updated

        logger.warning(f"Ignoring update for unknown activity id: {id}")
        return None

    def add_source(self, source: Source) -> bool:
        if source.url in self._source_urls:
            return False
        self._source_urls.add(source.url)
        self._sources.append(source)
        self.stream.write(streaming.source_event(source))
        return True

    def send_report_update(self, content: str, *, is_final: bool = True) -> None:
        self._report_parts.append(content)
        self.stream.write(
            streaming.report_event(content, chunk_index=self._chunk_index, is_final=is_final)
        )
        self._chunk_index += 1

    def send_complete(self, report: Report | None = None) -> Report:
        report = report or Report()
        content = self.report_content
        if content:
            report = report.model_copy(update={"content": content, "is_plain_text": True})
        else:
            logger.warning("Completing research without any report content")
        self.stream.write(streaming.complete_event(report))
        return report

    def send_error(self, message: str) -> None:
        self.stream.write(streaming.error_event(message))

    def clear(self) -> None:
        self._activities = []
        self._sources = []
        self._source_urls = set()
        self._report_parts = []
        self._chunk_index = 0
