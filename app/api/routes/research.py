from __future__ import annotations

import asyncio
from uuid import uuid4

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from app.agents.orchestrator import ResearchPipeline, questions_from_clarifications
from app.api.deps import require_api_keys
from app.models.schemas import DeepResearchRequest
from app.services import logger as log_service
from app.services.activity_tracker import ActivityTracker
from app.services.streaming import EventStream

router = APIRouter(prefix="/api", tags=["research"])

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/deep-research", dependencies=[Depends(require_api_keys)])
async def deep_research(request: DeepResearchRequest):
    """SSE endpoint that runs one research request and streams its progress."""
    request_id = uuid4().hex[:12]
    topic = request.topic
    questions = questions_from_clarifications(topic, request.clarifications)

    async def event_generator():
        log_service.log_event(
            event_type="research_started",
            message="Research started",
            request_id=request_id,
            topic=topic[:100],
            questions=len(questions),
        )
        stream = EventStream()
        tracker = ActivityTracker(stream)
        pipeline = ResearchPipeline(topic, questions, tracker, request_id=request_id)

        async def run_pipeline() -> None:
            try:
                await pipeline.run()
            except Exception as e:
                log_service.log_event(
                    event_type="stream_error",
                    message="Unhandled error in research stream",
                    error=str(e),
                    request_id=request_id,
                )
                tracker.send_error("Research stream failed unexpectedly.")
            finally:
                stream.end()

        task = asyncio.create_task(run_pipeline())
        try:
            async for frame in stream.frames():
                # Frames are already SSE-formatted; bytes bypass re-wrapping.
                yield frame.encode("utf-8")
        finally:
            if not task.done():
                task.cancel()
                log_service.log_event(
                    event_type="client_disconnected",
                    message="Client disconnected, research cancelled",
                    request_id=request_id,
                )

    return EventSourceResponse(event_generator(), headers=STREAM_HEADERS)
