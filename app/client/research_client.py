from __future__ import annotations

from typing import Any, Callable, Iterable
from uuid import uuid4

import httpx
from loguru import logger

from app.client.reducer import ResearchView, fail, start
from app.client.stream_consumer import consume
from app.models.schemas import Clarification, Question


def parse_questions(data: Any) -> list[Question]:
    """Accept ``{"questions": [{id, text}]}`` or a bare list of strings."""
    items = data.get("questions", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        return []

    questions = []
    for item in items:
        if isinstance(item, str) and item.strip():
            questions.append(Question(id=str(uuid4()), text=item.strip()))
        elif isinstance(item, dict) and str(item.get("text", "")).strip():
            questions.append(
                Question(id=str(item.get("id") or uuid4()), text=str(item["text"]).strip())
            )
    return questions


class ResearchClient:
    """HTTP client for the research API; folds the event stream into a view."""

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout, connect=10.0)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        )

    async def generate_questions(self, topic: str) -> list[Question]:
        async with self._client() as client:
            response = await client.post("/api/generate-questions", json={"topic": topic})
            response.raise_for_status()
            return parse_questions(response.json())

    async def research(
        self,
        topic: str,
        clarifications: Iterable[Clarification] = (),
        on_update: Callable[[ResearchView], None] | None = None,
    ) -> ResearchView:
        """Run one research request; transport failures end in the ``error`` state."""
        latest = start(topic)
        if on_update is not None:
            on_update(latest)

        def track(view: ResearchView) -> None:
            nonlocal latest
            latest = view
            if on_update is not None:
                on_update(view)

        body = {
            "topic": topic,
            "clarifications": [c.model_dump(exclude_none=True) for c in clarifications],
        }
        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/deep-research", json=body) as response:
                    if response.status_code >= 400:
                        await response.aread()
                        logger.error(
                            f"Research request rejected: {response.status_code} {response.text[:200]}"
                        )
                        return fail(
                            latest,
                            "无法连接到服务器",
                            f"API请求失败: {response.status_code} {response.text[:200]}",
                        )
                    return await consume(response.aiter_bytes(), latest, track)
        except httpx.HTTPError as e:
            logger.error(f"Research stream interrupted: {e}")
            return fail(latest, "连接中断", str(e))
