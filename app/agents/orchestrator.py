from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Awaitable, Callable, Iterable
from uuid import uuid4

from loguru import logger

from app.config import settings
from app.llm_client import get_model
from app.models.events import ActivityType, Report, Source
from app.models.research import (
    AnalysisResult,
    Document,
    ExtractionResult,
    Finding,
    PlanningResult,
    QuestionResult,
    ResearchState,
)
from app.models.schemas import Clarification
from app.services import logger as log_service
from app.services.activity_tracker import ActivityTracker
from app.services.env_safety import ConfigurationError
from app.services.model_gateway import ModelCallError, ModelGateway
from app.services.prompt_store import render_prompt
from app.tools import search_provider
from app.tools.search_provider import SearchResponse
from app.tools.web_utils import clean_content

DEFAULT_RELEVANCE = 0.7
SNIPPET_CHARS = 200
ANALYSIS_ERROR_NOTE = "API调用错误，无法进行分析"

SearchFn = Callable[[str], Awaitable[SearchResponse]]


def fallback_queries(topic: str) -> list[str]:
    return [f"{topic} 最新研究", f"{topic} 关键问题", f"{topic} 重要影响"]


def fallback_report_content(topic: str) -> str:
    return f"# {topic}研究报告\n\n由于技术原因，无法生成完整报告。请稍后再试。\n\n"


def questions_from_clarifications(topic: str, clarifications: Iterable[Clarification]) -> list[str]:
    """One research question per clarification; the topic itself when there are none."""
    questions = []
    for c in clarifications:
        text = c.text.strip()
        if not text:
            continue
        answer = (c.answer or "").strip()
        questions.append(f"{text}（回答：{answer}）" if answer else text)
    return questions or [topic]


def _clean_queries(raw: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    queries = []
    for q in raw:
        q = q.strip() if isinstance(q, str) else ""
        if q and q not in seen:
            seen.add(q)
            queries.append(q)
    return queries


def _findings_json(findings: Iterable[Finding]) -> str:
    return json.dumps(
        [f.model_dump(exclude_none=True) for f in findings], ensure_ascii=False, indent=2
    )


class ResearchPipeline:
    """Runs one research request: plan, search, extract and analyze, report.

    Flow:
      1. Planning: the model proposes 3-5 search queries (templated fallback)
      2. Searching: queries run sequentially, documents de-duplicated by url
      3. Per question: extract findings, analyze coverage, optionally search
         the analysis' follow-up queries and repeat (bounded rounds)
      4. Generating: the report streams out as markdown chunks

    Every stage is mirrored as activities on the tracker. A failing stage
    triggers a templated degraded run so the client still gets ``complete``.
    """

    def __init__(
        self,
        topic: str,
        questions: list[str],
        tracker: ActivityTracker,
        *,
        gateway: ModelGateway | None = None,
        search: SearchFn | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        request_id: str | None = None,
    ):
        self.tracker = tracker
        self.gateway = gateway or ModelGateway(tracker=tracker)
        if self.gateway.tracker is None:
            self.gateway.tracker = tracker
        self.state = ResearchState(
            topic=topic,
            questions=list(questions) or [topic],
            usage=self.gateway.usage,
        )
        self.request_id = request_id or uuid4().hex[:12]
        self._search = search or search_provider.search
        self._sleep = sleep
        self._searched_queries: set[str] = set()
        self._seen_urls: set[str] = set()

        self.max_documents = max(int(settings.max_documents_per_question), 1)
        self.max_content_chars = max(int(settings.max_content_chars), 1)
        self.max_iterations = max(int(settings.max_iterations), 1)
        self.max_follow_up_queries = max(int(settings.max_follow_up_queries), 0)
        self.report_chunk_chars = max(int(settings.report_chunk_chars), 1)
        self.fallback_delay = max(float(settings.fallback_stage_delay_seconds), 0.0)

    @property
    def topic(self) -> str:
        return self.state.topic

    # --- Entry point ---

    async def run(self) -> Report | None:
        """Drive the pipeline to a terminal event.

        Returns the completed report, or None when a configuration problem
        made the run impossible (an ``error`` event is the last event then).
        """
        log_service.log_research_step(
            self.request_id,
            "research",
            "started",
            {"topic": self.topic[:100], "questions": len(self.state.questions)},
        )
        try:
            report = await self._research()
        except ConfigurationError as e:
            logger.error(f"[{self.request_id}] Research aborted, configuration error: {e}")
            self._report_failure(e)
            log_service.log_research_step(self.request_id, "research", "failed", {"error": str(e)})
            return None
        except Exception as e:
            logger.exception(f"[{self.request_id}] Research stage failed, running degraded flow")
            self._report_failure(e)
            report = await self._degraded_run()
            log_service.log_research_step(
                self.request_id, "research", "degraded", {"error": str(e)}
            )
            return report

        log_service.log_research_step(
            self.request_id,
            "research",
            "completed",
            {
                "sources": len(self.tracker.sources),
                "tokens_used": self.state.usage.tokens_used,
                "completed_steps": self.state.usage.completed_steps,
            },
        )
        return report

    async def _research(self) -> Report:
        queries = await self._plan()
        documents = await self._search_stage(queries)
        self.state.results = await self._extract_and_analyze(documents)
        await self._generate(self.state.results)

        report = self.tracker.send_complete(
            Report(title=f"{self.topic}研究报告", status="success")
        )
        self.state.report = report
        return report

    def _report_failure(self, error: Exception) -> None:
        message = str(error) or type(error).__name__
        self.tracker.add("error", "error", f"研究过程失败: {message}")
        self.tracker.send_error(message)

    @asynccontextmanager
    async def _stage(self, type: ActivityType, message: str) -> AsyncIterator[str]:
        activity_id = self.tracker.add(type, "pending", message)
        log_service.log_research_step(self.request_id, type, "started")
        try:
            yield activity_id
        except Exception:
            self.tracker.update(activity_id, "error")
            log_service.log_research_step(self.request_id, type, "failed")
            raise
        log_service.log_research_step(self.request_id, type, "completed")

    # --- Planning ---

    async def _plan(self) -> list[str]:
        async with self._stage("planning", f"开始研究主题: {self.topic}") as activity_id:
            queries = await self._generate_queries()
            self.state.queries = queries
            self.tracker.update(activity_id, "complete", f"已生成搜索查询: {', '.join(queries)}")
        return queries

    async def _generate_queries(self) -> list[str]:
        prompt = render_prompt(
            "planning.user",
            topic=self.topic,
            questions="\n".join(self.state.questions),
        )
        try:
            result = await self.gateway.call(
                get_model("planning"),
                prompt,
                render_prompt("planning.system"),
                PlanningResult,
                activity_type="planning",
                caller="planning",
            )
        except ModelCallError as e:
            logger.warning(f"[{self.request_id}] Query planning failed, using templated queries: {e}")
            return fallback_queries(self.topic)

        queries = _clean_queries(result.queries)
        if not queries:
            logger.warning(f"[{self.request_id}] Planner returned no queries, using templated queries")
            return fallback_queries(self.topic)
        return queries

    # --- Searching ---

    async def _search_stage(self, queries: list[str]) -> list[Document]:
        async with self._stage("search", "正在搜索相关信息...") as activity_id:
            documents = await self._run_queries(queries)
            self.tracker.update(
                activity_id, "complete", f"已完成信息搜索，找到 {len(documents)} 个结果"
            )
        self.state.documents = documents
        self._record_sources(documents)
        return documents

    async def _run_queries(self, queries: Iterable[str]) -> list[Document]:
        """Run queries one by one; a failed query is skipped.

        Results are merged by url, the last occurrence winning.
        """
        by_url: dict[str, Document] = {}
        for query in queries:
            self._searched_queries.add(query)
            try:
                response = await self._search(query)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning(f"[{self.request_id}] Search failed for query '{query[:80]}': {e}")
                continue
            if response.fallback_from:
                logger.info(
                    f"[{self.request_id}] Search fell back from {response.fallback_from} "
                    f"to {response.provider}: {response.fallback_reason}"
                )
            for doc in response.documents:
                if doc.url:
                    by_url[doc.url] = doc
        return list(by_url.values())

    def _record_sources(self, documents: Iterable[Document]) -> None:
        for doc in documents:
            self._seen_urls.add(doc.url)
            self.tracker.add_source(
                Source(
                    url=doc.url,
                    title=doc.title,
                    snippet=doc.text[:SNIPPET_CHARS] + "...",
                    relevance=doc.score or DEFAULT_RELEVANCE,
                )
            )

    # --- Extracting and analyzing ---

    async def _extract_and_analyze(self, documents: list[Document]) -> list[QuestionResult]:
        async with self._stage("extract", "正在从搜索结果中提取信息...") as activity_id:
            results = []
            for question in self.state.questions:
                results.append(await self._research_question(question, documents))
            self.tracker.update(activity_id, "complete", "已完成信息提取和分析")
        return results

    async def _research_question(self, question: str, documents: list[Document]) -> QuestionResult:
        result = QuestionResult(question=question)
        batch = documents

        while True:
            result.iterations += 1
            extraction = await self._extract(question, batch)
            result.findings.extend(extraction.findings)
            result.analysis = await self._analyze(question, result.findings)

            if result.analysis.is_complete or result.iterations >= self.max_iterations:
                break
            follow_ups = [
                q
                for q in _clean_queries(result.analysis.additional_queries)
                if q not in self._searched_queries
            ][: self.max_follow_up_queries]
            if not follow_ups:
                break

            batch = await self._follow_up_search(follow_ups)
            if not batch:
                break

        logger.info(
            f"[{self.request_id}] Question done after {result.iterations} round(s), "
            f"{len(result.findings)} findings, complete={result.analysis.is_complete}"
        )
        return result

    async def _follow_up_search(self, queries: list[str]) -> list[Document]:
        async with self._stage("search", f"补充搜索: {', '.join(queries)}") as activity_id:
            documents = [d for d in await self._run_queries(queries) if d.url not in self._seen_urls]
            self.tracker.update(
                activity_id, "complete", f"已完成补充搜索，找到 {len(documents)} 个新结果"
            )
        self._record_sources(documents)
        return documents

    def _document_block(self, doc: Document) -> str:
        return f"来源: {doc.url}\n标题: {doc.title}\n\n{clean_content(doc.text, self.max_content_chars)}"

    async def _extract(self, question: str, documents: list[Document]) -> ExtractionResult:
        selected = documents[: self.max_documents]
        if not selected:
            return ExtractionResult()

        prompt = render_prompt(
            "extraction.user",
            topic=self.topic,
            question=question,
            documents="\n\n---\n\n".join(self._document_block(d) for d in selected),
        )
        try:
            result = await self.gateway.call(
                get_model("extraction"),
                prompt,
                render_prompt("extraction.system"),
                ExtractionResult,
                activity_type="extract",
                caller="extraction",
            )
        except ModelCallError as e:
            logger.warning(f"[{self.request_id}] Extraction failed for '{question[:60]}': {e}")
            self.tracker.add("extract", "warning", f"信息提取失败: {question}", details=str(e))
            return ExtractionResult()

        result.findings = [f for f in result.findings if f.fact.strip()]
        return result

    async def _analyze(self, question: str, findings: list[Finding]) -> AnalysisResult:
        prompt = render_prompt(
            "analysis.user",
            topic=self.topic,
            question=question,
            findings=_findings_json(findings),
        )
        try:
            return await self.gateway.call(
                get_model("analysis"),
                prompt,
                render_prompt("analysis.system"),
                AnalysisResult,
                activity_type="analyze",
                caller="analysis",
            )
        except ModelCallError as e:
            logger.warning(f"[{self.request_id}] Analysis failed for '{question[:60]}': {e}")
            self.tracker.add("analyze", "warning", f"信息分析失败: {question}", details=str(e))
            return AnalysisResult(is_complete=False, gaps=[ANALYSIS_ERROR_NOTE])

    # --- Generating ---

    async def _generate(self, results: list[QuestionResult]) -> str:
        async with self._stage("generate", "正在生成研究报告...") as activity_id:
            content = await self._stream_report(results)
            self.tracker.update(activity_id, "complete", "研究报告生成完成")
        return content

    async def _stream_report(self, results: list[QuestionResult]) -> str:
        """Forward report prose as batched chunks; the last one is flagged final."""
        prompt = render_prompt(
            "report.user",
            topic=self.topic,
            questions="\n".join(self.state.questions),
            findings=json.dumps([r.to_dict() for r in results], ensure_ascii=False, indent=2),
            today_iso=date.today().isoformat(),
        )
        buffer = ""
        full_text = ""
        async for chunk in self.gateway.stream(
            get_model("report"),
            prompt,
            render_prompt("report.system"),
            activity_type="generate",
            caller="report",
        ):
            if chunk.kind == "complete":
                full_text = chunk.text
                continue
            buffer += chunk.text
            if len(buffer) >= self.report_chunk_chars:
                self.tracker.send_report_update(buffer, is_final=False)
                buffer = ""

        if not full_text.strip():
            logger.warning(f"[{self.request_id}] Report model returned no content, using fallback")
            fallback = fallback_report_content(self.topic)
            self.tracker.send_report_update(fallback, is_final=True)
            return fallback

        self.tracker.send_report_update(buffer, is_final=True)
        return full_text

    # --- Degraded run ---

    async def _degraded_run(self) -> Report:
        """Templated continuation after a stage failure."""
        planning_id = self.tracker.add("planning", "pending", f"使用备选方案研究主题: {self.topic}")
        await self._sleep(self.fallback_delay)
        self.tracker.update(planning_id, "complete", "已生成备选搜索查询")

        search_id = self.tracker.add("search", "pending", "使用备选方案搜索相关信息...")
        await self._sleep(self.fallback_delay * 2)
        self.tracker.update(search_id, "complete", "已完成备选信息搜索")

        generate_id = self.tracker.add("generate", "pending", "正在生成备选研究报告...")
        await self._sleep(self.fallback_delay * 2)
        self.tracker.update(generate_id, "complete", "备选研究报告生成完成")

        report = Report(
            title=f"{self.topic}备选研究报告",
            introduction="由于技术原因，无法生成完整报告。请稍后再试。",
            content=fallback_report_content(self.topic),
            is_plain_text=True,
            status="fallback",
        )
        # report chunks already streamed before the failure win over the template
        report = self.tracker.send_complete(report)
        self.state.report = report
        return report
