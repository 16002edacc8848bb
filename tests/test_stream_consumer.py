import json

import httpx
import pytest

from app.client.reducer import start
from app.client.research_client import ResearchClient, parse_questions
from app.client.stream_consumer import SSEDecoder, consume, decode_event
from app.models.events import ActivityEvent, ErrorEvent, SourceEvent
from app.models.schemas import Clarification


def _frame(obj) -> bytes:
    return f"data: {json.dumps(obj, ensure_ascii=False)}\n\n".encode("utf-8")


ACTIVITY = {
    "type": "activity",
    "payload": {"id": "a1", "type": "planning", "status": "pending", "message": "开始研究", "timestamp": 1},
}
ACTIVITY_DONE = {
    "type": "activity",
    "payload": {"id": "a1", "type": "planning", "status": "complete", "message": "开始研究", "timestamp": 2},
}
COMPLETE = {"type": "complete", "payload": {"report": {"title": "报告", "content": "# 报告\n", "isPlainText": True}}}
DONE = b"data: [DONE]\n\n"


async def _chunks(*chunks: bytes):
    for chunk in chunks:
        yield chunk


class TestSSEDecoder:
    def test_multibyte_character_split_across_chunks(self):
        data = _frame(ACTIVITY)
        cut = data.index("开".encode("utf-8")) + 1
        decoder = SSEDecoder()

        assert decoder.feed(data[:cut]) == []
        payloads = decoder.feed(data[cut:])

        assert len(payloads) == 1
        assert json.loads(payloads[0])["payload"]["message"] == "开始研究"

    def test_crlf_framing_and_comments(self):
        decoder = SSEDecoder()
        payloads = decoder.feed(b": ping\r\n\r\ndata: {\"a\": 1}\r\n\r\ndata: [DONE]\r\n\r\n")

        assert payloads == ['{"a": 1}', "[DONE]"]

    def test_multiline_data_is_joined(self):
        assert SSEDecoder().feed(b"data: line1\ndata: line2\n\n") == ["line1\nline2"]

    def test_flush_returns_unterminated_record(self):
        decoder = SSEDecoder()

        assert decoder.feed(b"data: [DONE]") == []
        assert decoder.flush() == ["[DONE]"]


class TestDecodeEvent:
    def test_truncated_json_is_skipped(self):
        assert decode_event('{"type": "activity", "payload": {') is None

    def test_unknown_type_is_skipped(self):
        assert decode_event('{"type": "heartbeat", "payload": {}}') is None

    def test_flat_source_event(self):
        event = decode_event('{"type": "source", "url": "https://a.example", "title": "A"}')

        assert isinstance(event, SourceEvent)
        assert event.payload.url == "https://a.example"

    def test_flat_activity_event(self):
        event = decode_event(
            '{"type": "activity", "id": "x", "activityType": "search", "status": "pending", "message": "搜索"}'
        )

        assert isinstance(event, ActivityEvent)
        assert event.payload.type == "search"
        assert event.payload.message == "搜索"


@pytest.mark.asyncio
async def test_consume_stops_at_done_sentinel():
    updates = []
    late = _frame({"type": "error", "payload": {"message": "after done"}})

    view = await consume(
        _chunks(_frame(ACTIVITY), _frame(ACTIVITY_DONE), _frame(COMPLETE), DONE, late),
        start("topic"),
        updates.append,
    )

    assert view.research_state == "completed"
    assert [(a.id, a.status) for a in view.activities] == [("a1", "complete")]
    assert view.report.title == "报告"
    assert len(updates) == 3


@pytest.mark.asyncio
async def test_bad_record_is_skipped_and_error_still_applies():
    view = await consume(
        _chunks(b'data: {"type": "activity", "payl\n\n', _frame({"type": "error", "payload": {"message": "boom"}})),
        start("topic"),
    )

    assert view.research_state == "error"
    assert view.activities[-1].details == "boom"


@pytest.mark.asyncio
async def test_stream_ending_without_sentinel_is_finalized():
    view = await consume(
        _chunks(_frame({"type": "report", "payload": {"content": "## 引言\n正文\n", "isFinal": False}})),
        start("topic"),
    )

    assert view.research_state == "completed"
    assert view.report.introduction == "正文"


def test_parse_questions_accepts_both_shapes():
    from_dict = parse_questions({"questions": [{"id": "q1", "text": "问题一"}, {"text": " "}]})
    from_list = parse_questions(["问题一", "", "问题二"])

    assert [(q.id, q.text) for q in from_dict] == [("q1", "问题一")]
    assert [q.text for q in from_list] == ["问题一", "问题二"]
    assert parse_questions({"questions": "nope"}) == []


class TestResearchClient:
    @pytest.mark.asyncio
    async def test_generate_questions(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/generate-questions"
            assert json.loads(request.content) == {"topic": "量子计算"}
            return httpx.Response(200, json={"questions": [{"id": "1", "text": "关注哪个领域？"}]})

        client = ResearchClient("http://test", transport=httpx.MockTransport(handler))
        questions = await client.generate_questions("量子计算")

        assert [q.text for q in questions] == ["关注哪个领域？"]

    @pytest.mark.asyncio
    async def test_research_streams_into_view(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            body = _frame(ACTIVITY) + _frame(ACTIVITY_DONE) + _frame(COMPLETE) + DONE
            return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

        client = ResearchClient("http://test", transport=httpx.MockTransport(handler))
        views = []
        view = await client.research(
            "quantum computing",
            [Clarification(id="1", text="领域？", answer="医药")],
            on_update=views.append,
        )

        assert seen["body"] == {
            "topic": "quantum computing",
            "clarifications": [{"id": "1", "text": "领域？", "answer": "医药"}],
        }
        assert view.research_state == "completed"
        assert views[0].research_state == "researching"
        assert views[-1] == view

    @pytest.mark.asyncio
    async def test_research_http_error_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, json={"detail": "Service not configured"})

        client = ResearchClient("http://test", transport=httpx.MockTransport(handler))
        view = await client.research("topic")

        assert view.research_state == "error"
        assert view.activities[-1].message == "无法连接到服务器"
        assert view.activities[-1].details.startswith("API请求失败: 503")

    @pytest.mark.asyncio
    async def test_research_connection_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = ResearchClient("http://test", transport=httpx.MockTransport(handler))
        view = await client.research("topic")

        assert view.research_state == "error"
        assert view.activities[-1].message == "连接中断"
        assert "connection refused" in view.activities[-1].details
