from __future__ import annotations

import re
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from app.models.research import Document
from app.services.env_safety import ConfigurationError
from app.tools import exa_search
from app.tools.exa_search import SearchOptions, normalize_result


class FakeResponse:
    def __init__(self, payload: dict, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            request = httpx.Request("POST", "https://api.exa.ai/search")
            raise httpx.HTTPStatusError(
                "error", request=request, response=httpx.Response(self.status_code, request=request)
            )


def _fake_client(response: FakeResponse, captured: dict):
    class FakeClient:
        def __init__(self, *args, **kwargs):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return None

        async def post(self, url, headers=None, json=None, timeout=None):
            captured.update({"url": url, "headers": headers, "json": json, "timeout": timeout})
            return response

    return FakeClient


def _exa_settings(mock_settings):
    mock_settings.exa_api_key = "exa-key"
    mock_settings.exa_base_url = "https://api.exa.ai"
    mock_settings.search_timeout_seconds = 30.0
    mock_settings.search_num_results = 5
    mock_settings.search_type = "neural"


def test_normalize_result_fills_missing_fields():
    doc = normalize_result({"url": "https://www.example.com/article", "text": "body"})

    assert re.fullmatch(r"exa-\d+-[a-z0-9]{7}", doc.id)
    assert doc.title == "未知标题"
    assert doc.source == "www.example.com"
    assert doc.score == 0.0


def test_normalize_result_keeps_provider_fields():
    doc = normalize_result(
        {
            "id": "abc",
            "title": "Quantum",
            "url": "https://arxiv.org/x",
            "text": "content",
            "score": 0.42,
            "publishedDate": "2024-01-01",
            "author": "A. Author",
        }
    )

    assert doc == Document(
        id="abc",
        title="Quantum",
        url="https://arxiv.org/x",
        text="content",
        score=0.42,
        published_date="2024-01-01",
        author="A. Author",
        source="arxiv.org",
    )


@pytest.mark.asyncio
async def test_exa_search_posts_query_and_normalizes_results():
    captured: dict = {}
    response = FakeResponse(
        {
            "results": [
                {"id": "1", "title": "A", "url": "https://a.example/1", "text": "alpha"},
                {"id": "2", "title": "no url"},
            ]
        }
    )

    with patch("app.tools.exa_search.settings") as mock_settings:
        _exa_settings(mock_settings)
        with patch("app.tools.exa_search.httpx.AsyncClient", _fake_client(response, captured)):
            documents = await exa_search.search(
                "quantum computing", SearchOptions(num_results=3, include_domains=["arxiv.org"])
            )

    assert [d.url for d in documents] == ["https://a.example/1"]
    assert captured["url"] == "https://api.exa.ai/search"
    assert captured["headers"]["x-api-key"] == "exa-key"
    assert captured["json"]["query"] == "quantum computing"
    assert captured["json"]["numResults"] == 3
    assert captured["json"]["includeDomains"] == ["arxiv.org"]
    assert captured["timeout"] == 30.0


@pytest.mark.asyncio
async def test_exa_search_raises_on_http_error():
    with patch("app.tools.exa_search.settings") as mock_settings:
        _exa_settings(mock_settings)
        with patch(
            "app.tools.exa_search.httpx.AsyncClient",
            _fake_client(FakeResponse({}, status_code=500), {}),
        ):
            with pytest.raises(httpx.HTTPStatusError):
                await exa_search.search("query")


@pytest.mark.asyncio
async def test_exa_search_requires_api_key():
    with patch("app.tools.exa_search.settings") as mock_settings:
        _exa_settings(mock_settings)
        mock_settings.exa_api_key = ""

        with pytest.raises(ConfigurationError):
            await exa_search.search("query")


@pytest.mark.asyncio
async def test_exa_fetch_content_returns_page_text():
    captured: dict = {}
    response = FakeResponse({"results": [{"url": "https://a.example", "text": "full text"}]})

    with patch("app.tools.exa_search.settings") as mock_settings:
        _exa_settings(mock_settings)
        with patch("app.tools.exa_search.httpx.AsyncClient", _fake_client(response, captured)):
            text = await exa_search.fetch_content("https://a.example")

    assert text == "full text"
    assert captured["url"] == "https://api.exa.ai/contents"
    assert captured["json"]["urls"] == ["https://a.example"]


@pytest.mark.asyncio
async def test_search_provider_uses_tavily_when_configured():
    from app.tools import search_provider

    docs = [Document(id="t1", title="T", url="https://t.example", text="x")]
    with patch("app.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "tavily"
        mock_settings.search_num_results = 5
        mock_settings.search_type = "neural"
        with patch("app.tools.search_provider.tavily_search.search", AsyncMock(return_value=docs)):
            result = await search_provider.search("query")

    assert result.provider == "tavily"
    assert result.documents == docs


@pytest.mark.asyncio
async def test_search_provider_raises_when_provider_unsupported():
    from app.tools import search_provider

    with patch("app.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "unknown-provider"

        with pytest.raises(ValueError):
            await search_provider.search("query")


@pytest.mark.asyncio
async def test_search_provider_falls_back_to_tavily_on_exa_error():
    from app.tools import search_provider

    docs = [Document(id="t1", title="T", url="https://t.example", text="x")]
    with patch("app.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "exa"
        mock_settings.search_fallback_to_tavily = True
        mock_settings.search_num_results = 5
        mock_settings.search_type = "neural"
        with patch(
            "app.tools.search_provider.exa_search.search",
            AsyncMock(side_effect=RuntimeError("exa down")),
        ), patch("app.tools.search_provider.tavily_search.search", AsyncMock(return_value=docs)):
            result = await search_provider.search("query")

    assert result.provider == "tavily"
    assert result.fallback_from == "exa"
    assert result.fallback_reason == "exa down"


@pytest.mark.asyncio
async def test_search_provider_propagates_exa_error_without_fallback():
    from app.tools import search_provider

    with patch("app.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "exa"
        mock_settings.search_fallback_to_tavily = False
        mock_settings.search_num_results = 5
        mock_settings.search_type = "neural"
        with patch(
            "app.tools.search_provider.exa_search.search",
            AsyncMock(side_effect=RuntimeError("exa down")),
        ):
            with pytest.raises(RuntimeError):
                await search_provider.search("query")


@pytest.mark.asyncio
async def test_search_provider_does_not_mask_missing_key_with_fallback():
    from app.tools import search_provider

    tavily = AsyncMock()
    with patch("app.tools.search_provider.settings") as mock_settings:
        mock_settings.search_provider = "exa"
        mock_settings.search_fallback_to_tavily = True
        mock_settings.search_num_results = 5
        mock_settings.search_type = "neural"
        with patch(
            "app.tools.search_provider.exa_search.search",
            AsyncMock(side_effect=ConfigurationError("EXA_API_KEY not configured")),
        ), patch("app.tools.search_provider.tavily_search.search", tavily):
            with pytest.raises(ConfigurationError):
                await search_provider.search("query")

    tavily.assert_not_awaited()
