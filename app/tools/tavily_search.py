from __future__ import annotations

import hashlib
from typing import Any

from tavily import AsyncTavilyClient

from app.config import settings
from app.models.research import Document
from app.services.env_safety import ConfigurationError
from app.tools.web_utils import extract_domain, is_valid_url


def _client() -> AsyncTavilyClient:
    if not settings.tavily_api_key:
        raise ConfigurationError("TAVILY_API_KEY not configured")
    return AsyncTavilyClient(api_key=settings.tavily_api_key)


def _to_document(r: dict[str, Any]) -> Document:
    url = r.get("url", "")
    return Document(
        id=f"tavily-{hashlib.sha1(url.encode('utf-8')).hexdigest()[:12]}",
        title=r.get("title") or "",
        url=url,
        text=r.get("raw_content") or r.get("content") or "",
        score=float(r.get("score") or 0.0),
        published_date=r.get("published_date"),
        source=extract_domain(url),
    )


async def search(
    query: str,
    *,
    search_depth: str = "advanced",
    max_results: int = 5,
    topic: str = "general",
    include_raw_content: bool = False,
    include_domains: list[str] | None = None,
    exclude_domains: list[str] | None = None,
) -> list[Document]:
    """Execute a Tavily web search and return normalized documents."""
    kwargs: dict[str, Any] = {
        "query": query,
        "search_depth": search_depth,
        "max_results": max_results,
        "topic": topic,
        "include_raw_content": include_raw_content,
    }
    if include_domains:
        kwargs["include_domains"] = include_domains
    if exclude_domains:
        kwargs["exclude_domains"] = exclude_domains

    response = await _client().search(**kwargs)
    results = response.get("results", [])
    return [_to_document(r) for r in results if is_valid_url(r.get("url") or "")]


async def fetch_content(url: str) -> str:
    """Full page text via Tavily extract."""
    response = await _client().extract(urls=[url])
    results = response.get("results") or []
    if not results:
        return ""
    return results[0].get("raw_content") or ""
