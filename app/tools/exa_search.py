from __future__ import annotations

import random
import string
import time
from dataclasses import dataclass
from typing import Any, Literal

import httpx
from loguru import logger

from app.config import settings
from app.models.research import Document
from app.services.env_safety import ConfigurationError
from app.tools.web_utils import extract_domain, is_valid_url

UNKNOWN_TITLE = "未知标题"


@dataclass
class SearchOptions:
    num_results: int = 5
    start_published_date: str | None = None
    end_published_date: str | None = None
    include_domains: list[str] | None = None
    exclude_domains: list[str] | None = None
    type: Literal["keyword", "neural", "auto"] = "neural"
    highlight_results: bool = True

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "numResults": self.num_results,
            "type": self.type,
            "contents": {"text": True},
        }
        if self.highlight_results:
            payload["contents"]["highlights"] = True
        if self.start_published_date:
            payload["startPublishedDate"] = self.start_published_date
        if self.end_published_date:
            payload["endPublishedDate"] = self.end_published_date
        if self.include_domains:
            payload["includeDomains"] = self.include_domains
        if self.exclude_domains:
            payload["excludeDomains"] = self.exclude_domains
        return payload


def _synthetic_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"exa-{int(time.time() * 1000)}-{suffix}"


def _headers() -> dict[str, str]:
    api_key = settings.exa_api_key
    if not api_key:
        raise ConfigurationError("EXA_API_KEY not configured")
    return {"x-api-key": api_key, "Content-Type": "application/json"}


def _endpoint(path: str) -> str:
    base = settings.exa_base_url.strip().rstrip("/") or "https://api.exa.ai"
    return f"{base}/{path.lstrip('/')}"


def normalize_result(raw: dict[str, Any]) -> Document:
    """Map one Exa result (either key casing) onto a ``Document``."""
    url = raw.get("url") or ""
    highlights = raw.get("highlights") or []
    text = (
        raw.get("text")
        or raw.get("content")
        or raw.get("extract")
        or " ".join(h for h in highlights if isinstance(h, str))
        or ""
    )
    score = raw.get("score", raw.get("relevance_score"))
    return Document(
        id=raw.get("id") or _synthetic_id(),
        title=raw.get("title") or UNKNOWN_TITLE,
        url=url,
        text=text,
        score=float(score) if isinstance(score, (int, float)) else 0.0,
        published_date=raw.get("publishedDate") or raw.get("published_date"),
        author=raw.get("author"),
        source=raw.get("source") or extract_domain(url),
    )


async def search(query: str, options: SearchOptions | None = None) -> list[Document]:
    """Execute an Exa search.

    API: POST <exa_base_url>/search with the ``x-api-key`` header.
    Results without a url are dropped.
    """
    options = options or SearchOptions(
        num_results=settings.search_num_results,
        type=settings.search_type,  # type: ignore[arg-type]
    )
    body = {"query": query, **options.to_payload()}

    async with httpx.AsyncClient() as client:
        response = await client.post(
            _endpoint("/search"),
            headers=_headers(),
            json=body,
            timeout=settings.search_timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()

    results = data.get("results") or []
    documents = [
        normalize_result(r)
        for r in results
        if isinstance(r, dict) and is_valid_url(r.get("url") or "")
    ]
    logger.info(f"Exa search returned {len(documents)} results for query: {query[:80]}")
    return documents


async def fetch_content(url: str) -> str:
    """Fetch the full text of one page through Exa's contents endpoint."""
    async with httpx.AsyncClient() as client:
        response = await client.post(
            _endpoint("/contents"),
            headers=_headers(),
            json={"urls": [url], "text": True},
            timeout=settings.search_timeout_seconds,
        )
        response.raise_for_status()
        data = response.json()

    results = data.get("results") or []
    if not results:
        return ""
    first = results[0]
    return first.get("text") or first.get("extract") or ""
