from __future__ import annotations

import time
from dataclasses import dataclass

from loguru import logger

from app.config import settings
from app.models.research import Document
from app.services import logger as log_service
from app.services.env_safety import ConfigurationError, sanitize_ssl_keylogfile
from app.tools import exa_search, tavily_search
from app.tools.exa_search import SearchOptions

SUPPORTED_PROVIDERS = ("exa", "tavily")


@dataclass
class SearchResponse:
    documents: list[Document]
    provider: str
    fallback_from: str | None = None
    fallback_reason: str | None = None


def _provider() -> str:
    provider = settings.search_provider.lower().strip()
    if provider not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unsupported SEARCH_PROVIDER: {settings.search_provider}")
    return provider


async def _tavily(query: str, options: SearchOptions, *, with_filters: bool = True) -> list[Document]:
    if not with_filters:
        return await tavily_search.search(query, max_results=options.num_results)
    return await tavily_search.search(
        query,
        max_results=options.num_results,
        include_domains=options.include_domains,
        exclude_domains=options.exclude_domains,
    )


async def search(query: str, options: SearchOptions | None = None) -> SearchResponse:
    """Search with the configured provider, optionally retrying Exa failures on Tavily."""
    sanitize_ssl_keylogfile()
    provider = _provider()
    options = options or SearchOptions(
        num_results=settings.search_num_results,
        type=settings.search_type,  # type: ignore[arg-type]
    )

    t0 = time.monotonic()
    try:
        if provider == "tavily":
            documents = await _tavily(query, options)
        else:
            documents = await exa_search.search(query, options)
    except ConfigurationError:
        raise
    except Exception as e:
        log_service.log_search_call(
            provider, query, duration_ms=int((time.monotonic() - t0) * 1000), error=str(e)
        )
        if provider == "tavily" or not settings.search_fallback_to_tavily:
            raise
        logger.warning(f"Exa search failed, falling back to Tavily: {e}")
        documents = await _tavily(query, options, with_filters=False)
        return SearchResponse(
            documents=documents,
            provider="tavily",
            fallback_from="exa",
            fallback_reason=str(e),
        )

    log_service.log_search_call(
        provider, query, results=len(documents), duration_ms=int((time.monotonic() - t0) * 1000)
    )
    return SearchResponse(documents=documents, provider=provider)


async def fetch_content(url: str) -> str:
    sanitize_ssl_keylogfile()
    if _provider() == "tavily":
        return await tavily_search.fetch_content(url)
    try:
        return await exa_search.fetch_content(url)
    except ConfigurationError:
        raise
    except Exception as e:
        if not settings.search_fallback_to_tavily:
            raise
        logger.warning(f"Exa content fetch failed, falling back to Tavily: {e}")
        return await tavily_search.fetch_content(url)
