"""OpenRouter client factory and per-stage model selection."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator

from app.config import settings
from app.services.env_safety import ConfigurationError, sanitize_ssl_keylogfile

STAGES = ("question", "planning", "extraction", "analysis", "report")


@dataclass(frozen=True)
class ModelParams:
    temperature: float = 0.7
    top_p: float = 0.95
    max_tokens: int = 2000


MODEL_PARAMS: dict[str, ModelParams] = {
    "google/gemini-2.0-flash-thinking-exp:free": ModelParams(temperature=0.7),
    # Lower temperature keeps JSON output deterministic.
    "google/gemini-2.0-flash-lite-preview-02-05:free": ModelParams(temperature=0.3),
}
DEFAULT_PARAMS = ModelParams()


def get_model_params(model: str) -> ModelParams:
    return MODEL_PARAMS.get(model, DEFAULT_PARAMS)


def get_model(stage: str | None = None) -> str:
    """Model id for a pipeline stage, falling back to the default model."""
    if stage is not None:
        if stage not in STAGES:
            raise ValueError(f"Unknown model stage: {stage}")
        override = getattr(settings, f"{stage}_model", "")
        if isinstance(override, str) and override.strip():
            return override.strip()
    return settings.default_model


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def usage_from(raw: Any) -> Usage:
    if not raw:
        return Usage()
    return Usage(
        input_tokens=getattr(raw, "prompt_tokens", 0) or 0,
        output_tokens=getattr(raw, "completion_tokens", 0) or 0,
    )


class OpenRouterStream:
    """Async context manager over a streamed chat completion."""

    def __init__(self, stream: Any):
        self._stream = stream
        self.usage = Usage()

    async def __aenter__(self) -> "OpenRouterStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        close = getattr(self._stream, "close", None)
        if close is not None:
            await close()

    async def _iter_text(self) -> AsyncIterator[str]:
        async for chunk in self._stream:
            usage = getattr(chunk, "usage", None)
            if usage:
                self.usage = usage_from(usage)

            choices = getattr(chunk, "choices", None) or []
            if not choices:
                continue
            delta = getattr(choices[0], "delta", None)
            if not delta:
                continue
            text = getattr(delta, "content", None)
            if text:
                yield text

    @property
    def text_stream(self) -> AsyncIterator[str]:
        return self._iter_text()


def get_client() -> Any:
    """Get an OpenRouter client via the OpenAI-compatible SDK.

    SDK-level retries are disabled; the model gateway owns the retry policy.
    """
    from openai import AsyncOpenAI

    if not settings.openrouter_api_key.strip():
        raise ConfigurationError("OPENROUTER_API_KEY is not configured")

    sanitize_ssl_keylogfile()
    base_url = settings.openrouter_base_url.strip() or "https://openrouter.ai/api/v1"
    return AsyncOpenAI(
        api_key=settings.openrouter_api_key,
        base_url=base_url,
        timeout=settings.model_timeout_seconds,
        max_retries=0,
        default_headers={
            "HTTP-Referer": settings.openrouter_referer,
            "X-Title": settings.openrouter_app_title,
        },
    )


_client: Any | None = None


def client() -> Any:
    """Get or create the shared LLM client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client
