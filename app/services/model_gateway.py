"""Language-model calls with bounded retry and structured-output validation."""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Literal, NamedTuple, TypeVar, overload

from loguru import logger
from pydantic import BaseModel

from app import llm_client
from app.config import settings
from app.llm_client import OpenRouterStream, get_model_params, usage_from
from app.models.events import ActivityType
from app.models.research import UsageCounter
from app.services import logger as log_service
from app.services.activity_tracker import ActivityTracker
from app.services.env_safety import ConfigurationError
from app.services.json_repair import extract_and_parse

T = TypeVar("T", bound=BaseModel)
R = TypeVar("R")


class ModelCallError(RuntimeError):
    """A model call failed on every attempt allowed by the retry policy."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


@dataclass(frozen=True)
class RetryPolicy:
    """Linear backoff: the delay after attempt ``n`` is ``base_delay * n``."""

    max_attempts: int = 3
    base_delay: float = 1.0
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=max(int(settings.model_max_attempts), 1),
            base_delay=max(float(settings.model_retry_base_delay_seconds), 0.0),
        )


class StreamChunk(NamedTuple):
    kind: Literal["content", "complete"]
    text: str


def response_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise ValueError("Model response contained no choices")
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None) if message is not None else None
    return content or ""


class ModelGateway:
    """Sends prompts to the completion endpoint on behalf of one request.

    Retries are announced as ``warning`` activities when a tracker is attached,
    and successful calls are counted on the request's usage counter.
    """

    def __init__(
        self,
        *,
        client: Any | None = None,
        policy: RetryPolicy | None = None,
        tracker: ActivityTracker | None = None,
        usage: UsageCounter | None = None,
    ):
        self._client = client
        self.policy = policy or RetryPolicy.from_settings()
        self.tracker = tracker
        self.usage = usage if usage is not None else UsageCounter()

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = llm_client.client()
        return self._client

    @staticmethod
    def _messages(prompt: str, system_prompt: str | None) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _request_kwargs(
        self, model: str, prompt: str, system_prompt: str | None, *, json_mode: bool
    ) -> dict[str, Any]:
        params = get_model_params(model)
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": self._messages(prompt, system_prompt),
            "temperature": params.temperature,
            "top_p": params.top_p,
            "max_tokens": params.max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs

    async def _with_retry(
        self,
        operation: Callable[[], Awaitable[R]],
        *,
        model: str,
        caller: str,
        activity_type: ActivityType,
    ) -> R:
        last_error: Exception | None = None
        max_attempts = self.policy.max_attempts

        for attempt in range(1, max_attempts + 1):
            t0 = time.monotonic()
            try:
                return await operation()
            except ConfigurationError:
                raise
            except Exception as e:
                last_error = e
                log_service.log_model_call(
                    model=model,
                    caller=caller,
                    duration_ms=int((time.monotonic() - t0) * 1000),
                    attempt=attempt,
                    error=str(e),
                )

            if attempt < max_attempts:
                if self.tracker is not None:
                    self.tracker.add(
                        activity_type,
                        "warning",
                        f"模型调用失败，尝试 {attempt}/{max_attempts}. 重试中...",
                    )
                await self.policy.sleep(self.policy.delay_for(attempt))

        raise ModelCallError(
            f"Model call failed after {max_attempts} attempts: {last_error}",
            attempts=max_attempts,
        )

    @overload
    async def call(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None = ...,
        schema: None = ...,
        *,
        activity_type: ActivityType = ...,
        caller: str = ...,
    ) -> str: ...

    @overload
    async def call(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None = ...,
        schema: type[T] = ...,
        *,
        activity_type: ActivityType = ...,
        caller: str = ...,
    ) -> T: ...

    async def call(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None = None,
        schema: type[T] | None = None,
        *,
        activity_type: ActivityType = "generate",
        caller: str = "model_gateway",
    ) -> T | str:
        """Run one completion; validate against ``schema`` when given."""
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be non-empty")
        kwargs = self._request_kwargs(model, prompt, system_prompt, json_mode=schema is not None)

        async def attempt() -> T | str:
            t0 = time.monotonic()
            response = await self.client.chat.completions.create(**kwargs)
            text = response_text(response)
            result: T | str = text
            if schema is not None:
                result = schema.model_validate(extract_and_parse(text))

            usage = usage_from(getattr(response, "usage", None))
            self.usage.record(usage.total_tokens)
            log_service.log_model_call(
                model=model,
                caller=caller,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                duration_ms=int((time.monotonic() - t0) * 1000),
            )
            return result

        return await self._with_retry(
            attempt, model=model, caller=caller, activity_type=activity_type
        )

    async def stream(
        self,
        model: str,
        prompt: str,
        system_prompt: str | None = None,
        *,
        activity_type: ActivityType = "generate",
        caller: str = "model_gateway.stream",
    ) -> AsyncIterator[StreamChunk]:
        """Yield ``content`` chunks as they decode, then one ``complete`` chunk.

        Only establishing the stream is retried; a failure mid-stream ends the
        call with ``ModelCallError``.
        """
        if not prompt or not prompt.strip():
            raise ValueError("prompt must be non-empty")
        kwargs = self._request_kwargs(model, prompt, system_prompt, json_mode=False)
        kwargs["stream"] = True
        kwargs["stream_options"] = {"include_usage": True}

        async def connect() -> Any:
            return await self.client.chat.completions.create(**kwargs)

        raw_stream = await self._with_retry(
            connect, model=model, caller=caller, activity_type=activity_type
        )

        t0 = time.monotonic()
        parts: list[str] = []
        try:
            async with OpenRouterStream(raw_stream) as stream:
                async for text in stream.text_stream:
                    parts.append(text)
                    yield StreamChunk("content", text)
                usage = stream.usage
        except Exception as e:
            logger.error(f"Model stream interrupted after {len(parts)} fragments: {e}")
            raise ModelCallError(f"Model stream interrupted: {e}", attempts=1) from e

        self.usage.record(usage.total_tokens)
        log_service.log_model_call(
            model=model,
            caller=caller,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            duration_ms=int((time.monotonic() - t0) * 1000),
        )
        yield StreamChunk("complete", "".join(parts))
