"""Tests for the OpenRouter client factory and per-stage model selection."""
import sys
import types
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.llm_client import OpenRouterStream, get_client, get_model, get_model_params
from app.services.env_safety import ConfigurationError


class TestGetModel:
    def test_returns_default_when_no_stage_given(self):
        with patch("app.llm_client.settings") as mock_settings:
            mock_settings.default_model = "google/gemini-2.0-flash-lite-preview-02-05:free"

            assert get_model() == "google/gemini-2.0-flash-lite-preview-02-05:free"

    def test_stage_override_wins(self):
        with patch("app.llm_client.settings") as mock_settings:
            mock_settings.default_model = "default/model"
            mock_settings.planning_model = "google/gemini-2.0-flash-thinking-exp:free"

            assert get_model("planning") == "google/gemini-2.0-flash-thinking-exp:free"

    def test_empty_override_falls_back_to_default(self):
        with patch("app.llm_client.settings") as mock_settings:
            mock_settings.default_model = "default/model"
            mock_settings.extraction_model = "  "

            assert get_model("extraction") == "default/model"

    def test_unknown_stage_raises(self):
        with pytest.raises(ValueError):
            get_model("summarize-everything")


def test_model_params_are_tuned_per_model():
    assert get_model_params("google/gemini-2.0-flash-lite-preview-02-05:free").temperature == 0.3
    params = get_model_params("some/unknown-model")
    assert (params.temperature, params.top_p, params.max_tokens) == (0.7, 0.95, 2000)


class TestGetClient:
    def test_missing_key_raises_configuration_error(self):
        with patch("app.llm_client.settings") as mock_settings:
            mock_settings.openrouter_api_key = ""

            with pytest.raises(ConfigurationError):
                get_client()

    def test_uses_openrouter_without_sdk_retries(self):
        with patch("app.llm_client.settings") as mock_settings:
            mock_settings.openrouter_api_key = "sk-or-valid-key"
            mock_settings.openrouter_base_url = "https://openrouter.ai/api/v1"
            mock_settings.model_timeout_seconds = 60.0
            mock_settings.openrouter_referer = "http://localhost:3000"
            mock_settings.openrouter_app_title = "Deep Research AI Agent"

            openai_module = types.ModuleType("openai")
            mock_openai = MagicMock()
            openai_module.AsyncOpenAI = mock_openai

            with patch.dict(sys.modules, {"openai": openai_module}):
                get_client()

        kwargs = mock_openai.call_args.kwargs
        assert kwargs["api_key"] == "sk-or-valid-key"
        assert kwargs["base_url"] == "https://openrouter.ai/api/v1"
        assert kwargs["max_retries"] == 0
        assert kwargs["default_headers"]["X-Title"] == "Deep Research AI Agent"


@pytest.mark.asyncio
async def test_openrouter_stream_collects_text_and_usage():
    async def chunk_iter():
        yield SimpleNamespace(
            choices=[SimpleNamespace(delta=SimpleNamespace(content="Hello "))], usage=None
        )
        yield SimpleNamespace(
            choices=[SimpleNamespace(delta=SimpleNamespace(content="world"))], usage=None
        )
        yield SimpleNamespace(
            choices=[], usage=SimpleNamespace(prompt_tokens=12, completion_tokens=9)
        )

    class FakeStream:
        def __aiter__(self):
            return chunk_iter()

        async def close(self):
            return None

    async with OpenRouterStream(FakeStream()) as s:
        chunks = [text async for text in s.text_stream]

    assert "".join(chunks) == "Hello world"
    assert s.usage.input_tokens == 12
    assert s.usage.output_tokens == 9
