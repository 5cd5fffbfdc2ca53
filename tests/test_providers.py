"""Tests for cabinet/providers: request dialects and response handling, no network."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from cabinet.errors import AgentMalformedResponse, AgentTransportError
from cabinet.invoker import AgentInvoker
from cabinet.models import CompletionRequest
from cabinet.providers.anthropic import AnthropicProvider
from cabinet.providers.gemini import GeminiProvider
from cabinet.providers.openai_provider import OpenAIProvider, build_chat_kwargs
from cabinet.providers.xai import XAIProvider
from config.config_loader import ProviderConfig


def _request(model: str, temperature: float | None = 0.5) -> CompletionRequest:
    return AgentInvoker({}).build_request("sys", "prompt", model, temperature, max_tokens=300)


def test_chat_kwargs_for_chat_model():
    kwargs = build_chat_kwargs(_request("gpt-4o-mini"))
    assert kwargs["max_tokens"] == 300
    assert kwargs["temperature"] == 0.5
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["messages"][0] == {"role": "system", "content": "sys"}


def test_chat_kwargs_for_reasoning_model():
    kwargs = build_chat_kwargs(_request("gpt-5-mini"))
    assert kwargs["max_completion_tokens"] == 300
    assert "max_tokens" not in kwargs
    assert "temperature" not in kwargs


def test_chat_kwargs_without_json_mode():
    request = CompletionRequest(system="s", prompt="p", model="gpt-4o", max_tokens=10, json_response=False)
    assert "response_format" not in build_chat_kwargs(request)


def test_openai_missing_key_raises(monkeypatch):
    monkeypatch.delenv("TEST_OPENAI_KEY", raising=False)
    with pytest.raises(AgentTransportError, match="Missing API key"):
        OpenAIProvider(ProviderConfig(name="openai", api_key_env="TEST_OPENAI_KEY"))


def test_xai_requires_base_url(monkeypatch):
    monkeypatch.setenv("TEST_XAI_KEY", "k")
    with pytest.raises(AgentTransportError, match="base_url"):
        XAIProvider(ProviderConfig(name="xai", api_key_env="TEST_XAI_KEY"))


@pytest.fixture
def openai_provider(monkeypatch) -> OpenAIProvider:
    monkeypatch.setenv("TEST_OPENAI_KEY", "sk-test")
    provider = OpenAIProvider(ProviderConfig(name="openai", api_key_env="TEST_OPENAI_KEY"))
    provider._client = MagicMock()
    return provider


async def test_openai_complete_returns_text(openai_provider):
    openai_provider._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content='{"content": "hi"}'))],
        usage=SimpleNamespace(total_tokens=42),
    ))

    completion = await openai_provider.complete(_request("gpt-4o-mini"))

    assert completion.text == '{"content": "hi"}'
    assert completion.token_count == 42
    assert completion.provider == "openai"
    sent = openai_provider._client.chat.completions.create.call_args.kwargs
    assert sent["model"] == "gpt-4o-mini"


async def test_openai_empty_content_is_malformed(openai_provider):
    openai_provider._client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=""))], usage=None,
    ))
    with pytest.raises(AgentMalformedResponse):
        await openai_provider.complete(_request("gpt-4o-mini"))


async def test_openai_sdk_error_is_transport_error(openai_provider):
    openai_provider._client.chat.completions.create = AsyncMock(side_effect=RuntimeError("503"))
    with pytest.raises(AgentTransportError, match="503"):
        await openai_provider.complete(_request("gpt-4o-mini"))


async def test_anthropic_joins_text_blocks_and_omits_missing_temperature(monkeypatch):
    monkeypatch.setenv("TEST_ANTHROPIC_KEY", "k")
    provider = AnthropicProvider(ProviderConfig(name="anthropic", api_key_env="TEST_ANTHROPIC_KEY"))
    provider._client = MagicMock()
    provider._client.messages.create = AsyncMock(return_value=SimpleNamespace(
        content=[SimpleNamespace(type="text", text="part one"), SimpleNamespace(type="text", text="part two")],
        usage=SimpleNamespace(input_tokens=5, output_tokens=7),
    ))

    completion = await provider.complete(_request("claude-sonnet-4-5", temperature=None))

    assert completion.text == "part one\npart two"
    assert completion.token_count == 12
    sent = provider._client.messages.create.call_args.kwargs
    assert sent["system"] == "sys"
    assert "temperature" not in sent


async def test_anthropic_no_text_is_malformed(monkeypatch):
    monkeypatch.setenv("TEST_ANTHROPIC_KEY", "k")
    provider = AnthropicProvider(ProviderConfig(name="anthropic", api_key_env="TEST_ANTHROPIC_KEY"))
    provider._client = MagicMock()
    provider._client.messages.create = AsyncMock(return_value=SimpleNamespace(content=[], usage=None))
    with pytest.raises(AgentMalformedResponse):
        await provider.complete(_request("claude-sonnet-4-5"))


async def test_gemini_sends_generation_config(monkeypatch):
    monkeypatch.setenv("TEST_GEMINI_KEY", "k")
    provider = GeminiProvider(ProviderConfig(name="gemini", api_key_env="TEST_GEMINI_KEY"))
    provider._client = MagicMock()
    provider._client.aio.models.generate_content = AsyncMock(return_value=SimpleNamespace(
        text='{"content": "ok"}', usage_metadata=SimpleNamespace(total_token_count=9),
    ))

    completion = await provider.complete(_request("gemini-2.5-flash"))

    assert completion.token_count == 9
    config = provider._client.aio.models.generate_content.call_args.kwargs["config"]
    assert config.max_output_tokens == 300
    assert config.system_instruction == "sys"
    assert config.response_mime_type == "application/json"
