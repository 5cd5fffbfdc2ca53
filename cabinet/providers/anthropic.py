"""Anthropic Claude provider using anthropic SDK with native async."""

import logging
import os
import time

import anthropic as anthropic_sdk

from cabinet.errors import AgentMalformedResponse, AgentTransportError
from cabinet.models import Completion, CompletionRequest
from cabinet.providers.base import CompletionProvider
from config.config_loader import ProviderConfig

logger = logging.getLogger(__name__)


class AnthropicProvider(CompletionProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise AgentTransportError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    async def complete(self, request: CompletionRequest) -> Completion:
        kwargs: dict = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "system": request.system,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature

        start = time.monotonic()
        try:
            response = await self._client.messages.create(**kwargs)
        except Exception as exc:
            raise AgentTransportError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        text_blocks = [b.text for b in (response.content or []) if b.type == "text"]
        if not text_blocks:
            raise AgentMalformedResponse(self._config.name, "No text blocks in response")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.input_tokens + response.usage.output_tokens

        logger.info("Anthropic %s: %.2fs, %s tokens", request.model, latency, token_count)

        return Completion(
            provider=self._config.name,
            model=request.model,
            text="\n".join(text_blocks),
            latency_sec=latency,
            token_count=token_count,
        )
