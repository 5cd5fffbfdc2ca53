"""OpenAI provider using openai SDK with native async."""

import logging
import os
import time

from openai import AsyncOpenAI

from cabinet.errors import AgentMalformedResponse, AgentTransportError
from cabinet.models import Completion, CompletionRequest
from cabinet.providers.base import CompletionProvider
from config.config_loader import ProviderConfig

logger = logging.getLogger(__name__)


def build_chat_kwargs(request: CompletionRequest) -> dict:
    """Translate a resolved request into chat.completions keyword arguments."""
    kwargs: dict = {
        "model": request.model,
        "messages": [
            {"role": "system", "content": request.system},
            {"role": "user", "content": request.prompt},
        ],
        request.token_param: request.max_tokens,
    }
    if request.temperature is not None:
        kwargs["temperature"] = request.temperature
    if request.json_response:
        kwargs["response_format"] = {"type": "json_object"}
    return kwargs


class OpenAIProvider(CompletionProvider):
    """OpenAI provider via openai SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise AgentTransportError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = AsyncOpenAI(api_key=api_key, base_url=config.base_url)

    def name(self) -> str:
        return self._config.name

    async def complete(self, request: CompletionRequest) -> Completion:
        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(**build_chat_kwargs(request))
        except Exception as exc:
            raise AgentTransportError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise AgentMalformedResponse(self._config.name, "Empty response content")

        token_count: int | None = None
        if response.usage:
            token_count = response.usage.total_tokens

        logger.info("OpenAI %s: %.2fs, %s tokens", request.model, latency, token_count)

        return Completion(
            provider=self._config.name,
            model=request.model,
            text=choice.message.content,
            latency_sec=latency,
            token_count=token_count,
        )
