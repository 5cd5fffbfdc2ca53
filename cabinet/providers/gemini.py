"""Gemini provider using google-genai SDK with native async."""

import logging
import os
import time

from google import genai
from google.genai import types as genai_types

from cabinet.errors import AgentMalformedResponse, AgentTransportError
from cabinet.models import Completion, CompletionRequest
from cabinet.providers.base import CompletionProvider
from config.config_loader import ProviderConfig

logger = logging.getLogger(__name__)


class GeminiProvider(CompletionProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ProviderConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise AgentTransportError(config.name, f"Missing API key: {config.api_key_env}")
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    async def complete(self, request: CompletionRequest) -> Completion:
        generation = genai_types.GenerateContentConfig(
            system_instruction=request.system,
            max_output_tokens=request.max_tokens,
            temperature=request.temperature,
            response_mime_type="application/json" if request.json_response else None,
        )
        start = time.monotonic()
        try:
            response = await self._client.aio.models.generate_content(
                model=request.model,
                contents=request.prompt,
                config=generation,
            )
        except Exception as exc:
            raise AgentTransportError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise AgentMalformedResponse(self._config.name, "Empty response text")

        token_count: int | None = None
        if response.usage_metadata:
            token_count = response.usage_metadata.total_token_count

        logger.info("Gemini %s: %.2fs, %s tokens", request.model, latency, token_count)

        return Completion(
            provider=self._config.name,
            model=request.model,
            text=response.text,
            latency_sec=latency,
            token_count=token_count,
        )
