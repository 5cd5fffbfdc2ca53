"""Agent invoker: resolve the model dialect, call the provider, parse the payload."""

import logging
from dataclasses import dataclass

from cabinet.errors import AgentTransportError
from cabinet.models import Completion, CompletionRequest
from cabinet.parsing import extract_payload
from cabinet.providers.base import CompletionProvider
from cabinet.providers.capabilities import capabilities_for

logger = logging.getLogger(__name__)


@dataclass
class Invocation:
    payload: dict
    completion: Completion


class AgentInvoker:
    """Send one structured request to whichever provider serves the model."""

    def __init__(self, providers: dict[str, CompletionProvider]) -> None:
        self._providers = providers

    def build_request(
        self,
        system: str,
        prompt: str,
        model: str,
        temperature: float | None,
        max_tokens: int,
        response_fields: tuple[str, ...] = ("content",),
    ) -> CompletionRequest:
        caps = capabilities_for(model)
        return CompletionRequest(
            system=system,
            prompt=prompt,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature if caps.supports_temperature else None,
            token_param=caps.token_param.value,
            json_response=caps.json_mode,
            response_fields=response_fields,
        )

    async def invoke(
        self,
        agent_name: str,
        system: str,
        prompt: str,
        model: str,
        temperature: float | None,
        max_tokens: int,
        response_fields: tuple[str, ...] = ("content",),
    ) -> Invocation:
        """Run one completion and return its best-effort parsed payload.

        Raises:
            AgentTransportError: No provider serves the model, or the call failed.
            AgentMalformedResponse: The provider returned no text at all.
        """
        caps = capabilities_for(model)
        provider = self._providers.get(caps.provider)
        if provider is None:
            raise AgentTransportError(caps.provider, f"No provider configured for model {model}")

        request = self.build_request(system, prompt, model, temperature, max_tokens, response_fields)
        completion = await provider.complete(request)
        payload = extract_payload(completion.text, agent_name, primary_field=response_fields[0])
        return Invocation(payload=payload, completion=completion)
