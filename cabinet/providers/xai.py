"""xAI Grok provider using openai SDK (OpenAI-compatible API)."""

from cabinet.errors import AgentTransportError
from cabinet.providers.openai_provider import OpenAIProvider
from config.config_loader import ProviderConfig


class XAIProvider(OpenAIProvider):
    """xAI Grok provider via OpenAI-compatible API."""

    def __init__(self, config: ProviderConfig) -> None:
        if not config.base_url:
            raise AgentTransportError(config.name, "base_url is required for xAI provider")
        super().__init__(config)
