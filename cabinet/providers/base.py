"""Abstract base for all completion providers."""

from abc import ABC, abstractmethod

from cabinet.models import Completion, CompletionRequest


class CompletionProvider(ABC):
    """Abstract base for all completion providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'openai', 'anthropic')."""
        ...

    @abstractmethod
    async def complete(self, request: CompletionRequest) -> Completion:
        """Run a single completion.

        Args:
            request: System text, user prompt and generation parameters. The
                parameter dialect (temperature, token field) is already resolved.

        Returns:
            Completion with the raw response text and metadata.

        Raises:
            AgentTransportError: On API or network failure.
            AgentMalformedResponse: When the response carries no text.
        """
        ...
