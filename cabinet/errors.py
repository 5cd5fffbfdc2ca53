"""Exception taxonomy for deliberation and agent failures."""


class CabinetError(Exception):
    """Base for all cabinet errors."""


class ProviderError(CabinetError):
    """Raised when a completion call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AgentTimeout(ProviderError):
    """The call did not complete within its per-call timeout."""


class AgentTransportError(ProviderError):
    """The completion service could not be reached or rejected the request."""


class AgentMalformedResponse(ProviderError):
    """The completion service answered with nothing usable."""


class AgentNotFound(CabinetError):
    """A minister was deleted or disabled while its session was running."""

    def __init__(self, minister_id: str) -> None:
        self.minister_id = minister_id
        super().__init__(f"Minister not found: {minister_id}")


class GlobalTimeout(CabinetError):
    """The session wall-clock budget ran out. Triggers a skip to synthesis."""


class StoreWriteError(CabinetError):
    """A write to the transcript or session store failed."""


class DeliberationError(CabinetError):
    """The orchestrator could not run the session at all."""
