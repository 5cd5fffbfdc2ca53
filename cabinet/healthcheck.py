"""Provider health checks: ping each API before convening the cabinet."""

import asyncio
import logging

from cabinet.models import CompletionRequest
from cabinet.providers.base import CompletionProvider
from cabinet.providers.capabilities import MODEL_CATALOG, capabilities_for

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


def _ping_model(provider_name: str) -> str:
    """Cheapest catalog model served by ``provider_name``."""
    served = [m for m in MODEL_CATALOG if capabilities_for(m.id).provider == provider_name]
    low = [m for m in served if m.cost_tier == "low"]
    return (low or served)[0].id if served else provider_name


def ping_request(provider_name: str) -> CompletionRequest:
    model = _ping_model(provider_name)
    caps = capabilities_for(model)
    return CompletionRequest(
        system="You are a connectivity check.",
        prompt=_PING_PROMPT,
        model=model,
        max_tokens=16,
        token_param=caps.token_param.value,
        json_response=False,
    )


async def _check_one(name: str, provider: CompletionProvider) -> tuple[str, bool, str]:
    """Ping a single provider. Returns (name, ok, error_message)."""
    try:
        await asyncio.wait_for(provider.complete(ping_request(name)), timeout=_TIMEOUT_SEC)
        return name, True, ""
    except Exception as exc:
        logger.debug("Health check failed for %s: %s", name, exc)
        return name, False, str(exc) or type(exc).__name__


async def run_health_checks(
    providers: dict[str, CompletionProvider],
) -> dict[str, tuple[bool, str]]:
    """Ping all providers in parallel.

    Returns:
        Dict mapping provider name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, p) for n, p in providers.items()))
    return {name: (ok, err) for name, ok, err in results}
