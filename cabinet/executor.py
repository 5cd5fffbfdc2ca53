"""Turn executor: one minister, one phase, one bounded completion call."""

import asyncio
import json
import logging
import time
from typing import Protocol

from cabinet.errors import AgentNotFound, AgentTimeout, ProviderError
from cabinet.invoker import AgentInvoker
from cabinet.models import Minister, Phase, TurnResult, Vote
from cabinet.parsing import parse_synthesis, parse_vote, synthesis_to_dict
from config.config_loader import DefaultsConfig, TimeoutsConfig

logger = logging.getLogger(__name__)

RESPONSE_FIELDS: dict[Phase, tuple[str, ...]] = {
    Phase.OPENING: ("content", "vote"),
    Phase.REBUTTAL: ("content", "responding_to"),
    Phase.CROSS_EXAM: ("content", "responding_to"),
    Phase.CLOSING: ("content", "vote"),
    Phase.SYNTHESIS: ("summary", "consensus", "options"),
}

VOTING_PHASES = frozenset({Phase.OPENING, Phase.CLOSING})


class Roster(Protocol):
    def get_minister(self, minister_id: str) -> Minister | None: ...


class TurnExecutor:
    """Runs single turns. Never retries; failures become visible error turns."""

    def __init__(
        self,
        invoker: AgentInvoker,
        roster: Roster,
        timeouts: TimeoutsConfig,
        defaults: DefaultsConfig,
    ) -> None:
        self._invoker = invoker
        self._roster = roster
        self._timeouts = timeouts
        self._defaults = defaults
        self._abandoned: set[asyncio.Task] = set()

    def call_timeout(self, phase: Phase, remaining: float | None) -> float:
        """Per-call timeout: the phase budget, cut down to the session's remaining time plus grace."""
        timeout = self._timeouts.for_phase(phase)
        if remaining is not None and phase != Phase.SYNTHESIS:
            timeout = min(timeout, max(0.0, remaining) + self._timeouts.grace)
        return timeout

    def _resolve(self, minister: Minister) -> Minister:
        current = self._roster.get_minister(minister.id)
        if current is None or not current.enabled:
            raise AgentNotFound(minister.id)
        return current

    def _abandon(self, task: asyncio.Task) -> None:
        # the remote call keeps running; its result is dropped when it lands
        self._abandoned.add(task)

        def _discard(t: asyncio.Task) -> None:
            self._abandoned.discard(t)
            if not t.cancelled() and t.exception() is not None:
                logger.debug("Late failure from abandoned call ignored: %s", t.exception())

        task.add_done_callback(_discard)

    async def execute_turn(
        self,
        minister: Minister,
        phase: Phase,
        prompt: str,
        remaining: float | None = None,
    ) -> TurnResult:
        """Run one turn.

        Args:
            minister: The speaker as selected at session start.
            phase: Debate phase; selects timeout, token budget and response shape.
            prompt: Fully rendered user prompt.
            remaining: Seconds left in the session budget, or None for no limit.

        Returns:
            TurnResult. ``skipped`` is set when the minister no longer exists;
            ``error`` is set when the call timed out or failed.
        """
        try:
            current = self._resolve(minister)
        except AgentNotFound:
            logger.info("Minister %s (%s) no longer available, skipping", minister.name, minister.id)
            return TurnResult(minister_id=minister.id, phase=phase, content="", skipped=True)

        timeout = self.call_timeout(phase, remaining)
        start = time.monotonic()
        task = asyncio.ensure_future(
            self._invoker.invoke(
                agent_name=current.name,
                system=current.system_prompt,
                prompt=prompt,
                model=current.model,
                temperature=current.temperature,
                max_tokens=self._defaults.token_budget(phase),
                response_fields=RESPONSE_FIELDS[phase],
            )
        )
        done, _ = await asyncio.wait({task}, timeout=timeout)

        if not done:
            self._abandon(task)
            return self._failure(current, phase, AgentTimeout(current.name, f"Request timed out after {timeout:.0f}s"))

        try:
            invocation = task.result()
        except ProviderError as exc:
            return self._failure(current, phase, exc)

        latency = time.monotonic() - start
        payload = invocation.payload

        if phase == Phase.SYNTHESIS:
            synthesis = parse_synthesis(payload)
            return TurnResult(
                minister_id=current.id,
                phase=phase,
                content=json.dumps(synthesis_to_dict(synthesis)),
                vote=Vote.ABSTAIN,
                model=invocation.completion.model,
                fields=payload,
                latency_sec=latency,
            )

        responding_to = payload.get("responding_to")
        return TurnResult(
            minister_id=current.id,
            phase=phase,
            content=str(payload["content"]).strip(),
            vote=parse_vote(payload.get("vote")) if phase in VOTING_PHASES else None,
            model=invocation.completion.model,
            responding_to=responding_to.strip() if isinstance(responding_to, str) and responding_to.strip() else None,
            fields=payload,
            latency_sec=latency,
        )

    def _failure(self, minister: Minister, phase: Phase, exc: ProviderError) -> TurnResult:
        logger.warning("Minister %s failed in %s: %s", minister.name, phase.value, exc)
        reason = "timed out" if isinstance(exc, AgentTimeout) else "no usable response"
        return TurnResult(
            minister_id=minister.id,
            phase=phase,
            content=f"[{minister.name} unavailable: {reason}]",
            vote=Vote.ABSTAIN,
            model=minister.model,
            error=str(exc),
        )
