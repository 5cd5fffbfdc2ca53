"""Deliberation orchestration: phase state machine, turn indexing, budget control.

Phases run in a fixed order::

    opening -> rebuttal -> cross_exam -> closing -> synthesis

Rebuttal needs at least two successful openings. Cross-examination needs an
opposition minister, and closing statements only follow a cross-examination.
Before every phase, and before every sequential turn, the session budget is
checked; once it is spent the debate jumps straight to synthesis, which runs
whenever a chair is seated.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from cabinet.control import DebateControl, close_control, open_control
from cabinet.errors import DeliberationError, GlobalTimeout, StoreWriteError
from cabinet.executor import TurnExecutor
from cabinet.invoker import AgentInvoker
from cabinet.models import (
    Brief,
    BriefStatus,
    DeliberationResult,
    Minister,
    MinisterStatus,
    Phase,
    Synthesis,
    Turn,
    TurnResult,
)
from cabinet.parsing import synthesis_from_json
from cabinet.prompts import build_prompt, format_statements
from cabinet.store import DeliberationStore
from config.config_loader import AppConfig

logger = logging.getLogger(__name__)

DEBATE_PHASES = (Phase.OPENING, Phase.REBUTTAL, Phase.CROSS_EXAM, Phase.CLOSING)

_SESSION_OPEN = "Cabinet session begins."
_TIME_UP = "Time limit reached. Moving to synthesis."
_EXTENDED = "Session extended by the user."
_STOPPED = "Debate stopped by the user. Moving to synthesis."


@dataclass
class Panel:
    chair: Minister | None
    opposition: Minister | None
    advisors: list[Minister]

    @property
    def debaters(self) -> list[Minister]:
        members = list(self.advisors)
        if self.opposition is not None:
            members.append(self.opposition)
        return sorted(members, key=lambda m: m.seat_index)


def select_panel(ministers: list[Minister], max_panel: int) -> Panel:
    """Seat enabled, non-suspended ministers in seat order. One chair, one opposition."""
    eligible = sorted(
        (m for m in ministers if m.enabled and m.reputation.status != MinisterStatus.SUSPENDED),
        key=lambda m: m.seat_index,
    )
    chair = next((m for m in eligible if m.is_chair), None)
    opposition = next((m for m in eligible if m.is_opposition), None)
    advisors = [m for m in eligible if not m.is_chair and not m.is_opposition][:max_panel]
    return Panel(chair=chair, opposition=opposition, advisors=advisors)


@dataclass
class _Session:
    brief: Brief
    control: DebateControl
    on_turn: Callable[[Turn], None] | None
    transcript: list[Turn] = field(default_factory=list)
    phases_run: list[Phase] = field(default_factory=list)
    dropped: set[str] = field(default_factory=set)
    synthesis: Synthesis | None = None
    timed_out: bool = False
    stopped: bool = False
    error: str | None = None


class Orchestrator:
    """Runs deliberations for briefs held in a store."""

    def __init__(
        self,
        store: DeliberationStore,
        invoker: AgentInvoker,
        config: AppConfig,
        time_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._config = config
        self._time_fn = time_fn
        self._executor = TurnExecutor(invoker, store, config.timeouts, config.defaults)

    # public

    async def run(
        self,
        brief_id: str,
        on_turn: Callable[[Turn], None] | None = None,
        control: DebateControl | None = None,
    ) -> DeliberationResult:
        """Run a queued brief to completion.

        Args:
            brief_id: Brief to deliberate. Must be queued.
            on_turn: Optional callback invoked after each transcript append.
            control: Side channel for interjections; one is registered under
                ``brief_id`` when omitted.

        Returns:
            DeliberationResult. The brief always ends ``done``; ``brief.error``
            is set when a round had to be aborted.

        Raises:
            DeliberationError: The brief cannot be loaded, is not queued, or no
                minister is eligible to speak.
        """
        brief = self._store.get_brief(brief_id)
        if brief is None:
            raise DeliberationError(f"Brief not found: {brief_id}")
        if brief.status != BriefStatus.QUEUED:
            raise DeliberationError(f"Brief {brief_id} is already {brief.status.value}")

        panel = select_panel(self._store.list_ministers(), self._config.defaults.max_panel)
        if not panel.debaters:
            message = "No eligible ministers to deliberate"
            self._write_status(brief_id, BriefStatus.DONE, error=message)
            raise DeliberationError(message)

        if control is None:
            control = open_control(brief_id, self._config.defaults.budget_sec, self._time_fn)
        else:
            control.clock.restart()
        session = _Session(brief=brief, control=control, on_turn=on_turn)
        start = self._time_fn()

        self._write_status(brief_id, BriefStatus.RUNNING)
        logger.info(
            "Deliberation %s started: %d debaters, chair=%s, opposition=%s",
            brief_id,
            len(panel.debaters),
            panel.chair.name if panel.chair else None,
            panel.opposition.name if panel.opposition else None,
        )
        try:
            self._append_system(session, _SESSION_OPEN)
            await self._run_phases(session, panel)
            await self._run_synthesis(session, panel)
        finally:
            self._write_status(brief_id, BriefStatus.DONE, error=session.error)
            close_control(brief_id)

        brief.status = BriefStatus.DONE
        brief.error = session.error
        logger.info(
            "Deliberation %s done: %d turns, phases=%s",
            brief_id,
            len(session.transcript),
            [p.value for p in session.phases_run],
        )
        return DeliberationResult(
            brief=brief,
            transcript=list(session.transcript),
            synthesis=session.synthesis,
            phases_run=list(session.phases_run),
            timed_out=session.timed_out,
            stopped=session.stopped,
            total_duration_sec=self._time_fn() - start,
        )

    # phase machine

    def _applies(self, phase: Phase, s: _Session, panel: Panel) -> bool:
        if phase == Phase.OPENING:
            return bool(self._active(s, panel.debaters))
        if phase == Phase.REBUTTAL:
            openings = [t for t in s.transcript if t.phase == Phase.OPENING and not t.is_error]
            return len(openings) >= 2
        if phase == Phase.CROSS_EXAM:
            return panel.opposition is not None and panel.opposition.id not in s.dropped
        if phase == Phase.CLOSING:
            return Phase.CROSS_EXAM in s.phases_run and bool(self._active(s, panel.advisors))
        return False

    def _speakers(self, phase: Phase, s: _Session, panel: Panel) -> list[Minister]:
        if phase == Phase.CROSS_EXAM:
            return self._active(s, [panel.opposition])
        if phase == Phase.CLOSING:
            return self._active(s, panel.advisors)
        return self._active(s, panel.debaters)

    @staticmethod
    def _active(s: _Session, ministers: list[Minister | None]) -> list[Minister]:
        return [m for m in ministers if m is not None and m.id not in s.dropped]

    async def _run_phases(self, s: _Session, panel: Panel) -> None:
        for phase in DEBATE_PHASES:
            if s.control.stopped:
                self._mark_stopped(s)
                return
            if not self._applies(phase, s, panel):
                logger.info("Skipping %s", phase.value)
                continue
            if s.control.clock.expired() and not await self._out_of_time(s):
                return

            logger.info("Entering %s", phase.value)
            try:
                if phase == Phase.OPENING and self._config.defaults.parallel_opening:
                    await self._run_parallel(s, phase, self._speakers(phase, s, panel))
                else:
                    await self._run_sequential(s, phase, self._speakers(phase, s, panel))
            except GlobalTimeout:
                self._mark_run(s, phase)
                if not await self._out_of_time(s):
                    return
                continue
            except Exception as exc:
                logger.exception("%s round aborted", phase.value)
                s.error = f"{phase.value} round aborted: {exc}"
                self._append_system(s, f"The {phase.value.replace('_', ' ')} round was aborted by an internal error.")
                return
            self._mark_run(s, phase)
            if s.stopped:
                self._mark_stopped(s)
                return

    async def _out_of_time(self, s: _Session) -> bool:
        """Record the timeout and give the user a window to extend. True if the debate continues."""
        s.timed_out = True
        self._append_system(s, _TIME_UP)
        logger.info("Session budget spent for %s", s.brief.id)
        if await s.control.wait_for_extension(self._config.defaults.extension_window_sec):
            self._append_system(s, _EXTENDED)
            return True
        return False

    def _mark_stopped(self, s: _Session) -> None:
        s.stopped = True
        self._append_system(s, _STOPPED)

    @staticmethod
    def _mark_run(s: _Session, phase: Phase) -> None:
        """A phase counts as run only once one of its turns made it into the transcript."""
        if any(t.phase == phase for t in s.transcript):
            s.phases_run.append(phase)

    async def _run_sequential(self, s: _Session, phase: Phase, speakers: list[Minister]) -> None:
        for minister in speakers:
            if minister.id in s.dropped:
                continue
            if s.control.stopped:
                s.stopped = True
                return
            if s.control.clock.expired():
                raise GlobalTimeout(f"Budget spent during {phase.value}")
            interjection = s.control.take_interjection()
            try:
                prompt = build_prompt(
                    self._config.prompts, phase, minister, s.brief,
                    statements=format_statements(s.transcript),
                    interjection=interjection,
                )
                result = await self._executor.execute_turn(minister, phase, prompt, s.control.clock.remaining())
            except Exception:
                self._requeue(s, interjection)
                raise
            self._record(s, minister, result, interjection=interjection)

    async def _run_parallel(self, s: _Session, phase: Phase, speakers: list[Minister]) -> None:
        """Fan out independent turns; transcript order follows seats, not completion."""
        interjection = s.control.take_interjection()
        semaphore = asyncio.Semaphore(max(1, self._config.defaults.opening_concurrency))

        async def _one(seat: int, minister: Minister) -> TurnResult | None:
            async with semaphore:
                if s.control.stopped:
                    return None
                prompt = build_prompt(
                    self._config.prompts, phase, minister, s.brief,
                    interjection=interjection if seat == 0 else None,
                )
                return await self._executor.execute_turn(minister, phase, prompt, s.control.clock.remaining())

        results = await asyncio.gather(*(_one(i, m) for i, m in enumerate(speakers)), return_exceptions=True)
        failure = next((r for r in results if isinstance(r, BaseException)), None)
        if failure is not None:
            self._requeue(s, interjection)
            raise failure

        for seat, (minister, result) in enumerate(zip(speakers, results)):
            if result is None:
                s.stopped = True
                if seat == 0:
                    self._requeue(s, interjection)
                continue
            self._record(s, minister, result, interjection=interjection if seat == 0 else None)

    async def _run_synthesis(self, s: _Session, panel: Panel) -> None:
        chair = panel.chair
        if chair is None:
            logger.info("No chair seated, ending without synthesis")
            return
        try:
            interjection = s.control.take_interjection()
            prompt = build_prompt(
                self._config.prompts, Phase.SYNTHESIS, chair, s.brief,
                statements=format_statements(s.transcript),
                interjection=interjection,
            )
            result = await self._executor.execute_turn(chair, Phase.SYNTHESIS, prompt)
            turn = self._record(s, chair, result, interjection=interjection)
        except Exception as exc:
            logger.exception("Synthesis aborted")
            s.error = f"synthesis aborted: {exc}"
            self._append_system(s, "Synthesis was aborted by an internal error.")
            return
        if turn is None:
            return
        s.phases_run.append(Phase.SYNTHESIS)
        if not turn.is_error:
            s.synthesis = synthesis_from_json(turn.content)

    # transcript

    @staticmethod
    def _requeue(s: _Session, interjection: str | None) -> None:
        if interjection is not None:
            s.control.requeue_interjection(interjection)

    def _record(
        self, s: _Session, minister: Minister, result: TurnResult, interjection: str | None = None
    ) -> Turn | None:
        """Append a finished turn, preceded by the interjection its prompt carried.

        A skipped turn leaves no entry and hands the interjection back for the next speaker.
        """
        if result.skipped:
            s.dropped.add(minister.id)
            self._requeue(s, interjection)
            return None
        if interjection is not None:
            self._append(s, Turn(
                brief_id=s.brief.id, index=0, phase=Phase.INTERJECTION, content=interjection, speaker_name="User",
            ))
        return self._append(s, Turn(
            brief_id=s.brief.id,
            index=0,
            phase=result.phase,
            content=result.content,
            speaker_id=minister.id,
            speaker_name=minister.name,
            vote=result.vote,
            responding_to=result.responding_to,
            model=result.model,
            has_evidence=bool(s.brief.context.evidence),
            has_interjection=interjection is not None,
            is_error=result.error is not None,
        ))

    def _append_system(self, s: _Session, content: str) -> Turn:
        return self._append(s, Turn(brief_id=s.brief.id, index=0, phase=Phase.SYSTEM, content=content))

    def _append(self, s: _Session, turn: Turn) -> Turn:
        """Assign the next index, keep the turn locally, persist best-effort."""
        turn.index = len(s.transcript)
        s.transcript.append(turn)
        self._persist(turn)
        if s.on_turn is not None:
            s.on_turn(turn)
        return turn

    def _persist(self, turn: Turn) -> None:
        for attempt in (1, 2):
            try:
                self._store.append_turn(turn)
                return
            except StoreWriteError as exc:
                logger.warning("Transcript write %d/2 failed for turn %d: %s", attempt, turn.index, exc)
        logger.error("Turn %d of %s not persisted", turn.index, turn.brief_id)

    def _write_status(self, brief_id: str, status: BriefStatus, error: str | None = None) -> None:
        for attempt in (1, 2):
            try:
                self._store.set_brief_status(brief_id, status, error=error)
                return
            except StoreWriteError as exc:
                logger.warning("Status write %d/2 failed for %s: %s", attempt, brief_id, exc)
        logger.error("Brief %s status not persisted as %s", brief_id, status.value)
