"""Per-session debate control: wall-clock budget, interjections, extension, stop.

A running deliberation polls its ``DebateControl`` between turns. Anything
else in the same process (the interactive CLI, a web handler) reaches a
running session through the module-level registry keyed by brief id.
"""

import asyncio
import logging
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class DebateClock:
    """Wall-clock budget that can be restarted back to the full window."""

    def __init__(self, budget_sec: float, time_fn: Callable[[], float] = time.monotonic) -> None:
        self.budget_sec = budget_sec
        self._time_fn = time_fn
        self._started_at = time_fn()

    def restart(self) -> None:
        self._started_at = self._time_fn()

    def now(self) -> float:
        return self._time_fn()

    @property
    def deadline(self) -> float:
        return self._started_at + self.budget_sec

    def remaining(self) -> float:
        return max(0.0, self.deadline - self._time_fn())

    def expired(self) -> bool:
        return self._time_fn() >= self.deadline


class DebateControl:
    """Side channel between a running deliberation and the user."""

    def __init__(self, clock: DebateClock) -> None:
        self.clock = clock
        self._pending: list[str] = []
        self._wakeup = asyncio.Event()
        self._extended = False
        self.stopped = False

    def interject(self, text: str) -> None:
        """Queue text for the next turn and give the debate its full budget back."""
        text = text.strip()
        if not text:
            return
        self._pending.append(text)
        self._extend()
        logger.info("Interjection received (%d chars), budget restarted", len(text))

    def request_extension(self) -> None:
        """Restart the budget without adding any text."""
        self._extend()
        logger.info("Extension requested, budget restarted")

    def request_stop(self) -> None:
        """Start no further turns. In-flight calls finish, synthesis still runs."""
        self.stopped = True
        self._wakeup.set()
        logger.info("Stop requested")

    def _extend(self) -> None:
        self.clock.restart()
        self._extended = True
        self._wakeup.set()

    def take_interjection(self) -> str | None:
        """Return pending interjection text once, then clear it."""
        if not self._pending:
            return None
        text = "\n".join(self._pending)
        self._pending.clear()
        return text

    def requeue_interjection(self, text: str) -> None:
        """Put taken text back ahead of anything queued since. The budget is not restarted."""
        self._pending.insert(0, text)

    async def wait_for_extension(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for an extension or interjection after the budget ran out."""
        if self._extended and not self.clock.expired():
            return not self.stopped
        self._extended = False
        self._wakeup.clear()
        if timeout > 0:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
            except TimeoutError:
                pass
        return self._extended and not self.stopped


_REGISTRY: dict[str, DebateControl] = {}


def open_control(brief_id: str, budget_sec: float, time_fn: Callable[[], float] = time.monotonic) -> DebateControl:
    control = DebateControl(DebateClock(budget_sec, time_fn))
    _REGISTRY[brief_id] = control
    return control


def get_control(brief_id: str) -> DebateControl | None:
    return _REGISTRY.get(brief_id)


def close_control(brief_id: str) -> None:
    _REGISTRY.pop(brief_id, None)


def interject(brief_id: str, text: str) -> bool:
    """Deliver an interjection to a running session. Returns False if none is running."""
    control = _REGISTRY.get(brief_id)
    if control is None:
        return False
    control.interject(text)
    return True


def extend(brief_id: str) -> bool:
    control = _REGISTRY.get(brief_id)
    if control is None:
        return False
    control.request_extension()
    return True


def stop(brief_id: str) -> bool:
    control = _REGISTRY.get(brief_id)
    if control is None:
        return False
    control.request_stop()
    return True
