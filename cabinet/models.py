"""Dataclasses for the cabinet deliberation pipeline. No I/O, no deps."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

CHAIR_ROLE = "Synthesizer"
OPPOSITION_ROLE = "Skeptic"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BriefStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"


class Phase(str, Enum):
    OPENING = "opening"
    REBUTTAL = "rebuttal"
    CROSS_EXAM = "cross_exam"
    CLOSING = "closing"
    SYNTHESIS = "synthesis"
    SYSTEM = "system"
    INTERJECTION = "interjection"


class Vote(str, Enum):
    APPROVE = "approve"
    ABSTAIN = "abstain"
    OPPOSE = "oppose"


class MinisterStatus(str, Enum):
    ACTIVE = "active"
    PROBATION = "probation"
    SUSPENDED = "suspended"


@dataclass
class BriefContext:
    goals: str
    constraints: str = ""
    values: list[str] = field(default_factory=list)
    evidence: list[str] = field(default_factory=list)


@dataclass
class Brief:
    id: str
    title: str
    context: BriefContext
    status: BriefStatus = BriefStatus.QUEUED
    created_at: datetime = field(default_factory=_now)
    error: str | None = None     # set when the session ended flagged


@dataclass(frozen=True)
class ReputationState:
    status: MinisterStatus = MinisterStatus.ACTIVE
    warnings: int = 0
    consecutive_low: int = 0
    rating_sum: int = 0
    rating_count: int = 0

    @property
    def average(self) -> float:
        return self.rating_sum / self.rating_count if self.rating_count else 0.0


@dataclass
class Minister:
    id: str
    name: str
    role: str                    # "Synthesizer" = chair, "Skeptic" = opposition
    system_prompt: str
    model: str
    temperature: float = 0.7
    enabled: bool = True
    seat_index: int = 0
    reputation: ReputationState = field(default_factory=ReputationState)

    @property
    def is_chair(self) -> bool:
        return self.role == CHAIR_ROLE

    @property
    def is_opposition(self) -> bool:
        return self.role == OPPOSITION_ROLE


@dataclass
class Turn:
    brief_id: str
    index: int
    phase: Phase
    content: str
    speaker_id: str | None = None        # None for system and user markers
    speaker_name: str | None = None
    vote: Vote | None = None
    responding_to: str | None = None
    model: str | None = None
    has_evidence: bool = False
    has_interjection: bool = False
    is_error: bool = False
    created_at: datetime = field(default_factory=_now)


@dataclass
class TurnResult:
    minister_id: str
    phase: Phase
    content: str
    vote: Vote | None = None
    model: str | None = None
    responding_to: str | None = None
    fields: dict = field(default_factory=dict)
    error: str | None = None
    skipped: bool = False                # minister vanished mid-session
    latency_sec: float = 0.0


@dataclass
class SynthesisOption:
    title: str
    description: str = ""
    tradeoffs: str = ""
    supporters: list[str] = field(default_factory=list)


@dataclass
class Synthesis:
    summary: str
    consensus: str = "split"             # "strong", "moderate", "weak", "split"
    options: list[SynthesisOption] = field(default_factory=list)


@dataclass
class Rating:
    brief_id: str
    minister_id: str
    rating: int                          # 1..5
    feedback: str | None = None
    was_helpful: bool = True


@dataclass
class StatusChange:
    minister_id: str
    event: str                           # "warning", "probation", "suspended", "active"
    old_status: MinisterStatus
    new_status: MinisterStatus
    reason: str
    created_at: datetime = field(default_factory=_now)


@dataclass
class Decision:
    brief_id: str
    chosen_option: str
    notes: str | None = None
    created_at: datetime = field(default_factory=_now)


@dataclass
class DeliberationResult:
    brief: Brief
    transcript: list[Turn]
    synthesis: Synthesis | None
    phases_run: list[Phase]
    timed_out: bool = False
    stopped: bool = False
    total_duration_sec: float = 0.0


@dataclass
class CompletionRequest:
    system: str
    prompt: str
    model: str
    max_tokens: int
    temperature: float | None = None     # None when the model family rejects it
    token_param: str = "max_tokens"
    json_response: bool = True
    response_fields: tuple[str, ...] = ("content",)


@dataclass
class Completion:
    provider: str
    model: str
    text: str
    latency_sec: float
    token_count: int | None = None
