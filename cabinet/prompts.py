"""Prompt assembly from the phase templates in settings.yaml."""

from cabinet.models import Brief, Minister, Phase, Turn
from config.config_loader import PromptsConfig

_PHASE_LABELS = {
    Phase.OPENING: "Opening",
    Phase.REBUTTAL: "Rebuttal",
    Phase.CROSS_EXAM: "Cross-examination",
    Phase.CLOSING: "Closing",
}


def format_statements(turns: list[Turn]) -> str:
    """Render minister statements for the next speaker.

    Interjections, system markers and failed turns are left out: an
    interjection reaches exactly one prompt, through ``interjection_block``.
    """
    lines = []
    for turn in turns:
        if turn.phase not in _PHASE_LABELS or turn.is_error:
            continue
        vote = f" (Vote: {turn.vote.value})" if turn.vote else ""
        lines.append(f"[{_PHASE_LABELS[turn.phase]}] {turn.speaker_name}: {turn.content}{vote}")
    return "\n\n".join(lines)


def _evidence_block(brief: Brief) -> str:
    if not brief.context.evidence:
        return ""
    return "Evidence:\n" + "\n".join(f"- {item}" for item in brief.context.evidence) + "\n"


def build_prompt(
    prompts: PromptsConfig,
    phase: Phase,
    minister: Minister,
    brief: Brief,
    statements: str = "",
    interjection: str | None = None,
) -> str:
    """Fill the template for ``phase``. ``statements`` is the transcript so far."""
    template = getattr(prompts, phase.value)
    interjection_block = prompts.interjection.format(interjection=interjection) if interjection else ""
    ctx = brief.context
    return template.format(
        name=minister.name,
        role=minister.role,
        title=brief.title,
        goals=ctx.goals,
        constraints=ctx.constraints or "none stated",
        values=", ".join(ctx.values) or "none stated",
        evidence=_evidence_block(brief),
        previous_statements=statements,
        transcript=statements,
        interjection_block=interjection_block,
    )
