"""Rich console output and markdown file save for deliberation results."""

import logging
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from cabinet.models import DeliberationResult, Minister, Phase, Synthesis, Turn, Vote
from cabinet.providers.capabilities import MODEL_CATALOG, capabilities_for

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_PHASE_TITLES = {
    Phase.OPENING: "Opening",
    Phase.REBUTTAL: "Rebuttal",
    Phase.CROSS_EXAM: "Cross-Examination",
    Phase.CLOSING: "Closing",
    Phase.SYNTHESIS: "Synthesis",
}

_VOTE_STYLES = {Vote.APPROVE: "green", Vote.ABSTAIN: "yellow", Vote.OPPOSE: "red"}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def vote_tally(transcript: list[Turn]) -> dict[Vote, int]:
    """Count each minister's latest vote. Closing votes supersede opening votes."""
    latest: dict[str, Vote] = {}
    for turn in transcript:
        if turn.vote is not None and turn.speaker_id and turn.phase in (Phase.OPENING, Phase.CLOSING):
            latest[turn.speaker_id] = turn.vote
    tally = {vote: 0 for vote in Vote}
    for vote in latest.values():
        tally[vote] += 1
    return tally


def print_turn(turn: Turn) -> None:
    """Print one transcript entry as it lands."""
    if turn.phase == Phase.SYSTEM:
        console.print(Text(f"— {turn.content}", style="dim italic"))
        return
    if turn.phase == Phase.INTERJECTION:
        console.print(Panel(turn.content, title="[bold yellow]You[/bold yellow]", border_style="yellow"))
        return
    if turn.phase == Phase.SYNTHESIS:
        return  # rendered by print_synthesis

    subtitle = None
    if turn.vote is not None:
        subtitle = f"[{_VOTE_STYLES[turn.vote]}]{turn.vote.value}[/{_VOTE_STYLES[turn.vote]}]"
    console.print(
        Panel(
            turn.content,
            title=f"[bold]{turn.speaker_name}[/bold] · {_PHASE_TITLES.get(turn.phase, turn.phase.value)}",
            subtitle=subtitle,
            border_style="red" if turn.is_error else "dim",
        )
    )


def _synthesis_markdown(synthesis: Synthesis) -> str:
    lines = [synthesis.summary, "", f"**Consensus:** {synthesis.consensus}", ""]
    for n, option in enumerate(synthesis.options, start=1):
        lines.append(f"### Option {n}: {option.title}")
        if option.description:
            lines += ["", option.description]
        if option.tradeoffs:
            lines += ["", f"*Tradeoffs:* {option.tradeoffs}"]
        if option.supporters:
            lines += ["", f"*Supporters:* {', '.join(option.supporters)}"]
        lines.append("")
    return "\n".join(lines)


def print_synthesis(result: DeliberationResult) -> None:
    """Print the chair's options and the vote tally."""
    console.print(Rule("[bold green]Cabinet Synthesis[/bold green]"))
    tally = vote_tally(result.transcript)
    flags = []
    if result.timed_out:
        flags.append("timed out")
    if result.stopped:
        flags.append("stopped")
    if result.brief.error:
        flags.append(f"flagged: {result.brief.error}")
    console.print(
        Text(
            f"Phases: {', '.join(p.value for p in result.phases_run)} | "
            f"Duration: {result.total_duration_sec:.1f}s | "
            f"Votes: {tally[Vote.APPROVE]} approve, {tally[Vote.ABSTAIN]} abstain, {tally[Vote.OPPOSE]} oppose"
            + (f" | {'; '.join(flags)}" if flags else ""),
            style="dim",
        )
    )
    if result.synthesis is None:
        console.print("[yellow]No synthesis was produced.[/yellow]")
        return
    console.print(Markdown(_synthesis_markdown(result.synthesis)))


def print_ministers(ministers: list[Minister]) -> None:
    table = Table(title="Cabinet")
    for column in ("Seat", "Name", "Role", "Model", "Status", "Avg", "Sessions", "Warnings", "ID"):
        table.add_column(column)
    for m in ministers:
        rep = m.reputation
        table.add_row(
            str(m.seat_index),
            m.name + ("" if m.enabled else " (disabled)"),
            m.role,
            m.model,
            rep.status.value,
            f"{rep.average:.2f}" if rep.rating_count else "-",
            str(rep.rating_count),
            str(rep.warnings),
            m.id,
        )
    console.print(table)


def print_models() -> None:
    table = Table(title="Models")
    for column in ("ID", "Name", "Provider", "Temperature", "Token field", "Cost in/out", "Tier"):
        table.add_column(column)
    for option in MODEL_CATALOG:
        caps = capabilities_for(option.id)
        table.add_row(
            option.id,
            option.name,
            caps.provider,
            "yes" if caps.supports_temperature else "no",
            caps.token_param.value,
            f"{option.input_cost} / {option.output_cost}",
            option.cost_tier,
        )
    console.print(table)


def render_markdown(result: DeliberationResult) -> str:
    """Render the full transcript and synthesis as a markdown document."""
    brief = result.brief
    ctx = brief.context
    lines: list[str] = [
        f"# Cabinet Brief: {brief.title[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Brief ID:** {brief.id}",
        f"**Phases:** {', '.join(p.value for p in result.phases_run)}",
        f"**Duration:** {result.total_duration_sec:.1f}s",
        f"**Timed out:** {'yes' if result.timed_out else 'no'}",
        "",
        "## Context",
        "",
        f"**Goals:** {ctx.goals}",
        f"**Constraints:** {ctx.constraints or 'none stated'}",
        f"**Values:** {', '.join(ctx.values) or 'none stated'}",
        "",
        "---",
        "",
        "## Transcript",
        "",
    ]
    for turn in result.transcript:
        if turn.phase == Phase.SYSTEM:
            lines += [f"*{turn.content}*", ""]
        elif turn.phase == Phase.INTERJECTION:
            lines += [f"> **User:** {turn.content}", ""]
        elif turn.phase == Phase.SYNTHESIS:
            continue
        else:
            vote = f" — {turn.vote.value}" if turn.vote else ""
            lines += [
                f"### {_PHASE_TITLES[turn.phase]}: {turn.speaker_name} ({turn.model}){vote}",
                "",
                turn.content,
                "",
            ]

    lines += ["## Synthesis", ""]
    if result.synthesis is not None:
        lines.append(_synthesis_markdown(result.synthesis))
    else:
        lines.append("*No synthesis was produced.*")
    lines.append("")
    return "\n".join(lines)


def save_to_file(result: DeliberationResult, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the transcript as ``<timestamp>_<slug>.md`` in ``output_dir``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(result.brief.title)
    filepath = output_dir / f"{timestamp}_{slug}.md"
    filepath.write_text(render_markdown(result), encoding="utf-8")
    logger.info("Deliberation saved to: %s", filepath)
    return filepath
