"""Click CLI: config loading, provider setup, deliberation, ratings and output."""

import asyncio
import logging
import sys
import threading
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from cabinet.briefs import parse_brief_file, parse_values
from cabinet.control import DebateControl, open_control
from cabinet.errors import CabinetError, DeliberationError
from cabinet.healthcheck import run_health_checks
from cabinet.invoker import AgentInvoker
from cabinet.models import BriefContext, BriefStatus, Decision, DeliberationResult, Phase, Rating
from cabinet.orchestrator import DEBATE_PHASES, Orchestrator
from cabinet.output import print_ministers, print_models, print_synthesis, print_turn, save_to_file
from cabinet.parsing import synthesis_from_json
from cabinet.providers.anthropic import AnthropicProvider
from cabinet.providers.base import CompletionProvider
from cabinet.providers.gemini import GeminiProvider
from cabinet.providers.openai_provider import OpenAIProvider
from cabinet.providers.xai import XAIProvider
from cabinet.reputation import RatingService
from cabinet.store import SqliteStore, seed_cabinet
from config.config_loader import AppConfig, load_config

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

PROVIDER_CLASSES: dict[str, type[CompletionProvider]] = {
    "openai": OpenAIProvider,
    "anthropic": AnthropicProvider,
    "gemini": GeminiProvider,
    "xai": XAIProvider,
}

_EXTEND_COMMAND = "/more"
_STOP_COMMAND = "/stop"


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _load_config_or_exit() -> AppConfig:
    try:
        return load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)


def _build_all_providers(config: AppConfig) -> dict[str, CompletionProvider]:
    """Build all available providers. Returns dict keyed by sdk name."""
    providers: dict[str, CompletionProvider] = {}
    for name in sorted(config.available_providers):
        if name not in PROVIDER_CLASSES:
            logger.warning("Provider '%s' unknown, skipping", name)
            continue
        try:
            providers[name] = PROVIDER_CLASSES[name](config.providers[name])
        except CabinetError as exc:
            logger.warning("Failed to instantiate provider '%s': %s", name, exc)
    return providers


def _open_store(config: AppConfig, db_path: str | None) -> SqliteStore:
    store = SqliteStore(Path(db_path) if db_path else config.defaults.database)
    seed_cabinet(store, config.cabinet)
    return store


def _brief_from_options(
    brief_file: str | None,
    title: str | None,
    goals: str | None,
    constraints: str | None,
    values: str | None,
) -> tuple[str, BriefContext]:
    """Brief from --file, with command-line options filling in or overriding."""
    if brief_file:
        file_title, context = parse_brief_file(Path(brief_file))
        title = title or file_title
        if goals:
            context.goals = goals
        if constraints:
            context.constraints = constraints
        if values:
            context.values = parse_values(values)
        return title, context

    if not goals:
        raise click.UsageError("Provide --goals or --file.")
    context = BriefContext(goals=goals, constraints=constraints or "", values=parse_values(values))
    return title or goals.splitlines()[0][:80], context


def _handle_command(control: DebateControl, line: str) -> None:
    """Route one line of interactive input to the running session."""
    text = line.strip()
    if not text:
        return
    if text == _EXTEND_COMMAND:
        control.request_extension()
    elif text == _STOP_COMMAND:
        control.request_stop()
    else:
        control.interject(text)


def _start_stdin_reader(control: DebateControl, loop: asyncio.AbstractEventLoop) -> threading.Thread:
    """Feed stdin lines into the session from a daemon thread. Lines land on the loop thread."""

    def _read() -> None:
        for line in sys.stdin:
            if loop.is_closed():
                return
            try:
                loop.call_soon_threadsafe(_handle_command, control, line)
            except RuntimeError:
                return  # session finished while the line was being read

    thread = threading.Thread(target=_read, name="cabinet-stdin", daemon=True)
    thread.start()
    return thread


async def _deliberate(
    orchestrator: Orchestrator,
    brief_id: str,
    config: AppConfig,
    interactive: bool,
) -> DeliberationResult:
    control = open_control(brief_id, config.defaults.budget_sec)
    if interactive:
        console.print(
            f"[dim]Type to interject, {_EXTEND_COMMAND} for more time, {_STOP_COMMAND} to wrap up.[/dim]"
        )
        _start_stdin_reader(control, asyncio.get_running_loop())
    return await orchestrator.run(brief_id, on_turn=print_turn, control=control)


def _stored_result(store: SqliteStore, brief_id: str) -> DeliberationResult:
    """Rebuild a result view from persisted turns."""
    brief = store.get_brief(brief_id)
    if brief is None:
        raise click.ClickException(f"Brief not found: {brief_id}")
    turns = store.list_turns(brief_id)
    phases = [p for p in (*DEBATE_PHASES, Phase.SYNTHESIS) if any(t.phase == p for t in turns)]
    synthesis_turns = [t for t in turns if t.phase == Phase.SYNTHESIS and not t.is_error]
    synthesis = synthesis_from_json(synthesis_turns[-1].content) if synthesis_turns else None
    timed_out = any(t.phase == Phase.SYSTEM and t.content.startswith("Time limit reached") for t in turns)
    return DeliberationResult(brief=brief, transcript=turns, synthesis=synthesis, phases_run=phases, timed_out=timed_out)


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
def main(verbose: bool) -> None:
    """Cabinet -- a panel of AI ministers deliberates your decision.

    \b
    Examples:
      cabinet convene --goals "Should I take the new job?" --values "growth, family"
      cabinet convene --file brief.md --interactive
      cabinet rate BRIEF_ID MINISTER_ID=4 OTHER_ID=2
      cabinet decide BRIEF_ID 2 --notes "Going with the hybrid plan"
    """
    # Model responses may contain characters the Windows console codec cannot encode.
    if sys.platform == "win32":
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
        if hasattr(sys.stderr, "reconfigure"):
            sys.stderr.reconfigure(encoding="utf-8", errors="replace")

    load_dotenv()
    _setup_logging(verbose)


@main.command()
@click.option("--file", "brief_file", type=click.Path(exists=True), help="Read the brief from a .md file")
@click.option("--title", default=None, help="Brief title (default: first line of goals or file name)")
@click.option("--goals", default=None, help="What you want to decide")
@click.option("--constraints", default=None, help="Hard limits on the decision")
@click.option("--values", default=None, help="Comma-separated values to weigh")
@click.option("--budget", default=None, type=float, help="Session budget in seconds (default: from config)")
@click.option("--interactive", is_flag=True, help="Read interjections from stdin while the cabinet debates")
@click.option("--window", default=15.0, type=float, show_default=True,
              help="Seconds to wait for /more after the budget runs out (interactive only)")
@click.option("--output", "output_path", default=None, help="Output directory (default: from config)")
@click.option("--db", "db_path", default=None, help="SQLite database path (default: from config)")
def convene(
    brief_file: str | None,
    title: str | None,
    goals: str | None,
    constraints: str | None,
    values: str | None,
    budget: float | None,
    interactive: bool,
    window: float,
    output_path: str | None,
    db_path: str | None,
) -> None:
    """Convene the cabinet on a new brief."""
    config = _load_config_or_exit()
    brief_title, context = _brief_from_options(brief_file, title, goals, constraints, values)

    if budget is not None:
        config.defaults.budget_sec = budget
    if interactive:
        config.defaults.extension_window_sec = max(config.defaults.extension_window_sec, window)

    providers = _build_all_providers(config)
    if not providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    store = _open_store(config, db_path)
    try:
        brief = store.create_brief(brief_title, context)
        console.print(f"\n[bold cyan]Cabinet[/bold cyan] convened on brief {brief.id}")
        console.print(f"Providers: {', '.join(sorted(providers))}")
        console.print(f"Goals: [italic]{context.goals[:80]}{'...' if len(context.goals) > 80 else ''}[/italic]\n")

        orchestrator = Orchestrator(store, AgentInvoker(providers), config)
        try:
            result = asyncio.run(_deliberate(orchestrator, brief.id, config, interactive))
        except DeliberationError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            sys.exit(1)

        print_synthesis(result)
        saved_path = save_to_file(result, Path(output_path) if output_path else config.defaults.output_dir)
        console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
        console.print(f"[dim]Rate the ministers with: cabinet rate {brief.id} MINISTER_ID=1..5[/dim]")
    finally:
        store.close()


def _parse_rating_pairs(pairs: tuple[str, ...]) -> list[tuple[str, int]]:
    parsed = []
    for pair in pairs:
        minister_id, sep, value = pair.partition("=")
        if not sep or not minister_id.strip():
            raise click.BadParameter(f"Expected MINISTER_ID=RATING, got {pair!r}")
        try:
            parsed.append((minister_id.strip(), int(value)))
        except ValueError:
            raise click.BadParameter(f"Rating must be an integer 1-5, got {value!r}") from None
    return parsed


@main.command()
@click.argument("brief_id")
@click.argument("ratings", nargs=-1, required=True)
@click.option("--feedback", default=None, help="Feedback text stored with every rating")
@click.option("--not-helpful", is_flag=True, help="Mark the session as not helpful")
@click.option("--db", "db_path", default=None, help="SQLite database path (default: from config)")
def rate(brief_id: str, ratings: tuple[str, ...], feedback: str | None, not_helpful: bool, db_path: str | None) -> None:
    """Rate ministers after a session: MINISTER_ID=RATING (1-5)."""
    config = _load_config_or_exit()
    pairs = _parse_rating_pairs(ratings)
    store = _open_store(config, db_path)
    try:
        service = RatingService(store, config.reputation)
        try:
            outcomes = service.submit(
                brief_id,
                [
                    Rating(brief_id=brief_id, minister_id=mid, rating=value, feedback=feedback,
                           was_helpful=not not_helpful)
                    for mid, value in pairs
                ],
            )
        except KeyError:
            console.print(f"[bold red]Error:[/bold red] Brief not found: {brief_id}")
            sys.exit(1)
        except ValueError as exc:
            console.print(f"[bold red]Error:[/bold red] {exc}")
            sys.exit(1)

        table = Table(title="Ratings recorded")
        for column in ("Minister", "Avg", "Sessions", "Status", "Change"):
            table.add_column(column)
        for o in outcomes:
            change = f"{o.change.event}: {o.change.reason}" if o.change else ""
            table.add_row(o.name, f"{o.average:.2f}", str(o.sessions), o.status.value, change)
        console.print(table)
    finally:
        store.close()


@main.command()
@click.argument("brief_id")
@click.argument("option")
@click.option("--notes", default=None, help="Why you chose it")
@click.option("--db", "db_path", default=None, help="SQLite database path (default: from config)")
def decide(brief_id: str, option: str, notes: str | None, db_path: str | None) -> None:
    """Record the option you chose, by number or title."""
    config = _load_config_or_exit()
    store = _open_store(config, db_path)
    try:
        result = _stored_result(store, brief_id)
        if result.brief.status != BriefStatus.DONE:
            raise click.ClickException(f"Brief {brief_id} is {result.brief.status.value}")

        chosen = option
        options = result.synthesis.options if result.synthesis else []
        if option.isdigit() and options:
            n = int(option)
            if not 1 <= n <= len(options):
                raise click.ClickException(f"Option must be between 1 and {len(options)}")
            chosen = options[n - 1].title

        store.record_decision(Decision(brief_id=brief_id, chosen_option=chosen, notes=notes))
        console.print(f"[green]Decision recorded:[/green] {chosen}")
    finally:
        store.close()


@main.command()
@click.option("--all", "include_disabled", is_flag=True, help="Include disabled ministers")
@click.option("--db", "db_path", default=None, help="SQLite database path (default: from config)")
def ministers(include_disabled: bool, db_path: str | None) -> None:
    """List the cabinet with reputation standing."""
    config = _load_config_or_exit()
    store = _open_store(config, db_path)
    try:
        print_ministers(store.list_ministers(include_disabled=include_disabled))
    finally:
        store.close()


@main.command()
@click.argument("brief_id")
@click.option("--output", "output_path", default=None, help="Also save the transcript as markdown here")
@click.option("--db", "db_path", default=None, help="SQLite database path (default: from config)")
def transcript(brief_id: str, output_path: str | None, db_path: str | None) -> None:
    """Replay a stored session."""
    config = _load_config_or_exit()
    store = _open_store(config, db_path)
    try:
        result = _stored_result(store, brief_id)
        for turn in result.transcript:
            print_turn(turn)
        print_synthesis(result)
        decision = store.get_decision(brief_id)
        if decision is not None:
            console.print(f"\n[bold]Decision:[/bold] {decision.chosen_option}")
        if output_path:
            saved_path = save_to_file(result, Path(output_path))
            console.print(f"\n[dim]Saved to: {saved_path}[/dim]")
    finally:
        store.close()


@main.command()
def models() -> None:
    """Show the model catalog and each model's parameter dialect."""
    print_models()


@main.command()
def check() -> None:
    """Ping every configured provider."""
    config = _load_config_or_exit()
    providers = _build_all_providers(config)
    if not providers:
        console.print("[bold red]Error:[/bold red] No providers available. Check API keys in .env.")
        sys.exit(1)

    console.print("\n[bold]Checking providers...[/bold]")
    results: dict[str, tuple[bool, str]] = asyncio.run(run_health_checks(providers))
    failed = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")
            failed.append(name)
    if failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
