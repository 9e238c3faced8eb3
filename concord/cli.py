"""Click CLI: config loading, session setup, automated or manual deliberation, history."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import NoReturn

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table

from config.config_loader import AppConfig, credentials_from_env, load_config
from concord.deliberation import DeliberationSession, InvalidTransition, SessionNotFound
from concord.followup import FollowUpChat
from concord.healthcheck import run_health_checks
from concord.models import CallState, ModelSelection, Phase
from concord.output import export_markdown, print_history, print_round_summary, print_synthesis, save_to_file
from concord.providers.base import ConcordError
from concord.providers.registry import (
    PROVIDERS,
    ROUTER_ID,
    available_providers,
    display_name,
    get_provider,
    has_credential,
)
from concord.storage import JsonFileStore

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )
    # request lines carry the Gemini key as a query parameter
    for name in ("httpx", "httpcore"):
        logging.getLogger(name).setLevel(logging.WARNING)


def _fail(message: str) -> NoReturn:
    console.print(f"[bold red]Error:[/bold red] {message}")
    sys.exit(1)


def _build_session(config: AppConfig, storage_dir: Path) -> DeliberationSession:
    """Open the persisted session. Environment keys fill in any key not stored."""
    session = DeliberationSession(
        JsonFileStore(storage_dir),
        settings=config.defaults,
        prompts=config.prompts,
        invocation=config.invocation,
    )
    for provider, api_key in credentials_from_env(config).items():
        session.credentials.setdefault(provider, api_key)
    return session


def _parse_selection(value: str) -> ModelSelection:
    """``provider`` or ``provider:model``."""
    provider, _, model = value.partition(":")
    return ModelSelection(provider.strip(), model.strip() or None)


def _parse_overrides(values: tuple[str, ...]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for value in values:
        provider, sep, model = value.partition("=")
        if not sep or not model.strip():
            raise click.BadParameter(f"Expected PROVIDER=MODEL, got {value!r}", param_hint="--model")
        overrides[provider.strip()] = model.strip()
    return overrides


def _mask(api_key: str) -> str:
    if len(api_key) <= 8:
        return "*" * len(api_key)
    return f"{api_key[:4]}...{api_key[-4:]}"


def _check_panel(session: DeliberationSession) -> None:
    """Ping every participant and the synthesizer; ask before continuing on failures."""
    selections = [session.selection_for(p) for p in session.state.enabled_models]
    synth = session.synthesis_selection()
    if synth.provider not in session.state.enabled_models:
        selections.append(synth)

    console.print("\n[bold]Checking providers...[/bold]")
    results = asyncio.run(run_health_checks(
        selections, session.credentials, session.preferences.use_router, client=session.client,
    ))

    failed: list[str] = []
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {display_name(name)}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {display_name(name)}: {short_err}")
            failed.append(name)

    if failed and not click.confirm("\nSome providers failed. Continue anyway?", default=False):
        sys.exit(0)
    console.print()


def _print_progress(progress: Progress):
    def on_progress(provider: str, call_state: CallState, message: str | None = None) -> None:
        if call_state is CallState.COMPLETE:
            progress.print(f"[green]OK[/green]   {display_name(provider)}")
        elif call_state is CallState.ERROR:
            progress.print(f"[red]FAIL[/red] {display_name(provider)}: {message}")
    return on_progress


async def _run_automated(session: DeliberationSession) -> bool:
    """Drive the session, offering retries on failure. Returns True once complete."""
    while True:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:
            session.on_progress = _print_progress(progress)
            progress.add_task("Deliberating...", total=None)
            phase = await session.run_automated()
        session.on_progress = None

        if phase is Phase.COMPLETE:
            return True

        if phase is Phase.DELIBERATION and session.failed_models():
            names = ", ".join(display_name(p) for p in session.failed_models())
            if click.confirm(f"Round {session.state.current_round}: {names} failed. Retry?", default=True):
                continue
        elif phase is Phase.SYNTHESIS and session.state.synthesis.error:
            console.print(f"[red]Synthesis failed:[/red] {session.state.synthesis.error}")
            if click.confirm("Retry synthesis?", default=True):
                continue

        console.print("[yellow]Deliberation paused.[/yellow] Continue later with [bold]concord resume[/bold].")
        return False


def _edit_response(title: str, prompt: str) -> str:
    console.print(Panel(prompt, title=title, border_style="cyan"))
    marker = "# Paste the response below this line. Lines above it are ignored.\n"
    edited = click.edit(marker) or ""
    return edited.split(marker, 1)[-1].strip()


def _run_manual(session: DeliberationSession) -> bool:
    """Collect every response by hand. Returns True once complete."""
    while session.state.phase is Phase.DELIBERATION:
        number = session.state.current_round
        for provider in session.state.enabled_models:
            if session.current_responses[provider].text.strip():
                continue
            text = _edit_response(
                f"Round {number} prompt for {display_name(provider)}", session.prompt_for_model(provider),
            )
            if not text:
                console.print("[yellow]No response entered; deliberation saved.[/yellow]")
                return False
            session.update_response(provider, text)
        print_round_summary(session.state, number - 1)
        session.next_round()

    if session.state.phase is Phase.SYNTHESIS:
        if not session.state.synthesis.response.strip():
            text = _edit_response("Synthesis prompt", session.state.synthesis.prompt)
            if not text:
                console.print("[yellow]No synthesis entered; deliberation saved.[/yellow]")
                return False
            session.update_synthesis(text)
        session.complete()
    return session.state.phase is Phase.COMPLETE


def _drive(session: DeliberationSession, manual: bool, output_dir: Path) -> None:
    if manual or not session.preferences.automated:
        done = _run_manual(session)
    else:
        done = asyncio.run(_run_automated(session))
    if not done:
        return

    for index in range(len(session.state.rounds)):
        print_round_summary(session.state, index)
    print_synthesis(session.state)
    saved_path = save_to_file(session.state, output_dir)
    console.print(f"\n[dim]Saved to: {saved_path}[/dim]")


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.option("--settings", "settings_path", type=click.Path(dir_okay=False, path_type=Path), default=None,
              help="Path to settings.yaml (default: bundled config)")
@click.option("--storage-dir", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Where sessions, history and keys are kept (default: from config)")
@click.pass_context
def main(ctx: click.Context, verbose: bool, settings_path: Path | None, storage_dir: Path | None) -> None:
    """Concord -- multi-model deliberation until the models converge.

    \b
    Examples:
      concord ask "Should we use REST or GraphQL?"
      concord ask "Monorepo vs polyrepo?" --models anthropic,openai,google
      concord ask "SQL or NoSQL?" --model openai=gpt-4.1 --synthesizer anthropic
      concord keys set openrouter sk-or-...
      concord history
    """
    load_dotenv()
    _setup_logging(verbose)

    try:
        config = load_config(settings_path) if settings_path else load_config()
    except FileNotFoundError as exc:
        console.print(f"[bold red]Config error:[/bold red] {exc}")
        sys.exit(1)

    ctx.obj = _build_session(config, storage_dir or config.defaults.storage_dir)
    ctx.meta["config"] = config


@main.command()
@click.argument("question", required=False)
@click.option("--file", "question_file", type=click.Path(exists=True), help="Read the question from a file")
@click.option("--models", default=None, help="Comma-separated providers, e.g. anthropic,openai,google")
@click.option("--model", "overrides", multiple=True, help="Model override as PROVIDER=MODEL (repeatable)")
@click.option("--synthesizer", default=None, help="Synthesis model as PROVIDER or PROVIDER:MODEL")
@click.option("--router/--direct", "use_router", default=None, help="Route calls through OpenRouter")
@click.option("--auto/--manual", "automated", default=None,
              help="Call the APIs, or paste responses by hand (remembered for next time)")
@click.option("--output", "output_path", type=click.Path(file_okay=False, path_type=Path), default=None,
              help="Output directory (default: from config)")
@click.option("--skip-health-check", is_flag=True, default=False, help="Skip the API connectivity check")
@click.pass_context
def ask(
    ctx: click.Context,
    question: str | None,
    question_file: str | None,
    models: str | None,
    overrides: tuple[str, ...],
    synthesizer: str | None,
    use_router: bool | None,
    automated: bool | None,
    output_path: Path | None,
    skip_health_check: bool,
) -> None:
    """Start a new deliberation on QUESTION."""
    session: DeliberationSession = ctx.obj
    config: AppConfig = ctx.meta["config"]

    if question_file:
        question_text = Path(question_file).read_text(encoding="utf-8").strip()
    elif question:
        question_text = question
    else:
        _fail("Provide a QUESTION argument or --file.")

    if session.state.phase is Phase.COMPLETE:
        session.start_new()
    elif session.state.phase is not Phase.SETUP:
        _fail("A deliberation is in progress. Use [bold]concord resume[/bold] or [bold]concord new[/bold].")

    try:
        if models:
            session.set_enabled_models([m.strip() for m in models.split(",") if m.strip()])
        for provider, model in _parse_overrides(overrides).items():
            session.set_model_config(provider, model)
        if synthesizer:
            selection = _parse_selection(synthesizer)
            session.set_synthesis_model(selection.provider, selection.model)
        if use_router is not None:
            session.set_use_router(use_router)
        if automated is not None:
            session.set_automated(automated)
    except (ConcordError, ValueError) as exc:
        _fail(str(exc))

    manual = not session.preferences.automated
    if not manual:
        needed = set(session.state.enabled_models) | {session.state.synthesis_model.provider}
        missing = sorted(
            p for p in needed if not has_credential(session.credentials, p, session.preferences.use_router)
        )
        if missing:
            _fail(f"No API key for: {', '.join(missing)}. Use [bold]concord keys set[/bold] or .env.")

    session.set_query(question_text)
    if not session.start():
        _fail("The question is empty.")

    panel = ", ".join(display_name(p) for p in session.state.enabled_models)
    console.print(f"\n[bold cyan]Concord[/bold cyan]: {len(session.state.enabled_models)} models, "
                  f"up to {config.defaults.max_rounds} rounds")
    console.print(f"Panel: {panel}")
    console.print(f"Synthesizer: {display_name(session.state.synthesis_model.provider)}")
    console.print(f"Question: [italic]{question_text[:80]}{'...' if len(question_text) > 80 else ''}[/italic]\n")

    if not manual and not skip_health_check:
        _check_panel(session)

    _drive(session, manual, output_path or config.defaults.output_dir)


@main.command()
@click.option("--manual", is_flag=True, help="Paste the remaining responses by hand")
@click.option("--output", "output_path", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.pass_context
def resume(ctx: click.Context, manual: bool, output_path: Path | None) -> None:
    """Continue the deliberation in progress."""
    session: DeliberationSession = ctx.obj
    config: AppConfig = ctx.meta["config"]
    if session.state.phase in (Phase.SETUP, Phase.COMPLETE):
        _fail("No deliberation in progress.")
    console.print(f"Resuming round {session.state.current_round} ({session.state.phase.value}): "
                  f"[italic]{session.state.query[:80]}[/italic]")
    _drive(session, manual, output_path or config.defaults.output_dir)


@main.command()
@click.pass_obj
def new(session: DeliberationSession) -> None:
    """Discard the current deliberation (the model panel is kept)."""
    session.start_new()
    console.print("Started fresh. Panel: " + ", ".join(display_name(p) for p in session.state.enabled_models))


@main.command()
@click.pass_obj
def history(session: DeliberationSession) -> None:
    """List completed deliberations."""
    print_history(session.history)


@main.command()
@click.argument("deliberation_id")
@click.pass_obj
def show(session: DeliberationSession, deliberation_id: str) -> None:
    """Print a completed deliberation."""
    try:
        entry = session.get_history_entry(deliberation_id)
    except SessionNotFound as exc:
        _fail(str(exc))
    console.print(Markdown(export_markdown(entry)))


@main.command()
@click.argument("deliberation_id")
@click.option("--output", "output_path", type=click.Path(file_okay=False, path_type=Path), default=None)
@click.pass_context
def export(ctx: click.Context, deliberation_id: str, output_path: Path | None) -> None:
    """Save a completed deliberation as markdown."""
    session: DeliberationSession = ctx.obj
    config: AppConfig = ctx.meta["config"]
    try:
        entry = session.get_history_entry(deliberation_id)
    except SessionNotFound as exc:
        _fail(str(exc))
    saved = save_to_file(entry, output_path or config.defaults.output_dir)
    click.echo(f"Saved to: {saved}")


@main.command()
@click.argument("deliberation_id")
@click.pass_obj
def delete(session: DeliberationSession, deliberation_id: str) -> None:
    """Delete a deliberation from history."""
    if not session.delete_from_history(deliberation_id):
        _fail(f"No deliberation with id {deliberation_id}")
    click.echo(f"Deleted {deliberation_id}")


@main.command()
@click.argument("deliberation_id")
@click.pass_obj
def load(session: DeliberationSession, deliberation_id: str) -> None:
    """Make a completed deliberation the current session."""
    try:
        session.load_from_history(deliberation_id)
    except (SessionNotFound, InvalidTransition) as exc:
        _fail(str(exc))
    click.echo(f"Loaded {deliberation_id}")


@main.group()
def keys() -> None:
    """Manage API keys."""


@keys.command("set")
@click.argument("provider")
@click.argument("api_key")
@click.pass_obj
def keys_set(session: DeliberationSession, provider: str, api_key: str) -> None:
    """Store the API key for PROVIDER (or 'openrouter')."""
    try:
        info = get_provider(provider)
    except ConcordError as exc:
        _fail(str(exc))
    if info.key_prefix and not api_key.startswith(info.key_prefix):
        console.print(f"[yellow]Warning:[/yellow] {info.name} keys usually start with '{info.key_prefix}'")
    session.set_credential(provider, api_key)
    click.echo(f"Saved key for {info.name}")


@keys.command("remove")
@click.argument("provider")
@click.pass_obj
def keys_remove(session: DeliberationSession, provider: str) -> None:
    """Forget the stored API key for PROVIDER."""
    try:
        session.set_credential(provider, None)
    except ConcordError as exc:
        _fail(str(exc))
    click.echo(f"Removed key for {provider}")


@keys.command("list")
@click.pass_obj
def keys_list(session: DeliberationSession) -> None:
    """Show which keys are configured (masked)."""
    table = Table(title="API keys")
    table.add_column("Provider")
    table.add_column("Key")
    for provider in [ROUTER_ID, *PROVIDERS]:
        api_key = session.credentials.get(provider, "")
        table.add_row(get_provider(provider).name, _mask(api_key) if api_key else "[dim]not set[/dim]")
    console.print(table)


@main.command()
@click.pass_obj
def providers(session: DeliberationSession) -> None:
    """List the provider catalog and which providers are usable."""
    usable = set(available_providers(session.credentials))
    table = Table(title="Providers")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Default model")
    table.add_column("Usable")
    for info in PROVIDERS.values():
        table.add_row(
            info.id,
            f"{info.name} ({info.short_name})",
            info.default_model,
            "[green]yes[/green]" if info.id in usable else "[dim]no[/dim]",
        )
    console.print(table)


@main.command()
@click.option("--models", default=None, help="Comma-separated providers (default: current panel)")
@click.pass_obj
def check(session: DeliberationSession, models: str | None) -> None:
    """Ping providers to verify keys and connectivity."""
    names = [m.strip() for m in models.split(",")] if models else session.state.enabled_models
    try:
        results = asyncio.run(run_health_checks(
            [session.selection_for(n) for n in names], session.credentials, session.preferences.use_router,
            client=session.client,
        ))
    except ConcordError as exc:
        _fail(str(exc))
    for name in sorted(results):
        ok, err = results[name]
        status = "[green]OK  [/green]" if ok else f"[red]FAIL[/red] {err}"
        console.print(f"  {status} {display_name(name)}")
    if not all(ok for ok, _ in results.values()):
        sys.exit(1)


@main.command()
@click.argument("deliberation_id", required=False)
@click.option("--with", "provider", default=None, help="Model to chat with, PROVIDER or PROVIDER:MODEL")
@click.pass_obj
def chat(session: DeliberationSession, deliberation_id: str | None, provider: str | None) -> None:
    """Ask follow-up questions about a completed deliberation."""
    if deliberation_id:
        try:
            entry = session.get_history_entry(deliberation_id)
        except SessionNotFound as exc:
            _fail(str(exc))
    elif session.state.phase is Phase.COMPLETE:
        entry = session.state
    else:
        _fail("No completed deliberation. Pass an id from [bold]concord history[/bold].")

    selection = _parse_selection(provider) if provider else session.synthesis_selection()
    conversation = FollowUpChat.from_deliberation(
        entry, prompts=session.prompts, invocation=session.invocation, client=session.client,
    )
    console.print(f"Chatting with {display_name(selection.provider)}. Empty line to quit.")

    while True:
        question = click.prompt("You", default="", show_default=False)
        if not question.strip():
            break
        try:
            answer = asyncio.run(conversation.ask(
                question, selection, session.credentials, session.preferences.use_router,
            ))
        except ConcordError as exc:
            console.print(f"[red]{exc}[/red]")
            continue
        console.print(Panel(Markdown(answer), title=display_name(selection.provider)))


if __name__ == "__main__":
    main()
