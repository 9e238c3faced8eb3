"""Rich console output and markdown export for deliberations."""

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

from concord.models import Deliberation, Response
from concord.providers.registry import PROVIDERS, display_name

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(text: str, words: int = 50) -> str:
    """Return first N words of a response."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def _format_time(value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _color(provider: str) -> str:
    info = PROVIDERS.get(provider)
    return info.color if info else "white"


def export_markdown(deliberation: Deliberation) -> str:
    """Render a deliberation as a markdown document for copy-out."""
    lines: list[str] = [
        "# Concord Deliberation",
        "",
        f"**Query:** {deliberation.query}",
        "",
        f"**Models:** {', '.join(display_name(m) for m in deliberation.enabled_models)}",
        "",
        f"**Completed:** {_format_time(deliberation.completed_at or deliberation.created_at)}",
        "",
        "---",
        "",
    ]

    for index, rnd in enumerate(deliberation.rounds, start=1):
        lines.append(f"## Round {index}")
        lines.append("")
        for model_id in deliberation.enabled_models:
            response = rnd.responses.get(model_id)
            if response and response.text:
                lines.append(f"### {display_name(model_id)}")
                lines.append("")
                lines.append(response.text)
                lines.append("")

    if deliberation.synthesis.response:
        lines += [
            "---",
            "",
            "## Synthesis",
            "",
            deliberation.synthesis.response,
        ]

    return "\n".join(lines)


def save_to_file(deliberation: Deliberation, output_dir: Path, slug_override: str | None = None) -> Path:
    """Save the exported deliberation as a markdown file.

    Args:
        deliberation: The deliberation to export.
        output_dir: Directory to save the file in.
        slug_override: If provided, use this as the filename stem instead of
            deriving one from the query text.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    slug = slug_override if slug_override is not None else _slug(deliberation.query)
    filepath = output_dir / f"{timestamp}_{slug}.md"

    filepath.write_text(export_markdown(deliberation), encoding="utf-8")
    logger.info("Deliberation saved to: %s", filepath)
    return filepath


def _status_label(response: Response) -> str:
    if response.error:
        return f"[red]error: {response.error}[/red]"
    if response.status is None:
        return "no status"
    return response.status.value.upper()


def print_round_summary(deliberation: Deliberation, round_index: int) -> None:
    """Print a brief summary of one round's responses to the console."""
    rnd = deliberation.rounds[round_index]
    console.print(Rule(f"[bold cyan]Round {rnd.number} Summary[/bold cyan]"))
    for model_id in deliberation.enabled_models:
        response = rnd.responses.get(model_id, Response())
        console.print(
            Panel(
                _preview(response.text) or "[dim](no response)[/dim]",
                title=f"[bold]{display_name(model_id)}[/bold]",
                subtitle=_status_label(response),
                border_style=_color(model_id),
            )
        )


def print_synthesis(deliberation: Deliberation) -> None:
    """Print the full synthesis to the console using Rich markdown."""
    console.print(Rule("[bold green]Synthesis[/bold green]"))
    console.print(
        Text(
            f"Synthesized by: {display_name(deliberation.synthesis_model.provider)} | "
            f"Rounds: {len(deliberation.rounds)} | "
            f"Models: {', '.join(display_name(m) for m in deliberation.enabled_models)}",
            style="dim",
        )
    )
    console.print(Markdown(deliberation.synthesis.response))


def print_history(history: list[Deliberation]) -> None:
    """Print the history list, newest first."""
    if not history:
        console.print("[dim]No completed deliberations.[/dim]")
        return
    table = Table(title="History")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Completed")
    table.add_column("Rounds", justify="right")
    table.add_column("Models")
    table.add_column("Query")
    for d in history:
        table.add_row(
            d.id or "-",
            _format_time(d.completed_at),
            str(len(d.rounds)),
            ", ".join(display_name(m) for m in d.enabled_models),
            d.query[:60] + ("..." if len(d.query) > 60 else ""),
        )
    console.print(table)
