"""
Rich console utilities for dual-mode CLI output.

Human mode (--format text):
    - Rich spinners, progress bars and colored tables
    - Panels for run and report summaries

Agent mode (--format json):
    - Messages and results buffered and written as one JSON object to stdout
    - No ANSI codes or spinners

Quiet mode (--quiet):
    - Tab-separated summary lines only

Examples:
    >>> from llm_rank_watcher.utils.console import output_mode, spinner, success
    >>> output_mode.format = "text"
    >>> with spinner("Loading..."):
    ...     config = load_config(path)
    >>> success("Config loaded")

    >>> output_mode.format = "json"
    >>> success("Config loaded")  # buffered
    >>> output_mode.flush_json()   # {"status": "success", "message": "Config loaded"}
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table


class OutputMode:
    """
    Output mode configuration for the CLI.

    Attributes:
        format: "text" (human) or "json" (agent)
        quiet: Suppress non-essential output
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        """
        Raises:
            ValueError: If format_type is not "text" or "json"
        """
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add a key to the JSON buffer (agent mode)."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """
        Write the buffered JSON to stdout and clear the buffer.

        No-op outside agent mode or when nothing was buffered.
        """
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()

    def reset(self) -> None:
        """Back to text mode with an empty buffer (used between CLI invocations)."""
        self.format = "text"
        self.quiet = False
        self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """
    Show a spinner while the block runs (human mode only).

    Examples:
        >>> with spinner("Loading config..."):
        ...     config = load_config(path)
    """
    if output_mode.is_human() and not output_mode.quiet:
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


class NoOpProgress:
    """Progress bar stand-in for agent and quiet modes."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass

    def add_task(self, _description: str, total: int | None = None) -> int:
        return 0

    def update(self, _task_id: int, **_kwargs: Any) -> None:
        pass


def create_progress_bar() -> Progress | NoOpProgress:
    """
    Progress bar for the prompts of a run.

    Returns a Rich Progress in human mode, a NoOpProgress otherwise.
    """
    if output_mode.is_human() and not output_mode.quiet:
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        )
    return NoOpProgress()


def success(message: str) -> None:
    """
    Print a success message.

    Human mode: green checkmark. Agent mode: buffered as status/message.
    """
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    """
    Print an error message.

    Human and quiet modes: red X on stderr. Agent mode: buffered as
    status/error.
    """
    if output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)
    else:
        console_err.print(f"[red]✗[/red] {message}", style="red", markup=True)


def warning(message: str) -> None:
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    """Print an info message. Silent for agents and in quiet mode."""
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_banner(version: str) -> None:
    """Startup banner (human mode only)."""
    if not output_mode.is_human() or output_mode.quiet:
        return

    banner = f"""
[bold cyan]╔{"═" * 39}╗
║   LLM Rank Watcher v{version:<17} ║
║   Top 3 rankings of your brand        ║
╚{"═" * 39}╝[/bold cyan]
"""
    console.print(banner)


def _position_cell(position: int | None) -> str:
    if position is None:
        return "[red]-[/red]"
    if position == 1:
        return "[bold green]#1[/bold green]"
    return f"[green]#{position}[/green]"


def print_outcomes_table(rows: list[dict], title: str = "Prompt Outcomes") -> None:
    """
    Table of prompt outcomes.

    Expected dict keys:
    - outcome_id (int), prompt_id (str), category_id (str | None)
    - ranking (list[str]): entity names in position order
    - brand_position (int | None), score (float), flags (list[str])

    Agent mode buffers the rows under "outcomes".
    """
    if output_mode.is_agent():
        output_mode.add_json("outcomes", rows)
        return

    if output_mode.quiet:
        return

    table = Table(title=title, box=box.ROUNDED)

    table.add_column("ID", justify="right", style="dim")
    table.add_column("Prompt", style="cyan", no_wrap=True)
    table.add_column("Category", style="magenta")
    table.add_column("Top 3")
    table.add_column("Brand", justify="center")
    table.add_column("Score", justify="right", style="green")
    table.add_column("Flags", style="yellow")

    for row in rows:
        table.add_row(
            str(row.get("outcome_id", "")),
            row.get("prompt_id", ""),
            row.get("category_id") or "-",
            ", ".join(row.get("ranking", [])) or "[dim]none[/dim]",
            _position_cell(row.get("brand_position")),
            f"{row.get('score', 0.0):.1f}",
            ", ".join(row.get("flags", [])),
        )

    console.print(table)


def print_run_summary(
    run_id: str,
    status: str,
    composite: float,
    completed: int,
    total: int,
    tokens_used: int,
) -> None:
    """
    Final run summary.

    Human mode: panel, green when completed, red when failed.
    Agent mode: adds the stats and flushes the JSON buffer.
    Quiet mode: run_id, status, composite, completed, total (tab-separated).
    """
    if output_mode.is_agent():
        output_mode.add_json("run_id", run_id)
        output_mode.add_json("run_status", status)
        output_mode.add_json("composite", composite)
        output_mode.add_json("completed_prompts", completed)
        output_mode.add_json("total_prompts", total)
        output_mode.add_json("tokens_used", tokens_used)
        output_mode.flush_json()
        return

    if output_mode.quiet:
        print(f"{run_id}\t{status}\t{composite:.2f}\t{completed}\t{total}")
        return

    summary_text = f"""
[bold]Run ID:[/bold] {run_id}
[bold]Composite:[/bold] {composite:.2f}
[bold]Prompts:[/bold] {completed}/{total}
[bold]Tokens:[/bold] {tokens_used:,}
"""

    if status == "completed":
        border_style = "green"
        title = "[bold green]✓ Run Completed[/bold green]"
    else:
        border_style = "red"
        title = f"[bold red]✗ Run {status.capitalize()}[/bold red]"

    console.print(
        Panel(summary_text.strip(), title=title, border_style=border_style, box=box.ROUNDED)
    )


def print_report_summary(report: dict) -> None:
    """
    Key metrics of a run report (see report.generator.RunReport.to_dict()).

    Agent mode buffers the whole report under "report".
    """
    if output_mode.is_agent():
        output_mode.add_json("report", report)
        return

    if output_mode.quiet:
        print(
            f"{report['run_id']}\t{report['composite']:.2f}\t"
            f"{report['top3_rate']}\t{report['top1_rate']}\t{report['mention_rate']}"
        )
        return

    table = Table(title=f"{report['brand_name']} · {report['run_id']}", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Composite", f"{report['composite']:.2f}")
    if report.get("has_intent_weights"):
        table.add_row("Intent weighted", f"{report['intent_weighted_score']:.2f}")
    for category, value in report.get("by_category", {}).items():
        table.add_row(f"  {category}", f"{value:.2f}")
    table.add_row("Format confidence", f"{report['format_confidence']}%")
    table.add_row("Mention rate", f"{report['mention_rate']}%")
    table.add_row("Top 3 rate", f"{report['top3_rate']}%")
    table.add_row("Top 1 rate", f"{report['top1_rate']}%")
    table.add_row("Overrides", str(report["override_count"]))

    console.print(table)
