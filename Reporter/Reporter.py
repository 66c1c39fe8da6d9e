"""
Reporter/Reporter.py — Live console output and JSON report generation.

Provides the :class:`Reporter` used by the CLI to print crawl progress and
workflow verdicts as they arrive, and to produce the final summary and
report file.
"""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, Optional, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)
from rich.table import Table

from Models import CrawlProgress, WorkflowExecutionResult

logger = logging.getLogger(__name__)

# Single shared console instance (stdout)
console = Console()

_VERDICT_STYLES = {
    "passed": "bold green",
    "failed": "bold red",
    "inconclusive": "bold yellow",
    "cancelled": "dim",
}


class Reporter:
    """Drives all user-visible output of a CLI run.

    Responsibilities:
    - Crawl progress and per-workflow verdict lines on stdout
    - Informational / error logging helpers
    - Final JSON report persistence
    - End-of-run summary table
    """

    def __init__(self, output_file: Optional[str] = None) -> None:
        self.output_file = output_file
        self.pages_crawled: int = 0
        self.error_pages: int = 0
        self.forms_kept: int = 0
        self.forms_filtered: int = 0
        self.verdicts: list[tuple[str, WorkflowExecutionResult]] = []

    # ------------------------------------------------------------------
    # Display helpers
    # ------------------------------------------------------------------

    def print_banner(self) -> None:
        console.print(
            Panel(
                "[bold cyan]FlowScout[/bold cyan]  |  Website workflow discovery and verification\n"
                "[dim]Submits real forms. Only run it against sites you are allowed to test.[/dim]",
                expand=False,
                style="bold white on black",
            )
        )

    def log_page(self, event: CrawlProgress) -> None:
        """Print one crawled page; used as the crawler's progress callback."""
        self.pages_crawled = event.pages_crawled
        if event.mode == "error":
            self.error_pages += 1
            style = "red"
        elif event.mode == "dynamic":
            style = "magenta"
        else:
            style = "green"
        console.print(
            f"[dim]\\[{event.pages_crawled}/{event.max_pages}][/dim] "
            f"[{style}]{event.mode:<7}[/{style}] depth={event.depth}  [cyan]{event.url}[/cyan]"
        )

    def log_result(self, name: str, result: WorkflowExecutionResult) -> None:
        """Record a workflow verdict and print it as a one-liner."""
        self.verdicts.append((name, result))
        style = _VERDICT_STYLES.get(result.status, "white")
        console.print(
            f"[{style}] {result.status.upper():<12}[/{style}] "
            f"[cyan]{name}[/cyan]  confidence=[yellow]{result.confidence:.2f}[/yellow]  "
            f"[dim]{result.reason}[/dim]"
        )
        for step in result.steps:
            if step.status == "error":
                logger.debug("Step %d failed: %s", step.index, step.error)

    def log_info(self, message: str) -> None:
        """Print a standard informational message (supports Rich markup)."""
        console.print(f"[dim]\\[*][/dim] {message}")

    def log_error(self, message: str) -> None:
        """Print an error message (supports Rich markup)."""
        console.print(f"[bold red]\\[!][/bold red] {message}")

    @contextmanager
    def testing_progress(self, total: int) -> Generator[Tuple[Progress, TaskID], None, None]:
        """Render a Rich progress bar while workflows execute.

        Yields ``(progress, task_id)``; callers ``progress.advance(task_id)``
        after each workflow.  Output from :meth:`log_result` is rendered above
        the live bar.
        """
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            console=console,
            transient=False,
        ) as progress:
            task_id = progress.add_task("[cyan]Executing…[/cyan]", total=total)
            yield progress, task_id

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, data: Any) -> None:
        """Serialise *data* to the JSON report file, when one was requested."""
        if not self.output_file:
            return
        try:
            Path(self.output_file).write_text(json.dumps(data, indent=2))
            console.print(f"\n[green]\\[+][/green] Report saved: [bold]{self.output_file}[/bold]")
        except OSError as exc:
            console.print(f"[red]\\[!][/red] Failed to save report: {exc}")

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def print_summary(self) -> None:
        """Print an end-of-run summary table."""
        table = Table(title="Run Summary", box=box.ROUNDED, show_header=True)
        table.add_column("Metric", style="bold cyan", min_width=22)
        table.add_column("Value", style="white", justify="right")

        table.add_row("Pages crawled", str(self.pages_crawled))
        if self.error_pages:
            table.add_row("Pages failed", f"[red]{self.error_pages}[/red]")
        table.add_row("Forms kept", str(self.forms_kept))
        table.add_row("Forms filtered", str(self.forms_filtered))

        if self.verdicts:
            counts = {status: 0 for status in _VERDICT_STYLES}
            for _, result in self.verdicts:
                counts[result.status] = counts.get(result.status, 0) + 1
            table.add_row("Workflows run", str(len(self.verdicts)))
            for status, style in _VERDICT_STYLES.items():
                if counts[status]:
                    table.add_row(status.capitalize(), f"[{style}]{counts[status]}[/{style}]")

        console.print()
        console.print(table)
