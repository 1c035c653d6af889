import logging
from typing import Any, Dict, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tenantops.domain.interfaces.user_interface import UserInterface
from tenantops.domain.models.batch import BatchReport, ItemStatus
from tenantops.domain.models.classification import ErrorClassification, Severity

logger = logging.getLogger(__name__)

_SEVERITY_STYLES = {
    Severity.LOW: "green",
    Severity.MEDIUM: "yellow",
    Severity.HIGH: "bold red",
}

_STATUS_STYLES = {
    ItemStatus.SUCCEEDED: "green",
    ItemStatus.ALREADY_EXISTS: "cyan",
    ItemStatus.FAILED: "bold red",
    ItemStatus.SKIPPED: "dim",
    ItemStatus.CANCELLED: "yellow",
}


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_classification(self, message: str, classification: ErrorClassification) -> None:
        """Shows how an error message is classified."""
        table = Table(show_header=False, box=ROUNDED, border_style="cyan", padding=(0, 1))
        table.add_column("Field", style="bold cyan")
        table.add_column("Value")
        table.add_row("Message", message or "[dim](empty)[/dim]")
        table.add_row("Category", classification.category.value)
        table.add_row("Retryable", "yes" if classification.retryable else "no")
        table.add_row("Backoff multiplier", f"{classification.backoff_multiplier:g}")
        severity_style = _SEVERITY_STYLES[classification.severity]
        table.add_row("Severity", f"[{severity_style}]{classification.severity.value}[/{severity_style}]")
        table.add_row("Matched pattern", classification.matched_pattern or "[dim]none[/dim]")
        self.console.print(table)

    def display_backoff_schedule(self, category: str, delays: List[float]) -> None:
        """Shows the delay waited after each failed attempt."""
        table = Table(title=f"Backoff schedule: {category}", box=ROUNDED, border_style="cyan")
        table.add_column("After attempt", justify="right")
        table.add_column("Delay (s)", justify="right")
        table.add_column("Cumulative (s)", justify="right")
        total = 0.0
        for attempt, delay in enumerate(delays, start=1):
            total += delay
            table.add_row(str(attempt), f"{delay:.2f}", f"{total:.2f}")
        self.console.print(table)

    def display_settings(self, settings: Dict[str, Any]) -> None:
        table = Table(title="Resilience settings", box=SIMPLE, border_style="cyan")
        table.add_column("Setting", style="bold")
        table.add_column("Value")
        for key, value in settings.items():
            table.add_row(key, str(value))
        self.console.print(table)

    def display_batch_report(self, report: BatchReport) -> None:
        """Renders per-item outcomes in input order followed by the counters."""
        logger.debug(f"Rendering batch report with {report.total} item(s)")
        table = Table(box=ROUNDED, border_style="cyan", show_lines=False)
        table.add_column("#", justify="right", style="dim")
        table.add_column("Item")
        table.add_column("Status")
        table.add_column("Attempts", justify="right")
        table.add_column("Elapsed (s)", justify="right")
        table.add_column("Category")
        table.add_column("Error", overflow="fold")
        for result in report.items:
            style = _STATUS_STYLES[result.status]
            table.add_row(
                str(result.index + 1),
                str(result.key),
                f"[{style}]{result.status.value}[/{style}]",
                str(result.attempts),
                f"{result.elapsed_seconds:.2f}",
                result.classification.category.value if result.classification else "",
                result.error_message or "",
            )
        self.console.print(table)

        summary = (
            f"Total: {report.total}  Succeeded: {report.succeeded}  Failed: {report.failed}  "
            f"Retried: {report.retried}  Already existed: {report.already_exists}  "
            f"Skipped: {report.skipped}  Cancelled: {report.cancelled}  "
            f"Duration: {report.duration_seconds:.2f}s"
        )
        border = "red" if report.failed else "green"
        self.console.print(Panel(Text(summary), title="Batch summary", border_style=border, box=SIMPLE))
