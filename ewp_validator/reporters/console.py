"""Console reporter using Rich library for formatted CLI output.

Provides colorful, formatted output during validation including:
- A header for the validated endpoint
- Per-step results with status indicators
- Final summary table with step counts per status
"""

from typing import Optional

from rich import box
from rich.console import Console
from rich.rule import Rule
from rich.table import Table

from ewp_validator.models import Status, ValidatedApiInfo, ValidationReport, ValidationStepWithStatus
from ewp_validator.reporters.base import Reporter

STATUS_STYLES = {
    Status.SUCCESS: "green",
    Status.NOTICE: "blue",
    Status.WARNING: "yellow",
    Status.FAILURE: "red",
    Status.ERROR: "bold red",
}


def status_label(status: Status) -> str:
    style = STATUS_STYLES[status]
    return f"[{style}][{status.value.upper()}][/{style}]"


class ConsoleReporter(Reporter):
    """Rich-based console reporter for CLI output.

    Args:
        quiet: If True, suppress per-step output (only show summary)
        console: Console to print to, mostly useful in tests
    """

    def __init__(self, quiet: bool = False, console: Optional[Console] = None):
        # Use legacy_windows=True for ASCII-safe output on Windows consoles
        self.console = console or Console(legacy_windows=True)
        self.quiet = quiet

    def on_run_start(self, api_info: ValidatedApiInfo, url: str, version: str) -> None:
        """Displays a header with the validated endpoint."""
        self.console.print()
        self.console.print(
            Rule(
                f"[bold cyan]Validating: {api_info.display_name} {version}[/bold cyan]",
                style="cyan",
                characters="-",
            )
        )
        self.console.print(f"[dim]{url}[/dim]")

    def on_step_complete(self, step: ValidationStepWithStatus) -> None:
        """Displays the status of one step."""
        if self.quiet:
            return

        combination = f"[dim]{step.combination}[/dim] " if step.combination else ""
        self.console.print(f"  {status_label(step.status)} {combination}{step.name}")

        if step.message and step.status != Status.SUCCESS:
            self.console.print(f"     [dim]{step.message}[/dim]")

    def on_suite_abort(self, suite_name: str, reason: str) -> None:
        if self.quiet:
            return
        self.console.print(f"  [yellow]Suite {suite_name} stopped:[/yellow] {reason}")

    def on_run_complete(self, report: ValidationReport) -> None:
        """Displays a summary table of the run."""
        if not report.steps:
            self.console.print("[yellow]No results to display.[/yellow]")
            return

        self.console.print()
        self.console.print(Rule("[bold]Validation Summary[/bold]", style="magenta", characters="-"))

        table = Table(
            title="",
            show_header=True,
            header_style="bold magenta",
            border_style="dim",
            box=box.ASCII,
        )
        table.add_column("Status", no_wrap=True)
        table.add_column("Steps", justify="right", no_wrap=True)
        for status in Status:
            table.add_row(status_label(status), str(report.count(status)))
        self.console.print(table)

        verdict = "[bold green]PASSED[/bold green]" if report.passed else "[bold red]FAILED[/bold red]"
        self.console.print(
            f"{report.url}: {verdict} ({report.worst_status.value}) "
            f"in {report.duration_seconds:.1f}s"
        )
        self.console.print()
