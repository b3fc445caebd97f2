"""Reporting components for bulk operations.

This module renders bulk operation results, tracked jobs and connection
health with Rich formatting for console output.

Classes:
    ReportGenerator: Generates formatted reports for bulk operations
"""

from datetime import datetime
from typing import Dict, List, Sequence

from rich.columns import Columns
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..session.circuit_breaker import CircuitState
from ..session.models import ConnectionHealth
from .models import BulkOperationResult, ItemError, JobStatus, ProcessStatus

STATUS_STYLES = {
    JobStatus.RUNNING: "cyan",
    JobStatus.COMPLETED: "green",
    JobStatus.FAILED: "red",
    JobStatus.CANCELLED: "yellow",
}

CIRCUIT_STYLES = {
    CircuitState.CLOSED: "green",
    CircuitState.HALF_OPEN: "yellow",
    CircuitState.OPEN: "red",
}


class ReportGenerator:
    """Generates summary, error, process and health reports."""

    def __init__(self, console: Console):
        """Initialize report generator.

        Args:
            console: Rich console for output
        """
        self.console = console

    def generate_summary_report(self, result: BulkOperationResult):
        """Generate and display summary report.

        Args:
            result: Bulk operation result
        """
        if result.cancelled:
            outcome = "[yellow]Cancelled[/yellow]"
        elif result.is_success:
            outcome = "[green]Succeeded[/green]"
        else:
            outcome = "[red]Failed[/red]"

        summary_table = Table(show_header=False, box=None, padding=(0, 1))
        summary_table.add_column("Metric", style="bold cyan")
        summary_table.add_column("Value", style="bold")

        summary_table.add_row("Operation", result.operation_type)
        if result.job_id:
            summary_table.add_row("Job", result.job_id)
        summary_table.add_row("Outcome", outcome)
        summary_table.add_row("Total Processed", str(result.total_processed))
        summary_table.add_row("Successful", f"[green]{result.success_count}[/green]")
        summary_table.add_row("Failed", f"[red]{result.error_count}[/red]")
        summary_table.add_row("Success Rate", f"{result.success_rate:.1f}%")
        summary_table.add_row("Duration", self._format_duration(result.duration))
        if result.error_message:
            summary_table.add_row("Message", result.error_message)

        status_panels = []
        if result.success_count > 0:
            status_panels.append(
                Panel(f"[bold green]{result.success_count}[/bold green]\nSuccessful", style="green", width=15)
            )
        if result.error_count > 0:
            status_panels.append(
                Panel(f"[bold red]{result.error_count}[/bold red]\nFailed", style="red", width=15)
            )

        self.console.print()
        self.console.print(
            Panel(
                summary_table,
                title=f"[bold]Bulk {result.operation_type} Summary[/bold]",
                border_style="blue",
            )
        )

        if status_panels:
            self.console.print()
            self.console.print(Columns(status_panels, equal=True, expand=True))

    def generate_error_report(self, result: BulkOperationResult, max_examples: int = 3):
        """Generate summary of errors grouped by error type.

        Args:
            result: Bulk operation result
            max_examples: Number of example entities listed per error type
        """
        if not result.errors:
            self.console.print("[green]No errors encountered![/green]")
            return

        error_groups: Dict[str, List[ItemError]] = {}
        for error in result.errors:
            error_type = error.error_type or error.message.split(":")[0].strip() or "Unknown error"
            error_groups.setdefault(error_type, []).append(error)

        error_table = Table(title="Error Summary", show_header=True, header_style="bold red")
        error_table.add_column("Error Type", style="red", width=30)
        error_table.add_column("Count", justify="right", width=8)
        error_table.add_column("Examples", style="dim", width=60)

        for error_type, errors in error_groups.items():
            examples = [f"{error.entity_id or '-'}: {error.message}" for error in errors[:max_examples]]
            if len(errors) > max_examples:
                examples.append(f"... and {len(errors) - max_examples} more")
            error_table.add_row(error_type, str(len(errors)), "; ".join(examples))

        self.console.print()
        self.console.print(error_table)

    def render_processes(self, statuses: Sequence[ProcessStatus]):
        """Display tracked bulk jobs.

        Args:
            statuses: Process snapshots from the registry
        """
        if not statuses:
            self.console.print("[dim]No bulk operations are running[/dim]")
            return

        table = Table(title="Bulk Operations", show_header=True, header_style="bold")
        table.add_column("Job", style="cyan", no_wrap=True)
        table.add_column("Kind")
        table.add_column("Status")
        table.add_column("Progress", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Started")
        table.add_column("Actor", style="dim")
        table.add_column("Current Operation", style="dim")

        for status in statuses:
            style = STATUS_STYLES.get(status.status, "white")
            status_text = f"[{style}]{status.status.value}[/{style}]"
            if status.status == JobStatus.RUNNING and status.cancel_requested:
                status_text += " [yellow](cancelling)[/yellow]"
            table.add_row(
                status.job_id,
                status.kind,
                status_text,
                f"{status.processed_items}/{status.total_items} ({status.progress_percent:.0f}%)",
                str(status.failed_items),
                status.started_at.strftime("%Y-%m-%d %H:%M:%S"),
                status.actor or "-",
                status.current_operation or "-",
            )

        self.console.print(table)

    def render_connection_health(self, health: ConnectionHealth):
        """Display remote connection health.

        Args:
            health: Connection health snapshot
        """
        circuit_style = CIRCUIT_STYLES.get(health.circuit_state, "white")
        connected = "[green]Connected[/green]" if health.is_connected else "[red]Disconnected[/red]"

        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Metric", style="bold cyan")
        table.add_column("Value")

        table.add_row("Connection", connected)
        table.add_row("Session State", health.session_state.value)
        table.add_row("Circuit", f"[{circuit_style}]{health.circuit_state.value}[/{circuit_style}]")
        table.add_row("Credential Valid", "yes" if health.credential_valid else "no")
        table.add_row("Actor", health.actor or "-")
        table.add_row("Last Attempt", self._format_time(health.last_attempt))
        table.add_row("Last Success", self._format_time(health.last_success))
        if health.last_error:
            table.add_row("Last Error", f"[red]{health.last_error}[/red]")

        border_style = "green" if health.is_connected and health.circuit_state == CircuitState.CLOSED else "yellow"
        self.console.print(Panel(table, title="[bold]Remote Connection Health[/bold]", border_style=border_style))

    def _format_time(self, value) -> str:
        if not isinstance(value, datetime):
            return "never"
        return value.strftime("%Y-%m-%d %H:%M:%S")

    def _format_duration(self, seconds: float) -> str:
        """Format duration in seconds to human-readable string.

        Args:
            seconds: Duration in seconds

        Returns:
            Formatted duration string
        """
        if seconds < 0:
            return "N/A"

        if seconds < 1:
            return f"{seconds*1000:.0f}ms"
        elif seconds < 60:
            return f"{seconds:.2f}s"
        elif seconds < 3600:
            minutes = int(seconds // 60)
            remaining_seconds = seconds % 60
            return f"{minutes}m {remaining_seconds:.1f}s"
        else:
            hours = int(seconds // 3600)
            remaining_minutes = int((seconds % 3600) // 60)
            remaining_seconds = seconds % 60
            return f"{hours}h {remaining_minutes}m {remaining_seconds:.1f}s"
