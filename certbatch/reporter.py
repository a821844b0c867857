from __future__ import annotations

from typing import Optional

from rich import box
from rich.console import Console
from rich.table import Table

from certbatch.domain.models import DeliverySummary, GenerationResult

MAX_LISTED_FAILURES = 20


def print_generation_result(result: GenerationResult, console: Optional[Console] = None) -> None:
    """
    Render a batch outcome as a rich table, followed by per-row failures and
    the delivery summary when emails were sent.
    """
    console = console or Console()

    if result.limit_reached:
        remaining = result.remaining_quota if result.remaining_quota is not None else 0
        console.print(
            f"[bold yellow]Free generation limit reached.[/bold yellow] "
            f"{remaining} certificate(s) left; upgrade to premium for unlimited generation."
        )
        return

    stats = result.stats or {}
    table = Table(title="Certificate Batch", box=box.ROUNDED, show_header=True)
    table.add_column("Job", style="cyan", no_wrap=True)
    table.add_column("Status", style="bold")
    table.add_column("Rows", justify="right", style="magenta")
    table.add_column("Generated", justify="right", style="bold green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Duration (s)", justify="right", style="green")
    table.add_column("Rows/s", justify="right", style="green")
    table.add_column("Peak Memory (MB)", justify="right", style="yellow")

    mem_bytes = stats.get("peak_rss_bytes") or 0
    table.add_row(
        result.job_id[:12],
        result.status.value,
        f"{result.total_rows:,}",
        f"{len(result.generated_artifact_ids):,}",
        f"{len(result.errors):,}",
        f"{stats.get('duration_seconds', 0.0):.1f}",
        f"{stats.get('rows_per_second', 0.0):,.2f}",
        f"{mem_bytes / (1024 * 1024):.2f}",
    )
    console.print(table)

    if result.remaining_quota is not None:
        console.print(f"[dim]Free generations left: {result.remaining_quota}[/dim]")

    if result.errors:
        console.print(f"[red]{len(result.errors)} row(s) failed:[/red]")
        for error in result.errors[:MAX_LISTED_FAILURES]:
            console.print(f"  row {error.row_index + 1}: {error.message}")
        if len(result.errors) > MAX_LISTED_FAILURES:
            console.print(f"  ... and {len(result.errors) - MAX_LISTED_FAILURES} more")

    if result.delivery is not None:
        print_delivery_summary(result.delivery, console=console)


def print_delivery_summary(summary: DeliverySummary, console: Optional[Console] = None) -> None:
    console = console or Console()
    console.print(
        f"[bold]Emails:[/bold] [green]{summary.sent_count} sent[/green], "
        f"[red]{summary.failed_count} failed[/red]"
    )
    if not summary.failed:
        return

    table = Table(title="Failed Deliveries", box=box.ROUNDED)
    table.add_column("Row", justify="right", style="magenta")
    table.add_column("Recipient", style="cyan")
    table.add_column("Email")
    table.add_column("Error", style="red")
    for record in summary.failed[:MAX_LISTED_FAILURES]:
        row = str(record.row_index + 1) if record.row_index is not None else "-"
        table.add_row(row, record.recipient_name, record.email or "-", record.error or "")
    console.print(table)


__all__ = ["print_delivery_summary", "print_generation_result"]
