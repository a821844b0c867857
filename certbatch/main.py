from __future__ import annotations

import sys
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TextColumn, TimeElapsedColumn

from certbatch.binding import preview_row
from certbatch.config import get_settings
from certbatch.data_sources import guess_column, load_rows
from certbatch.domain.errors import CertBatchError, UpgradeRequiredError
from certbatch.domain.models import (
    GenerationRequest,
    GenerationResult,
    JobStatus,
    OutputFormat,
    SceneGraph,
)
from certbatch.orchestrator import (
    BatchOrchestrator,
    ProgressCallback,
    available_backends,
    build_orchestrator,
)
from certbatch.rendering import available_formats, get_surface
from certbatch.reporter import print_generation_result
from certbatch.utils.logging import configure_logging

app = typer.Typer(help="Certificate batch generator CLI.")
console = Console()

POLL_INTERVAL_SECONDS = 0.1


def _fail(message: str, code: int = 1) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(code=code)


def run_interruptible(
    orchestrator: BatchOrchestrator,
    on_progress: Optional[ProgressCallback] = None,
    poll_interval: float = POLL_INTERVAL_SECONDS,
) -> GenerationResult:
    """
    Run the configured job on a worker thread and turn Ctrl-C into a
    cooperative cancel.

    The main thread only waits, so a KeyboardInterrupt lands here rather
    than in the middle of a row; the worker finishes its current row, then
    packages and records what it produced.
    """
    outcome: Dict[str, Any] = {}

    def _work() -> None:
        try:
            outcome["result"] = orchestrator.run(on_progress=on_progress)
        except BaseException as exc:  # re-raised on the main thread
            outcome["error"] = exc

    worker = threading.Thread(target=_work, name="certbatch-job", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(poll_interval)
    except KeyboardInterrupt:
        orchestrator.cancel()
        console.print("[yellow]Cancelling after the current row...[/yellow]")
        worker.join()
    if "error" in outcome:
        raise outcome["error"]
    return outcome["result"]


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"env={settings.app_env} base_url={settings.base_url} | "
        f"storage={settings.storage_backend} "
        f"(available: {', '.join(available_backends())}) | "
        f"mail={settings.mail_transport} formats={', '.join(available_formats())} | "
        f"free_generations={settings.free_generation_limit} "
        f"daily_emails={settings.daily_email_limit}/{settings.premium_daily_email_limit}"
    )


@app.command()
def preview(
    template: Path = typer.Argument(..., exists=True, dir_okay=False, help="Scene graph JSON."),
    data: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV or Excel file."),
    row: int = typer.Option(1, "--row", "-r", min=1, help="1-based data row to preview."),
    output: Path = typer.Option(Path("preview.pdf"), "--output", "-o", help="Output file."),
    fmt: OutputFormat = typer.Option(OutputFormat.PDF, "--format", "-f", help="pdf or png."),
    sheet: Optional[str] = typer.Option(None, "--sheet", help="Worksheet name for workbooks."),
) -> None:
    """
    Render a single data row without issuing a certificate id.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    try:
        graph = SceneGraph.from_json(template.read_text(encoding="utf-8"))
        _, rows = load_rows(data, sheet=sheet)
        if row > len(rows):
            _fail(f"Row {row} out of range; the file has {len(rows)} data row(s)")
        with get_surface(fmt, settings) as surface:
            content = surface.render(preview_row(graph, rows[row - 1]))
    except CertBatchError as exc:
        _fail(str(exc))
        return
    output.write_bytes(content)
    console.print(f"Preview written to [cyan]{output}[/cyan] ({len(content):,} bytes)")


@app.command()
def generate(
    template: Path = typer.Argument(..., exists=True, dir_okay=False, help="Scene graph JSON."),
    data: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV or Excel file."),
    name_column: Optional[str] = typer.Option(
        None, "--name-column", "-n", help="Column holding recipient names (guessed if omitted)."
    ),
    email_column: Optional[str] = typer.Option(
        None, "--email-column", "-e", help="Column holding recipient emails (guessed if omitted)."
    ),
    send_email: bool = typer.Option(False, "--send-email", help="Email each certificate."),
    fmt: OutputFormat = typer.Option(OutputFormat.PDF, "--format", "-f", help="pdf or png."),
    user: str = typer.Option("local", "--user", "-u", help="User id charged for quota."),
    issuer: str = typer.Option(..., "--issuer", help="Issuing organisation name."),
    title: str = typer.Option(..., "--title", help="Certificate title."),
    description: str = typer.Option("", "--description", help="Certificate description."),
    output: Path = typer.Option(Path("certificates.zip"), "--output", "-o", help="Archive path."),
    sheet: Optional[str] = typer.Option(None, "--sheet", help="Worksheet name for workbooks."),
    premium: bool = typer.Option(False, "--premium", help="Mark the user as premium first."),
) -> None:
    """
    Generate one certificate per data row and package them into a zip archive.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    try:
        headers, rows = load_rows(data, sheet=sheet)
        scene_graph_json = template.read_text(encoding="utf-8")
    except CertBatchError as exc:
        _fail(str(exc))
        return

    name_column = name_column or guess_column(headers, "name")
    if name_column is None:
        _fail(f"Could not guess the name column; pass --name-column. Columns: {', '.join(headers)}")
    if send_email and email_column is None:
        email_column = guess_column(headers, "email", "e-mail", "mail")

    orchestrator = build_orchestrator(settings)
    if premium:
        orchestrator.quota_gate.store.set_premium(user, True)

    if send_email and orchestrator.dispatcher is not None:
        try:
            orchestrator.dispatcher.email_service.check_bulk(user, len(rows))
        except UpgradeRequiredError as exc:
            _fail(str(exc), code=2)

    try:
        request = GenerationRequest(
            scene_graph_json=scene_graph_json,
            data_rows=rows,
            name_column=name_column,
            email_column=email_column,
            send_email=send_email,
            output_format=fmt,
            user_id=user,
            issuer_name=issuer,
            certificate_title=title,
            certificate_description=description,
            headers=headers,
        )
        orchestrator.start_job(request)
    except CertBatchError as exc:
        _fail(str(exc))
        return

    progress = Progress(
        TextColumn("{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
    )
    try:
        with progress:
            task = progress.add_task("Generating", total=len(rows))

            def _on_progress(done: int, total: int, label: str) -> None:
                progress.update(task, completed=done, total=total, description=label)

            result = run_interruptible(orchestrator, _on_progress)
    finally:
        orchestrator.close_job()

    if result.status is JobStatus.CANCELLED:
        console.print("[yellow]Cancelled; keeping the certificates produced so far.[/yellow]")
    if result.archive_bytes:
        output.write_bytes(result.archive_bytes)
        console.print(f"Archive written to [cyan]{output}[/cyan]")
    print_generation_result(result, console=console)
    if result.limit_reached:
        raise typer.Exit(code=2)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
