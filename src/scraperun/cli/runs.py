"""
CLI: ``scraperun runs`` - stored run inspection and control.
"""

from __future__ import annotations

import asyncio

import typer

from scraperun.cli.utils import (
    console,
    err_console,
    load_run,
    open_repository,
    output_log_lines,
    output_run,
    setup_logging,
)
from scraperun.core.errors import InvalidTransitionError
from scraperun.core.settings import build_executor, get_settings
from scraperun.runs.models import Stream

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show detailed information about a run."""
    repository = open_repository(database)
    try:
        run = load_run(repository, run_id)
        output_run(run, as_json=json_out)
    finally:
        repository.close()


@app.command("logs")
def show_logs(
    run_id: str = typer.Argument(..., help="Run ID"),
    stream: Stream | None = typer.Option(None, "--stream", "-s", help="Only stdout or stderr"),
    raw: bool = typer.Option(False, "--raw", help="Print the text exactly as captured"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the captured output of a run, in order."""
    repository = open_repository(database)
    try:
        load_run(repository, run_id)
        lines = repository.list_log_lines(run_id, stream)
    finally:
        repository.close()

    if raw:
        console.file.write("".join(line.text for line in lines))
        return
    output_log_lines(lines, as_json=json_out)


@app.command("stop")
def stop_run(
    run_id: str = typer.Argument(..., help="Run ID"),
    executor: str | None = typer.Option(None, "--executor", "-x", help="docker or local"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Stop a running run; it finishes with status 130."""
    from scraperun.core.events.memory import InMemoryEventBus
    from scraperun.orchestrator import RunOrchestrator

    overrides = {"executor": executor} if executor else {}
    settings = setup_logging(get_settings().model_copy(update=overrides))

    repository = open_repository(database)
    try:
        run = load_run(repository, run_id)
        orchestrator = RunOrchestrator(
            build_executor(settings), repository, event_bus=InMemoryEventBus()
        )
        try:
            asyncio.run(orchestrator.stop(run))
        except InvalidTransitionError as e:
            err_console.print(f"[bold red]Error[/bold red]: run {run_id} is {run.status.value}, not running")
            raise typer.Exit(code=1) from e
    finally:
        repository.close()

    console.print(f"Stopped run {run_id}")
