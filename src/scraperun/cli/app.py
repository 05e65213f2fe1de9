"""
Root Typer application for the scraperun CLI.

``scraperun run`` executes a scraper directory and streams its output to
this terminal as it is stored; ``scraperun runs`` inspects stored runs.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import typer
from typer import Typer

from scraperun.cli.utils import err_console, exit_code_for, open_repository, setup_logging
from scraperun.core.errors import ScrapeRunError
from scraperun.core.events import Event
from scraperun.core.events.memory import InMemoryEventBus
from scraperun.core.settings import build_executor, get_settings
from scraperun.execution.limiter import limit_output
from scraperun.orchestrator import RunOrchestrator
from scraperun.runs.models import Owner, Run
from scraperun.scrapers import LocalScraper

app = Typer(
    name="scraperun",
    help="scraperun - run scrapers in isolation and capture their output.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        from scraperun import __version__

        try:
            v = pkg_version("scraperun")
        except PackageNotFoundError:
            v = __version__
        typer.echo(f"scraperun {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """scraperun CLI - run scrapers and inspect their runs."""


# ── Commands ─────────────────────────────────────────────────────────────


def _parse_env(pairs: list[str]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        variables[key] = value
    return variables


@app.command("run")
def run_scraper(
    path: Path = typer.Argument(..., exists=True, file_okay=False, help="Scraper source directory"),
    env: list[str] = typer.Option([], "--env", "-e", help="Environment variable KEY=VALUE (repeatable)"),
    executor: str | None = typer.Option(None, "--executor", "-x", help="docker or local"),
    owner: str | None = typer.Option(None, "--owner", help="Owner the run is recorded under"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Run the scraper in PATH, streaming its output as it is captured."""
    overrides = {"executor": executor} if executor else {}
    settings = get_settings().model_copy(update=overrides)
    setup_logging(settings)

    path = path.resolve()
    owner_name = owner or settings.default_owner
    run_owner = Owner(name=owner_name, data_root=settings.data_root / owner_name, repo_root=path.parent)
    scraper = LocalScraper(
        name=path.name,
        repo_path=path,
        data_path=run_owner.data_root / path.name,
        variables=_parse_env(env),
    )
    run = Run(owner=run_owner, scraper=scraper)

    try:
        container_executor = build_executor(settings)
    except ScrapeRunError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e.message}")
        raise typer.Exit(code=2) from e

    repository = open_repository(database or str(settings.database_path))

    async def echo(event: Event) -> None:
        target = sys.stdout if event.payload["stream"] == "stdout" else sys.stderr
        target.write(event.payload["text"])
        target.flush()

    async def go() -> None:
        bus = InMemoryEventBus()
        await bus.subscribe("log_line.created", echo)
        orchestrator = RunOrchestrator(container_executor, repository, event_bus=bus)
        try:
            await orchestrator.start(run)
        finally:
            await bus.close()

    try:
        asyncio.run(go())
    finally:
        repository.close()

    err_console.print(
        f"\n[dim]run {run.id} {run.status.value} "
        f"(status {run.status_code}, {run.wall_time or 0:.2f}s)[/dim]"
    )
    raise typer.Exit(code=exit_code_for(run.status_code))


@app.command(
    "limit-output",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def limit_output_command(
    command: list[str] = typer.Argument(..., help="Command to run, with its arguments"),
    max_line_bytes: int | None = typer.Option(
        None, "--max-line-bytes", help="Flush lines longer than this many bytes early"
    ),
) -> None:
    """Run COMMAND, relaying its stdout and stderr one line at a time."""
    try:
        status = asyncio.run(limit_output(command, max_line_bytes=max_line_bytes))
    except ScrapeRunError as e:
        err_console.print(f"[bold red]Error[/bold red]: {e.message}")
        raise typer.Exit(code=127) from e
    raise typer.Exit(code=status)


# ── Sub-command registration ─────────────────────────────────────────────

from scraperun.cli.runs import app as runs_app  # noqa: E402

app.add_typer(runs_app, name="runs", help="Inspect and control stored runs.")
