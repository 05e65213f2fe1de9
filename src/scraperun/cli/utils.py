"""
CLI utility helpers - output formatting and repository access.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from scraperun.core.logging import configure_logging
from scraperun.core.settings import ScrapeRunSettings, get_settings
from scraperun.runs.models import LogLine, Run
from scraperun.runs.repository import SqliteRunRepository

console = Console()
err_console = Console(stderr=True)


def setup_logging(settings: ScrapeRunSettings | None = None) -> ScrapeRunSettings:
    settings = settings or get_settings()
    json_format = None if settings.log_format == "auto" else settings.log_format == "json"
    configure_logging(level=settings.log_level, json_format=json_format, service="scraperun-cli")
    return settings


def open_repository(database: str | None = None) -> SqliteRunRepository:
    """Open the run database. Defaults to ``settings.database_path``."""
    return SqliteRunRepository(Path(database) if database else get_settings().database_path)


def load_run(repository: SqliteRunRepository, run_id: str) -> Run:
    run = repository.get_run(run_id)
    if run is None:
        err_console.print(f"[bold red]Error[/bold red]: no run with id {run_id}")
        raise typer.Exit(code=1)
    return run


def exit_code_for(status_code: int | None) -> int:
    """Process exit code for a run's status code (shells only keep 8 bits)."""
    if status_code is None:
        return 1
    return status_code if 0 <= status_code < 256 else 1


# ── Output helpers ───────────────────────────────────────────────────────


def output_run(run: Run, *, as_json: bool = False, title: str = "") -> None:
    data = run.to_dict()
    if as_json:
        console.print_json(json.dumps(data, default=str))
        return
    _print_dict(data, title=title or f"Run: {run.id}")


def output_log_lines(lines: list[LogLine], *, as_json: bool = False) -> None:
    if as_json:
        console.print_json(json.dumps([line.to_dict() for line in lines], default=str))
        return
    if not lines:
        console.print("[dim]No log lines.[/dim]")
        return
    table = Table(show_lines=False, pad_edge=False)
    table.add_column("#", justify="right")
    table.add_column("stream")
    table.add_column("text", overflow="fold")
    for line in lines:
        style = "red" if line.stream.value == "stderr" else None
        table.add_row(str(line.number), line.stream.value, line.text.rstrip("\n"), style=style)
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        if isinstance(v, dict):
            console.print(f"  [cyan]{k}[/cyan]:")
            for sub_k, sub_v in v.items():
                console.print(f"    [cyan]{sub_k}[/cyan]: {sub_v}")
        else:
            console.print(f"  [cyan]{k}[/cyan]: {v}")
