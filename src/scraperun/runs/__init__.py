"""Run records (lifecycle, log lines, metrics) and where they are stored."""

from scraperun.runs.models import (
    LogLine,
    Metric,
    Owner,
    Run,
    RunStatus,
    Scraper,
    StatusCode,
    Stream,
    compute_wall_time,
    derive_status,
)
from scraperun.runs.repository import InMemoryRunRepository, RunRepository, SqliteRunRepository

__all__ = [
    "LogLine",
    "Metric",
    "Owner",
    "Run",
    "RunStatus",
    "Scraper",
    "StatusCode",
    "Stream",
    "compute_wall_time",
    "derive_status",
    "InMemoryRunRepository",
    "RunRepository",
    "SqliteRunRepository",
]
