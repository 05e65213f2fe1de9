"""Run repository - persistent record of runs, log lines and metrics.

The orchestrator is the single writer of run state; the log sink appends
log lines. Both talk to a ``RunRepository``. Two implementations ship:

- ``InMemoryRunRepository`` for tests and one-off runs
- ``SqliteRunRepository`` backed by a sqlite3 database

Architecture:

    .. code-block:: text

        ┌──────────────────┐     ┌──────────────────────────┐
        │ scraperun_runs   │────>│ scraperun_log_lines      │
        │ (one row / run)  │     │ (append-only, numbered)  │
        └────────┬─────────┘     └──────────────────────────┘
                 │
                 ▼
        ┌──────────────────┐
        │ scraperun_metrics│
        │ (0..1 per run)   │
        └──────────────────┘

Example:
    >>> repo = SqliteRunRepository(":memory:")
    >>> repo.save_run(run)
    >>> repo.add_log_line(LogLine(run_id=run.id, stream=Stream.STDOUT, number=1, text="hi\\n"))
    >>> repo.max_log_number(run.id)
    1
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from scraperun.runs.models import LogLine, Metric, Owner, Run, Stream
from scraperun.scrapers import LocalScraper


@runtime_checkable
class RunRepository(Protocol):
    def save_run(self, run: Run) -> None:
        ...

    def get_run(self, run_id: str) -> Run | None:
        ...

    def add_log_line(self, line: LogLine) -> None:
        ...

    def max_log_number(self, run_id: str) -> int | None:
        ...

    def list_log_lines(self, run_id: str, stream: Stream | None = None) -> list[LogLine]:
        ...

    def save_metric(self, run_id: str, metric: Metric) -> None:
        ...


class InMemoryRunRepository:
    """Dictionary-backed repository."""

    def __init__(self) -> None:
        self.runs: dict[str, Run] = {}
        self.log_lines: dict[str, list[LogLine]] = {}
        self.metrics: dict[str, Metric] = {}

    def save_run(self, run: Run) -> None:
        self.runs[run.id] = run

    def get_run(self, run_id: str) -> Run | None:
        return self.runs.get(run_id)

    def add_log_line(self, line: LogLine) -> None:
        lines = self.log_lines.setdefault(line.run_id, [])
        if any(existing.number == line.number for existing in lines):
            raise ValueError(f"Duplicate log line number {line.number} for run {line.run_id}")
        lines.append(line)

    def max_log_number(self, run_id: str) -> int | None:
        lines = self.log_lines.get(run_id)
        if not lines:
            return None
        return max(line.number for line in lines)

    def list_log_lines(self, run_id: str, stream: Stream | None = None) -> list[LogLine]:
        lines = sorted(self.log_lines.get(run_id, []), key=lambda line: line.number)
        if stream is not None:
            lines = [line for line in lines if line.stream == stream]
        return lines

    def save_metric(self, run_id: str, metric: Metric) -> None:
        self.metrics[run_id] = metric


# =============================================================================
# SQLite
# =============================================================================

_SCHEMA = """
CREATE TABLE IF NOT EXISTS scraperun_runs (
    id TEXT PRIMARY KEY,
    owner_name TEXT NOT NULL,
    owner_data_root TEXT NOT NULL,
    owner_repo_root TEXT NOT NULL,
    has_scraper INTEGER NOT NULL DEFAULT 0,
    scraper_name TEXT,
    scraper_git_url TEXT,
    scraper_variables TEXT,
    queued_at TEXT,
    started_at TEXT,
    finished_at TEXT,
    wall_time REAL,
    status_code INTEGER,
    ip_address TEXT,
    git_revision TEXT,
    tables_added INTEGER,
    tables_removed INTEGER,
    tables_changed INTEGER,
    tables_unchanged INTEGER,
    records_added INTEGER,
    records_removed INTEGER,
    records_changed INTEGER,
    records_unchanged INTEGER
);

CREATE TABLE IF NOT EXISTS scraperun_log_lines (
    run_id TEXT NOT NULL REFERENCES scraperun_runs(id),
    number INTEGER NOT NULL,
    stream TEXT NOT NULL,
    text TEXT NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (run_id, number)
);

CREATE TABLE IF NOT EXISTS scraperun_metrics (
    run_id TEXT PRIMARY KEY REFERENCES scraperun_runs(id),
    utime REAL NOT NULL,
    stime REAL NOT NULL,
    wall_time REAL,
    maxrss INTEGER,
    minflt INTEGER,
    majflt INTEGER,
    inblock INTEGER,
    oublock INTEGER,
    nvcsw INTEGER,
    nivcsw INTEGER
);
"""

_RUN_COLUMNS = (
    "id", "owner_name", "owner_data_root", "owner_repo_root", "has_scraper",
    "scraper_name", "scraper_git_url", "scraper_variables",
    "queued_at", "started_at", "finished_at", "wall_time",
    "status_code", "ip_address", "git_revision",
    "tables_added", "tables_removed", "tables_changed", "tables_unchanged",
    "records_added", "records_removed", "records_changed", "records_unchanged",
)

_METRIC_COLUMNS = (
    "utime", "stime", "wall_time", "maxrss", "minflt", "majflt",
    "inblock", "oublock", "nvcsw", "nivcsw",
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SqliteRunRepository:
    """Run repository stored in a SQLite database.

    The schema is created on open, so a fresh path or ``":memory:"`` is
    ready to use immediately.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        if str(path) != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # =========================================================================
    # RUNS
    # =========================================================================

    def save_run(self, run: Run) -> None:
        """Insert or replace the run row (and its metric, if any)."""
        values = (
            run.id,
            run.owner.name,
            str(run.owner.data_root),
            str(run.owner.repo_root),
            int(run.scraper is not None),
            run.scraper.name if run.scraper else None,
            run.scraper.git_url if run.scraper else None,
            json.dumps(dict(run.scraper.variables)) if run.scraper else None,
            _iso(run.queued_at),
            _iso(run.started_at),
            _iso(run.finished_at),
            run.wall_time,
            run.status_code,
            run.ip_address,
            run.git_revision,
            run.tables_added,
            run.tables_removed,
            run.tables_changed,
            run.tables_unchanged,
            run.records_added,
            run.records_removed,
            run.records_changed,
            run.records_unchanged,
        )
        placeholders = ", ".join("?" for _ in _RUN_COLUMNS)
        self._conn.execute(
            f"INSERT OR REPLACE INTO scraperun_runs ({', '.join(_RUN_COLUMNS)}) "
            f"VALUES ({placeholders})",
            values,
        )
        self._conn.commit()
        if run.metric is not None:
            self.save_metric(run.id, run.metric)

    def get_run(self, run_id: str) -> Run | None:
        row = self._conn.execute(
            f"SELECT {', '.join(_RUN_COLUMNS)} FROM scraperun_runs WHERE id = ?",
            (run_id,),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_run(row)

    def _row_to_run(self, row: sqlite3.Row) -> Run:
        owner = Owner(
            name=row["owner_name"],
            data_root=Path(row["owner_data_root"]),
            repo_root=Path(row["owner_repo_root"]),
        )
        scraper = None
        if row["has_scraper"]:
            scraper = LocalScraper(
                name=row["scraper_name"],
                repo_path=owner.repo_root / row["scraper_name"],
                data_path=owner.data_root / row["scraper_name"],
                git_url=row["scraper_git_url"],
                variables=json.loads(row["scraper_variables"] or "{}"),
            )
        return Run(
            owner=owner,
            scraper=scraper,
            id=row["id"],
            queued_at=_parse(row["queued_at"]),
            started_at=_parse(row["started_at"]),
            finished_at=_parse(row["finished_at"]),
            status_code=row["status_code"],
            ip_address=row["ip_address"],
            git_revision=row["git_revision"],
            metric=self.get_metric(row["id"]),
            tables_added=row["tables_added"],
            tables_removed=row["tables_removed"],
            tables_changed=row["tables_changed"],
            tables_unchanged=row["tables_unchanged"],
            records_added=row["records_added"],
            records_removed=row["records_removed"],
            records_changed=row["records_changed"],
            records_unchanged=row["records_unchanged"],
        )

    # =========================================================================
    # LOG LINES
    # =========================================================================

    def add_log_line(self, line: LogLine) -> None:
        self._conn.execute(
            "INSERT INTO scraperun_log_lines (run_id, number, stream, text, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (line.run_id, line.number, line.stream.value, line.text, line.created_at.isoformat()),
        )
        self._conn.commit()

    def max_log_number(self, run_id: str) -> int | None:
        row = self._conn.execute(
            "SELECT MAX(number) FROM scraperun_log_lines WHERE run_id = ?",
            (run_id,),
        ).fetchone()
        return row[0]

    def list_log_lines(self, run_id: str, stream: Stream | None = None) -> list[LogLine]:
        sql = "SELECT run_id, number, stream, text, created_at FROM scraperun_log_lines WHERE run_id = ?"
        params: tuple = (run_id,)
        if stream is not None:
            sql += " AND stream = ?"
            params += (stream.value,)
        sql += " ORDER BY number"
        return [
            LogLine(
                run_id=row["run_id"],
                stream=Stream(row["stream"]),
                number=row["number"],
                text=row["text"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in self._conn.execute(sql, params).fetchall()
        ]

    # =========================================================================
    # METRICS
    # =========================================================================

    def save_metric(self, run_id: str, metric: Metric) -> None:
        values = tuple(getattr(metric, name) for name in _METRIC_COLUMNS)
        self._conn.execute(
            f"INSERT OR REPLACE INTO scraperun_metrics (run_id, {', '.join(_METRIC_COLUMNS)}) "
            f"VALUES (?, {', '.join('?' for _ in _METRIC_COLUMNS)})",
            (run_id, *values),
        )
        self._conn.commit()

    def get_metric(self, run_id: str) -> Metric | None:
        row = self._conn.execute(
            f"SELECT {', '.join(_METRIC_COLUMNS)} FROM scraperun_metrics WHERE run_id = ?",
            (run_id,),
        ).fetchone()
        if row is None:
            return None
        return Metric(**{name: row[name] for name in _METRIC_COLUMNS})
