"""Run records - lifecycle, log lines and resource metrics.

This module defines ``Run``, ``LogLine`` and ``Metric``, the canonical
records for one execution attempt of a scraper.

A run's ``status`` and ``wall_time`` are never stored directly: both are
derived from the timestamps and ``status_code``. State changes go through
explicit transition methods (``mark_queued``, ``mark_started``,
``finish``) which validate the move and leave every derived value
consistent.

Valid transition graph::

    CREATED  → QUEUED | RUNNING
    QUEUED   → RUNNING
    RUNNING  → FINISHED_SUCCESS | FINISHED_ERROR | STOPPED
    FINISHED_SUCCESS, FINISHED_ERROR, STOPPED → (terminal)

Status codes::

    0    success
    130  stopped by request
    997  stream failure (output could not be read)
    998  infrastructure failure (executor could not start the process)
    999  setup failure (no recognised entrypoint)
    *    any other value is the scraper's own exit code

Tags:
    scraperun, runs, run-record, state-machine, log-lines, metrics

Doc-Types:
    api-reference
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum, IntEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from scraperun.core.errors import InvalidTransitionError, ReadOnlyFieldError

if TYPE_CHECKING:
    from scraperun.datastore import DiffStat


DEFAULT_RUN_NAME = "run"
TIME_OUTPUT_FILENAME = "time.output"
RECENT_WINDOW = timedelta(hours=24)


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


def _generate_id() -> str:
    return uuid.uuid4().hex[:12]


class StatusCode(IntEnum):
    """Reserved run status codes."""

    SUCCESS = 0
    STOPPED = 130
    STREAM_FAILED = 997
    INFRASTRUCTURE_FAILED = 998
    SETUP_FAILED = 999


class RunStatus(str, Enum):
    """Derived status of a run."""

    CREATED = "created"
    QUEUED = "queued"
    RUNNING = "running"
    FINISHED_SUCCESS = "finished_success"
    FINISHED_ERROR = "finished_error"
    STOPPED = "stopped"


class Stream(str, Enum):
    """The two output streams of a scraper process."""

    STDOUT = "stdout"
    STDERR = "stderr"


def terminal_status(status_code: int | None) -> RunStatus:
    """Map a status code onto the terminal status it produces."""
    if status_code == StatusCode.SUCCESS:
        return RunStatus.FINISHED_SUCCESS
    if status_code == StatusCode.STOPPED:
        return RunStatus.STOPPED
    return RunStatus.FINISHED_ERROR


def derive_status(
    queued_at: datetime | None,
    started_at: datetime | None,
    finished_at: datetime | None,
    status_code: int | None,
) -> RunStatus:
    """Compute a run's status from its timestamps and status code."""
    if finished_at is not None:
        return terminal_status(status_code)
    if started_at is not None:
        return RunStatus.RUNNING
    if queued_at is not None:
        return RunStatus.QUEUED
    return RunStatus.CREATED


def compute_wall_time(started_at: datetime | None, finished_at: datetime | None) -> float | None:
    """Seconds between start and finish, or None unless both are set."""
    if started_at is None or finished_at is None:
        return None
    return (finished_at - started_at).total_seconds()


# =============================================================================
# Owner / Scraper
# =============================================================================


@dataclass
class Owner:
    """The user or organisation a run belongs to.

    ``data_root`` and ``repo_root`` are already owner-specific; a run's
    paths are ``<data_root>/<run name>`` and ``<repo_root>/<run name>``.
    """

    name: str
    data_root: Path
    repo_root: Path

    @classmethod
    def under(cls, name: str, data_root: str | Path, repo_root: str | Path) -> Owner:
        """Build an owner whose roots are ``<data_root>/<name>`` and ``<repo_root>/<name>``."""
        return cls(name=name, data_root=Path(data_root) / name, repo_root=Path(repo_root) / name)

    def to_param(self) -> str:
        return self.name


@runtime_checkable
class Scraper(Protocol):
    """A scraper-like entity a run can be associated with."""

    name: str
    git_url: str | None
    variables: Mapping[str, str]

    def current_revision_from_repo(self) -> str | None:
        ...

    def update_sqlite_db_size(self) -> None:
        ...

    def reindex(self) -> None:
        ...


# =============================================================================
# Metric / LogLine
# =============================================================================


@dataclass
class Metric:
    """Resource usage of one run, as reported by ``time -v``."""

    utime: float
    stime: float
    wall_time: float | None = None
    maxrss: int | None = None
    minflt: int | None = None
    majflt: int | None = None
    inblock: int | None = None
    oublock: int | None = None
    nvcsw: int | None = None
    nivcsw: int | None = None

    @property
    def cpu_time(self) -> float:
        return self.utime + self.stime

    def to_dict(self) -> dict[str, Any]:
        return {
            "utime": self.utime,
            "stime": self.stime,
            "cpu_time": self.cpu_time,
            "wall_time": self.wall_time,
            "maxrss": self.maxrss,
            "minflt": self.minflt,
            "majflt": self.majflt,
            "inblock": self.inblock,
            "oublock": self.oublock,
            "nvcsw": self.nvcsw,
            "nivcsw": self.nivcsw,
        }


@dataclass
class LogLine:
    """One flushed chunk of scraper output.

    ``number`` is unique and strictly increasing per run, starting at 1.
    ``text`` usually ends with a newline; the last line of a stream may be
    an unterminated fragment.
    """

    run_id: str
    stream: Stream
    number: int
    text: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "stream": self.stream.value,
            "number": self.number,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
        }


# =============================================================================
# Run
# =============================================================================


_DIFF_FIELDS = (
    "tables_added",
    "tables_removed",
    "tables_changed",
    "tables_unchanged",
    "records_added",
    "records_removed",
    "records_changed",
    "records_unchanged",
)


@dataclass
class Run:
    """One execution attempt of a scraper.

    Example:
        >>> owner = Owner.under("alice", "/var/scraperun/data", "/var/scraperun/repos")
        >>> run = Run(owner=owner)
        >>> run.mark_started()
        >>> run.finish(StatusCode.SUCCESS)
        >>> run.status
        <RunStatus.FINISHED_SUCCESS: 'finished_success'>
    """

    owner: Owner
    scraper: Scraper | None = None
    id: str = field(default_factory=_generate_id)

    # === TIMESTAMPS ===
    queued_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    # === RESULT ===
    status_code: int | None = None
    ip_address: str | None = None
    git_revision: str | None = None
    metric: Metric | None = None

    # === DATA STORE DIFF ===
    tables_added: int | None = None
    tables_removed: int | None = None
    tables_changed: int | None = None
    tables_unchanged: int | None = None
    records_added: int | None = None
    records_removed: int | None = None
    records_changed: int | None = None
    records_unchanged: int | None = None

    # -- derived values -------------------------------------------------

    @property
    def wall_time(self) -> float | None:
        """Seconds from start to finish; None until both are set."""
        return compute_wall_time(self.started_at, self.finished_at)

    @wall_time.setter
    def wall_time(self, value: float | None) -> None:
        raise ReadOnlyFieldError("wall_time")

    @property
    def status(self) -> RunStatus:
        return derive_status(self.queued_at, self.started_at, self.finished_at, self.status_code)

    @property
    def queued(self) -> bool:
        return self.queued_at is not None and self.started_at is None and self.finished_at is None

    @property
    def running(self) -> bool:
        return self.started_at is not None and self.finished_at is None

    @property
    def finished(self) -> bool:
        return self.finished_at is not None

    @property
    def finished_successfully(self) -> bool:
        return self.status_code == StatusCode.SUCCESS

    @property
    def finished_with_errors(self) -> bool:
        return self.status_code is not None and self.status_code != StatusCode.SUCCESS

    def finished_recently(self, now: datetime | None = None) -> bool:
        """True if the run finished within the last 24 hours."""
        if self.finished_at is None:
            return False
        return self.finished_at > (now or utcnow()) - RECENT_WINDOW

    @property
    def cpu_time(self) -> float | None:
        return self.metric.cpu_time if self.metric else None

    # -- naming and paths -----------------------------------------------

    @property
    def name(self) -> str:
        # Runs of uploaded code have no scraper attached.
        return self.scraper.name if self.scraper else DEFAULT_RUN_NAME

    @property
    def data_path(self) -> Path:
        return self.owner.data_root / self.name

    @property
    def repo_path(self) -> Path:
        return self.owner.repo_root / self.name

    @property
    def time_output_path(self) -> Path:
        return self.data_path / TIME_OUTPUT_FILENAME

    @property
    def container_name(self) -> str:
        return f"{self.owner.to_param()}_{self.name}_{self.id}"

    @property
    def env_variables(self) -> list[tuple[str, str]]:
        if self.scraper is None:
            return []
        return list(self.scraper.variables.items())

    # -- transitions ----------------------------------------------------

    def mark_queued(self, at: datetime | None = None) -> None:
        """CREATED → QUEUED."""
        if self.status is not RunStatus.CREATED:
            raise InvalidTransitionError(self.status.value, RunStatus.QUEUED.value, self.id)
        self.queued_at = at or utcnow()

    def mark_started(self, at: datetime | None = None, git_revision: str | None = None) -> None:
        """CREATED/QUEUED → RUNNING. A run never re-enters RUNNING."""
        if self.status not in (RunStatus.CREATED, RunStatus.QUEUED):
            raise InvalidTransitionError(self.status.value, RunStatus.RUNNING.value, self.id)
        self.started_at = at or utcnow()
        self.git_revision = git_revision

    def finish(self, status_code: int, at: datetime | None = None) -> float | None:
        """RUNNING → terminal. Returns the derived wall time."""
        if not self.running:
            raise InvalidTransitionError(
                self.status.value, terminal_status(status_code).value, self.id
            )
        self.status_code = int(status_code)
        self.finished_at = at or utcnow()
        return self.wall_time

    def apply_diffstat(self, diffstat: DiffStat) -> None:
        self.tables_added = diffstat.tables.added
        self.tables_removed = diffstat.tables.removed
        self.tables_changed = diffstat.tables.changed
        self.tables_unchanged = diffstat.tables.unchanged
        self.records_added = diffstat.records.added
        self.records_removed = diffstat.records.removed
        self.records_changed = diffstat.records.changed
        self.records_unchanged = diffstat.records.unchanged

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for events and JSON output."""
        result: dict[str, Any] = {
            "id": self.id,
            "owner": self.owner.name,
            "name": self.name,
            "status": self.status.value,
            "status_code": self.status_code,
            "queued_at": self.queued_at.isoformat() if self.queued_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "wall_time": self.wall_time,
            "ip_address": self.ip_address,
            "git_revision": self.git_revision,
            "metric": self.metric.to_dict() if self.metric else None,
        }
        for name in _DIFF_FIELDS:
            result[name] = getattr(self, name)
        return result
