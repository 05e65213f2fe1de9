"""Scraper data store: backup, tidy, and the diff collaborator.

Each run writes into ``<data_path>/data.sqlite``. Before a run starts the
database is copied to ``data.sqlite.backup`` so that, afterwards, a diff
engine can compare the two snapshots and report how many tables and
records were added, removed, changed or left unchanged.

The diff algorithm itself is not part of this package. Anything
implementing ``DiffEngine`` can be plugged into the orchestrator;
``NullDiffEngine`` (the default) reports nothing.

Tags:
    scraperun, datastore, sqlite, backup, diff
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from scraperun.core.logging import get_logger

logger = get_logger(__name__)

SQLITE_DB_FILENAME = "data.sqlite"
SQLITE_DB_BACKUP_FILENAME = "data.sqlite.backup"


@dataclass(frozen=True)
class DiffCounts:
    added: int = 0
    removed: int = 0
    changed: int = 0
    unchanged: int = 0


@dataclass(frozen=True)
class DiffStat:
    """Table-level and record-level change counts between two snapshots."""

    tables: DiffCounts
    records: DiffCounts


@runtime_checkable
class DiffEngine(Protocol):
    def diffstat(self, before: Path, after: Path) -> DiffStat | None:
        ...


class NullDiffEngine:
    """Diff engine that never has anything to report."""

    def diffstat(self, before: Path, after: Path) -> DiffStat | None:
        return None


def diffstat_safe(engine: DiffEngine, before: Path, after: Path) -> DiffStat | None:
    """Run the diff engine; a failing engine is logged and yields None."""
    try:
        return engine.diffstat(before, after)
    except Exception as exc:
        logger.warning(
            "diffstat_failed",
            before=str(before),
            after=str(after),
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return None


class DataStore:
    """The data directory of one scraper."""

    def __init__(self, data_path: str | Path) -> None:
        self.data_path = Path(data_path)

    @property
    def sqlite_db_path(self) -> Path:
        return self.data_path / SQLITE_DB_FILENAME

    @property
    def sqlite_db_backup_path(self) -> Path:
        return self.data_path / SQLITE_DB_BACKUP_FILENAME

    def backup(self) -> None:
        """Snapshot the database so the run can be diffed afterwards."""
        if self.sqlite_db_path.exists():
            shutil.copy2(self.sqlite_db_path, self.sqlite_db_backup_path)
            logger.debug("datastore_backed_up", path=str(self.sqlite_db_backup_path))

    def tidy(self) -> None:
        """Remove everything in the data directory except the database."""
        if not self.data_path.is_dir():
            return
        for entry in self.data_path.iterdir():
            if entry.name == SQLITE_DB_FILENAME:
                continue
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()

    def size(self) -> int | None:
        """Size of the database in bytes, None when there is no database."""
        if not self.sqlite_db_path.exists():
            return None
        return self.sqlite_db_path.stat().st_size
