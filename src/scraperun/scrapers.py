"""Scraper entities backed by a directory on disk.

``LocalScraper`` is the scraper-like entity used by the CLI and by the
SQLite repository when loading runs back. It satisfies the
``scraperun.runs.models.Scraper`` protocol: it knows its name, its
environment variables, how to read the current source revision, and the
post-run housekeeping hooks (database size accounting, reindexing).

Cloning and pulling the source repository is an external concern; see
``RepoSynchroniser`` in :mod:`scraperun.orchestrator`.
"""

from __future__ import annotations

import subprocess
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from scraperun.core.logging import get_logger
from scraperun.datastore import DataStore

logger = get_logger(__name__)


@dataclass
class LocalScraper:
    """A scraper whose source lives in ``repo_path`` and data in ``data_path``."""

    name: str
    repo_path: Path
    data_path: Path
    git_url: str | None = None
    variables: Mapping[str, str] = field(default_factory=dict)
    sqlite_db_size: int | None = None
    indexed_at: datetime | None = None

    def current_revision_from_repo(self) -> str | None:
        """Commit hash checked out in ``repo_path``, or None when not a git checkout."""
        if not (self.repo_path / ".git").exists():
            return None
        try:
            result = subprocess.run(
                ["git", "-C", str(self.repo_path), "rev-parse", "HEAD"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except (subprocess.TimeoutExpired, OSError) as exc:
            logger.warning("git_revision_unavailable", repo_path=str(self.repo_path), error=str(exc))
            return None
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def update_sqlite_db_size(self) -> None:
        self.sqlite_db_size = DataStore(self.data_path).size()

    def reindex(self) -> None:
        self.indexed_at = datetime.now(UTC)
        logger.debug("scraper_reindexed", scraper=self.name, sqlite_db_size=self.sqlite_db_size)
