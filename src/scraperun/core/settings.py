"""Settings for scraperun.

Configuration is explicit, validated, and environment-driven. Every
field can be overridden with a ``SCRAPERUN_``-prefixed environment
variable or a ``.env`` file.

Fields
──────
data_root      : Root of the per-owner data directories (``<root>/<owner>/<run name>``)
repo_root      : Root of the per-owner source checkouts
database_path  : SQLite file holding runs, log lines and metrics
executor       : ``docker`` (isolated containers) or ``local`` (plain subprocesses)
docker_bin     : Name or path of the docker CLI
image_prefix   : Prefix for images built from scraper source trees
default_owner  : Owner used by the CLI for ad-hoc runs
log_level      : structlog log level
log_format     : ``console``, ``json`` or ``auto``

Examples:
    >>> from scraperun.core.settings import get_settings
    >>> settings = get_settings()
    >>> settings.executor
    'docker'

Tags:
    settings, configuration, pydantic, environment, scraperun
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from scraperun.core.errors import ConfigError


class ScrapeRunSettings(BaseSettings):
    """Settings shared by the CLI, the orchestrator and the executors."""

    model_config = SettingsConfigDict(
        env_prefix="SCRAPERUN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    data_root: Path = Field(
        default_factory=lambda: Path.home() / ".scraperun" / "data",
        description="Root of per-owner scraper data directories",
    )
    repo_root: Path = Field(
        default_factory=lambda: Path.home() / ".scraperun" / "repos",
        description="Root of per-owner scraper source checkouts",
    )
    database_path: Path = Field(
        default_factory=lambda: Path.home() / ".scraperun" / "scraperun.db",
        description="SQLite database for runs, log lines and metrics",
    )

    # ── Execution ────────────────────────────────────────────────
    executor: Literal["docker", "local"] = "docker"
    docker_bin: str = "docker"
    image_prefix: str = "scraperun"
    default_owner: str = "local"

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: Literal["console", "json", "auto"] = "auto"


@lru_cache
def get_settings() -> ScrapeRunSettings:
    return ScrapeRunSettings()


def build_executor(settings: ScrapeRunSettings):
    """Create the executor selected by ``settings.executor``."""
    match settings.executor:
        case "docker":
            from scraperun.execution.docker import DockerExecutor

            return DockerExecutor(
                docker_bin=settings.docker_bin,
                image_prefix=settings.image_prefix,
            )
        case "local":
            from scraperun.execution.local_process import LocalProcessExecutor

            return LocalProcessExecutor()
        case _:
            raise ConfigError(f"Unknown executor: {settings.executor!r}")
