"""Container executor protocol and the shared scratch-directory lifecycle.

An executor takes a scraper source tree, builds whatever isolated
environment the scraper needs, runs it with the data directory attached,
and streams events back while it runs. The orchestrator only sees the
``ContainerExecutor`` protocol; concrete executors live next to this
module:

    - ``DockerExecutor`` (``execution.docker``): image build + container run
    - ``LocalProcessExecutor`` (``execution.local_process``): plain subprocess

Architecture:

    .. code-block:: text

        compile_and_run(request, on_event)
          ├── TemporaryDirectory (scratch)
          ├── prepare_build_directory(repo_path → scratch)
          │     ├── copy the source tree (original never mutated)
          │     ├── insert default dependency files, group by group
          │     └── overwrite Procfile with the language default
          ├── _execute(request, scratch, language, on_event)  ← subclass
          │     └── LogEvent / IpAddressEvent → on_event
          └── on unexpected error: wrap in InfrastructureError

Tags:
    scraperun, execution, executor, container, scratch-directory

Doc-Types:
    api-reference
"""

from __future__ import annotations

import shlex
import shutil
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

from scraperun.core.errors import InfrastructureError, ScrapeRunError, SetupError
from scraperun.core.logging import get_logger
from scraperun.execution.events import ExecutorEventHandler
from scraperun.languages import PROCFILE, Language, detect_language

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExecutionRequest:
    """Everything an executor needs to run one scraper."""

    repo_path: Path
    data_path: Path
    container_name: str
    env_variables: Sequence[tuple[str, str]] = field(default_factory=tuple)


@runtime_checkable
class ContainerExecutor(Protocol):
    async def compile_and_run(
        self, request: ExecutionRequest, on_event: ExecutorEventHandler
    ) -> int:
        """Build and run the scraper, returning its exit status."""
        ...

    async def stop(self, container_name: str) -> None:
        ...

    async def container_exists(self, container_name: str) -> bool:
        ...


# =============================================================================
# Build directory
# =============================================================================


def prepare_build_directory(source: str | Path, dest: str | Path) -> Language:
    """Copy ``source`` into ``dest`` and add the language's default config.

    A default file group is inserted only when none of its files are
    present. The Procfile is always replaced with the default one.
    """
    source, dest = Path(source), Path(dest)
    shutil.copytree(source, dest, dirs_exist_ok=True, symlinks=True)

    language = detect_language(dest)
    if language is None:
        raise SetupError("No scraper entrypoint found").with_context(path=str(source))

    for group in language.default_files_to_insert:
        if all(not (dest / filename).exists() for filename in group):
            for filename in group:
                (dest / filename).write_text(language.default_config(filename))
                logger.debug("default_file_inserted", language=language.key, filename=filename)

    (dest / PROCFILE).write_text(language.default_config(PROCFILE))
    return language


def read_procfile(path: str | Path) -> dict[str, str]:
    """Parse ``name: command`` entries from a Procfile."""
    processes: dict[str, str] = {}
    for raw in Path(path).read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or ":" not in line:
            continue
        name, command = line.split(":", 1)
        processes[name.strip()] = command.strip()
    return processes


def scraper_command(build_dir: str | Path) -> str:
    """The ``scraper`` entry of the build directory's Procfile."""
    procfile = Path(build_dir) / PROCFILE
    command = read_procfile(procfile).get("scraper") if procfile.exists() else None
    if not command:
        raise InfrastructureError("Procfile has no scraper entry").with_context(path=str(procfile))
    return command


def scraper_argv(build_dir: str | Path, app_path: str) -> list[str]:
    """Split the scraper command, anchoring files from the build tree at ``app_path``.

    Scrapers run with the data directory as their working directory, so
    ``scraper.py`` in ``python scraper.py`` becomes ``<app_path>/scraper.py``.
    """
    build_dir = Path(build_dir)
    argv = []
    for token in shlex.split(scraper_command(build_dir)):
        if not token.startswith("-") and (build_dir / token).is_file():
            token = f"{app_path.rstrip('/')}/{token}"
        argv.append(token)
    return argv


# =============================================================================
# Base executor
# =============================================================================


class BaseExecutor:
    """Shared lifecycle for executors.

    Subclasses implement ``_execute``, ``stop`` and ``container_exists``.
    ``compile_and_run`` owns the scratch directory and converts any
    unexpected exception into ``InfrastructureError``; ``StreamError``
    and other typed errors pass through unchanged.
    """

    name = "base"

    async def compile_and_run(
        self, request: ExecutionRequest, on_event: ExecutorEventHandler
    ) -> int:
        logger.info(
            "executor_compile_and_run",
            executor=self.name,
            container_name=request.container_name,
            repo_path=str(request.repo_path),
        )
        try:
            with tempfile.TemporaryDirectory(prefix="scraperun-") as scratch:
                build_dir = Path(scratch)
                language = prepare_build_directory(request.repo_path, build_dir)
                status = await self._execute(request, build_dir, language, on_event)
        except ScrapeRunError:
            raise
        except Exception as exc:
            logger.error(
                "executor_failed",
                executor=self.name,
                container_name=request.container_name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise InfrastructureError(
                f"{self.name} executor failed: {exc}", cause=exc
            ).with_context(container_name=request.container_name) from exc

        logger.info(
            "executor_finished",
            executor=self.name,
            container_name=request.container_name,
            exit_status=status,
        )
        return status

    async def _execute(
        self,
        request: ExecutionRequest,
        build_dir: Path,
        language: Language,
        on_event: ExecutorEventHandler,
    ) -> int:
        raise NotImplementedError

    async def stop(self, container_name: str) -> None:
        raise NotImplementedError

    async def container_exists(self, container_name: str) -> bool:
        raise NotImplementedError
