"""Run orchestrator - drives one run from start to a terminal state.

The orchestrator is the only component that changes a run's lifecycle
fields. It checks that the source tree can run at all, hands the tree to
a ``ContainerExecutor``, stores every line of output as it arrives, and
afterwards collects resource metrics and the data-store diff.

Manifesto:
    - **Always terminal:** every started run ends finished, whatever fails
    - **Single writer:** status code and timestamps change only here
    - **Live output:** each flushed line is stored and published at once
    - **No retries:** failures become status codes, not exceptions

Architecture:

    .. code-block:: text

        start(run)
          ├── DataStore.backup()
          ├── mark_started(now, git revision) → save → run.started
          ├── mkdir data_path (0o777)
          ├── detect_language(repo_path)
          │     └── none → stderr line, 999, run.finished, return
          ├── executor.compile_and_run(request, on_event)
          │     ├── LogEvent       → LogSink.log
          │     ├── IpAddressEvent → run.ip_address → save → run.updated
          │     ├── InfrastructureError → stderr line, 998
          │     └── StreamError         → stderr line, 997
          ├── finish(exit status)      (130 kept when stopped meanwhile)
          ├── MetricsCollector.read(time_output_path)
          ├── diff engine (backup vs current) → eight counters
          ├── DataStore.tidy()
          ├── scraper: update_sqlite_db_size, reindex
          └── save → run.finished   (always, even if the steps above fail)

        stop(run)
          ├── executor.stop(container_name)
          └── finish(130) → save → run.finished

Limitations:
    ``stop`` reaches the run stage only. A build in progress completes
    and the scraper then runs to completion; the run itself is already
    recorded as stopped (130).

Tags:
    scraperun, orchestrator, run-lifecycle, state-machine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import os
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from scraperun.core.errors import (
    InfrastructureError,
    InvalidTransitionError,
    ScrapeRunError,
    SetupError,
    StreamError,
)
from scraperun.core.events import Event, EventBus, get_event_bus
from scraperun.core.logging import LogContext, get_logger
from scraperun.datastore import DataStore, DiffEngine, NullDiffEngine, diffstat_safe
from scraperun.execution.events import ExecutorEvent, IpAddressEvent, LogEvent
from scraperun.execution.executor import ContainerExecutor, ExecutionRequest
from scraperun.languages import detect_language, missing_entrypoint_message
from scraperun.log_sink import LogSink
from scraperun.metrics import MetricsCollector
from scraperun.runs.models import LogLine, Run, RunStatus, StatusCode, Stream, utcnow
from scraperun.runs.repository import RunRepository

logger = get_logger(__name__)

RUN_STARTED = "run.started"
RUN_UPDATED = "run.updated"
RUN_FINISHED = "run.finished"

DATA_PATH_MODE = 0o777


@runtime_checkable
class RepoSynchroniser(Protocol):
    """Brings a scraper's source checkout up to date with its git remote."""

    async def synchronise(self, repo_path: Path, git_url: str | None) -> None:
        ...


class RunOrchestrator:
    """Runs scrapers and records everything about each run.

    Args:
        executor: Builds and runs the scraper in isolation.
        repository: Where runs, log lines and metrics are stored.
        event_bus: Receives ``run.*`` events (defaults to the global bus).
        log_sink: Stores output lines (defaults to one on ``repository``).
        metrics: Parses the ``time -v`` report.
        diff_engine: Compares the database before and after the run.
        clock: Source of timestamps.
    """

    def __init__(
        self,
        executor: ContainerExecutor,
        repository: RunRepository,
        *,
        event_bus: EventBus | None = None,
        log_sink: LogSink | None = None,
        metrics: MetricsCollector | None = None,
        diff_engine: DiffEngine | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.executor = executor
        self.repository = repository
        self.event_bus = event_bus or get_event_bus()
        self.log_sink = log_sink or LogSink(repository, self.event_bus)
        self.metrics = metrics or MetricsCollector()
        self.diff_engine = diff_engine or NullDiffEngine()
        self.clock = clock
        self._stopping: set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, run: Run) -> None:
        """Run the scraper to completion. Every failure ends as a finished run."""
        if run.status not in (RunStatus.CREATED, RunStatus.QUEUED):
            raise InvalidTransitionError(run.status.value, RunStatus.RUNNING.value, run.id)

        async with LogContext(run_id=run.id):
            try:
                await self._start(run)
            finally:
                self._stopping.discard(run.id)

    async def _start(self, run: Run) -> None:
        datastore = DataStore(run.data_path)
        datastore.backup()

        git_revision = run.scraper.current_revision_from_repo() if run.scraper else None
        run.mark_started(self.clock(), git_revision)
        self.repository.save_run(run)
        await self._publish(RUN_STARTED, run)
        logger.info("run_started", name=run.name, container_name=run.container_name)

        run.data_path.mkdir(parents=True, exist_ok=True)
        os.chmod(run.data_path, DATA_PATH_MODE)

        if detect_language(run.repo_path) is None:
            await self.log(run, Stream.STDERR, missing_entrypoint_message())
            run.finish(StatusCode.SETUP_FAILED, self.clock())
            self.repository.save_run(run)
            await self._publish(RUN_FINISHED, run)
            logger.warning("run_setup_failed", repo_path=str(run.repo_path))
            return

        request = ExecutionRequest(
            repo_path=run.repo_path,
            data_path=run.data_path,
            container_name=run.container_name,
            env_variables=tuple(run.env_variables),
        )

        async def on_event(event: ExecutorEvent) -> None:
            match event:
                case LogEvent(stream=stream, text=text):
                    await self.log(run, stream, text)
                case IpAddressEvent(address=address):
                    run.ip_address = address
                    self.repository.save_run(run)
                    await self._publish(RUN_UPDATED, run)

        try:
            status_code = await self.executor.compile_and_run(request, on_event)
        except StreamError as exc:
            await self._abort(run, StatusCode.STREAM_FAILED, exc)
            return
        except InfrastructureError as exc:
            await self._abort(run, StatusCode.INFRASTRUCTURE_FAILED, exc)
            return
        except SetupError as exc:
            await self._abort(run, StatusCode.SETUP_FAILED, exc)
            return

        stopped = run.id in self._stopping or run.finished
        try:
            stopped = self._was_stopped(run)
            if not run.finished:
                run.finish(StatusCode.STOPPED if stopped else status_code, self.clock())
            self._collect(run, datastore)
        except Exception:
            logger.exception("run_post_processing_failed", exit_status=status_code)
        finally:
            if not run.finished:
                run.finish(StatusCode.STOPPED if stopped else status_code, self.clock())
            self.repository.save_run(run)
            await self._publish(RUN_UPDATED if stopped else RUN_FINISHED, run)

        logger.info(
            "run_finished",
            status_code=run.status_code,
            exit_status=status_code,
            wall_time=run.wall_time,
            cpu_time=run.cpu_time,
        )

    def _collect(self, run: Run, datastore: DataStore) -> None:
        """Metrics, data-store diff, tidying and scraper housekeeping."""
        metric = self.metrics.read(run.time_output_path)
        if metric is not None:
            run.metric = metric
            self.repository.save_metric(run.id, metric)

        diffstat = diffstat_safe(self.diff_engine, datastore.sqlite_db_backup_path, datastore.sqlite_db_path)
        if diffstat is not None:
            run.apply_diffstat(diffstat)
        datastore.tidy()

        if run.scraper is not None:
            run.scraper.update_sqlite_db_size()
            run.scraper.reindex()

    def _was_stopped(self, run: Run) -> bool:
        if run.id in self._stopping or run.finished:
            return True
        # `scraperun runs stop` runs in another process and only reaches the repository.
        stored = self.repository.get_run(run.id)
        return stored is not None and stored.status_code == StatusCode.STOPPED

    async def _abort(self, run: Run, status_code: StatusCode, error: ScrapeRunError) -> None:
        """Record a run that could not be carried through."""
        logger.error("run_aborted", status_code=int(status_code), **error.to_dict())
        await self.log(run, Stream.STDERR, error.message)
        if run.finished:
            self.repository.save_run(run)
            return
        run.finish(status_code, self.clock())
        self.repository.save_run(run)
        await self._publish(RUN_FINISHED, run)

    async def stop(self, run: Run) -> None:
        """Stop a running run: its container is stopped and the run ends with 130."""
        if not run.running or run.id in self._stopping:
            raise InvalidTransitionError(run.status.value, RunStatus.STOPPED.value, run.id)

        self._stopping.add(run.id)
        async with LogContext(run_id=run.id):
            try:
                await self.executor.stop(run.container_name)
            except ScrapeRunError as exc:
                logger.error("run_stop_failed", **exc.to_dict())
                self._stopping.discard(run.id)
            if not run.finished:
                run.finish(StatusCode.STOPPED, self.clock())
            self.repository.save_run(run)
            await self._publish(RUN_FINISHED, run)
            logger.info("run_stopped", container_name=run.container_name)

    async def synchronise_and_start(self, run: Run, synchroniser: RepoSynchroniser) -> None:
        """Update the scraper's source checkout, then start the run.

        Does nothing for a run without a scraper.
        """
        if run.scraper is None:
            logger.info("run_skipped_no_scraper", run_id=run.id)
            return
        await synchroniser.synchronise(run.repo_path, run.scraper.git_url)
        await self.start(run)

    # ------------------------------------------------------------------
    # Queries and output
    # ------------------------------------------------------------------

    async def log(self, run: Run, stream: Stream | str, text: str) -> LogLine:
        return await self.log_sink.log(run, stream, text)

    async def container_exists(self, run: Run) -> bool:
        return await self.executor.container_exists(run.container_name)

    def error_text(self, run: Run) -> str:
        """Everything the run wrote to stderr, in order."""
        return "".join(line.text for line in self.repository.list_log_lines(run.id, Stream.STDERR))

    async def _publish(self, event_type: str, run: Run) -> None:
        await self.event_bus.publish(
            Event(
                event_type=event_type,
                source="orchestrator",
                payload=run.to_dict(),
                correlation_id=run.id,
            )
        )
