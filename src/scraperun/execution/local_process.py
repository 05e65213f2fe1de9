"""Local process executor - runs scrapers as plain subprocesses.

An executor with the same lifecycle as ``DockerExecutor`` that starts the
Procfile ``scraper`` command directly on this machine, so scrapers can be
developed and tested without a Docker daemon.

Architecture:

    .. code-block:: text

        LocalProcessExecutor - Container-Free Execution
        ┌──────────────────────────────────────────────────────────────┐
        │                                                              │
        │  Docker concept              │ Local process equivalent      │
        │  ────────────────────────────┼───────────────────────────────│
        │  image build                 │ skipped (no dependency step)  │
        │  /app                        │ scratch build directory       │
        │  /data volume                │ data_path as working dir      │
        │  -e KEY=VALUE                │ os.environ overlay            │
        │  container name              │ key of the process table      │
        │  container IP                │ 127.0.0.1                     │
        │  docker stop                 │ SIGTERM → SIGKILL             │
        │  time -v -o time.output      │ GNU time when installed       │
        │                                                              │
        │  NOT isolated: the scraper can see the whole filesystem      │
        │  and network of the host.                                    │
        │                                                              │
        └──────────────────────────────────────────────────────────────┘

Interpreter names in the Procfile command are substituted where a better
local binary is known, e.g. ``python`` becomes the running interpreter.

Example:
    >>> executor = LocalProcessExecutor()
    >>> status = await executor.compile_and_run(request, on_event)

Tags:
    scraperun, execution, local-process, subprocess, development

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import os
import shutil
import signal
import sys
from collections.abc import Mapping
from pathlib import Path

from scraperun.core.errors import InfrastructureError
from scraperun.core.logging import get_logger
from scraperun.execution.events import ExecutorEventHandler, IpAddressEvent, LogEvent
from scraperun.execution.executor import BaseExecutor, ExecutionRequest, scraper_argv
from scraperun.execution.limiter import OutputStreamLimiter
from scraperun.languages import Language
from scraperun.runs.models import TIME_OUTPUT_FILENAME, Stream

logger = get_logger(__name__)

LOCAL_IP_ADDRESS = "127.0.0.1"

DEFAULT_INTERPRETERS: Mapping[str, str] = {
    "python": sys.executable,
    "python3": sys.executable,
}


def _signal_group(process: asyncio.subprocess.Process, sig: int) -> None:
    # The scraper runs in its own session, so the group also covers children of `time`.
    if hasattr(os, "killpg"):
        os.killpg(process.pid, sig)
    else:
        process.send_signal(sig)


def find_gnu_time() -> str | None:
    """Path of GNU time, which is the only ``time`` that understands ``-v -o``."""
    if not sys.platform.startswith("linux"):
        return None
    path = shutil.which("time")
    if path is None and Path("/usr/bin/time").exists():
        path = "/usr/bin/time"
    return path


class LocalProcessExecutor(BaseExecutor):
    """Runs the scraper command as a local OS subprocess.

    Args:
        interpreters: Replacement binaries for the first word of the
            command, keyed by the name used in the Procfile.
        use_time: Wrap the command in GNU ``time -v`` when it is available.
        inherit_env: Start from ``os.environ`` before overlaying the run's
            variables. When False, only the run's variables are passed.
        kill_timeout_seconds: Seconds to wait after SIGTERM before SIGKILL.
        read_size: Bytes per read handed to the output limiter.
    """

    name = "local"

    def __init__(
        self,
        *,
        interpreters: Mapping[str, str] | None = None,
        use_time: bool = True,
        inherit_env: bool = True,
        kill_timeout_seconds: float = 5.0,
        read_size: int = 1,
    ) -> None:
        self.interpreters = dict(DEFAULT_INTERPRETERS if interpreters is None else interpreters)
        self.time_binary = find_gnu_time() if use_time else None
        self.inherit_env = inherit_env
        self.kill_timeout = kill_timeout_seconds
        self.read_size = read_size
        self._processes: dict[str, asyncio.subprocess.Process] = {}

    def build_argv(self, request: ExecutionRequest, build_dir: Path) -> list[str]:
        argv = scraper_argv(build_dir, str(build_dir))
        argv[0] = self.interpreters.get(argv[0], argv[0])
        if self.time_binary:
            argv = [
                self.time_binary, "-v", "-o", str(request.data_path / TIME_OUTPUT_FILENAME),
                *argv,
            ]
        return argv

    def build_env(self, request: ExecutionRequest) -> dict[str, str]:
        env = dict(os.environ) if self.inherit_env else {}
        env.update(dict(request.env_variables))
        return env

    async def _execute(
        self,
        request: ExecutionRequest,
        build_dir: Path,
        language: Language,
        on_event: ExecutorEventHandler,
    ) -> int:
        if request.container_name in self._processes:
            raise InfrastructureError(
                f"A process named {request.container_name} is already running"
            ).with_context(container_name=request.container_name)

        async def relay(stream: Stream, text: str) -> None:
            await on_event(LogEvent(stream=stream, text=text))

        request.data_path.mkdir(parents=True, exist_ok=True)
        argv = self.build_argv(request, build_dir)
        logger.info("local_process_starting", container_name=request.container_name, argv=argv)
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_env(request),
                cwd=str(request.data_path),
                start_new_session=True,
            )
        except OSError as exc:
            raise InfrastructureError(
                f"Could not start {argv[0]}: {exc}", cause=exc
            ).with_context(container_name=request.container_name) from exc

        self._processes[request.container_name] = process
        try:
            await on_event(IpAddressEvent(address=LOCAL_IP_ADDRESS))
            return await OutputStreamLimiter(relay, read_size=self.read_size).run(process)
        finally:
            self._processes.pop(request.container_name, None)

    async def stop(self, container_name: str) -> None:
        """Terminate the named process (SIGTERM → SIGKILL)."""
        process = self._processes.get(container_name)
        if process is None or process.returncode is not None:
            return
        logger.info("local_process_stopping", container_name=container_name, pid=process.pid)
        try:
            _signal_group(process, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
            except TimeoutError:
                _signal_group(process, signal.SIGKILL)
                await process.wait()
        except ProcessLookupError:
            pass

    async def container_exists(self, container_name: str) -> bool:
        process = self._processes.get(container_name)
        return process is not None and process.returncode is None
