"""Docker executor - builds an image from the scraper tree and runs it.

Talks to the ``docker`` CLI through asyncio subprocesses, so no Docker SDK
is required. Each run goes through two stages:

    .. code-block:: text

        build stage                          run stage
        ───────────                          ─────────
        write Dockerfile.scraperun           docker create --name <container>
        docker build -t <image> <scratch>      -v <data_path>:/data
          output → LogEvent(stdout|stderr)     -e KEY=VALUE ...
          exit != 0 → InfrastructureError      -w /data <image>
                                               time -v -o /data/time.output <scraper argv>
                                             docker start --attach <container>
                                               stdout/stderr → OutputStreamLimiter
                                               ‖ poll docker inspect → IpAddressEvent
                                             docker inspect → exit code
                                             docker rm -f <container>

``stop`` only reaches the run stage: a build in progress is not
interrupted.

Tags:
    scraperun, execution, docker, container, build

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from pathlib import Path

from scraperun.core.errors import InfrastructureError
from scraperun.core.logging import get_logger
from scraperun.execution.events import ExecutorEventHandler, IpAddressEvent, LogEvent
from scraperun.execution.executor import BaseExecutor, ExecutionRequest, scraper_argv
from scraperun.execution.limiter import OutputStreamLimiter
from scraperun.languages import Language
from scraperun.runs.models import TIME_OUTPUT_FILENAME, Stream

logger = get_logger(__name__)

DOCKERFILE_NAME = "Dockerfile.scraperun"
CONTAINER_DATA_PATH = "/data"
CONTAINER_APP_PATH = "/app"
TIME_BINARY = "/usr/bin/time"

_DOCKERFILE_TEMPLATE = """\
FROM {base_image}
RUN if command -v apt-get >/dev/null 2>&1; then \\
      apt-get update && apt-get install -y --no-install-recommends time && rm -rf /var/lib/apt/lists/*; \\
    fi
WORKDIR {app_path}
COPY . {app_path}
RUN {install_command}
"""


@dataclass
class DockerResult:
    """Outcome of a captured docker CLI call."""

    returncode: int
    stdout: str
    stderr: str


def render_dockerfile(language: Language) -> str:
    return _DOCKERFILE_TEMPLATE.format(
        base_image=language.base_image,
        install_command=language.install_command,
        app_path=CONTAINER_APP_PATH,
    )


def image_name(prefix: str, container_name: str) -> str:
    """Docker image references must be lowercase and limited in charset."""
    slug = re.sub(r"[^a-z0-9_.-]+", "-", container_name.lower()).strip("-.")
    return f"{prefix}/{slug or 'scraper'}"


class DockerExecutor(BaseExecutor):
    """Runs scrapers in Docker containers via the docker CLI.

    Args:
        docker_bin: Name or path of the docker CLI.
        image_prefix: Repository prefix for the per-run images.
        ip_poll_interval: Seconds between ``docker inspect`` polls for
            the container's IP address.
        read_size: Bytes per read handed to the output limiter.
    """

    name = "docker"

    def __init__(
        self,
        *,
        docker_bin: str = "docker",
        image_prefix: str = "scraperun",
        ip_poll_interval: float = 0.1,
        read_size: int = 1,
    ) -> None:
        self.docker_bin = docker_bin
        self.image_prefix = image_prefix
        self.ip_poll_interval = ip_poll_interval
        self.read_size = read_size

    # ------------------------------------------------------------------
    # docker CLI
    # ------------------------------------------------------------------

    async def _spawn(self, args: list[str]) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                self.docker_bin,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise InfrastructureError(
                f"Could not run the docker CLI {self.docker_bin}: {exc}", cause=exc
            ) from exc

    async def _run_docker(self, args: list[str], *, check: bool = True) -> DockerResult:
        """Run a docker command and capture its output."""
        logger.debug("docker_command", args=args)
        process = await self._spawn(args)
        stdout, stderr = await process.communicate()
        result = DockerResult(
            returncode=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
        )
        if check and result.returncode != 0:
            raise InfrastructureError(
                f"docker {args[0]} failed: {result.stderr.strip() or result.returncode}"
            ).with_context(command=["docker", *args], exit_code=result.returncode)
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _execute(
        self,
        request: ExecutionRequest,
        build_dir: Path,
        language: Language,
        on_event: ExecutorEventHandler,
    ) -> int:
        async def relay(stream: Stream, text: str) -> None:
            await on_event(LogEvent(stream=stream, text=text))

        image = image_name(self.image_prefix, request.container_name)
        argv = scraper_argv(build_dir, CONTAINER_APP_PATH)
        await self._build(build_dir, language, image, relay)

        try:
            await self._create(request, image, argv)
            status = await self._start_attached(request.container_name, relay, on_event)
        finally:
            await self._cleanup(["rm", "-f", request.container_name])
            await self._cleanup(["image", "rm", image])
        return status

    async def _cleanup(self, args: list[str]) -> None:
        """Best-effort removal; must not mask the error of the stage before it."""
        try:
            await self._run_docker(args, check=False)
        except InfrastructureError as exc:
            logger.warning("docker_cleanup_failed", args=args, error=exc.message)

    async def _build(self, build_dir: Path, language: Language, image: str, relay) -> None:
        (build_dir / DOCKERFILE_NAME).write_text(render_dockerfile(language))
        logger.info("docker_build_started", image=image, language=language.key)
        process = await self._spawn(
            ["build", "--progress=plain", "-f", str(build_dir / DOCKERFILE_NAME), "-t", image, str(build_dir)]
        )
        status = await OutputStreamLimiter(relay, read_size=self.read_size).run(process)
        if status != 0:
            logger.error("executor_build_failed", image=image, exit_status=status)
            raise InfrastructureError(
                f"Building the image failed with exit status {status}"
            ).with_context(exit_code=status)

    async def _create(self, request: ExecutionRequest, image: str, argv: list[str]) -> None:
        request.data_path.mkdir(parents=True, exist_ok=True)
        args = [
            "create",
            "--name", request.container_name,
            "--label", "scraperun=1",
            "-v", f"{request.data_path.resolve()}:{CONTAINER_DATA_PATH}",
            "-w", CONTAINER_DATA_PATH,
        ]
        for key, value in request.env_variables:
            args += ["-e", f"{key}={value}"]
        args += [
            image,
            TIME_BINARY, "-v", "-o", f"{CONTAINER_DATA_PATH}/{TIME_OUTPUT_FILENAME}",
            *argv,
        ]
        await self._run_docker(args)

    async def _start_attached(
        self,
        container_name: str,
        relay,
        on_event: ExecutorEventHandler,
    ) -> int:
        process = await self._spawn(["start", "--attach", container_name])
        ip_task = asyncio.create_task(self._watch_ip_address(container_name, on_event))
        try:
            attach_status = await OutputStreamLimiter(relay, read_size=self.read_size).run(process)
        finally:
            ip_task.cancel()
            await asyncio.gather(ip_task, return_exceptions=True)

        result = await self._run_docker(
            ["inspect", "-f", "{{.State.ExitCode}}", container_name], check=False
        )
        if result.returncode == 0 and result.stdout.strip().lstrip("-").isdigit():
            return int(result.stdout.strip())
        return attach_status

    async def _watch_ip_address(self, container_name: str, on_event: ExecutorEventHandler) -> None:
        """Emit the container's IP address once it has one."""
        while True:
            result = await self._run_docker(
                ["inspect", "-f", "{{range .NetworkSettings.Networks}}{{.IPAddress}} {{end}}", container_name],
                check=False,
            )
            if result.returncode == 0:
                addresses = result.stdout.split()
                if addresses:
                    logger.debug("container_ip_address", container_name=container_name, ip_address=addresses[0])
                    await on_event(IpAddressEvent(address=addresses[0]))
                    return
            await asyncio.sleep(self.ip_poll_interval)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def stop(self, container_name: str) -> None:
        logger.info("docker_stop", container_name=container_name)
        result = await self._run_docker(["stop", container_name], check=False)
        if result.returncode != 0:
            logger.warning("docker_stop_failed", container_name=container_name, stderr=result.stderr.strip())

    async def container_exists(self, container_name: str) -> bool:
        result = await self._run_docker(["inspect", "--type", "container", container_name], check=False)
        return result.returncode == 0
