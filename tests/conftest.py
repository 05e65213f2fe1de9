"""
Shared pytest fixtures and configuration for scraperun tests.

This module provides:
- An owner whose data and repo roots live under ``tmp_path``
- A helper for writing scraper source trees
- A scriptable ``StubExecutor`` standing in for Docker
- Repository and event bus fixtures with global state reset per test

Usage:
    Fixtures are auto-discovered by pytest::

        async def test_something(orchestrator, stub_executor, write_scraper):
            write_scraper("weather", {"scraper.py": "print('hi')"})
            ...
"""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

# Ensure scraperun package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from scraperun.core.events import Event, set_event_bus  # noqa: E402
from scraperun.core.events.memory import InMemoryEventBus  # noqa: E402
from scraperun.execution.events import ExecutorEventHandler, IpAddressEvent, LogEvent  # noqa: E402
from scraperun.execution.executor import ExecutionRequest  # noqa: E402
from scraperun.orchestrator import RunOrchestrator  # noqa: E402
from scraperun.runs.models import Owner  # noqa: E402
from scraperun.runs.repository import InMemoryRunRepository  # noqa: E402


# =============================================================================
# Stub executor
# =============================================================================


class StubExecutor:
    """In-memory ContainerExecutor that replays scripted events.

    Attributes:
        events: Events delivered, in order, on every ``compile_and_run``.
        exit_status: Value returned once the events are delivered.
        error: Raised (after the events) instead of returning.
        wait_for_stop: Block after the events until ``stop`` is called.
        write_files: Files written into the data directory while "running".
        make_dirs: Directories created in the data directory while "running".
        stop_error: Raised by ``stop`` instead of stopping.
    """

    def __init__(self) -> None:
        self.events: list[LogEvent | IpAddressEvent] = []
        self.exit_status = 0
        self.error: Exception | None = None
        self.wait_for_stop = False
        self.write_files: dict[str, str] = {}
        self.make_dirs: list[str] = []
        self.stop_error: Exception | None = None
        self.requests: list[ExecutionRequest] = []
        self.stopped: list[str] = []
        self.running = asyncio.Event()
        self._stop = asyncio.Event()

    async def compile_and_run(self, request: ExecutionRequest, on_event: ExecutorEventHandler) -> int:
        self.requests.append(request)
        for name, content in self.write_files.items():
            (request.data_path / name).write_text(content)
        for name in self.make_dirs:
            (request.data_path / name).mkdir(parents=True, exist_ok=True)
        for event in self.events:
            await on_event(event)
        self.running.set()
        if self.wait_for_stop:
            await self._stop.wait()
            return 137
        if self.error is not None:
            raise self.error
        return self.exit_status

    async def stop(self, container_name: str) -> None:
        if self.stop_error is not None:
            raise self.stop_error
        self.stopped.append(container_name)
        self._stop.set()

    async def container_exists(self, container_name: str) -> bool:
        return bool(self.requests) and self.requests[-1].container_name == container_name


class RecordingEventBus(InMemoryEventBus):
    """In-memory bus that also keeps every published event."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[Event] = []

    async def publish(self, event: Event) -> None:
        self.events.append(event)
        await super().publish(event)

    def types(self) -> list[str]:
        return [event.event_type for event in self.events]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_event_bus() -> Iterator[None]:
    """Never leak the global event bus between tests."""
    set_event_bus(None)
    yield
    set_event_bus(None)


@pytest.fixture(autouse=True)
def restore_root_logging() -> Iterator[None]:
    """configure_logging replaces the root handlers; put them back afterwards."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def owner(tmp_path: Path) -> Owner:
    return Owner.under("alice", tmp_path / "data", tmp_path / "repos")


@pytest.fixture
def write_scraper(owner: Owner) -> Callable[[str, dict[str, str]], Path]:
    """Write a scraper source tree under the owner's repo root."""

    def _write(name: str, files: dict[str, str]) -> Path:
        repo = owner.repo_root / name
        repo.mkdir(parents=True, exist_ok=True)
        for filename, content in files.items():
            (repo / filename).write_text(content)
        return repo

    return _write


@pytest.fixture
def repository() -> InMemoryRunRepository:
    return InMemoryRunRepository()


@pytest.fixture
def event_bus() -> RecordingEventBus:
    return RecordingEventBus()


@pytest.fixture
def published(event_bus: RecordingEventBus) -> list[Event]:
    """Every event published on ``event_bus`` during the test."""
    return event_bus.events


@pytest.fixture
def stub_executor() -> StubExecutor:
    return StubExecutor()


@pytest.fixture
def orchestrator(stub_executor, repository, event_bus) -> RunOrchestrator:
    return RunOrchestrator(stub_executor, repository, event_bus=event_bus)
