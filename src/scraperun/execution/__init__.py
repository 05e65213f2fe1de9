"""Scraperun execution - isolated builds, process runs and output streaming.

ARCHITECTURE
────────────
::

    ExecutionRequest (what to run)
      │
      ▼
    ContainerExecutor (compile_and_run / stop / container_exists)
      ├─ DockerExecutor        (docker CLI, image per run)
      └─ LocalProcessExecutor  (plain subprocess, development)
      │
      ▼
    OutputStreamLimiter (stdout + stderr → one line at a time)
      │
      ▼
    LogEvent / IpAddressEvent → orchestrator
"""

from scraperun.execution.events import ExecutorEvent, ExecutorEventHandler, IpAddressEvent, LogEvent
from scraperun.execution.executor import (
    BaseExecutor,
    ContainerExecutor,
    ExecutionRequest,
    prepare_build_directory,
)
from scraperun.execution.limiter import OutputStreamLimiter, limit_output

__all__ = [
    "BaseExecutor",
    "ContainerExecutor",
    "ExecutionRequest",
    "ExecutorEvent",
    "ExecutorEventHandler",
    "IpAddressEvent",
    "LogEvent",
    "OutputStreamLimiter",
    "limit_output",
    "prepare_build_directory",
]
