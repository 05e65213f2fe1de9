"""Tagged events an executor reports while a run is in progress."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from scraperun.runs.models import Stream


@dataclass(frozen=True)
class LogEvent:
    """One flushed line (or final fragment) of process output."""

    stream: Stream
    text: str


@dataclass(frozen=True)
class IpAddressEvent:
    """The address the isolated process was given on the network."""

    address: str


ExecutorEvent = LogEvent | IpAddressEvent

ExecutorEventHandler = Callable[[ExecutorEvent], Awaitable[None]]
