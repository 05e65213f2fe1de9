"""Event system for live run updates.

Why This Package Exists
-----------------------
The orchestrator and the log sink need to tell external subscribers (a UI
tail view, a websocket relay, the CLI) that a run changed state or that a
new log line was stored, without importing any of those consumers.

The ``EventBus`` protocol decouples producers from consumers; the bundled
in-memory backend delivers to async handlers in the same process.

Event types published by scraperun::

    run.started        payload: run.to_dict()
    run.updated        payload: run.to_dict()        (ip address recorded)
    run.finished       payload: run.to_dict()
    log_line.created   payload: log_line.to_dict()

Usage::

    from scraperun.core.events import Event, get_event_bus

    bus = get_event_bus()

    async def tail(event: Event):
        print(event.payload["text"], end="")

    await bus.subscribe("log_line.*", tail)
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "get_event_bus",
    "set_event_bus",
]


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass
class Event:
    """Immutable event payload.

    Attributes:
        event_type: Dot-separated type (e.g., ``run.started``, ``log_line.created``)
        source: Origin component
        payload: Event-specific data
        timestamp: When the event occurred (UTC)
        correlation_id: Run id the event belongs to
        event_id: Unique event identifier
    """

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    correlation_id: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Check if event type matches a pattern (supports wildcards).

        Examples:
            - ``run.*`` matches ``run.started``, ``run.finished``
            - ``*`` matches everything
            - ``run.started`` matches exactly ``run.started``
        """
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            prefix = pattern[:-2]
            return self.event_type.startswith(prefix + ".")
        return self.event_type == pattern


EventHandler = Callable[[Event], Awaitable[None]]


# ── EventBus Protocol ────────────────────────────────────────────────────


@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe with wildcard patterns."""

    async def publish(self, event: Event) -> None:
        ...

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Subscribe to events matching a pattern; returns a subscription ID."""
        ...

    async def unsubscribe(self, subscription_id: str) -> None:
        ...

    async def close(self) -> None:
        ...


# ── Default Event Bus Singleton ──────────────────────────────────────────

_event_bus: EventBus | None = None


def get_event_bus() -> EventBus:
    """Get the global event bus, creating an in-memory one if none is set."""
    global _event_bus
    if _event_bus is None:
        from scraperun.core.events.memory import InMemoryEventBus

        _event_bus = InMemoryEventBus()
    return _event_bus


def set_event_bus(bus: EventBus | None) -> None:
    """Set (or reset with ``None``) the global event bus instance."""
    global _event_bus
    _event_bus = bus
