"""
In-memory event bus implementation.

Events are delivered immediately to every matching handler in the same
process and are not persisted.

Tags:
    scraperun, events, in-memory, asyncio, testing, single-node
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

from scraperun.core.events import Event, EventHandler
from scraperun.core.logging import get_logger

__all__ = ["InMemoryEventBus"]

logger = get_logger(__name__)


@dataclass
class Subscription:
    """Internal subscription record."""

    id: str
    pattern: str
    handler: EventHandler


class InMemoryEventBus:
    """In-process event bus for single-node deployments.

    Example::

        bus = InMemoryEventBus()

        async def show(event: Event):
            print(event.event_type)

        await bus.subscribe("run.*", show)
        await bus.publish(Event(event_type="run.started", source="orchestrator"))
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    async def publish(self, event: Event) -> None:
        """Publish an event to all matching subscribers.

        Handlers run concurrently. A failing handler is logged and does not
        stop delivery to the others; subscribers are never allowed to break
        the run that produced the event.
        """
        if self._closed:
            return

        async with self._lock:
            handlers = [
                (sub.id, sub.handler)
                for sub in self._subscriptions.values()
                if event.matches(sub.pattern)
            ]

        if not handlers:
            return

        async def safe_call(sub_id: str, handler: EventHandler) -> None:
            try:
                await handler(event)
            except Exception as e:
                logger.warning(
                    "event_handler_error",
                    subscription_id=sub_id,
                    event_type=event.event_type,
                    error=str(e),
                )

        await asyncio.gather(*[safe_call(sub_id, handler) for sub_id, handler in handlers])

    async def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Subscribe to events matching a pattern (supports ``*`` and ``type.*``)."""
        sub_id = f"sub_{uuid.uuid4().hex[:12]}"

        async with self._lock:
            self._subscriptions[sub_id] = Subscription(
                id=sub_id,
                pattern=event_type,
                handler=handler,
            )

        return sub_id

    async def unsubscribe(self, subscription_id: str) -> None:
        async with self._lock:
            self._subscriptions.pop(subscription_id, None)

    async def close(self) -> None:
        """Mark bus as closed and clear subscriptions."""
        self._closed = True
        async with self._lock:
            self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)
