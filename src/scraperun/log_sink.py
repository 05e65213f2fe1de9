"""Log sink - numbers, stores and announces scraper output lines."""

from __future__ import annotations

import asyncio

from scraperun.core.events import Event, EventBus, get_event_bus
from scraperun.core.logging import get_logger
from scraperun.runs.models import LogLine, Run, Stream, utcnow
from scraperun.runs.repository import RunRepository

logger = get_logger(__name__)

LOG_LINE_CREATED = "log_line.created"


class LogSink:
    """Appends log lines to a run.

    Line numbers start at 1 and increase by one per line, so the stored
    lines of a run read back in exactly the order they were flushed.
    """

    def __init__(self, repository: RunRepository, event_bus: EventBus | None = None) -> None:
        self.repository = repository
        self.event_bus = event_bus or get_event_bus()
        self._lock = asyncio.Lock()

    async def log(self, run: Run, stream: Stream | str, text: str) -> LogLine:
        stream = Stream(stream)
        async with self._lock:
            number = (self.repository.max_log_number(run.id) or 0) + 1
            line = LogLine(run_id=run.id, stream=stream, number=number, text=text, created_at=utcnow())
            self.repository.add_log_line(line)

        logger.debug("log_line", run_id=run.id, stream=stream.value, number=number, text=text)
        await self.event_bus.publish(
            Event(
                event_type=LOG_LINE_CREATED,
                source="log_sink",
                payload=line.to_dict(),
                correlation_id=run.id,
            )
        )
        return line
