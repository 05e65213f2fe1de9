"""Resource metrics from GNU ``time -v`` output.

Executors wrap the scraper in ``time -v -o <data_path>/time.output``. Once
the run is over, ``MetricsCollector.read`` turns that report into a
``Metric``. A missing report is normal (the process never started, or
``time`` is not installed) and yields ``None``.

Example report (abridged)::

    Command being timed: "python scraper.py"
    User time (seconds): 1.52
    System time (seconds): 0.13
    Elapsed (wall clock) time (h:mm:ss or m:ss): 0:02.08
    Maximum resident set size (kbytes): 41236
    Major (requiring I/O) page faults: 0
    Minor (reclaiming a frame) page faults: 9134
    Voluntary context switches: 84
    Involuntary context switches: 11
    File system inputs: 0
    File system outputs: 264
    Exit status: 0
"""

from __future__ import annotations

import re
from pathlib import Path

from scraperun.core.logging import get_logger
from scraperun.runs.models import Metric

logger = get_logger(__name__)

_LINE = re.compile(r"^\s*(?P<key>.+?):\s+(?P<value>.*?)\s*$")

_INT_FIELDS = {
    "Maximum resident set size (kbytes)": "maxrss",
    "Minor (reclaiming a frame) page faults": "minflt",
    "Major (requiring I/O) page faults": "majflt",
    "File system inputs": "inblock",
    "File system outputs": "oublock",
    "Voluntary context switches": "nvcsw",
    "Involuntary context switches": "nivcsw",
}

_USER_TIME = "User time (seconds)"
_SYSTEM_TIME = "System time (seconds)"
_ELAPSED = "Elapsed (wall clock) time (h:mm:ss or m:ss)"


def parse_elapsed(value: str) -> float:
    """Convert ``h:mm:ss`` or ``m:ss.ss`` into seconds."""
    seconds = 0.0
    for part in value.split(":"):
        seconds = seconds * 60 + float(part)
    return seconds


class MetricsCollector:
    """Reads the ``time -v`` report written next to a run's data."""

    def read(self, path: str | Path) -> Metric | None:
        path = Path(path)
        if not path.exists():
            return None
        try:
            text = path.read_text(errors="replace")
        except OSError as exc:
            logger.warning("metrics_unreadable", source=str(path), error=str(exc))
            return None
        return self.parse(text, source=str(path))

    def parse(self, text: str, source: str | None = None) -> Metric | None:
        values: dict[str, str] = {}
        for line in text.splitlines():
            match = _LINE.match(line)
            if match:
                values[match.group("key")] = match.group("value")

        try:
            utime = float(values[_USER_TIME])
            stime = float(values[_SYSTEM_TIME])
        except (KeyError, ValueError) as exc:
            logger.warning("metrics_unreadable", source=source, error=str(exc))
            return None

        metric = Metric(utime=utime, stime=stime)
        if _ELAPSED in values:
            try:
                metric.wall_time = parse_elapsed(values[_ELAPSED])
            except ValueError:
                logger.debug("metrics_elapsed_unparsed", source=source, value=values[_ELAPSED])
        for key, attribute in _INT_FIELDS.items():
            if key in values and values[key].isdigit():
                setattr(metric, attribute, int(values[key]))
        return metric
