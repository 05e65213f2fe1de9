"""Output stream limiter - line-buffered relay of a child's stdout and stderr.

A scraper can write anything to its console, in any amount and at any
speed. The limiter sits between the child process (or container attach
stream) and whoever stores the output, and hands over one line at a
time, so a log line is never split and nothing is ever held back until
the process exits.

Architecture:

    .. code-block:: text

        child stdout ──┐                      ┌─► on_flush(STDOUT, "line\\n")
                       ├─► asyncio.wait ─► buffers (one per stream)
        child stderr ──┘  (FIRST_COMPLETED)   └─► on_flush(STDERR, "line\\n")

        loop while any stream is open:
            wait for whichever pending read completes first
            b"" (EOF)   → drop the stream, flush its leftover as a fragment
            chunk       → append to that stream's buffer, flush on every b"\\n"
        wait for exit → exit status

Guarantees:
    - Within one stream, the concatenation of flushed texts is exactly the
      bytes the child wrote (decoded as UTF-8).
    - Every flush ends with a newline except possibly the last one of a
      stream, which is flushed when that stream closes.
    - Ordering between stdout and stderr is best effort.

A read failure aborts the loop with ``StreamError``; the child is killed
and its exit status is not reported.

Example:
    >>> async def show(stream, text):
    ...     print(stream.value, repr(text))
    >>> limiter = OutputStreamLimiter(show)
    >>> process = await asyncio.create_subprocess_exec(
    ...     "printf", "a\\nb", stdout=PIPE, stderr=PIPE,
    ... )
    >>> await limiter.run(process)
    stdout 'a\\n'
    stdout 'b'
    0

Tags:
    scraperun, execution, streaming, stdout, stderr, asyncio

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import codecs
import sys
from collections.abc import Awaitable, Callable, Sequence

from scraperun.core.errors import InfrastructureError, StreamError
from scraperun.core.logging import get_logger
from scraperun.runs.models import Stream

logger = get_logger(__name__)

FlushHandler = Callable[[Stream, str], Awaitable[None]]

DEFAULT_READ_SIZE = 1


def _utf8_decoder() -> codecs.IncrementalDecoder:
    return codecs.getincrementaldecoder("utf-8")(errors="replace")


def exit_status(returncode: int) -> int:
    """Shell-style exit status: a child killed by signal N reports 128 + N."""
    if returncode < 0:
        return 128 - returncode
    return returncode


class OutputStreamLimiter:
    """Relays two output streams to ``on_flush`` one line at a time.

    Args:
        on_flush: Async callable receiving ``(stream, text)`` for every line.
        read_size: Maximum bytes requested per read. The default of 1
            keeps latency minimal at the cost of throughput.
        max_line_bytes: Flush a line early once its buffer reaches this
            many bytes. ``None`` disables the limit.
    """

    def __init__(
        self,
        on_flush: FlushHandler,
        *,
        read_size: int = DEFAULT_READ_SIZE,
        max_line_bytes: int | None = None,
    ) -> None:
        if read_size < 1:
            raise ValueError("read_size must be at least 1")
        if max_line_bytes is not None and max_line_bytes < 1:
            raise ValueError("max_line_bytes must be at least 1")
        self._on_flush = on_flush
        self.read_size = read_size
        self.max_line_bytes = max_line_bytes

    async def run(self, process: asyncio.subprocess.Process) -> int:
        """Pump the process's output until both streams close, then reap it."""
        try:
            await self.pump(process.stdout, process.stderr)
        except BaseException:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
            raise
        return exit_status(await process.wait())

    async def pump(
        self,
        stdout: asyncio.StreamReader | None,
        stderr: asyncio.StreamReader | None,
    ) -> None:
        """Read both streams until EOF, flushing every completed line."""
        readers = {
            stream: reader
            for stream, reader in ((Stream.STDOUT, stdout), (Stream.STDERR, stderr))
            if reader is not None
        }
        buffers = {stream: bytearray() for stream in readers}
        decoders = {stream: _utf8_decoder() for stream in readers}
        pending: dict[asyncio.Future[bytes], Stream] = {
            asyncio.ensure_future(reader.read(self.read_size)): stream
            for stream, reader in readers.items()
        }

        try:
            while pending:
                done, _ = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    stream = pending.pop(task)
                    try:
                        chunk = task.result()
                    except Exception as exc:
                        raise StreamError(
                            f"Reading {stream.value} failed: {exc}", cause=exc
                        ).with_context(stream=stream.value) from exc

                    if not chunk:
                        await self._emit(stream, decoders[stream], buffers[stream], final=True)
                        buffers[stream].clear()
                        continue

                    await self._feed(stream, decoders[stream], buffers[stream], chunk)
                    pending[asyncio.ensure_future(readers[stream].read(self.read_size))] = stream
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def _feed(
        self, stream: Stream, decoder: codecs.IncrementalDecoder, buffer: bytearray, chunk: bytes
    ) -> None:
        buffer.extend(chunk)
        while (newline := buffer.find(b"\n")) != -1:
            await self._emit(stream, decoder, buffer[: newline + 1])
            del buffer[: newline + 1]
        while self.max_line_bytes is not None and len(buffer) >= self.max_line_bytes:
            await self._emit(stream, decoder, buffer[: self.max_line_bytes])
            del buffer[: self.max_line_bytes]

    async def _emit(
        self,
        stream: Stream,
        decoder: codecs.IncrementalDecoder,
        data: bytes | bytearray,
        *,
        final: bool = False,
    ) -> None:
        # A character cut by max_line_bytes stays in the decoder and opens the next flush.
        text = decoder.decode(bytes(data), final)
        if text:
            await self._on_flush(stream, text)


async def limit_output(
    command: Sequence[str],
    *,
    read_size: int = DEFAULT_READ_SIZE,
    max_line_bytes: int | None = None,
) -> int:
    """Run ``command``, relaying its output line by line to our own stdout/stderr.

    Returns the command's exit status.
    """
    if not command:
        raise ValueError("No command given")

    async def relay(stream: Stream, text: str) -> None:
        target = sys.stdout if stream is Stream.STDOUT else sys.stderr
        target.write(text)
        target.flush()

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise InfrastructureError(f"Could not start {command[0]}: {exc}", cause=exc) from exc

    logger.debug("limit_output_started", command=list(command), pid=process.pid)
    status = await OutputStreamLimiter(
        relay, read_size=read_size, max_line_bytes=max_line_bytes
    ).run(process)
    logger.debug("limit_output_finished", command=list(command), exit_status=status)
    return status
