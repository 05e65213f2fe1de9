"""
Tests for scraperun.execution.limiter - line-buffered output relay.

Covers newline flushing, final unterminated fragments, per-stream
reconstruction under interleaving, long-line limits, read failures and a
real child process.
"""

from __future__ import annotations

import asyncio
import sys

import pytest

from scraperun.core.errors import StreamError
from scraperun.execution.limiter import OutputStreamLimiter, exit_status, limit_output
from scraperun.runs.models import Stream


class Collector:
    def __init__(self) -> None:
        self.flushes: list[tuple[Stream, str]] = []

    async def __call__(self, stream: Stream, text: str) -> None:
        self.flushes.append((stream, text))

    def texts(self, stream: Stream) -> list[str]:
        return [text for s, text in self.flushes if s is stream]


def _reader(data: bytes = b"", eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    if data:
        reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


class FailingReader:
    """StreamReader stand-in whose reads fail after some bytes."""

    def __init__(self, data: bytes) -> None:
        self._data = bytearray(data)

    async def read(self, n: int = -1) -> bytes:
        if not self._data:
            raise OSError("pipe broke")
        chunk = bytes(self._data[:n])
        del self._data[:n]
        return chunk


class TestFlushing:
    @pytest.mark.asyncio
    async def test_trailing_fragment_flushed_at_eof(self):
        collector = Collector()
        await OutputStreamLimiter(collector).pump(_reader(b"a\nb"), _reader())
        assert collector.texts(Stream.STDOUT) == ["a\n", "b"]
        assert collector.texts(Stream.STDERR) == []

    @pytest.mark.asyncio
    async def test_every_newline_flushes(self):
        collector = Collector()
        await OutputStreamLimiter(collector).pump(_reader(b"one\ntwo\n\nthree\n"), _reader())
        assert collector.texts(Stream.STDOUT) == ["one\n", "two\n", "\n", "three\n"]

    @pytest.mark.asyncio
    async def test_empty_streams_flush_nothing(self):
        collector = Collector()
        await OutputStreamLimiter(collector).pump(_reader(), _reader())
        assert collector.flushes == []

    @pytest.mark.asyncio
    async def test_larger_read_size_still_splits_lines(self):
        collector = Collector()
        limiter = OutputStreamLimiter(collector, read_size=4096)
        await limiter.pump(_reader(b"first\nsecond\nthird"), _reader(b"warn\n"))
        assert collector.texts(Stream.STDOUT) == ["first\n", "second\n", "third"]
        assert collector.texts(Stream.STDERR) == ["warn\n"]

    @pytest.mark.asyncio
    async def test_missing_stream_is_ignored(self):
        collector = Collector()
        await OutputStreamLimiter(collector).pump(None, _reader(b"err\n"))
        assert collector.flushes == [(Stream.STDERR, "err\n")]

    @pytest.mark.asyncio
    async def test_utf8_is_decoded_per_line(self):
        collector = Collector()
        await OutputStreamLimiter(collector).pump(_reader("café ☕\n".encode()), _reader())
        assert collector.texts(Stream.STDOUT) == ["café ☕\n"]


class TestInterleaving:
    @pytest.mark.asyncio
    async def test_each_stream_reconstructs_exactly(self):
        collector = Collector()
        stdout, stderr = asyncio.StreamReader(), asyncio.StreamReader()
        limiter = OutputStreamLimiter(collector)
        pump = asyncio.create_task(limiter.pump(stdout, stderr))

        out_chunks = [b"progress 1", b"0%\nprog", b"ress 20%\n", b"done"]
        err_chunks = [b"warn", b"ing: slow\n", b"error: ", b"gave up\n"]
        for out, err in zip(out_chunks, err_chunks):
            stdout.feed_data(out)
            stderr.feed_data(err)
            await asyncio.sleep(0)
        stdout.feed_eof()
        stderr.feed_eof()
        await asyncio.wait_for(pump, timeout=5)

        assert "".join(collector.texts(Stream.STDOUT)) == b"".join(out_chunks).decode()
        assert "".join(collector.texts(Stream.STDERR)) == b"".join(err_chunks).decode()
        assert collector.texts(Stream.STDOUT) == ["progress 10%\n", "progress 20%\n", "done"]
        assert collector.texts(Stream.STDERR) == ["warning: slow\n", "error: gave up\n"]

    @pytest.mark.asyncio
    async def test_one_stream_closing_early_keeps_the_other_flowing(self):
        collector = Collector()
        stderr = asyncio.StreamReader()
        pump = asyncio.create_task(OutputStreamLimiter(collector).pump(_reader(b"bye"), stderr))
        await asyncio.sleep(0.01)
        assert collector.texts(Stream.STDOUT) == ["bye"]

        stderr.feed_data(b"late\n")
        stderr.feed_eof()
        await asyncio.wait_for(pump, timeout=5)
        assert collector.texts(Stream.STDERR) == ["late\n"]


class TestLineLimit:
    @pytest.mark.asyncio
    async def test_long_line_flushed_in_pieces(self):
        collector = Collector()
        limiter = OutputStreamLimiter(collector, max_line_bytes=4)
        await limiter.pump(_reader(b"abcdefghij\nxy\n"), _reader())
        assert collector.texts(Stream.STDOUT) == ["abcd", "efgh", "ij\n", "xy\n"]

    @pytest.mark.asyncio
    async def test_split_never_breaks_a_character(self):
        collector = Collector()
        data = "ab\u00e9\u20accd\u00e9\n".encode()
        limiter = OutputStreamLimiter(collector, max_line_bytes=3)
        await limiter.pump(_reader(data), _reader())
        texts = collector.texts(Stream.STDOUT)
        assert "".join(texts) == "ab\u00e9\u20accd\u00e9\n"
        assert all("\ufffd" not in text for text in texts)

    @pytest.mark.asyncio
    async def test_truncated_character_at_eof(self):
        collector = Collector()
        await OutputStreamLimiter(collector).pump(_reader(b"ok\xe2\x82"), _reader())
        assert collector.texts(Stream.STDOUT) == ["ok\ufffd"]

    def test_invalid_settings(self):
        async def noop(stream, text):
            pass

        with pytest.raises(ValueError):
            OutputStreamLimiter(noop, read_size=0)
        with pytest.raises(ValueError):
            OutputStreamLimiter(noop, max_line_bytes=0)


class TestReadFailure:
    @pytest.mark.asyncio
    async def test_read_error_raises_stream_error(self):
        collector = Collector()
        with pytest.raises(StreamError) as exc_info:
            await OutputStreamLimiter(collector).pump(FailingReader(b"ok\npart"), _reader())
        assert exc_info.value.context.stream == "stdout"
        assert isinstance(exc_info.value.cause, OSError)
        assert collector.texts(Stream.STDOUT) == ["ok\n"]


class TestWithProcess:
    @pytest.mark.asyncio
    async def test_run_returns_exit_status(self):
        collector = Collector()
        code = (
            "import sys\n"
            "sys.stdout.write('line1\\nline2\\n'); sys.stdout.flush()\n"
            "sys.stderr.write('oops'); sys.stderr.flush()\n"
            "sys.exit(3)\n"
        )
        process = await asyncio.create_subprocess_exec(
            sys.executable, "-c", code,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        status = await OutputStreamLimiter(collector, read_size=64).run(process)
        assert status == 3
        assert collector.texts(Stream.STDOUT) == ["line1\n", "line2\n"]
        assert collector.texts(Stream.STDERR) == ["oops"]

    @pytest.mark.asyncio
    async def test_limit_output_relays_and_returns_status(self, capfd):
        code = "import sys; print('hello'); print('bad', file=sys.stderr); sys.exit(2)"
        status = await limit_output([sys.executable, "-c", code])
        captured = capfd.readouterr()
        assert status == 2
        assert "hello\n" in captured.out
        assert "bad\n" in captured.err

    @pytest.mark.asyncio
    async def test_limit_output_requires_command(self):
        with pytest.raises(ValueError):
            await limit_output([])


class TestExitStatus:
    def test_signals_map_to_shell_convention(self):
        assert exit_status(0) == 0
        assert exit_status(5) == 5
        assert exit_status(-15) == 143
        assert exit_status(-9) == 137
