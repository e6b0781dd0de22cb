"""ByteSink and StreamPump unit tests.

These tests feed asyncio StreamReaders directly, without a child process.
"""

from __future__ import annotations

import asyncio

import pytest

from command_interface.runtime.byte_sink import ByteSink
from command_interface.runtime.events import (
    ChunkEvent,
    ProcessExitedEvent,
    StreamClosedEvent,
    StreamName,
    TerminationReason,
    termination_from_returncode,
)
from command_interface.runtime.stream_pump import StreamPump


def drain_queue(queue: asyncio.Queue) -> list:
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events


class FailingReader:
    """Reader whose first read succeeds and second read fails."""

    def __init__(self) -> None:
        self.calls = 0

    async def read(self, n: int) -> bytes:
        self.calls += 1
        if self.calls == 1:
            return b"partial"
        raise ConnectionResetError("pipe went away")


class TestByteSink:
    """Test ByteSink accumulation."""

    def test_starts_empty(self):
        sink = ByteSink()
        assert sink.snapshot() == b""
        assert len(sink) == 0

    def test_append_accumulates_in_order(self):
        sink = ByteSink()
        sink.append(b"hel")
        sink.append(b"")
        sink.append(b"lo")
        assert sink.snapshot() == b"hello"
        assert len(sink) == 5

    def test_snapshot_is_a_copy(self):
        sink = ByteSink()
        sink.append(b"abc")
        snapshot = sink.snapshot()
        sink.append(b"def")
        assert snapshot == b"abc"

    def test_reset(self):
        sink = ByteSink()
        sink.append(b"abc")
        sink.reset()
        assert sink.snapshot() == b""
        assert "size=0" in repr(sink)


class TestStreamPump:
    """Test StreamPump event production."""

    @pytest.mark.asyncio
    async def test_chunks_then_close(self):
        reader = asyncio.StreamReader()
        queue: asyncio.Queue = asyncio.Queue()
        pump = StreamPump(StreamName.STDOUT, reader, queue, read_size=4)

        reader.feed_data(b"abcdef")
        reader.feed_eof()
        total = await pump.run()

        events = drain_queue(queue)
        chunks = [e for e in events if isinstance(e, ChunkEvent)]
        assert total == 6
        assert b"".join(c.data for c in chunks) == b"abcdef"
        assert all(len(c.data) <= 4 for c in chunks)
        assert all(c.stream is StreamName.STDOUT for c in chunks)
        assert isinstance(events[-1], StreamClosedEvent)
        assert events[-1].stream is StreamName.STDOUT

    @pytest.mark.asyncio
    async def test_delivers_available_bytes_incrementally(self):
        reader = asyncio.StreamReader()
        queue: asyncio.Queue = asyncio.Queue()
        pump = StreamPump(StreamName.STDERR, reader, queue)
        task = asyncio.create_task(pump.run())

        reader.feed_data(b"first")
        event = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert isinstance(event, ChunkEvent)
        assert event.data == b"first"

        reader.feed_data(b"second")
        event = await asyncio.wait_for(queue.get(), timeout=1.0)
        assert event.data == b"second"

        reader.feed_eof()
        await asyncio.wait_for(task, timeout=1.0)
        event = queue.get_nowait()
        assert isinstance(event, StreamClosedEvent)

    @pytest.mark.asyncio
    async def test_empty_stream_only_closes(self):
        reader = asyncio.StreamReader()
        queue: asyncio.Queue = asyncio.Queue()
        reader.feed_eof()

        total = await StreamPump(StreamName.STDOUT, reader, queue).run()

        events = drain_queue(queue)
        assert total == 0
        assert len(events) == 1
        assert isinstance(events[0], StreamClosedEvent)

    @pytest.mark.asyncio
    async def test_not_restartable(self):
        reader = asyncio.StreamReader()
        queue: asyncio.Queue = asyncio.Queue()
        reader.feed_eof()
        pump = StreamPump(StreamName.STDOUT, reader, queue)
        await pump.run()

        assert pump.started
        with pytest.raises(RuntimeError):
            await pump.run()

    @pytest.mark.asyncio
    async def test_read_error_closes_stream(self):
        queue: asyncio.Queue = asyncio.Queue()
        pump = StreamPump(StreamName.STDERR, FailingReader(), queue)  # type: ignore[arg-type]

        total = await pump.run()

        events = drain_queue(queue)
        assert total == len(b"partial")
        assert isinstance(events[0], ChunkEvent)
        assert isinstance(events[-1], StreamClosedEvent)


class TestEvents:
    """Test run event models."""

    def test_termination_from_returncode(self):
        assert termination_from_returncode(0) == (0, TerminationReason.EXIT)
        assert termination_from_returncode(3) == (3, TerminationReason.EXIT)
        assert termination_from_returncode(-15) == (15, TerminationReason.UNCAUGHT_SIGNAL)

    def test_events_are_frozen(self):
        event = ProcessExitedEvent(status=0, reason=TerminationReason.EXIT)
        with pytest.raises(Exception):
            event.status = 1  # type: ignore

    def test_event_kinds(self):
        assert ChunkEvent(stream=StreamName.STDOUT, data=b"x").kind == "chunk"
        assert StreamClosedEvent(stream=StreamName.STDERR).kind == "closed"
        assert ProcessExitedEvent(status=9, reason="uncaught_signal").reason is (
            TerminationReason.UNCAUGHT_SIGNAL
        )
