"""Stream pump: turns pipe readiness into ordered chunk events."""

from __future__ import annotations

import asyncio
import logging

from ..config import DEFAULT_READ_SIZE
from .events import ChunkEvent, RunEvent, StreamClosedEvent, StreamName

__all__ = ["StreamPump"]

logger = logging.getLogger(__name__)


class StreamPump:
    """Reads one child stream until end of file.

    Each read returns the bytes currently available (at most ``read_size``)
    and is posted as a ChunkEvent, in arrival order. End of file posts a
    single StreamClosedEvent. A pump is single use.

    Args:
        stream: Which child stream this pump reads
        reader: The asyncio StreamReader attached to the pipe
        events: Queue shared with the run coordinator
        read_size: Maximum bytes per read
    """

    def __init__(
        self,
        stream: StreamName,
        reader: asyncio.StreamReader,
        events: asyncio.Queue[RunEvent],
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self.stream = stream
        self._reader = reader
        self._events = events
        self._read_size = read_size
        self._started = False
        self.bytes_read = 0

    @property
    def started(self) -> bool:
        return self._started

    async def run(self) -> int:
        """Pump the stream to end of file.

        Returns:
            Total number of bytes read

        Raises:
            RuntimeError: If the pump already ran
        """
        if self._started:
            raise RuntimeError(f"{self.stream.value} pump cannot be restarted")
        self._started = True

        try:
            while True:
                try:
                    chunk = await self._reader.read(self._read_size)
                except OSError as e:
                    # Only this stream is abandoned; the other keeps draining
                    logger.warning(f"Error reading {self.stream.value}: {e}")
                    break
                if not chunk:
                    break
                self.bytes_read += len(chunk)
                self._events.put_nowait(ChunkEvent(stream=self.stream, data=chunk))
        finally:
            self._events.put_nowait(StreamClosedEvent(stream=self.stream))

        logger.debug(f"{self.stream.value} closed after {self.bytes_read} bytes")
        return self.bytes_read
