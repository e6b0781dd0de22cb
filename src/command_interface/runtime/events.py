"""Run events exchanged between the producers of a run and its coordinator.

Three producers feed one ordered queue per run:
- the stdout pump (ChunkEvent..., StreamClosedEvent)
- the stderr pump (ChunkEvent..., StreamClosedEvent)
- the exit waiter (ProcessExitedEvent)

The coordinator consumes the queue and only reports completion once it has
seen the exit event and both close events.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    "StreamName",
    "TerminationReason",
    "RunEventBase",
    "ChunkEvent",
    "StreamClosedEvent",
    "ProcessExitedEvent",
    "RunEvent",
    "termination_from_returncode",
]


class StreamName(str, Enum):
    """Child output stream."""

    STDOUT = "stdout"
    STDERR = "stderr"


class TerminationReason(str, Enum):
    """Why the child process ended.

    - EXIT: the process exited on its own; status is the exit code
    - UNCAUGHT_SIGNAL: the process was killed by a signal; status is the signal number
    """

    EXIT = "exit"
    UNCAUGHT_SIGNAL = "uncaught_signal"


def termination_from_returncode(returncode: int) -> tuple[int, TerminationReason]:
    """Split an asyncio/subprocess returncode into (status, reason).

    A negative returncode -N means the child was killed by signal N.
    """
    if returncode < 0:
        return -returncode, TerminationReason.UNCAUGHT_SIGNAL
    return returncode, TerminationReason.EXIT


class RunEventBase(BaseModel):
    """Base for all run events.

    Attributes:
        timestamp: Unix timestamp (seconds) when the event was produced
    """

    model_config = ConfigDict(frozen=True)

    timestamp: float = Field(default_factory=time.time)


class ChunkEvent(RunEventBase):
    """Bytes that were available on one stream at a readiness event."""

    kind: Literal["chunk"] = "chunk"
    stream: StreamName
    data: bytes


class StreamClosedEvent(RunEventBase):
    """A stream reached end of file (or failed and was abandoned)."""

    kind: Literal["closed"] = "closed"
    stream: StreamName


class ProcessExitedEvent(RunEventBase):
    """The OS reported the child's termination."""

    kind: Literal["exited"] = "exited"
    status: int
    reason: TerminationReason


RunEvent = ChunkEvent | StreamClosedEvent | ProcessExitedEvent
