"""Runtime module for subprocess lifecycle and output streaming.

This module provides the process controller, its per-stream pumps and byte
sinks, and the events they exchange.
"""

from __future__ import annotations

from .byte_sink import ByteSink
from .events import (
    ChunkEvent,
    ProcessExitedEvent,
    RunEvent,
    StreamClosedEvent,
    StreamName,
    TerminationReason,
)
from .process_controller import ProcessController, Run, RunState
from .stream_pump import StreamPump

__all__ = [
    "ByteSink",
    "ChunkEvent",
    "ProcessController",
    "ProcessExitedEvent",
    "Run",
    "RunEvent",
    "RunState",
    "StreamClosedEvent",
    "StreamName",
    "StreamPump",
    "TerminationReason",
]
