"""Append-only byte accumulation for one stream of one run."""

from __future__ import annotations

__all__ = ["ByteSink"]


class ByteSink:
    """Accumulates the bytes of one stream.

    Only the run coordinator appends. ``reset`` must not be called while a
    pump of the same run can still deliver data.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def append(self, data: bytes) -> None:
        self._buffer += data

    def snapshot(self) -> bytes:
        """Return a copy of the current contents."""
        return bytes(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        return f"ByteSink(size={len(self._buffer)})"
