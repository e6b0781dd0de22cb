"""Exception classes for command_interface.

Construction and spawn errors are raised at the call site. Everything that
happens after the child started is reported through the completion callback,
where non-empty stderr output shows up as a ResponseError value.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

__all__ = [
    "CommandInterfaceError",
    "InvalidExecutableError",
    "SpawnError",
    "ResponseError",
]


class CommandInterfaceError(Exception):
    """Base exception for command_interface."""
    pass


class InvalidExecutableError(CommandInterfaceError):
    """The executable path does not name an executable regular file.

    Attributes:
        path: The rejected path
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        super().__init__(f"not an executable file: {path!s}")


class SpawnError(CommandInterfaceError):
    """The OS failed to start the child process.

    The original OSError is chained as ``__cause__``.

    Attributes:
        argv: The argument vector that could not be started
    """

    def __init__(self, argv: Sequence[str], reason: str) -> None:
        self.argv = list(argv)
        super().__init__(f"failed to spawn {self.argv[0] if self.argv else '?'}: {reason}")


class ResponseError(CommandInterfaceError):
    """Text the child wrote to stderr.

    Delivered alongside the parsed response, never raised by the library.
    """

    def __init__(self, text: str) -> None:
        self.text = text
        super().__init__(text)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResponseError):
            return NotImplemented
        return self.text == other.text

    def __hash__(self) -> int:
        return hash(self.text)
