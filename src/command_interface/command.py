"""Command descriptors and typed responses.

A Command describes what to run: an optional base command (for executables
with subcommands), ordered arguments, whether elevation is required, and the
CommandResponse type that decodes the accumulated stdout bytes.

The elevation prefix never belongs in ``arguments``; the process controller
adds it.

Example:
    class ListCommand(Command):
        response_type = LinesResponse

        def __init__(self, path: str) -> None:
            self.path = path

        @property
        def arguments(self) -> list[str]:
            return ["list", self.path]
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, ClassVar

__all__ = [
    "Command",
    "CommandResponse",
    "JSONResponse",
    "LinesResponse",
    "SimpleCommand",
    "TextResponse",
]

logger = logging.getLogger(__name__)


class CommandResponse(ABC):
    """A typed response decoded from a command's stdout bytes."""

    @classmethod
    @abstractmethod
    def from_bytes(cls, data: bytes) -> CommandResponse | None:
        """Decode a response, returning None if the bytes are not understood."""
        ...


@dataclass(frozen=True)
class TextResponse(CommandResponse):
    """Stdout decoded as UTF-8 text."""

    text: str

    @classmethod
    def from_bytes(cls, data: bytes) -> TextResponse | None:
        try:
            return cls(text=data.decode("utf-8"))
        except UnicodeDecodeError:
            return None


@dataclass(frozen=True)
class LinesResponse(CommandResponse):
    """Stdout split into non-empty lines (trailing whitespace stripped)."""

    lines: tuple[str, ...]

    @classmethod
    def from_bytes(cls, data: bytes) -> LinesResponse | None:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError:
            return None
        lines = (line.rstrip() for line in text.splitlines())
        return cls(lines=tuple(line for line in lines if line))


@dataclass(frozen=True)
class JSONResponse(CommandResponse):
    """Stdout parsed as a single JSON document."""

    data: Any

    @classmethod
    def from_bytes(cls, data: bytes) -> JSONResponse | None:
        try:
            return cls(data=json.loads(data))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None


class Command(ABC):
    """A command that can be sent through an Interface.

    Subclasses provide ``arguments`` and may override ``base_command``,
    ``requires_elevation`` and ``response_type``.
    """

    response_type: ClassVar[type[CommandResponse]] = TextResponse

    @property
    def base_command(self) -> str:
        """Subcommand placed right after the executable ("" for none)."""
        return ""

    @property
    def requires_elevation(self) -> bool:
        return False

    @property
    @abstractmethod
    def arguments(self) -> Sequence[str]:
        """Ordered arguments passed after the base command."""
        ...

    def parse(self, data: bytes) -> CommandResponse | None:
        """Decode accumulated stdout into the command's response type.

        Never raises: a decoder that fails yields None.
        """
        try:
            return self.response_type.from_bytes(data)
        except Exception as e:
            logger.debug(
                f"{self.response_type.__name__} failed to decode "
                f"{len(data)} bytes: {e}"
            )
            return None


@dataclass(frozen=True)
class SimpleCommand(Command):
    """Command built from plain values.

    Attributes:
        arguments: Ordered arguments
        base_command: Optional subcommand
        requires_elevation: Run through the elevation prefix
        response_type: Decoder for stdout
    """

    arguments: tuple[str, ...] = ()
    base_command: str = ""
    requires_elevation: bool = False
    response_type: type[CommandResponse] = TextResponse

    def __post_init__(self) -> None:
        # Lists are accepted for convenience but stored as a tuple
        if not isinstance(self.arguments, tuple):
            object.__setattr__(self, "arguments", tuple(self.arguments))
        if not all(isinstance(arg, str) for arg in self.arguments):
            raise TypeError("arguments must be strings")
