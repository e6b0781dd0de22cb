"""Typed façade over the process controller.

An Interface is bound to one executable. Each send() runs one Command and
reports a Completion carrying the exit status, the termination reason, the
response decoded from stdout and a ResponseError built from stderr.

Example:
    interface = Interface("/usr/local/bin/tool", cwd="/workspace")
    async with interface:
        completion = await interface.run(
            SimpleCommand(["status"], response_type=LinesResponse),
            deadline=30,
        )
        if completion.error:
            print(completion.error)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

import anyio

from .command import Command, CommandResponse
from .config import Config, get_config
from .errors import InvalidExecutableError, ResponseError
from .runtime.events import TerminationReason
from .runtime.process_controller import ChunkCallback, ProcessController

__all__ = [
    "Completion",
    "CompletionCallback",
    "Interface",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Completion:
    """Outcome of one run.

    Attributes:
        status: Exit code, or signal number when reason is UNCAUGHT_SIGNAL
        reason: Why the child ended
        response: Response decoded from stdout (None if not decodable)
        error: Non-empty stderr text, if any
    """

    status: int
    reason: TerminationReason
    response: CommandResponse | None = None
    error: ResponseError | None = None

    @property
    def succeeded(self) -> bool:
        return self.reason is TerminationReason.EXIT and self.status == 0


CompletionCallback = Callable[[Completion], None]


def is_executable_file(path: str | os.PathLike[str]) -> bool:
    """True if path names a regular file the current user may execute."""
    if not os.fspath(path):
        return False
    candidate = Path(path)
    return candidate.is_file() and os.access(candidate, os.X_OK)


def _decode_error(data: bytes) -> str:
    """Decode stderr as UTF-8. Undecodable bytes are not reported as an error."""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug(f"stderr is not valid UTF-8 ({len(data)} bytes), no error reported")
        return ""


class Interface:
    """Command interface for one executable.

    Args:
        executable: Path of the binary
        cwd: Working directory of the child (None = inherit)
        environment: Variables merged over the inherited environment
            (None = inherit unchanged)
        config: Configuration (default: loaded from the environment)

    Raises:
        InvalidExecutableError: If executable is not an executable regular file
    """

    def __init__(
        self,
        executable: str | os.PathLike[str],
        cwd: str | os.PathLike[str] | None = None,
        environment: Mapping[str, str] | None = None,
        *,
        config: Config | None = None,
    ) -> None:
        if not is_executable_file(executable):
            raise InvalidExecutableError(executable)

        config = config or get_config()
        self.executable = Path(executable)
        self._controller = ProcessController(
            self.executable,
            cwd=cwd,
            env=environment,
            elevation_prefix=config.elevation_prefix,
            read_size=config.read_size,
            term_timeout=config.term_timeout,
            kill_timeout=config.kill_timeout,
            drain_timeout=config.drain_timeout,
        )

    @classmethod
    def create(
        cls,
        executable: str | os.PathLike[str],
        cwd: str | os.PathLike[str] | None = None,
        environment: Mapping[str, str] | None = None,
        *,
        config: Config | None = None,
    ) -> Interface | None:
        """Like the constructor, but returns None for an invalid executable."""
        try:
            return cls(executable, cwd, environment, config=config)
        except InvalidExecutableError as e:
            logger.debug(str(e))
            return None

    @property
    def controller(self) -> ProcessController:
        return self._controller

    @property
    def is_running(self) -> bool:
        return self._controller.is_running

    async def send(
        self,
        command: Command,
        on_output: ChunkCallback | None = None,
        on_error: ChunkCallback | None = None,
        on_completion: CompletionCallback | None = None,
        *,
        password: str | None = None,
    ) -> None:
        """Send a command; a run still in progress is terminated first.

        Returns once the child has been spawned. ``on_completion`` fires later,
        exactly once, after all output has been delivered.

        Args:
            command: The command to execute
            on_output: Called with each stdout chunk
            on_error: Called with each stderr chunk
            on_completion: Called with the run's Completion
            password: Echoed to stdin when the command requires elevation

        Raises:
            SpawnError: If the executable could not be started
        """
        controller = self._controller

        def handle_termination(status: int, reason: TerminationReason) -> None:
            if controller.abandoned:
                completion = Completion(status=status, reason=reason)
            else:
                error_text = _decode_error(controller.error_data)
                completion = Completion(
                    status=status,
                    reason=reason,
                    response=command.parse(controller.output_data),
                    error=ResponseError(error_text) if error_text else None,
                )
            if on_completion is not None:
                on_completion(completion)

        await controller.send(
            list(command.arguments),
            base_command=command.base_command,
            requires_elevation=command.requires_elevation,
            on_output=on_output,
            on_error=on_error,
            on_completion=handle_termination,
            password=password,
        )

    def terminate_execution(self) -> None:
        """Terminate the running command, if any."""
        self._controller.terminate()

    async def run(
        self,
        command: Command,
        *,
        on_output: ChunkCallback | None = None,
        on_error: ChunkCallback | None = None,
        password: str | None = None,
        deadline: float | None = None,
    ) -> Completion:
        """Send a command and wait for its Completion.

        Args:
            command: The command to execute
            on_output: Called with each stdout chunk
            on_error: Called with each stderr chunk
            password: Echoed to stdin when the command requires elevation
            deadline: Seconds after which the command is terminated; the
                Completion then reports the signal

        Raises:
            SpawnError: If the executable could not be started
        """
        result: asyncio.Future[Completion] = asyncio.get_running_loop().create_future()

        def on_completion(completion: Completion) -> None:
            if not result.done():
                result.set_result(completion)

        await self.send(command, on_output, on_error, on_completion, password=password)

        if deadline is not None:
            with anyio.move_on_after(deadline) as scope:
                await asyncio.shield(result)
            if scope.cancelled_caught:
                logger.info(
                    f"Deadline of {deadline}s reached, terminating {self.executable.name}"
                )
                self.terminate_execution()

        return await result

    async def close(self) -> None:
        """Terminate the running command and wait for its completion."""
        await self._controller.shutdown()

    async def __aenter__(self) -> Interface:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def __repr__(self) -> str:
        return (
            f"Interface(executable={str(self.executable)!r}, "
            f"state={self._controller.state.value})"
        )
