"""Process controller: one exclusive subprocess slot with streaming output.

This module provides:
- Spawning the child with stdout/stderr pipes (stdin only for password echo)
- Incremental chunk delivery to per-stream callbacks while accumulating output
- A completion callback that fires exactly once per run, after both pipes
  reached end of file
- Teardown of a live run before the next one starts (SIGTERM -> timeout -> SIGKILL)
- A bounded drain after exit, so descendants holding the pipes cannot delay
  the completion

Key design points:
- Every send() builds a fresh Run (own pipes, sinks, callbacks, queue)
- Two pumps and an exit waiter post events to one ordered queue; a single
  coordinator consumes it, so "child exited" and "all output delivered" are
  joined before completion is reported
- The child leads its own session; signals go to its process group
- terminate() is fire-and-forget; the resulting exit still goes through the
  normal completion path with TerminationReason.UNCAUGHT_SIGNAL
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import anyio

from ..config import (
    DEFAULT_DRAIN_TIMEOUT,
    DEFAULT_ELEVATION_PREFIX,
    DEFAULT_KILL_TIMEOUT,
    DEFAULT_READ_SIZE,
    DEFAULT_TERM_TIMEOUT,
)
from ..errors import SpawnError
from .byte_sink import ByteSink
from .events import (
    ChunkEvent,
    ProcessExitedEvent,
    RunEvent,
    StreamClosedEvent,
    StreamName,
    TerminationReason,
    termination_from_returncode,
)
from .stream_pump import StreamPump

__all__ = [
    "ChunkCallback",
    "ProcessController",
    "Run",
    "RunState",
    "TerminationCallback",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# Reported when a run is abandoned before the child's exit could be observed
ABANDONED_STATUS = 1

# Same buffer limit as asyncio.create_subprocess_exec
STREAM_LIMIT = 2**16

ChunkCallback = Callable[[bytes], None]
TerminationCallback = Callable[[int, TerminationReason], None]


class ExitNotifyingProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Subprocess stream protocol that resolves ``exited`` when the child exits.

    Process.wait() only returns once every pipe is closed as well, which a
    descendant holding a pipe can postpone indefinitely.
    """

    def __init__(self, limit: int, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(limit=limit, loop=loop)
        self.exited: asyncio.Future[None] = loop.create_future()

    def process_exited(self) -> None:
        super().process_exited()
        if not self.exited.done():
            self.exited.set_result(None)


class RunState(str, Enum):
    """Lifecycle of the controller's subprocess slot."""

    IDLE = "idle"
    CONFIGURED = "configured"
    RUNNING = "running"
    DRAINING = "draining"


@dataclass
class Run:
    """Per-run state. A new instance is created for every send().

    Attributes:
        argv: Full argument vector, elevation prefix included
        requires_elevation: Whether the run was started through the elevation prefix
        on_output: Called with each stdout chunk
        on_error: Called with each stderr chunk
        on_completion: Called once with (status, reason)
        stdout: Accumulated stdout
        stderr: Accumulated stderr
        process: The child process (None until spawned)
        transport: Subprocess transport owning the pipes (None until spawned)
        protocol: Protocol reporting the child's exit (None until spawned)
        state: Current lifecycle state
        status: Exit code or signal number, once known
        reason: Termination reason, once known
        abandoned: True if the run ended without observing the child's exit
        reaper: Task reaping an abandoned child
    """

    argv: list[str]
    requires_elevation: bool = False
    on_output: ChunkCallback | None = None
    on_error: ChunkCallback | None = None
    on_completion: TerminationCallback | None = None
    stdout: ByteSink = field(default_factory=ByteSink)
    stderr: ByteSink = field(default_factory=ByteSink)
    process: asyncio.subprocess.Process | None = None
    transport: asyncio.SubprocessTransport | None = None
    protocol: ExitNotifyingProtocol | None = None
    state: RunState = RunState.CONFIGURED
    status: int | None = None
    reason: TerminationReason | None = None
    abandoned: bool = False
    events: asyncio.Queue[RunEvent] = field(default_factory=asyncio.Queue)
    done: asyncio.Event = field(default_factory=asyncio.Event)
    supervisor: asyncio.Task[None] | None = None
    reaper: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    @property
    def is_alive(self) -> bool:
        """True while the child has not been reaped."""
        return self.process is not None and self.process.returncode is None

    def sink(self, stream: StreamName) -> ByteSink:
        return self.stdout if stream is StreamName.STDOUT else self.stderr

    def chunk_callback(self, stream: StreamName) -> ChunkCallback | None:
        return self.on_output if stream is StreamName.STDOUT else self.on_error


class ProcessController:
    """Owns one subprocess slot and drives it through its lifecycle.

    Example:
        controller = ProcessController("/usr/bin/git")
        await controller.send(
            ["status", "--short"],
            on_output=lambda chunk: print(chunk.decode(), end=""),
            on_completion=lambda status, reason: print(status, reason),
        )
        await controller.wait()

    Args:
        executable: Path of the binary to run
        cwd: Working directory of the child (None = inherit)
        env: Environment overrides merged over os.environ (None = inherit unchanged)
        elevation_prefix: argv prefix for runs that require elevation
        read_size: Maximum bytes per pipe read
        term_timeout: Seconds to wait after SIGTERM during teardown
        kill_timeout: Seconds to wait after SIGKILL during teardown
        drain_timeout: Seconds to wait for end of file after the child exited
    """

    def __init__(
        self,
        executable: str | os.PathLike[str],
        *,
        cwd: str | os.PathLike[str] | None = None,
        env: Mapping[str, str] | None = None,
        elevation_prefix: Sequence[str] = DEFAULT_ELEVATION_PREFIX,
        read_size: int = DEFAULT_READ_SIZE,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        drain_timeout: float = DEFAULT_DRAIN_TIMEOUT,
    ) -> None:
        self.executable = Path(executable)
        self.cwd = Path(cwd) if cwd is not None else None
        self.env = dict(env) if env is not None else None
        self.elevation_prefix = tuple(elevation_prefix)
        self.read_size = read_size
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self.drain_timeout = drain_timeout

        self._run: Run | None = None
        self._send_lock = asyncio.Lock()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> RunState:
        if self._run is None or self._run.done.is_set():
            return RunState.IDLE
        return self._run.state

    @property
    def is_running(self) -> bool:
        return self.state is not RunState.IDLE

    @property
    def pid(self) -> int | None:
        return self._run.pid if self._run else None

    @property
    def output_data(self) -> bytes:
        """Accumulated stdout of the current (or last) run."""
        return self._run.stdout.snapshot() if self._run else b""

    @property
    def error_data(self) -> bytes:
        """Accumulated stderr of the current (or last) run."""
        return self._run.stderr.snapshot() if self._run else b""

    @property
    def abandoned(self) -> bool:
        """Whether the current (or last) run ended without an observed exit."""
        return self._run.abandoned if self._run else False

    def build_argv(
        self,
        arguments: Sequence[str],
        *,
        base_command: str = "",
        requires_elevation: bool = False,
    ) -> list[str]:
        """Build the argument vector for a run.

        Layout: [*elevation_prefix, executable, base_command, *arguments], the
        prefix only when elevation is required and base_command only if non-empty.
        """
        argv: list[str] = []
        if requires_elevation:
            argv.extend(self.elevation_prefix)
        argv.append(str(self.executable))
        if base_command:
            argv.append(base_command)
        argv.extend(arguments)
        return argv

    # =========================================================================
    # Public operations
    # =========================================================================

    async def send(
        self,
        arguments: Sequence[str],
        *,
        base_command: str = "",
        requires_elevation: bool = False,
        on_output: ChunkCallback | None = None,
        on_error: ChunkCallback | None = None,
        on_completion: TerminationCallback | None = None,
        password: str | None = None,
    ) -> Run:
        """Start a run, replacing any run that is still alive.

        Returns as soon as the child has been spawned. ``on_completion`` is
        called later, once, after the child exited and both pipes were drained.

        Args:
            arguments: Arguments after the base command
            base_command: Optional subcommand placed after the executable
            requires_elevation: Prefix argv with the elevation prefix
            on_output: Called with each stdout chunk
            on_error: Called with each stderr chunk
            on_completion: Called once with (status, reason)
            password: Written to stdin followed by a newline when elevation is required

        Returns:
            The new Run

        Raises:
            SpawnError: If the OS could not start the child. No completion
                callback fires for this run.
        """
        async with self._send_lock:
            # One child per controller: tear the previous run down first
            await self._stop_current()

            argv = self.build_argv(
                arguments,
                base_command=base_command,
                requires_elevation=requires_elevation,
            )
            run = Run(
                argv=argv,
                requires_elevation=requires_elevation,
                on_output=on_output,
                on_error=on_error,
                on_completion=on_completion,
            )
            self._run = run

            echo_password = requires_elevation and password is not None
            try:
                await self._spawn(run, echo_password)
            except OSError as e:
                logger.debug(f"Spawn failed argv={argv[0]}: {e}")
                run.on_output = run.on_error = run.on_completion = None
                run.state = RunState.IDLE
                run.done.set()
                self._run = None
                raise SpawnError(argv, str(e)) from e

            run.state = RunState.RUNNING
            logger.debug(
                f"Started subprocess pid={run.pid} argv={argv[0]} "
                f"elevated={requires_elevation} cwd={self.cwd}"
            )

            if echo_password:
                self._echo_password(run, password or "")

            run.supervisor = asyncio.create_task(
                self._supervise(run), name=f"command-interface-run-{run.pid}"
            )
            run.supervisor.add_done_callback(
                lambda task: self._on_supervisor_done(run, task)
            )
            return run

    def terminate(self) -> None:
        """Ask the running child to terminate.

        Fire-and-forget: the completion callback is not invoked here; it fires
        once the child's exit has been observed and its output drained.
        No-op when idle.
        """
        run = self._run
        if run is None or not run.is_alive:
            return
        self._signal(run, kill=False)

    async def wait(self) -> None:
        """Wait until the current run's completion callback has fired.

        For an abandoned run this also waits until its child has been reaped.
        """
        run = self._run
        if run is None:
            return
        await run.done.wait()
        if run.reaper is not None:
            await run.reaper

    async def shutdown(self) -> None:
        """Stop the current run and wait for its completion, even if cancelled."""
        async def _do_shutdown() -> None:
            async with self._send_lock:
                await self._stop_current()

        task = asyncio.create_task(_do_shutdown())
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # Finish the cleanup before propagating the cancellation
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                logger.debug("Double cancel during shutdown, cleanup continues in background")
            raise

    # =========================================================================
    # Spawn and stdin
    # =========================================================================

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        """Build platform-specific subprocess kwargs."""
        kwargs: dict[str, Any] = {}

        if self.env is not None:
            # Overrides are merged over the inherited environment
            kwargs["env"] = {**os.environ, **self.env}
        if self.cwd is not None:
            kwargs["cwd"] = self.cwd

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def _spawn(self, run: Run, echo_password: bool) -> None:
        """Start the child and attach its pipes to the run.

        Equivalent to asyncio.create_subprocess_exec, with a protocol that
        also reports the exit itself.
        """
        loop = asyncio.get_running_loop()
        # stdin must be DEVNULL rather than None, so the child never inherits ours
        transport, protocol = await loop.subprocess_exec(
            lambda: ExitNotifyingProtocol(limit=STREAM_LIMIT, loop=loop),
            *run.argv,
            stdin=asyncio.subprocess.PIPE if echo_password else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **self._build_subprocess_kwargs(),
        )
        run.transport = transport
        run.protocol = protocol
        run.process = asyncio.subprocess.Process(transport, protocol, loop)

    def _echo_password(self, run: Run, password: str) -> None:
        """Best-effort single write of the password and a newline to stdin."""
        stdin = run.process.stdin if run.process else None
        if stdin is None:
            return
        try:
            stdin.write(password.encode("utf-8") + b"\n")
            stdin.close()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"Password echo failed pid={run.pid}: {e}")

    # =========================================================================
    # Run coordination
    # =========================================================================

    async def _supervise(self, run: Run) -> None:
        """Drive one run from spawn to its completion callback."""
        process = run.process
        protocol = run.protocol
        if (
            process is None
            or protocol is None
            or process.stdout is None
            or process.stderr is None
        ):
            raise RuntimeError(f"Run has no piped process: {run.argv[0]}")

        pumps = [
            StreamPump(StreamName.STDOUT, process.stdout, run.events, self.read_size),
            StreamPump(StreamName.STDERR, process.stderr, run.events, self.read_size),
        ]
        producers = [asyncio.create_task(pump.run()) for pump in pumps]
        producers.append(asyncio.create_task(self._wait_exit(run, process, protocol)))

        try:
            exited = await self._coordinate(run)
        except asyncio.CancelledError:
            await self._stop_producers(producers)
            raise

        # Pumps of streams given up after the drain timeout are still reading
        await self._stop_producers(producers)
        self._close_transport(run)
        self._finish(run, exited.status, exited.reason)

    async def _stop_producers(self, producers: list[asyncio.Task[Any]]) -> None:
        for producer in producers:
            if not producer.done():
                producer.cancel()
        await asyncio.gather(*producers, return_exceptions=True)

    def _on_supervisor_done(self, run: Run, task: asyncio.Task[None]) -> None:
        """Complete a run whose supervisor ended without reporting completion.

        This happens when the supervisor is cancelled (owner gone, event loop
        shutting down), possibly before it ever ran.
        """
        if run.done.is_set():
            return
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Run supervisor failed pid={run.pid}: {task.exception()}")
        logger.debug(f"Run abandoned pid={run.pid}")
        if run.process is not None and run.is_alive:
            self._signal(run, kill=True)
            run.reaper = asyncio.get_running_loop().create_task(
                self._reap(run, run.process)
            )
        run.abandoned = True
        run.stdout.reset()
        run.stderr.reset()
        self._finish(run, ABANDONED_STATUS, TerminationReason.UNCAUGHT_SIGNAL)

    async def _reap(self, run: Run, process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Abandoned subprocess not reaped pid={process.pid}")
        finally:
            self._close_transport(run)

    def _close_transport(self, run: Run) -> None:
        """Close the run's pipes. Kills the child if it is still running."""
        if run.transport is not None and not run.transport.is_closing():
            run.transport.close()

    async def _wait_exit(
        self,
        run: Run,
        process: asyncio.subprocess.Process,
        protocol: ExitNotifyingProtocol,
    ) -> None:
        await protocol.exited
        returncode = process.returncode
        if returncode is None:
            raise RuntimeError(f"Exit reported without a returncode pid={run.pid}")
        status, reason = termination_from_returncode(returncode)
        logger.debug(
            f"Subprocess exited pid={run.pid} returncode={returncode} "
            f"reason={reason.value}"
        )
        run.events.put_nowait(ProcessExitedEvent(status=status, reason=reason))

    async def _coordinate(self, run: Run) -> ProcessExitedEvent:
        """Consume run events until the exit and both end-of-file events arrived.

        Draining after the exit is bounded. If a pipe is still open after
        drain_timeout, descendants of the child hold it: the child's session
        is killed, and after a further kill_timeout the open streams are
        given up.
        """
        open_streams = {StreamName.STDOUT, StreamName.STDERR}

        exited: ProcessExitedEvent | None = None
        while exited is None:
            event = await run.events.get()
            if isinstance(event, ProcessExitedEvent):
                exited = event
            else:
                self._handle_stream_event(run, event, open_streams)
        run.state = RunState.DRAINING

        if not await self._drain(run, open_streams, self.drain_timeout):
            logger.debug(
                f"Pipes still open {self.drain_timeout}s after exit pid={run.pid}, "
                f"killing the session"
            )
            self._signal(run, kill=True)
            if not await self._drain(run, open_streams, self.kill_timeout):
                streams = ", ".join(sorted(stream.value for stream in open_streams))
                logger.warning(f"Giving up on open streams pid={run.pid}: {streams}")

        logger.debug(
            f"Run drained pid={run.pid} "
            f"{time.time() - exited.timestamp:.3f}s after exit"
        )
        return exited

    async def _drain(
        self, run: Run, open_streams: set[StreamName], timeout: float
    ) -> bool:
        """Consume stream events until both streams closed or timeout elapsed.

        Returns:
            True if every stream reached end of file
        """
        with anyio.move_on_after(timeout):
            while open_streams:
                event = await run.events.get()
                self._handle_stream_event(run, event, open_streams)
        return not open_streams

    def _handle_stream_event(
        self, run: Run, event: RunEvent, open_streams: set[StreamName]
    ) -> None:
        if isinstance(event, ChunkEvent):
            self._deliver(run, event)
        elif isinstance(event, StreamClosedEvent):
            open_streams.discard(event.stream)

    def _deliver(self, run: Run, event: ChunkEvent) -> None:
        """Append a chunk to its sink, then hand it to the chunk callback."""
        run.sink(event.stream).append(event.data)
        callback = run.chunk_callback(event.stream)
        if callback is None:
            return
        try:
            callback(event.data)
        except Exception as e:
            logger.warning(f"Error in {event.stream.value} callback: {e}")

    def _finish(self, run: Run, status: int, reason: TerminationReason) -> None:
        """Record the outcome and fire the completion callback once."""
        if run.done.is_set():
            return
        run.status = status
        run.reason = reason
        run.state = RunState.IDLE
        logger.debug(
            f"Run finished pid={run.pid} status={status} reason={reason.value} "
            f"elevated={run.requires_elevation} abandoned={run.abandoned}"
        )

        callback = run.on_completion
        run.on_output = run.on_error = run.on_completion = None
        try:
            if callback is not None:
                callback(status, reason)
        except Exception as e:
            logger.warning(f"Error in completion callback: {e}")
        finally:
            run.done.set()

    # =========================================================================
    # Teardown
    # =========================================================================

    def _signal(self, run: Run, *, kill: bool) -> None:
        """Send SIGTERM (or SIGKILL) to the child's process group."""
        process = run.process
        if process is None:
            return

        if IS_WINDOWS:
            try:
                if kill:
                    process.kill()
                else:
                    process.terminate()
            except ProcessLookupError:
                logger.debug(f"Subprocess already exited pid={process.pid}")
            return

        sig = signal.SIGKILL if kill else signal.SIGTERM
        try:
            # start_new_session makes the child's pid its process group id,
            # which stays valid for descendants after the child was reaped
            os.killpg(process.pid, sig)
            logger.debug(f"Sent {sig.name} to process group pgid={process.pid}")
        except ProcessLookupError:
            logger.debug(f"Process group already gone pgid={process.pid}")
        except OSError as e:
            logger.debug(f"killpg failed, falling back to the child: {e}")
            if process.returncode is None:
                try:
                    process.send_signal(sig)
                except OSError as child_error:
                    logger.warning(
                        f"Could not signal subprocess pid={process.pid}: {child_error}"
                    )

    async def _stop_current(self) -> None:
        """Terminate the current run, if any, and wait for its completion.

        Termination strategy:
        1. Send SIGTERM
        2. Wait up to term_timeout for the completion
        3. If still running, send SIGKILL
        4. Wait up to kill_timeout; then abandon the run so the completion
           callback still fires
        """
        run = self._run
        if run is None or run.done.is_set():
            return

        if run.is_alive:
            self._signal(run, kill=False)
        try:
            await asyncio.wait_for(run.done.wait(), timeout=self.term_timeout)
            return
        except asyncio.TimeoutError:
            pass

        if run.is_alive:
            logger.debug(f"Force killing subprocess pid={run.pid}")
            self._signal(run, kill=True)
        try:
            await asyncio.wait_for(run.done.wait(), timeout=self.kill_timeout)
            return
        except asyncio.TimeoutError:
            logger.warning(
                f"Run did not finish after kill pid={run.pid}, abandoning it"
            )

        if run.supervisor is not None and not run.supervisor.done():
            run.supervisor.cancel()
            try:
                await run.supervisor
            except asyncio.CancelledError:
                pass
        await self.wait()
