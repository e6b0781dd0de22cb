"""Command line entry point.

Runs one executable through an Interface, streaming its stdout/stderr to ours
and exiting with its status (128 + signal number when it was killed).

Usage:
    python -m command_interface [--cwd DIR] [--env KEY=VALUE ...] [--sudo]
        [--password-env NAME] [--deadline SECONDS] EXECUTABLE [ARGS ...]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from collections.abc import Sequence

from .command import SimpleCommand
from .config import Config, get_config
from .errors import CommandInterfaceError
from .interface import Interface
from .runtime.events import TerminationReason

__all__ = ["build_parser", "configure_logging", "exit_code_for", "main", "parse_env"]

logger = logging.getLogger(__name__)

# Exit code for usage and spawn errors of this tool itself
ERROR_EXIT_CODE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="command-interface",
        description="Run an executable and stream its output.",
    )
    parser.add_argument("--cwd", default=None, help="Working directory of the child")
    parser.add_argument(
        "--env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment override (repeatable), merged over the inherited environment",
    )
    parser.add_argument(
        "--sudo",
        action="store_true",
        help="Run through the elevation prefix (CMDIF_ELEVATION_PREFIX)",
    )
    parser.add_argument(
        "--password-env",
        default=None,
        metavar="NAME",
        help="Environment variable holding the elevation password",
    )
    parser.add_argument(
        "--deadline",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Terminate the command after this many seconds",
    )
    parser.add_argument("executable", help="Path of the executable")
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments")
    return parser


def parse_env(items: Sequence[str]) -> dict[str, str] | None:
    """Parse KEY=VALUE items.

    Raises:
        ValueError: If an item has no '=' or an empty key
    """
    if not items:
        return None
    env: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"invalid environment override: {item!r}")
        env[key] = value
    return env


def exit_code_for(status: int, reason: TerminationReason) -> int:
    """Map a child's termination to a shell-style exit code."""
    if reason is TerminationReason.UNCAUGHT_SIGNAL:
        return 128 + status
    return status


def configure_logging(config: Config) -> None:
    """Configure handlers: a debug log file when enabled, stderr otherwise."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.WARNING

    # Root logger (third-party libraries) stays at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("command_interface").setLevel(log_level)


def _write(stream, chunk: bytes) -> None:
    stream.buffer.write(chunk)
    stream.buffer.flush()


async def run_cli(args: argparse.Namespace, config: Config) -> int:
    """Run the command described by parsed arguments; return the exit code."""
    try:
        env = parse_env(args.env)
        interface = Interface(args.executable, args.cwd, env, config=config)
    except (ValueError, CommandInterfaceError) as e:
        print(f"command-interface: {e}", file=sys.stderr)
        return ERROR_EXIT_CODE

    password = os.environ.get(args.password_env) if args.password_env else None
    command = SimpleCommand(tuple(args.args), requires_elevation=args.sudo)

    async with interface:
        try:
            completion = await interface.run(
                command,
                on_output=lambda chunk: _write(sys.stdout, chunk),
                on_error=lambda chunk: _write(sys.stderr, chunk),
                password=password,
                deadline=args.deadline,
            )
        except CommandInterfaceError as e:
            print(f"command-interface: {e}", file=sys.stderr)
            return ERROR_EXIT_CODE

    logger.debug(
        f"Command finished status={completion.status} reason={completion.reason.value}"
    )
    return exit_code_for(completion.status, completion.reason)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    config = get_config()
    configure_logging(config)

    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(run_cli(args, config))
    except KeyboardInterrupt:
        return 128 + 2


if __name__ == "__main__":
    sys.exit(main())
