#!/usr/bin/env python3
"""Fake CLI for integration testing.

This script simulates a command line tool with scripted output on stdout and
stderr, optional delays, and a chosen exit code.

Usage:
    python fake_cli.py [--stdout TEXT ...] [--stderr TEXT ...] [--interval SECONDS]
                       [--sleep SECONDS] [--exit-code CODE] [--large BYTES]
                       [--read-line] [--print-env NAME] [--print-cwd]
                       [--ignore-sigterm] [--ready]

Arguments:
    --stdout: Text written to stdout (repeatable, one flushed write each)
    --stderr: Text written to stderr (repeatable, one flushed write each)
    --interval: Delay between writes (default: 0)
    --sleep: Delay after all writes, before exiting (default: 0)
    --exit-code: Exit code (default: 0)
    --large: Write this many bytes of "x" to stdout
    --read-line: Read one line from stdin and write "stdin:<line>" to stdout
    --print-env: Write "<NAME>=<value>" (or "<NAME> unset") to stdout
    --print-cwd: Write the working directory to stdout
    --ignore-sigterm: Ignore SIGTERM (only SIGKILL stops the process)
    --ready: Write "ready" to stdout once signal handling is set up
"""

from __future__ import annotations

import argparse
import os
import signal
import sys
import time
from typing import NoReturn


def write(stream, text: str) -> None:
    """Write and flush so every write reaches the pipe on its own."""
    stream.write(text)
    stream.flush()


def main() -> NoReturn:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Fake CLI for testing")
    parser.add_argument("--stdout", action="append", default=[], help="Text for stdout")
    parser.add_argument("--stderr", action="append", default=[], help="Text for stderr")
    parser.add_argument("--interval", type=float, default=0.0, help="Delay between writes")
    parser.add_argument("--sleep", type=float, default=0.0, help="Delay before exit")
    parser.add_argument("--exit-code", type=int, default=0, help="Exit code")
    parser.add_argument("--large", type=int, default=0, help="Bytes of filler for stdout")
    parser.add_argument("--read-line", action="store_true", help="Echo one stdin line")
    parser.add_argument("--print-env", action="append", default=[], help="Print a variable")
    parser.add_argument("--print-cwd", action="store_true", help="Print the working directory")
    parser.add_argument("--ignore-sigterm", action="store_true", help="Ignore SIGTERM")
    parser.add_argument("--ready", action="store_true", help="Announce readiness")
    # Accept any positional arguments (for compatibility with CLI patterns)
    parser.add_argument("args", nargs="*", help="Additional arguments")

    args = parser.parse_args()

    if args.ignore_sigterm:
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
    if args.ready:
        write(sys.stdout, "ready\n")

    if args.read_line:
        line = sys.stdin.readline()
        write(sys.stdout, f"stdin:{line.rstrip(chr(10))}\n")

    for name in args.print_env:
        value = os.environ.get(name)
        write(sys.stdout, f"{name}={value}\n" if value is not None else f"{name} unset\n")

    if args.print_cwd:
        write(sys.stdout, os.getcwd() + "\n")

    for index, text in enumerate(args.stdout):
        if index and args.interval:
            time.sleep(args.interval)
        write(sys.stdout, text)

    for index, text in enumerate(args.stderr):
        if index and args.interval:
            time.sleep(args.interval)
        write(sys.stderr, text)

    if args.large:
        remaining = args.large
        block = "x" * 65536
        while remaining > 0:
            part = block[: min(len(block), remaining)]
            sys.stdout.write(part)
            remaining -= len(part)
        sys.stdout.flush()

    if args.args:
        write(sys.stdout, " ".join(args.args) + "\n")

    if args.sleep:
        time.sleep(args.sleep)

    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()
