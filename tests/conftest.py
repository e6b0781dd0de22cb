"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import stat
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path (development checkouts)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from command_interface.config import Config  # noqa: E402

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_CLI_PATH = FIXTURES_DIR / "fake_cli.py"

IS_WINDOWS = sys.platform == "win32"


def write_script(path: Path, body: str) -> Path:
    """Write an executable /bin/sh script."""
    path.write_text("#!/bin/sh\n" + body, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[[str, str], Path]:
    """Factory for executable shell scripts in a temporary directory."""

    def _make(name: str, body: str) -> Path:
        return write_script(tmp_path / name, body)

    return _make


@pytest.fixture
def fake_cli(tmp_path: Path) -> Path:
    """Executable wrapper around tests/fixtures/fake_cli.py.

    ``exec`` makes the Python process the direct child, so signals reach it.
    """
    return write_script(
        tmp_path / "fake-cli",
        f'exec "{sys.executable}" "{FAKE_CLI_PATH}" "$@"\n',
    )


@pytest.fixture
def echo_script(tmp_path: Path) -> Path:
    """Echo-style executable: prints its arguments and a newline."""
    return write_script(tmp_path / "echo.sh", 'echo "$@"\n')


@pytest.fixture
def boom_script(tmp_path: Path) -> Path:
    """Writes "boom" to stderr only and exits with status 1."""
    return write_script(tmp_path / "boom.sh", "printf boom >&2\nexit 1\n")


@pytest.fixture
def sleep_script(tmp_path: Path) -> Path:
    """Sleeps for the given number of seconds (default 5)."""
    return write_script(tmp_path / "sleep.sh", 'exec sleep "${1:-5}"\n')


@pytest.fixture
def wrapped_sleep_script(tmp_path: Path) -> Path:
    """Like sleep_script, but sleep runs as a child of the shell, sharing its pipes."""
    return write_script(tmp_path / "wrapped-sleep.sh", 'sleep "${1:-5}"\n')


@pytest.fixture
def fake_sudo(tmp_path: Path) -> Path:
    """Elevation stand-in: reads the password line, reports it, runs the rest."""
    return write_script(
        tmp_path / "fake-sudo",
        'IFS= read -r password\necho "password=$password"\nexec "$@"\n',
    )


@pytest.fixture
def config() -> Config:
    """Configuration with short teardown timeouts for testing."""
    return Config(term_timeout=0.5, kill_timeout=0.5)


@pytest.fixture
def clean_environ() -> dict[str, str]:
    """Environment without CMDIF_* variables."""
    return {k: v for k, v in os.environ.items() if not k.startswith("CMDIF_")}
