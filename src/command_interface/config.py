"""Environment-based configuration.

Environment variables:
    CMDIF_ELEVATION_PREFIX: argv prefix used for commands that require elevation
        - space separated, default "sudo -S --"
        - "-S" makes sudo read the password from stdin

    CMDIF_READ_SIZE: maximum bytes per pipe read
        - default 4096, clamped to 1..1048576

    CMDIF_TERM_TIMEOUT: seconds to wait after SIGTERM during teardown
        - default 2.0, clamped to 0.1..60

    CMDIF_KILL_TIMEOUT: seconds to wait after SIGKILL during teardown
        - default 1.0, clamped to 0.1..60

    CMDIF_DRAIN_TIMEOUT: seconds to wait for end of file after the child exited
        - default 0.5, clamped to 0.1..60
        - covers descendants that keep the pipes open

    CMDIF_LOG_DEBUG: debug logging
        - true/1/yes = on (log to a temp file at DEBUG level)
        - false/0/no = off (default, log to stderr)
"""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_ELEVATION_PREFIX: tuple[str, ...] = ("sudo", "-S", "--")
DEFAULT_READ_SIZE = 4096
MAX_READ_SIZE = 1024 * 1024
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_DRAIN_TIMEOUT = 0.5


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_prefix(value: str | None) -> tuple[str, ...]:
    """Parse the elevation prefix.

    Unset or blank values fall back to the default prefix.
    """
    if not value or not value.strip():
        return DEFAULT_ELEVATION_PREFIX
    try:
        parts = shlex.split(value)
    except ValueError:
        return DEFAULT_ELEVATION_PREFIX
    return tuple(parts) or DEFAULT_ELEVATION_PREFIX


def _parse_read_size(value: str | None) -> int:
    if not value:
        return DEFAULT_READ_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_READ_SIZE
    return max(1, min(size, MAX_READ_SIZE))


def _parse_timeout(value: str | None, default: float) -> float:
    """Parse a timeout in seconds, limited to 0.1-60."""
    if not value:
        return default
    try:
        timeout = float(value)
    except ValueError:
        return default
    return max(0.1, min(timeout, 60.0))


@dataclass
class Config:
    """command_interface configuration.

    Attributes:
        elevation_prefix: argv prefix for commands that require elevation
        read_size: maximum bytes per pipe read
        term_timeout: seconds to wait after SIGTERM during teardown
        kill_timeout: seconds to wait after SIGKILL during teardown
        drain_timeout: seconds to wait for end of file after the child exited
        log_debug: debug logging to a file
        log_file: log file path (set automatically when log_debug=True)
    """

    elevation_prefix: tuple[str, ...] = field(default=DEFAULT_ELEVATION_PREFIX)
    read_size: int = DEFAULT_READ_SIZE
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(elevation_prefix={' '.join(self.elevation_prefix)!r}, "
            f"read_size={self.read_size}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"drain_timeout={self.drain_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Return a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "command-interface"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"cmdif_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("CMDIF_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        elevation_prefix=_parse_prefix(os.environ.get("CMDIF_ELEVATION_PREFIX")),
        read_size=_parse_read_size(os.environ.get("CMDIF_READ_SIZE")),
        term_timeout=_parse_timeout(
            os.environ.get("CMDIF_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT
        ),
        kill_timeout=_parse_timeout(
            os.environ.get("CMDIF_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT
        ),
        drain_timeout=_parse_timeout(
            os.environ.get("CMDIF_DRAIN_TIMEOUT"), DEFAULT_DRAIN_TIMEOUT
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
