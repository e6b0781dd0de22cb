"""command_interface - drive a command line executable as a typed subprocess.

Environment variables:
    CMDIF_ELEVATION_PREFIX: argv prefix for elevated commands (default "sudo -S --")
    CMDIF_READ_SIZE: maximum bytes per pipe read (default 4096)
    CMDIF_TERM_TIMEOUT / CMDIF_KILL_TIMEOUT: teardown grace periods
    CMDIF_DRAIN_TIMEOUT: wait for end of file after the child exited (default 0.5)
    CMDIF_LOG_DEBUG: debug log file for the command line tool

Usage:
    python -m command_interface /bin/echo hello
"""

__version__ = "0.1.0"

from .command import (
    Command,
    CommandResponse,
    JSONResponse,
    LinesResponse,
    SimpleCommand,
    TextResponse,
)
from .errors import (
    CommandInterfaceError,
    InvalidExecutableError,
    ResponseError,
    SpawnError,
)
from .interface import Completion, Interface
from .runtime import TerminationReason

__all__ = [
    "__version__",
    "Command",
    "CommandInterfaceError",
    "CommandResponse",
    "Completion",
    "Interface",
    "InvalidExecutableError",
    "JSONResponse",
    "LinesResponse",
    "ResponseError",
    "SimpleCommand",
    "SpawnError",
    "TerminationReason",
    "TextResponse",
]
