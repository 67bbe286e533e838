"""iodaemon - pay a CLI's expensive startup once, serve later calls from a daemon.

A wrapped program's one-time setup runs in a background daemon; every
later invocation is a thin client that forwards argv and stdin over a local
socket and replays the daemon's stdout/stderr.
"""

from iodaemon.cli import wrap
from iodaemon.constants import ExitCode
from iodaemon.daemon.context import ExecutionContext, Invocation

__version__ = "0.3.0"
__all__ = [
    "__version__",
    "wrap",
    "ExitCode",
    "ExecutionContext",
    "Invocation",
]
