"""Client/daemon protocol for prewarmed command-line programs.

This module provides a TCP daemon on 127.0.0.1 that runs a program's
expensive setup once and then serves its run phase per request, plus the
thin client each command-line invocation becomes.

Architecture:
    - Daemon: setup once, then a strictly sequential accept loop
    - Client: forwards argv/stdin, autostarts the daemon, relays output
    - Protocol: shell-quoted request line + body; JSON frame records back
    - Streams: per-request stdin/stdout/stderr bound to the connection
    - Lifecycle: double-fork detach primitive

Usage:
    # Start a daemon (setup runs here, serving continues in the background)
    >>> from iodaemon.daemon import start_daemon
    >>> start_daemon(settings, setup, run)

    # Forward one invocation
    >>> from iodaemon.daemon import DaemonClient
    >>> DaemonClient(settings).send(["hello", "world"])
"""

from iodaemon.daemon.client import (
    DaemonClient,
    DaemonClientError,
    DaemonConnectionError,
    DaemonNotRunningError,
    invoke,
    is_daemon_running,
    stop_daemon,
)
from iodaemon.daemon.context import ExecutionContext, Invocation
from iodaemon.daemon.lifecycle import DetachError, detach
from iodaemon.daemon.protocol import (
    Channel,
    DaemonRequest,
    Frame,
    FrameDecoder,
    encode_frame,
)
from iodaemon.daemon.server import (
    Daemon,
    DaemonError,
    DaemonStartError,
    DaemonState,
    SetupError,
    start_daemon,
)

__all__ = [
    # Server
    "Daemon",
    "DaemonState",
    "start_daemon",
    "DaemonError",
    "SetupError",
    "DaemonStartError",
    # Client
    "DaemonClient",
    "DaemonClientError",
    "DaemonConnectionError",
    "DaemonNotRunningError",
    "invoke",
    "is_daemon_running",
    "stop_daemon",
    # Protocol
    "Channel",
    "Frame",
    "FrameDecoder",
    "DaemonRequest",
    "encode_frame",
    # Context
    "ExecutionContext",
    "Invocation",
    # Lifecycle
    "detach",
    "DetachError",
]
