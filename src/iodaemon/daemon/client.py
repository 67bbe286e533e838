"""Client side of iodaemon: forward one invocation to the daemon.

This module turns a command-line invocation into a request, sends it over
a fresh TCP connection, and replays the daemon's multiplexed response onto
the local stdout/stderr as it arrives.

Features:
    - One connection per invocation (write, half-close, read until EOF)
    - Autostart: bring the daemon up on "connection refused", retry once
    - Failure output from the daemon goes to stderr and sets the exit code
    - Undecodable response bytes are shown, never dropped

Usage:
    # Forward argv the way a wrapped script does
    >>> code = invoke(["hello", "world"], setup=setup, run=run)

    # Talk to an already running daemon
    >>> client = DaemonClient(DaemonSettings(port=6872))
    >>> client.send(["hello"])
    <ExitCode.OK: 0>
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterable, Iterator, Sequence
from typing import BinaryIO, TextIO

from iodaemon.config import DaemonSettings
from iodaemon.constants import (
    ALREADY_RUNNING_MESSAGE,
    NOT_RUNNING_MESSAGE,
    START_COMMAND,
    STARTING_MESSAGE,
    STOP_COMMAND,
    STOPPING_MESSAGE,
    ExitCode,
)
from iodaemon.daemon.context import RunCallable, SetupCallable
from iodaemon.daemon.lifecycle import Detacher, detach
from iodaemon.daemon.protocol import Channel, DaemonRequest, FrameDecoder
from iodaemon.daemon.server import DaemonError, DaemonStartError, start_daemon
from iodaemon.daemon.transport import Transport

logger = logging.getLogger(__name__)

__all__ = [
    "DaemonClient",
    "DaemonClientError",
    "DaemonConnectionError",
    "DaemonNotRunningError",
    "invoke",
    "is_daemon_running",
    "read_stdin",
    "stop_daemon",
]


# =============================================================================
# Exceptions
# =============================================================================


class DaemonClientError(Exception):
    """Base exception for daemon client errors."""


class DaemonConnectionError(DaemonClientError):
    """Raised when talking to the daemon fails."""


class DaemonNotRunningError(DaemonConnectionError):
    """Raised when the connection is refused (nobody is listening)."""


# =============================================================================
# DaemonClient
# =============================================================================


class DaemonClient:
    """Sends requests to the daemon and relays the response.

    Attributes:
        settings: Where the daemon listens.
        stdout: Binary stream receiving stdout frames.
        stderr: Binary stream receiving stderr and error frames.
    """

    def __init__(
        self,
        settings: DaemonSettings,
        stdout: BinaryIO | None = None,
        stderr: BinaryIO | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Daemon settings (only the address is used here).
            stdout: Defaults to sys.stdout.buffer.
            stderr: Defaults to sys.stderr.buffer.
        """
        self.settings = settings
        self.stdout = stdout if stdout is not None else sys.stdout.buffer
        self.stderr = stderr if stderr is not None else sys.stderr.buffer

    def send(self, args: Sequence[str], body: bytes = b"") -> ExitCode:
        """Send one request and relay the response until the daemon closes.

        Args:
            args: Argument vector to forward.
            body: Standard input content to forward.

        Returns:
            OK, RUN_FAILED if the daemon reported a failure, or
            PROTOCOL_ERROR if part of the response could not be decoded.

        Raises:
            DaemonNotRunningError: If the connection is refused.
            DaemonConnectionError: If any other socket operation fails.
        """
        request = DaemonRequest(args=list(args), body=body)
        transport = Transport(self.settings.address)

        try:
            transport.connect()
        except ConnectionRefusedError as e:
            raise DaemonNotRunningError("Connection refused") from e
        except OSError as e:
            raise DaemonConnectionError(f"Connection failed: {e}") from e

        try:
            try:
                transport.send(request.to_bytes())
            except OSError as e:
                raise DaemonConnectionError(f"Send failed: {e}") from e
            return self._relay(_guarded(transport.iter_response()))
        finally:
            transport.close()

    def _relay(self, chunks: Iterable[bytes]) -> ExitCode:
        """Demultiplex response chunks onto the local streams, in receipt order."""
        decoder = FrameDecoder()
        status = ExitCode.OK

        for chunk in chunks:
            for frame in decoder.feed(chunk):
                if frame.channel is Channel.STDOUT:
                    _write(self.stdout, frame.payload)
                else:
                    _write(self.stderr, frame.payload)
                    if frame.channel is Channel.ERROR:
                        status = ExitCode.RUN_FAILED

        if decoder.pending:
            logger.warning(f"{len(decoder.residual)} response bytes did not decode as frames")
            _write(self.stderr, decoder.residual)
            status = ExitCode.PROTOCOL_ERROR

        if status is ExitCode.RUN_FAILED:
            # Error frames carry repr() text without a trailing newline
            _write(self.stderr, b"\n")

        return status


def _guarded(chunks: Iterator[bytes]) -> Iterator[bytes]:
    try:
        yield from chunks
    except OSError as e:
        raise DaemonConnectionError(f"Receive failed: {e}") from e


def _write(stream: BinaryIO, data: bytes) -> None:
    stream.write(data)
    stream.flush()


def _say(stream: BinaryIO, message: str) -> None:
    _write(stream, f"{message}\n".encode())


# =============================================================================
# Invocation
# =============================================================================


def read_stdin(stdin: TextIO | BinaryIO | None) -> bytes:
    """Read the request body from stdin.

    An interactive terminal counts as "no body", otherwise the client would
    block waiting for input that never comes.

    Args:
        stdin: The process's stdin (text or binary), or None.

    Returns:
        Everything on stdin, or b"" for a TTY, a closed or a missing stream.
    """
    if stdin is None or stdin.closed or stdin.isatty():
        return b""
    data = getattr(stdin, "buffer", stdin).read()
    if isinstance(data, str):
        return data.encode("utf-8", "surrogateescape")
    return data


def invoke(
    args: Sequence[str],
    setup: SetupCallable,
    run: RunCallable,
    settings: DaemonSettings | None = None,
    stdin: TextIO | BinaryIO | None = None,
    stdout: BinaryIO | None = None,
    stderr: BinaryIO | None = None,
    detacher: Detacher = detach,
) -> ExitCode:
    """Handle one command-line invocation of a wrapped program.

    - "start": run setup here, then detach the daemon into the background.
      Nothing happens if a daemon is already listening.
    - "stop": ask a running daemon to stop.
    - anything else: forward to the daemon, autostarting it if allowed.

    Args:
        args: Command-line arguments (argv[1:]).
        setup: One-time setup callable (used only when starting a daemon).
        run: Per-request callable (used only when starting a daemon).
        settings: Daemon settings, loaded from the environment if omitted.
        stdin: Stream forwarded as the request body (default sys.stdin).
        stdout: Binary stream for the response's stdout.
        stderr: Binary stream for the response's stderr and status messages.
        detacher: Background primitive used to start a daemon.

    Returns:
        Exit code for the process.
    """
    settings = settings if settings is not None else DaemonSettings()
    client = DaemonClient(settings, stdout=stdout, stderr=stderr)
    command = args[0] if args else None

    if command == START_COMMAND:
        _say(client.stderr, STARTING_MESSAGE)
        if is_daemon_running(settings):
            _say(client.stderr, ALREADY_RUNNING_MESSAGE)
            return ExitCode.OK
        try:
            start_daemon(settings, setup, run, detacher)
        except DaemonError as e:
            _say(client.stderr, str(e))
            return ExitCode.SETUP_FAILED
        return ExitCode.OK

    if command == STOP_COMMAND:
        _say(client.stderr, STOPPING_MESSAGE)
        return _send_or_report(client, args, b"")

    body = read_stdin(stdin if stdin is not None else sys.stdin)

    try:
        return client.send(args, body)
    except DaemonNotRunningError:
        if not settings.autostart:
            _say(client.stderr, NOT_RUNNING_MESSAGE)
            return ExitCode.NOT_RUNNING
    except DaemonConnectionError as e:
        logger.debug(f"Request failed: {e}")
        _say(client.stderr, NOT_RUNNING_MESSAGE)
        return ExitCode.NOT_RUNNING

    logger.info(f"No daemon on port {settings.port}, starting one")
    try:
        start_daemon(settings, setup, run, detacher)
    except DaemonStartError as e:
        # Possibly another client won the race for the port; the retry tells
        logger.warning(f"Autostart failed: {e}")
    except DaemonError as e:
        _say(client.stderr, str(e))
        return ExitCode.SETUP_FAILED
    else:
        time.sleep(settings.startup_grace_seconds)

    return _send_or_report(client, args, body)


def _send_or_report(client: DaemonClient, args: Sequence[str], body: bytes) -> ExitCode:
    try:
        return client.send(args, body)
    except DaemonConnectionError as e:
        logger.debug(f"Request failed: {e}")
        _say(client.stderr, NOT_RUNNING_MESSAGE)
        return ExitCode.NOT_RUNNING


# =============================================================================
# Module-Level Convenience Functions
# =============================================================================


def is_daemon_running(settings: DaemonSettings) -> bool:
    """Check whether something accepts connections on the daemon's port.

    Returns:
        True if a connection could be opened.
    """
    try:
        with Transport(settings.address) as transport:
            transport.send(b"")
    except OSError:
        return False
    return True


def stop_daemon(settings: DaemonSettings) -> bool:
    """Ask the daemon to stop.

    Returns:
        True if a stop request was delivered, False if nobody was listening.
    """
    try:
        DaemonClient(settings).send([STOP_COMMAND])
    except DaemonConnectionError:
        return False
    return True
