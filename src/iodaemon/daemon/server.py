"""Daemon that runs setup once and serves run requests one at a time.

Features:
    - TCP listener on 127.0.0.1:<port>
    - Exactly-once setup before the first accept
    - Strictly sequential request handling (one connection at a time)
    - Per-request stdin/stdout/stderr scoped to the connection
    - Graceful shutdown on a "stop" request or SIGTERM/SIGINT

Lifecycle:
    CREATED -> SETTING_UP -> LISTENING -> (HANDLING -> LISTENING)* -> STOPPED

Protocol:
    See iodaemon.daemon.protocol. A request whose first argument is "stop"
    closes the listener; anything else is passed to the run callable.
"""

from __future__ import annotations

import logging
import os
import signal
import socket
import threading
import time
from enum import Enum
from functools import partial

from iodaemon.config import DaemonSettings
from iodaemon.constants import (
    INVALID_REQUEST_MESSAGE,
    LISTEN_BACKLOG,
    STOP_COMMAND,
)
from iodaemon.daemon.context import ExecutionContext, RunCallable, SetupCallable
from iodaemon.daemon.lifecycle import Detacher, detach
from iodaemon.daemon.protocol import Channel, DaemonRequest
from iodaemon.daemon.streams import open_invocation, send_frame
from iodaemon.daemon.transport import close_connection, recv_until_eof
from iodaemon.logs import setup_logging

logger = logging.getLogger(__name__)

__all__ = [
    "Daemon",
    "DaemonError",
    "DaemonStartError",
    "DaemonState",
    "SetupError",
    "start_daemon",
]


# =============================================================================
# Exceptions
# =============================================================================


class DaemonError(Exception):
    """Base exception for daemon-side errors."""


class SetupError(DaemonError):
    """Raised when the one-time setup callable fails."""


class DaemonStartError(DaemonError):
    """Raised when the daemon cannot bind its port or detach."""


class DaemonState(str, Enum):
    """Lifecycle states of a Daemon."""

    CREATED = "created"
    SETTING_UP = "setting_up"
    LISTENING = "listening"
    HANDLING = "handling"
    STOPPED = "stopped"


# =============================================================================
# Daemon
# =============================================================================


class Daemon:
    """Holds the execution context and serves requests against it.

    Attributes:
        settings: Port and logging configuration.
        context: State populated by setup and shared by every run.
        state: Current lifecycle state.
    """

    def __init__(
        self,
        settings: DaemonSettings,
        setup: SetupCallable,
        run: RunCallable,
    ) -> None:
        """Initialize the daemon.

        Args:
            settings: Daemon settings.
            setup: Called once with the ExecutionContext.
            run: Called per request with the ExecutionContext and an Invocation.
        """
        self.settings = settings
        self.context = ExecutionContext()
        self.state = DaemonState.CREATED

        self._setup = setup
        self._run = run
        self._listener: socket.socket | None = None
        self._set_up = False
        self._stopped = False
        self._request_count = 0

    @property
    def address(self) -> tuple[str, int] | None:
        """Bound (host, port), or None before bind/after stop."""
        if self._listener is None:
            return None
        host, port = self._listener.getsockname()[:2]
        return (host, port)

    @property
    def request_count(self) -> int:
        """Number of connections accepted so far."""
        return self._request_count

    def setup(self) -> None:
        """Run the setup callable once.

        Calling this again after a successful setup does nothing.

        Raises:
            SetupError: If the setup callable raises. The daemon is left
                stopped and never binds.
        """
        if self._set_up:
            return

        self.state = DaemonState.SETTING_UP
        logger.info("Running setup...")
        start = time.monotonic()
        try:
            self._setup(self.context)
        except Exception as e:
            self.state = DaemonState.STOPPED
            logger.error(f"Setup failed: {e!r}")
            raise SetupError(f"setup failed: {e!r}") from e

        self._set_up = True
        logger.info(f"Setup completed in {time.monotonic() - start:.2f}s")

    def bind(self) -> None:
        """Open the listening socket on the configured address.

        Raises:
            DaemonError: If setup has not completed.
            DaemonStartError: If the address cannot be bound.
        """
        if not self._set_up:
            raise DaemonError("setup must complete before the daemon listens")
        if self._listener is not None:
            return

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listener.bind(self.settings.address)
            listener.listen(LISTEN_BACKLOG)
        except OSError as e:
            listener.close()
            raise DaemonStartError(
                f"cannot listen on {self.settings.address[0]}:{self.settings.address[1]}: {e}"
            ) from e

        self._listener = listener
        self.state = DaemonState.LISTENING
        logger.info(f"Daemon listening on {self.address} (PID {os.getpid()})")

    def serve_forever(self) -> None:
        """Accept and handle connections one at a time until stopped."""
        if self._listener is None:
            raise DaemonError("serve_forever() called before bind()")
        listener = self._listener

        try:
            while not self._stopped:
                try:
                    conn, peer = listener.accept()
                except OSError:
                    if self._stopped:
                        break
                    raise
                logger.debug(f"Accepted connection from {peer}")
                self.handle_connection(conn)
        finally:
            self.stop()

    def serve_detached(self) -> None:
        """Entry point inside the background process."""
        log_file = self.settings.get_log_file()
        if log_file is not None:
            setup_logging(self.settings.log_level, log_file, force=True)
        install_signal_handlers(self)
        self.serve_forever()

    def handle_connection(self, conn: socket.socket) -> None:
        """Serve one request/response cycle and close the connection.

        Args:
            conn: Accepted connection, owned by this call.
        """
        self.state = DaemonState.HANDLING
        self._request_count += 1
        request_id = self._request_count

        try:
            data = recv_until_eof(conn)
            if not data:
                logger.debug(f"Request {request_id}: empty connection (probe)")
                return

            request = DaemonRequest.from_bytes(data)
            if request is None:
                logger.warning(f"Request {request_id}: invalid request")
                send_frame(conn, Channel.ERROR, INVALID_REQUEST_MESSAGE.encode())
                return

            if request.command == STOP_COMMAND:
                logger.info("Stop requested via command")
                self.stop()
                return

            logger.debug(f"Request {request_id}: args={request.args!r} body={len(request.body)}B")
            self._execute(conn, request)

        except OSError as e:
            logger.warning(f"Request {request_id} connection error: {e}")
        finally:
            close_connection(conn)
            if not self._stopped:
                self.state = DaemonState.LISTENING

    def _execute(self, conn: socket.socket, request: DaemonRequest) -> None:
        try:
            with open_invocation(conn, request.args, request.body) as invocation:
                self._run(self.context, invocation)
        except SystemExit as e:
            if e.code not in (None, 0):
                self._report_failure(conn, request, e)
        except Exception as e:
            self._report_failure(conn, request, e)

    def _report_failure(
        self,
        conn: socket.socket,
        request: DaemonRequest,
        error: BaseException,
    ) -> None:
        """Log a run failure and forward its description to the client."""
        logger.error(f"run failed for {request.args!r}: {error!r}", exc_info=error)
        try:
            send_frame(conn, Channel.ERROR, repr(error).encode("utf-8", "surrogateescape"))
        except OSError as e:
            logger.debug(f"Could not report failure to client: {e}")

    def stop(self) -> None:
        """Close the listening socket so the accept loop ends.

        Safe to call multiple times and from a signal handler.
        """
        if self._stopped:
            return
        self._stopped = True
        self.state = DaemonState.STOPPED

        listener, self._listener = self._listener, None
        if listener is not None:
            try:
                # Wakes up an accept() blocked in another thread
                listener.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            listener.close()
            logger.info("Daemon stopped")

    def release_listener(self) -> None:
        """Drop this process's copy of the listening socket.

        Used by the parent after the daemon was forked into the background;
        the child keeps its own descriptor and keeps listening.
        """
        listener, self._listener = self._listener, None
        if listener is not None:
            listener.close()


def install_signal_handlers(daemon: Daemon) -> None:
    """Stop the daemon on SIGTERM/SIGINT.

    Only possible from the main thread; elsewhere this is a no-op.

    Args:
        daemon: Daemon instance to stop on signal.
    """
    if threading.current_thread() is not threading.main_thread():
        return

    def handle_signal(sig: signal.Signals, *_args: object) -> None:
        logger.info(f"Received signal {sig.name}, shutting down...")
        daemon.stop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        signal.signal(sig, partial(handle_signal, sig))


def start_daemon(
    settings: DaemonSettings,
    setup: SetupCallable,
    run: RunCallable,
    detacher: Detacher = detach,
) -> Daemon:
    """Bring a daemon up: setup in the foreground, then serve in the background.

    The listening socket is bound before detaching, so by the time this
    returns connections are queued rather than refused.

    Args:
        settings: Daemon settings.
        setup: One-time setup callable.
        run: Per-request callable.
        detacher: Runs the accept loop in the background and returns the
            PID of the process running it.

    Returns:
        The Daemon (in this process, only a handle; it serves elsewhere).

    Raises:
        SetupError: If setup fails.
        DaemonStartError: If binding or detaching fails.
    """
    daemon = Daemon(settings, setup, run)
    daemon.setup()
    daemon.bind()

    try:
        pid = detacher(daemon.serve_detached)
    except OSError as e:
        daemon.stop()
        raise DaemonStartError(f"cannot start background process: {e}") from e

    if pid != os.getpid():
        daemon.release_listener()
    logger.info(f"Daemon running in background (PID {pid})")
    return daemon
