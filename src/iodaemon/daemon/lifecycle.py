"""Background detachment for the daemon process.

The daemon core only needs one primitive: run this callable in a process
that is no longer attached to the caller's session or terminal, and give
control back to the caller right away.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable

logger = logging.getLogger(__name__)

__all__ = ["Detacher", "DetachError", "detach"]

Detacher = Callable[[Callable[[], object]], int]


class DetachError(OSError):
    """Raised when the platform cannot detach a background process."""


def _redirect_stdio() -> None:
    """Point fds 0, 1 and 2 at /dev/null."""
    devnull = os.open(os.devnull, os.O_RDWR)
    try:
        for fd in (0, 1, 2):
            os.dup2(devnull, fd)
    finally:
        if devnull > 2:
            os.close(devnull)


def detach(target: Callable[[], object]) -> int:
    """Run target in a detached grandchild process.

    Uses the classic double fork: the intermediate child starts a new
    session and forks again so the daemon can never reacquire a controlling
    terminal, then exits; the caller reaps it and returns immediately.

    Args:
        target: Callable run in the background. The process exits when it
            returns (status 0) or raises (status 1).

    Returns:
        PID of the background process.

    Raises:
        DetachError: If os.fork is not available (e.g. Windows).
    """
    if not hasattr(os, "fork"):
        raise DetachError("Background mode requires os.fork (not available on this platform)")

    sys.stdout.flush()
    sys.stderr.flush()

    read_fd, write_fd = os.pipe()
    pid = os.fork()

    if pid == 0:
        # Intermediate child
        os.close(read_fd)
        os.setsid()
        daemon_pid = os.fork()
        if daemon_pid > 0:
            os.write(write_fd, str(daemon_pid).encode())
            os.close(write_fd)
            os._exit(0)

        # Daemon
        os.close(write_fd)
        _redirect_stdio()
        status = 0
        try:
            target()
        except BaseException:
            logger.exception("Background process failed")
            status = 1
        finally:
            logging.shutdown()
            os._exit(status)

    os.close(write_fd)
    try:
        with os.fdopen(read_fd, "rb") as reader:
            daemon_pid = int(reader.read() or 0)
    finally:
        os.waitpid(pid, 0)

    logger.debug(f"Detached background process {daemon_pid}")
    return daemon_pid
