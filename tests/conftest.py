"""Pytest configuration and shared fixtures for iodaemon tests.

This module provides reusable fixtures for testing:
- env_setup: (autouse) Pins IO_DAEMONIZER_* environment variables
- free_port: A TCP port on 127.0.0.1 nobody is listening on
- settings: DaemonSettings bound to free_port
- thread_detacher: Detacher that serves in a thread instead of forking
- serve: Factory that starts a Daemon in a background thread

Usage:
    def test_something(serve, settings):
        daemon = serve(setup, run)
        ...
"""

import os
import socket
import threading
from collections.abc import Callable, Generator

import pytest

from iodaemon.config import DaemonSettings
from iodaemon.daemon.server import Daemon

_ENV_PREFIX = "IO_DAEMONIZER_"


@pytest.fixture(autouse=True)
def env_setup() -> Generator[None, None, None]:
    """Isolate tests from the developer's IO_DAEMONIZER_* environment.

    This fixture runs automatically before each test.
    """
    env_vars = {
        "IO_DAEMONIZER_LOG_LEVEL": "DEBUG",
        "IO_DAEMONIZER_STARTUP_GRACE_SECONDS": "0.05",
    }
    # Store original values
    original = {k: v for k, v in os.environ.items() if k.startswith(_ENV_PREFIX)}
    for key in original:
        del os.environ[key]
    # Set test values
    os.environ.update(env_vars)
    yield
    # Restore original values
    for key in [k for k in os.environ if k.startswith(_ENV_PREFIX)]:
        del os.environ[key]
    os.environ.update(original)


@pytest.fixture
def free_port() -> int:
    """Find a port on 127.0.0.1 that is currently free.

    Returns:
        Port number.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
        probe.bind(("127.0.0.1", 0))
        return probe.getsockname()[1]


@pytest.fixture
def settings(free_port: int) -> DaemonSettings:
    """Settings pointing at free_port with a short autostart grace period."""
    return DaemonSettings(port=free_port, startup_grace_seconds=0.05)


@pytest.fixture
def thread_detacher() -> Generator[Callable[[Callable[[], object]], int], None, None]:
    """Detacher that runs the target in a thread of this process.

    Yields:
        Callable with the same contract as iodaemon.daemon.lifecycle.detach.
    """
    threads: list[threading.Thread] = []

    def detacher(target: Callable[[], object]) -> int:
        thread = threading.Thread(target=target, daemon=True)
        thread.start()
        threads.append(thread)
        return os.getpid()

    yield detacher

    for thread in threads:
        thread.join(timeout=5)


@pytest.fixture
def serve(settings: DaemonSettings) -> Generator[Callable[..., Daemon], None, None]:
    """Factory fixture: set up, bind and serve a Daemon in a thread.

    Daemons still running at teardown are stopped.

    Yields:
        serve(setup, run) -> Daemon
    """
    running: list[tuple[Daemon, threading.Thread]] = []

    def factory(setup, run) -> Daemon:
        daemon = Daemon(settings, setup, run)
        daemon.setup()
        daemon.bind()
        thread = threading.Thread(target=daemon.serve_forever, daemon=True)
        thread.start()
        running.append((daemon, thread))
        return daemon

    yield factory

    for daemon, thread in running:
        daemon.stop()
        thread.join(timeout=5)
