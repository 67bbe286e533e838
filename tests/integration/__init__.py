"""Integration tests for iodaemon.

This package contains tests that exercise real TCP connections on
127.0.0.1:

- test_daemon_integration.py: Client -> TCP -> Daemon -> run, served in a thread
- test_fork_lifecycle.py: A wrapped script run as real processes (fork + detach)

Usage:
    # Run all integration tests
    pytest tests/integration/ -v

    # Skip the slower process-level tests
    pytest -m "not integration"
"""
