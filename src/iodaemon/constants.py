"""iodaemon constants.

Hardwired implementation details. Anything a user may reasonably want to
change lives in iodaemon.config instead.
"""

from enum import IntEnum

# =============================================================================
# Network
# =============================================================================

# The daemon only ever listens on loopback
HOST = "127.0.0.1"
DEFAULT_PORT = 5289
LISTEN_BACKLOG = 16

# Buffer sizes
RECV_BUFFER = 64 * 1024

# Larger writes are split so the decoder never buffers more than one slice
FRAME_PAYLOAD_LIMIT = 64 * 1024

# =============================================================================
# Commands and messages
# =============================================================================

START_COMMAND = "start"
STOP_COMMAND = "stop"

STARTING_MESSAGE = "starting server..."
STOPPING_MESSAGE = "stopping server..."
NOT_RUNNING_MESSAGE = "server not running or not responding"
ALREADY_RUNNING_MESSAGE = "server already running"
INVALID_REQUEST_MESSAGE = "invalid request"


# =============================================================================
# Exit codes
# =============================================================================


class ExitCode(IntEnum):
    """Process exit status of a wrapped command.

    OK: Request served (or daemon started/stopped).
    NOT_RUNNING: No daemon reachable, and autostart was off or did not help.
    SETUP_FAILED: The one-time setup (or binding the port) failed.
    RUN_FAILED: The daemon reported a failure of the run callable.
    PROTOCOL_ERROR: The response contained bytes that never decoded to a frame.
    CONFIG_ERROR: IO_DAEMONIZER_* settings (or wrap() keywords) are invalid.
    """

    OK = 0
    NOT_RUNNING = 1
    SETUP_FAILED = 2
    RUN_FAILED = 3
    PROTOCOL_ERROR = 4
    CONFIG_ERROR = 5
