"""Thin TCP transport shared by the client and the daemon.

Every connection carries exactly one request/response cycle:
the client writes its whole request and half-closes, then reads until the
daemon closes. There is no other framing at this layer.
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Iterator

from iodaemon.constants import RECV_BUFFER

logger = logging.getLogger(__name__)

__all__ = [
    "Transport",
    "iter_recv",
    "recv_until_eof",
    "close_connection",
]


def iter_recv(sock: socket.socket) -> Iterator[bytes]:
    """Yield chunks from a socket until the peer closes its write side."""
    while True:
        chunk = sock.recv(RECV_BUFFER)
        if not chunk:
            return
        yield chunk


def recv_until_eof(sock: socket.socket) -> bytes:
    """Read everything the peer sends before half-closing.

    Args:
        sock: Connected socket.

    Returns:
        All received bytes.
    """
    return b"".join(iter_recv(sock))


def close_connection(sock: socket.socket) -> None:
    """Half-close for writing, then fully close.

    Safe to call on a socket whose peer has already gone away.
    """
    try:
        sock.shutdown(socket.SHUT_WR)
    except OSError as e:
        logger.debug(f"shutdown(SHUT_WR) failed: {e}")
    finally:
        sock.close()


class Transport:
    """Client side of one request/response exchange.

    Example:
        >>> with Transport(("127.0.0.1", 5289)) as transport:
        ...     transport.send(b"hello\\n")
        ...     for chunk in transport.iter_response():
        ...         ...

    Raises:
        ConnectionRefusedError: From connect() when nothing is listening.
        OSError: Any other socket failure.
    """

    def __init__(self, address: tuple[str, int]) -> None:
        self.address = address
        self._socket: socket.socket | None = None

    def __enter__(self) -> Transport:
        self.connect()
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()

    def connect(self) -> None:
        """Open the TCP connection (idempotent)."""
        if self._socket is not None:
            return
        self._socket = socket.create_connection(self.address)

    def send(self, data: bytes) -> None:
        """Write the whole request body and half-close the write side."""
        sock = self._require_socket()
        sock.sendall(data)
        sock.shutdown(socket.SHUT_WR)

    def iter_response(self) -> Iterator[bytes]:
        """Yield response chunks until the daemon closes the connection."""
        yield from iter_recv(self._require_socket())

    def close(self) -> None:
        """Close the connection. Safe to call multiple times."""
        if self._socket is not None:
            try:
                self._socket.close()
            finally:
                self._socket = None

    def _require_socket(self) -> socket.socket:
        if self._socket is None:
            raise OSError("Transport is not connected")
        return self._socket
