"""Connection-scoped standard streams for the run callable.

The daemon never swaps sys.stdin/sys.stdout/sys.stderr. Each request gets
its own stream objects: stdin reads the forwarded body, stdout and stderr
encode every write as one frame on the request's connection.
"""

from __future__ import annotations

import io
import logging
import socket
from collections.abc import Iterator
from contextlib import contextmanager

from iodaemon.constants import FRAME_PAYLOAD_LIMIT
from iodaemon.daemon.context import Invocation
from iodaemon.daemon.protocol import Channel, encode_frame

logger = logging.getLogger(__name__)

__all__ = ["FrameWriter", "open_invocation", "send_frame"]

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


def send_frame(sock: socket.socket, channel: Channel, payload: bytes) -> None:
    """Send payload on a channel, one complete record per sendall.

    Payloads above FRAME_PAYLOAD_LIMIT are sent as consecutive frames.
    Empty payloads send nothing.
    """
    view = memoryview(payload).cast("B")
    for start in range(0, len(view), FRAME_PAYLOAD_LIMIT):
        chunk = view[start : start + FRAME_PAYLOAD_LIMIT].tobytes()
        sock.sendall(encode_frame(channel, chunk))


class FrameWriter(io.RawIOBase):
    """Binary sink that turns each write into frames on a socket.

    Closing the writer does not close the socket.
    """

    def __init__(self, sock: socket.socket, channel: Channel) -> None:
        super().__init__()
        self._sock = sock
        self.channel = channel

    def writable(self) -> bool:
        return True

    def write(self, data: bytes) -> int:  # type: ignore[override]
        if self.closed:
            raise ValueError("write to closed stream")
        size = memoryview(data).nbytes
        send_frame(self._sock, self.channel, data)
        return size


def _text_writer(sock: socket.socket, channel: Channel) -> io.TextIOWrapper:
    # write_through: every write() reaches the socket immediately, which keeps
    # stdout and stderr frames in emission order
    return io.TextIOWrapper(
        FrameWriter(sock, channel),
        encoding=_ENCODING,
        errors=_ERRORS,
        newline="",
        write_through=True,
    )


@contextmanager
def open_invocation(
    sock: socket.socket,
    args: list[str],
    body: bytes,
) -> Iterator[Invocation]:
    """Build the Invocation for one request on a connection.

    Streams are flushed and detached from the connection on exit, including
    when the run callable raised.

    Args:
        sock: The accepted connection.
        args: Argument vector from the request.
        body: Forwarded standard input.

    Yields:
        Invocation bound to the connection.
    """
    stdin = io.TextIOWrapper(io.BytesIO(body), encoding=_ENCODING, errors=_ERRORS)
    stdout = _text_writer(sock, Channel.STDOUT)
    stderr = _text_writer(sock, Channel.STDERR)

    try:
        yield Invocation(args=list(args), stdin=stdin, stdout=stdout, stderr=stderr)
    finally:
        for stream in (stdout, stderr):
            try:
                stream.close()
            except (OSError, ValueError) as e:
                logger.debug(f"Closing {stream} failed: {e}")
        stdin.close()
