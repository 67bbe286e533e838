"""Wire protocol between the iodaemon client and daemon.

Protocol Overview:
    Request (client -> daemon), terminated by the client half-closing:
        <shell-quoted argv line>\\n<raw stdin bytes, possibly empty>

    Response (daemon -> client), terminated by the daemon closing:
        {"stdout": "..."}{"stderr": "..."}{"stdout": "..."}...

    Each response record is a JSON object with exactly one key naming the
    channel. Records are concatenated with no length prefix and no
    delimiter; the decoder cuts the stream at the first point where the
    buffered bytes parse as one complete record.

Channels:
    - stdout: bytes the run callable wrote to its standard output
    - stderr: bytes the run callable wrote to its standard error
    - error: textual description of a run failure

Payload bytes are carried as JSON strings decoded with surrogateescape and
serialised with ensure_ascii, so arbitrary bytes survive the round trip and
the wire stays pure ASCII.
"""

from __future__ import annotations

import json
import shlex
from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "Channel",
    "Frame",
    "FrameDecoder",
    "DaemonRequest",
    "encode_frame",
]

_PAYLOAD_ENCODING = "utf-8"
_PAYLOAD_ERRORS = "surrogateescape"


class Channel(str, Enum):
    """Output channels multiplexed over one connection."""

    STDOUT = "stdout"
    STDERR = "stderr"
    ERROR = "error"


_CHANNEL_NAMES = frozenset(channel.value for channel in Channel)


@dataclass(frozen=True, slots=True)
class Frame:
    """One channel-tagged chunk of output.

    Attributes:
        channel: Channel the payload belongs to.
        payload: Raw bytes, never empty.
    """

    channel: Channel
    payload: bytes


def encode_frame(channel: Channel | str, payload: bytes) -> bytes:
    """Encode one (channel, payload) pair as a self-delimiting record.

    Args:
        channel: Output channel.
        payload: Non-empty bytes to carry.

    Returns:
        ASCII bytes of a single-key JSON object.

    Raises:
        ValueError: If the payload is empty or the channel is unknown.

    Example:
        >>> encode_frame(Channel.STDOUT, b"hi\\n")
        b'{"stdout": "hi\\\\n"}'
    """
    if not payload:
        raise ValueError("frame payload must not be empty")

    name = Channel(channel).value
    text = bytes(payload).decode(_PAYLOAD_ENCODING, _PAYLOAD_ERRORS)
    return json.dumps({name: text}, ensure_ascii=True).encode("ascii")


class FrameDecoder:
    """Incremental decoder for a concatenation of frame records.

    Feed it byte chunks of any size as they arrive; it returns the frames
    completed so far and keeps the rest buffered.

    Example:
        >>> decoder = FrameDecoder()
        >>> decoder.feed(b'{"stdout": "a"}{"std')
        [Frame(channel=<Channel.STDOUT: 'stdout'>, payload=b'a')]
        >>> decoder.feed(b'err": "b"}')
        [Frame(channel=<Channel.STDERR: 'stderr'>, payload=b'b')]
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._json = json.JSONDecoder()
        self._failed = False

    @property
    def pending(self) -> bool:
        """Whether bytes are buffered that have not resolved into a frame."""
        return bool(self._buffer)

    @property
    def failed(self) -> bool:
        """Whether a complete record turned out not to be a valid frame.

        Decoding stops at that record; it and everything after it stay in
        residual.
        """
        return self._failed

    @property
    def residual(self) -> bytes:
        """Buffered bytes that have not resolved into a frame."""
        return bytes(self._buffer)

    def feed(self, chunk: bytes) -> list[Frame]:
        """Consume a chunk and return every frame it completes.

        Args:
            chunk: Next bytes from the stream.

        Returns:
            Completed frames in stream order (possibly empty). Once the
            decoder has failed, always empty.
        """
        self._buffer.extend(chunk)
        frames: list[Frame] = []

        while not self._failed and self._buffer[:1] == b"{":
            text = self._buffer.decode(_PAYLOAD_ENCODING, _PAYLOAD_ERRORS)
            try:
                record, end = self._json.raw_decode(text)
            except json.JSONDecodeError:
                break  # Incomplete record, wait for more bytes

            if not _is_frame_record(record):
                self._failed = True
                break

            # Records are ASCII, so the character offset is the byte offset
            del self._buffer[:end]
            ((name, payload),) = record.items()
            if payload:
                frames.append(
                    Frame(Channel(name), payload.encode(_PAYLOAD_ENCODING, _PAYLOAD_ERRORS))
                )

        return frames


def _is_frame_record(record: object) -> bool:
    """A frame is a single-key object: known channel name -> string."""
    if not isinstance(record, dict) or len(record) != 1:
        return False
    ((name, payload),) = record.items()
    return name in _CHANNEL_NAMES and isinstance(payload, str)


@dataclass(frozen=True, slots=True)
class DaemonRequest:
    """Protocol message for daemon requests.

    Attributes:
        args: Argument vector; args[0] is the sub-command or first user arg.
        body: Standard input content forwarded by the client.
    """

    args: list[str] = field(default_factory=list)
    body: bytes = b""

    @property
    def command(self) -> str | None:
        """First argument, or None for an empty argument vector."""
        return self.args[0] if self.args else None

    @classmethod
    def from_bytes(cls, data: bytes) -> DaemonRequest | None:
        """Parse a DaemonRequest from the raw request bytes.

        Quoted arguments may contain newlines, so the argument line ends at
        the first newline whose prefix is a complete shell-quoted line.

        Args:
            data: Everything the client sent before half-closing.

        Returns:
            Parsed DaemonRequest or None if no argument line is found.

        Example:
            >>> DaemonRequest.from_bytes(b"hello 'big world'\\nbody").args
            ['hello', 'big world']
        """
        start = 0
        while True:
            newline = data.find(b"\n", start)
            if newline < 0:
                return None

            try:
                args = shlex.split(data[:newline].decode(_PAYLOAD_ENCODING, _PAYLOAD_ERRORS))
            except ValueError:
                # Unbalanced quote: the newline is inside an argument
                start = newline + 1
                continue

            return cls(args=args, body=bytes(data[newline + 1 :]))

    def to_bytes(self) -> bytes:
        """Serialize to the request wire format.

        Returns:
            Shell-quoted argument line, a newline, then the body.
        """
        return shlex.join(self.args).encode(_PAYLOAD_ENCODING, _PAYLOAD_ERRORS) + b"\n" + self.body
