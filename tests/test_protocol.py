"""Tests for the wire protocol.

Tests validate:
- Frame encoding (single-key JSON records, ASCII wire)
- Incremental frame decoding across arbitrary chunk boundaries
- Byte-faithful payloads (quotes, newlines, braces, invalid UTF-8)
- Request line framing with shell quoting
"""

from __future__ import annotations

import json

import pytest

from iodaemon.daemon.protocol import (
    Channel,
    DaemonRequest,
    Frame,
    FrameDecoder,
    encode_frame,
)


def _decode_all(data: bytes, step: int | None = None) -> tuple[list[Frame], FrameDecoder]:
    decoder = FrameDecoder()
    frames: list[Frame] = []
    if step is None:
        frames.extend(decoder.feed(data))
    else:
        for i in range(0, len(data), step):
            frames.extend(decoder.feed(data[i : i + step]))
    return frames, decoder


class TestEncodeFrame:
    """Test encode_frame."""

    def test_single_key_record(self):
        """Test a frame is one JSON object keyed by the channel."""
        wire = encode_frame(Channel.STDOUT, b"hello\n")

        assert json.loads(wire) == {"stdout": "hello\n"}

    def test_accepts_channel_name(self):
        """Test channel given as plain string."""
        assert json.loads(encode_frame("stderr", b"x")) == {"stderr": "x"}

    def test_wire_is_ascii(self):
        """Test non-ASCII and invalid UTF-8 payloads are escaped."""
        wire = encode_frame(Channel.STDOUT, "héllo ✓".encode() + b"\xff\xfe")

        wire.decode("ascii")  # must not raise

    def test_empty_payload_rejected(self):
        """Test empty payloads are not valid frames."""
        with pytest.raises(ValueError):
            encode_frame(Channel.STDOUT, b"")

    def test_unknown_channel_rejected(self):
        """Test channel names outside the enum are rejected."""
        with pytest.raises(ValueError):
            encode_frame("stdin", b"x")


class TestFrameDecoder:
    """Test FrameDecoder incremental parsing."""

    def test_single_frame(self):
        """Test decoding one complete record."""
        frames, decoder = _decode_all(b'{"stdout": "hi"}')

        assert frames == [Frame(Channel.STDOUT, b"hi")]
        assert decoder.pending is False

    def test_concatenated_frames_in_one_chunk(self):
        """Test records without delimiter are split at record boundaries."""
        data = b'{"stdout": "a"}{"stderr": "b"}{"stdout": "c"}'
        frames, _ = _decode_all(data)

        assert frames == [
            Frame(Channel.STDOUT, b"a"),
            Frame(Channel.STDERR, b"b"),
            Frame(Channel.STDOUT, b"c"),
        ]

    def test_partial_record_is_buffered(self):
        """Test an incomplete record stays pending until completed."""
        decoder = FrameDecoder()

        assert decoder.feed(b'{"stdout": "hel') == []
        assert decoder.pending is True
        assert decoder.feed(b'lo"}') == [Frame(Channel.STDOUT, b"hello")]
        assert decoder.pending is False

    def test_byte_by_byte(self):
        """Test feeding one byte at a time yields the same frames."""
        pairs = [
            (Channel.STDOUT, b'say "hi" {not json}\n'),
            (Channel.STDERR, b"}{"),
            (Channel.STDOUT, b"\\n is not a newline\n"),
        ]
        data = b"".join(encode_frame(c, p) for c, p in pairs)

        frames, decoder = _decode_all(data, step=1)

        assert [(f.channel, f.payload) for f in frames] == pairs
        assert decoder.pending is False

    @pytest.mark.parametrize(
        "payload",
        [
            b'"',
            b"\\",
            b"{}",
            b'{"stdout": "nested"}',
            b"line1\nline2\r\n",
            b"\x00\x01\x7f",
            "unicode ✓ ünï".encode(),
            b"\xff\xfe invalid utf-8 \xc3",
        ],
    )
    def test_special_payloads_round_trip(self, payload: bytes):
        """Test payloads that stress the record format survive unchanged."""
        frames, decoder = _decode_all(encode_frame(Channel.STDOUT, payload), step=3)

        assert frames == [Frame(Channel.STDOUT, payload)]
        assert decoder.failed is False

    def test_multibyte_character_split_across_frames(self):
        """Test a UTF-8 character split between two writes is reassembled."""
        text = "✓".encode()
        data = encode_frame(Channel.STDOUT, text[:1]) + encode_frame(Channel.STDOUT, text[1:])

        frames, _ = _decode_all(data)

        assert b"".join(f.payload for f in frames) == text

    def test_empty_payload_record_is_skipped(self):
        """Test a record with an empty string produces no frame."""
        frames, decoder = _decode_all(b'{"stdout": ""}{"stdout": "x"}')

        assert frames == [Frame(Channel.STDOUT, b"x")]
        assert decoder.pending is False

    def test_raw_trailing_bytes_remain_residual(self):
        """Test un-framed bytes never resolve and stay available."""
        frames, decoder = _decode_all(b'{"stdout": "ok"}RuntimeError: boom')

        assert frames == [Frame(Channel.STDOUT, b"ok")]
        assert decoder.pending is True
        assert decoder.residual == b"RuntimeError: boom"

    def test_invalid_record_marks_failed(self):
        """Test a complete record that is not a frame stops decoding."""
        decoder = FrameDecoder()

        frames = decoder.feed(b'{"stdout": "a"}{"stdin": "b"}{"stdout": "c"}')

        assert frames == [Frame(Channel.STDOUT, b"a")]
        assert decoder.failed is True
        assert decoder.residual == b'{"stdin": "b"}{"stdout": "c"}'
        assert decoder.feed(b'{"stdout": "d"}') == []

    @pytest.mark.parametrize(
        "record",
        [b'{"stdout": "a", "stderr": "b"}', b"{}", b'{"stdout": 1}'],
    )
    def test_malformed_records(self, record: bytes):
        """Test multi-key, empty and non-string records are rejected."""
        _, decoder = _decode_all(record)

        assert decoder.failed is True
        assert decoder.residual == record


class TestDaemonRequest:
    """Test DaemonRequest wire framing."""

    def test_to_bytes(self):
        """Test argument line is shell-quoted and newline-terminated."""
        request = DaemonRequest(args=["hello", "big world"], body=b"stdin")

        assert request.to_bytes() == b"hello 'big world'\nstdin"

    def test_from_bytes(self):
        """Test parsing argument line and body."""
        request = DaemonRequest.from_bytes(b"hello 'big world'\nline1\nline2\n")

        assert request is not None
        assert request.args == ["hello", "big world"]
        assert request.body == b"line1\nline2\n"
        assert request.command == "hello"

    @pytest.mark.parametrize(
        "args",
        [
            [],
            ["stop"],
            ["with\nnewline", "x"],
            ["quote's", 'double "q"', "$HOME", "*", ""],
            ["ünï ✓"],
            ["caf\udce9", "\udcff raw"],
        ],
    )
    def test_round_trip(self, args: list[str]):
        """Test arguments that need quoting survive the wire."""
        original = DaemonRequest(args=args, body=b"body\nwith newline")

        parsed = DaemonRequest.from_bytes(original.to_bytes())

        assert parsed == original

    def test_empty_args_command_is_none(self):
        """Test an empty argument vector has no command."""
        request = DaemonRequest.from_bytes(b"\n")

        assert request is not None
        assert request.args == []
        assert request.command is None

    def test_non_utf8_argument_bytes(self):
        """Test argv bytes that are not UTF-8 survive as surrogate escapes."""
        request = DaemonRequest(args=["caf\udce9"])

        assert request.to_bytes() == b"'caf\xe9'\n"
        assert DaemonRequest.from_bytes(b"caf\xe9 'x\xff'\nbody").args == ["caf\udce9", "x\udcff"]

    def test_from_bytes_without_newline(self):
        """Test a request with no argument line is invalid."""
        assert DaemonRequest.from_bytes(b"no newline here") is None

    def test_from_bytes_unbalanced_quote(self):
        """Test a line that never becomes valid shell syntax is invalid."""
        assert DaemonRequest.from_bytes(b"'open\nstill open\n") is None
