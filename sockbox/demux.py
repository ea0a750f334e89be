"""Decoder for the daemon's multiplexed stdout/stderr stream.

Each frame is an 8-byte header followed by a payload:

    [stream (1 byte)] [0, 0, 0] [payload length (4 bytes, big-endian)]

Stream 1 is stdout, 2 is stderr; anything else is treated as stdout.
"""

import struct
from dataclasses import dataclass
from typing import Iterator, Union

HEADER_SIZE = 8
STDOUT = 1
STDERR = 2

_HEADER = struct.Struct(">BxxxL")


@dataclass
class DemuxedOutput:
    stdout: str
    stderr: str


def _as_bytes(data: Union[bytes, bytearray, str]) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def iter_frames(data: Union[bytes, bytearray, str]) -> Iterator[tuple[int, bytes]]:
    """Yield ``(stream, payload)`` pairs in encounter order.

    A truncated header, or a frame whose declared length is zero or runs
    past the end of the buffer, ends the walk: everything from that point on
    is yielded once as stdout text.
    """
    buf = _as_bytes(data)
    offset = 0
    while offset < len(buf):
        if offset + HEADER_SIZE > len(buf):
            yield STDOUT, buf[offset:]
            return

        stream, size = _HEADER.unpack_from(buf, offset)
        if size <= 0 or offset + HEADER_SIZE + size > len(buf):
            yield STDOUT, buf[offset:]
            return

        start = offset + HEADER_SIZE
        yield (STDERR if stream == STDERR else STDOUT), buf[start:start + size]
        offset = start + size


def demux(data: Union[bytes, bytearray, str]) -> str:
    """Strip frame headers and return all payloads combined."""
    return b"".join(payload for _, payload in iter_frames(data)).decode(
        "utf-8", errors="replace"
    )


def demux_separated(data: Union[bytes, bytearray, str]) -> DemuxedOutput:
    """Strip frame headers and split payloads by stream."""
    stdout: list[bytes] = []
    stderr: list[bytes] = []
    for stream, payload in iter_frames(data):
        (stderr if stream == STDERR else stdout).append(payload)
    return DemuxedOutput(
        stdout=b"".join(stdout).decode("utf-8", errors="replace"),
        stderr=b"".join(stderr).decode("utf-8", errors="replace"),
    )
