"""Layout of a single transfer message.

Each message carries descriptors as one SCM_RIGHTS control message and
their metadata in the regular payload, as a sequence of frames:

    [4-byte little-endian length][length bytes of metadata]

The Nth frame belongs to the Nth descriptor. An empty frame is just the
zero length prefix.
"""
from __future__ import annotations

import array
import io
import operator
import socket
import struct

from . import LongWrite, TruncatedFrame
from .constants import header_size
from ._typing import MYPY_CHECK_RUNNING

if MYPY_CHECK_RUNNING:
    from typing import Any, Iterable, List, Tuple

    from ._typing import BytesLike


_header = struct.Struct('<I')
assert _header.size == header_size

_int_size = array.array('i').itemsize
_fd_limit = 2 ** (8 * _int_size - 1)


def encode_header(n: int) -> bytes:
    return _header.pack(n)


def decode_header(view: BytesLike, offset: int = 0) -> int:
    return _header.unpack_from(view, offset)[0]


def max_fds(oob_buffer_size: int) -> int:
    """Number of descriptors that always fit in an ancillary buffer of the
    given size.

    Sized as if every descriptor were sent in its own control message, which
    over-estimates the space needed when they share one.
    """
    return oob_buffer_size // socket.CMSG_SPACE(_int_size)


def check_fd(fd) -> int:
    """Return fd as an int that fits an SCM_RIGHTS entry.

    Raises:
        TypeError if fd is not an integer
        ValueError if fd is negative or too large
    """
    fd = operator.index(fd)
    if not 0 <= fd < _fd_limit:
        raise ValueError(f'{fd} is not a valid file descriptor')
    return fd


def unix_rights(fds: Iterable[int]) -> List[Tuple[int, int, bytes]]:
    return [(socket.SOL_SOCKET, socket.SCM_RIGHTS, array.array('i', fds))]


def parse_unix_rights(data: bytes) -> List[int]:
    fds = array.array('i')
    # Kernel may hand us trailing padding.
    fds.frombytes(data[:len(data) - (len(data) % fds.itemsize)])
    return list(fds)


def read_frame(view: memoryview, offset: int) -> Tuple[bytes, int]:
    """Read the frame starting at offset.

    Returns:
        the metadata bytes and the offset of the following frame

    Raises:
        TruncatedFrame if the frame does not fit in view
    """
    end = offset + header_size
    if end > len(view):
        raise TruncatedFrame(
            f'frame header at offset {offset} exceeds payload of {len(view)} bytes')
    n = decode_header(view, offset)
    if end + n > len(view):
        raise TruncatedFrame(
            f'frame of {n} bytes at offset {offset} exceeds payload of'
            f' {len(view)} bytes')
    return bytes(view[end:end + n]), end + n


class _LimitedWriter(io.RawIOBase):
    """Binary stream that refuses to hold more than `limit` bytes."""

    def __init__(self, limit: int):
        self._buf = io.BytesIO()
        self._remaining = limit
        self.exceeded = False

    def writable(self):
        return True

    def write(self, b) -> int:
        n = len(memoryview(b).cast('B'))
        if n > self._remaining:
            self.exceeded = True
            raise LongWrite(f'metadata exceeds {self._remaining} free bytes')
        self._remaining -= n
        return self._buf.write(b)

    def getvalue(self) -> bytes:
        return self._buf.getvalue()


def render_meta(meta: Any, limit: int) -> bytes:
    """Produce the bytes of a metadata source.

    Args:
        meta: None, a bytes-like object, or an object with a
            `write_to(stream)` method that writes its encoding to a binary
            stream
        limit: the most bytes a single frame may hold

    Raises:
        LongWrite if the metadata is larger than limit
        TypeError if meta is not a supported metadata source
    """
    if meta is None:
        return b''
    if isinstance(meta, (bytes, bytearray, memoryview)):
        data = bytes(meta)
    elif hasattr(meta, 'write_to'):
        stream = _LimitedWriter(limit)
        meta.write_to(stream)
        # Sources may catch the error raised by the stream.
        if stream.exceeded:
            raise LongWrite(f'metadata exceeds {limit} bytes')
        data = stream.getvalue()
    else:
        raise TypeError(
            f'metadata must be bytes-like or provide write_to(), not'
            f' {type(meta).__name__}')
    if len(data) > limit:
        raise LongWrite(f'metadata of {len(data)} bytes exceeds {limit} bytes')
    return data
