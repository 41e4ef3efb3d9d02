"""Buffered sending of descriptors and their metadata.
"""
from __future__ import annotations

import logging
import socket

from . import LongWrite, NotUnixConnection, ShortWrite
from ._files import is_unix_stream
from ._framing import (
    check_fd,
    encode_header,
    max_fds,
    render_meta,
    unix_rights,
)
from .constants import (
    header_size,
    msg_default_buffer_size,
    oob_default_buffer_size,
)
from ._typing import MYPY_CHECK_RUNNING

if MYPY_CHECK_RUNNING:
    from typing import Any, List, Optional


def check_unix_connection(conn) -> None:
    if not is_unix_stream(conn):
        raise NotUnixConnection(f'not a unix stream connection: {conn!r}')


class ResponseWriter:
    """Collects descriptors and metadata into batches sent over `conn`.

    A batch is sent as one message when it is full or on `flush()`. The
    payload buffer and the descriptor list never grow; `msg_buffer_size`
    bounds the total size of the metadata frames in a batch and
    `oob_buffer_size` bounds the number of descriptors, 0 selects the
    default for either. The receiving Client must use the same sizes.

    Once sending a batch fails the writer is unusable and every further
    call raises that error again. LongWrite and invalid descriptors are
    rejected before anything is buffered and do not count as failures.

    Not thread-safe.
    """

    logger: Any
    """Where handlers may report problems. Has debug, info and error."""

    def __init__(
        self,
        conn: socket.socket,
        msg_buffer_size: int = 0,
        oob_buffer_size: int = 0,
        logger=None,
    ):
        check_unix_connection(conn)
        if logger is None:
            logger = logging.getLogger(__name__)
        self.logger = logger
        self._conn = conn
        self._buf = bytearray(msg_buffer_size or msg_default_buffer_size)
        self._n = 0
        self._fds: List[int] = []
        self._max_fds = max_fds(oob_buffer_size or oob_default_buffer_size)
        self._error: Optional[BaseException] = None

    @property
    def pending(self) -> int:
        """Number of descriptors waiting for the next flush."""
        return len(self._fds)

    def write(self, fd: int, meta: Any = None) -> None:
        """Buffer descriptor `fd` together with its metadata.

        If the current batch cannot take the descriptor it is flushed first,
        at most once per call.

        Args:
            fd: descriptor to send, it must stay open until the flush
            meta: None, bytes-like, or an object with a `write_to(stream)`
                method

        Raises:
            TypeError, ValueError if fd is not a descriptor number, nothing is
                buffered
            LongWrite if the descriptor does not fit even into an empty batch
            OSError, ShortWrite from the implicit flush
        """
        if self._error is not None:
            raise self._error

        fd = check_fd(fd)
        data = render_meta(meta, len(self._buf) - header_size)

        for attempt in range(2):
            if self._fits(len(data)):
                self._append(fd, data)
                return
            if attempt:
                break
            self.flush()

        raise LongWrite(
            f'no room for descriptor with {len(data)} bytes of metadata')

    def flush(self) -> None:
        """Send the current batch, if any, as a single message.

        Raises:
            OSError from the transport
            ShortWrite if the kernel did not take the whole payload
        """
        if self._error is not None:
            raise self._error
        if not self._fds:
            return

        payload = memoryview(self._buf)[:self._n]
        try:
            n = self._conn.sendmsg([payload], unix_rights(self._fds))
            if n < len(payload):
                raise ShortWrite(f'sent {n} of {len(payload)} bytes')
        except Exception as e:
            self._error = e
            raise
        finally:
            payload.release()
            self._n = 0
            self._fds.clear()

    def _fits(self, size: int) -> bool:
        if len(self._fds) >= self._max_fds:
            return False
        return self._n + header_size + size <= len(self._buf)

    def _append(self, fd: int, data: bytes):
        end = self._n + header_size
        self._buf[self._n:end] = encode_header(len(data))
        self._buf[end:end + len(data)] = data
        self._n = end + len(data)
        self._fds.append(fd)
