"""Receiving descriptors sent by a ResponseWriter.
"""
from __future__ import annotations

import logging
import os
import socket

from . import (
    ConnectionClosed,
    EmptyControlMessage,
    EmptyFileDescriptors,
    UnexpectedControlMessage,
)
from ._framing import parse_unix_rights, read_frame
from .constants import msg_default_buffer_size, oob_default_buffer_size
from .writer import check_unix_connection
from ._typing import MYPY_CHECK_RUNNING

if MYPY_CHECK_RUNNING:
    from typing import List

    from ._typing import ReceiveCallback


logger = logging.getLogger(__name__)


class Client:
    """Parses messages produced by a ResponseWriter.

    The callback given to the receive methods is called as
    `callback(fd, meta)` for every received descriptor, in the order they
    were written. `meta` is the metadata as bytes, empty if none was sent.
    The callback owns `fd` from then on. If it raises, receiving stops and
    the exception propagates.

    `msg_buffer_size` and `oob_buffer_size` must be the same as those of
    the sending side, a mismatch leads to truncated messages that cannot be
    detected reliably.

    Not thread-safe, the receive buffers are reused between calls.
    """
    def __init__(self, msg_buffer_size: int = 0, oob_buffer_size: int = 0):
        self._msg_buffer_size = msg_buffer_size or msg_default_buffer_size
        self._oob_buffer_size = oob_buffer_size or oob_default_buffer_size
        self._msg = bytearray(self._msg_buffer_size)

    def receive(self, address: str, callback: ReceiveCallback) -> None:
        """Connect to the unix socket at `address` and receive descriptors
        until the peer closes the connection.
        """
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as conn:
            conn.connect(address)
            self.receive_all_from(conn, callback)

    def receive_all_from(
            self, conn: socket.socket, callback: ReceiveCallback) -> None:
        """Receive messages from `conn` until the peer closes it."""
        while True:
            try:
                self.receive_from(conn, callback)
            except ConnectionClosed:
                logger.debug('Connection closed by peer')
                return

    def receive_from(
            self, conn: socket.socket, callback: ReceiveCallback) -> None:
        """Receive a single message from `conn`.

        Raises:
            NotUnixConnection if conn is not a unix stream socket
            ConnectionClosed if the peer closed the connection
            ProtocolError if the message is malformed
            Any exception raised by callback
        """
        check_unix_connection(conn)
        msgn, ancdata, flags, _addr = conn.recvmsg_into(
            [self._msg], self._oob_buffer_size)
        if not msgn and not ancdata:
            raise ConnectionClosed()
        if flags & socket.MSG_CTRUNC:
            logger.debug(
                'Control data truncated, the sender uses a larger buffer'
                ' than %d bytes', self._oob_buffer_size)

        fds = self._parse_fds(ancdata)
        with memoryview(self._msg) as view:
            self._dispatch(fds, view[:msgn], callback)

    def _parse_fds(self, ancdata) -> List[int]:
        if not ancdata:
            raise EmptyControlMessage('no control message received')
        fds = []
        for level, kind, data in ancdata:
            if level == socket.SOL_SOCKET and kind == socket.SCM_RIGHTS:
                fds.extend(parse_unix_rights(data))
        level, kind, _data = ancdata[0]
        if level != socket.SOL_SOCKET or kind != socket.SCM_RIGHTS:
            _close_all(fds)
            raise UnexpectedControlMessage(
                f'control message level {level} type {kind} does not carry'
                ' descriptors')
        if not fds:
            raise EmptyFileDescriptors('control message has no descriptors')
        return fds

    def _dispatch(self, fds: List[int], view: memoryview, callback):
        offset = 0
        for i, fd in enumerate(fds):
            try:
                meta, offset = read_frame(view, offset)
            except BaseException:
                _close_all(fds[i:])
                raise
            try:
                callback(fd, meta)
            except BaseException:
                # The callback received ownership of fd, but not of the rest.
                _close_all(fds[i + 1:])
                raise


def _close_all(fds: List[int]):
    for fd in fds:
        try:
            os.close(fd)
        except OSError as e:
            logger.debug('Failed to close received descriptor %d: %s', fd, e)
