"""Conversions between descriptors and the objects that own them.
"""
from __future__ import annotations

import os
import socket

from . import NotFiler


def is_unix_stream(sock) -> bool:
    return (
        isinstance(sock, socket.socket)
        and sock.family == socket.AF_UNIX
        and sock.type == socket.SOCK_STREAM
    )


def fileno_of(obj) -> int:
    """Descriptor of a socket, file, or anything else with fileno().

    Raises:
        NotFiler if obj has no fileno()
    """
    if isinstance(obj, int):
        return obj
    try:
        fileno = obj.fileno
    except AttributeError:
        raise NotFiler(
            f'{type(obj).__name__} does not provide a file descriptor'
        ) from None
    return fileno()


def socket_from_fd(fd: int) -> socket.socket:
    """Wrap a received socket descriptor, e.g. a listener or connection.

    Family and type are taken from the descriptor itself. The returned
    socket owns fd.
    """
    return socket.socket(fileno=fd)


def file_from_fd(fd: int, mode: str = 'rb', **kwargs):
    """Wrap a received descriptor in a file object that owns it.

    Opening with 'w' does not truncate, the offset is shared with the
    sending process.
    """
    return os.fdopen(fd, mode, **kwargs)
