"""Handlers decide what a Server sends to each connection.

A handler is called with the accepted connection and the ResponseWriter
bound to it, and writes any number of descriptors. Anything with a
`fileno()` method can be sent: sockets, listeners, files.
"""
from __future__ import annotations

from abc import ABC, abstractmethod

from ._files import fileno_of
from ._typing import MYPY_CHECK_RUNNING

if MYPY_CHECK_RUNNING:
    import socket

    from typing import Any, Callable

    from .writer import ResponseWriter


class Handler(ABC):
    @abstractmethod
    def handle(self, conn: socket.socket, resp: ResponseWriter) -> None:
        pass


class HandlerFunc(Handler):
    """Adapter to use a function taking (conn, resp) as a Handler."""

    def __init__(self, fn: Callable[[socket.socket, ResponseWriter], None]):
        self._fn = fn

    def handle(self, conn, resp):
        self._fn(conn, resp)


class CallbackHandler(Handler):
    """Adapter to use a function without arguments as a Handler."""

    def __init__(self, fn: Callable[[], None]):
        self._fn = fn

    def handle(self, _conn, _resp):
        self._fn()


def as_handler(obj) -> Handler:
    if isinstance(obj, Handler):
        return obj
    if callable(obj):
        return HandlerFunc(obj)
    raise TypeError(f'{obj!r} is neither a Handler nor callable')


def send_fd(resp: ResponseWriter, fd: int, meta: Any = None) -> None:
    resp.write(fd, meta)


def send_file(resp: ResponseWriter, file, meta: Any = None) -> None:
    resp.write(fileno_of(file), meta)


# Listeners and connections are all sockets in Python, the separate names
# document intent at call sites.
send_listener = send_file
send_conn = send_file


class _SendHandler(Handler):
    def __init__(self, kind, send, obj, meta):
        self._kind = kind
        self._send = send
        self._obj = obj
        self._meta = meta

    def handle(self, _conn, resp):
        try:
            self._send(resp, self._obj, self._meta)
        except Exception as e:
            resp.logger.error('Send %s error: %r', self._kind, e)


def fd_handler(fd: int, meta: Any = None) -> Handler:
    """Handler sending descriptor fd. Errors are logged to resp.logger."""
    return _SendHandler('fd', send_fd, fd, meta)


def file_handler(file, meta: Any = None) -> Handler:
    return _SendHandler('file', send_file, file, meta)


def listener_handler(ln, meta: Any = None) -> Handler:
    return _SendHandler('listener', send_listener, ln, meta)


def conn_handler(conn, meta: Any = None) -> Handler:
    return _SendHandler('conn', send_conn, conn, meta)


def sequence_handler(*handlers) -> Handler:
    """Handler calling each of handlers in order on the same connection."""
    handlers = [as_handler(h) for h in handlers]

    def handle(conn, resp):
        for h in handlers:
            h.handle(conn, resp)

    return HandlerFunc(handle)
