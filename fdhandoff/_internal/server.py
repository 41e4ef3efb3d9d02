"""Descriptor server.

| old process |          | new process |

  listen(path)
  serve  <------ connect ----
  handler writes fds
  flush  ---- SCM_RIGHTS --->  callback(fd, meta)
  close  -------- EOF ------>  receive returns

Every accepted connection is handled in its own thread by calling the
handler with a fresh ResponseWriter bound to that connection. Whatever the
handler buffered is flushed when it returns, then the connection is closed.
"""
from __future__ import annotations

import errno
import itertools
import logging
import os
import socket
import stat
import threading
import time
import traceback

from fasteners import InterProcessLock

from . import NotUnixListener
from ._files import is_unix_stream
from ._signal import blocked_signals
from .constants import (
    accept_retry_delay,
    msg_default_buffer_size,
    oob_default_buffer_size,
)
from .handler import as_handler, send_conn, send_file, send_listener
from .writer import ResponseWriter
from ._typing import MYPY_CHECK_RUNNING

if MYPY_CHECK_RUNNING:
    from typing import Any, Optional


logger = logging.getLogger(__name__)


_transient_accept_errors = {
    errno.EAGAIN,
    errno.ECONNABORTED,
    errno.ECONNRESET,
    errno.EMFILE,
    errno.ENFILE,
    errno.ENOBUFS,
    errno.ENOMEM,
    errno.EPROTO,
    errno.ETIMEDOUT,
}


def is_transient(e: OSError) -> bool:
    """Whether accepting may succeed if simply retried later."""
    return e.errno in _transient_accept_errors


def listen(address: str, backlog: int = socket.SOMAXCONN) -> socket.socket:
    """Create a unix stream socket listening at `address`.

    A socket file left behind by a process that is gone is replaced. A lock
    file next to the socket keeps two processes starting at the same time
    from removing each other's sockets.

    Raises:
        FileExistsError if another process is listening at address
    """
    with InterProcessLock(f'{address}.lock'):
        _remove_stale_socket(address)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(address)
            sock.listen(backlog)
        except OSError:
            sock.close()
            raise
    logger.debug('Listening at %s', address)
    return sock


def _remove_stale_socket(address: str):
    try:
        st = os.stat(address)
    except FileNotFoundError:
        return
    if not stat.S_ISSOCK(st.st_mode):
        raise FileExistsError(
            errno.EEXIST, 'File exists and is not a socket', address)
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as probe:
        try:
            probe.connect(address)
        except ConnectionRefusedError:
            pass
        else:
            raise FileExistsError(
                errno.EADDRINUSE, 'Socket is in use', address)
    logger.info('Removing stale socket %s', address)
    os.unlink(address)


def name_conn(conn: socket.socket) -> str:
    try:
        local = conn.getsockname()
        remote = conn.getpeername()
    except OSError:
        return f'unix:fd={conn.fileno()}'
    return f'unix:{local or "@"} > unix:{remote or "@"}'


class Server:
    """Sends descriptors to every client connecting to a unix socket.

    Args:
        handler: a Handler, or a callable taking the connection and a
            ResponseWriter, called once per accepted connection
        msg_buffer_size: capacity for metadata in one message, 0 for the
            default
        oob_buffer_size: capacity for descriptors in one message, 0 for the
            default
        logger: object with debug, info and error methods, defaults to the
            `fdhandoff` logger

    Clients must use the same buffer sizes as the server.

    A Server serves until `shutdown()` and cannot be restarted afterwards,
    `serve` on a shut down Server returns at once. Create a new Server to
    serve again.
    """

    def __init__(
        self,
        handler: Any = None,
        msg_buffer_size: int = 0,
        oob_buffer_size: int = 0,
        logger: Any = None,
    ):
        self.handler = as_handler(handler) if handler is not None else None
        self.msg_buffer_size = msg_buffer_size or msg_default_buffer_size
        self.oob_buffer_size = oob_buffer_size or oob_default_buffer_size
        if logger is None:
            logger = logging.getLogger(__name__)
        self.logger = logger
        self._listener: Optional[socket.socket] = None
        self._shutting_down = False
        self._ids = itertools.count()

    def listen_and_serve(self, address: str) -> None:
        """Listen at `address` and serve until shut down or an error."""
        with listen(address) as ln:
            try:
                self.serve(ln)
            finally:
                try:
                    os.unlink(address)
                except FileNotFoundError:
                    pass

    def serve(self, listener: socket.socket) -> None:
        """Accept connections on `listener`, handling each in a new thread.

        Returns after `shutdown()`, immediately if it was already called.

        Raises:
            TypeError if the Server has no handler
            NotUnixListener if listener is not a unix stream socket
            OSError on a non-transient accept error
        """
        if self.handler is None:
            raise TypeError('Server needs a handler to serve')
        _check_unix_listener(listener)
        self._listener = listener
        if self._shutting_down:
            self.logger.debug('Server was shut down, not serving')
            return
        self.logger.debug('Serving on %r', listener.getsockname())
        while True:
            try:
                conn, _addr = listener.accept()
            except OSError as e:
                if self._shutting_down:
                    self.logger.debug('Listener stopped')
                    return
                if not is_transient(e):
                    raise
                self.logger.debug('Accept error: %s; delaying', e)
                time.sleep(accept_retry_delay)
                continue
            self._start_worker(conn)

    def shutdown(self) -> None:
        """Stop accepting connections.

        Connections already accepted are still handled. The listener is left
        for its owner to close.
        """
        self._shutting_down = True
        listener = self._listener
        if listener is None:
            return
        try:
            # Wakes up a blocked accept.
            listener.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            self.logger.debug('Listener shutdown: %s', e)

    def new_response_writer(self, conn: socket.socket) -> ResponseWriter:
        return ResponseWriter(
            conn, self.msg_buffer_size, self.oob_buffer_size, self.logger)

    def send_to(self, conn: socket.socket, fd: int, meta: Any = None):
        """Send descriptor `fd` and its metadata over `conn`."""
        resp = self.new_response_writer(conn)
        resp.write(fd, meta)
        resp.flush()

    def send_listener_to(self, conn: socket.socket, ln, meta: Any = None):
        resp = self.new_response_writer(conn)
        send_listener(resp, ln, meta)
        resp.flush()

    def send_conn_to(self, dst: socket.socket, conn, meta: Any = None):
        """Send connection `conn` and its metadata over `dst`."""
        resp = self.new_response_writer(dst)
        send_conn(resp, conn, meta)
        resp.flush()

    def send_file_to(self, conn: socket.socket, file, meta: Any = None):
        resp = self.new_response_writer(conn)
        send_file(resp, file, meta)
        resp.flush()

    def _start_worker(self, conn: socket.socket):
        name = name_conn(conn)
        self.logger.debug('Accepted connection: %r', name)
        t = threading.Thread(
            target=self._serve_connection,
            args=(conn, name),
            name=f'fdhandoff-conn-{next(self._ids)}',
            daemon=True,
        )
        # Leave signal handling to the application's own threads.
        with blocked_signals():
            t.start()

    def _serve_connection(self, conn: socket.socket, name: str):
        try:
            resp = self.new_response_writer(conn)
            try:
                self.handler.handle(conn, resp)
            except Exception as e:
                self.logger.error(
                    'Panic serving connection %r: %r\n%s',
                    name, e, traceback.format_exc())
            try:
                resp.flush()
            except Exception as e:
                self.logger.error(
                    'Flush descriptors to %r error: %r', name, e)
            else:
                self.logger.info('Sent descriptors to %r', name)
        finally:
            self.logger.debug('Closing connection %r', name)
            conn.close()


def _check_unix_listener(listener):
    if not is_unix_stream(listener):
        raise NotUnixListener(f'not a unix stream listener: {listener!r}')


default_server = Server()
"""Used by the module-level send functions."""


def listen_and_serve(address: str, handler: Any, **kwargs) -> None:
    Server(handler, **kwargs).listen_and_serve(address)


def serve(listener: socket.socket, handler: Any, **kwargs) -> None:
    Server(handler, **kwargs).serve(listener)


def send(address: str, fd: int, meta: Any = None) -> None:
    """Connect to the unix socket at `address` and send `fd` to it."""
    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as conn:
        conn.connect(address)
        send_to(conn, fd, meta)


def send_to(conn: socket.socket, fd: int, meta: Any = None) -> None:
    default_server.send_to(conn, fd, meta)


def send_listener_to(conn: socket.socket, ln, meta: Any = None) -> None:
    default_server.send_listener_to(conn, ln, meta)


def send_conn_to(dst: socket.socket, conn, meta: Any = None) -> None:
    default_server.send_conn_to(dst, conn, meta)


def send_file_to(conn: socket.socket, file, meta: Any = None) -> None:
    default_server.send_file_to(conn, file, meta)
