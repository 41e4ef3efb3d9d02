"""Pass open file descriptors between processes over unix sockets.

Intended for graceful restarts: the running process serves its listeners on
a unix socket, the new process receives them and starts accepting without
dropping connections.

    ln = socket.create_server(('localhost', 8080))
    ...  # Work until a restart is requested.
    fdhandoff.listen_and_serve(
        '/run/my_app/handoff.sock',
        fdhandoff.listener_handler(ln, fdhandoff.Meta(name='http')),
    )

and in the new process:

    def on_fd(fd, meta):
        listeners[fdhandoff.Meta.from_bytes(meta)['name']] = \\
            fdhandoff.socket_from_fd(fd)

    fdhandoff.receive('/run/my_app/handoff.sock', on_fd)
"""
from __future__ import annotations

__version__ = '0.1.0'

from ._internal import (
    ConnectionClosed,
    EmptyControlMessage,
    EmptyFileDescriptors,
    HandoffError,
    LongWrite,
    NotFiler,
    NotUnixConnection,
    NotUnixListener,
    ProtocolError,
    ShortWrite,
    TruncatedFrame,
    UnexpectedControlMessage,
)
from ._internal._files import file_from_fd, fileno_of, socket_from_fd
from ._internal._logging import (
    FuncLogger,
    default_configuration,
    reset_configuration,
)
from ._internal.client import Client
from ._internal.constants import (
    msg_default_buffer_size,
    oob_default_buffer_size,
)
from ._internal.handler import (
    CallbackHandler,
    Handler,
    HandlerFunc,
    conn_handler,
    fd_handler,
    file_handler,
    listener_handler,
    send_conn,
    send_fd,
    send_file,
    send_listener,
    sequence_handler,
)
from ._internal.meta import Meta
from ._internal.server import (
    Server,
    listen,
    listen_and_serve,
    send,
    send_conn_to,
    send_file_to,
    send_listener_to,
    send_to,
    serve,
)
from ._internal.writer import ResponseWriter


def receive(address, callback):
    """Connect to `address` and call `callback(fd, meta)` for every
    received descriptor until the server closes the connection.
    """
    Client().receive(address, callback)


def receive_from(conn, callback):
    """Receive a single message from `conn`."""
    Client().receive_from(conn, callback)


def receive_all_from(conn, callback):
    """Receive messages from `conn` until the peer closes it."""
    Client().receive_all_from(conn, callback)
