import array
from contextlib import contextmanager
import logging
import os
from pathlib import Path
import socket
import tempfile
from typing import ContextManager, List, Tuple

import psutil


logger = logging.getLogger(__name__)


@contextmanager
def chdir(path: Path) -> ContextManager:
    current_path = Path.cwd()
    try:
        os.chdir(str(path))
        yield
    finally:
        os.chdir(str(current_path))


@contextmanager
def isolated_filesystem() -> ContextManager[Path]:
    # Short paths, unix socket addresses are limited to 108 bytes.
    with tempfile.TemporaryDirectory(dir='/tmp') as d:
        with chdir(d):
            yield Path(d)


@contextmanager
def temp_files(n: int) -> ContextManager[List]:
    """Open n named temporary files, closed and removed on exit."""
    files = []
    try:
        for _ in range(n):
            files.append(tempfile.NamedTemporaryFile(prefix='fdhandoff'))
        yield files
    finally:
        for f in files:
            f.close()


def unix_socketpair() -> Tuple[socket.socket, socket.socket]:
    """Returns (client, server) ends of a connected unix stream socket."""
    return socket.socketpair(socket.AF_UNIX, socket.SOCK_STREAM)


def file_id(fd: int) -> Tuple[int, int]:
    st = os.fstat(fd)
    return st.st_dev, st.st_ino


def same_file(a: int, b: int) -> bool:
    return file_id(a) == file_id(b)


def is_open(fd: int) -> bool:
    try:
        os.fstat(fd)
    except OSError:
        return False
    return True


def open_fd_count() -> int:
    return psutil.Process().num_fds()


def count_messages(sock: socket.socket, bufsize: int = 4096) -> int:
    """Read sock until EOF, returning the number of messages carrying
    descriptors. Received descriptors are closed.
    """
    n = 0
    while True:
        msg, ancdata, _flags, _addr = sock.recvmsg(bufsize, bufsize)
        if not msg and not ancdata:
            return n
        for level, kind, data in ancdata:
            if level == socket.SOL_SOCKET and kind == socket.SCM_RIGHTS:
                n += 1
                fds = array.array('i')
                fds.frombytes(data[:len(data) - len(data) % fds.itemsize])
                for fd in fds:
                    os.close(fd)


class RecordingLogger:
    """Logger keeping formatted messages per level."""

    def __init__(self):
        self.messages = {'debug': [], 'info': [], 'error': []}

    def _record(self, level, msg, args):
        text = msg % args if args else msg
        logger.debug('%s: %s', level, text)
        self.messages[level].append(text)

    def debug(self, msg, *args):
        self._record('debug', msg, args)

    def info(self, msg, *args):
        self._record('info', msg, args)

    def error(self, msg, *args):
        self._record('error', msg, args)
