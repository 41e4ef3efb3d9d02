import array
import os
import socket

import pytest

from fdhandoff import (
    Client,
    EmptyControlMessage,
    EmptyFileDescriptors,
    NotUnixConnection,
    ResponseWriter,
    TruncatedFrame,
    UnexpectedControlMessage,
    receive_all_from,
    receive_from,
    send,
    listen,
)
from fdhandoff._internal._framing import encode_header

from .utils import (
    file_id,
    is_open,
    isolated_filesystem,
    open_fd_count,
    same_file,
    temp_files,
    unix_socketpair,
)
from .utils.process import run_in_process


class FakeMessageSocket(socket.socket):
    """Unix socket returning a prepared message from recvmsg_into."""

    def __init__(self, payload, ancdata):
        super().__init__(socket.AF_UNIX, socket.SOCK_STREAM)
        self.payload = payload
        self.ancdata = ancdata

    def recvmsg_into(self, buffers, ancbufsize=0, flags=0):
        buffers[0][:len(self.payload)] = self.payload
        return len(self.payload), self.ancdata, 0, None


def rights(*fds):
    return (socket.SOL_SOCKET, socket.SCM_RIGHTS, array.array('i', fds).tobytes())


def test_receive_from_reads_one_message():
    client, server = unix_socketpair()
    with client, server, temp_files(3) as files:
        resp = ResponseWriter(server, 4096, 4096)
        resp.write(files[0].fileno(), b'first')
        resp.write(files[1].fileno())
        resp.flush()
        resp.write(files[2].fileno(), b'third')
        resp.flush()

        received = []
        receive_from(client, lambda fd, meta: received.append((fd, meta)))
        assert [m for _fd, m in received] == [b'first', b'']
        assert same_file(received[0][0], files[0].fileno())
        assert same_file(received[1][0], files[1].fileno())

        receive_from(client, lambda fd, meta: received.append((fd, meta)))
        assert [m for _fd, m in received] == [b'first', b'', b'third']


def test_receive_all_from_stops_at_eof():
    client, server = unix_socketpair()
    server.close()
    calls = []
    with client:
        receive_all_from(client, lambda fd, meta: calls.append(fd))
    assert not calls


def test_message_without_control_data():
    client, server = unix_socketpair()
    with client, server:
        server.sendall(encode_header(0))
        with pytest.raises(EmptyControlMessage):
            receive_from(client, lambda fd, meta: None)


def test_control_message_without_descriptors():
    with FakeMessageSocket(encode_header(0), [rights()]) as sock:
        with pytest.raises(EmptyFileDescriptors):
            receive_from(sock, lambda fd, meta: None)


def test_unexpected_control_message_closes_descriptors():
    fd = os.dup(0)
    ancdata = [
        (socket.SOL_SOCKET, socket.SCM_CREDENTIALS, b'\x00' * 12),
        rights(fd),
    ]
    with FakeMessageSocket(encode_header(0), ancdata) as sock:
        with pytest.raises(UnexpectedControlMessage):
            receive_from(sock, lambda fd, meta: None)
    assert not is_open(fd)


def test_truncated_frame_closes_remaining_descriptors():
    fds = [os.dup(0), os.dup(0)]
    payload = encode_header(1) + b'a' + encode_header(10) + b'short'
    received = []
    with FakeMessageSocket(payload, [rights(*fds)]) as sock:
        with pytest.raises(TruncatedFrame):
            receive_from(sock, lambda fd, meta: received.append((fd, meta)))
    assert received == [(fds[0], b'a')]
    assert is_open(fds[0])
    assert not is_open(fds[1])
    os.close(fds[0])


def test_callback_error_stops_processing():
    class Stop(Exception):
        pass

    client, server = unix_socketpair()
    with client, server, temp_files(3) as files:
        resp = ResponseWriter(server, 4096, 4096)
        for f in files:
            resp.write(f.fileno(), f.name.encode('utf-8'))
        resp.flush()

        before = open_fd_count()
        received = []

        def callback(fd, meta):
            received.append(fd)
            raise Stop()

        with pytest.raises(Stop):
            receive_all_from(client, callback)

        assert len(received) == 1
        # Only the descriptor handed to the callback stays open.
        assert open_fd_count() == before + 1
        os.close(received[0])


def test_requires_unix_connection():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        with pytest.raises(NotUnixConnection):
            receive_from(sock, lambda fd, meta: None)


def test_client_reuses_buffers_across_connections():
    c = Client(64, 64)
    for i in range(3):
        client, server = unix_socketpair()
        with client, temp_files(1) as files:
            resp = ResponseWriter(server, 64, 64)
            resp.write(files[0].fileno(), str(i).encode('ascii'))
            resp.flush()
            server.close()
            received = []
            c.receive_all_from(client, lambda fd, meta: received.append(meta))
            assert received == [str(i).encode('ascii')]


def send_files_from_other_process(address, count):
    with temp_files(count) as files:
        ids = []
        for f in files:
            send(address, f.fileno(), os.path.basename(f.name).encode('utf-8'))
            ids.append((os.path.basename(f.name), file_id(f.fileno())))
        return ids


@pytest.mark.timeout(10)
def test_descriptors_cross_process_boundary():
    with isolated_filesystem() as path:
        address = str(path / 'handoff.sock')
        with listen(address) as ln:
            sent = run_in_process(
                send_files_from_other_process, args=(address, 3))

            received = []
            for _ in sent:
                conn, _addr = ln.accept()
                with conn:
                    receive_all_from(
                        conn,
                        lambda fd, meta: received.append(
                            (meta.decode('utf-8'), file_id(fd))),
                    )

    # The sender has exited and removed its files, the descriptors still
    # refer to the same inodes.
    assert received == sent
