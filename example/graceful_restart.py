"""Hand a listening TCP socket from one process to the next.

Start the first instance:

    python graceful_restart.py --port 8080 --handoff /tmp/echo.sock

then start a second instance with the same arguments. The second instance
takes the listener from the first, which exits afterwards. Clients
connecting during the switch are never refused, connections already open
in the first instance are dropped when it exits.
"""
import argparse
import logging
import os
import socket
import threading
import time

import fdhandoff


logger = logging.getLogger('echo')


def take_over(handoff_path):
    """Return the listener of a running instance, or None if there is none."""
    listeners = []

    def on_fd(fd, meta):
        meta = fdhandoff.Meta.from_bytes(meta)
        logger.info('Received listener from %s', meta)
        listeners.append(fdhandoff.socket_from_fd(fd))

    try:
        fdhandoff.receive(handoff_path, on_fd)
    except (FileNotFoundError, ConnectionRefusedError):
        return None
    return listeners[0] if listeners else None


def wait_for_removal(path, timeout=1.0):
    # The previous instance removes its handoff socket when it stops serving.
    deadline = time.monotonic() + timeout
    while os.path.exists(path) and time.monotonic() < deadline:
        time.sleep(0.01)


def echo(conn):
    with conn:
        while True:
            data = conn.recv(4096)
            if not data:
                return
            conn.sendall(data)


def accept_forever(ln):
    while True:
        conn, _addr = ln.accept()
        threading.Thread(target=echo, args=(conn,), daemon=True).start()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument('--port', type=int, default=8080)
    parser.add_argument('--handoff', default='/tmp/echo.sock')
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG)

    ln = take_over(args.handoff)
    if ln is None:
        ln = socket.create_server(('localhost', args.port))
    else:
        wait_for_removal(args.handoff)
    logger.info('Listening on %s', ln.getsockname())

    threading.Thread(target=accept_forever, args=(ln,), daemon=True).start()

    server = None

    def handler(_conn, resp):
        fdhandoff.send_listener(resp, ln, fdhandoff.Meta(pid=os.getpid()))
        # Delivered before the server stops, the successor owns it now.
        resp.flush()
        server.shutdown()

    server = fdhandoff.Server(handler)
    server.listen_and_serve(args.handoff)
    logger.info('Listener handed off, exiting')


if __name__ == '__main__':
    main()
