from __future__ import annotations

import logging
import socket
import threading

import pytest

from relay46.address import Endpoint


class ShortWriteSocket:
    """Socket wrapper whose send() accepts at most ``limit`` bytes per call."""

    def __init__(self, sock: socket.socket, limit: int) -> None:
        self._sock = sock
        self.limit = limit
        self.sends = 0

    def send(self, data) -> int:
        self.sends += 1
        return self._sock.send(data[: self.limit])

    def __getattr__(self, name):
        return getattr(self._sock, name)


def recv_exactly(sock: socket.socket, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining:
        data = sock.recv(remaining)
        if not data:
            break
        chunks.append(data)
        remaining -= len(data)
    return b"".join(chunks)


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def echo_server():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind(("127.0.0.1", 0))
    server.listen(16)

    def handle_client(conn: socket.socket) -> None:
        with conn:
            while True:
                try:
                    data = conn.recv(4096)
                except OSError:
                    return
                if not data:
                    return
                conn.sendall(data)

    def serve() -> None:
        while True:
            try:
                conn, _addr = server.accept()
            except OSError:
                return
            threading.Thread(target=handle_client, args=(conn,), daemon=True).start()

    threading.Thread(target=serve, daemon=True).start()
    yield Endpoint("127.0.0.1", server.getsockname()[1])
    try:
        server.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    server.close()


@pytest.fixture
def sockets():
    """Collects sockets created by a test and closes them afterwards."""
    created: list[socket.socket] = []

    def pair() -> tuple[socket.socket, socket.socket]:
        a, b = socket.socketpair()
        created.extend((a, b))
        return a, b

    yield pair
    for sock in created:
        sock.close()


@pytest.fixture(autouse=True)
def reset_relay_logger():
    yield
    logger = logging.getLogger("relay46")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
