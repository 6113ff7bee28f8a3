"""Duplex byte copy between two connected sockets.

Each direction runs on its own thread. Whichever direction stops first shuts
down both sockets, which is what unblocks the other direction: its selector
reports the socket readable, the read returns EOF (or the write fails), and it
stops too. Sockets are only closed once both threads have joined.
"""
from __future__ import annotations

import enum
import logging
import selectors
import socket
import threading
from dataclasses import dataclass
from typing import Dict, List

from relay46.errors import StreamIOError

log = logging.getLogger(__name__)

CHUNK_SIZE = 8192


class TransferDirection(enum.Enum):
    CLIENT_TO_SERVER = "client->server"
    SERVER_TO_CLIENT = "server->client"

    def __str__(self) -> str:
        return self.value


@dataclass
class TransferResult:
    direction: TransferDirection
    transferred: int = 0
    error: StreamIOError | None = None

    @property
    def cause(self) -> str:
        if self.error is None:
            return "eof"
        return str(self.error.cause)


def hangup(sock: socket.socket) -> None:
    """Shut down both halves of ``sock``; already closed sockets are ignored."""
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except (OSError, ValueError):
        pass


def close_quietly(sock: socket.socket | None) -> None:
    if sock is None:
        return
    hangup(sock)
    sock.close()


class DuplexRelay:
    def __init__(self, chunk_size: int = CHUNK_SIZE) -> None:
        self.chunk_size = chunk_size

    def run(self, side_a: socket.socket, side_b: socket.socket, label: str = "relay") -> List[TransferResult]:
        """Copy ``side_a`` <-> ``side_b`` until either side ends, then close both."""
        results: Dict[TransferDirection, TransferResult] = {}
        routes = [
            (TransferDirection.CLIENT_TO_SERVER, side_a, side_b),
            (TransferDirection.SERVER_TO_CLIENT, side_b, side_a),
        ]

        def worker(direction: TransferDirection, src: socket.socket, dst: socket.socket) -> None:
            results[direction] = self.copy(src, dst, direction)

        threads = [
            threading.Thread(target=worker, args=route, name=f"{label}-{route[0].name.lower()}")
            for route in routes
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        close_quietly(side_a)
        close_quietly(side_b)
        return [results[direction] for direction, _src, _dst in routes]

    def copy(self, src: socket.socket, dst: socket.socket, direction: TransferDirection) -> TransferResult:
        result = TransferResult(direction)
        sel = selectors.DefaultSelector()
        try:
            sel.register(src, selectors.EVENT_READ)
            while True:
                chunk = self._read(sel, src)
                if not chunk:
                    break
                self._write_all(dst, chunk)
                result.transferred += len(chunk)
        except (OSError, ValueError) as exc:
            # ValueError: the partner already closed the socket (fileno -1).
            result.error = StreamIOError(direction, exc)
        finally:
            sel.close()
            hangup(src)
            hangup(dst)

        log.debug("%s stopped after %d bytes (%s)", direction, result.transferred, result.cause)
        return result

    def _read(self, sel: selectors.BaseSelector, src: socket.socket) -> bytes:
        while True:
            try:
                sel.select()
                return src.recv(self.chunk_size)
            except InterruptedError:
                continue

    @staticmethod
    def _write_all(dst: socket.socket, chunk: bytes) -> None:
        view = memoryview(chunk)
        while view:
            try:
                sent = dst.send(view)
            except InterruptedError:
                continue
            view = view[sent:]
