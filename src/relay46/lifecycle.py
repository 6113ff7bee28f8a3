from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from relay46.address import Endpoint, format_peer
from relay46.cancel import CancelToken
from relay46.config import RelayConfig
from relay46.dialer import dial
from relay46.duplex import DuplexRelay, close_quietly, hangup
from relay46.errors import DialFailed

log = logging.getLogger(__name__)

Dialer = Callable[[Endpoint, int], socket.socket]


@dataclass
class Connection:
    id: int
    client: socket.socket
    peer: tuple
    server: socket.socket | None = None
    started: datetime = field(default_factory=datetime.now)

    def hangup(self) -> None:
        hangup(self.client)
        if self.server is not None:
            hangup(self.server)

    def close(self) -> None:
        close_quietly(self.client)
        close_quietly(self.server)

    def __str__(self) -> str:
        return f"#{self.id} {format_peer(self.peer)}"


class PendingDial:
    """Outbound dial on a daemon thread that shutdown can walk away from.

    A blocking ``connect()`` cannot be interrupted from another thread, so on
    cancellation the handler stops waiting and the late socket, if one ever
    arrives, is closed by the dialing thread.
    """

    def __init__(self, dialer: Dialer, target: Endpoint, family: int, name: str) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._abandoned = False
        self._sock: socket.socket | None = None
        self._error: Exception | None = None
        self._thread = threading.Thread(target=self._run, args=(dialer, target, family), name=name, daemon=True)

    def start(self) -> "PendingDial":
        self._thread.start()
        return self

    def wake(self) -> None:
        self._done.set()

    def wait(self, token: CancelToken) -> socket.socket | None:
        """Return the connected socket, or None if ``token`` fired first."""
        handle = token.register(self.wake)
        try:
            self._done.wait()
        finally:
            token.unregister(handle)

        with self._lock:
            if token.cancelled:
                self._abandoned = True
                close_quietly(self._sock)
                return None
            if self._error is not None:
                raise self._error
            return self._sock

    def _run(self, dialer: Dialer, target: Endpoint, family: int) -> None:
        try:
            sock = dialer(target, family)
        except Exception as exc:
            with self._lock:
                self._error = exc
        else:
            with self._lock:
                if self._abandoned:
                    close_quietly(sock)
                else:
                    self._sock = sock
        finally:
            self._done.set()


class ConnectionLifecycle:
    """Dial, relay and tear down one accepted connection.

    Runs on the connection's own thread; nothing raised here reaches the
    accept loop.
    """

    def __init__(
        self,
        config: RelayConfig,
        token: CancelToken,
        dialer: Dialer = dial,
        relay: DuplexRelay | None = None,
    ) -> None:
        self.config = config
        self.token = token
        self.dialer = dialer
        self.relay = relay or DuplexRelay()

    def handle(self, connection: Connection) -> bool:
        handle = self.token.register(connection.hangup)
        try:
            return self._relay(connection)
        except Exception:
            log.exception("connection %s: unexpected error", connection)
            return False
        finally:
            self.token.unregister(handle)
            connection.close()

    def _relay(self, connection: Connection) -> bool:
        if self.token.cancelled:
            return False

        pending = PendingDial(
            self.dialer, self.config.target, self.config.dial_family, name=f"relay-dial-{connection.id}"
        ).start()
        try:
            server = pending.wait(self.token)
        except DialFailed as exc:
            log.warning("connection %s: %s", connection, exc)
            return False

        if server is None:
            log.info("connection %s: abandoned dial to %s on shutdown", connection, self.config.target)
            return False
        connection.server = server
        if self.token.cancelled:
            # Shutdown won the race after the dial; the finally block closes both.
            return False

        log.debug("connection %s: connected to %s", connection, self.config.target)
        started = time.monotonic()
        results = self.relay.run(connection.client, connection.server, label=f"relay-{connection.id}")

        elapsed = time.monotonic() - started
        for result in results:
            log.info(
                "connection %s: %s closed after %d bytes (%s)",
                connection,
                result.direction,
                result.transferred,
                result.cause,
            )
        log.info("connection %s: finished in %.1fs", connection, elapsed)
        return True
