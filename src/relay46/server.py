from __future__ import annotations

import enum
import itertools
import logging
import socket
import threading
import time
from typing import Callable, List

from relay46.address import Endpoint, family_name, format_peer, is_mapped_ipv4
from relay46.cancel import CancelToken
from relay46.config import RelayConfig
from relay46.errors import AcceptTransientError
from relay46.lifecycle import Connection, ConnectionLifecycle
from relay46.listener import ListenEndpoint, bind_listener

log = logging.getLogger(__name__)

ListenerFactory = Callable[[Endpoint, int], ListenEndpoint]


class ServerState(enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    ACCEPTING = "accepting"
    DISPATCHING = "dispatching"
    DRAINING = "draining"
    STOPPED = "stopped"


class RelayServer:
    """Owns the listening socket and the accept loop.

    Each accepted connection is handed to :class:`ConnectionLifecycle` on its
    own thread. Those threads are not daemons: once the loop drains, in-flight
    relays keep running until they end on their own or ``stop`` hangs them up.
    """

    def __init__(
        self,
        config: RelayConfig,
        listener_factory: ListenerFactory = bind_listener,
        lifecycle: ConnectionLifecycle | None = None,
        token: CancelToken | None = None,
    ) -> None:
        self.config = config
        self.listener_factory = listener_factory
        self.token = token or CancelToken()
        self.lifecycle = lifecycle or ConnectionLifecycle(config, self.token)
        self.state = ServerState.IDLE
        self.listener: ListenEndpoint | None = None
        self.dispatched = 0
        self.workers: List[threading.Thread] = []
        self._ids = itertools.count(1)

    def start(self) -> ListenEndpoint:
        """Bind the listener; ``BindFailed`` propagates to the caller."""
        self.listener = self.listener_factory(self.config.listen, self.config.listen_family)
        self.state = ServerState.LISTENING
        log.info(
            "listening on %s (%s), relaying to %s over %s",
            format_peer(self.listener.address),
            family_name(self.listener.family),
            self.config.target,
            family_name(self.config.dial_family),
        )
        return self.listener

    def serve_forever(self) -> None:
        if self.listener is None and not self.token.cancelled:
            self.start()

        while not self.token.cancelled:
            self._set_state(ServerState.ACCEPTING)
            try:
                client, peer = self._accept()
            except AcceptTransientError as exc:
                if self.token.cancelled:
                    break
                log.warning("%s; retrying in %.1fs", exc, self.config.accept_backoff)
                time.sleep(self.config.accept_backoff)
                continue

            self._set_state(ServerState.DISPATCHING)
            if self._is_self_connect(peer):
                log.warning("rejecting %s: looks like a relay connected to itself", format_peer(peer))
                client.close()
                continue

            self._dispatch(Connection(next(self._ids), client, peer))

            if self.config.max_connections and self.dispatched >= self.config.max_connections:
                log.info("reached %d connections, no longer accepting", self.config.max_connections)
                break

            self.token.wait(self.config.delay)

        self._drain()

    def stop(self) -> None:
        """Stop accepting and hang up every active connection."""
        self.token.cancel()
        self._close_listener()
        self.state = ServerState.STOPPED

    def join(self, timeout: float | None = None) -> None:
        for worker in list(self.workers):
            worker.join(timeout)

    def _accept(self) -> tuple[socket.socket, tuple]:
        listener = self.listener
        if listener is None:
            raise AcceptTransientError(OSError("listener is closed"))
        try:
            return listener.accept()
        except OSError as exc:
            raise AcceptTransientError(exc) from exc

    def _is_self_connect(self, peer: tuple) -> bool:
        return not self.config.reverse and is_mapped_ipv4(str(peer[0]))

    def _dispatch(self, connection: Connection) -> None:
        log.info(
            "connection %s accepted at %s",
            connection,
            connection.started.isoformat(timespec="seconds"),
        )
        worker = threading.Thread(
            target=self.lifecycle.handle,
            args=(connection,),
            name=f"relay-conn-{connection.id}",
        )
        worker.start()
        self.workers = [w for w in self.workers if w.is_alive()]
        self.workers.append(worker)
        self.dispatched += 1

    def _drain(self) -> None:
        if self.state is not ServerState.STOPPED:
            self.state = ServerState.DRAINING
        self._close_listener()
        self.state = ServerState.STOPPED

    def _close_listener(self) -> None:
        listener, self.listener = self.listener, None
        if listener is not None:
            listener.close()

    def _set_state(self, state: ServerState) -> None:
        if self.state is not ServerState.STOPPED:
            self.state = state
