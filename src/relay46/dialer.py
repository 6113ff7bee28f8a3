from __future__ import annotations

import logging
import socket
from typing import Callable

from relay46.address import Endpoint, family_name
from relay46.errors import DialFailed

log = logging.getLogger(__name__)

Connector = Callable[[Endpoint, int], socket.socket]


def open_connection(target: Endpoint, family: int) -> socket.socket:
    """Connect to the first reachable ``getaddrinfo`` result of ``family``."""
    infos = socket.getaddrinfo(target.host, target.port, family, socket.SOCK_STREAM, socket.IPPROTO_TCP)

    last_error: OSError | None = None
    for af, socktype, proto, _canon, sockaddr in infos:
        sock = socket.socket(af, socktype, proto)
        try:
            sock.connect(sockaddr)
        except OSError as exc:
            sock.close()
            last_error = exc
            continue
        return sock

    if last_error is None:
        last_error = OSError(f"no addresses for {target}")
    raise last_error


def dial(target: Endpoint, family: int, connector: Connector = open_connection) -> socket.socket:
    try:
        return connector(target, family)
    except OSError as exc:
        log.warning(
            "dial %s over %s failed (%s), retrying with %s family",
            target,
            family_name(family),
            exc,
            family_name(socket.AF_UNSPEC),
        )

    try:
        return connector(target, socket.AF_UNSPEC)
    except OSError as exc:
        raise DialFailed(target, exc) from exc
