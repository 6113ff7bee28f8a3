from __future__ import annotations

import errno
import logging
import socket
from dataclasses import dataclass
from typing import Callable

from relay46.address import Endpoint, family_name
from relay46.errors import BindFailed

log = logging.getLogger(__name__)

BACKLOG = 10

_FAMILY_GAI_ERRORS = {
    code
    for code in (
        getattr(socket, "EAI_FAMILY", None),
        getattr(socket, "EAI_ADDRFAMILY", None),
        getattr(socket, "EAI_NONAME", None),
    )
    if code is not None
}
_FAMILY_ERRNOS = {errno.EAFNOSUPPORT, errno.EPFNOSUPPORT}


@dataclass
class ListenEndpoint:
    sock: socket.socket
    family: int

    @property
    def address(self) -> tuple:
        return self.sock.getsockname()

    def accept(self) -> tuple[socket.socket, tuple]:
        return self.sock.accept()

    def close(self) -> None:
        # shutdown() wakes a thread blocked in accept(); close() alone does not.
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()


Opener = Callable[[Endpoint, int], ListenEndpoint]


def is_family_error(exc: OSError) -> bool:
    if isinstance(exc, socket.gaierror):
        return exc.errno in _FAMILY_GAI_ERRORS
    return exc.errno in _FAMILY_ERRNOS


def open_listener(address: Endpoint, family: int) -> ListenEndpoint:
    infos = socket.getaddrinfo(
        address.host,
        address.port,
        family,
        socket.SOCK_STREAM,
        socket.IPPROTO_TCP,
        socket.AI_PASSIVE,
    )
    af, socktype, proto, _canon, sockaddr = infos[0]

    sock = socket.socket(af, socktype, proto)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind(sockaddr)
        sock.listen(BACKLOG)
    except OSError:
        sock.close()
        raise
    return ListenEndpoint(sock, af)


def bind_listener(address: Endpoint, family: int, opener: Opener = open_listener) -> ListenEndpoint:
    """Bind ``address`` preferring ``family``.

    Only an address-family error earns the single retry with ``AF_UNSPEC``;
    anything else (port in use, permission denied) raises :class:`BindFailed`.
    """
    try:
        return opener(address, family)
    except OSError as exc:
        if not is_family_error(exc):
            raise BindFailed(address, exc) from exc
        log.warning(
            "listen %s: %s unavailable (%s), retrying with %s family",
            address,
            family_name(family),
            exc,
            family_name(socket.AF_UNSPEC),
        )

    try:
        return opener(address, socket.AF_UNSPEC)
    except OSError as exc:
        raise BindFailed(address, exc) from exc
