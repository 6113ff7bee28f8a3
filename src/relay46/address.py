from __future__ import annotations

import re
import socket
from dataclasses import dataclass

from relay46.errors import InvalidAddressFormat

# Greedy host group: the last ":digits" run is the port, so bare IPv6
# literals (with or without a %scope) need no brackets.
_HOST_PORT = re.compile(r"^(.*):(\d+)$", re.DOTALL)

_FAMILY_NAMES = {
    socket.AF_INET: "IPv4",
    socket.AF_INET6: "IPv6",
    socket.AF_UNSPEC: "unspecified",
}

MAPPED_IPV4_PREFIX = "::ffff:"


@dataclass(frozen=True)
class Endpoint:
    host: str | None
    port: int

    def __str__(self) -> str:
        return format_peer((self.host or "*", self.port))


def parse_address(text: str) -> Endpoint:
    """Split ``host:port`` into an :class:`Endpoint`.

    ``fe80::1%eth0:5900`` gives host ``fe80::1%eth0`` and port 5900; a host
    written as ``[::1]`` has its brackets removed.
    """
    match = _HOST_PORT.match(text)
    if match is None:
        raise InvalidAddressFormat(text, "missing trailing :port")

    host, port = match.group(1), match.group(2)
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not host:
        raise InvalidAddressFormat(text, "empty host")
    return Endpoint(host, int(port))


def parse_listen(text: str) -> Endpoint:
    """A bare port listens on the wildcard address of the chosen family."""
    if text.isdigit():
        return Endpoint(None, int(text))
    return parse_address(text)


def family_name(family: int) -> str:
    return _FAMILY_NAMES.get(family, str(family))


def is_mapped_ipv4(host: str) -> bool:
    return host.lower().startswith(MAPPED_IPV4_PREFIX)


def format_peer(addr: tuple) -> str:
    host, port = addr[0], addr[1]
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"
