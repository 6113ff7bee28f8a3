from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from relay46.address import Endpoint
from relay46.errors import InvalidAddressFormat

ENV_VERBOSE = "RELAY46_VERBOSE"
ENV_DELAY = "RELAY46_DELAY"
ENV_MAX_CONNECTIONS = "RELAY46_MAX_CONNECTIONS"

DEFAULT_VERBOSITY = 1
DEFAULT_DELAY = 0.1
DEFAULT_ACCEPT_BACKOFF = 1.0


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw, 10)
    except ValueError:
        return default


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class EnvSettings:
    verbosity: int = DEFAULT_VERBOSITY
    delay: float = DEFAULT_DELAY
    max_connections: int = 0

    @classmethod
    def load(cls, environ: Mapping[str, str] | None = None) -> "EnvSettings":
        if environ is None:
            environ = os.environ
        return cls(
            verbosity=_env_int(environ, ENV_VERBOSE, DEFAULT_VERBOSITY),
            delay=max(0.0, _env_float(environ, ENV_DELAY, DEFAULT_DELAY)),
            max_connections=max(0, _env_int(environ, ENV_MAX_CONNECTIONS, 0)),
        )


@dataclass(frozen=True)
class RelayConfig:
    """Resolved startup configuration; never mutated after parsing."""

    listen: Endpoint
    target: Endpoint
    reverse: bool = False
    max_connections: int = 0
    delay: float = DEFAULT_DELAY
    verbosity: int = DEFAULT_VERBOSITY
    accept_backoff: float = DEFAULT_ACCEPT_BACKOFF
    pidfile: Path | None = None
    log_file: Path | None = None

    def __post_init__(self) -> None:
        if not self.target.host or not self.target.port:
            raise InvalidAddressFormat(str(self.target), "target needs host and port")

    @property
    def listen_family(self) -> int:
        return socket.AF_INET if self.reverse else socket.AF_INET6

    @property
    def dial_family(self) -> int:
        return socket.AF_INET6 if self.reverse else socket.AF_INET
