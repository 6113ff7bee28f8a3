from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from contextlib import nullcontext
from pathlib import Path

from relay46.address import parse_address, parse_listen
from relay46.config import EnvSettings, RelayConfig
from relay46.errors import BindFailed, InvalidAddressFormat
from relay46.logs import configure_logging
from relay46.pidfile import PidFile
from relay46.server import RelayServer

log = logging.getLogger(__name__)

PROG = "relay46"
# Invoked under this name the relay defaults to the reverse direction.
REVERSE_PROG = "relay64"


def build_parser(prog: str = PROG) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=prog,
        description=(
            "Relay TCP connections between address families. "
            "Forward mode accepts IPv6 clients and connects to the target over IPv4; "
            "reverse mode (-r) accepts IPv4 and connects over IPv6."
        ),
    )
    parser.add_argument("listen", help="Port, or host:port, to listen on")
    parser.add_argument("target", help="host:port to relay connections to")
    parser.add_argument("-r", "--reverse", action="store_true", help="Listen on IPv4, connect over IPv6")
    parser.add_argument(
        "-c",
        "--max-connections",
        type=int,
        metavar="N",
        help="Stop accepting after N connections (default: $RELAY46_MAX_CONNECTIONS or unbounded)",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More diagnostics (repeatable)")
    parser.add_argument("-p", "--pidfile", type=Path, help="Write the process id to this file")
    parser.add_argument("-l", "--log-file", type=Path, help="Append diagnostics to this file instead of stderr")
    return parser


def config_from_args(args: argparse.Namespace, prog: str, env: EnvSettings) -> RelayConfig:
    max_connections = env.max_connections if args.max_connections is None else max(0, args.max_connections)
    return RelayConfig(
        listen=parse_listen(args.listen),
        target=parse_address(args.target),
        reverse=args.reverse or prog == REVERSE_PROG,
        max_connections=max_connections,
        delay=env.delay,
        verbosity=env.verbosity + args.verbose,
        pidfile=args.pidfile,
        log_file=args.log_file,
    )


def _install_signal_handlers(server: RelayServer) -> None:
    def _on_signal(signum: int, _frame: object) -> None:
        log.info("received %s, shutting down", signal.Signals(signum).name)
        # A second signal gets the default behaviour: SIGINT raises
        # KeyboardInterrupt, SIGTERM kills the process.
        signal.signal(signal.SIGINT, signal.default_int_handler)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        # Event.set() must not run on a thread that may be inside Event.wait().
        threading.Thread(target=server.stop, name="relay-shutdown").start()

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, _on_signal)


def main(argv: list[str] | None = None, prog: str | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    if prog is None:
        prog = os.path.basename(sys.argv[0]) or PROG

    parser = build_parser(prog)
    if not argv:
        parser.print_usage()
        return 0

    args = parser.parse_args(argv)

    try:
        config = config_from_args(args, prog, EnvSettings.load())
    except InvalidAddressFormat as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2

    configure_logging(config.verbosity, config.log_file)

    server = RelayServer(config)
    try:
        server.start()
    except BindFailed as exc:
        log.error("%s", exc)
        return 1

    pidfile = PidFile(config.pidfile) if config.pidfile else nullcontext()
    with pidfile:
        _install_signal_handlers(server)
        server.serve_forever()

    log.info("accept loop finished after %d connections", server.dispatched)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
