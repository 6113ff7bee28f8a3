import errno
import logging
import socket

import pytest

from relay46.address import Endpoint
from relay46.errors import BindFailed
from relay46.listener import BACKLOG, ListenEndpoint, bind_listener, is_family_error, open_listener


class ScriptedOpener:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def __call__(self, address, family):
        self.calls.append(family)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


ADDRESS = Endpoint(None, 4000)


def test_family_error_retries_once_with_unspecified_family():
    endpoint = object()
    opener = ScriptedOpener(OSError(errno.EAFNOSUPPORT, "Address family not supported"), endpoint)

    assert bind_listener(ADDRESS, socket.AF_INET6, opener=opener) is endpoint
    assert opener.calls == [socket.AF_INET6, socket.AF_UNSPEC]


def test_gai_family_error_retries():
    endpoint = object()
    opener = ScriptedOpener(socket.gaierror(socket.EAI_FAMILY, "ai_family not supported"), endpoint)

    assert bind_listener(ADDRESS, socket.AF_INET, opener=opener) is endpoint
    assert opener.calls == [socket.AF_INET, socket.AF_UNSPEC]


@pytest.mark.parametrize("code", [errno.EADDRINUSE, errno.EACCES])
def test_other_bind_errors_are_not_retried(code):
    opener = ScriptedOpener(OSError(code, "nope"))

    with pytest.raises(BindFailed) as info:
        bind_listener(ADDRESS, socket.AF_INET6, opener=opener)
    assert opener.calls == [socket.AF_INET6]
    assert info.value.cause.errno == code


def test_failed_fallback_is_fatal():
    opener = ScriptedOpener(
        OSError(errno.EAFNOSUPPORT, "Address family not supported"),
        OSError(errno.EADDRINUSE, "Address already in use"),
    )

    with pytest.raises(BindFailed):
        bind_listener(ADDRESS, socket.AF_INET6, opener=opener)
    assert len(opener.calls) == 2


def test_is_family_error():
    assert is_family_error(OSError(errno.EAFNOSUPPORT, "x"))
    assert not is_family_error(OSError(errno.EADDRINUSE, "x"))


def test_open_listener_configures_socket():
    listener = open_listener(Endpoint("127.0.0.1", 0), socket.AF_INET)
    try:
        assert isinstance(listener, ListenEndpoint)
        assert listener.family == socket.AF_INET
        assert listener.sock.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR)
        assert listener.sock.type == socket.SOCK_STREAM
        assert listener.address[1] != 0
        assert BACKLOG == 10
    finally:
        listener.close()
    listener.close()


def test_ipv4_literal_falls_back_from_ipv6():
    listener = bind_listener(Endpoint("127.0.0.1", 0), socket.AF_INET6)
    try:
        assert listener.family == socket.AF_INET
        with socket.create_connection(("127.0.0.1", listener.address[1]), timeout=5):
            conn, _peer = listener.accept()
            conn.close()
    finally:
        listener.close()


def test_bind_fallback_is_logged_as_warning(caplog):
    caplog.set_level(logging.INFO, logger="relay46")
    opener = ScriptedOpener(OSError(errno.EAFNOSUPPORT, "Address family not supported"), object())

    bind_listener(ADDRESS, socket.AF_INET6, opener=opener)
    [record] = [r for r in caplog.records if "retrying with unspecified family" in r.getMessage()]
    assert record.levelno == logging.WARNING
