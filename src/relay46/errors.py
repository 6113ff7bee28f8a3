from __future__ import annotations


class RelayError(Exception):
    """Base class for relay failures."""


class InvalidAddressFormat(RelayError, ValueError):
    def __init__(self, text: str, reason: str = "expected host:port") -> None:
        super().__init__(f"invalid address {text!r}: {reason}")
        self.text = text


class BindFailed(RelayError):
    def __init__(self, address: object, cause: BaseException) -> None:
        super().__init__(f"cannot listen on {address}: {cause}")
        self.address = address
        self.cause = cause


class DialFailed(RelayError):
    def __init__(self, target: object, cause: BaseException) -> None:
        super().__init__(f"cannot connect to {target}: {cause}")
        self.target = target
        self.cause = cause


class AcceptTransientError(RelayError):
    def __init__(self, cause: BaseException) -> None:
        super().__init__(f"accept failed: {cause}")
        self.cause = cause


class StreamIOError(RelayError):
    def __init__(self, direction: object, cause: BaseException) -> None:
        super().__init__(f"{direction}: {cause}")
        self.direction = direction
        self.cause = cause
