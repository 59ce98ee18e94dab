"""
Skytable SDK Exceptions.

Custom exception hierarchy for the SDK.
"""

from typing import Any


class SkytableError(Exception):
    """Base exception for all Skytable SDK errors."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(message)


class TransportError(SkytableError):
    """Raised when reading from or writing to the server fails.

    The connection that raised it is broken and must be replaced.
    """

    pass


class ProtocolError(SkytableError):
    """Raised when the server sends a frame that cannot be decoded.

    Framing can no longer be trusted after this, so the connection is broken.
    """

    pass


class PipelineError(ProtocolError):
    """Raised when a pipelined response fails part way through.

    ``responses`` holds every response decoded before the failing frame.
    """

    def __init__(self, message: str, responses: list[Any] | None = None, code: int | None = None):
        self.responses = responses or []
        super().__init__(message, code)


class ConversionError(SkytableError):
    """Raised when a value cannot be converted to or from the wire model."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        position: int | None = None,
    ):
        self.field = field
        self.position = position
        if field is not None:
            message = f"field '{field}' (position {position}): {message}"
        elif position is not None:
            message = f"position {position}: {message}"
        super().__init__(message)


class EmptyQueryError(SkytableError):
    """Raised when an empty query or pipeline is executed."""

    pass


class HandshakeError(SkytableError):
    """Raised when the server rejects the handshake (auth or version)."""

    pass


class TimeoutError(SkytableError):
    """Raised when an operation or a pool acquire times out."""

    pass


class ServerError(SkytableError):
    """Raised when the server answers a query with an error code."""

    def __init__(self, code: int):
        super().__init__(f"server error code {code}", code)


class ConnectionStateError(SkytableError):
    """Raised when a connection is used in a state that does not allow it."""

    pass


class PoolClosedError(SkytableError):
    """Raised when acquiring from a closed pool."""

    pass
