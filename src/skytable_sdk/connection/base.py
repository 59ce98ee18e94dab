"""
Base Connection for the Skytable SDK.

Holds the state machine and the I/O free parts shared by the blocking and the
asyncio connections: request encoding, handshake bookkeeping and response
accumulation.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from enum import Enum
from typing import Iterable

from ..config import Config
from ..exceptions import ConnectionStateError, PipelineError, ProtocolError
from ..protocol.codec import Decoder
from ..protocol.handshake import ServerHandshake, client_hello
from ..query import Pipeline, Query
from ..response import Response

logger = logging.getLogger(__name__)

# Liveness probe used by ping()
PING_QUERY = Query("sysctl report status")


class ConnectionState(str, Enum):
    """Lifecycle of a connection."""

    CONNECTING = "connecting"
    READY = "ready"
    EXECUTING = "executing"
    CLOSED = "closed"
    BROKEN = "broken"


class ResponseReader:
    """
    Accumulates bytes from the server until the expected responses are decoded.

    Feed it whatever the transport returns and call ``poll()``; it returns
    True once every response is available in ``responses``. Decoding resumes
    where the previous poll stopped, so a large frame arriving in many reads
    is parsed once.
    """

    def __init__(self, pipeline_size: int | None = None):
        self._buffer = bytearray()
        self._decoder = Decoder(self._buffer)
        self._pipeline_size = pipeline_size
        self._responses: list[Response] = []
        self._parser = self._parse()
        self._done = False

    @property
    def responses(self) -> list[Response]:
        return self._responses

    @property
    def done(self) -> bool:
        return self._done

    @property
    def trailing(self) -> int:
        """Bytes received past the last decoded response."""
        return len(self._buffer) - self._decoder.position

    def feed(self, data: bytes) -> None:
        self._buffer.extend(data)

    def _parse(self) -> Generator[None, None, None]:
        decoder = self._decoder
        if self._pipeline_size is None:
            self._responses.append((yield from decoder.parse_response()))
            return
        count = yield from decoder.parse_pipeline_header()
        if count != self._pipeline_size:
            raise ProtocolError(f"expected {self._pipeline_size} pipelined responses, server announced {count}")
        for index in range(count):
            try:
                response = yield from decoder.parse_response()
            except ProtocolError as e:
                raise PipelineError(f"response {index}: {e.message}", responses=list(self._responses)) from e
            self._responses.append(response)

    def poll(self) -> bool:
        """
        Decode as much as the buffer allows.

        Raises:
            ProtocolError: If the server sent a malformed frame
            PipelineError: If a pipelined frame is malformed; carries the
                responses decoded before it
        """
        if not self._done:
            try:
                next(self._parser)
            except StopIteration:
                self._done = True
            else:
                return False
        if self.trailing:
            raise ProtocolError(f"{self.trailing} unexpected bytes after the response")
        return True


class BaseConnection:
    """
    State shared by ``Connection`` and ``AsyncConnection``.

    A connection serves one call at a time. Any transport failure, malformed
    frame, timeout or cancellation during a call leaves the byte stream in an
    unknown position, so the connection becomes BROKEN and must be replaced.
    """

    def __init__(self, config: Config):
        self.config = config
        self._state = ConnectionState.CONNECTING
        self._authenticated = False
        self._space: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ConnectionState.READY

    @property
    def is_broken(self) -> bool:
        return self._state == ConnectionState.BROKEN

    @property
    def is_closed(self) -> bool:
        return self._state == ConnectionState.CLOSED

    @property
    def is_authenticated(self) -> bool:
        """Check if the handshake completed."""
        return self._authenticated

    @property
    def space(self) -> str | None:
        """The space selected with ``use()``, if any."""
        return self._space

    # State transitions

    def _begin(self) -> None:
        if self._state != ConnectionState.READY:
            raise ConnectionStateError(f"Connection is {self._state.value}, not ready")
        self._state = ConnectionState.EXECUTING

    def _finish(self) -> None:
        if self._state == ConnectionState.EXECUTING:
            self._state = ConnectionState.READY

    def _mark_broken(self, reason: BaseException) -> None:
        if self._state in (ConnectionState.CLOSED, ConnectionState.BROKEN):
            return
        logger.warning(f"Connection to {self.config.host}:{self.config.port} is broken: {reason!r}")
        self._state = ConnectionState.BROKEN

    def _mark_closed(self) -> bool:
        """Move to CLOSED; returns False if already closed."""
        if self._state == ConnectionState.CLOSED:
            return False
        self._state = ConnectionState.CLOSED
        logger.debug(f"Closed connection to {self.config.host}:{self.config.port}")
        return True

    # Handshake

    def _hello(self) -> bytes:
        return client_hello(self.config.username, self.config.password)

    def _complete_handshake(self, data: bytes) -> None:
        ServerHandshake.parse(data).raise_for_error()
        self._authenticated = True
        self._state = ConnectionState.READY
        logger.debug(f"Connected to {self.config.host}:{self.config.port} as {self.config.username}")

    # Request encoding, done before a call begins

    @staticmethod
    def _encode_query(q: Query) -> bytes:
        return q.encode()

    @staticmethod
    def _encode_pipeline(queries: Pipeline | Iterable[Query]) -> tuple[bytes, int]:
        pipeline = queries if isinstance(queries, Pipeline) else Pipeline(queries)
        return pipeline.encode(), len(pipeline)

    def _switched(self, space: str, response: Response) -> None:
        response.raise_for_error()
        self._space = space

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.config.host}:{self.config.port} {self._state.value}>"
