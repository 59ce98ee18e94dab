"""
Blocking connection for the Skytable SDK.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Iterable, Self

from ..config import Config
from ..ddl import use_space
from ..exceptions import ConnectionStateError, HandshakeError
from ..protocol.handshake import SERVER_RESPONSE_SIZE
from ..query import Pipeline, Query
from ..query import query as build_query
from ..response import Response
from ..transport import SyncTransport, TcpTransport
from .base import PING_QUERY, BaseConnection, ResponseReader

logger = logging.getLogger(__name__)


class Connection(BaseConnection):
    """
    Blocking connection to a Skytable server.

    Calls block the current thread until the response is read. A connection
    serves one call at a time; a second thread calling concurrently gets a
    ``ConnectionStateError``.

    Usage:
        with Connection.connect(Config.default("root", "password")) as db:
            db.query("create space if not exists apps")
    """

    def __init__(self, config: Config, transport: SyncTransport):
        super().__init__(config)
        self._transport = transport
        self._lock = threading.Lock()

    @classmethod
    def connect(cls, config: Config, transport: SyncTransport | None = None) -> Self:
        """
        Open a connection and perform the handshake.

        Args:
            config: Connection settings
            transport: Already open transport to use instead of dialing ``config``

        Raises:
            HandshakeError: If the server rejects the credentials or version
            TransportError: If the server cannot be reached
            TimeoutError: If connecting takes longer than ``config.connect_timeout``
        """
        if transport is None:
            transport = TcpTransport.open(
                config.host,
                config.port,
                timeout=config.connect_timeout,
                ssl_context=config.ssl_context(),
            )
        conn = cls(config, transport)
        try:
            conn._handshake()
        except BaseException:
            conn._mark_closed()
            transport.close()
            raise
        return conn

    def _handshake(self) -> None:
        self._transport.settimeout(self.config.connect_timeout)
        self._transport.write(self._hello())
        data = b""
        while len(data) < SERVER_RESPONSE_SIZE:
            data += self._transport.read(SERVER_RESPONSE_SIZE - len(data))
        if len(data) != SERVER_RESPONSE_SIZE:
            raise HandshakeError(f"invalid server handshake {data!r}")
        self._complete_handshake(data)
        self._transport.settimeout(self.config.timeout)

    @contextmanager
    def _call(self, timeout: float | None) -> Iterator[None]:
        if not self._lock.acquire(blocking=False):
            raise ConnectionStateError("Connection is in use by another call")
        try:
            self._begin()
            if timeout is not None:
                self._transport.settimeout(timeout)
            try:
                yield
            except BaseException as e:
                self._mark_broken(e)
                raise
            if timeout is not None:
                self._transport.settimeout(self.config.timeout)
            self._finish()
        finally:
            self._lock.release()

    def _read(self, reader: ResponseReader) -> list[Response]:
        while not reader.poll():
            reader.feed(self._transport.read())
        return reader.responses

    # Public API

    def execute(self, q: Query, timeout: float | None = None) -> Response:
        """
        Execute one query and return its response.

        Server side errors come back as error responses; see
        ``Response.raise_for_error()``.

        Args:
            q: The query
            timeout: Seconds allowed for this call, overriding ``config.timeout``

        Raises:
            EmptyQueryError: If the query has no statement
            ConnectionStateError: If the connection is not ready or busy
            TransportError: On I/O failure; the connection becomes broken
            ProtocolError: On a malformed response; the connection becomes broken
            TimeoutError: If the call times out; the connection becomes broken
        """
        payload = self._encode_query(q)
        with self._call(timeout):
            self._transport.write(payload)
            return self._read(ResponseReader())[0]

    def execute_pipeline(self, queries: Pipeline | Iterable[Query], timeout: float | None = None) -> list[Response]:
        """
        Send several queries in one write and read their responses in order.

        Raises:
            EmptyQueryError: If there are no queries
            PipelineError: If response k is malformed; ``responses`` holds the
                ones before it and the connection becomes broken
        """
        payload, size = self._encode_pipeline(queries)
        with self._call(timeout):
            self._transport.write(payload)
            return self._read(ResponseReader(pipeline_size=size))

    def query(self, statement: str, *params: Any) -> Response:
        """Build and execute a query in one call."""
        return self.execute(build_query(statement, *params))

    def fetch(self, q: Query, target: Any = Any) -> Any:
        """
        Execute a query and convert the response into ``target``.

        Raises:
            ServerError: If the server answered with an error code
            ConversionError: If the response does not fit ``target``
        """
        return self.execute(q).parse(target)

    def use(self, space: str) -> None:
        """Select the default space for later queries."""
        self._switched(space, self.execute(use_space(space)))

    def ping(self, timeout: float | None = None) -> None:
        """Run a cheap query to check the connection is alive."""
        self.execute(PING_QUERY, timeout=timeout).raise_for_error()

    def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._mark_closed():
            self._transport.close()

    # Context manager support

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
