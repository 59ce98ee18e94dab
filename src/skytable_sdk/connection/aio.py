"""
Asyncio connection for the Skytable SDK.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Self

from ..config import Config
from ..ddl import use_space
from ..exceptions import HandshakeError, TimeoutError
from ..protocol.handshake import SERVER_RESPONSE_SIZE
from ..query import Pipeline, Query
from ..query import query as build_query
from ..response import Response
from ..transport import AsyncTransport, StreamTransport
from .base import PING_QUERY, BaseConnection, ResponseReader

logger = logging.getLogger(__name__)


class AsyncConnection(BaseConnection):
    """
    Asyncio connection to a Skytable server.

    Calls suspend only the calling task. Concurrent calls on one connection
    are serialized; cancelling a call in flight breaks the connection because
    the unread response would desynchronize the stream.

    Usage:
        async with await AsyncConnection.connect(config) as db:
            response = await db.query("select * from apps.users where name = ?", "sayan")
    """

    def __init__(self, config: Config, transport: AsyncTransport):
        super().__init__(config)
        self._transport = transport
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(cls, config: Config, transport: AsyncTransport | None = None) -> Self:
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
            transport = await StreamTransport.open(
                config.host,
                config.port,
                timeout=config.connect_timeout,
                ssl_context=config.ssl_context(),
            )
        conn = cls(config, transport)
        try:
            await asyncio.wait_for(conn._handshake(), config.connect_timeout)
        except asyncio.TimeoutError as e:
            conn._mark_closed()
            await transport.close()
            raise TimeoutError(f"Handshake with {config.host}:{config.port} timed out") from e
        except BaseException:
            conn._mark_closed()
            await transport.close()
            raise
        return conn

    async def _handshake(self) -> None:
        await self._transport.write(self._hello())
        data = b""
        while len(data) < SERVER_RESPONSE_SIZE:
            data += await self._transport.read(SERVER_RESPONSE_SIZE - len(data))
        if len(data) != SERVER_RESPONSE_SIZE:
            raise HandshakeError(f"invalid server handshake {data!r}")
        self._complete_handshake(data)

    async def _roundtrip(self, payload: bytes, reader: ResponseReader) -> list[Response]:
        await self._transport.write(payload)
        while not reader.poll():
            reader.feed(await self._transport.read())
        return reader.responses

    async def _call(self, payload: bytes, reader: ResponseReader, timeout: float | None) -> list[Response]:
        if timeout is None:
            timeout = self.config.timeout
        async with self._lock:
            self._begin()
            try:
                if timeout is None:
                    responses = await self._roundtrip(payload, reader)
                else:
                    responses = await asyncio.wait_for(self._roundtrip(payload, reader), timeout)
            except asyncio.TimeoutError as e:
                self._mark_broken(e)
                raise TimeoutError(f"Call timed out after {timeout}s") from e
            except BaseException as e:
                self._mark_broken(e)
                raise
            self._finish()
            return responses

    # Public API

    async def execute(self, q: Query, timeout: float | None = None) -> Response:
        """
        Execute one query and return its response.

        Args:
            q: The query
            timeout: Seconds allowed for this call, overriding ``config.timeout``

        Raises:
            EmptyQueryError: If the query has no statement
            ConnectionStateError: If the connection is not ready
            TransportError: On I/O failure; the connection becomes broken
            ProtocolError: On a malformed response; the connection becomes broken
            TimeoutError: If the call times out; the connection becomes broken
        """
        payload = self._encode_query(q)
        responses = await self._call(payload, ResponseReader(), timeout)
        return responses[0]

    async def execute_pipeline(self, queries: Pipeline | Iterable[Query], timeout: float | None = None) -> list[Response]:
        """
        Send several queries in one write and read their responses in order.

        Raises:
            EmptyQueryError: If there are no queries
            PipelineError: If response k is malformed; ``responses`` holds the
                ones before it and the connection becomes broken
        """
        payload, size = self._encode_pipeline(queries)
        return await self._call(payload, ResponseReader(pipeline_size=size), timeout)

    async def query(self, statement: str, *params: Any) -> Response:
        """Build and execute a query in one call."""
        return await self.execute(build_query(statement, *params))

    async def fetch(self, q: Query, target: Any = Any) -> Any:
        """Execute a query and convert the response into ``target``."""
        response = await self.execute(q)
        return response.parse(target)

    async def use(self, space: str) -> None:
        """Select the default space for later queries."""
        self._switched(space, await self.execute(use_space(space)))

    async def ping(self, timeout: float | None = None) -> None:
        """Run a cheap query to check the connection is alive."""
        response = await self.execute(PING_QUERY, timeout=timeout)
        response.raise_for_error()

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._mark_closed():
            await self._transport.close()

    # Context manager support

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
