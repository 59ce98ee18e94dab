"""Tests for the asyncio connection."""

import asyncio
from dataclasses import dataclass
from typing import Any

import pytest

from skytable_sdk.config import Config
from skytable_sdk.connection import AsyncConnection, ConnectionState
from skytable_sdk.connection.base import PING_QUERY
from skytable_sdk.exceptions import (
    ConnectionStateError,
    EmptyQueryError,
    HandshakeError,
    PipelineError,
    ProtocolError,
    ServerError,
    TimeoutError,
    TransportError,
)
from skytable_sdk.protocol.codec import encode_pipeline_response, encode_response
from skytable_sdk.protocol.handshake import client_hello
from skytable_sdk.query import Pipeline, Query, QueryBuilder, query
from skytable_sdk.response import Response, Row
from skytable_sdk.transport import StreamTransport
from skytable_sdk.types import UInt8, Value

EMPTY = b"\x12"


@dataclass
class User:
    username: str
    age: UInt8


class TestAsyncConnect:
    """Tests for connection setup."""

    @pytest.mark.asyncio
    async def test_handshake(self, config: Config, async_transport: Any) -> None:
        fake = async_transport()
        conn = await AsyncConnection.connect(config, transport=fake)
        assert fake.written == [client_hello("root", "password12345678")]
        assert conn.state == ConnectionState.READY

    @pytest.mark.asyncio
    async def test_rejected(self, config: Config, async_transport: Any) -> None:
        fake = async_transport(handshake=b"H\x00\x01\x02")
        with pytest.raises(HandshakeError) as exc_info:
            await AsyncConnection.connect(config, transport=fake)
        assert exc_info.value.code == 2
        assert fake.closed

    @pytest.mark.asyncio
    async def test_handshake_timeout(self, async_transport: Any) -> None:
        config = Config(password="password12345678", connect_timeout=0.05)
        fake = async_transport(async_transport.HANG, handshake=None)
        with pytest.raises(TimeoutError, match="Handshake"):
            await AsyncConnection.connect(config, transport=fake)
        assert fake.closed


class TestAsyncExecute:
    """Tests for executing queries."""

    @pytest.mark.asyncio
    async def test_execute(self, config: Config, async_transport: Any) -> None:
        fake = async_transport(EMPTY)
        conn = await AsyncConnection.connect(config, transport=fake)
        q = QueryBuilder().append("set").append("hello").append("world").finish()

        assert await conn.execute(q) == Response.empty()
        assert fake.requests == [q.encode()]
        assert conn.is_ready

    @pytest.mark.asyncio
    async def test_response_arrives_byte_by_byte(self, config: Config, async_transport: Any) -> None:
        row = Row((Value.string("sayan"), Value.uint8(7)))
        data = encode_response(Response.of_row(row))
        conn = await AsyncConnection.connect(config, transport=async_transport(*[bytes([b]) for b in data]))
        assert await conn.fetch(query("select"), User) == User("sayan", 7)

    @pytest.mark.asyncio
    async def test_empty_query_not_sent(self, config: Config, async_transport: Any) -> None:
        fake = async_transport()
        conn = await AsyncConnection.connect(config, transport=fake)
        with pytest.raises(EmptyQueryError):
            await conn.execute(Query())
        assert fake.requests == []
        assert conn.is_ready

    @pytest.mark.asyncio
    async def test_malformed_breaks_connection(self, config: Config, async_transport: Any) -> None:
        conn = await AsyncConnection.connect(config, transport=async_transport(b"\x14"))
        with pytest.raises(ProtocolError):
            await conn.execute(query("select"))
        assert conn.is_broken
        with pytest.raises(ConnectionStateError):
            await conn.execute(query("select"))

    @pytest.mark.asyncio
    async def test_eof_breaks_connection(self, config: Config, async_transport: Any) -> None:
        conn = await AsyncConnection.connect(config, transport=async_transport(b"\x0d5\nab"))
        with pytest.raises(TransportError):
            await conn.execute(query("select"))
        assert conn.is_broken

    @pytest.mark.asyncio
    async def test_timeout_breaks_connection(self, config: Config, async_transport: Any) -> None:
        conn = await AsyncConnection.connect(config, transport=async_transport(async_transport.HANG))
        with pytest.raises(TimeoutError, match="timed out"):
            await conn.execute(query("select"), timeout=0.05)
        assert conn.state == ConnectionState.BROKEN

    @pytest.mark.asyncio
    async def test_config_timeout_applies(self, async_transport: Any) -> None:
        config = Config(password="password12345678", timeout=0.05)
        conn = await AsyncConnection.connect(config, transport=async_transport(async_transport.HANG))
        with pytest.raises(TimeoutError):
            await conn.execute(query("select"))
        assert conn.is_broken

    @pytest.mark.asyncio
    async def test_cancellation_breaks_connection(self, config: Config, async_transport: Any) -> None:
        conn = await AsyncConnection.connect(config, transport=async_transport(async_transport.HANG))
        task = asyncio.create_task(conn.execute(query("select")))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert conn.is_broken

    @pytest.mark.asyncio
    async def test_concurrent_calls_are_serialized(self, config: Config, async_transport: Any) -> None:
        first = encode_response(Response.of_value(Value.uint8(1)))
        second = encode_response(Response.of_value(Value.uint8(2)))
        fake = async_transport(first, second)
        conn = await AsyncConnection.connect(config, transport=fake)

        results = await asyncio.gather(conn.fetch(query("a"), int), conn.fetch(query("b"), int))

        assert results == [1, 2]
        assert fake.requests == [query("a").encode(), query("b").encode()]
        assert conn.is_ready

    @pytest.mark.asyncio
    async def test_query_shortcut(self, config: Config, async_transport: Any) -> None:
        fake = async_transport(b"\x10\x03\x00")
        conn = await AsyncConnection.connect(config, transport=fake)
        response = await conn.query("select * from apps.users where name = ?", "sayan")
        assert response.error_code == 3
        assert conn.is_ready


class TestAsyncPipeline:
    """Tests for pipelined execution."""

    @pytest.mark.asyncio
    async def test_responses_in_order(self, config: Config, async_transport: Any) -> None:
        responses = [Response.empty(), Response.of_error(1), Response.of_value(Value.string("x"))]
        fake = async_transport(encode_pipeline_response(responses))
        conn = await AsyncConnection.connect(config, transport=fake)
        pipeline = Pipeline.of(query("a"), query("b"), query("c"))

        assert await conn.execute_pipeline(pipeline) == responses
        assert fake.requests == [pipeline.encode()]

    @pytest.mark.asyncio
    async def test_header_mismatch(self, config: Config, async_transport: Any) -> None:
        conn = await AsyncConnection.connect(config, transport=async_transport(b"P1\n\x12"))
        with pytest.raises(ProtocolError):
            await conn.execute_pipeline([query("a"), query("b")])
        assert conn.is_broken

    @pytest.mark.asyncio
    async def test_partial_failure(self, config: Config, async_transport: Any) -> None:
        conn = await AsyncConnection.connect(config, transport=async_transport(b"P2\n\x12\xff"))
        with pytest.raises(PipelineError) as exc_info:
            await conn.execute_pipeline([query("a"), query("b")])
        assert exc_info.value.responses == [Response.empty()]
        assert conn.is_broken


class TestAsyncSessionHelpers:
    """Tests for use, ping and close."""

    @pytest.mark.asyncio
    async def test_use(self, config: Config, async_transport: Any) -> None:
        conn = await AsyncConnection.connect(config, transport=async_transport(EMPTY))
        await conn.use("apps")
        assert conn.space == "apps"

    @pytest.mark.asyncio
    async def test_use_rejected(self, config: Config, async_transport: Any) -> None:
        conn = await AsyncConnection.connect(config, transport=async_transport(b"\x10\x01\x00"))
        with pytest.raises(ServerError):
            await conn.use("missing")
        assert conn.space is None

    @pytest.mark.asyncio
    async def test_ping(self, config: Config, async_transport: Any) -> None:
        fake = async_transport(EMPTY)
        conn = await AsyncConnection.connect(config, transport=fake)
        await conn.ping()
        assert fake.requests == [PING_QUERY.encode()]

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, config: Config, async_transport: Any) -> None:
        fake = async_transport()
        async with await AsyncConnection.connect(config, transport=fake) as conn:
            assert conn.is_ready
        assert fake.closed
        assert conn.is_closed
        await conn.close()


class TestAsyncOverStreams:
    """Tests running the stream transport against an in-process asyncio server."""

    @pytest.mark.asyncio
    async def test_server_roundtrip(self) -> None:
        hello = client_hello("root", "secret")
        q = query("select * from apps.users where username = ?", "sayan")
        row = Row((Value.string("sayan"), Value.uint8(7)))
        received: list[bytes] = []

        async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            received.append(await reader.readexactly(len(hello)))
            writer.write(b"H\x00\x00\x00")
            await writer.drain()
            received.append(await reader.readexactly(len(q.encode())))
            data = encode_response(Response.of_row(row))
            writer.write(data[:3])
            await writer.drain()
            writer.write(data[3:])
            await writer.drain()
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        config = Config(port=port, password="secret", connect_timeout=5.0)
        async with server:
            async with await AsyncConnection.connect(config) as conn:
                assert await conn.fetch(q, User) == User("sayan", 7)
        assert received == [hello, q.encode()]

    @pytest.mark.asyncio
    async def test_stream_transport_eof(self) -> None:
        async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
            writer.close()

        server = await asyncio.start_server(handle, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        async with server:
            transport = await StreamTransport.open("127.0.0.1", port, timeout=5.0)
            with pytest.raises(TransportError, match="closed"):
                await transport.read()
            await transport.close()
            await transport.close()
            assert transport.closed

    @pytest.mark.asyncio
    async def test_refused(self) -> None:
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()
        with pytest.raises(TransportError, match="Failed to connect"):
            await StreamTransport.open("127.0.0.1", port, timeout=5.0)
