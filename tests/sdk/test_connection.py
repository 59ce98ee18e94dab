"""Tests for the blocking connection."""

import socket
import threading
from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest

from skytable_sdk.config import Config
from skytable_sdk.connection import Connection, ConnectionState
from skytable_sdk.connection.base import PING_QUERY, ResponseReader
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
from skytable_sdk.protocol.codec import Decoder, encode_pipeline_response, encode_response
from skytable_sdk.protocol.handshake import client_hello
from skytable_sdk.query import Pipeline, Query, QueryBuilder, query
from skytable_sdk.response import Response, Row
from skytable_sdk.transport import BUFSIZE, TcpTransport
from skytable_sdk.types import UInt8, Value

EMPTY = b"\x12"


@dataclass
class User:
    username: str
    age: UInt8


class TestResponseReader:
    """Tests for the sans-IO response accumulator."""

    def test_single_response_in_pieces(self) -> None:
        reader = ResponseReader()
        data = encode_response(Response.of_value(Value.string("hello")))
        for b in data[:-1]:
            reader.feed(bytes([b]))
            assert not reader.poll()
        reader.feed(data[-1:])
        assert reader.poll()
        assert reader.responses == [Response.of_value(Value.string("hello"))]

    def test_pipeline_decodes_incrementally(self) -> None:
        reader = ResponseReader(pipeline_size=2)
        reader.feed(b"P2\n\x12")
        assert not reader.poll()
        assert reader.responses == [Response.empty()]
        reader.feed(b"\x12")
        assert reader.poll()

    def test_pipeline_count_mismatch(self) -> None:
        reader = ResponseReader(pipeline_size=2)
        reader.feed(b"P3\n")
        with pytest.raises(ProtocolError, match="expected 2"):
            reader.poll()

    def test_trailing_bytes(self) -> None:
        reader = ResponseReader()
        reader.feed(b"\x12\x12")
        with pytest.raises(ProtocolError, match="unexpected bytes"):
            reader.poll()

    def test_large_response_is_decoded_once(self) -> None:
        items = [Value.string("x" * 60) for _ in range(16_000)]
        data = encode_response(Response.of_value(Value.list(items)))
        reader = ResponseReader()
        with patch.object(Decoder, "_value", autospec=True, side_effect=Decoder._value) as value:
            for start in range(0, len(data), BUFSIZE):
                reader.feed(data[start : start + BUFSIZE])
                done = reader.poll()
        assert done
        assert len(data) > 1_000_000
        assert value.call_count == len(items) + 1
        assert reader.responses == [Response.of_value(Value.list(items))]

    def test_pipeline_failure_keeps_decoded_responses(self) -> None:
        reader = ResponseReader(pipeline_size=3)
        reader.feed(b"P3\n\x12")
        assert not reader.poll()
        reader.feed(b"\x12\x20")
        with pytest.raises(PipelineError, match="response 2") as exc_info:
            reader.poll()
        assert exc_info.value.responses == [Response.empty(), Response.empty()]


class TestConnect:
    """Tests for connection setup."""

    def test_handshake(self, config: Config, transport: Any) -> None:
        fake = transport()
        conn = Connection.connect(config, transport=fake)

        assert fake.written == [client_hello("root", "password12345678")]
        assert conn.state == ConnectionState.READY
        assert conn.is_authenticated
        assert fake.timeouts == [config.connect_timeout, None]

    def test_handshake_split_across_reads(self, config: Config, transport: Any) -> None:
        fake = transport(b"H\x00", b"\x00\x00", handshake=None)
        assert Connection.connect(config, transport=fake).is_ready

    def test_rejected(self, config: Config, transport: Any) -> None:
        fake = transport(handshake=b"H\x00\x01\x04")
        with pytest.raises(HandshakeError) as exc_info:
            Connection.connect(config, transport=fake)
        assert exc_info.value.code == 4
        assert fake.closed

    def test_server_hangs_up(self, config: Config, transport: Any) -> None:
        fake = transport(handshake=None)
        with pytest.raises(TransportError):
            Connection.connect(config, transport=fake)
        assert fake.closed


class TestExecute:
    """Tests for executing queries."""

    def test_execute(self, config: Config, transport: Any) -> None:
        fake = transport(EMPTY)
        conn = Connection.connect(config, transport=fake)
        q = QueryBuilder().append("set").append("hello").append("world").finish()

        response = conn.execute(q)

        assert response == Response.empty()
        assert response.is_ok
        assert fake.requests == [q.encode()]
        assert conn.is_ready

    def test_response_arrives_byte_by_byte(self, config: Config, transport: Any) -> None:
        row = Row((Value.string("sayan"), Value.uint8(7)))
        data = encode_response(Response.of_row(row))
        conn = Connection.connect(config, transport=transport(*[bytes([b]) for b in data]))

        assert conn.execute(query("select")).row == row

    def test_server_error_keeps_connection(self, config: Config, transport: Any) -> None:
        conn = Connection.connect(config, transport=transport(b"\x10\x05\x00"))
        response = conn.execute(query("select"))
        assert response.is_error
        assert response.error_code == 5
        with pytest.raises(ServerError):
            response.raise_for_error()
        assert conn.is_ready

    def test_empty_query_not_sent(self, config: Config, transport: Any) -> None:
        fake = transport()
        conn = Connection.connect(config, transport=fake)
        with pytest.raises(EmptyQueryError):
            conn.execute(QueryBuilder().finish())
        assert fake.requests == []
        assert conn.is_ready

    def test_malformed_breaks_connection(self, config: Config, transport: Any) -> None:
        conn = Connection.connect(config, transport=transport(b"\xff"))
        with pytest.raises(ProtocolError):
            conn.execute(query("select"))
        assert conn.state == ConnectionState.BROKEN
        with pytest.raises(ConnectionStateError, match="broken"):
            conn.execute(query("select"))

    def test_transport_failure_breaks_connection(self, config: Config, transport: Any) -> None:
        conn = Connection.connect(config, transport=transport(TransportError("Read failed: reset")))
        with pytest.raises(TransportError):
            conn.execute(query("select"))
        assert conn.is_broken

    def test_timeout_breaks_connection(self, config: Config, transport: Any) -> None:
        fake = transport(TimeoutError("Timed out reading from the server"))
        conn = Connection.connect(config, transport=fake)
        with pytest.raises(TimeoutError):
            conn.execute(query("select"), timeout=0.5)
        assert conn.is_broken
        assert fake.timeouts[-1] == 0.5

    def test_per_call_timeout_restored(self, config: Config, transport: Any) -> None:
        fake = transport(EMPTY)
        conn = Connection.connect(config, transport=fake)
        conn.execute(query("select"), timeout=2.5)
        assert fake.timeouts[-2:] == [2.5, None]

    def test_concurrent_call_rejected(self, config: Config, transport: Any) -> None:
        conn = Connection.connect(config, transport=transport(EMPTY))
        conn._lock.acquire()
        try:
            with pytest.raises(ConnectionStateError, match="in use"):
                conn.execute(query("select"))
        finally:
            conn._lock.release()
        assert conn.execute(query("select")) == Response.empty()

    def test_query_shortcut(self, config: Config, transport: Any) -> None:
        fake = transport(EMPTY)
        conn = Connection.connect(config, transport=fake)
        conn.query("insert into apps.users(?, ?)", "sayan", 7)
        assert fake.requests == [query("insert into apps.users(?, ?)", "sayan", 7).encode()]

    def test_fetch(self, config: Config, transport: Any) -> None:
        row = Row((Value.string("sayan"), Value.uint8(7)))
        conn = Connection.connect(config, transport=transport(encode_response(Response.of_row(row))))
        assert conn.fetch(query("select"), User) == User("sayan", 7)

    def test_fetch_any(self, config: Config, transport: Any) -> None:
        conn = Connection.connect(config, transport=transport(b"\x0d2\nhi"))
        assert conn.fetch(query("select")) == "hi"


class TestPipeline:
    """Tests for pipelined execution."""

    def test_responses_in_order(self, config: Config, transport: Any) -> None:
        responses = [Response.of_value(Value.uint8(i)) for i in range(3)]
        fake = transport(encode_pipeline_response(responses))
        conn = Connection.connect(config, transport=fake)
        pipeline = Pipeline.of(query("q1"), query("q2"), query("q3"))

        assert conn.execute_pipeline(pipeline) == responses
        assert fake.requests == [pipeline.encode()]
        assert conn.is_ready

    def test_accepts_plain_list(self, config: Config, transport: Any) -> None:
        fake = transport(b"P1\n\x12")
        conn = Connection.connect(config, transport=fake)
        assert conn.execute_pipeline([query("q1")]) == [Response.empty()]

    def test_empty_pipeline(self, config: Config, transport: Any) -> None:
        conn = Connection.connect(config, transport=transport())
        with pytest.raises(EmptyQueryError):
            conn.execute_pipeline([])
        assert conn.is_ready

    def test_partial_failure(self, config: Config, transport: Any) -> None:
        data = b"P3\n\x12\x0242\n\x01\x07"
        conn = Connection.connect(config, transport=transport(data))
        with pytest.raises(PipelineError) as exc_info:
            conn.execute_pipeline([query("a"), query("b"), query("c")])
        assert exc_info.value.responses == [Response.empty(), Response.of_value(Value.uint8(42))]
        assert conn.is_broken


class TestSessionHelpers:
    """Tests for use, ping and close."""

    def test_use(self, config: Config, transport: Any) -> None:
        fake = transport(EMPTY)
        conn = Connection.connect(config, transport=fake)
        conn.use("apps")
        assert conn.space == "apps"
        assert fake.requests == [Query("use apps").encode()]

    def test_use_rejected(self, config: Config, transport: Any) -> None:
        conn = Connection.connect(config, transport=transport(b"\x10\x01\x00"))
        with pytest.raises(ServerError):
            conn.use("missing")
        assert conn.space is None
        assert conn.is_ready

    def test_ping(self, config: Config, transport: Any) -> None:
        fake = transport(EMPTY)
        conn = Connection.connect(config, transport=fake)
        conn.ping()
        assert fake.requests == [PING_QUERY.encode()]

    def test_close_is_idempotent(self, config: Config, transport: Any) -> None:
        fake = transport()
        conn = Connection.connect(config, transport=fake)
        conn.close()
        conn.close()
        assert fake.closed
        assert conn.is_closed
        with pytest.raises(ConnectionStateError, match="closed"):
            conn.execute(query("select"))

    def test_context_manager(self, config: Config, transport: Any) -> None:
        fake = transport()
        with Connection.connect(config, transport=fake) as conn:
            assert conn.is_ready
        assert fake.closed


def _read_exactly(sock: socket.socket, size: int) -> bytes:
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


class TestOverSockets:
    """Tests running the real socket transport against an in-process server."""

    def test_socketpair(self, config: Config) -> None:
        client, server = socket.socketpair()
        q = query("select * from apps.users where username = ?", "sayan")
        row = Row((Value.string("sayan"), Value.uint8(7)))
        received: list[bytes] = []

        def serve() -> None:
            received.append(_read_exactly(server, len(client_hello(config.username, config.password))))
            server.sendall(b"H\x00\x00\x00")
            received.append(_read_exactly(server, len(q.encode())))
            for b in encode_response(Response.of_row(row)):
                server.sendall(bytes([b]))

        thread = threading.Thread(target=serve)
        thread.start()
        try:
            with Connection.connect(config, transport=TcpTransport(client)) as conn:
                assert conn.fetch(q, User) == User("sayan", 7)
        finally:
            thread.join(timeout=5)
            server.close()
        assert received == [client_hello(config.username, config.password), q.encode()]

    def test_tcp_listener(self) -> None:
        listener = socket.create_server(("127.0.0.1", 0))
        port = listener.getsockname()[1]
        config = Config(port=port, password="secret", connect_timeout=5.0)

        def serve() -> None:
            conn, _ = listener.accept()
            with conn:
                _read_exactly(conn, len(client_hello("root", "secret")))
                conn.sendall(b"H\x00\x00\x00")
                _read_exactly(conn, len(PING_QUERY.encode()))
                conn.sendall(EMPTY)

        thread = threading.Thread(target=serve)
        thread.start()
        try:
            with Connection.connect(config) as conn:
                conn.ping()
        finally:
            thread.join(timeout=5)
            listener.close()

    def test_server_closes_mid_response(self, config: Config) -> None:
        client, server = socket.socketpair()

        def serve() -> None:
            _read_exactly(server, len(client_hello(config.username, config.password)))
            server.sendall(b"H\x00\x00\x00")
            _read_exactly(server, len(query("select").encode()))
            server.sendall(b"\x0d10\nabc")
            server.close()

        thread = threading.Thread(target=serve)
        thread.start()
        conn = Connection.connect(config, transport=TcpTransport(client))
        try:
            with pytest.raises(TransportError, match="closed"):
                conn.execute(query("select"))
            assert conn.is_broken
        finally:
            thread.join(timeout=5)
            conn.close()
