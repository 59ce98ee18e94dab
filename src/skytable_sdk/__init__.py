"""
Skytable SDK - A Python client for Skytable.

Speaks the Skyhash 2.0 protocol over TCP or TLS.

Supports:
- Blocking connections (threads)
- Asyncio connections
- Query pipelines
- Bounded connection pools for both models
- Typed marshalling into dataclasses, pydantic models and tuples
"""

from typing import Any

from .config import Config, ProtocolVersion
from .connection.aio import AsyncConnection
from .connection.base import BaseConnection, ConnectionState
from .connection.pool import AsyncConnectionPool, ConnectionPool
from .connection.sync import Connection
from .ddl import Field
from .exceptions import (
    ConnectionStateError,
    ConversionError,
    EmptyQueryError,
    HandshakeError,
    PipelineError,
    PoolClosedError,
    ProtocolError,
    ServerError,
    SkytableError,
    TimeoutError,
    TransportError,
)
from .marshal import from_wire, record, register_record, to_wire, typed_array
from .query import Pipeline, Query, QueryBuilder, query
from .response import Response, ResponseKind, Row
from .types import (
    Float32,
    Float64,
    SInt8,
    SInt16,
    SInt32,
    SInt64,
    TypedArray,
    UInt8,
    UInt16,
    UInt32,
    UInt64,
    Value,
    WireKind,
)

__version__ = "0.1.0"
__all__ = [
    # Configuration
    "Config",
    "ProtocolVersion",
    # Connections
    "BaseConnection",
    "Connection",
    "AsyncConnection",
    "ConnectionState",
    "ConnectionPool",
    "AsyncConnectionPool",
    # Queries
    "Query",
    "QueryBuilder",
    "Pipeline",
    "query",
    "Field",
    # Responses
    "Response",
    "ResponseKind",
    "Row",
    # Wire types
    "Value",
    "TypedArray",
    "WireKind",
    "UInt8",
    "UInt16",
    "UInt32",
    "UInt64",
    "SInt8",
    "SInt16",
    "SInt32",
    "SInt64",
    "Float32",
    "Float64",
    # Marshalling
    "to_wire",
    "from_wire",
    "record",
    "register_record",
    "typed_array",
    # Exceptions
    "SkytableError",
    "TransportError",
    "ProtocolError",
    "PipelineError",
    "ConversionError",
    "EmptyQueryError",
    "HandshakeError",
    "TimeoutError",
    "ServerError",
    "ConnectionStateError",
    "PoolClosedError",
]


class Skytable:
    """
    Factory class for creating Skytable connections.

    Usage:
        # Blocking connection
        with Skytable.connect(password="secret") as db:
            db.query("create space if not exists apps")

        # Asyncio connection
        async with await Skytable.connect_async(password="secret") as db:
            await db.query("create space if not exists apps")

        # Pool of asyncio connections
        async with Skytable.async_pool(password="secret", pool_max_size=4) as pool:
            await pool.query("select * from apps.users where name = ?", "sayan")
    """

    @staticmethod
    def connect(config: Config | None = None, **kwargs: Any) -> Connection:
        """Open a blocking connection."""
        return Connection.connect(config or Config(**kwargs))

    @staticmethod
    async def connect_async(config: Config | None = None, **kwargs: Any) -> AsyncConnection:
        """Open an asyncio connection."""
        return await AsyncConnection.connect(config or Config(**kwargs))

    @staticmethod
    def pool(config: Config | None = None, **kwargs: Any) -> ConnectionPool:
        """Create a pool of blocking connections."""
        return ConnectionPool(config or Config(**kwargs))

    @staticmethod
    def async_pool(config: Config | None = None, **kwargs: Any) -> AsyncConnectionPool:
        """Create a pool of asyncio connections."""
        return AsyncConnectionPool(config or Config(**kwargs))
