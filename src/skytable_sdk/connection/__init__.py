"""
Skytable SDK Connection Module.

Provides blocking and asyncio connections and their pools.
"""

from .aio import AsyncConnection
from .base import BaseConnection, ConnectionState, ResponseReader
from .pool import AsyncConnectionPool, ConnectionPool
from .sync import Connection

__all__ = [
    "AsyncConnection",
    "AsyncConnectionPool",
    "BaseConnection",
    "Connection",
    "ConnectionPool",
    "ConnectionState",
    "ResponseReader",
]
