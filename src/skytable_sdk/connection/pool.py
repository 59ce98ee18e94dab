"""
Connection Pool Implementation for the Skytable SDK.

Provides bounded pools of blocking and asyncio connections.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import deque
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Iterable, Self

from ..config import Config
from ..exceptions import PoolClosedError, SkytableError, TimeoutError
from ..query import Pipeline, Query
from ..response import Response
from .aio import AsyncConnection
from .sync import Connection

logger = logging.getLogger(__name__)


class AsyncConnectionPool:
    """
    Pool of asyncio connections.

    At most ``config.pool_max_size`` connections exist at once. Connections
    are opened lazily; broken ones are dropped on release and replaced by the
    next acquire.

    Usage:
        async with AsyncConnectionPool(config) as pool:
            async with pool.acquire() as conn:
                await conn.query("select * from apps.users where name = ?", "sayan")
    """

    def __init__(
        self,
        config: Config,
        connect: Callable[[Config], Awaitable[AsyncConnection]] | None = None,
    ):
        """
        Initialize connection pool.

        Args:
            config: Connection settings, including ``pool_max_size``
            connect: Factory opening one connection (defaults to ``AsyncConnection.connect``)
        """
        self.config = config
        self.size = config.pool_max_size
        self._connect = connect or AsyncConnection.connect

        self._pool: deque[AsyncConnection] = deque()
        self._in_use: set[AsyncConnection] = set()
        self._lock = asyncio.Lock()
        self._semaphore = asyncio.Semaphore(self.size)
        self._closed = False

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _take_idle(self) -> AsyncConnection | None:
        while True:
            async with self._lock:
                if not self._pool:
                    return None
                conn = self._pool.popleft()
                self._in_use.add(conn)
            if conn.is_ready and self.config.pool_validate:
                try:
                    await conn.ping()
                except SkytableError as e:
                    logger.warning(f"Discarding pooled connection that failed validation: {e}")
            if conn.is_ready:
                return conn
            await self._discard(conn)

    async def _discard(self, conn: AsyncConnection) -> None:
        async with self._lock:
            self._in_use.discard(conn)
        await conn.close()

    async def get(self, timeout: float | None = None) -> AsyncConnection:
        """
        Lease a connection; pair every call with ``release()``.

        Args:
            timeout: Seconds to wait for a free slot, or None to wait indefinitely

        Raises:
            PoolClosedError: If the pool is closed
            TimeoutError: If no connection frees up in time
        """
        if self._closed:
            raise PoolClosedError("Pool is closed")

        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout)
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"Timed out after {timeout}s waiting for a pooled connection") from e

        try:
            if self._closed:
                raise PoolClosedError("Pool is closed")
            conn = await self._take_idle()
            if conn is None:
                conn = await self._connect(self.config)
                async with self._lock:
                    self._in_use.add(conn)
                logger.debug(f"Pool opened connection ({self.total}/{self.size})")
        except BaseException:
            self._semaphore.release()
            raise
        return conn

    async def release(self, conn: AsyncConnection) -> None:
        """
        Return a leased connection.

        Ready connections go back to the idle set; broken or closed ones are
        discarded.
        """
        async with self._lock:
            if conn not in self._in_use:
                raise ValueError("Connection is not leased from this pool")
            self._in_use.discard(conn)
            keep = conn.is_ready and not self._closed
            if keep:
                self._pool.append(conn)
        if not keep:
            if conn.is_broken:
                logger.warning("Discarding broken connection from pool")
            await conn.close()
        self._semaphore.release()

    @asynccontextmanager
    async def acquire(self, timeout: float | None = None) -> AsyncGenerator[AsyncConnection, None]:
        """
        Lease a connection for the duration of the block.

        Usage:
            async with pool.acquire() as conn:
                await conn.execute(q)
        """
        conn = await self.get(timeout)
        try:
            yield conn
        finally:
            await self.release(conn)

    async def close(self) -> None:
        """Close idle connections and refuse further acquires."""
        self._closed = True
        async with self._lock:
            idle = list(self._pool)
            self._pool.clear()
        for conn in idle:
            await conn.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def idle(self) -> int:
        """Number of idle connections in pool."""
        return len(self._pool)

    @property
    def in_use(self) -> int:
        """Number of connections currently leased."""
        return len(self._in_use)

    @property
    def total(self) -> int:
        """Total number of live connections (idle + in use)."""
        return len(self._pool) + len(self._in_use)

    # Convenience methods that acquire a connection

    async def execute(self, q: Query, timeout: float | None = None) -> Response:
        async with self.acquire(timeout) as conn:
            return await conn.execute(q)

    async def execute_pipeline(self, queries: Pipeline | Iterable[Query], timeout: float | None = None) -> list[Response]:
        async with self.acquire(timeout) as conn:
            return await conn.execute_pipeline(queries)

    async def query(self, statement: str, *params: Any) -> Response:
        async with self.acquire() as conn:
            return await conn.query(statement, *params)


class ConnectionPool:
    """
    Pool of blocking connections, safe to share between threads.

    Usage:
        with ConnectionPool(config) as pool:
            with pool.acquire(timeout=5) as conn:
                conn.query("select * from apps.users where name = ?", "sayan")
    """

    def __init__(
        self,
        config: Config,
        connect: Callable[[Config], Connection] | None = None,
    ):
        self.config = config
        self.size = config.pool_max_size
        self._connect = connect or Connection.connect

        self._pool: deque[Connection] = deque()
        self._in_use: set[Connection] = set()
        self._lock = threading.Lock()
        self._semaphore = threading.Semaphore(self.size)
        self._closed = False

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _take_idle(self) -> Connection | None:
        while True:
            with self._lock:
                if not self._pool:
                    return None
                conn = self._pool.popleft()
                self._in_use.add(conn)
            if conn.is_ready and self.config.pool_validate:
                try:
                    conn.ping()
                except SkytableError as e:
                    logger.warning(f"Discarding pooled connection that failed validation: {e}")
            if conn.is_ready:
                return conn
            with self._lock:
                self._in_use.discard(conn)
            conn.close()

    def get(self, timeout: float | None = None) -> Connection:
        """
        Lease a connection; pair every call with ``release()``.

        Raises:
            PoolClosedError: If the pool is closed
            TimeoutError: If no connection frees up in time
        """
        if self._closed:
            raise PoolClosedError("Pool is closed")
        if not self._semaphore.acquire(timeout=timeout):
            raise TimeoutError(f"Timed out after {timeout}s waiting for a pooled connection")

        try:
            if self._closed:
                raise PoolClosedError("Pool is closed")
            conn = self._take_idle()
            if conn is None:
                conn = self._connect(self.config)
                with self._lock:
                    self._in_use.add(conn)
                logger.debug(f"Pool opened connection ({self.total}/{self.size})")
        except BaseException:
            self._semaphore.release()
            raise
        return conn

    def release(self, conn: Connection) -> None:
        """Return a leased connection; broken or closed ones are discarded."""
        with self._lock:
            if conn not in self._in_use:
                raise ValueError("Connection is not leased from this pool")
            self._in_use.discard(conn)
            keep = conn.is_ready and not self._closed
            if keep:
                self._pool.append(conn)
        if not keep:
            if conn.is_broken:
                logger.warning("Discarding broken connection from pool")
            conn.close()
        self._semaphore.release()

    @contextmanager
    def acquire(self, timeout: float | None = None) -> Generator[Connection, None, None]:
        """Lease a connection for the duration of the ``with`` block."""
        conn = self.get(timeout)
        try:
            yield conn
        finally:
            self.release(conn)

    def close(self) -> None:
        """Close idle connections and refuse further acquires."""
        self._closed = True
        with self._lock:
            idle = list(self._pool)
            self._pool.clear()
        for conn in idle:
            conn.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def idle(self) -> int:
        return len(self._pool)

    @property
    def in_use(self) -> int:
        return len(self._in_use)

    @property
    def total(self) -> int:
        return len(self._pool) + len(self._in_use)

    # Convenience methods that acquire a connection

    def execute(self, q: Query, timeout: float | None = None) -> Response:
        with self.acquire(timeout) as conn:
            return conn.execute(q)

    def execute_pipeline(self, queries: Pipeline | Iterable[Query], timeout: float | None = None) -> list[Response]:
        with self.acquire(timeout) as conn:
            return conn.execute_pipeline(queries)

    def query(self, statement: str, *params: Any) -> Response:
        with self.acquire() as conn:
            return conn.query(statement, *params)
