"""
Asyncio TCP and TLS transport over streams.
"""

from __future__ import annotations

import asyncio
import ssl

from ..exceptions import TimeoutError, TransportError
from .base import BUFSIZE


class StreamTransport:
    """Transport over an asyncio stream reader/writer pair."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer
        self._closed = False

    @classmethod
    async def open(
        cls,
        host: str,
        port: int,
        timeout: float | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> StreamTransport:
        """
        Connect to ``host:port``.

        Raises:
            TimeoutError: If connecting takes longer than ``timeout``
            TransportError: If the connection or TLS setup fails
        """
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(
                    host,
                    port,
                    ssl=ssl_context,
                    server_hostname=host if ssl_context is not None else None,
                ),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise TimeoutError(f"Timed out connecting to {host}:{port}") from e
        except (ssl.SSLError, OSError) as e:
            raise TransportError(f"Failed to connect to {host}:{port}: {e}") from e
        return cls(reader, writer)

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, data: bytes) -> None:
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Write failed: {e}") from e

    async def read(self, max_bytes: int = BUFSIZE) -> bytes:
        try:
            data = await self._reader.read(max_bytes)
        except (ConnectionError, OSError) as e:
            raise TransportError(f"Read failed: {e}") from e
        if not data:
            raise TransportError("Connection closed by the server")
        return data

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError, ssl.SSLError):
            # Peer already went away
            pass
