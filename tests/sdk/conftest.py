"""
Fixtures for connection and pool unit tests.

Scripted transports stand in for the server: every read returns the next
scripted chunk, or raises it when the chunk is an exception.
"""

import asyncio
from collections import deque
from collections.abc import Callable
from typing import Any

import pytest

from skytable_sdk.config import Config
from skytable_sdk.exceptions import TransportError
from skytable_sdk.transport import BUFSIZE

HANDSHAKE_OK = b"H\x00\x00\x00"
EMPTY = b"\x12"
# Read that never completes
HANG = object()


class _Script:
    HANG = HANG

    def __init__(self, chunks: tuple[Any, ...], handshake: bytes | None, repeat: bytes | None):
        self.chunks: deque[Any] = deque(chunks)
        if handshake is not None:
            self.chunks.appendleft(handshake)
        self.repeat = repeat
        self.written: list[bytes] = []
        self.closed = False

    @property
    def requests(self) -> list[bytes]:
        """Everything written after the handshake."""
        return self.written[1:]

    def _next(self, max_bytes: int) -> Any:
        if not self.chunks:
            if self.repeat is None:
                raise TransportError("Connection closed by the server")
            return self.repeat
        chunk = self.chunks.popleft()
        if isinstance(chunk, BaseException) or chunk is HANG:
            return chunk
        if len(chunk) > max_bytes:
            self.chunks.appendleft(chunk[max_bytes:])
            chunk = chunk[:max_bytes]
        return chunk


class FakeTransport(_Script):
    """Blocking scripted transport."""

    def __init__(self, *chunks: Any, handshake: bytes | None = HANDSHAKE_OK, repeat: bytes | None = None):
        super().__init__(chunks, handshake, repeat)
        self.timeouts: list[float | None] = []

    def write(self, data: bytes) -> None:
        if self.closed:
            raise TransportError("Write failed: closed")
        self.written.append(data)

    def read(self, max_bytes: int = BUFSIZE) -> bytes:
        chunk = self._next(max_bytes)
        if isinstance(chunk, BaseException):
            raise chunk
        return chunk

    def settimeout(self, timeout: float | None) -> None:
        self.timeouts.append(timeout)

    def close(self) -> None:
        self.closed = True


class FakeAsyncTransport(_Script):
    """Asyncio scripted transport."""

    def __init__(self, *chunks: Any, handshake: bytes | None = HANDSHAKE_OK, repeat: bytes | None = None):
        super().__init__(chunks, handshake, repeat)

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise TransportError("Write failed: closed")
        self.written.append(data)

    async def read(self, max_bytes: int = BUFSIZE) -> bytes:
        await asyncio.sleep(0)
        chunk = self._next(max_bytes)
        if chunk is HANG:
            await asyncio.sleep(3600)
        if isinstance(chunk, BaseException):
            raise chunk
        return chunk

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def config() -> Config:
    return Config(username="root", password="password12345678", timeout=None)


@pytest.fixture
def transport() -> Callable[..., FakeTransport]:
    return FakeTransport


@pytest.fixture
def async_transport() -> Callable[..., FakeAsyncTransport]:
    return FakeAsyncTransport
