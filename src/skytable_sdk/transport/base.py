"""
Transport interfaces.

A transport moves raw bytes; framing and decoding live in the protocol layer.
"""

from typing import Protocol, runtime_checkable

# Read size per call
BUFSIZE = 8192


@runtime_checkable
class SyncTransport(Protocol):
    """Blocking byte stream."""

    def write(self, data: bytes) -> None: ...

    def read(self, max_bytes: int = BUFSIZE) -> bytes: ...

    def settimeout(self, timeout: float | None) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class AsyncTransport(Protocol):
    """Byte stream that suspends the calling task instead of blocking."""

    async def write(self, data: bytes) -> None: ...

    async def read(self, max_bytes: int = BUFSIZE) -> bytes: ...

    async def close(self) -> None: ...
