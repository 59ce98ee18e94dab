"""
Transports for the Skytable SDK.
"""

from .aio import StreamTransport
from .base import BUFSIZE, AsyncTransport, SyncTransport
from .tcp import TcpTransport

__all__ = [
    "BUFSIZE",
    "SyncTransport",
    "AsyncTransport",
    "TcpTransport",
    "StreamTransport",
]
