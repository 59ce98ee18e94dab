"""
Blocking TCP and TLS transport over ``socket``.
"""

from __future__ import annotations

import socket
import ssl

from ..exceptions import TimeoutError, TransportError
from .base import BUFSIZE


class TcpTransport:
    """Blocking transport over a connected (optionally TLS wrapped) socket."""

    def __init__(self, sock: socket.socket):
        self._sock = sock
        self._closed = False

    @classmethod
    def open(
        cls,
        host: str,
        port: int,
        timeout: float | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> TcpTransport:
        """
        Connect to ``host:port``.

        Raises:
            TimeoutError: If connecting takes longer than ``timeout``
            TransportError: If the connection or TLS setup fails
        """
        try:
            sock = socket.create_connection((host, port), timeout=timeout)
        except socket.timeout as e:
            raise TimeoutError(f"Timed out connecting to {host}:{port}") from e
        except OSError as e:
            raise TransportError(f"Failed to connect to {host}:{port}: {e}") from e

        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        if ssl_context is not None:
            try:
                sock = ssl_context.wrap_socket(sock, server_hostname=host)
            except socket.timeout as e:
                sock.close()
                raise TimeoutError(f"Timed out during TLS setup with {host}:{port}") from e
            except (ssl.SSLError, OSError) as e:
                sock.close()
                raise TransportError(f"TLS setup with {host}:{port} failed: {e}") from e
        return cls(sock)

    @property
    def closed(self) -> bool:
        return self._closed

    def settimeout(self, timeout: float | None) -> None:
        self._sock.settimeout(timeout)

    def write(self, data: bytes) -> None:
        try:
            self._sock.sendall(data)
        except socket.timeout as e:
            raise TimeoutError("Timed out writing to the server") from e
        except OSError as e:
            raise TransportError(f"Write failed: {e}") from e

    def read(self, max_bytes: int = BUFSIZE) -> bytes:
        try:
            data = self._sock.recv(max_bytes)
        except socket.timeout as e:
            raise TimeoutError("Timed out reading from the server") from e
        except OSError as e:
            raise TransportError(f"Read failed: {e}") from e
        if not data:
            raise TransportError("Connection closed by the server")
        return data

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already disconnected
            pass
        self._sock.close()
