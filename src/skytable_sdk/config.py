"""
Connection configuration for the Skytable SDK.

Provides an immutable configuration container consumed by connections and pools.
"""

from __future__ import annotations

import os
import ssl
from dataclasses import dataclass, replace
from enum import Enum

DEFAULT_HOST = "127.0.0.1"
DEFAULT_TCP_PORT = 2003
DEFAULT_TLS_PORT = 2002


class ProtocolVersion(str, Enum):
    """Wire protocol versions this client can speak."""

    SKYHASH_2 = "skyhash-2.0"


@dataclass(frozen=True)
class Config:
    """
    Immutable configuration for a Skytable connection.

    Attributes:
        host: Server host name or address.
        port: Server port (2003 plain, 2002 TLS by convention).
        username: The username for authentication.
        password: The password for authentication.
        tls_cert: CA certificate as PEM text or a path to a PEM file; enables TLS.
        protocol: Wire protocol version.
        connect_timeout: Seconds allowed for connecting and the handshake.
        timeout: Seconds allowed per call, or None to wait indefinitely.
        pool_max_size: Upper bound on live connections in a pool.
        pool_validate: Ping idle pooled connections before leasing them.
    """

    host: str = DEFAULT_HOST
    port: int = DEFAULT_TCP_PORT
    username: str = "root"
    password: str = ""
    tls_cert: str | None = None
    protocol: ProtocolVersion = ProtocolVersion.SKYHASH_2
    connect_timeout: float = 30.0
    timeout: float | None = None
    pool_max_size: int = 10
    pool_validate: bool = False

    def __post_init__(self) -> None:
        if not self.host:
            raise ValueError("host must not be empty")
        if not 0 < self.port < 65536:
            raise ValueError(f"Invalid port {self.port}")
        if not self.username:
            raise ValueError("username must not be empty")
        if not self.password:
            raise ValueError("password must not be empty")
        if not isinstance(self.protocol, ProtocolVersion):
            raise ValueError(f"Unsupported protocol {self.protocol!r}")
        if self.connect_timeout <= 0:
            raise ValueError("connect_timeout must be positive")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive or None")
        if self.pool_max_size < 1:
            raise ValueError("pool_max_size must be at least 1")

    @classmethod
    def default(cls, username: str, password: str) -> Config:
        """Configuration for a server on localhost with the default port."""
        return cls(username=username, password=password)

    def with_tls(self, cert: str, port: int | None = None) -> Config:
        """
        Copy of this configuration with TLS enabled.

        Switches to the TLS port unless a port was chosen explicitly.
        """
        if port is None:
            port = DEFAULT_TLS_PORT if self.port == DEFAULT_TCP_PORT else self.port
        return replace(self, tls_cert=cert, port=port)

    @property
    def use_tls(self) -> bool:
        return self.tls_cert is not None

    @property
    def address(self) -> tuple[str, int]:
        return (self.host, self.port)

    def ssl_context(self) -> ssl.SSLContext | None:
        """
        Build the TLS context trusting the configured CA certificate.

        Host names are not verified; the certificate chain is.

        Raises:
            ValueError: If the certificate cannot be loaded
        """
        if self.tls_cert is None:
            return None
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
        context.check_hostname = False
        try:
            if "-----BEGIN" in self.tls_cert:
                context.load_verify_locations(cadata=self.tls_cert)
            elif os.path.exists(self.tls_cert):
                context.load_verify_locations(cafile=self.tls_cert)
            else:
                raise ValueError(f"certificate file not found: {self.tls_cert}")
        except ssl.SSLError as e:
            raise ValueError(f"failed to parse certificate: {e}") from e
        return context

    def __repr__(self) -> str:
        return (
            f"Config(host={self.host!r}, port={self.port}, username={self.username!r}, "
            f"tls={self.use_tls}, protocol={self.protocol.value})"
        )


__all__ = ["Config", "ProtocolVersion", "DEFAULT_TCP_PORT", "DEFAULT_TLS_PORT"]
