"""
Skyhash 2.0 connection handshake.

The client opens with a fixed header followed by its credentials; the server
answers with exactly four bytes.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..exceptions import HandshakeError

# Marker byte followed by version and auth mode bytes
CLIENT_HEADER = b"H\x00\x00\x00\x00\x00"
SERVER_RESPONSE_SIZE = 4


def client_hello(username: str, password: str) -> bytes:
    """Build the client handshake for password authentication."""
    user = username.encode("utf-8")
    secret = password.encode("utf-8")
    return b"".join(
        [
            CLIENT_HEADER,
            str(len(user)).encode("ascii"),
            b"\n",
            str(len(secret)).encode("ascii"),
            b"\n",
            user,
            secret,
        ]
    )


@dataclass(frozen=True)
class ServerHandshake:
    """The server's four byte answer to the client handshake."""

    accepted: bool
    code: int

    @classmethod
    def parse(cls, data: bytes) -> ServerHandshake:
        """
        Parse the server answer.

        Raises:
            HandshakeError: If the answer is not a handshake response
        """
        if len(data) != SERVER_RESPONSE_SIZE or data[0:2] != b"H\x00":
            raise HandshakeError(f"invalid server handshake {data!r}")
        if data[2] == 0:
            return cls(accepted=True, code=data[3])
        if data[2] == 1:
            return cls(accepted=False, code=data[3])
        raise HandshakeError(f"invalid server handshake {data!r}")

    def raise_for_error(self) -> None:
        if not self.accepted:
            raise HandshakeError(f"handshake error code {self.code}", code=self.code)
