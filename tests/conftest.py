"""
Pytest configuration for Skytable SDK tests.

Shared connection constants are defined here so every test file can import them
instead of hardcoding hosts, credentials, and ports. Integration tests run
against a live server on SKYTABLE_HOST:SKYTABLE_PORT and are skipped when
nothing is listening there.
"""

import os
import socket
from collections.abc import Generator

import pytest

# ---------------------------------------------------------------------------
# Shared connection constants (import these in test files)
# ---------------------------------------------------------------------------
SKYTABLE_HOST = os.getenv("SKYTABLE_HOST", "127.0.0.1")
SKYTABLE_PORT = int(os.getenv("SKYTABLE_PORT", "2003"))
SKYTABLE_USER = os.getenv("SKYTABLE_USER", "root")
SKYTABLE_PASS = os.getenv("SKYTABLE_PASS", "password12345678")


def is_port_responding(host: str = SKYTABLE_HOST, port: int = SKYTABLE_PORT) -> bool:
    """Check if the Skytable port accepts TCP connections."""
    try:
        with socket.create_connection((host, port), timeout=2):
            return True
    except OSError:
        return False


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests when no server is reachable."""
    integration = [item for item in items if "integration" in item.keywords]
    if not integration or is_port_responding():
        return
    skip = pytest.mark.skip(reason=f"Skytable not reachable on {SKYTABLE_HOST}:{SKYTABLE_PORT}")
    for item in integration:
        item.add_marker(skip)


@pytest.fixture(scope="session")
def skytable_available() -> Generator[bool, None, None]:
    """
    Session-scoped fixture that indicates if Skytable is available.

        def test_something(skytable_available):
            if not skytable_available:
                pytest.skip("Skytable not available")
    """
    yield is_port_responding()
