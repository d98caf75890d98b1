"""
pytest configuration and fixtures.
"""

import socket
import threading
from typing import Callable, Generator
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tcpsocks import TCPServer, TCPSocksConfig


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def config() -> TCPSocksConfig:
    """Small-scale test configuration. Port 0 lets the OS pick."""
    return TCPSocksConfig(
        host="127.0.0.1",
        port=0,
        max_clients=5,
        retry_delay=0.1,
        log_level="DEBUG",
    )


class BackgroundServer:
    """
    Runs a TCPServer in a daemon thread.

    The server has no shutdown, so the thread simply dies with the test
    process. Every test gets its own port.
    """

    def __init__(self, server: TCPServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self.server.address[1]

    @property
    def total(self) -> int:
        return self.server.total_connections

    def start(self):
        """Start server in background thread and wait until it listens."""
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_listening(timeout=5.0):
            raise RuntimeError("Server failed to start")

    def wait_for_total(self, total: int, timeout: float = 5.0) -> bool:
        return self.server.tracker.counter.wait_for(total, timeout=timeout)

    def exchange(self, payload: bytes = b"Hello from client") -> bytes:
        """Open a connection, send payload, return whatever comes back."""
        with socket.create_connection((self.server.address[0], self.port), timeout=5.0) as s:
            s.sendall(payload)
            return s.recv(1024)


@pytest.fixture
def start_server() -> Callable[[TCPSocksConfig], BackgroundServer]:
    """Factory for servers started mid-test (e.g. after a client is already dialing)."""
    def _start(config: TCPSocksConfig) -> BackgroundServer:
        bg = BackgroundServer(TCPServer(config))
        bg.start()
        return bg
    return _start


@pytest.fixture
def running_server(config: TCPSocksConfig, start_server) -> Generator[BackgroundServer, None, None]:
    """A server listening on an OS-assigned port."""
    yield start_server(config)
