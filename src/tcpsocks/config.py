"""
=============================================================================
TCPSOCKS CONFIGURATION
=============================================================================

Centralized configuration for both sides of the wire: the server that
accepts connections and the client pool that hammers it.

=============================================================================
DEFAULTS
=============================================================================

Every value below started life as a hard-coded constant. They are kept
as the defaults, so a bare `python -m tcpsocks` runs the classic setup
while tests can shrink things down (port 0, 5 clients,
a 0.1s retry delay) without touching any code.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  OPTION          DEFAULT               USED BY                      │
    ├─────────────────────────────────────────────────────────────────────┤
    │  address         127.0.0.1:4000        server (listen), client (dial)│
    │  buffer_size     1024                  server read, client read     │
    │  max_clients     150                   client pool only             │
    │  retry_delay     5.0 seconds           client dial backoff          │
    └─────────────────────────────────────────────────────────────────────┘

Note on max_clients: 150 was found empirically to be what one dev box
could push through before connections got refused. It is a default for
the client pool, NOT an admission limit - the server accepts as many
connections as the OS gives it.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    Priority (highest to lowest):

    1. Command-line arguments     python -m tcpsocks -a 0.0.0.0:5000
    2. Environment variables      SOCKS_ADDRESS=0.0.0.0:5000
    3. Default values (this dataclass)

=============================================================================
"""

import os
import socket
from dataclasses import dataclass
from typing import Tuple


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 4000
DEFAULT_BUFFER_SIZE = 1024
DEFAULT_MAX_CLIENTS = 150
DEFAULT_RETRY_DELAY = 5.0

RESPONSE_MESSAGE = "Message received."
CLIENT_MESSAGE = "Hello from client"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("text", "json")


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split a "host:port" string into its parts.

    The host may be empty (":4000") which means all interfaces, and may be
    a bracketed IPv6 literal ("[::1]:4000").

    Raises:
        ValueError: If there is no port or the port is not a number.
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"Invalid address {address!r}: expected host:port")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]

    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"Invalid port in address {address!r}") from None

    return host or "0.0.0.0", port_number


def format_address(host: str, port: int) -> str:
    """Inverse of parse_address(): IPv6 hosts get their brackets back."""
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass
class TCPSocksConfig:
    """
    Configuration shared by the server and the client pool.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, backlog, buffer_size

    CLIENT SETTINGS
    - max_clients, retry_delay

    PROTOCOL
    - response_message, client_message

    SERVER INTERNALS
    - notify_queue_size

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # =========================================================================
    # NETWORK SETTINGS
    # =========================================================================

    host: str = DEFAULT_HOST
    """Address the server binds to and the clients dial."""

    port: int = DEFAULT_PORT
    """
    TCP port. 0 asks the OS for a free port when binding, which is what
    the test-suite does; the bound port is then read back from the server.
    """

    backlog: int = socket.SOMAXCONN
    """
    Listen queue length. Left at the OS maximum so a burst of clients is
    not refused by the kernel before the accept loop gets to them.
    """

    buffer_size: int = DEFAULT_BUFFER_SIZE
    """Capacity of the single read on each side of a connection."""

    # =========================================================================
    # CLIENT SETTINGS
    # =========================================================================

    max_clients: int = DEFAULT_MAX_CLIENTS
    """Number of concurrent workers the client pool launches."""

    retry_delay: float = DEFAULT_RETRY_DELAY
    """Seconds a worker sleeps between failed dial attempts."""

    # =========================================================================
    # PROTOCOL
    # =========================================================================

    response_message: str = RESPONSE_MESSAGE
    client_message: str = CLIENT_MESSAGE

    # =========================================================================
    # SERVER INTERNALS
    # =========================================================================

    notify_queue_size: int = 0
    """
    Capacity of the handler -> tracker notification queue.
    0 means unbounded; a positive size makes handlers block in notify()
    while the tracker is behind.
    """

    # =========================================================================
    # LOGGING
    # =========================================================================

    log_level: str = "INFO"
    log_format: str = "text"
    """Either 'text' (human readable) or 'json' (one object per line)."""

    @property
    def address(self) -> str:
        """The "host:port" form used in log lines and on the CLI."""
        return format_address(self.host, self.port)

    @classmethod
    def from_env(cls) -> "TCPSocksConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        SOCKS_ADDRESS            host:port to listen on / dial (127.0.0.1:4000)
        SOCKS_MAX_CLIENTS        Client pool size (150)
        SOCKS_BUFFER_SIZE        Read buffer capacity in bytes (1024)
        SOCKS_RETRY_DELAY        Seconds between dial attempts (5)
        SOCKS_LOG_LEVEL          Logging level (INFO)
        SOCKS_LOG_FORMAT         text or json (text)
        SOCKS_NOTIFY_QUEUE_SIZE  Tracker queue capacity, 0 = unbounded (0)

        =====================================================================
        """
        host, port = parse_address(
            os.getenv("SOCKS_ADDRESS", f"{DEFAULT_HOST}:{DEFAULT_PORT}")
        )
        return cls(
            host=host,
            port=port,
            max_clients=int(os.getenv("SOCKS_MAX_CLIENTS", str(DEFAULT_MAX_CLIENTS))),
            buffer_size=int(os.getenv("SOCKS_BUFFER_SIZE", str(DEFAULT_BUFFER_SIZE))),
            retry_delay=float(os.getenv("SOCKS_RETRY_DELAY", str(DEFAULT_RETRY_DELAY))),
            notify_queue_size=int(os.getenv("SOCKS_NOTIFY_QUEUE_SIZE", "0")),
            log_level=os.getenv("SOCKS_LOG_LEVEL", "INFO"),
            log_format=os.getenv("SOCKS_LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called from the server and client pool constructors so a bad value
        fails at startup instead of halfway through 150 connections.

        Raises:
            ValueError: On the first invalid value found.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.max_clients < 1:
            raise ValueError("max_clients must be >= 1")

        if self.buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")

        if self.retry_delay < 0:
            raise ValueError("retry_delay must be >= 0")

        if self.notify_queue_size < 0:
            raise ValueError("notify_queue_size must be >= 0")

        # Both messages travel in a single read, so they have to fit in one.
        for name in ("response_message", "client_message"):
            size = len(getattr(self, name).encode("utf-8"))
            if size > self.buffer_size:
                raise ValueError(
                    f"{name} is {size} bytes, larger than buffer_size ({self.buffer_size})"
                )

        if self.log_level.upper() not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {self.log_level}")

        if self.log_format not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")
