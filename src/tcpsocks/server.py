"""
=============================================================================
TCP SERVER
=============================================================================

Ties the pieces together: an accept loop, one handler thread per
connection, and the connection tracker.

=============================================================================
REQUEST LIFECYCLE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer.accept()                                              │
    │          │                                                           │
    │          ▼                                                           │
    │   _dispatch(conn) ──► spawn(handle_connection)   (returns at once)   │
    │                               │                                      │
    │                               ▼                                      │
    │                        with conn:                                    │
    │                           data = conn.read()   ─── error → log, done │
    │                           tracker.notify()                           │
    │                           conn.write(reply)    ─── error → log, done │
    │                        (closed here on every path)                   │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ERROR HANDLING
=============================================================================

    bind/listen fails       FATAL     OSError propagates out of run()
    accept fails            logged    accept loop keeps going
    read fails / peer EOF   logged    handler ends, no reply, not counted
    write fails             logged    handler ends (already counted)

The tracker is started BEFORE the accept loop so the very first handler
already has someone to notify.

=============================================================================
"""

import logging
from typing import Optional

from .config import TCPSocksConfig
from .core import SocketServer, Connection, spawn
from .counter import ConnectionTracker
from .logs import setup_logging


logger = logging.getLogger(__name__)


class TCPServer:
    """
    Accepts connections, reads one message, acknowledges it, counts it.

    Usage:
        server = TCPServer(TCPSocksConfig(port=4000))
        server.run()   # blocks forever

    From another thread (tests):
        server.wait_until_listening(5)
        host, port = server.address
        server.tracker.counter.wait_for(3, timeout=5)
    """

    def __init__(self, config: Optional[TCPSocksConfig] = None):
        """
        Args:
            config: Server configuration. Defaults to 127.0.0.1:4000.
        """
        self.config = config or TCPSocksConfig()
        self.config.validate()

        self._socket_server = SocketServer(self.config)
        self.tracker = ConnectionTracker(queue_size=self.config.notify_queue_size)

        self._response = self.config.response_message.encode("utf-8")

    @property
    def address(self):
        """Bound (host, port); see SocketServer.address."""
        return self._socket_server.address

    @property
    def total_connections(self) -> int:
        return self.tracker.total

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        return self._socket_server.wait_until_listening(timeout)

    def run(self):
        """
        Start the tracker, then accept connections forever.

        Raises:
            OSError: If the listen address is unavailable.
        """
        setup_logging(self.config)

        self.tracker.start()
        self._socket_server.start(self._dispatch)

    def _dispatch(self, conn: Connection):
        """Hand the connection to its own handler thread."""
        spawn(self.handle_connection, args=(conn,), name=f"Handler-{conn.id}")

    def handle_connection(self, conn: Connection):
        """
        Serve one connection: one read, one notify, one write, close.

        Runs in a handler thread. Never raises for I/O problems; those are
        logged and end this connection only.
        """
        with conn:
            try:
                data = conn.read()
            except OSError as e:
                logger.warning(f"[{conn.id}] Error reading from connection: {e}")
                return

            logger.info(f"[{conn.id}] Received: {data.decode('utf-8', errors='replace')}")
            self.tracker.notify()

            try:
                conn.write(self._response)
            except OSError as e:
                logger.warning(f"[{conn.id}] Error writing response: {e}")


def start_server(config: Optional[TCPSocksConfig] = None):
    """Run a server with the given (or default) configuration. Blocks forever."""
    TCPServer(config).run()
