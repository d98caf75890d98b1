"""
=============================================================================
ACCEPT LOOP
=============================================================================

Owns the listening socket and hands every accepted connection to a
callback. The callback is expected to return immediately (the server
spawns a handler thread), so the loop is back in accept() right away.

SOCKET LIFECYCLE (Server Side):
────────────────────────────────

    1. socket()    Create the TCP socket
    2. bind()      Reserve host:port         ── failure is FATAL
    3. listen()    Start queueing connections
    4. accept()    Forever:
                     ├── error   → log, keep looping
                     └── success → wrap in Connection, dispatch
    5. close()     Only reached when something escapes the loop
                   (Ctrl+C). Failure to close is FATAL.

                    ┌───────────────────────┐
                    │   Listening Socket    │ ◄── Created once at startup
                    └───────────┬───────────┘     Never sends/receives data
                                │
        ┌───────────────────────┼───────────────────────┐
        ▼                       ▼                       ▼
    ┌───────────┐         ┌───────────┐         ┌───────────┐
    │ Handler 1 │         │ Handler 2 │         │ Handler 3 │
    └───────────┘         └───────────┘         └───────────┘

There is no shutdown(): the loop runs until the process exits.

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR: lets a restarted server bind while old connections sit in
TIME_WAIT. It does NOT allow two live servers on one port, so "port
already in use" still fails loudly at bind().

TCP_NODELAY: disables Nagle's algorithm. Every message here is a single
small write, exactly the case Nagle would delay.

=============================================================================
"""

import socket
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import TCPSocksConfig, format_address
from .connection import Connection


logger = logging.getLogger(__name__)


class SocketServer:
    """
    Low-level TCP accept loop.

    Usage:
        def dispatch(conn: Connection):
            spawn(handle, args=(conn,))

        server = SocketServer(config)
        server.start(dispatch)  # Never returns under normal operation
    """

    def __init__(self, config: TCPSocksConfig):
        """
        Args:
            config: Supplies host, port, backlog and buffer_size.

        The socket is created lazily in start().
        """
        self.config = config

        self._socket: Optional[socket.socket] = None

        # Set once bind() + listen() succeeded; lets other threads (tests,
        # embedding code) wait for the server to be reachable.
        self._listening = threading.Event()

    @property
    def is_listening(self) -> bool:
        return self._listening.is_set()

    @property
    def address(self) -> Tuple[str, int]:
        """
        The bound (host, port).

        Before start() this is the configured address; afterwards the port
        is the real one, which matters when the config asked for port 0.
        """
        if self._socket is not None and self.is_listening:
            host, port = self._socket.getsockname()[:2]
            return (host, port)
        return (self.config.host, self.config.port)

    def wait_until_listening(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the socket is bound and listening.

        Returns:
            True once listening, False on timeout.
        """
        return self._listening.wait(timeout)

    def _create_socket(self) -> socket.socket:
        """
        Create the TCP socket and set its options.

        The address family comes from getaddrinfo(), so "127.0.0.1" gets an
        IPv4 socket and "::1" an IPv6 one.
        """
        family = socket.getaddrinfo(
            self.config.host,
            self.config.port,
            type=socket.SOCK_STREAM,
            flags=socket.AI_PASSIVE,
        )[0][0]

        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        return sock

    def start(self, connection_handler: Callable[[Connection], None]):
        """
        Bind, listen and run the accept loop.

        Args:
            connection_handler: Called with every accepted Connection. Must
                                not block; it is run on the accept thread.

        Raises:
            OSError: If the address cannot be bound or listened on. The
                     server cannot do anything useful without it, so this
                     is left to terminate the process.
        """
        try:
            self._socket = self._create_socket()
            self._socket.bind((self.config.host, self.config.port))
            self._socket.listen(self.config.backlog)
        except OSError as e:
            logger.error(f"Error starting server on {self.config.address}: {e}")
            if self._socket is not None:
                self._socket.close()
                self._socket = None
            raise

        self._listening.set()

        logger.info(f"Server started on {format_address(*self.address)}")

        try:
            self._accept_loop(connection_handler)
        finally:
            self._cleanup()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        """
        Accept connections forever.

        ┌─────────────────────────────────────────────────────────────────┐
        │   while True:                                                    │
        │       accept()          BLOCKS until a client connects           │
        │         ├── OSError  → log, continue                             │
        │         └── ok       → Connection(...) → connection_handler()    │
        └─────────────────────────────────────────────────────────────────┘

        An accept error (ECONNABORTED, EMFILE, ...) only costs the one
        connection it was about; the loop keeps going.
        """
        while True:
            try:
                client_socket, client_address = self._socket.accept()
            except OSError as e:
                logger.error(f"Error accepting connection: {e}")
                continue

            conn = Connection(
                socket=client_socket,
                address=client_address[:2],
                buffer_size=self.config.buffer_size,
            )
            logger.debug(f"[{conn.id}] Accepted connection from {conn.peer}")

            connection_handler(conn)

    def _cleanup(self):
        """
        Close the listening socket.

        Only reached when an exception (usually KeyboardInterrupt) escapes
        the accept loop. Not being able to release the port is fatal.
        """
        self._listening.clear()

        if self._socket is None:
            return

        try:
            self._socket.close()
        except OSError as e:
            logger.critical(f"Error closing listener: {e}")
            raise
        finally:
            self._socket = None

        logger.info("Listener closed")
