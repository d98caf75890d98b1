"""
=============================================================================
CONNECTION
=============================================================================

Wraps one connected TCP socket. Used on both sides: the server wraps
each socket returned by accept(), the client wraps the socket it dialed.

=============================================================================
ONE READ, ONE WRITE
=============================================================================

TCP is a byte stream, not a message protocol - a recv() may return less
than the peer sent. This protocol side-steps the problem by keeping every
message smaller than one buffer and doing exactly ONE recv() per side:

    Client                                   Server
      │                                        │
      │  "Hello from client"  ───────────────► │  read()   (≤ buffer_size)
      │                                        │
      │  read()  ◄───────────────  "Message received."    write()
      │                                        │
    close()                                  close()

There is no length prefix and no delimiter. Whatever the single recv()
returns IS the message.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──────► READING ──────► WRITING ──────► CLOSED
     │             │               │              ▲
     └─────────────┴───────────────┴──────────────┘
                 (error on any step: close)

A connection is owned by exactly one thread (the server handler or the
client worker that created it) and is closed exactly once.

=============================================================================
"""

import socket
import time
import logging
import uuid
from enum import Enum
from dataclasses import dataclass, field
from typing import Tuple

from ..config import format_address


logger = logging.getLogger(__name__)


class PeerClosedError(ConnectionError):
    """The peer closed its side before sending any data."""


class ConnectionState(Enum):
    """Connection lifecycle states, mostly for logging."""
    NEW = "new"
    READING = "reading"
    WRITING = "writing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    A connected TCP socket plus the little bit of bookkeeping we need.

    Attributes:
        socket: The connected socket.
        address: Peer (ip, port) tuple.
        buffer_size: Capacity of the single read().
        id: Short identifier used to correlate log lines.
        state: Current lifecycle state.
        created_at: When the connection was accepted or dialed.
    """

    socket: socket.socket
    address: Tuple[str, int]
    buffer_size: int = 1024

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        # No deadlines anywhere: reads and writes block until the peer acts.
        self.socket.settimeout(None)

    @property
    def peer(self) -> str:
        """Peer address as "ip:port" ("[ip]:port" for IPv6)."""
        return format_address(*self.address)

    @property
    def closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def age(self) -> float:
        """Get connection age in seconds."""
        return time.time() - self.created_at

    def read(self) -> bytes:
        """
        Perform exactly one bounded read.

        Returns:
            Between 1 and buffer_size bytes.

        Raises:
            PeerClosedError: The peer closed the connection without sending.
            OSError: Any socket-level failure (reset, broken pipe, ...).
        """
        self.state = ConnectionState.READING

        data = self.socket.recv(self.buffer_size)
        if not data:
            raise PeerClosedError(f"connection closed by peer {self.peer}")

        return data

    def write(self, data: bytes) -> None:
        """
        Send all of `data`.

        sendall() loops internally until every byte is handed to the
        kernel, so a short send can never truncate the reply.

        Raises:
            OSError: If the peer has gone away.
        """
        self.state = ConnectionState.WRITING
        self.socket.sendall(data)

    def close(self):
        """
        Close the socket. Safe to call more than once; only the first call
        touches the socket.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSED

        try:
            self.socket.close()
        except OSError as e:
            logger.debug(f"[{self.id}] Error closing connection: {e}")

        logger.debug(f"[{self.id}] Connection to {self.peer} closed after {self.age:.3f}s")

    def __enter__(self):
        """
        Context manager entry.

            with conn:
                data = conn.read()
                conn.write(reply)
        """
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - ensure connection is closed."""
        self.close()
        return False  # Don't suppress exceptions
