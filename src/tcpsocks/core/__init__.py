"""
=============================================================================
CORE NETWORKING COMPONENTS
=============================================================================

The plumbing shared by the server and the client pool:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         SOCKET SERVER                                │
    │  • Owns the listening socket                                         │
    │  • Runs the accept() loop forever                                    │
    │  • Wraps each client socket in a Connection and dispatches it        │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          TASKS                                       │
    │  • spawn(): one daemon thread per handler / worker                  │
    │  • WaitGroup: join barrier for "wait until N tasks ended"            │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │                          CONNECTION                                  │
    │  • One bounded read, one write, closed exactly once                  │
    │  • Used by server handlers and client workers alike                  │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .socket_server import SocketServer
from .connection import Connection, ConnectionState, PeerClosedError
from .tasks import Task, WaitGroup, spawn

__all__ = [
    "SocketServer",     # Accept loop - owns the listening socket
    "Connection",       # One connected socket - one read, one write
    "ConnectionState",  # Enum for connection lifecycle states
    "PeerClosedError",  # Raised by Connection.read() on EOF
    "Task",             # Deferred call run by a spawned thread
    "WaitGroup",        # Join barrier
    "spawn",            # Start a task on its own daemon thread
]
