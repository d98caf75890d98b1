"""
=============================================================================
CLIENT POOL
=============================================================================

Launches max_clients workers at once; each one dials the server, sends
a fixed message and reads the reply.

=============================================================================
WORKER LIFECYCLE
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   dial()                                                             │
    │     └── loop:                                                        │
    │           connect()  ── ok ──────────────────────────────┐           │
    │              │                                           │           │
    │              └── OSError → log, sleep(retry_delay), again│           │
    │                                                          ▼           │
    │   with conn:                                                         │
    │       conn.write(client_message)   ── error → log, give up           │
    │       reply = conn.read()          ── error → log, give up           │
    │       log reply                                                      │
    │                                                                      │
    │   finally: wait_group.done()        (done by the task runner)        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The dial loop has NO attempt cap. A worker pointed at a server that never
comes up retries forever, and so the pool never returns. Clients may be
started before the server; every one gets through once it is up.

A worker that fails after connecting only ends itself. Its siblings keep
going, and the pool still counts it as finished.

=============================================================================
"""

import logging
import socket
import time
from typing import Optional

from .config import TCPSocksConfig
from .core import Connection, WaitGroup, spawn
from .logs import setup_logging


logger = logging.getLogger(__name__)


def dial(config: TCPSocksConfig) -> Connection:
    """
    Connect to config.host:config.port, retrying until it works.

    Returns:
        The connected Connection. Never gives up.
    """
    while True:
        try:
            sock = socket.create_connection((config.host, config.port))
        except OSError as e:
            logger.warning(
                f"Error dialing server, retrying in {config.retry_delay}s: {e}"
            )
            time.sleep(config.retry_delay)
            continue

        return Connection(
            socket=sock,
            address=(config.host, config.port),
            buffer_size=config.buffer_size,
        )


def send_data(config: TCPSocksConfig) -> Optional[bytes]:
    """
    One full client cycle: dial, send, read one reply, close.

    Args:
        config: Where to connect and what to send.

    Returns:
        The reply bytes, or None if the exchange failed after connecting.
    """
    with dial(config) as conn:
        try:
            conn.write(config.client_message.encode("utf-8"))
        except OSError as e:
            logger.warning(f"[{conn.id}] Error sending message: {e}")
            return None

        try:
            reply = conn.read()
        except OSError as e:
            logger.warning(f"[{conn.id}] Error reading response: {e}")
            return None

        logger.info(f"[{conn.id}] Received response: {reply.decode('utf-8', errors='replace')}")
        return reply


class ClientPool:
    """
    Fan out max_clients workers and wait for all of them.

    Usage:
        pool = ClientPool(TCPSocksConfig(max_clients=10))
        pool.run()   # returns when all 10 workers are done
    """

    def __init__(self, config: Optional[TCPSocksConfig] = None):
        self.config = config or TCPSocksConfig()
        self.config.validate()

    def run(self):
        """Launch the workers and block until every one has finished."""
        setup_logging(self.config)

        wait_group = WaitGroup()

        logger.info(f"Starting {self.config.max_clients} clients against {self.config.address}")

        for i in range(self.config.max_clients):
            spawn(send_data, args=(self.config,), wait_group=wait_group, name=f"Client-{i}")

        wait_group.wait()

        logger.info(f"All {self.config.max_clients} clients finished")


def start_client(config: Optional[TCPSocksConfig] = None):
    """Run a client pool with the given (or default) configuration."""
    ClientPool(config).run()
