"""
=============================================================================
TCPSOCKS
=============================================================================

A very small, very fast TCP server and the client pool that load-tests it.

    Server:  accept → read one buffer → count it → reply "Message received."
    Client:  150 workers at once → dial (retry forever) → send → read reply

=============================================================================
QUICK START
=============================================================================

    # terminal 1
    python -m tcpsocks

    # terminal 2
    python -m tcpsocks client

    # from Python
    from tcpsocks import TCPServer, ClientPool, TCPSocksConfig

    config = TCPSocksConfig(port=5000, max_clients=10)
    ClientPool(config).run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import TCPSocksConfig
from .server import TCPServer, start_server
from .client import ClientPool, start_client

__all__ = [
    "TCPSocksConfig",
    "TCPServer",
    "ClientPool",
    "start_server",
    "start_client",
    "__version__",
]
