"""
=============================================================================
TCPSOCKS CLI ENTRY POINT
=============================================================================

    # Run the server (the root command)
    python -m tcpsocks

    # Run the client pool
    python -m tcpsocks client

    # Smaller, faster load test against another address
    python -m tcpsocks client --address 10.0.0.5:4000 --clients 20 --retry-delay 1

    # Listen on all interfaces, JSON logs
    python -m tcpsocks --address 0.0.0.0:4000 --log-format json

    # IPv6 loopback, handlers block once 100 notifications are pending
    python -m tcpsocks --address [::1]:4000 --notify-queue-size 100

Options not given on the command line fall back to the SOCKS_* environment
variables (see TCPSocksConfig.from_env), then to the built-in defaults.

=============================================================================
"""

import argparse
import sys
from dataclasses import replace
from typing import Optional, Sequence

from . import __version__
from .config import TCPSocksConfig, parse_address, LOG_LEVELS, LOG_FORMATS
from .server import start_server
from .client import start_client


def _address(value: str):
    try:
        return parse_address(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argument parser.

    Shared options live on a parent parser so they are accepted both before
    and after the `client` subcommand. They default to SUPPRESS: an option
    that was not given leaves no attribute, so the subparser cannot
    overwrite a value given before the subcommand.
    """
    common = argparse.ArgumentParser(add_help=False)

    common.add_argument(
        "--address", "-a",
        type=_address,
        default=argparse.SUPPRESS,
        help="host:port to listen on / connect to (default: 127.0.0.1:4000)"
    )

    common.add_argument(
        "--buffer-size", "-b",
        type=int,
        default=argparse.SUPPRESS,
        help="Read buffer capacity in bytes (default: 1024)"
    )

    common.add_argument(
        "--log-level", "-l",
        choices=LOG_LEVELS,
        default=argparse.SUPPRESS,
        help="Logging level (default: INFO)"
    )

    common.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        default=argparse.SUPPRESS,
        help="Log output format (default: text)"
    )

    parser = argparse.ArgumentParser(
        prog="tcpsocks",
        description="Socks is a very fast tcp server",
        parents=[common],
    )

    parser.add_argument(
        "--version", "-v",
        action="version",
        version=f"tcpsocks {__version__}"
    )

    parser.add_argument(
        "--notify-queue-size",
        type=int,
        default=argparse.SUPPRESS,
        help="Capacity of the connection-tracker queue, 0 for unbounded (default: 0)"
    )

    subcommands = parser.add_subparsers(dest="command", metavar="{client}")

    client = subcommands.add_parser(
        "client",
        parents=[common],
        help="Start tcp client",
        description="Start a pool of tcp clients against the server",
    )

    client.add_argument(
        "--clients", "-c",
        type=int,
        default=argparse.SUPPRESS,
        help="Number of concurrent clients (default: 150)"
    )

    client.add_argument(
        "--retry-delay", "-r",
        type=float,
        default=argparse.SUPPRESS,
        help="Seconds to wait between failed connection attempts (default: 5)"
    )

    return parser


def config_from_args(args: argparse.Namespace) -> TCPSocksConfig:
    """Environment config with every option given on the command line applied."""
    config = TCPSocksConfig.from_env()
    overrides = {}

    if hasattr(args, "address"):
        overrides["host"], overrides["port"] = args.address
    if hasattr(args, "buffer_size"):
        overrides["buffer_size"] = args.buffer_size
    if hasattr(args, "log_level"):
        overrides["log_level"] = args.log_level
    if hasattr(args, "log_format"):
        overrides["log_format"] = args.log_format
    if hasattr(args, "clients"):
        overrides["max_clients"] = args.clients
    if hasattr(args, "retry_delay"):
        overrides["retry_delay"] = args.retry_delay
    if hasattr(args, "notify_queue_size"):
        overrides["notify_queue_size"] = args.notify_queue_size

    return replace(config, **overrides)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI entry point.

    Returns:
        Process exit status: 0 on a clean client run, 1 on a fatal error,
        130 on Ctrl+C.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args)

        if args.command == "client":
            start_client(config)
        else:
            start_server(config)

    except KeyboardInterrupt:
        return 130
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
