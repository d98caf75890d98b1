"""
Integration tests for the server over real TCP sockets.
"""

import logging
import socket
import threading
from dataclasses import replace

import pytest

from tcpsocks import TCPServer
from tcpsocks.core import Connection


def ipv6_loopback_available() -> bool:
    if not socket.has_ipv6:
        return False
    try:
        with socket.socket(socket.AF_INET6, socket.SOCK_STREAM) as s:
            s.bind(("::1", 0))
    except OSError:
        return False
    return True


class BrokenWriteSocket:
    """A socket that delivers one message and then fails every write."""

    def __init__(self, data: bytes):
        self.data = data
        self.closed = False

    def settimeout(self, timeout):
        pass

    def recv(self, size):
        return self.data[:size]

    def sendall(self, data):
        raise BrokenPipeError("Broken pipe")

    def close(self):
        self.closed = True


class TestExchange:
    """One request, one response."""

    def test_hello_gets_acknowledged(self, running_server):
        reply = running_server.exchange(b"Hello from client")

        assert reply == b"Message received."
        assert running_server.wait_for_total(1)
        assert running_server.total == 1

    def test_received_bytes_are_logged(self, running_server, caplog):
        caplog.set_level(logging.INFO, logger="tcpsocks")

        running_server.exchange(b"Hello from client")
        running_server.wait_for_total(1)

        assert "Received: Hello from client" in caplog.text

    def test_repeated_requests_each_count_once(self, running_server):
        for i in range(1, 6):
            assert running_server.exchange() == b"Message received."
            assert running_server.wait_for_total(i)
            assert running_server.total == i

    def test_any_payload_that_fits_is_accepted(self, running_server):
        assert running_server.exchange(b"x" * 1000) == b"Message received."


class TestConcurrency:
    """Many clients at once."""

    def test_concurrent_connections_counted_exactly(self, running_server):
        clients = 25
        replies = []
        lock = threading.Lock()

        def client():
            reply = running_server.exchange()
            with lock:
                replies.append(reply)

        threads = [threading.Thread(target=client) for _ in range(clients)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10.0)

        assert replies == [b"Message received."] * clients
        assert running_server.wait_for_total(clients)
        assert running_server.total == clients


class TestPeerClosed:
    """A peer that hangs up without sending anything."""

    def test_no_response_and_not_counted(self, running_server, caplog):
        caplog.set_level(logging.WARNING, logger="tcpsocks")

        with socket.create_connection(("127.0.0.1", running_server.port), timeout=5.0) as s:
            s.shutdown(socket.SHUT_WR)
            # Server closes its side without writing anything.
            assert s.recv(1024) == b""

        # A real exchange afterwards is the first (and only) one counted.
        assert running_server.exchange() == b"Message received."
        assert running_server.wait_for_total(1)
        assert running_server.total == 1
        assert "Error reading from connection" in caplog.text

    def test_abrupt_close_does_not_stop_server(self, running_server):
        for _ in range(5):
            s = socket.create_connection(("127.0.0.1", running_server.port), timeout=5.0)
            s.close()

        assert running_server.exchange() == b"Message received."


class TestStartup:
    """Bind behaviour."""

    def test_bound_port_is_reported(self, running_server):
        assert running_server.port != 0
        assert running_server.server.address[0] == "127.0.0.1"

    def test_port_in_use_is_fatal(self, config):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as occupied:
            occupied.bind(("127.0.0.1", 0))
            occupied.listen(1)
            port = occupied.getsockname()[1]

            server = TCPServer(replace(config, port=port))

            with pytest.raises(OSError):
                server.run()

            assert not server.wait_until_listening(timeout=0)

    def test_invalid_config_rejected(self, config):
        with pytest.raises(ValueError):
            TCPServer(replace(config, buffer_size=0))

    @pytest.mark.skipif(not ipv6_loopback_available(), reason="IPv6 loopback unavailable")
    def test_serves_on_ipv6_loopback(self, config, start_server):
        """An IPv6 host gets an IPv6 listener."""
        server = start_server(replace(config, host="::1"))

        assert server.server.address[0] == "::1"
        assert server.exchange() == b"Message received."
        assert server.wait_for_total(1)


class TestWriteFailure:
    """The reply cannot be delivered."""

    def test_logged_and_still_counted(self, config, caplog):
        """A connection whose read succeeded counts even if the write fails."""
        caplog.set_level(logging.WARNING, logger="tcpsocks")
        server = TCPServer(config)
        server.tracker.start()
        sock = BrokenWriteSocket(b"Hello from client")

        server.handle_connection(Connection(socket=sock, address=("127.0.0.1", 1)))

        assert "Error writing response" in caplog.text
        assert server.tracker.counter.wait_for(1, timeout=5.0)
        assert sock.closed
