"""
Unit tests for the accept loop and listener cleanup.
"""

import logging
import socket
import threading

import pytest

from tcpsocks import TCPServer
from tcpsocks.core import Connection, SocketServer


class ScriptedListener:
    """Stands in for a listening socket; accept() plays back a script."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)

    def accept(self):
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome()
        return outcome

    def close(self):
        pass


class UnclosableListener:
    def close(self):
        raise OSError("Bad file descriptor")


@pytest.fixture
def pair():
    ours, theirs = socket.socketpair()
    yield ours, theirs
    ours.close()
    theirs.close()


class TestAcceptLoop:
    """Tests for SocketServer._accept_loop()."""

    def test_accept_error_is_logged_and_loop_continues(self, config, pair, caplog):
        """A failed accept() does not stop the next one from being served."""
        caplog.set_level(logging.ERROR, logger="tcpsocks")
        ours, _ = pair
        server = SocketServer(config)
        server._socket = ScriptedListener(
            ConnectionAbortedError("Software caused connection abort"),
            (ours, ("127.0.0.1", 5555)),
            KeyboardInterrupt(),
        )
        accepted = []

        with pytest.raises(KeyboardInterrupt):
            server._accept_loop(accepted.append)

        assert "Error accepting connection" in caplog.text
        assert len(accepted) == 1
        assert isinstance(accepted[0], Connection)
        assert accepted[0].address == ("127.0.0.1", 5555)
        assert accepted[0].buffer_size == config.buffer_size

    def test_exchange_after_accept_error_is_answered(self, config, caplog):
        """A real client still gets its reply once an accept() has failed."""
        caplog.set_level(logging.ERROR, logger="tcpsocks")
        app = TCPServer(config)
        app.tracker.start()

        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        port = listener.getsockname()[1]

        app._socket_server._socket = ScriptedListener(
            ConnectionAbortedError("Software caused connection abort"),
            listener.accept,
            KeyboardInterrupt(),
        )

        def target():
            try:
                app._socket_server._accept_loop(app._dispatch)
            except KeyboardInterrupt:
                pass

        thread = threading.Thread(target=target, daemon=True)
        thread.start()

        try:
            with socket.create_connection(("127.0.0.1", port), timeout=5.0) as s:
                s.sendall(b"Hello from client")
                assert s.recv(1024) == b"Message received."
        finally:
            thread.join(timeout=5.0)
            listener.close()

        assert not thread.is_alive()
        assert "Error accepting connection" in caplog.text
        assert app.tracker.counter.wait_for(1, timeout=5.0)


class TestCleanup:
    """Tests for releasing the listener."""

    def test_interrupt_closes_listener(self, config):
        """An exception escaping the handler closes the listening socket."""
        server = SocketServer(config)
        raised = []

        def interrupt(conn):
            conn.close()
            raise KeyboardInterrupt

        def target():
            try:
                server.start(interrupt)
            except BaseException as e:
                raised.append(e)

        thread = threading.Thread(target=target, daemon=True)
        thread.start()
        assert server.wait_until_listening(timeout=5.0)
        host, port = server.address

        with socket.create_connection((host, port), timeout=5.0):
            thread.join(timeout=5.0)

        assert not thread.is_alive()
        assert len(raised) == 1
        assert isinstance(raised[0], KeyboardInterrupt)
        assert not server.is_listening
        assert server._socket is None

        with pytest.raises(OSError):
            socket.create_connection((host, port), timeout=1.0).close()

    def test_close_failure_is_critical_and_reraised(self, config, caplog):
        caplog.set_level(logging.CRITICAL, logger="tcpsocks")
        server = SocketServer(config)
        server._socket = UnclosableListener()
        server._listening.set()

        with pytest.raises(OSError, match="Bad file descriptor"):
            server._cleanup()

        assert not server.is_listening
        assert server._socket is None
        records = [r for r in caplog.records if r.levelno == logging.CRITICAL]
        assert len(records) == 1
        assert "Error closing listener" in records[0].getMessage()
