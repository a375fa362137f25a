"""
Unit tests for listener binding, the port fallback and announcing.
"""

import logging
import os
import socket
import sys

import pytest

from ssiserve.core.endpoint import PipeEndpoint, TcpEndpoint, UnixEndpoint
from ssiserve.listener import BindError, Listener, ListenerState, is_address_in_use
from ssiserve.presentation import render_banner


def close_connection(conn) -> None:
    conn.close()


def make_listener(endpoint, serve_config, coordinator) -> Listener:
    return Listener(endpoint, serve_config, close_connection, coordinator)


class TestPortFallback:
    """Tests for the EADDRINUSE retry."""

    def test_bare_port_moves(self, serve_config, coordinator, free_port):
        """Test that a taken bare port is replaced by an OS-chosen one."""
        first = make_listener(TcpEndpoint(port=free_port, bare=True), serve_config, coordinator).start()
        second = make_listener(TcpEndpoint(port=free_port, bare=True), serve_config, coordinator).start()

        assert first.port == free_port
        assert second.previous_port == free_port
        assert second.port not in (None, free_port)
        assert second.requested.port == free_port

    def test_explicit_uri_does_not_move(self, serve_config, coordinator, free_port):
        """Test that tcp://host:port conflicts are fatal."""
        endpoint = TcpEndpoint(port=free_port, host="127.0.0.1")
        make_listener(endpoint, serve_config, coordinator).start()
        second = make_listener(endpoint, serve_config, coordinator)

        with pytest.raises(BindError) as exc_info:
            second.start()

        assert is_address_in_use(exc_info.value.cause)
        assert second.state == ListenerState.FAILED
        assert f"Cannot listen on tcp://127.0.0.1:{free_port}" in str(exc_info.value)

    def test_free_port_does_not_move(self, serve_config, coordinator, free_port):
        """Test that no fallback happens when the port is free."""
        listener = make_listener(TcpEndpoint(port=free_port, bare=True), serve_config, coordinator).start()

        assert listener.previous_port is None
        assert listener.port == free_port


class TestAddresses:
    """Tests for the announced addresses."""

    def test_wildcard_shows_localhost(self, serve_config, coordinator):
        """Test that all-interface binds are shown as localhost."""
        listener = make_listener(TcpEndpoint(port=0), serve_config, coordinator).start()

        assert listener.local_address == f"http://localhost:{listener.port}"

    def test_specific_host(self, serve_config, coordinator):
        """Test that a specific host is shown as bound, without a network address."""
        listener = make_listener(TcpEndpoint(port=0, host="127.0.0.1"), serve_config, coordinator).start()

        assert listener.local_address == f"http://127.0.0.1:{listener.port}"
        assert listener.network_address is None

    def test_announce_without_terminal(self, serve_config, coordinator, caplog):
        """Test the log line used when stdout is not a terminal."""
        listener = make_listener(TcpEndpoint(port=0, host="127.0.0.1"), serve_config, coordinator).start()

        with caplog.at_level(logging.INFO):
            listener.announce(interactive=False)

        assert f"Accepting connections at http://127.0.0.1:{listener.port}" in caplog.text

    def test_announce_moved_port(self, serve_config, coordinator, free_port, caplog):
        """Test the moved-port warning in the log line."""
        make_listener(TcpEndpoint(port=free_port, bare=True), serve_config, coordinator).start()
        moved = make_listener(TcpEndpoint(port=free_port, bare=True), serve_config, coordinator).start()

        moved.announce(interactive=False)

        assert f"This port was picked because {free_port} is in use." in caplog.text

    def test_banner_on_terminal(self, serve_config, coordinator, capsys):
        """Test that interactive mode prints the boxed banner."""
        listener = make_listener(TcpEndpoint(port=0, host="127.0.0.1"), serve_config, coordinator).start()

        listener.announce(interactive=True)

        out = capsys.readouterr().out
        assert "Serving!" in out
        assert listener.local_address in out


class TestBanner:
    """Tests for render_banner()."""

    def test_local_only(self):
        """Test the layout without a network address."""
        banner = render_banner("http://127.0.0.1:5000")

        assert "Local:  http://127.0.0.1:5000" in banner
        assert "On Your Network" not in banner

    def test_with_network_and_notes(self):
        """Test every optional line together."""
        banner = render_banner(
            "http://localhost:5000", "http://10.0.0.2:5000",
            previous_port=3000, clipboard_note="Copied local address to clipboard!",
        )

        assert "- Local:            http://localhost:5000" in banner
        assert "- On Your Network:  http://10.0.0.2:5000" in banner
        assert "This port was picked because 3000 is in use." in banner
        assert "Copied local address to clipboard!" in banner

    def test_box_is_rectangular(self):
        """Test that every line of the box has the same width."""
        lines = render_banner("http://localhost:5000", "http://10.0.0.2:5000").splitlines()
        assert len({len(line) for line in lines}) == 1


class TestClosing:
    """Tests for close()."""

    def test_close_is_idempotent(self, serve_config, coordinator):
        """Test that closing twice is harmless and frees the port."""
        listener = make_listener(TcpEndpoint(port=0, host="127.0.0.1"), serve_config, coordinator).start()
        port = listener.port

        listener.close()
        listener.close()

        assert listener.state == ListenerState.CLOSED
        assert listener.port is None
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as probe:
            probe.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            probe.bind(("127.0.0.1", port))

    def test_coordinator_closes_listener(self, serve_config, coordinator):
        """Test that the shutdown sequence reaches every listener."""
        listener = make_listener(TcpEndpoint(port=0, host="127.0.0.1"), serve_config, coordinator).start()

        coordinator.run()

        assert listener.state == ListenerState.CLOSED

    @pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="no UNIX domain sockets")
    def test_unix_socket(self, serve_config, coordinator, tmp_path):
        """Test binding a UNIX socket and removing its file on close."""
        path = str(tmp_path / "serve.sock")
        listener = make_listener(UnixEndpoint(path=path), serve_config, coordinator).start()

        assert os.path.exists(path)
        assert listener.local_address == path

        listener.close()

        assert not os.path.exists(path)

    @pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="no UNIX domain sockets")
    def test_stale_unix_socket_is_replaced(self, serve_config, coordinator, tmp_path):
        """Test that a socket file left by an earlier run does not block binding."""
        path = str(tmp_path / "stale.sock")
        stale = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        stale.bind(path)
        stale.close()

        listener = make_listener(UnixEndpoint(path=path), serve_config, coordinator).start()

        assert listener.state == ListenerState.SERVING

    @pytest.mark.skipif(sys.platform == "win32", reason="pipes work on Windows")
    def test_pipe_elsewhere(self, serve_config, coordinator):
        """Test that named pipes fail cleanly off Windows."""
        with pytest.raises(BindError):
            make_listener(PipeEndpoint(path="\\\\.\\pipe\\ssiserve"), serve_config, coordinator).start()
