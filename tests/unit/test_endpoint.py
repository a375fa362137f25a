"""
Unit tests for listen endpoint parsing.
"""

import pytest

from ssiserve.core.endpoint import (
    DEFAULT_PORT,
    EndpointError,
    InvalidEndpoint,
    PipeEndpoint,
    TcpEndpoint,
    UnixEndpoint,
    UnknownScheme,
    parse_endpoint,
)


class TestBarePorts:
    """Tests for plain port numbers."""

    def test_bare_port(self):
        """Test that a number yields a bare TCP endpoint on all interfaces."""
        assert parse_endpoint("8080") == TcpEndpoint(port=8080, host=None, bare=True)

    def test_whitespace_is_ignored(self):
        """Test surrounding whitespace around a number."""
        assert parse_endpoint(" 3000 ").port == 3000

    def test_zero_is_kept(self):
        """Test that port 0 (OS picks) is accepted."""
        endpoint = parse_endpoint("0")
        assert endpoint.port == 0
        assert endpoint.bare

    @pytest.mark.parametrize("value", ["65536", "-1", "99999"])
    def test_out_of_range(self, value):
        """Test that ports outside 0..65535 are rejected."""
        with pytest.raises(InvalidEndpoint):
            parse_endpoint(value)


class TestTcpUris:
    """Tests for tcp:// endpoints."""

    def test_host_and_port(self):
        """Test a hostname with an explicit port."""
        assert parse_endpoint("tcp://localhost:1234") == TcpEndpoint(port=1234, host="localhost")

    def test_default_port(self):
        """Test that a missing port falls back to 5000."""
        endpoint = parse_endpoint("tcp://0.0.0.0")
        assert endpoint.port == DEFAULT_PORT
        assert endpoint.host == "0.0.0.0"
        assert not endpoint.bare

    def test_explicit_zero_port(self):
        """Test that tcp://host:0 keeps port 0 instead of defaulting."""
        assert parse_endpoint("tcp://127.0.0.1:0").port == 0

    def test_empty_host_means_all_interfaces(self):
        """Test tcp://:8080."""
        assert parse_endpoint("tcp://:8080") == TcpEndpoint(port=8080, host=None)

    def test_scheme_is_case_insensitive(self):
        """Test TCP:// in capitals."""
        assert parse_endpoint("TCP://localhost:80").port == 80

    def test_ipv6_literal(self):
        """Test that brackets are stripped for binding and restored for display."""
        endpoint = parse_endpoint("tcp://[::1]:8080")

        assert endpoint.host == "::1"
        assert endpoint.port == 8080
        assert endpoint.authority == "[::1]:8080"
        assert str(endpoint) == "tcp://[::1]:8080"

    def test_non_numeric_port(self):
        """Test that a port that is not a number is rejected."""
        with pytest.raises(InvalidEndpoint):
            parse_endpoint("tcp://localhost:http")


class TestUnixAndPipe:
    """Tests for unix: and pipe: endpoints."""

    def test_unix_path(self):
        """Test a UNIX socket path."""
        assert parse_endpoint("unix:/tmp/serve.sock") == UnixEndpoint(path="/tmp/serve.sock")

    def test_unix_with_empty_authority(self):
        """Test the unix:///path spelling."""
        assert parse_endpoint("unix:///var/run/serve.sock").path == "/var/run/serve.sock"

    def test_unix_without_path(self):
        """Test that unix: needs a path."""
        with pytest.raises(InvalidEndpoint):
            parse_endpoint("unix:")

    def test_pipe(self):
        """Test a Windows named pipe."""
        assert parse_endpoint("pipe:\\\\.\\pipe\\Serve") == PipeEndpoint(path="\\\\.\\pipe\\Serve")

    def test_pipe_needs_prefix(self):
        """Test that pipes outside \\\\.\\ are rejected."""
        with pytest.raises(InvalidEndpoint):
            parse_endpoint("pipe:Serve")


class TestUnknownSchemes:
    """Tests for unsupported input."""

    def test_http_scheme(self):
        """Test that http: is not a listen scheme."""
        with pytest.raises(UnknownScheme) as exc_info:
            parse_endpoint("http://localhost:80")

        assert exc_info.value.scheme == "http"
        assert "Unknown --listen endpoint scheme (protocol): http" in str(exc_info.value)

    def test_no_scheme(self):
        """Test a host name on its own."""
        with pytest.raises(UnknownScheme):
            parse_endpoint("localhost")

    def test_errors_are_value_errors(self):
        """Test the exception hierarchy."""
        assert issubclass(InvalidEndpoint, EndpointError)
        assert issubclass(UnknownScheme, EndpointError)
        assert issubclass(EndpointError, ValueError)
