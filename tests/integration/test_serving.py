"""
Integration tests: a real ServeApp on real sockets.

Requests go through httpx against 127.0.0.1 (or a UNIX socket); SSI
fragments come from the mocked `fragment_client`.
"""

import socket
from concurrent.futures import ThreadPoolExecutor

import httpx
import pytest

from ssiserve.core.endpoint import TcpEndpoint, UnixEndpoint
from ssiserve.server import ServeApp


@pytest.fixture
def app(serve_config, site, coordinator, fragment_client):
    serve_config.ssi = "https://fragments.test"
    app = ServeApp(serve_config, root=site, coordinator=coordinator, http_client=fragment_client)
    app.start([TcpEndpoint(port=0, host="127.0.0.1")], announce=False)
    yield app
    app.close()


@pytest.fixture
def base_url(app) -> str:
    return f"http://127.0.0.1:{app.listeners[0].port}"


@pytest.fixture
def client(base_url):
    with httpx.Client(base_url=base_url, timeout=5.0) as client:
        yield client


def raw_exchange(port: int, request: bytes) -> bytes:
    with socket.create_connection(("127.0.0.1", port), timeout=5.0) as sock:
        sock.sendall(request)
        chunks = []
        while True:
            chunk = sock.recv(65536)
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks)


class TestServing:
    """Tests for plain static serving."""

    def test_index(self, client):
        """Test GET / over a real socket."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.text == "<h1>Home</h1>\n"
        assert response.headers["content-type"] == "text/html; charset=utf-8"
        assert response.headers["server"] == "ssiserve"

    def test_binary_passthrough(self, client, site):
        """Test that binary files arrive byte for byte."""
        response = client.get("/logo.png")

        assert response.content == (site / "logo.png").read_bytes()
        assert response.headers["content-type"] == "image/png"

    def test_head(self, client):
        """Test that HEAD sends headers only."""
        response = client.head("/logo.png")

        assert response.status_code == 200
        assert response.headers["content-length"] == str(8 + 256)
        assert response.content == b""

    def test_not_found(self, client):
        """Test a 404 over the wire."""
        assert client.get("/missing.html").status_code == 404

    def test_bad_request(self, app):
        """Test that a ".." path is refused by the parser."""
        port = app.listeners[0].port
        reply = raw_exchange(port, b"GET /../secret HTTP/1.1\r\nHost: test\r\n\r\n")

        assert reply.startswith(b"HTTP/1.1 400")

    def test_keep_alive(self, client):
        """Test several requests on one connection."""
        for path in ("/", "/about.html", "/style.css"):
            response = client.get(path)
            assert response.status_code == 200
            assert response.headers["connection"] == "keep-alive"

    def test_concurrent_requests(self, base_url):
        """Test that parallel clients are all served."""
        def fetch(path):
            return httpx.get(base_url + path, timeout=5.0).status_code

        paths = ["/", "/about.html", "/docs/", "/style.css", "/logo.png"] * 4
        with ThreadPoolExecutor(max_workers=8) as executor:
            statuses = list(executor.map(fetch, paths))

        assert statuses == [200] * len(paths)


class TestSSI:
    """Tests for SSI pages end to end."""

    def test_virtual_include(self, client):
        """Test that the fragment is inlined and the charset announced."""
        response = client.get("/shop/page.shtml")

        assert response.status_code == 200
        assert "<nav>menu</nav>" in response.text
        assert "Café" in response.text
        assert response.headers["content-type"].startswith("text/shtml; charset=")
        assert "etag" not in response.headers

    def test_file_include(self, client):
        """Test a local include over the wire."""
        assert client.get("/shop/local.html").text == "<body><footer>bye</footer></body>\n"

    def test_http_10_gets_content_length(self, app):
        """Test that HTTP/1.0 peers get a fixed-length body instead of chunks."""
        port = app.listeners[0].port
        reply = raw_exchange(port, b"GET /shop/page.shtml HTTP/1.0\r\n\r\n")
        head, _, body = reply.partition(b"\r\n\r\n")

        assert b"Transfer-Encoding" not in head
        assert f"Content-Length: {len(body)}".encode() in head
        assert b"<nav>menu</nav>" in body


class TestEndpoints:
    """Tests for several endpoints on one app."""

    @pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="no UNIX domain sockets")
    def test_tcp_and_unix(self, serve_config, site, coordinator, tmp_path):
        """Test one app answering on TCP and a UNIX socket at once."""
        path = str(tmp_path / "site.sock")
        app = ServeApp(serve_config, root=site, coordinator=coordinator)
        app.start([TcpEndpoint(port=0, host="127.0.0.1"), UnixEndpoint(path=path)], announce=False)

        try:
            tcp = httpx.get(f"http://127.0.0.1:{app.listeners[0].port}/about.html", timeout=5.0)
            with httpx.Client(transport=httpx.HTTPTransport(uds=path), timeout=5.0) as unix_client:
                unix = unix_client.get("http://localhost/about.html")

            assert tcp.text == unix.text == "<h1>About</h1>\n"
        finally:
            app.close()

    def test_close_releases_everything(self, serve_config, site, coordinator):
        """Test that close() stops listeners and workers."""
        app = ServeApp(serve_config, root=site, coordinator=coordinator)
        listeners = app.start([TcpEndpoint(port=0, host="127.0.0.1")], announce=False)
        port = listeners[0].port

        app.close()

        with pytest.raises(httpx.TransportError):
            httpx.get(f"http://127.0.0.1:{port}/", timeout=1.0)
        with pytest.raises(RuntimeError):
            app.pool.submit(print)
