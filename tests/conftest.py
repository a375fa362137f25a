"""
pytest configuration and fixtures.
"""

import socket
import sys
from pathlib import Path
from typing import Generator

import httpx
import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ssiserve.config import ServeConfig
from ssiserve.shutdown import ShutdownCoordinator


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request for a page."""
    return (
        b"GET /docs/index.html?lang=en HTTP/1.1\r\n"
        b"Host: localhost:5000\r\n"
        b"User-Agent: pytest\r\n"
        b'If-None-Match: "1718445600-1024"\r\n'
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with a form body."""
    body = b"name=John&email=john%40example.com"
    return (
        b"POST /contact HTTP/1.1\r\n"
        b"Host: localhost:5000\r\n"
        b"Content-Type: application/x-www-form-urlencoded\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """
    A small site:

        index.html            plain page
        about.html            reachable as /about/
        style.css
        logo.png              binary
        docs/index.html       directory index
        shop/page.shtml       page with a virtual include
        shop/local.html       page with a file include
        parts/footer.html     fragment for file includes
        empty/                directory without index
    """
    (tmp_path / "index.html").write_text("<h1>Home</h1>\n", encoding="utf-8")
    (tmp_path / "about.html").write_text("<h1>About</h1>\n", encoding="utf-8")
    (tmp_path / "style.css").write_text("body { color: #333; }\n", encoding="utf-8")
    (tmp_path / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n" + bytes(range(256)))

    (tmp_path / "docs").mkdir()
    (tmp_path / "docs" / "index.html").write_text("<h1>Docs</h1>\n", encoding="utf-8")

    (tmp_path / "shop").mkdir()
    (tmp_path / "shop" / "page.shtml").write_text(
        '<body><!--#include virtual="/nav.html" --><p>Café</p></body>\n', encoding="utf-8"
    )
    (tmp_path / "shop" / "local.html").write_text(
        '<body><!--#include file="parts/footer.html" --></body>\n', encoding="utf-8"
    )

    (tmp_path / "parts").mkdir()
    (tmp_path / "parts" / "footer.html").write_text("<footer>bye</footer>", encoding="utf-8")

    (tmp_path / "empty").mkdir()
    return tmp_path


@pytest.fixture
def fragment_client() -> Generator[httpx.Client, None, None]:
    """
    httpx client whose "remote origin" serves a few fragments:

        /nav.html      <nav>menu</nav>
        /latin.html    text/html; charset=iso-8859-1 body "Übersicht"
        anything else  404
    """
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/nav.html":
            return httpx.Response(200, text="<nav>menu</nav>")
        if request.url.path == "/latin.html":
            return httpx.Response(
                200,
                content="Übersicht".encode("iso-8859-1"),
                headers={"Content-Type": "text/html; charset=iso-8859-1"},
            )
        return httpx.Response(404, text="missing")

    client = httpx.Client(transport=httpx.MockTransport(handler))
    yield client
    client.close()


@pytest.fixture
def serve_config(site: Path) -> ServeConfig:
    """Config serving the `site` fixture with small thread counts."""
    return ServeConfig(
        public=str(site),
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        keep_alive_timeout=1.0,
        clipboard=False,
    )


@pytest.fixture
def coordinator() -> Generator[ShutdownCoordinator, None, None]:
    """A coordinator that is always run at teardown."""
    coordinator = ShutdownCoordinator(exit_fn=lambda status: None)
    yield coordinator
    coordinator.run()
