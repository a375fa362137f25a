"""
Unit tests for the file responder.
"""

import os
from pathlib import Path

import httpx
import pytest

from ssiserve.config import HeaderRule, Redirect, Rewrite, ServeConfig
from ssiserve.handlers.static import FileResponder
from ssiserve.http.request import parse_request
from ssiserve.http.response import HTTPStatus
from ssiserve.transform.pipeline import ResponseTransform


def get(path: str, *headers: str, method: str = "GET"):
    lines = [f"{method} {path} HTTP/1.1", "Host: test", *headers, "", ""]
    return parse_request("\r\n".join(lines).encode())


def head(path: str, *headers: str):
    return get(path, *headers, method="HEAD")


def body_of(response) -> bytes:
    return response.body if not response.is_streaming else b"".join(response.body)


def make_responder(site: Path, fragment_client=None, ssi=None, **options) -> FileResponder:
    config = ServeConfig(public=str(site), ssi=ssi, **options)
    transform = ResponseTransform(ssi=ssi, charset=config.charset, root=site, client=fragment_client)
    return FileResponder(config, site, transform)


@pytest.fixture
def responder(site) -> FileResponder:
    return make_responder(site)


class TestCandidateLookup:
    """Tests for mapping request paths to files."""

    def test_root_index(self, responder):
        """Test that / serves index.html."""
        response = responder.handle(get("/"))

        assert response.status == HTTPStatus.OK
        assert body_of(response) == b"<h1>Home</h1>\n"

    def test_directory_index(self, responder):
        """Test that /docs/ serves docs/index.html."""
        assert body_of(responder.handle(get("/docs/"))) == b"<h1>Docs</h1>\n"

    def test_html_candidate(self, responder):
        """Test that /about/ falls through to about.html."""
        response = responder.handle(get("/about/"))

        assert response.status == HTTPStatus.OK
        assert body_of(response) == b"<h1>About</h1>\n"

    def test_missing_trailing_slash_redirects(self, responder):
        """Test the 301 to the slashed form, query kept."""
        response = responder.handle(get("/docs?x=1"))

        assert response.status == HTTPStatus.MOVED_PERMANENTLY
        assert response.get_header("Location") == "/docs/?x=1"

    def test_plain_404(self, responder):
        """Test a missing file without a custom 404 page."""
        response = responder.handle(get("/nope.html"))

        assert response.status == HTTPStatus.NOT_FOUND
        assert b"/nope.html" in body_of(response)

    def test_custom_404_page(self, site):
        """Test that 404.html from the root is used for misses."""
        (site / "404.html").write_text("<h1>Lost</h1>", encoding="utf-8")
        response = make_responder(site).handle(get("/nope.html"))

        assert response.status == HTTPStatus.NOT_FOUND
        assert body_of(response) == b"<h1>Lost</h1>"

    def test_lookup_error_counts_as_missing(self, responder, monkeypatch):
        """Test that an OSError while probing a candidate is a miss, not a crash."""
        def broken_exists(self):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(Path, "exists", broken_exists)

        assert responder.find(responder.root / "about") is None

    def test_traversal_is_clamped(self, responder):
        """Test that leading .. segments cannot climb above the root."""
        assert responder._inside_root("/../../etc/passwd") == responder.root / "etc" / "passwd"

    def test_method_not_allowed(self, responder, sample_post_request):
        """Test that only GET and HEAD are served."""
        response = responder.handle(parse_request(sample_post_request))

        assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
        assert response.get_header("Allow") == "GET, HEAD"


class TestRules:
    """Tests for configured rewrites, redirects and header rules."""

    def test_single_page_rewrite(self, site):
        """Test that --single serves index.html for unknown paths."""
        responder = make_responder(site, rewrites=[Rewrite("**", "/index.html")])
        response = responder.handle(get("/app/settings/"))

        assert response.status == HTTPStatus.OK
        assert body_of(response) == b"<h1>Home</h1>\n"

    def test_rewrite_only_when_missing(self, site):
        """Test that existing files win over rewrites."""
        responder = make_responder(site, rewrites=[Rewrite("**", "/index.html")])

        assert body_of(responder.handle(get("/about.html"))) == b"<h1>About</h1>\n"

    def test_redirect(self, site):
        """Test a configured temporary redirect."""
        responder = make_responder(site, redirects=[Redirect("/old.html", "/about.html", 302)])
        response = responder.handle(get("/old.html"))

        assert response.status == HTTPStatus.FOUND
        assert response.get_header("Location") == "/about.html"

    def test_header_rules_in_order(self, site):
        """Test that later rules override earlier ones for the same header."""
        responder = make_responder(site, headers=[
            HeaderRule("**/*.css", {"Cache-Control": "max-age=60", "X-Rule": "first"}),
            HeaderRule("/style.css", {"X-Rule": "second"}),
        ])
        response = responder.handle(get("/style.css"))

        assert response.get_header("Cache-Control") == "max-age=60"
        assert response.get_header("X-Rule") == "second"

    def test_charset_rule_comes_last(self, site):
        """Test that the per-request Content-Type beats a configured one."""
        responder = make_responder(site, headers=[HeaderRule("**", {"Content-Type": "text/plain"})])
        response = responder.handle(get("/about.html"))

        assert response.get_header("Content-Type") == "text/html; charset=utf-8"

    def test_binary_keeps_mime_type(self, responder):
        """Test that binary files get their MIME type and exact length."""
        response = responder.handle(get("/logo.png"))

        assert response.get_header("Content-Type") == "image/png"
        assert response.get_header("Content-Length") == str(8 + 256)


class TestSymlinks:
    """Tests for the symlink policy."""

    @pytest.fixture
    def linked_site(self, site, tmp_path_factory):
        outside = tmp_path_factory.mktemp("outside")
        (outside / "secret.html").write_text("secret", encoding="utf-8")
        try:
            os.symlink(outside / "secret.html", site / "link.html")
        except (OSError, NotImplementedError):
            pytest.skip("symlinks not supported here")
        return site

    def test_refused_by_default(self, linked_site):
        """Test that a symlink answers 404 when symlinks are off."""
        response = make_responder(linked_site).handle(get("/link.html"))
        assert response.status == HTTPStatus.NOT_FOUND

    def test_followed_when_enabled(self, linked_site):
        """Test that --symlinks serves the link target."""
        response = make_responder(linked_site, symlinks=True).handle(get("/link.html"))

        assert response.status == HTTPStatus.OK
        assert body_of(response) == b"secret"


class TestCaching:
    """Tests for ETag handling."""

    def test_etag_and_304(self, responder):
        """Test a conditional request with the ETag we handed out."""
        first = responder.handle(get("/style.css"))
        etag = first.get_header("ETag")
        assert etag

        second = responder.handle(get("/style.css", f"If-None-Match: {etag}"))

        assert second.status == HTTPStatus.NOT_MODIFIED
        assert body_of(second) == b""

    def test_etag_disabled(self, site):
        """Test that etag=False sends no ETag."""
        response = make_responder(site, etag=False).handle(get("/style.css"))
        assert response.get_header("ETag") is None

    def test_rewritten_pages_have_no_etag(self, site, fragment_client):
        """Test that SSI pages are always sent in full."""
        responder = make_responder(site, fragment_client, ssi="https://fragments.test")
        response = responder.handle(get("/shop/page.shtml"))

        assert response.get_header("ETag") is None
        assert response.get_header("Content-Length") is None
        assert b"<nav>menu</nav>" in body_of(response)


class TestSSIPages:
    """Tests for pages served through the SSI rewrite."""

    def test_shtml_content_type(self, site, fragment_client):
        """Test the text/<ext> Content-Type for shtml pages."""
        responder = make_responder(site, fragment_client, ssi="https://fragments.test")
        response = responder.handle(get("/shop/page.shtml"))

        assert response.get_header("Content-Type").startswith("text/shtml; charset=")

    def test_file_include(self, site, fragment_client):
        """Test <!--#include file --> relative to the served root."""
        responder = make_responder(site, fragment_client, ssi="https://fragments.test")

        assert body_of(responder.handle(get("/shop/local.html"))) == b"<body><footer>bye</footer></body>\n"

    def test_without_ssi_directives_stay(self, responder):
        """Test that without --ssi the page is sent as stored."""
        body = body_of(responder.handle(get("/shop/page.shtml")))
        assert b"<!--#include" in body

    def test_head_fetches_no_fragments(self, site):
        """Test that HEAD on an SSI page answers with headers and leaves the fragment source alone."""
        fetched = []

        def handler(request):
            fetched.append(request.url.path)
            return httpx.Response(200, text="<nav>menu</nav>")

        client = httpx.Client(transport=httpx.MockTransport(handler))
        responder = make_responder(site, client, ssi="https://fragments.test")
        response = responder.handle(head("/shop/page.shtml"))

        assert response.status == HTTPStatus.OK
        assert response.get_header("Content-Type").startswith("text/shtml; charset=")
        assert response.get_header("Content-Length") is None
        assert body_of(response) == b""
        assert fetched == []

        body_of(responder.handle(get("/shop/page.shtml")))
        assert fetched == ["/nav.html"]


class TestDirectories:
    """Tests for directory listings."""

    def test_listing(self, site):
        """Test a listing for a directory without index."""
        (site / "empty" / "a.txt").write_text("a", encoding="utf-8")
        (site / "empty" / "b.txt").write_text("b", encoding="utf-8")
        response = make_responder(site).handle(get("/empty/"))

        body = body_of(response)
        assert response.status == HTTPStatus.OK
        assert b'href="a.txt"' in body
        assert b'href="../"' in body

    def test_unlisted(self, site):
        """Test that unlisted globs hide entries."""
        (site / "empty" / "a.txt").write_text("a", encoding="utf-8")
        (site / "empty" / "hidden.txt").write_text("h", encoding="utf-8")
        response = make_responder(site, unlisted=["hidden.txt"]).handle(get("/empty/"))

        assert b"hidden.txt" not in body_of(response)

    def test_listing_disabled(self, site):
        """Test that directory_listing=False answers 404."""
        response = make_responder(site, directory_listing=False).handle(get("/empty/"))
        assert response.status == HTTPStatus.NOT_FOUND

    def test_render_single(self, site):
        """Test that a lone file is served instead of listed."""
        (site / "empty" / "only.txt").write_text("just me", encoding="utf-8")
        response = make_responder(site, render_single=True).handle(get("/empty/"))

        assert body_of(response) == b"just me"
