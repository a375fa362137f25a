"""
=============================================================================
FILE RESPONDER
=============================================================================

Maps request paths to files under the served directory and answers with
their (possibly transformed) contents.

=============================================================================
REQUEST FLOW
=============================================================================

    GET /docs
      │
      ├── method other than GET/HEAD ─────────────────────► 405
      ├── no extension, no trailing slash ────────────────► 301 /docs/
      ├── matches a configured redirect ──────────────────► 301/302/307/308
      ├── escapes the served directory ───────────────────► 403
      │
      ├── CANDIDATE LOOKUP (first hit wins)
      │     1. <path>                 file, or directory (see below)
      │     2. <path>/index.html
      │     3. <path>.html            "/about/" → about.html
      │
      ├── nothing found → try rewrites (--single adds "**" → /index.html)
      ├── still nothing → 404.html from the root, or a plain 404
      ├── symlink and symlinks disabled ──────────────────► 404
      ├── directory without index ────────────────────────► listing / 404
      │
      └── FILE
            decision = transform.decide(file)
            headers  = MIME type, Last-Modified, ETag (passthrough only)
                     + configured header rules, in order
                     + text/<ext>; charset=<charset> rule, last
            body     = transform.apply(file chunks, decision)

=============================================================================
SECURITY: PATH TRAVERSAL
=============================================================================

The parser already refuses ".." segments. The responder normalizes the
joined path again and checks it is still inside the root:

    full_path = os.path.normpath(root / relative)
    Path(full_path).relative_to(root)     # raises if outside

Symlinks are not followed unless --symlinks is given; with it, a link may
point anywhere, which is the whole point of enabling it.

=============================================================================
CACHING
=============================================================================

Untransformed files get an ETag built from mtime and size; a matching
If-None-Match is answered with 304 and no body. SSI-rewritten pages have
no stable fingerprint (the fragments live elsewhere), so they get no ETag
and are always sent in full.

=============================================================================
"""

import logging
import os
import posixpath
from datetime import datetime, timezone
from html import escape
from pathlib import Path
from typing import Iterator, List, Optional
from urllib.parse import quote

from ..config import ServeConfig, source_matches
from ..http.mime_types import get_content_type
from ..http.request import HTTPRequest
from ..http.response import (
    HTTPResponse,
    ResponseBuilder,
    HTTPStatus,
    format_http_date,
    forbidden,
    method_not_allowed,
    not_found,
    internal_error,
)
from ..transform.pipeline import ResponseTransform, TransformDecision


logger = logging.getLogger(__name__)

INDEX_FILE = "index.html"
NOT_FOUND_FILE = "404.html"

# Always hidden from listings, on top of the configured `unlisted` globs
DEFAULT_UNLISTED = (".DS_Store", ".git")

ALLOWED_METHODS = ["GET", "HEAD"]


def _exists(path: Path) -> bool:
    """
    Existence probe for candidate lookup.

    Any OS error (permission denied on a parent, name too long, ...) counts
    as "does not exist" so the next candidate gets its turn.
    """
    try:
        return path.exists()
    except OSError:
        return False


def read_chunks(path: Path, chunk_size: int) -> Iterator[bytes]:
    """Lazily read a file in chunks. The file is opened on first next()."""
    with open(path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            yield chunk


class FileResponder:
    """
    Request handler serving the configured directory.

    =========================================================================
    USAGE
    =========================================================================

        responder = FileResponder(config, root, transform)
        pipeline = MiddlewarePipeline(responder.handle)
        response = pipeline.execute(request)

    One instance serves every listener and every worker thread. It holds
    only read-only state: the config, the root path and the transform.

    =========================================================================
    """

    def __init__(self, config: ServeConfig, root: Path, transform: ResponseTransform):
        """
        Args:
            config: Serve configuration (rules, symlink policy, listing).
            root: Served directory. Must exist.
            transform: Content transform shared with the rest of the app.

        Raises:
            ValueError: root is not a directory.
        """
        self.config = config
        self.root = Path(root).resolve()
        self.transform = transform
        self.chunk_size = config.buffer_size

        if not self.root.is_dir():
            raise ValueError(f"Directory to serve does not exist: {root}")

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        if request.method not in ALLOWED_METHODS:
            return method_not_allowed(ALLOWED_METHODS)

        path = request.path

        # ─────────────────────────────────────────────────────────────────
        # REDIRECTS
        # ─────────────────────────────────────────────────────────────────
        redirected = self._redirect(request)
        if redirected is not None:
            return redirected

        # ─────────────────────────────────────────────────────────────────
        # SECURITY: PATH TRAVERSAL CHECK
        # ─────────────────────────────────────────────────────────────────
        target = self._inside_root(path)
        if target is None:
            logger.warning(f"Path traversal attempt: {path}")
            return forbidden("Access denied")

        # ─────────────────────────────────────────────────────────────────
        # CANDIDATE LOOKUP, THEN REWRITES
        # ─────────────────────────────────────────────────────────────────
        found = self.find(target)
        if found is None:
            for rewrite in self.config.rewrites:
                if not rewrite.matches(path):
                    continue
                rewritten = self._inside_root(rewrite.destination)
                found = self.find(rewritten) if rewritten is not None else None
                if found is not None:
                    logger.debug(f"Rewrote {path} → {rewrite.destination}")
                    break

        if found is None:
            return self._not_found(request)

        if not self.config.symlinks and found.is_symlink():
            logger.debug(f"Refusing symlink {found}")
            return self._not_found(request)

        try:
            if found.is_dir():
                return self._directory(found, request)
            return self.serve_file(found, request)
        except PermissionError:
            return forbidden("Permission denied")
        except OSError as e:
            logger.error(f"Error serving file {found}: {e}")
            return internal_error("Failed to read file")

    # ─────────────────────────────────────────────────────────────────────
    # PATH RESOLUTION
    # ─────────────────────────────────────────────────────────────────────

    def _inside_root(self, path: str) -> Optional[Path]:
        """Join a URL path onto the root; None if it escapes the root."""
        relative = posixpath.normpath("/" + path.lstrip("/")).lstrip("/")
        full_path = Path(os.path.normpath(self.root / relative))
        try:
            full_path.relative_to(self.root)
        except ValueError:
            return None
        return full_path

    def find(self, target: Path) -> Optional[Path]:
        """
        Ordered candidate lookup: the path itself, its index.html, then
        <path>.html. Returns the first that exists, or None.
        """
        candidates = [target]
        if target.suffix == "":
            candidates.append(target / INDEX_FILE)
            if target != self.root:
                candidates.append(target.with_name(target.name + ".html"))

        for candidate in candidates:
            if not _exists(candidate):
                continue
            if candidate is target and candidate.is_dir() and _exists(candidate / INDEX_FILE):
                # Directory with an index: serve the index itself
                return candidate / INDEX_FILE
            return candidate
        return None

    def _redirect(self, request: HTTPRequest) -> Optional[HTTPResponse]:
        path = request.path

        if self.config.trailing_slash and not path.endswith("/"):
            name = path.rsplit("/", 1)[-1]
            if "." not in name:
                location = (request.raw_path or path) + "/"
                if request.query_string:
                    location += "?" + request.query_string
                return ResponseBuilder().redirect(location, permanent=True).build()

        for redirect in self.config.redirects:
            if redirect.matches(path):
                return (ResponseBuilder()
                    .status(HTTPStatus(redirect.status))
                    .header("Location", redirect.destination)
                    .build())
        return None

    # ─────────────────────────────────────────────────────────────────────
    # FILES
    # ─────────────────────────────────────────────────────────────────────

    def serve_file(self, path: Path, request: HTTPRequest,
                   status: HTTPStatus = HTTPStatus.OK) -> HTTPResponse:
        """
        Serve one file through the transform pipeline.

        Raises:
            OSError: stat() failed; handle() turns it into 403/500.
        """
        stat = path.stat()
        decision = self.transform.decide(path)
        builder = ResponseBuilder().status(status)
        builder.content_type(get_content_type(path))

        if not decision.eligible:
            mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
            builder.header("Last-Modified", format_http_date(mtime))

            if self.config.etag and status == HTTPStatus.OK:
                etag = f'"{int(stat.st_mtime)}-{stat.st_size}"'
                if request.headers.get("if-none-match", "") == etag:
                    return (ResponseBuilder()
                        .status(HTTPStatus.NOT_MODIFIED)
                        .header("ETag", etag)
                        .build())
                builder.header("ETag", etag)

        response = builder.build()
        self.apply_header_rules(response, request.path, decision)

        if decision.eligible and request.method == "HEAD":
            # Headers only: no rewrite, so no fragment is fetched
            response.set_body(iter(()))
        else:
            response.set_body(self.transform.apply(read_chunks(path, self.chunk_size), decision))
        if not decision.eligible:
            # Untouched bytes: the size on disk is the size on the wire
            response.set_header("Content-Length", str(stat.st_size))
        return response

    def apply_header_rules(self, response: HTTPResponse, request_path: str,
                           decision: Optional[TransformDecision] = None) -> None:
        """Configured rules in order, then the per-request charset rule."""
        for rule in self.config.headers:
            if rule.matches(request_path):
                for name, value in rule.headers.items():
                    response.set_header(name, value)

        if decision is not None:
            charset_rule = self.transform.header_rule(request_path, decision)
            if charset_rule is not None:
                _, headers = charset_rule
                for name, value in headers.items():
                    response.set_header(name, value)

    def _not_found(self, request: HTTPRequest) -> HTTPResponse:
        custom = self.root / NOT_FOUND_FILE
        if _exists(custom) and custom.is_file():
            try:
                return self.serve_file(custom, request, status=HTTPStatus.NOT_FOUND)
            except OSError as e:
                logger.warning(f"Cannot serve {custom}: {e}")
        return not_found(f"The requested path could not be found: {request.path}")

    # ─────────────────────────────────────────────────────────────────────
    # DIRECTORIES
    # ─────────────────────────────────────────────────────────────────────

    def _listing_allowed(self, request_path: str) -> bool:
        setting = self.config.directory_listing
        if isinstance(setting, bool):
            return setting
        return any(source_matches(glob, request_path) for glob in setting)

    def _is_unlisted(self, name: str, request_path: str) -> bool:
        if name in DEFAULT_UNLISTED:
            return True
        entry_path = request_path.rstrip("/") + "/" + name
        return any(
            source_matches(glob, entry_path) or source_matches(glob, "/" + name)
            for glob in self.config.unlisted
        )

    def _directory(self, path: Path, request: HTTPRequest) -> HTTPResponse:
        if not self._listing_allowed(request.path):
            return self._not_found(request)

        entries = [
            entry for entry in sorted(path.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
            if not self._is_unlisted(entry.name, request.path)
        ]

        if self.config.render_single and len(entries) == 1 and entries[0].is_file():
            return self.serve_file(entries[0], request)

        response = self._directory_listing(path, request.path, entries)
        self.apply_header_rules(response, request.path)
        return response

    def _directory_listing(self, path: Path, url_path: str, entries: List[Path]) -> HTTPResponse:
        """Generate an HTML index of a directory."""
        items = []

        if path != self.root:
            items.append('<li><a href="../">../</a></li>')

        for entry in entries:
            name = entry.name + ("/" if entry.is_dir() else "")
            items.append(f'<li><a href="{quote(name)}">{escape(name)}</a></li>')

        title = escape(url_path)
        html = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Files within {title}</title>
    <style>
        body {{ font-family: monospace; padding: 20px; }}
        h1 {{ border-bottom: 1px solid #ccc; padding-bottom: 10px; }}
        ul {{ list-style: none; padding: 0; }}
        li {{ padding: 5px 0; }}
        a {{ text-decoration: none; color: #0066cc; }}
    </style>
</head>
<body>
    <h1>Files within {title}</h1>
    <ul>
        {''.join(items)}
    </ul>
</body>
</html>
"""
        return ResponseBuilder().html(html).build()
