"""
=============================================================================
SERVE CONFIGURATION
=============================================================================

Everything that shapes how a directory is served, in one dataclass.

=============================================================================
WHERE VALUES COME FROM
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line flags                                             │
    │      └── ssiserve --ssi https://cdn.example.com --charset utf-8     │
    │                                                                      │
    │   2. Config file (first found, see loader.py)                       │
    │      └── serve.json, now.json "static", package.json "now.static"   │
    │                                                                      │
    │   3. Environment                                                    │
    │      └── PORT, NO_UPDATE_CHECK, SERVE_ENV                           │
    │                                                                      │
    │   4. Defaults in this dataclass                                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The one exception to the order is `public`: a public directory named in
the config file beats --public, because the file is written relative to
the project it lives in.

The config is built once, before any listener binds, and is only read
afterwards. Per-request decisions (like the charset Content-Type rule) are
computed on the side instead of being written back here.

=============================================================================
"""

import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional, Pattern, Union

from .core.endpoint import DEFAULT_PORT


# ─────────────────────────────────────────────────────────────────────────────
# PATH RULES
# ─────────────────────────────────────────────────────────────────────────────

@lru_cache(maxsize=256)
def compile_glob(source: str) -> Pattern:
    """
    Compile a path glob to a regex matched against the request path.

        **      any characters, including "/"
        **/     zero or more whole directories
        *       any characters except "/"
        ?       one character except "/"

    A leading "/" is implied, so "*.css" and "/*.css" are the same rule.
    """
    if not source.startswith("/"):
        source = "/" + source

    parts = []
    i = 0
    while i < len(source):
        if source.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif source.startswith("**", i):
            parts.append(".*")
            i += 2
        elif source[i] == "*":
            parts.append("[^/]*")
            i += 1
        elif source[i] == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(source[i]))
            i += 1
    return re.compile("^" + "".join(parts) + "$")


def source_matches(source: str, path: str) -> bool:
    """True if a request path (trailing slash ignored) matches a glob."""
    normalized = path.rstrip("/") or "/"
    return bool(compile_glob(source).match(normalized))


@dataclass(frozen=True)
class HeaderRule:
    """Extra response headers for paths matching `source`."""

    source: str
    headers: Dict[str, str]

    def matches(self, path: str) -> bool:
        return source_matches(self.source, path)


@dataclass(frozen=True)
class Rewrite:
    """Serve `destination` for missing paths matching `source` (e.g. SPAs)."""

    source: str
    destination: str

    def matches(self, path: str) -> bool:
        return source_matches(self.source, path)


@dataclass(frozen=True)
class Redirect:
    """Answer paths matching `source` with a redirect to `destination`."""

    source: str
    destination: str
    status: int = 301

    def matches(self, path: str) -> bool:
        return source_matches(self.source, path)


# ─────────────────────────────────────────────────────────────────────────────
# SERVE CONFIG
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class ServeConfig:
    """
    Configuration for serving one directory.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    CONTENT
    - public, charset, ssi

    FILE RESPONDER
    - headers, rewrites, redirects, symlinks, directory_listing,
      unlisted, render_single, etag
    - clean_urls / trailing_slash: fixed, not settable

    NETWORK / HTTP / THREADS
    - listen, backlog, buffer_size, timeout, keep_alive,
      keep_alive_timeout, max_request_size, min_workers, max_workers

    PRESENTATION
    - clipboard, compress, log_level, log_format, server_name

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    public: Optional[str] = None
    """Directory to serve, relative to the working directory. None = cwd."""

    charset: Optional[str] = None
    """Forced charset for html/htm/shtml/css. None = detect per file."""

    ssi: Optional[str] = None
    """Base URL for <!--#include virtual --> fragments. None disables SSI."""

    # ─────────────────────────────────────────────────────────────────────
    # FILE RESPONDER
    # ─────────────────────────────────────────────────────────────────────

    headers: List[HeaderRule] = field(default_factory=list)
    rewrites: List[Rewrite] = field(default_factory=list)
    redirects: List[Redirect] = field(default_factory=list)

    symlinks: bool = False
    """Follow symbolic links. Off: any symlink is answered with 404."""

    directory_listing: Union[bool, List[str]] = True
    """True, False, or a list of globs of directories that may be listed."""

    unlisted: List[str] = field(default_factory=list)
    """Globs of entries hidden from directory listings."""

    render_single: bool = False
    """Serve the lone file of a single-file directory instead of listing."""

    etag: bool = True
    """Send ETag and honour If-None-Match on untransformed files."""

    clean_urls: bool = field(default=False, init=False)
    trailing_slash: bool = field(default=True, init=False)

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK / HTTP / THREADS
    # ─────────────────────────────────────────────────────────────────────

    listen: List[str] = field(default_factory=list)
    """Listen URIs from the config file; --listen replaces them."""

    backlog: int = 128
    buffer_size: int = 64 * 1024
    timeout: Optional[float] = 30.0

    keep_alive: bool = True
    keep_alive_timeout: float = 5.0
    max_request_size: int = 1024 * 1024

    min_workers: int = 4
    max_workers: int = 32

    # ─────────────────────────────────────────────────────────────────────
    # PRESENTATION
    # ─────────────────────────────────────────────────────────────────────

    clipboard: bool = True
    compress: bool = True
    log_level: str = "INFO"
    log_format: str = "text"
    server_name: str = "ssiserve"

    def validate(self) -> None:
        """
        Fail fast on values that would only blow up once serving.

        Raises:
            ValueError: With a message naming the bad setting.
        """
        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', not {self.log_format!r}")

        for redirect in self.redirects:
            if redirect.status not in (301, 302, 307, 308):
                raise ValueError(f"Unsupported redirect status {redirect.status} for {redirect.source}")


# ─────────────────────────────────────────────────────────────────────────────
# ENVIRONMENT
# ─────────────────────────────────────────────────────────────────────────────

def default_port() -> int:
    """
    Port used when no endpoint is given: $PORT, else 5000.

    Raises:
        ValueError: PORT is set but not a number.
    """
    value = os.getenv("PORT")
    if not value:
        return DEFAULT_PORT
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"PORT environment variable is not a number: {value!r}") from None


def update_check_enabled() -> bool:
    """False when NO_UPDATE_CHECK is set to a non-empty value."""
    return not os.getenv("NO_UPDATE_CHECK")


def is_production() -> bool:
    """SERVE_ENV=production turns the startup banner into a log line."""
    return os.getenv("SERVE_ENV") == "production"
