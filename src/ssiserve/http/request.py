"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.x request bytes into HTTPRequest objects.

=============================================================================
WHAT A STATIC SERVER NEEDS FROM A REQUEST
=============================================================================

    GET /docs/index.html?lang=en HTTP/1.1\r\n      ← method, path, query
    Host: localhost:5000\r\n
    Accept-Encoding: gzip, br\r\n                  ← compression middleware
    If-None-Match: "1718445600-1024"\r\n           ← ETag / 304
    Connection: keep-alive\r\n                     ← keep-alive loop
    \r\n

Request bodies are read (so a keep-alive connection stays in sync) but
never interpreted.

=============================================================================
PATH HANDLING
=============================================================================

    raw_path  "/caf%C3%A9/menu.html"    kept for redirects and logs
    path      "/café/menu.html"         percent-decoded, used on disk

A ".." path SEGMENT is rejected outright with 400. The file responder
still checks that the resolved path stays inside the served directory,
since symlinks can escape it without any "..".

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, unquote, urlsplit
import re


class HTTPParseError(Exception):
    """
    Raised when a request cannot be parsed.

    Carries the status code to answer with:
        400 malformed, 405 unknown method, 413 too large, 505 bad version.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Header names are stored lower-cased; HTTP header names are
    case-insensitive (RFC 7230) and normalizing once saves a .lower()
    at every lookup.

    client_address is (ip, port) for TCP peers and the socket/pipe path
    (or "") for local transports.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    raw_path: str = ""
    query_string: str = ""

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""

    client_address: Any = ("", 0)

    @property
    def target(self) -> str:
        """raw_path plus the query string, as the client sent it."""
        target = self.raw_path or self.path
        if self.query_string:
            target += "?" + self.query_string
        return target

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        Should the connection stay open after this request?

        HTTP/1.1 keeps alive unless "Connection: close".
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()

        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)

    def get_query(self, name: str, default: Optional[str] = None) -> Optional[str]:
        values = self.query_params.get(name, [])
        return values[0] if values else default

    def accepts_encoding(self, coding: str) -> bool:
        """
        True if Accept-Encoding lists the coding with a non-zero q-value.

            Accept-Encoding: gzip;q=1.0, identity; q=0.5, *;q=0
        """
        wildcard = False
        for part in self.headers.get("accept-encoding", "").split(","):
            name, _, params = part.strip().partition(";")
            name = name.strip().lower()
            quality = 1.0
            match = re.search(r"q\s*=\s*([0-9.]+)", params)
            if match:
                try:
                    quality = float(match.group(1))
                except ValueError:
                    quality = 0.0
            if name == coding.lower():
                return quality > 0
            if name == "*":
                wildcard = quality > 0
        return wildcard


class RequestParser:
    """
    Parses raw request bytes into HTTPRequest objects.

        1. Size check               → 413 if over max_request_size
        2. Split at \\r\\n\\r\\n        → 400 if no terminator
        3. Request line             → 400 / 405 / 505
        4. Header lines             → lower-cased dict, repeats joined by ", "
        5. Body by Content-Length   → 400 if short
    """

    VALID_METHODS = {
        "GET", "HEAD", "POST", "PUT", "DELETE",
        "PATCH", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(self, data: bytes, client_address: Any = ("", 0)) -> HTTPRequest:
        """
        Parse raw HTTP request data.

        Raises:
            HTTPParseError: The request is malformed or over a limit.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        # Header bytes outside ASCII are not valid HTTP, but latin-1 never fails
        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, raw_path, query_string, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header") from None
        if content_length < 0:
            raise HTTPParseError("Invalid Content-Length header")
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=unquote(raw_path) or "/",
            version=version,
            raw_path=raw_path,
            query_string=query_string,
            headers=headers,
            query_params=parse_qs(query_string, keep_blank_values=True),
            body=body[:content_length],
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> tuple[str, str, str, str]:
        """
        METHOD SP REQUEST-TARGET SP HTTP-VERSION

        Returns (method, raw_path, query_string, version).
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, target, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        parts = urlsplit(target)
        raw_path = parts.path or "/"
        if not raw_path.startswith("/"):
            raise HTTPParseError(f"Invalid request target: {target}")

        if ".." in unquote(raw_path).replace("\\", "/").split("/"):
            raise HTTPParseError("Invalid path: contains ..", status_code=400)

        return method, raw_path, parts.query, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Header lines to a dict with lower-cased names.

        Obsolete line folding (leading whitespace) continues the previous
        header; repeated headers are joined with ", " (RFC 7230 3.2.2).
        Malformed lines are skipped.
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_request(data: bytes, client_address: Any = ("", 0),
                  max_size: int = 10 * 1024 * 1024) -> HTTPRequest:
    """One-shot helper around RequestParser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
