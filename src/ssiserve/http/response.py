"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

Builds HTTP/1.1 responses whose body is either a byte string or a lazy
stream of byte chunks.

=============================================================================
FIXED VS STREAMED BODIES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                      HOW THE BODY IS FRAMED                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   body is bytes                    → Content-Length: len(body)      │
    │                                                                      │
    │   body is a chunk iterator                                          │
    │     with Content-Length set        → raw chunks, length trusted     │
    │     without Content-Length         → Transfer-Encoding: chunked     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A file sent untouched knows its size from stat(), so it goes out as raw
chunks with a Content-Length. A file that went through the SSI rewrite or
gzip has an unknown final size and is sent chunked:

    HTTP/1.1 200 OK\r\n
    Transfer-Encoding: chunked\r\n
    \r\n
    1a2\r\n                     ← chunk size in hex
    <418 bytes>\r\n
    0\r\n                       ← last chunk
    \r\n

HTTP/1.0 clients don't understand chunked framing; the server collapses
the stream into bytes for them (see HTTPResponse.materialize()).

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from html import escape
from typing import Dict, Iterable, Iterator, Optional, Union

from .status_codes import HTTPStatus


DEFAULT_SERVER_NAME = "ssiserve"

Body = Union[bytes, Iterable[bytes]]


@dataclass
class HTTPResponse:
    """
    An HTTP response waiting to be written to a socket.

    =========================================================================
    RESPONSE LIFECYCLE
    =========================================================================

        Handler returns         iter_bytes()            Connection sends
        HTTPResponse   ─────►   head + chunks  ─────►   each piece as it
                                (lazy)                  is produced

    =========================================================================
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: Body = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        return f"{self.version} {self.status} {self.status.phrase}"

    @property
    def is_streaming(self) -> bool:
        return not isinstance(self.body, (bytes, bytearray))

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a header, replacing any existing one regardless of case."""
        self.remove_header(name)
        self.headers[name] = value
        return self

    def remove_header(self, name: str) -> "HTTPResponse":
        lowered = name.lower()
        for key in [k for k in self.headers if k.lower() == lowered]:
            del self.headers[key]
        return self

    def set_content_type(self, content_type: str) -> "HTTPResponse":
        return self.set_header("Content-Type", content_type)

    def set_body(self, body: Union[str, Body]) -> "HTTPResponse":
        """Set the body; strings are encoded to UTF-8."""
        if isinstance(body, str):
            self.body = body.encode("utf-8")
        else:
            self.body = body
        return self

    def materialize(self) -> "HTTPResponse":
        """Drain a streamed body into bytes. Needed for HTTP/1.0 peers."""
        if self.is_streaming:
            self.body = b"".join(self.body)
            self.remove_header("Transfer-Encoding")
            self.set_header("Content-Length", str(len(self.body)))
        return self

    def _chunked(self) -> bool:
        return self.is_streaming and self.get_header("Content-Length") is None

    def head_bytes(self, server_name: str = DEFAULT_SERVER_NAME) -> bytes:
        """
        Serialize the status line and headers.

        Adds Content-Length (fixed bodies) or Transfer-Encoding (streams of
        unknown length), plus Date and Server when missing.
        """
        response_headers = dict(self.headers)

        if not self.is_streaming:
            if self.get_header("Content-Length") is None:
                response_headers["Content-Length"] = str(len(self.body))
        elif self._chunked():
            response_headers["Transfer-Encoding"] = "chunked"

        if self.get_header("Date") is None:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if self.get_header("Server") is None:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        return "\r\n".join(lines).encode("latin-1") + b"\r\n"

    def iter_bytes(self, server_name: str = DEFAULT_SERVER_NAME, include_body: bool = True) -> Iterator[bytes]:
        """
        Yield the wire form of the response piece by piece.

        Args:
            server_name: Value for the Server header.
            include_body: False for HEAD requests. The headers still
                          describe the body that a GET would get.
        """
        yield self.head_bytes(server_name)

        if not include_body:
            close = getattr(self.body, "close", None)
            if close is not None:
                close()
            return

        if not self.is_streaming:
            if self.body:
                yield bytes(self.body)
            return

        if not self._chunked():
            for chunk in self.body:
                if chunk:
                    yield chunk
            return

        for chunk in self.body:
            if chunk:
                yield f"{len(chunk):x}\r\n".encode("ascii") + chunk + b"\r\n"
        yield b"0\r\n\r\n"

    def to_bytes(self, server_name: str = DEFAULT_SERVER_NAME) -> bytes:
        """The whole response in one piece. Consumes a streamed body."""
        return b"".join(self.iter_bytes(server_name))


class ResponseBuilder:
    """
    Fluent builder for HTTP responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .content_type("text/css; charset=utf-8")
            .stream(chunks)
            .build())

    Every method but build() returns self.
    """

    def __init__(self, server_name: str = DEFAULT_SERVER_NAME):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: Body = b""
        self._server_name = server_name

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def stream(self, chunks: Iterable[bytes], length: Optional[int] = None) -> "ResponseBuilder":
        """
        Use a chunk iterator as the body.

        Args:
            chunks: Lazily produced body pieces.
            length: Total size if known up front; otherwise the response
                    is sent with chunked transfer encoding.
        """
        self._body = chunks
        if length is not None:
            self._headers["Content-Length"] = str(length)
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        self._body = text.encode("utf-8")
        self._headers["Content-Type"] = content_type
        return self

    def html(self, html: str) -> "ResponseBuilder":
        self._body = html.encode("utf-8")
        self._headers["Content-Type"] = "text/html; charset=utf-8"
        return self

    def redirect(self, location: str, permanent: bool = False) -> "ResponseBuilder":
        """
        301 (permanent) or 302 (temporary) redirect to location.
        """
        self._status = HTTPStatus.MOVED_PERMANENTLY if permanent else HTTPStatus.FOUND
        self._headers["Location"] = location
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
        )

    def to_bytes(self) -> bytes:
        return self.build().to_bytes(self._server_name)


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Example: Wed, 01 Jan 2026 12:00:00 GMT

    HTTP dates are always in GMT, never local time.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================
#
# Error pages are tiny HTML documents, the way a browser pointed at a static
# server expects them.
#
# =============================================================================

def error_page(status: HTTPStatus, message: Optional[str] = None) -> HTTPResponse:
    """Minimal HTML error page for a status code."""
    text = escape(message or status.phrase)
    html = (
        "<!DOCTYPE html>\n"
        f"<html><head><title>{status} {status.phrase}</title></head>\n"
        f"<body><h1>{status} {status.phrase}</h1><p>{text}</p></body></html>\n"
    )
    return ResponseBuilder().status(status).html(html).build()


def redirect(location: str, permanent: bool = False) -> HTTPResponse:
    return ResponseBuilder().redirect(location, permanent).build()


def bad_request(message: str = "Bad Request") -> HTTPResponse:
    return error_page(HTTPStatus.BAD_REQUEST, message)


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return error_page(HTTPStatus.FORBIDDEN, message)


def not_found(message: str = "Not Found") -> HTTPResponse:
    return error_page(HTTPStatus.NOT_FOUND, message)


def method_not_allowed(allowed_methods: list[str]) -> HTTPResponse:
    """
    405 Method Not Allowed with the Allow header RFC 7231 requires.
    """
    response = error_page(HTTPStatus.METHOD_NOT_ALLOWED)
    response.set_header("Allow", ", ".join(allowed_methods))
    return response


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    """500 page. Keep the message generic; details belong in the log."""
    return error_page(HTTPStatus.INTERNAL_SERVER_ERROR, message)
