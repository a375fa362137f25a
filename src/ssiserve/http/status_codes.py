"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The status codes a static file server actually answers with.

    ┌────────┬───────────────────────────────────────────────────────────┐
    │  2xx   │ 200 OK             - File (or listing) sent               │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  3xx   │ 301 / 302 / 307 / 308 - Redirect rules, trailing slash    │
    │        │ 304 Not Modified   - ETag matched If-None-Match           │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  4xx   │ 400 Bad Request    - Unparseable request                  │
    │        │ 403 Forbidden      - Path traversal, unreadable file      │
    │        │ 404 Not Found      - No candidate path exists             │
    │        │ 405 Method Not Allowed - Anything but GET / HEAD          │
    │        │ 408 / 413 / 414 / 431 - Request limits exceeded           │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  5xx   │ 500 Internal Error - Handler crashed                      │
    │        │ 505 Version Not Supported                                 │
    └────────┴───────────────────────────────────────────────────────────┘

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes with reason phrases.

        >>> HTTPStatus.NOT_FOUND == 404
        True
        >>> HTTPStatus.NOT_FOUND.phrase
        'Not Found'
    """

    OK = 200
    NO_CONTENT = 204

    MOVED_PERMANENTLY = 301
    FOUND = 302
    NOT_MODIFIED = 304
    TEMPORARY_REDIRECT = 307
    PERMANENT_REDIRECT = 308

    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413
    URI_TOO_LONG = 414
    REQUEST_HEADER_FIELDS_TOO_LARGE = 431

    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    SERVICE_UNAVAILABLE = 503
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line (HTTP/1.1 404 Not Found)."""
        return _STATUS_PHRASES.get(self, "Unknown")

    @property
    def has_body(self) -> bool:
        """204 and 304 responses never carry a body."""
        return self not in (HTTPStatus.NO_CONTENT, HTTPStatus.NOT_MODIFIED)


_STATUS_PHRASES = {
    HTTPStatus.OK: "OK",
    HTTPStatus.NO_CONTENT: "No Content",
    HTTPStatus.MOVED_PERMANENTLY: "Moved Permanently",
    HTTPStatus.FOUND: "Found",
    HTTPStatus.NOT_MODIFIED: "Not Modified",
    HTTPStatus.TEMPORARY_REDIRECT: "Temporary Redirect",
    HTTPStatus.PERMANENT_REDIRECT: "Permanent Redirect",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.FORBIDDEN: "Forbidden",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.METHOD_NOT_ALLOWED: "Method Not Allowed",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.URI_TOO_LONG: "URI Too Long",
    HTTPStatus.REQUEST_HEADER_FIELDS_TOO_LARGE: "Request Header Fields Too Large",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.NOT_IMPLEMENTED: "Not Implemented",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}
