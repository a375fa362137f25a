"""
HTTP protocol layer.

    ┌─────────────────────────────────────────────────────────────────────┐
    │ request.py      bytes → HTTPRequest (RequestParser)                 │
    │ response.py     HTTPResponse → bytes, fixed or chunked body         │
    │ status_codes.py HTTPStatus enum with reason phrases                 │
    │ mime_types.py   file extension → Content-Type                       │
    └─────────────────────────────────────────────────────────────────────┘

Nothing in here knows about files or sockets; handlers and the server
glue these pieces to the outside world.
"""

from .request import HTTPRequest, RequestParser, HTTPParseError, parse_request
from .response import (
    HTTPResponse,
    ResponseBuilder,
    error_page,
    redirect,
    bad_request,
    forbidden,
    not_found,
    method_not_allowed,
    internal_error,
    format_http_date,
)
from .status_codes import HTTPStatus
from .mime_types import get_mime_type, get_content_type, is_text_type

__all__ = [
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",
    "parse_request",
    "HTTPResponse",
    "ResponseBuilder",
    "error_page",
    "redirect",
    "bad_request",
    "forbidden",
    "not_found",
    "method_not_allowed",
    "internal_error",
    "format_http_date",
    "HTTPStatus",
    "get_mime_type",
    "get_content_type",
    "is_text_type",
]
