"""
=============================================================================
ACCESS LOG MIDDLEWARE
=============================================================================

One log line per request on the "ssiserve.access" logger.

    text:  127.0.0.1 - - [18/Oct/2026:10:00:00 +0000] "GET /index.html" 200 1234 3.21ms
    json:  {"request_id": "1f2e3d4c", "method": "GET", "path": "/index.html", ...}

=============================================================================
STREAMED BODIES
=============================================================================

The line is written when the handler returns, which for a file is before
its bytes have been read from disk. The size logged is therefore the
Content-Length the response announces, or "-" when the body is streamed
with chunked encoding (SSI pages, gzip output) and its size is not known
yet.

The duration covers request handling up to that point: path lookup,
charset detection and, for SSI pages, fetching and rewriting fragments.

=============================================================================
"""

import time
import json
import uuid
import logging
from typing import Optional, Union
from dataclasses import asdict, dataclass

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger("ssiserve.access")


@dataclass
class RequestLog:
    """Structured access log entry."""

    request_id: str
    method: str
    path: str
    client: str
    user_agent: str
    status_code: int
    content_length: Union[int, str]
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        entry = asdict(self)
        entry["duration_ms"] = round(self.duration_ms, 2)
        return entry

    def to_text(self) -> str:
        """Apache common-log-like line with the duration appended."""
        return (
            f'{self.client} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


def describe_client(address) -> str:
    """(ip, port) for TCP peers; UNIX sockets and pipes have no address."""
    if isinstance(address, tuple) and address and address[0]:
        return str(address[0])
    return "local"


class LoggingMiddleware(Middleware):
    """
    Request logging middleware. Goes first in the pipeline so it sees
    every request, including ones later layers fail on.

        pipeline.add(LoggingMiddleware(log_format="json"))
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = False,
        log_level: int = logging.INFO,
    ):
        """
        Args:
            log_format: "text" or "json".
            include_request_id: Echo the generated id as X-Request-ID.
            log_level: Level the access lines are logged at.
        """
        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        request_id = uuid.uuid4().hex[:8]
        start_time = time.perf_counter()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.path} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms)"
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        length: Optional[str] = response.get_header("Content-Length")
        if length is None and not response.is_streaming:
            length = str(len(response.body))

        entry = RequestLog(
            request_id=request_id,
            method=request.method,
            path=request.target,
            client=describe_client(request.client_address),
            user_agent=request.user_agent or "-",
            status_code=int(response.status),
            content_length=int(length) if length is not None else "-",
            duration_ms=duration_ms,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())

        if self.include_request_id:
            response.set_header("X-Request-ID", request_id)

        return response
