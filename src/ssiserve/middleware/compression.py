"""
=============================================================================
COMPRESSION MIDDLEWARE
=============================================================================

gzip-encodes text responses for clients that ask for it. Disabled with
--no-compression.

=============================================================================
FIXED AND STREAMED BODIES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │ body                 │ what happens                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │ bytes (listing, 404) │ gzip.compress(); kept only if smaller        │
    │ chunk iterator       │ wrapped in a zlib stream compressor;         │
    │ (files, SSI pages)   │ Content-Length dropped → sent chunked        │
    └─────────────────────────────────────────────────────────────────────┘

A streamed file is compressed as it is read, so a large stylesheet never
sits in memory whole. The price is that the compressed length is unknown
up front, so the response goes out with chunked transfer encoding.

Binary types (images, fonts, archives) are already compressed and are left
alone, as are bodies smaller than min_size.

=============================================================================
"""

import gzip
import zlib
from typing import Iterable, Iterator, Optional, Set

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


def gzip_stream(chunks: Iterable[bytes], level: int = 6) -> Iterator[bytes]:
    """Compress a chunk stream into one gzip member, chunk by chunk."""
    # wbits=31: zlib writes the gzip header and trailer itself
    compressor = zlib.compressobj(level, zlib.DEFLATED, 31)
    for chunk in chunks:
        data = compressor.compress(chunk)
        if data:
            yield data
    yield compressor.flush()


class CompressionMiddleware(Middleware):
    """
    Response compression.

        1. Client sent Accept-Encoding with gzip (q > 0)?
        2. Response has a body, a compressible type, no Content-Encoding?
        3. Big enough (known length >= min_size)?
        4. Compress, set Content-Encoding and Vary.
    """

    COMPRESSIBLE_TYPES: Set[str] = {
        "text/html",
        "text/htm",
        "text/shtml",
        "text/css",
        "text/plain",
        "text/xml",
        "text/csv",
        "text/markdown",
        "text/javascript",
        "application/json",
        "application/manifest+json",
        "application/javascript",
        "application/xml",
        "application/xhtml+xml",
        "image/svg+xml",
    }

    def __init__(
        self,
        min_size: int = 1024,
        level: int = 6,
        compressible_types: Optional[Set[str]] = None,
    ):
        """
        Args:
            min_size: Bodies known to be smaller than this stay as they are.
            level: zlib level, 1 (fast) to 9 (small).
            compressible_types: Base MIME types worth compressing.
        """
        self.min_size = min_size
        self.level = level
        self.compressible_types = compressible_types or self.COMPRESSIBLE_TYPES

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        response = next(request)

        if not request.accepts_encoding("gzip"):
            return response

        if not self._should_compress(response):
            return response

        if response.is_streaming:
            response.set_body(gzip_stream(response.body, self.level))
            response.remove_header("Content-Length")
        else:
            compressed = gzip.compress(response.body, compresslevel=self.level)
            # gzip adds ~18 bytes of framing; tiny bodies can grow
            if len(compressed) >= len(response.body):
                return response
            response.set_body(compressed)
            response.set_header("Content-Length", str(len(compressed)))

        response.set_header("Content-Encoding", "gzip")

        vary = response.get_header("Vary", "")
        if "accept-encoding" not in vary.lower():
            response.set_header("Vary", f"{vary}, Accept-Encoding".lstrip(", "))

        return response

    def _should_compress(self, response: HTTPResponse) -> bool:
        if not response.status.has_body:
            return False

        if response.get_header("Content-Encoding") is not None:
            return False

        content_type = response.get_header("Content-Type", "")
        if content_type.split(";")[0].strip().lower() not in self.compressible_types:
            return False

        if response.is_streaming:
            length = response.get_header("Content-Length")
            return length is None or int(length) >= self.min_size

        return len(response.body) >= self.min_size
