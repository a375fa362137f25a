"""
Middleware around the file responder.

LoggingMiddleware:
    One access log line per request, text or JSON.

CompressionMiddleware:
    gzip for clients that accept it; streams stay streams.
"""

from .base import Middleware, MiddlewarePipeline, NextHandler
from .logging import LoggingMiddleware
from .compression import CompressionMiddleware, gzip_stream

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "LoggingMiddleware",
    "CompressionMiddleware",
    "gzip_stream",
]
