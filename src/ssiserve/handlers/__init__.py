"""
Request handlers.

A handler is any callable taking an HTTPRequest and returning an
HTTPResponse. This server has exactly one, the FileResponder, which the
middleware pipeline wraps.
"""

from .static import FileResponder, read_chunks

__all__ = [
    "FileResponder",
    "read_chunks",
]
