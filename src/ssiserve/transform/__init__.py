"""
Content transform package.

Everything that may change a file's bytes on the way out:

- charset: Which encoding a text file uses
- ssi: Server-Side Include expansion
- pipeline: Decides per response whether to transform, and does it
"""

from .charset import (
    DEFAULT_CHARSET,
    FileAccessError,
    detect_charset,
    normalize_charset,
    resolve_charset,
)
from .ssi import SSIDirectiveError, SSIFetchError, SSIRewriter
from .pipeline import (
    ALLOWED_EXTENSIONS,
    ResponseTransform,
    TransformDecision,
    file_extension,
)

__all__ = [
    "DEFAULT_CHARSET",
    "FileAccessError",
    "detect_charset",
    "normalize_charset",
    "resolve_charset",
    "SSIDirectiveError",
    "SSIFetchError",
    "SSIRewriter",
    "ALLOWED_EXTENSIONS",
    "ResponseTransform",
    "TransformDecision",
    "file_extension",
]
