"""
=============================================================================
CHARSET RESOLVER
=============================================================================

Decides which text encoding a served file is written in.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     CHARSET RESOLUTION ORDER                        │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. --charset given?         → use it, never touch the file        │
    │   2. charset-normalizer hit?  → normalized codec name               │
    │   3. nothing detected         → utf-8                               │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Names are passed through Python's codec registry so that "UTF_8", "utf8"
and "utf-8" all come out the same. ASCII is widened to utf-8: every ASCII
file is valid utf-8, and an SSI fragment may well contain characters ASCII
cannot hold.

=============================================================================
"""

import codecs
import logging
from pathlib import Path
from typing import Optional, Union

from charset_normalizer import from_bytes


logger = logging.getLogger(__name__)

DEFAULT_CHARSET = "utf-8"

# Codec registry names that collapse into the default
_WIDENED = {"ascii", "utf-8"}


class FileAccessError(OSError):
    """The file whose charset we wanted could not be read."""


def normalize_charset(name: str) -> str:
    """
    Canonical, header-friendly name for a charset.

    Raises:
        LookupError: Python has no codec by that name, or the codec is
            not a text encoding (base64, zlib, ...).
    """
    info = codecs.lookup(name)
    if not info._is_text_encoding:
        raise LookupError(f"{name!r} is not a text encoding")
    canonical = info.name
    if canonical in _WIDENED:
        return DEFAULT_CHARSET
    return canonical


def resolve_charset(path: Union[str, Path], forced: Optional[str] = None) -> str:
    """
    Resolve the charset of a file.

    Args:
        path: File to inspect.
        forced: Charset from --charset. Wins without reading the file.

    Returns:
        A charset name understood by both Python codecs and browsers.

    Raises:
        FileAccessError: The file could not be read.
    """
    if forced:
        return forced

    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise FileAccessError(e.errno, f"Cannot read {path}: {e.strerror}") from e

    best = from_bytes(data).best()
    if best is None or not best.encoding:
        return DEFAULT_CHARSET

    try:
        return normalize_charset(best.encoding)
    except LookupError:
        return DEFAULT_CHARSET


def detect_charset(path: Union[str, Path], forced: Optional[str] = None) -> str:
    """Like resolve_charset(), but an unreadable file just means utf-8."""
    try:
        return resolve_charset(path, forced)
    except FileAccessError as e:
        logger.debug(f"Charset detection skipped: {e}")
        return DEFAULT_CHARSET
