"""
=============================================================================
MIME TYPE DETECTION
=============================================================================

Extension → Content-Type for files the responder sends untouched.

HTML-family and CSS files usually get their Content-Type from the
transform pipeline instead (text/<ext>; charset=<detected>). The table
below is what everything else, and those files when no charset rule
applies, falls back on.

Text types get "; charset=utf-8" appended; binary types are sent bare.
Unknown extensions are application/octet-stream, which browsers download
rather than display.

=============================================================================
"""

from pathlib import Path
from typing import Optional, Union


MIME_TYPES = {
    # Documents
    ".html": "text/html",
    ".htm": "text/html",
    ".shtml": "text/html",
    ".css": "text/css",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".json": "application/json",
    ".map": "application/json",
    ".webmanifest": "application/manifest+json",
    ".xml": "application/xml",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",

    # Images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".bmp": "image/bmp",

    # Fonts
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".eot": "application/vnd.ms-fontobject",

    # Media
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".mp4": "video/mp4",
    ".webm": "video/webm",

    # Downloads
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".gz": "application/gzip",
    ".tar": "application/x-tar",
    ".wasm": "application/wasm",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

# Non-text/* types whose bodies are text (and so take a charset and compress well)
TEXTUAL_APPLICATION_TYPES = frozenset({
    "application/json",
    "application/manifest+json",
    "application/xml",
    "image/svg+xml",
})


def get_mime_type(path: Union[str, Path], default: Optional[str] = None) -> str:
    """
    MIME type for a file name, case-insensitive on the extension.

        >>> get_mime_type("logo.PNG")
        'image/png'
        >>> get_mime_type("blob.xyz")
        'application/octet-stream'
    """
    extension = Path(path).suffix.lower()
    return MIME_TYPES.get(extension, default or DEFAULT_MIME_TYPE)


def is_text_type(mime_type: str) -> bool:
    """True for types that carry a charset parameter."""
    mime_type = mime_type.split(";", 1)[0].strip().lower()
    return mime_type.startswith("text/") or mime_type in TEXTUAL_APPLICATION_TYPES


def get_content_type(path: Union[str, Path], charset: str = "utf-8") -> str:
    """
    Full Content-Type header value for a file.

        >>> get_content_type("notes.txt")
        'text/plain; charset=utf-8'
        >>> get_content_type("photo.jpg")
        'image/jpeg'
    """
    mime_type = get_mime_type(path)
    if is_text_type(mime_type):
        return f"{mime_type}; charset={charset}"
    return mime_type
