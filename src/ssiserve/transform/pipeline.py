"""
=============================================================================
STREAMING RESPONSE TRANSFORM
=============================================================================

Sits between "open the file" and "send the bytes":

    ┌──────────┐   chunks   ┌───────────────────────┐   chunks   ┌────────┐
    │ the file │ ─────────► │   ResponseTransform   │ ─────────► │ socket │
    └──────────┘            │                       │            └────────┘
                            │ ineligible: untouched │
                            │ eligible:             │
                            │   buffer → decode     │
                            │   → SSI rewrite       │
                            │   → encode            │
                            └───────────────────────┘

=============================================================================
ELIGIBILITY
=============================================================================

    ┌───────────────┬──────────────────┬───────────────┬───────────────┐
    │ extension     │ Content-Type set │ charset       │ SSI rewrite   │
    ├───────────────┼──────────────────┼───────────────┼───────────────┤
    │ css           │ text/css         │ resolved      │ never         │
    │ html htm shtml│ text/<ext>       │ resolved      │ if --ssi set  │
    │ anything else │ from MIME table  │ -             │ never         │
    └───────────────┴──────────────────┴───────────────┴───────────────┘

Binary files never get decoded: they fall in the last row and their chunk
iterator is handed back as the very same object.

=============================================================================
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Tuple, Union

import httpx

from .charset import DEFAULT_CHARSET, detect_charset
from .ssi import SSIRewriter


logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = frozenset({"css", "html", "htm", "shtml"})

# Extensions that get a charset but are never SSI-rewritten
NO_REWRITE_EXTENSIONS = frozenset({"css"})


@dataclass(frozen=True)
class TransformDecision:
    """What to do with one response. Computed per request, never stored."""

    eligible: bool
    extension: str
    charset: str = DEFAULT_CHARSET

    @property
    def allowed(self) -> bool:
        """True if the extension gets the charset-bearing Content-Type."""
        return self.extension in ALLOWED_EXTENSIONS

    @property
    def content_type(self) -> Optional[str]:
        if not self.allowed:
            return None
        return f"text/{self.extension}; charset={self.charset}"


def file_extension(path: Union[str, Path]) -> str:
    """Lower-cased extension of a file name, ignoring ?query and #fragment."""
    name = str(path).split("?", 1)[0].split("#", 1)[0]
    name = name.replace("\\", "/").rsplit("/", 1)[-1]
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


class ResponseTransform:
    """
    Per-request content transform shared by every listener.

    Holds nothing that changes after construction, so one instance is safely
    used by all worker threads at once.
    """

    def __init__(self, ssi: Optional[str], charset: Optional[str], root: Union[str, Path],
                 client: Optional[httpx.Client] = None):
        """
        Args:
            ssi: Base URL for virtual includes. None disables rewriting.
            charset: Forced charset (--charset), or None to detect.
            root: Served directory; the base for file includes.
            client: HTTP client for remote fragments.
        """
        self.ssi = ssi
        self.charset = charset
        self.root = Path(root)
        self.client = client

    def decide(self, path: Union[str, Path]) -> TransformDecision:
        path = Path(path)
        extension = file_extension(path.name)

        if extension not in ALLOWED_EXTENSIONS:
            return TransformDecision(eligible=False, extension=extension)

        charset = detect_charset(path, self.charset)
        eligible = (
            not path.is_dir()
            and extension not in NO_REWRITE_EXTENSIONS
            and bool(self.ssi)
            and self.client is not None
        )
        return TransformDecision(eligible=eligible, extension=extension, charset=charset)

    def apply(self, stream: Iterable[bytes], decision: TransformDecision) -> Iterable[bytes]:
        """
        Transform a chunk stream.

        Returns the input object itself when the decision is ineligible.
        Otherwise buffers the whole file, rewrites it, and returns a new
        single-use iterator over the re-encoded bytes.
        """
        if not decision.eligible:
            return stream

        raw = b"".join(stream)
        text = raw.decode(decision.charset, errors="replace")

        rewriter = SSIRewriter(
            location=self.ssi,
            local_path=self.root,
            charset=decision.charset,
            client=self.client,
        )
        rewritten = rewriter(text)

        data = rewritten.encode(decision.charset, errors="xmlcharrefreplace")
        logger.debug(f"SSI rewrite: {len(raw)} → {len(data)} bytes ({decision.charset})")
        return _once(data)

    def header_rule(self, request_path: str, decision: TransformDecision) -> Optional[Tuple[str, dict]]:
        """
        The Content-Type header rule for this request, if any.

        Returned as (source, headers) like the configured header rules, so
        the file responder can apply it after them.
        """
        content_type = decision.content_type
        if content_type is None:
            return None
        return request_path, {"Content-Type": content_type}


def _once(data: bytes) -> Iterator[bytes]:
    yield data
