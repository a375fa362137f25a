"""
=============================================================================
SERVER-SIDE INCLUDE REWRITER
=============================================================================

Expands SSI directives embedded in an HTML page.

=============================================================================
SUPPORTED DIRECTIVES
=============================================================================

The Apache mod_include subset that static sites actually use:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ Directive                                 │ Output                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │ <!--#include virtual="/nav.html" -->      │ fetched from --ssi URL  │
    │ <!--#include virtual="https://x/y" -->    │ fetched as-is           │
    │ <!--#include file="parts/footer.html" --> │ read from served root   │
    │ <!--#set var="title" value="Home" -->     │ (nothing)               │
    │ <!--#echo var="title" -->                 │ Home                    │
    └─────────────────────────────────────────────────────────────────────┘

A directive that cannot be resolved (network error, missing file, unknown
command) is replaced by nothing and logged. One broken include never takes
the whole page down.

Included fragments may contain directives themselves; they are expanded
up to MAX_INCLUDE_DEPTH levels deep.

=============================================================================
"""

import codecs
import logging
import re
from pathlib import Path
from typing import Dict, Optional, Union

import httpx


logger = logging.getLogger(__name__)

MAX_INCLUDE_DEPTH = 8

# <!--#command attr="value" attr='value' -->
DIRECTIVE_PATTERN = re.compile(r"<!--#\s*([a-zA-Z]+)((?:\s+[a-zA-Z_]+\s*=\s*(?:\"[^\"]*\"|'[^']*'))*)\s*-->")
ATTRIBUTE_PATTERN = re.compile(r"([a-zA-Z_]+)\s*=\s*(?:\"([^\"]*)\"|'([^']*)')")


class SSIFetchError(Exception):
    """A fragment could not be fetched or read."""

    def __init__(self, source: str, reason: str):
        super().__init__(f"Cannot include {source}: {reason}")
        self.source = source
        self.reason = reason


class SSIDirectiveError(Exception):
    """A directive is malformed, unsupported, or nested too deep."""


class SSIRewriter:
    """
    Rewrites SSI directives in decoded HTML text.

    One instance is built per page; the variables set with <!--#set -->
    live only as long as that page's rewrite.

    Usage:
        rewriter = SSIRewriter("https://cdn.example.com", "/srv/site",
                               "utf-8", client)
        html = rewriter(html)
    """

    def __init__(
        self,
        location: str,
        local_path: Union[str, Path],
        charset: str,
        client: httpx.Client,
        max_depth: int = MAX_INCLUDE_DEPTH,
    ):
        """
        Args:
            location: Base URL that relative virtual includes hang off.
            local_path: Directory file includes are confined to.
            charset: Charset of the page, used for fragments that don't
                     declare one.
            client: Shared HTTP client.
            max_depth: Nesting limit for includes inside includes.
        """
        self.location = location
        self.local_path = Path(local_path).resolve()
        self.charset = charset
        self.client = client
        self.max_depth = max_depth
        self.variables: Dict[str, str] = {}

    def __call__(self, text: str) -> str:
        return self._rewrite(text, depth=0)

    def _rewrite(self, text: str, depth: int) -> str:
        def replace(match: re.Match) -> str:
            command = match.group(1).lower()
            attributes = {
                name.lower(): double or single
                for name, double, single in ATTRIBUTE_PATTERN.findall(match.group(2))
            }
            try:
                return self._execute(command, attributes, depth)
            except (SSIFetchError, SSIDirectiveError) as e:
                logger.warning(f"SSI directive {match.group(0)!r} skipped: {e}")
                return ""

        return DIRECTIVE_PATTERN.sub(replace, text)

    def _execute(self, command: str, attributes: Dict[str, str], depth: int) -> str:
        if command == "include":
            if depth >= self.max_depth:
                raise SSIDirectiveError(f"include nesting deeper than {self.max_depth}")
            if "virtual" in attributes:
                fragment = self.fetch(attributes["virtual"])
            elif "file" in attributes:
                fragment = self.read(attributes["file"])
            else:
                raise SSIDirectiveError("include needs a virtual or file attribute")
            return self._rewrite(fragment, depth + 1)

        if command == "set":
            if "var" not in attributes or "value" not in attributes:
                raise SSIDirectiveError("set needs var and value attributes")
            self.variables[attributes["var"]] = attributes["value"]
            return ""

        if command == "echo":
            if "var" not in attributes:
                raise SSIDirectiveError("echo needs a var attribute")
            return self.variables.get(attributes["var"], "(none)")

        raise SSIDirectiveError(f"unsupported directive: {command}")

    # ─────────────────────────────────────────────────────────────────────
    # FRAGMENT SOURCES
    # ─────────────────────────────────────────────────────────────────────

    def resolve_url(self, virtual: str) -> str:
        """Absolute URL for a virtual include."""
        if re.match(r"^https?://", virtual, re.IGNORECASE):
            return virtual
        return self.location.rstrip("/") + "/" + virtual.lstrip("/")

    def fetch(self, virtual: str) -> str:
        """
        Fetch a remote fragment and decode it.

        Raises:
            SSIFetchError: Malformed URL, network failure or non-2xx status.
        """
        url = self.resolve_url(virtual)
        try:
            response = self.client.get(url)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise SSIFetchError(url, str(e)) from e

        logger.debug(f"SSI fetched {url} ({len(response.content)} bytes)")
        return response.content.decode(self._charset_of(response), errors="replace")

    def read(self, file: str) -> str:
        """
        Read a fragment from the served directory.

        Raises:
            SSIFetchError: Path escapes the root or cannot be read.
        """
        try:
            target = (self.local_path / file.lstrip("/")).resolve()
        except ValueError as e:
            # embedded NUL byte
            raise SSIFetchError(file, str(e)) from e
        try:
            target.relative_to(self.local_path)
        except ValueError:
            raise SSIFetchError(file, "outside of the served directory") from None

        try:
            data = target.read_bytes()
        except (OSError, ValueError) as e:
            raise SSIFetchError(file, getattr(e, "strerror", None) or str(e)) from e
        return data.decode(self.charset, errors="replace")

    def _charset_of(self, response: httpx.Response) -> str:
        # httpx only reports a charset if the Content-Type header carried one
        declared: Optional[str] = response.charset_encoding
        if declared:
            try:
                info = codecs.lookup(declared)
            except LookupError:
                logger.debug(f"Unknown fragment charset {declared!r}, using {self.charset}")
            else:
                # base64 and friends are codecs but not text encodings
                if info._is_text_encoding:
                    return info.name
                logger.debug(f"Fragment charset {declared!r} is not a text encoding, using {self.charset}")
        return self.charset
