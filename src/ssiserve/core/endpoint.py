"""
=============================================================================
LISTEN ENDPOINT DESCRIPTORS
=============================================================================

Turns a --listen string into a typed bind target.

=============================================================================
ACCEPTED SYNTAX
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │ Input                          │ Result                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │ 8080                           │ TcpEndpoint(8080, host=None, bare)  │
    │ tcp://localhost:1234           │ TcpEndpoint(1234, "localhost")      │
    │ tcp://0.0.0.0                  │ TcpEndpoint(5000, "0.0.0.0")        │
    │ tcp://[::1]:8080               │ TcpEndpoint(8080, "::1")            │
    │ unix:/tmp/serve.sock           │ UnixEndpoint("/tmp/serve.sock")     │
    │ pipe:\\\\.\\pipe\\Serve           │ PipeEndpoint("\\\\.\\pipe\\Serve")     │
    └─────────────────────────────────────────────────────────────────────┘

A bare number is special: if that port turns out to be taken, the listener
is allowed to fall back to an OS-assigned port. Endpoints spelled out as
URIs are taken literally and a conflict is fatal.

=============================================================================
WHY NOT urllib.parse?
=============================================================================

urlsplit("tcp://[::1]:80").hostname drops the brackets AND lower-cases the
host, and it has no notion of the "pipe:" scheme carrying a Windows path
full of backslashes. The grammar here is tiny, so we split it by hand and
keep IPv6 literals intact.

=============================================================================
"""

import re
from dataclasses import dataclass
from typing import Optional, Union


DEFAULT_PORT = 5000

# Every Windows named pipe lives under this namespace
PIPE_PREFIX = "\\\\.\\"

SCHEME_PATTERN = re.compile(r"^([A-Za-z][A-Za-z0-9+.\-]*):(.*)$", re.DOTALL)


class EndpointError(ValueError):
    """Base class for listen endpoint errors."""


class InvalidEndpoint(EndpointError):
    """The endpoint uses a known scheme but is malformed."""

    def __init__(self, message: str, value: str):
        super().__init__(message)
        self.value = value


class UnknownScheme(EndpointError):
    """The endpoint uses a scheme we cannot listen on."""

    def __init__(self, scheme: Optional[str]):
        super().__init__(f"Unknown --listen endpoint scheme (protocol): {scheme or None}")
        self.scheme = scheme


@dataclass(frozen=True)
class TcpEndpoint:
    """
    A TCP host/port pair.

    Attributes:
        port: Port number, 0 meaning "let the OS pick".
        host: Host to bind, without IPv6 brackets. None = all interfaces.
        bare: True when the user gave just a number. Only bare endpoints
              may fall back to an ephemeral port on conflict.
    """

    port: int
    host: Optional[str] = None
    bare: bool = False

    @property
    def authority(self) -> str:
        """host:port for display, re-bracketing IPv6 literals."""
        host = self.host or ""
        if ":" in host:
            host = f"[{host}]"
        return f"{host}:{self.port}"

    def __str__(self) -> str:
        if self.bare:
            return str(self.port)
        return f"tcp://{self.authority}"


@dataclass(frozen=True)
class UnixEndpoint:
    """A UNIX domain socket path."""

    path: str

    def __str__(self) -> str:
        return f"unix:{self.path}"


@dataclass(frozen=True)
class PipeEndpoint:
    """A Windows named pipe path (always starts with \\\\.\\)."""

    path: str

    def __str__(self) -> str:
        return f"pipe:{self.path}"


EndpointSpec = Union[TcpEndpoint, UnixEndpoint, PipeEndpoint]


def parse_endpoint(value: str) -> EndpointSpec:
    """
    Parse a listen URI into an endpoint.

    Rules are applied in order:

        1. Whole string is an integer     → bare TcpEndpoint
        2. pipe:  + \\\\.\\ prefix           → PipeEndpoint
        3. unix:  + non-empty path        → UnixEndpoint
        4. tcp:   [//host][:port]         → TcpEndpoint (port 5000 default)
        5. anything else                  → UnknownScheme

    Raises:
        InvalidEndpoint: Known scheme, bad shape.
        UnknownScheme: Unsupported or missing scheme.
    """
    stripped = value.strip()

    if re.fullmatch(r"[+-]?\d+", stripped):
        return TcpEndpoint(port=_check_port(int(stripped), value), bare=True)

    match = SCHEME_PATTERN.match(stripped)
    if not match:
        raise UnknownScheme(None)

    scheme = match.group(1).lower()
    rest = match.group(2)

    if scheme == "pipe":
        if not rest.startswith(PIPE_PREFIX):
            raise InvalidEndpoint(f"Invalid Windows named pipe endpoint: {value}", value)
        return PipeEndpoint(path=rest)

    if scheme == "unix":
        path = _unix_path(rest)
        if not path:
            raise InvalidEndpoint(f"Invalid UNIX domain socket endpoint: {value}", value)
        return UnixEndpoint(path=path)

    if scheme == "tcp":
        host, port = _split_authority(rest, value)
        return TcpEndpoint(port=port, host=host)

    raise UnknownScheme(scheme)


def _unix_path(rest: str) -> str:
    """Extract the path component of a unix: URI (drops authority, query, fragment)."""
    rest = re.split(r"[?#]", rest, maxsplit=1)[0]
    if rest.startswith("//"):
        # unix://host/path → the authority is meaningless for a socket file
        slash = rest.find("/", 2)
        rest = rest[slash:] if slash != -1 else ""
    return rest


def _split_authority(rest: str, value: str) -> tuple[Optional[str], int]:
    """Split the authority of a tcp: URI into (host, port)."""
    authority = rest[2:] if rest.startswith("//") else rest
    authority = re.split(r"[/?#]", authority, maxsplit=1)[0]

    # Strip userinfo, nobody listens as a user
    if "@" in authority:
        authority = authority.rsplit("@", 1)[1]

    port_text = ""
    if authority.startswith("["):
        close = authority.find("]")
        if close == -1:
            raise InvalidEndpoint(f"Invalid IPv6 host in TCP endpoint: {value}", value)
        host = authority[1:close]
        tail = authority[close + 1:]
        if tail:
            if not tail.startswith(":"):
                raise InvalidEndpoint(f"Invalid TCP endpoint: {value}", value)
            port_text = tail[1:]
    elif authority.count(":") > 1:
        # Unbracketed IPv6 literal; no port can be expressed this way
        host = authority
    elif ":" in authority:
        host, port_text = authority.split(":", 1)
    else:
        host = authority

    if not port_text:
        port = DEFAULT_PORT
    elif port_text.isdigit():
        port = _check_port(int(port_text), value)
    else:
        raise InvalidEndpoint(f"Invalid port in TCP endpoint: {value}", value)

    return (host or None), port


def _check_port(port: int, value: str) -> int:
    if not 0 <= port <= 65535:
        raise InvalidEndpoint(f"Port out of range (0-65535): {value}", value)
    return port
