"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing underneath the file server:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ endpoint.py       "8080", "tcp://[::1]:80", "unix:/x.sock",         │
    │                   "pipe:\\\\.\\pipe\\x" → EndpointSpec               │
    ├─────────────────────────────────────────────────────────────────────┤
    │ socket_server.py  binds one EndpointSpec, runs its accept loop      │
    │ pipe.py           named pipe listener with a socket-like client     │
    ├─────────────────────────────────────────────────────────────────────┤
    │ thread_pool.py    workers shared by every endpoint                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │ connection.py     buffered request reads, streamed response writes  │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .endpoint import (
    DEFAULT_PORT,
    EndpointError,
    EndpointSpec,
    InvalidEndpoint,
    PipeEndpoint,
    TcpEndpoint,
    UnixEndpoint,
    UnknownScheme,
    parse_endpoint,
)
from .connection import Connection, ConnectionState
from .socket_server import SocketServer
from .thread_pool import ThreadPool

__all__ = [
    "DEFAULT_PORT",
    "EndpointError",
    "EndpointSpec",
    "InvalidEndpoint",
    "PipeEndpoint",
    "TcpEndpoint",
    "UnixEndpoint",
    "UnknownScheme",
    "parse_endpoint",
    "Connection",
    "ConnectionState",
    "SocketServer",
    "ThreadPool",
]
