"""
=============================================================================
SOCKET SERVER
=============================================================================

Binds one endpoint and runs its accept loop. The endpoint can be any of:

    ┌──────────────────┬───────────────────────────────────────────────────┐
    │ endpoint         │ bound as                                          │
    ├──────────────────┼───────────────────────────────────────────────────┤
    │ 8080             │ TCP, all interfaces (IPv6 dual-stack if possible) │
    │ tcp://host:port  │ TCP, the first getaddrinfo() result for host      │
    │ unix:/path.sock  │ AF_UNIX stream socket; stale socket file removed  │
    │ pipe:\\\\.\\pipe\\x │ Windows named pipe (see pipe.py)                  │
    └──────────────────┴───────────────────────────────────────────────────┘

=============================================================================
SOCKET LIFECYCLE
=============================================================================

    bind()            socket(), setsockopt(), bind(), listen()
      │               any OSError propagates: the caller decides whether
      │               a conflict is worth a retry
      ▼
    serve_forever()   accept() with a 1s timeout, so shutdown() is
      │               noticed within a second; each client becomes a
      │               Connection and goes to the connection handler
      ▼
    close()           exactly once: stop the loop, close the socket,
                      remove the UNIX socket file we created

=============================================================================
SOCKET OPTIONS
=============================================================================

SO_REUSEADDR (not on Windows): a restart can rebind a port whose old
connections still sit in TIME_WAIT. It does NOT allow binding a port that
another socket is listening on, so "address in use" is still reported.
On Windows the same option means "steal the port", so it is left off.

SO_REUSEPORT is never set: it would let two servers share a port silently,
and the port-conflict fallback depends on the conflict being reported.

TCP_NODELAY: responses go out as soon as they are written.

=============================================================================
"""

import logging
import os
import socket
import stat
import sys
import threading
from typing import TYPE_CHECKING, Callable, Optional, Tuple, Union

from .connection import Connection
from .endpoint import EndpointSpec, PipeEndpoint, TcpEndpoint, UnixEndpoint
from .pipe import PipeListener

if TYPE_CHECKING:
    from ..config import ServeConfig


logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

ACCEPT_POLL_INTERVAL = 1.0

ConnectionHandler = Callable[[Connection], None]


class SocketServer:
    """
    One bound endpoint and its accept loop.

        server = SocketServer(TcpEndpoint(port=8080), config)
        server.bind()                         # OSError on failure
        server.serve_forever(handle)          # blocks until shutdown()
        server.close()
    """

    def __init__(self, endpoint: EndpointSpec, config: Optional["ServeConfig"] = None):
        self.endpoint = endpoint
        self.backlog = config.backlog if config else 128
        self.buffer_size = config.buffer_size if config else 64 * 1024
        self.timeout = config.timeout if config else 30.0
        self.keep_alive_timeout = config.keep_alive_timeout if config else 5.0
        self.max_request_size = config.max_request_size if config else 1024 * 1024

        self._socket: Optional[socket.socket] = None
        self._pipe: Optional[PipeListener] = None
        self._unix_path: Optional[str] = None
        self._running = False
        self._closed = False
        self._lock = threading.Lock()
        self._stopped = threading.Event()

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_bound(self) -> bool:
        return self._socket is not None or self._pipe is not None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def address(self) -> Union[Tuple, str, None]:
        """
        The address actually bound: (host, port, ...) for TCP, a path for
        UNIX sockets and pipes, None before bind().
        """
        if self._pipe is not None:
            return self._pipe.address
        if self._socket is None:
            return None
        if self._unix_path is not None:
            return self._unix_path
        return self._socket.getsockname()

    @property
    def port(self) -> Optional[int]:
        """Bound TCP port (the OS-chosen one for port 0); None otherwise."""
        address = self.address
        if isinstance(address, tuple):
            return address[1]
        return None

    # =========================================================================
    # BINDING
    # =========================================================================

    def bind(self) -> None:
        """
        Bind and listen.

        Raises:
            OSError: The endpoint could not be bound (errno EADDRINUSE for
                a taken port).
        """
        if self.is_bound:
            return

        if isinstance(self.endpoint, TcpEndpoint):
            self._socket = self._bind_tcp(self.endpoint)
        elif isinstance(self.endpoint, UnixEndpoint):
            self._socket = self._bind_unix(self.endpoint)
        elif isinstance(self.endpoint, PipeEndpoint):
            self._pipe = PipeListener(self.endpoint.path, backlog=self.backlog)
        else:
            raise TypeError(f"Not an endpoint: {self.endpoint!r}")

        logger.debug(f"Bound {self.endpoint} at {self.address}")

    def _bind_tcp(self, endpoint: TcpEndpoint) -> socket.socket:
        if endpoint.host is None:
            if socket.has_dualstack_ipv6():
                family, address = socket.AF_INET6, ("::", endpoint.port)
            else:
                family, address = socket.AF_INET, ("0.0.0.0", endpoint.port)
        else:
            infos = socket.getaddrinfo(
                endpoint.host, endpoint.port,
                socket.AF_UNSPEC, socket.SOCK_STREAM, 0, socket.AI_PASSIVE,
            )
            family, _, _, _, address = infos[0]

        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            if not IS_WINDOWS:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if family == socket.AF_INET6 and endpoint.host is None:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0)
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
            sock.bind(address)
            sock.listen(self.backlog)
        except OSError:
            sock.close()
            raise

        sock.settimeout(ACCEPT_POLL_INTERVAL)
        return sock

    def _bind_unix(self, endpoint: UnixEndpoint) -> socket.socket:
        if not hasattr(socket, "AF_UNIX"):
            raise OSError(f"UNIX domain sockets are not supported on this platform: {endpoint.path}")

        # A socket file left behind by a crashed run would make bind() fail.
        # Only socket files are removed; anything else is reported as is.
        try:
            if stat.S_ISSOCK(os.stat(endpoint.path).st_mode):
                os.unlink(endpoint.path)
                logger.debug(f"Removed stale socket file {endpoint.path}")
        except FileNotFoundError:
            pass

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(endpoint.path)
            sock.listen(self.backlog)
        except OSError:
            sock.close()
            raise

        self._unix_path = endpoint.path
        sock.settimeout(ACCEPT_POLL_INTERVAL)
        return sock

    # =========================================================================
    # ACCEPT LOOP
    # =========================================================================

    def serve_forever(self, connection_handler: ConnectionHandler) -> None:
        """
        Accept clients until shutdown() or close().

        Each client is wrapped in a Connection and passed to
        connection_handler, which is expected to hand it off quickly
        (to the thread pool) and return.
        """
        if not self.is_bound:
            raise RuntimeError("serve_forever() called before bind()")
        if self._closed:
            return

        self._running = True
        self._stopped.clear()
        try:
            if self._pipe is not None:
                self._accept_pipe(connection_handler)
            else:
                self._accept_sockets(connection_handler)
        finally:
            self._running = False
            self._stopped.set()

    def _accept_sockets(self, connection_handler: ConnectionHandler) -> None:
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error on {self.endpoint}: {e}")
                break

            logger.debug(f"Accepted connection on {self.endpoint} from {client_address or 'local peer'}")
            connection_handler(self._wrap(client_socket, client_address))

    def _accept_pipe(self, connection_handler: ConnectionHandler) -> None:
        while self._running:
            try:
                client = self._pipe.accept()
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error on {self.endpoint}: {e}")
                break
            if client is None:
                break
            connection_handler(self._wrap(client, ""))

    def _wrap(self, client, address) -> Connection:
        return Connection(
            socket=client,
            address=address,
            endpoint=str(self.endpoint),
            buffer_size=self.buffer_size,
            timeout=self.timeout,
            keep_alive_timeout=self.keep_alive_timeout,
            max_request_size=self.max_request_size,
        )

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def shutdown(self) -> None:
        """Ask the accept loop to stop. Returns immediately."""
        self._running = False

    def close(self) -> None:
        """Stop accepting and release the endpoint. Safe to call repeatedly."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        self.shutdown()

        if self._pipe is not None:
            self._pipe.close()

        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass

        if self._unix_path is not None:
            try:
                os.unlink(self._unix_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove socket file {self._unix_path}: {e}")

        logger.debug(f"Closed {self.endpoint}")

    def wait_closed(self, timeout: Optional[float] = None) -> bool:
        """Wait for the accept loop to exit. False on timeout."""
        return self._stopped.wait(timeout)
