"""
=============================================================================
LISTENER LIFECYCLE
=============================================================================

A Listener owns one endpoint from bind to close:

    BINDING ──bind ok──► SERVING ──close()──► CLOSED
       │
       ├── EADDRINUSE on a bare port ──► one retry on port 0 (OS picks)
       │                                    │
       │                                    └── fails too ──► FAILED
       └── anything else ──────────────────────────────────► FAILED

Only a bare port number ("5000", the default) may move. An endpoint given
as a URI means exactly that address, so a conflict there is fatal, as is
any failure of the retry. FAILED surfaces as BindError; the CLI reports it
and exits with status 1.

Once SERVING, the listener has registered its close() with the shutdown
coordinator and runs its accept loop on a daemon thread, handing every
connection to the shared worker pool.

=============================================================================
ANNOUNCING
=============================================================================

    ┌──────────────────────────────┬──────────────────────────────────────┐
    │ interactive terminal,        │ boxed banner: local address, network │
    │ SERVE_ENV != production      │ address, moved-port notice, clipboard│
    ├──────────────────────────────┼──────────────────────────────────────┤
    │ otherwise                    │ INFO "Accepting connections at ..."  │
    │                              │ (+ WARNING if the port was moved)    │
    └──────────────────────────────┴──────────────────────────────────────┘

=============================================================================
"""

import errno
import logging
import sys
import threading
from enum import Enum
from typing import Callable, Optional

from .config import ServeConfig, is_production
from .core.connection import Connection
from .core.endpoint import EndpointSpec, TcpEndpoint
from .core.socket_server import SocketServer
from .presentation import ClipboardError, copy_to_clipboard, get_network_address, render_banner
from .shutdown import ShutdownCoordinator


logger = logging.getLogger(__name__)

# WSAEADDRINUSE; Windows reports it instead of errno.EADDRINUSE
WSAEADDRINUSE = 10048

WILDCARD_HOSTS = ("", "0.0.0.0", "::")


class ListenerState(Enum):
    BINDING = "binding"
    SERVING = "serving"
    CLOSED = "closed"
    FAILED = "failed"


class BindError(Exception):
    """An endpoint could not be bound, even after the fallback (if any)."""

    def __init__(self, endpoint: EndpointSpec, cause: OSError):
        super().__init__(f"Cannot listen on {endpoint}: {cause.strerror or cause}")
        self.endpoint = endpoint
        self.cause = cause


def is_address_in_use(error: OSError) -> bool:
    return error.errno == errno.EADDRINUSE or getattr(error, "winerror", None) == WSAEADDRINUSE


class Listener:
    """
    Bind, serve and close one endpoint.

        listener = Listener(endpoint, config, app.handle_connection, coordinator)
        listener.start()          # BindError if it cannot bind
        listener.announce()
        ...
        listener.close()          # or coordinator.run()
    """

    def __init__(
        self,
        endpoint: EndpointSpec,
        config: ServeConfig,
        connection_handler: Callable[[Connection], None],
        coordinator: ShutdownCoordinator,
    ):
        self.requested = endpoint
        self.endpoint = endpoint
        self.config = config
        self.connection_handler = connection_handler
        self.coordinator = coordinator

        self.state = ListenerState.BINDING
        self.previous_port: Optional[int] = None
        self.local_address: Optional[str] = None
        self.network_address: Optional[str] = None

        self.server: Optional[SocketServer] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    # =========================================================================
    # STARTING
    # =========================================================================

    def start(self) -> "Listener":
        """
        Bind (with the bare-port fallback), register with the shutdown
        coordinator and start accepting.

        Raises:
            BindError: The endpoint cannot be bound.
        """
        self.server = self._bind()
        self.local_address, self.network_address = self._addresses(self.server)

        self.coordinator.register(self.close, name=str(self.requested))

        self._thread = threading.Thread(
            target=self.server.serve_forever,
            args=(self.connection_handler,),
            name=f"accept-{self.requested}",
            daemon=True,
        )
        self.state = ListenerState.SERVING
        self._thread.start()
        return self

    def _bind(self) -> SocketServer:
        try:
            return self._try_bind(self.endpoint)
        except OSError as e:
            endpoint = self.endpoint
            if not (is_address_in_use(e) and isinstance(endpoint, TcpEndpoint) and endpoint.bare):
                self.state = ListenerState.FAILED
                raise BindError(endpoint, e) from e

            logger.debug(f"Port {endpoint.port} is in use, asking the OS for another one")
            self.previous_port = endpoint.port
            self.endpoint = TcpEndpoint(port=0)

        try:
            return self._try_bind(self.endpoint)
        except OSError as e:
            self.state = ListenerState.FAILED
            raise BindError(self.endpoint, e) from e

    def _try_bind(self, endpoint: EndpointSpec) -> SocketServer:
        server = SocketServer(endpoint, self.config)
        try:
            server.bind()
        except OSError:
            server.close()
            raise
        return server

    @staticmethod
    def _addresses(server: SocketServer):
        """(local address, network address) for display."""
        address = server.address
        if not isinstance(address, tuple):
            return address, None

        host, port = address[0], address[1]
        if host in WILDCARD_HOSTS:
            ip = get_network_address()
            network = f"http://{ip}:{port}" if ip else None
            return f"http://localhost:{port}", network

        if ":" in host:
            host = f"[{host}]"
        return f"http://{host}:{port}", None

    @property
    def port(self) -> Optional[int]:
        return self.server.port if self.server and self.state == ListenerState.SERVING else None

    # =========================================================================
    # ANNOUNCING
    # =========================================================================

    def announce(self, interactive: Optional[bool] = None) -> None:
        """
        Tell the user where we are listening.

        Args:
            interactive: Force banner (True) or log line (False). Default:
                banner on a TTY unless SERVE_ENV=production.
        """
        if interactive is None:
            interactive = sys.stdout.isatty() and not is_production()

        if not interactive:
            suffix = f" at {self.local_address}" if self.local_address else ""
            logger.info(f"Accepting connections{suffix}")
            if self.previous_port is not None:
                logger.warning(f"This port was picked because {self.previous_port} is in use.")
            return

        clipboard_note = None
        if self.config.clipboard and self.local_address:
            try:
                copy_to_clipboard(self.local_address)
                clipboard_note = "Copied local address to clipboard!"
            except ClipboardError as e:
                logger.warning(f"Cannot copy to clipboard: {e}")

        print()
        print(render_banner(self.local_address or str(self.endpoint), self.network_address,
                            self.previous_port, clipboard_note))
        print()

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self) -> None:
        """Stop accepting and release the endpoint. Idempotent."""
        with self._lock:
            if self.state in (ListenerState.CLOSED, ListenerState.FAILED):
                return
            self.state = ListenerState.CLOSED

        if self.server is not None:
            self.server.close()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=2.0)
        logger.debug(f"Listener {self.requested} closed")
