"""
=============================================================================
SERVE APPLICATION
=============================================================================

Wires the pieces together and owns everything that lives as long as the
process: config, content transform, HTTP client, worker pool, shutdown
coordinator, listeners. Nothing here is global; tests build as many
ServeApp instances as they like.

=============================================================================
REQUEST FLOW
=============================================================================

    ┌──────────────┐   ┌──────────────┐   ┌──────────────────────────────┐
    │ Listener     │   │ Listener     │   │ Listener                     │
    │ tcp :5000    │   │ unix:/x.sock │   │ pipe:\\\\.\\pipe\\x             │
    └──────┬───────┘   └──────┬───────┘   └──────────────┬───────────────┘
           └──────────────────┼──────────────────────────┘
                              ▼
                     ThreadPool.submit(_process_connection)
                              │
                              ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │ keep-alive loop (one worker per connection)                         │
    │   read_request → parse → LoggingMiddleware → CompressionMiddleware  │
    │   → FileResponder ( → ResponseTransform → SSIRewriter )             │
    │   → iter_bytes() streamed to the client                             │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
SHUTDOWN ORDER
=============================================================================

Close callbacks run in registration order, which start() arranges as:

    1. every listener (stop accepting, release ports and socket files)
    2. the worker pool
    3. the HTTP client

=============================================================================
"""

import logging
from pathlib import Path
from typing import List, Optional, Sequence, Union

import httpx

from .config import ServeConfig
from .core.connection import Connection
from .core.endpoint import EndpointSpec
from .core.thread_pool import ThreadPool
from .handlers.static import FileResponder
from .http.request import HTTPParseError, RequestParser
from .http.response import HTTPResponse, HTTPStatus, error_page, internal_error
from .listener import Listener
from .middleware.base import MiddlewarePipeline
from .middleware.compression import CompressionMiddleware
from .middleware.logging import LoggingMiddleware
from .shutdown import ShutdownCoordinator
from .transform.pipeline import ResponseTransform


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

SSI_FETCH_TIMEOUT = 10.0


def setup_logging(level: Union[str, int] = "INFO") -> None:
    """Configure the root logger once, for the CLI."""
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    logging.getLogger("ssiserve").setLevel(level)

    # httpx logs every request at INFO; that is our access log's job
    if level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)


class ServeApp:
    """
    Serve one directory on any number of endpoints.

        app = ServeApp(config)
        app.start([TcpEndpoint(5000, bare=True)])   # BindError on failure
        app.run()                                   # until SIGINT/SIGTERM
    """

    def __init__(
        self,
        config: ServeConfig,
        root: Optional[Union[str, Path]] = None,
        coordinator: Optional[ShutdownCoordinator] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        """
        Args:
            config: Validated serve configuration.
            root: Served directory. Defaults to config.public, else cwd.
            coordinator: Shared shutdown coordinator (a fresh one if None).
            http_client: Client for SSI fragments. Created on demand when
                SSI is enabled; pass one in to stub the network.

        Raises:
            ValueError: Invalid config, or root is not a directory.
        """
        config.validate()
        self.config = config
        self.root = Path(root if root is not None else (config.public or ".")).resolve()
        self.coordinator = coordinator or ShutdownCoordinator()

        self._owns_client = http_client is None and bool(config.ssi)
        if self._owns_client:
            http_client = httpx.Client(timeout=SSI_FETCH_TIMEOUT, follow_redirects=True)
        self.http_client = http_client

        self.transform = ResponseTransform(
            ssi=config.ssi,
            charset=config.charset,
            root=self.root,
            client=self.http_client,
        )
        self.responder = FileResponder(config, self.root, self.transform)

        self.middleware = MiddlewarePipeline()
        self.middleware.add(LoggingMiddleware(log_format=config.log_format))
        if config.compress:
            self.middleware.add(CompressionMiddleware())
        self.handler = self.middleware.wrap(self.responder.handle)

        self.parser = RequestParser(max_request_size=config.max_request_size)
        self.pool = ThreadPool(min_workers=config.min_workers, max_workers=config.max_workers)
        self.listeners: List[Listener] = []
        self._running = False

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, endpoints: Sequence[EndpointSpec], announce: bool = True,
              interactive: Optional[bool] = None) -> List[Listener]:
        """
        Start the pool and one listener per endpoint.

        Raises:
            BindError: An endpoint could not be bound. Listeners started
                before it stay registered with the coordinator and are
                closed by it.
        """
        self._running = True
        self.pool.start()

        try:
            for endpoint in endpoints:
                listener = Listener(endpoint, self.config, self.handle_connection, self.coordinator)
                self.listeners.append(listener)
                listener.start()
                if announce:
                    listener.announce(interactive)
        finally:
            self.coordinator.register(self._stop_workers, name="thread pool")
            if self._owns_client:
                self.coordinator.register(self.http_client.close, name="http client")
        return self.listeners

    def run(self) -> None:
        """Install signal handlers and block until shutdown completes."""
        self.coordinator.install()
        try:
            # Short waits keep the main thread responsive to signals
            while not self.coordinator.wait(1.0):
                pass
        finally:
            self.coordinator.uninstall()
        logger.debug("Server stopped")

    def close(self) -> None:
        """Shut everything down now (same as receiving SIGTERM)."""
        self.coordinator.run()

    def _stop_workers(self) -> None:
        self._running = False
        self.pool.shutdown(wait=True, timeout=1.0)

    # =========================================================================
    # CONNECTIONS
    # =========================================================================

    def handle_connection(self, conn: Connection) -> None:
        """Called on a listener's accept thread: queue for a worker."""
        try:
            submitted = self.pool.submit(self._process_connection, args=(conn,), block=False)
        except RuntimeError:
            conn.close()  # pool already stopped
            return

        if not submitted:
            logger.warning(f"[{conn.id}] Worker queue full, rejecting connection")
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
            conn.close()

    def _process_connection(self, conn: Connection) -> None:
        """Keep-alive loop for one connection (runs on a worker)."""
        with conn:
            while self._running:
                try:
                    raw_request = conn.read_request()
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break
                except ValueError as e:
                    self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, str(e))
                    break
                except OSError as e:
                    logger.debug(f"[{conn.id}] Read failed: {e}")
                    break

                if raw_request is None:
                    break

                try:
                    request = self.parser.parse(raw_request, conn.address)
                except HTTPParseError as e:
                    self._send_error(conn, HTTPStatus(e.status_code), str(e))
                    break

                try:
                    response = self.handler(request)
                except Exception as e:
                    logger.exception(f"[{conn.id}] Handler error: {e}")
                    response = internal_error()

                keep_alive = self.config.keep_alive and request.is_keep_alive and self._running
                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
                else:
                    response.set_header("Connection", "close")

                if request.version == "HTTP/1.0":
                    # No chunked encoding before HTTP/1.1
                    response.materialize()

                include_body = request.method != "HEAD" and response.status.has_body
                pieces = response.iter_bytes(self.config.server_name, include_body=include_body)
                if not conn.send_stream(pieces):
                    break

                if not keep_alive:
                    break
                conn.set_keep_alive()

    def _send_error(self, conn: Connection, status: HTTPStatus, message: str) -> None:
        response: HTTPResponse = error_page(status, message)
        response.set_header("Connection", "close")
        conn.send_response(response.to_bytes(self.config.server_name))
