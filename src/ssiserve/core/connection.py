"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps one accepted client (TCP socket, UNIX socket or named pipe) with
buffered request reading and response writing.

=============================================================================
READING A REQUEST
=============================================================================

Bytes arrive in arbitrary pieces, so they are buffered until a whole
request is there:

    ┌─────────────────────────────────────────────────────────────────┐
    │   set timeout        30s for the first request,                 │
    │                      keep_alive_timeout for the ones after it   │
    │        │                                                        │
    │   recv() until "\r\n\r\n" is in the buffer                      │
    │        │                                                        │
    │   read Content-Length, recv() until the body is complete        │
    │        │                                                        │
    │   cut one request off the front, keep the rest (pipelining)     │
    └─────────────────────────────────────────────────────────────────┘

=============================================================================
WRITING A RESPONSE
=============================================================================

Responses are written piece by piece as HTTPResponse.iter_bytes() yields
them, so a large file goes out chunk by chunk and never sits in memory
whole. A client that disconnects mid-way makes the write fail; the caller
then drops the connection.

=============================================================================
"""

import logging
import socket
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    One client connection.

    Attributes:
        socket: The accepted socket, or a PipeSocket for named pipes.
        address: (ip, port, ...) for TCP peers; a path string (often empty)
            for UNIX sockets and pipes.
        endpoint: Display form of the endpoint the client connected to.
    """

    socket: Any
    address: Any
    endpoint: str = ""

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    requests_handled: int = 0

    buffer_size: int = 64 * 1024
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete request.

        Returns:
            The raw request bytes, or None if the client closed the
            connection (or went quiet on a keep-alive connection).

        Raises:
            TimeoutError: The first request did not arrive in time.
            ValueError: The request grew past max_request_size.
        """
        self.state = ConnectionState.READING

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None
                self._buffer += chunk
                self._check_size()

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break  # short body; the parser reports it
                self._buffer += chunk
                self._check_size()

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            return request_data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if self.state != ConnectionState.CLOSED:
                self.socket.settimeout(self.timeout)

    def _check_size(self):
        if len(self._buffer) > self.max_request_size:
            raise ValueError(f"Request too large: {len(self._buffer)} bytes")

    def _recv(self) -> bytes:
        try:
            return self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return b""

    @staticmethod
    def _content_length(header_section: bytes) -> int:
        # Only enough parsing to know how much body to wait for; the
        # request parser validates the header properly.
        for line in header_section.split(b"\r\n")[1:]:
            name, _, value = line.partition(b":")
            if name.strip().lower() == b"content-length":
                try:
                    return max(int(value.strip()), 0)
                except ValueError:
                    return 0
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_response(self, data: bytes) -> bool:
        """Send one block of bytes. False if the client is gone."""
        return self.send_stream((data,))

    def send_stream(self, pieces: Iterable[bytes]) -> bool:
        """
        Send pieces in order as they are produced.

        Returns:
            True if everything was written, False if the client went away.
            The piece iterator is closed either way.
        """
        self.state = ConnectionState.WRITING
        try:
            for piece in pieces:
                if piece:
                    self.socket.sendall(piece)
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False
        finally:
            close = getattr(pieces, "close", None)
            if close is not None:
                close()

    # =========================================================================
    # CLOSING
    # =========================================================================

    def close(self):
        """
        Close gracefully: half-close our side, drain briefly, release.
        """
        if self.state == ConnectionState.CLOSED:
            return
        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # peer already gone

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
