"""
=============================================================================
WINDOWS NAMED PIPE TRANSPORT
=============================================================================

Lets the socket server accept HTTP clients on `\\\\.\\pipe\\<name>`.

The standard library only speaks named pipes through
multiprocessing.connection, which is message oriented (recv_bytes /
send_bytes) rather than stream oriented. PipeSocket puts a socket-shaped
face on one accepted pipe so Connection can read and write it like any
other client:

    ┌──────────────────────┐          ┌───────────────────────────────┐
    │ Connection           │          │ PipeSocket                    │
    │   socket.recv(n)     │ ───────► │   buffer recv_bytes() output, │
    │                      │          │   hand out n bytes at a time  │
    │   socket.sendall(b)  │ ───────► │   send_bytes(b)               │
    │   socket.settimeout  │ ───────► │   (ignored)                   │
    └──────────────────────┘          └───────────────────────────────┘

Only available on Windows; elsewhere PipeListener raises OSError on bind.

=============================================================================
"""

import logging
import sys
from typing import Optional


logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


class PipeSocket:
    """One accepted pipe client, read and written like a connected socket."""

    def __init__(self, connection, address: str):
        self._connection = connection
        self._address = address
        self._pending = b""
        self._closed = False

    def recv(self, bufsize: int) -> bytes:
        if not self._pending:
            try:
                self._pending = self._connection.recv_bytes()
            except (EOFError, OSError):
                return b""
        data, self._pending = self._pending[:bufsize], self._pending[bufsize:]
        return data

    def sendall(self, data: bytes) -> None:
        if data:
            self._connection.send_bytes(data)

    def getpeername(self) -> str:
        return self._address

    # Pipes have no timeouts or half-close; Connection calls these anyway
    def settimeout(self, value: Optional[float]) -> None:
        pass

    def setblocking(self, flag: bool) -> None:
        pass

    def shutdown(self, how: int) -> None:
        pass

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._connection.close()


class PipeListener:
    """
    Accepts clients on a Windows named pipe.

        listener = PipeListener(r"\\\\.\\pipe\\ssiserve")
        client = listener.accept()        # -> PipeSocket
        listener.close()
    """

    def __init__(self, address: str, backlog: int = 128):
        """
        Raises:
            OSError: Not on Windows, or the pipe name is taken.
        """
        if not IS_WINDOWS:
            raise OSError(f"Named pipes are only supported on Windows: {address}")

        from multiprocessing.connection import Listener

        self.address = address
        self._listener = Listener(address, family="AF_PIPE", backlog=backlog)
        self._closed = False

    def accept(self) -> Optional[PipeSocket]:
        """Block until a client connects. None once the listener is closed."""
        try:
            connection = self._listener.accept()
        except OSError:
            if self._closed:
                return None
            raise
        if self._closed:
            connection.close()
            return None
        return PipeSocket(connection, self.address)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        # accept() ignores close(); a throwaway client wakes it up
        from multiprocessing.connection import Client
        try:
            Client(self.address, family="AF_PIPE").close()
        except OSError as e:
            logger.debug(f"Could not wake pipe listener {self.address}: {e}")

        self._listener.close()
