"""
=============================================================================
SHUTDOWN COORDINATOR
=============================================================================

Collects the close callbacks of everything that holds an OS resource (each
listener, the worker pool, the HTTP client) and runs them exactly once,
whatever triggers the shutdown first:

    ┌───────────────┐
    │ SIGINT        │──┐
    ├───────────────┤  │     ┌──────────────────────────────────────┐
    │ SIGTERM       │──┼───► │ run()                                │
    ├───────────────┤  │     │   already run?  → return             │
    │ atexit        │──┤     │   callbacks in registration order;   │
    ├───────────────┤  │     │   one failing does not stop the rest │
    │ direct call   │──┘     └──────────────────────────────────────┘
    └───────────────┘

A second Ctrl+C while the close sequence is still running means "stop
waiting": the process exits on the spot with status 0.

=============================================================================
"""

import atexit
import logging
import os
import signal
import threading
from typing import Callable, List, Optional, Tuple


logger = logging.getLogger(__name__)

CloseCallback = Callable[[], None]


class ShutdownCoordinator:
    """
    Process-wide, run-once close sequence.

        coordinator = ShutdownCoordinator()
        coordinator.register(listener.close, name="tcp://:5000")
        coordinator.install()        # signals + atexit, main thread only
        coordinator.wait()           # until a signal arrives
    """

    def __init__(self, exit_fn: Callable[[int], None] = os._exit):
        self._callbacks: List[Tuple[str, CloseCallback]] = []
        self._lock = threading.Lock()
        self._started = False
        self._done = threading.Event()
        self._installed = False
        self._signalled = False
        self._previous_handlers = {}
        self._exit = exit_fn

    @property
    def triggered(self) -> bool:
        """True once run() has started."""
        return self._started

    def register(self, callback: CloseCallback, name: Optional[str] = None) -> None:
        """
        Add a close callback. Registering after shutdown started runs the
        callback right away, so late listeners are not leaked.
        """
        label = name or getattr(callback, "__qualname__", repr(callback))
        with self._lock:
            if not self._started:
                self._callbacks.append((label, callback))
                return
        self._invoke(label, callback)

    def run(self) -> bool:
        """
        Run every registered callback once.

        Returns:
            True if this call ran the sequence, False if it had already run.
        """
        with self._lock:
            if self._started:
                return False
            self._started = True
            callbacks = list(self._callbacks)
            self._callbacks.clear()

        for label, callback in callbacks:
            self._invoke(label, callback)

        self._done.set()
        return True

    @staticmethod
    def _invoke(label: str, callback: CloseCallback) -> None:
        try:
            callback()
        except Exception as e:
            logger.error(f"Error while closing {label}: {e}", exc_info=True)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until run() has finished. False on timeout."""
        return self._done.wait(timeout)

    # =========================================================================
    # PROCESS HOOKS
    # =========================================================================

    def install(self) -> None:
        """
        Hook SIGINT, SIGTERM and interpreter exit. Must be called from the
        main thread (a Python restriction on signal handlers).
        """
        if self._installed:
            return
        self._installed = True

        for signum in (signal.SIGINT, signal.SIGTERM):
            self._previous_handlers[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle_signal)

        atexit.register(self.run)

    def uninstall(self) -> None:
        """Restore the signal handlers that were active before install()."""
        if not self._installed:
            return
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()
        atexit.unregister(self.run)
        self._installed = False

    def _handle_signal(self, signum, frame) -> None:
        if self._started or self._signalled:
            if signum == signal.SIGINT:
                logger.warning("Force-closing all open sockets...")
                self._exit(0)
            return

        self._signalled = True
        logger.info("Gracefully shutting down. Please wait...")
        # Closing sockets can block; keep the signal handler itself short
        threading.Thread(target=self.run, name="shutdown", daemon=True).start()
