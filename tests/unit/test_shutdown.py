"""
Unit tests for the run-once shutdown coordinator.
"""

import signal

from ssiserve.shutdown import ShutdownCoordinator


class TestRun:
    """Tests for run() and register()."""

    def test_runs_once_in_order(self):
        """Test that callbacks run in registration order, and only once."""
        calls = []
        coordinator = ShutdownCoordinator(exit_fn=lambda status: None)
        coordinator.register(lambda: calls.append("listener"))
        coordinator.register(lambda: calls.append("pool"))

        assert coordinator.run() is True
        assert coordinator.run() is False
        assert calls == ["listener", "pool"]
        assert coordinator.triggered

    def test_failure_does_not_stop_the_rest(self, caplog):
        """Test that one raising callback is logged and the next still runs."""
        calls = []

        def broken():
            raise OSError("already closed")

        coordinator = ShutdownCoordinator(exit_fn=lambda status: None)
        coordinator.register(broken, name="tcp://:5000")
        coordinator.register(lambda: calls.append("pool"))

        coordinator.run()

        assert calls == ["pool"]
        assert "Error while closing tcp://:5000" in caplog.text

    def test_late_registration_runs_immediately(self):
        """Test that a callback added after shutdown is not leaked."""
        calls = []
        coordinator = ShutdownCoordinator(exit_fn=lambda status: None)
        coordinator.run()

        coordinator.register(lambda: calls.append("late"))

        assert calls == ["late"]

    def test_wait(self):
        """Test that wait() reports completion."""
        coordinator = ShutdownCoordinator(exit_fn=lambda status: None)

        assert coordinator.wait(0.01) is False
        coordinator.run()
        assert coordinator.wait(0.01) is True


class TestSignals:
    """Tests for the signal handler."""

    def test_first_signal_starts_shutdown(self, caplog):
        """Test that SIGTERM runs the close sequence in the background."""
        calls = []
        coordinator = ShutdownCoordinator(exit_fn=lambda status: calls.append(("exit", status)))
        coordinator.register(lambda: calls.append("closed"))

        coordinator._handle_signal(signal.SIGTERM, None)

        assert coordinator.wait(5.0)
        assert calls == ["closed"]
        assert "Gracefully shutting down" in caplog.text

    def test_second_sigint_forces_exit(self, caplog):
        """Test that Ctrl+C during shutdown exits with status 0."""
        exits = []
        coordinator = ShutdownCoordinator(exit_fn=exits.append)
        coordinator.run()

        coordinator._handle_signal(signal.SIGINT, None)

        assert exits == [0]
        assert "Force-closing all open sockets" in caplog.text

    def test_second_sigterm_is_ignored(self):
        """Test that only SIGINT forces the exit."""
        exits = []
        coordinator = ShutdownCoordinator(exit_fn=exits.append)
        coordinator.run()

        coordinator._handle_signal(signal.SIGTERM, None)

        assert exits == []

    def test_install_and_uninstall(self):
        """Test that the previous handlers come back."""
        before = signal.getsignal(signal.SIGTERM)
        coordinator = ShutdownCoordinator(exit_fn=lambda status: None)

        coordinator.install()
        try:
            assert signal.getsignal(signal.SIGTERM) == coordinator._handle_signal
        finally:
            coordinator.uninstall()

        assert signal.getsignal(signal.SIGTERM) == before
