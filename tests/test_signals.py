"""Tests for termination signal handling around external commands."""

import os
import shutil
import signal
import threading

import pytest

from luks_fips.storage import signals
from luks_fips.storage.devices import run_command
from luks_fips.storage.signals import deferred_signals, install_signal_handlers


@pytest.fixture
def handlers_installed():
    """Install the handlers and restore the previous ones afterwards."""
    previous = {signum: signal.getsignal(signum) for signum in signals.HANDLED_SIGNALS}
    install_signal_handlers()
    yield
    for signum, handler in previous.items():
        signal.signal(signum, handler)
    signals._depth = 0
    signals._pending = None


class TestInstallSignalHandlers:
    def test_handles_sigterm_and_sighup(self, mocker):
        installed = {}
        mocker.patch(
            "luks_fips.storage.signals.signal.signal",
            side_effect=lambda signum, handler: installed.__setitem__(signum, handler),
        )

        install_signal_handlers()

        assert set(installed) == {signal.SIGTERM, signal.SIGHUP}

    def test_signal_between_commands_exits_immediately(self, handlers_installed):
        with pytest.raises(SystemExit) as excinfo:
            signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)

        assert excinfo.value.code == 1


class TestDeferredSignals:
    """A signal during a command is held until the command has finished."""

    def test_exit_raised_after_block(self, handlers_installed, log_messages):
        finished = []

        with pytest.raises(SystemExit):
            with deferred_signals():
                signal.getsignal(signal.SIGHUP)(signal.SIGHUP, None)
                finished.append(True)

        assert finished == [True]
        assert any("Received SIGHUP during an external command" in m for m in log_messages)

    def test_nested_blocks_exit_once_outermost_finishes(self, handlers_installed):
        with pytest.raises(SystemExit):
            with deferred_signals():
                with deferred_signals():
                    signal.getsignal(signal.SIGTERM)(signal.SIGTERM, None)
                assert signals._pending == signal.SIGTERM

    def test_no_signal_no_exit(self, handlers_installed):
        with deferred_signals():
            pass

        assert signals._pending is None

    @pytest.mark.skipif(shutil.which("sh") is None, reason="needs a POSIX shell")
    def test_running_command_completes_before_exit(self, handlers_installed, tmp_path):
        marker = tmp_path / "marker"
        timer = threading.Timer(0.3, os.kill, (os.getpid(), signal.SIGTERM))
        timer.start()
        try:
            with pytest.raises(SystemExit):
                run_command(["sh", "-c", f"sleep 1; touch {marker}"])
        finally:
            timer.cancel()

        assert marker.exists()
