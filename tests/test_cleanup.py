"""Tests for cleanup.py - run-once release of build resources."""

import signal
from unittest.mock import patch

import pytest
from conftest import LOOP_DEVICE, FakeRunner

from linux_imagegen.cleanup import HANDLED_SIGNALS, CleanupHandler
from linux_imagegen.resources import (
    BlockDeviceBinding,
    MountBinding,
    ResourceTracker,
)


@pytest.fixture
def tracker(workspace):
    tracker = ResourceTracker()
    tracker.bind_device(BlockDeviceBinding(LOOP_DEVICE, workspace.image_path))
    tracker.bind_mount(MountBinding(workspace.mount_point, f"{LOOP_DEVICE}p1"))
    return tracker


@pytest.fixture
def runner(tmp_path):
    # Logs outside the workspace so they survive its removal
    return FakeRunner(tmp_path / "logs")


class TestCleanupRun:
    """Tests for CleanupHandler.run."""

    def test_release_order(self, tracker, runner, workspace):
        """Unmount, then detach, then delete the workspace."""
        handler = CleanupHandler(tracker, runner, workspace)

        assert handler.run() is True

        assert runner.calls == [
            ["umount", "-R", str(workspace.mount_point)],
            ["losetup", "-d", LOOP_DEVICE],
        ]
        assert tracker.is_empty
        assert not workspace.exists()
        assert handler.errors == []

    def test_runs_once(self, tracker, runner, workspace):
        """Every trigger after the first is a no-op."""
        handler = CleanupHandler(tracker, runner, workspace)

        assert handler.run() is True
        assert handler.run() is False
        assert handler.run(reason="atexit") is False

        assert runner.tools() == ["umount", "losetup"]
        assert handler.has_run

    def test_keep_workspace(self, tracker, runner, workspace):
        """With keep the workspace survives but devices are still released."""
        handler = CleanupHandler(tracker, runner, workspace, keep_workspace=True)

        handler.run()

        assert workspace.exists()
        assert tracker.is_empty

    def test_errors_collected_not_raised(self, tracker, runner, workspace):
        """A failing step is logged and later steps still run."""
        runner.fail_when = lambda argv: argv[0] == "losetup"
        handler = CleanupHandler(tracker, runner, workspace)

        assert handler.run() is True

        assert len(handler.errors) == 1
        assert not workspace.exists()

    def test_workspace_removal_failure(self, runner, workspace):
        """An OSError removing the workspace is collected."""
        handler = CleanupHandler(ResourceTracker(), runner, workspace)

        with patch.object(
            type(workspace), "discard", side_effect=OSError("busy")
        ):
            handler.run()

        assert len(handler.errors) == 1
        assert isinstance(handler.errors[0], OSError)

    def test_nothing_acquired(self, runner, workspace):
        """Cleanup before any resource was acquired only removes the workspace."""
        handler = CleanupHandler(ResourceTracker(), runner, workspace)

        handler.run()

        assert runner.calls == []
        assert not workspace.exists()


class TestCleanupSignals:
    """Tests for signal and atexit registration."""

    def test_install_registers_signal_handlers(self, runner, workspace):
        """install replaces the handlers and uninstall restores them."""
        previous = {s: signal.getsignal(s) for s in HANDLED_SIGNALS}
        handler = CleanupHandler(ResourceTracker(), runner, workspace)

        handler.install()
        try:
            for signum in HANDLED_SIGNALS:
                assert signal.getsignal(signum) == handler._handle_signal
        finally:
            handler.uninstall()

        for signum in HANDLED_SIGNALS:
            assert signal.getsignal(signum) == previous[signum]

    def test_install_registers_atexit(self, runner, workspace):
        handler = CleanupHandler(ResourceTracker(), runner, workspace)

        with patch("linux_imagegen.cleanup.atexit") as mock_atexit:
            handler.install()
            handler.uninstall()

        mock_atexit.register.assert_called_once_with(handler.run)
        mock_atexit.unregister.assert_called_once_with(handler.run)

    def test_handled_signals(self):
        """The interrupt and termination signals are all handled."""
        names = {s.name for s in HANDLED_SIGNALS}
        assert {"SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT"} <= names

    def test_signal_unwinds_with_exit_status(self, runner, workspace):
        """A signal aborts the build with status 128 + signal number."""
        handler = CleanupHandler(ResourceTracker(), runner, workspace)

        with pytest.raises(SystemExit) as exc_info:
            handler._handle_signal(signal.SIGTERM, None)

        assert exc_info.value.code == 128 + signal.SIGTERM

    def test_signal_during_cleanup_ignored(self, tracker, runner, workspace):
        """A second signal while cleanup runs does not interrupt it."""
        handler = CleanupHandler(tracker, runner, workspace)
        runner.hooks["umount"] = lambda argv: handler._handle_signal(
            signal.SIGINT, None
        )

        handler.run()

        assert runner.tools() == ["umount", "losetup"]
        assert not workspace.exists()


class TestCleanupContextManager:
    """Tests for the guaranteed-release scope."""

    def test_cleanup_on_exception(self, tracker, runner, workspace):
        """Leaving the scope with an error releases everything and re-raises."""
        with pytest.raises(RuntimeError):
            with CleanupHandler(tracker, runner, workspace) as handler:
                raise RuntimeError("stage failed")

        assert handler.has_run
        assert tracker.is_empty
        assert not workspace.exists()

    def test_cleanup_on_system_exit(self, tracker, runner, workspace):
        """A signal-triggered SystemExit still releases resources."""
        with pytest.raises(SystemExit):
            with CleanupHandler(tracker, runner, workspace) as handler:
                handler._handle_signal(signal.SIGTERM, None)

        assert tracker.is_empty
        assert runner.tools() == ["umount", "losetup"]

    def test_handlers_restored_after_scope(self, runner, workspace):
        previous = signal.getsignal(signal.SIGINT)

        with CleanupHandler(ResourceTracker(), runner, workspace):
            pass

        assert signal.getsignal(signal.SIGINT) == previous
