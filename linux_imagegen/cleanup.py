"""Run-once cleanup of a build's resources.

The CleanupHandler is registered before any resource is acquired, against
normal interpreter exit (atexit) and SIGINT, SIGTERM, SIGHUP and SIGQUIT.
Used as a context manager it is also the guaranteed-release scope wrapping
the pipeline. Whichever path triggers it first does the work; every later
trigger is a no-op.

Procedure, strictly ordered, every step attempted even if one fails:
1. Recursively unmount the partition mount.
2. Detach the loop device.
3. Delete the workspace, unless asked to keep it.

Errors are logged and collected, never raised: cleanup runs during teardown
where nothing can react to them.
"""

from __future__ import annotations

import atexit
import logging
import signal
import threading
from types import FrameType, TracebackType
from typing import TYPE_CHECKING, Any

from linux_imagegen.resources import release_resources

if TYPE_CHECKING:
    from linux_imagegen.resources import ResourceTracker
    from linux_imagegen.runner import CommandRunner
    from linux_imagegen.workspace import Workspace

logger = logging.getLogger(__name__)

HANDLED_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name)
    for name in ("SIGINT", "SIGTERM", "SIGHUP", "SIGQUIT")
    if hasattr(signal, name)
)


class CleanupHandler:
    """Release a build's mount, loop device and workspace exactly once.

    Attributes:
        tracker: Resources currently held by the build.
        runner: Command runner used for umount/losetup.
        workspace: Workspace to delete.
        keep_workspace: Keep the workspace (logs, temporary image) on disk.
        errors: Errors collected during cleanup.
    """

    def __init__(
        self,
        tracker: ResourceTracker,
        runner: CommandRunner,
        workspace: Workspace,
        keep_workspace: bool = False,
    ) -> None:
        self.tracker = tracker
        self.runner = runner
        self.workspace = workspace
        self.keep_workspace = keep_workspace
        self.errors: list[Exception] = []

        self._lock = threading.Lock()
        self._running = False
        self._done = False
        self._installed = False
        self._previous_handlers: dict[signal.Signals, Any] = {}

    @property
    def has_run(self) -> bool:
        """Whether cleanup has already been performed."""
        return self._done

    def install(self) -> None:
        """Register the handler for interpreter exit and termination signals."""
        if self._installed:
            return
        atexit.register(self.run)
        if threading.current_thread() is threading.main_thread():
            for signum in HANDLED_SIGNALS:
                previous = signal.signal(signum, self._handle_signal)
                self._previous_handlers[signum] = (
                    previous if previous is not None else signal.SIG_DFL
                )
        else:
            logger.debug("Not on the main thread; signal handlers not installed")
        self._installed = True

    def uninstall(self) -> None:
        """Restore previous signal handlers and drop the atexit hook."""
        if not self._installed:
            return
        atexit.unregister(self.run)
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        self._previous_handlers.clear()
        self._installed = False

    def _handle_signal(self, signum: int, frame: FrameType | None) -> None:
        name = signal.Signals(signum).name
        if self._running:
            logger.warning("Received %s during cleanup; finishing cleanup first", name)
            return
        logger.warning("Received %s, aborting build", name)
        # Unwind the stack so a running tool is reaped before resources are
        # released; the enclosing scope (or atexit) performs the cleanup.
        raise SystemExit(128 + signum)

    def run(self, reason: str | None = None) -> bool:
        """Perform cleanup if it has not been performed yet.

        Args:
            reason: Optional description of what triggered cleanup.

        Returns:
            True if cleanup ran, False if it was a no-op.
        """
        with self._lock:
            if self._done or self._running:
                return False
            self._running = True

        try:
            logger.info("Cleaning up temporary resources")
            if reason:
                logger.debug("Cleanup triggered by: %s", reason)

            self.errors.extend(release_resources(self.tracker, self.runner))

            if self.keep_workspace:
                logger.info("Keeping temporary files in %s", self.workspace.root)
            else:
                try:
                    self.workspace.discard()
                except OSError as e:
                    logger.error(
                        "Failed to remove workspace %s: %s", self.workspace.root, e
                    )
                    self.errors.append(e)
        finally:
            with self._lock:
                self._running = False
                self._done = True

        if self.errors:
            logger.warning("Cleanup finished with %d error(s)", len(self.errors))
        return True

    def __enter__(self) -> CleanupHandler:
        self.install()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        try:
            self.run(reason=exc_type.__name__ if exc_type else None)
        finally:
            self.uninstall()


__all__ = ["HANDLED_SIGNALS", "CleanupHandler"]
