"""Command runner for external host tools.

This module handles:
- Executing commands from an argument vector (never through a shell)
- Capturing stdout/stderr of each invocation to its own log file
- Optional sudo prefixing for privileged operations
- Surfacing non-zero exit statuses as ExternalToolError

Commands are never given a timeout: a hung tool hangs the build.
"""

from __future__ import annotations

import itertools
import logging
import shlex
import subprocess
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from os import PathLike
from pathlib import Path

from linux_imagegen.errors import ExternalToolError

logger = logging.getLogger(__name__)

# Exit statuses reported when a command cannot be started (shell convention)
EXIT_NOT_EXECUTABLE = 126
EXIT_NOT_FOUND = 127

# Lines of captured stderr echoed in verbose mode when a command fails
STDERR_TAIL_LINES = 20

Arg = str | PathLike[str]


def quote_command(args: Sequence[Arg]) -> str:
    """Return a shell-quoted rendering of *args* for display."""
    return shlex.join(str(a) for a in args)


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a single external command.

    Attributes:
        args: The full argument vector that was executed.
        exit_code: Process exit status.
        stdout_path: Log file holding the captured standard output.
        stderr_path: Log file holding the captured standard error.
    """

    args: tuple[str, ...]
    exit_code: int
    stdout_path: Path
    stderr_path: Path

    @property
    def succeeded(self) -> bool:
        """Whether the command exited with status 0."""
        return self.exit_code == 0

    @property
    def command_line(self) -> str:
        """Shell-quoted command line."""
        return quote_command(self.args)

    def stdout_text(self) -> str:
        """Return the captured standard output."""
        return self.stdout_path.read_text(errors="replace")

    def stderr_text(self) -> str:
        """Return the captured standard error."""
        return self.stderr_path.read_text(errors="replace")


class CommandRunner:
    """Run external commands with per-invocation log capture.

    Each call to :meth:`run` creates exactly two files in ``log_dir``:
    ``NNNN-<tool>.stdout`` and ``NNNN-<tool>.stderr``. The sequence number
    is allocated under a lock so the runner is safe to share between the
    threads of the symlink fan-out.
    """

    def __init__(self, log_dir: Path, use_sudo: bool = True) -> None:
        self.log_dir = log_dir
        self.use_sudo = use_sudo
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def compose(self, args: Sequence[Arg], privileged: bool = False) -> list[str]:
        """Build the argument vector, prefixing sudo for privileged commands.

        Args:
            args: Command and arguments.
            privileged: Whether the command needs root privileges.

        Returns:
            Argument vector suitable for subprocess.
        """
        argv = [str(a) for a in args]
        if not argv:
            raise ValueError("Cannot run an empty command")
        if privileged and self.use_sudo:
            argv.insert(0, "sudo")
        return argv

    def _allocate_log_paths(self, argv: list[str]) -> tuple[Path, Path]:
        with self._lock:
            sequence = next(self._sequence)
        # Name logs after the real tool, not the sudo wrapper
        tool = argv[1] if argv[0] == "sudo" and len(argv) > 1 else argv[0]
        stem = f"{sequence:04d}-{Path(tool).name}"
        return self.log_dir / f"{stem}.stdout", self.log_dir / f"{stem}.stderr"

    def run(
        self,
        args: Sequence[Arg],
        *,
        privileged: bool = False,
        check: bool = True,
    ) -> CommandResult:
        """Execute a command and capture its output to log files.

        Args:
            args: Command and arguments (not shell-interpreted).
            privileged: Prefix with sudo when the runner is configured to.
            check: Raise on a non-zero exit status.

        Returns:
            CommandResult with exit status and log file paths.

        Raises:
            ExternalToolError: Command exited non-zero (with check=True) or
                could not be started at all.
        """
        argv = self.compose(args, privileged=privileged)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        stdout_path, stderr_path = self._allocate_log_paths(argv)

        logger.debug("Running command: %s", quote_command(argv))
        logger.debug("  stdout: %s, stderr: %s", stdout_path, stderr_path)

        with stdout_path.open("wb") as out, stderr_path.open("wb") as err:
            try:
                completed = subprocess.run(argv, stdout=out, stderr=err, check=False)
            except OSError as e:
                exit_code = (
                    EXIT_NOT_FOUND
                    if isinstance(e, FileNotFoundError)
                    else EXIT_NOT_EXECUTABLE
                )
                err.write(f"{e}\n".encode())
                result = CommandResult(tuple(argv), exit_code, stdout_path, stderr_path)
                logger.debug("  could not execute: %s", e)
                raise ExternalToolError(
                    result,
                    message=f"Could not execute {argv[0]}: {e.strerror or e}",
                    code="tool_not_found",
                ) from e

        result = CommandResult(
            tuple(argv), completed.returncode, stdout_path, stderr_path
        )
        logger.debug("  finished with exit status: %d", result.exit_code)

        if not result.succeeded:
            self._log_failure(result)
            if check:
                raise ExternalToolError(result)

        return result

    def _log_failure(self, result: CommandResult) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        tail = result.stderr_text().splitlines()[-STDERR_TAIL_LINES:]
        for line in tail:
            logger.debug("  stderr| %s", line)


__all__ = [
    "CommandResult",
    "CommandRunner",
    "EXIT_NOT_EXECUTABLE",
    "EXIT_NOT_FOUND",
    "quote_command",
]
