"""Error definitions for linux_imagegen.

Every error carries a stable ``code`` for programmatic handling.
Fatal errors abort the pipeline and propagate to the CLI after cleanup;
PartialLinkError is the only error the pipeline logs and tolerates.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from linux_imagegen.runner import CommandResult


class ImageGenError(Exception):
    """Base exception for image generation errors.

    Attributes:
        message: Human-readable error message.
        code: Stable error code for programmatic handling.
        log_dir: Directory holding the command logs of the failed build.
    """

    def __init__(self, message: str, code: str = "imagegen_error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.log_dir: Path | None = None


class ResourceAcquisitionError(ImageGenError):
    """Failed to acquire an OS resource (workspace, loop device, mount, tools)."""

    def __init__(self, message: str, code: str = "resource_error") -> None:
        super().__init__(message, code=code)


class ExternalToolError(ImageGenError):
    """An external command exited non-zero or could not be started."""

    def __init__(
        self,
        result: CommandResult,
        message: str | None = None,
        code: str = "tool_failed",
    ) -> None:
        if message is None:
            message = (
                f"Command failed with exit status {result.exit_code}: "
                f"{result.command_line}"
            )
        super().__init__(message, code=code)
        self.result = result
        self.exit_code = result.exit_code

    @property
    def log_paths(self) -> tuple[Path, Path]:
        """Return the (stdout, stderr) log files of the failed command."""
        return self.result.stdout_path, self.result.stderr_path


class NetworkFetchError(ImageGenError):
    """Failed to retrieve a required remote artifact."""

    def __init__(self, message: str, url: str, code: str = "network_error") -> None:
        super().__init__(message, code=code)
        self.url = url


class PartialLinkError(ImageGenError):
    """One or more applet symlinks could not be created.

    Non-fatal: the image stays usable without the missing applet names.
    """

    def __init__(self, failures: dict[str, str]) -> None:
        names = ", ".join(sorted(failures))
        super().__init__(
            f"Failed to create {len(failures)} applet link(s): {names}",
            code="partial_links",
        )
        self.failures = failures


class PublishError(ImageGenError):
    """Failed to place the finished image at the requested output path."""

    def __init__(self, message: str, output_path: Path) -> None:
        super().__init__(message, code="publish_error")
        self.output_path = output_path


__all__ = [
    "ExternalToolError",
    "ImageGenError",
    "NetworkFetchError",
    "PartialLinkError",
    "PublishError",
    "ResourceAcquisitionError",
]
