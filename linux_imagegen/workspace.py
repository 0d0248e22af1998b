"""Per-build workspace directory.

The workspace holds all intermediate state of one build: command logs,
the mount point, downloads, staged files and the temporary image. It always
lives under the current working directory and has a randomized name, so no
two invocations share it.
"""

import logging
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

from linux_imagegen.errors import ResourceAcquisitionError

logger = logging.getLogger(__name__)

IMAGE_FILENAME = "linux.img"


@dataclass(frozen=True)
class Workspace:
    """Layout of a build workspace.

    Attributes:
        root: Absolute workspace directory.
    """

    root: Path

    @property
    def log_dir(self) -> Path:
        """Directory for per-command stdout/stderr logs."""
        return self.root / "cmd_logs"

    @property
    def mount_point(self) -> Path:
        """Mount point of the primary partition."""
        return self.root / "mnt" / "p1"

    @property
    def image_path(self) -> Path:
        """Temporary disk image being built."""
        return self.root / IMAGE_FILENAME

    @property
    def download_dir(self) -> Path:
        """Directory for fetched artifacts."""
        return self.root / "downloads"

    @property
    def staging_dir(self) -> Path:
        """Directory for generated files before they are installed."""
        return self.root / "staging"

    def exists(self) -> bool:
        """Whether the workspace directory is still present."""
        return self.root.is_dir()

    def discard(self) -> None:
        """Recursively delete the workspace."""
        if not self.exists():
            return
        logger.debug("Removing workspace %s", self.root)
        shutil.rmtree(self.root)


def create_workspace(prefix: str, parent: Path | None = None) -> Workspace:
    """Create a fresh workspace directory.

    Args:
        prefix: Directory name prefix; a random suffix is appended.
        parent: Directory to create it in (current working directory if None).

    Returns:
        Workspace with its log directory created.

    Raises:
        ResourceAcquisitionError: If the directory cannot be created.
    """
    base = (parent or Path.cwd()).resolve()
    try:
        root = Path(tempfile.mkdtemp(prefix=prefix, dir=base)).resolve()
        workspace = Workspace(root=root)
        workspace.log_dir.mkdir()
    except OSError as e:
        raise ResourceAcquisitionError(
            f"Failed to create workspace under {base}: {e}",
            code="workspace_error",
        ) from e

    logger.debug("Temporary directory: %s", root)
    return workspace


__all__ = ["IMAGE_FILENAME", "Workspace", "create_workspace"]
