"""Privileged file placement inside the mounted image.

The mounted filesystem is owned by root, so files are generated in the
workspace staging directory by the unprivileged process and then placed
with coreutils ``install``/``mkdir`` run through the command runner.
"""

import logging
from pathlib import Path, PurePosixPath

from linux_imagegen.context import BuildContext

logger = logging.getLogger(__name__)


def image_path(ctx: BuildContext, relative: str | PurePosixPath) -> Path:
    """Map an absolute-in-image path (e.g. '/boot/grub') to the mount point."""
    rel = PurePosixPath(relative)
    if rel.is_absolute():
        rel = rel.relative_to("/")
    if ".." in rel.parts:
        raise ValueError(f"Path escapes the image root: {relative}")
    return ctx.mount_point / rel


def make_dirs(ctx: BuildContext, *relatives: str) -> None:
    """Create directories (with parents) inside the image."""
    targets = [image_path(ctx, r) for r in relatives]
    ctx.runner.run(["mkdir", "-p", *targets], privileged=True)


def stage_text(ctx: BuildContext, name: str, content: str) -> Path:
    """Write generated content to the workspace staging directory."""
    staging = ctx.workspace.staging_dir
    staging.mkdir(parents=True, exist_ok=True)
    path = staging / name
    path.write_text(content)
    return path


def install_file(
    ctx: BuildContext, source: Path, relative: str, mode: str = "0644"
) -> Path:
    """Copy *source* into the image with the given mode, creating parents.

    Returns:
        Host path of the installed file.
    """
    dest = image_path(ctx, relative)
    ctx.runner.run(["install", "-D", "-m", mode, source, dest], privileged=True)
    logger.debug("Installed %s (mode %s)", relative, mode)
    return dest


__all__ = ["image_path", "install_file", "make_dirs", "stage_text"]
