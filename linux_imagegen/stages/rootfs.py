"""Filesystem-install stage.

This module handles:
- Mounting the primary partition inside the workspace
- Creating the directory skeleton for proc/sys/dev mounts
- Installing the statically linked BusyBox binary
- Creating one symlink per BusyBox applet, fanned out over a thread pool

A missing applet link is not fatal: failures are collected and reported
as a PartialLinkError warning.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import PurePosixPath

import httpx

from linux_imagegen.context import BuildContext
from linux_imagegen.errors import (
    ImageGenError,
    PartialLinkError,
    ResourceAcquisitionError,
)
from linux_imagegen.fetch import download_file
from linux_imagegen.resources import MountBinding, PartitionHandle
from linux_imagegen.stages.files import image_path, install_file, make_dirs

logger = logging.getLogger(__name__)

BUSYBOX_PATH = "/usr/bin/busybox"
MOUNT_OPTIONS = "noatime,nodiratime"

# Mount points for the kernel's virtual filesystems
VIRTUAL_FS_DIRS = ("dev", "proc", "sys")

# Directories applet links are created in
APPLET_DIRS = ("bin", "sbin", "usr/bin", "usr/sbin")


@dataclass
class LinkReport:
    """Outcome of the applet symlink fan-out.

    Attributes:
        created: Applets whose link was created.
        failed: Applet to error message for links that could not be created.
        skipped: Applet names rejected as unsafe paths.
    """

    created: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed and not self.skipped


def mount_partition(ctx: BuildContext, partition: PartitionHandle) -> MountBinding:
    """Mount *partition* at the workspace mount point.

    Raises:
        ResourceAcquisitionError: If the mount point cannot be created.
        ExternalToolError: If mount fails.
    """
    mount_point = ctx.mount_point
    try:
        mount_point.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ResourceAcquisitionError(
            f"Failed to create mount point {mount_point}: {e}",
            code="mount_point_error",
        ) from e

    ctx.runner.run(
        ["mount", "-o", MOUNT_OPTIONS, partition.device, mount_point],
        privileged=True,
    )
    binding = MountBinding(mount_point=mount_point, device=partition.device)
    ctx.tracker.bind_mount(binding)
    logger.debug("Primary partition mounted at: %s", mount_point)
    return binding


def create_skeleton(ctx: BuildContext) -> None:
    """Create the root directory skeleton."""
    make_dirs(ctx, *VIRTUAL_FS_DIRS, *APPLET_DIRS)


def install_busybox(ctx: BuildContext, client: httpx.Client) -> None:
    """Download BusyBox and install it as /usr/bin/busybox.

    Raises:
        NetworkFetchError: If the download fails.
    """
    settings = ctx.settings
    staged = ctx.workspace.download_dir / "busybox"
    download_file(
        client,
        settings.busybox_url,
        staged,
        expected_checksum=settings.busybox_sha256,
        timeout=settings.download_timeout,
    )
    install_file(ctx, staged, BUSYBOX_PATH, mode="0755")


def parse_applet_list(output: str) -> tuple[list[str], list[str]]:
    """Parse ``busybox --list-full`` output.

    Returns:
        Tuple of (safe relative applet paths, rejected entries).
    """
    applets: list[str] = []
    rejected: list[str] = []
    for line in output.splitlines():
        name = line.strip()
        if not name:
            continue
        path = PurePosixPath(name)
        if path.is_absolute() or ".." in path.parts:
            rejected.append(name)
            continue
        applets.append(name)
    return applets, rejected


def list_applets(ctx: BuildContext) -> tuple[list[str], list[str]]:
    """Ask the installed BusyBox for the full paths of its applets."""
    busybox = image_path(ctx, BUSYBOX_PATH)
    result = ctx.runner.run([busybox, "--list-full"])
    return parse_applet_list(result.stdout_text())


def link_applets(
    ctx: BuildContext, applets: list[str], workers: int | None = None
) -> LinkReport:
    """Create a symlink to BusyBox for every applet, in parallel.

    Args:
        ctx: Build context.
        applets: Applet paths relative to the image root (e.g. 'bin/ls').
        workers: Maximum parallel links (host CPU count if None).

    Returns:
        LinkReport; individual failures never raise.
    """
    report = LinkReport()
    if not applets:
        return report

    workers = workers or ctx.settings.symlink_workers or os.cpu_count() or 1
    workers = min(workers, len(applets))
    logger.debug("Creating %d applet links with %d workers", len(applets), workers)

    def _link(applet: str) -> None:
        ctx.runner.run(
            ["ln", "-s", BUSYBOX_PATH, image_path(ctx, applet)], privileged=True
        )

    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {pool.submit(_link, applet): applet for applet in applets}
        try:
            for future in as_completed(futures):
                applet = futures[future]
                try:
                    future.result()
                except (ImageGenError, OSError) as e:
                    report.failed[applet] = str(e)
                else:
                    report.created.append(applet)
        except BaseException:
            # Aborting (e.g. on a signal): queued links must not touch the image
            pool.shutdown(wait=True, cancel_futures=True)
            raise

    report.created.sort()
    return report


def install_filesystem(ctx: BuildContext, client: httpx.Client) -> LinkReport:
    """Mount the partition and populate it with BusyBox.

    The mount stays in place for the boot-install stage; the cleanup
    handler releases it.
    """
    device = ctx.tracker.device
    if device is None:
        raise ResourceAcquisitionError(
            "No loop device is bound to the image", code="no_loop_device"
        )

    mount_partition(ctx, device.partition(1))
    create_skeleton(ctx)
    install_busybox(ctx, client)

    logger.debug("Creating symlinks for BusyBox utilities")
    applets, rejected = list_applets(ctx)
    for name in rejected:
        logger.warning("Skipping unsafe applet path: %s", name)

    report = link_applets(ctx, applets)
    report.skipped.extend(rejected)
    if report.failed:
        logger.warning("%s", PartialLinkError(report.failed))
        for applet, error in sorted(report.failed.items()):
            logger.debug("  %s: %s", applet, error)
    logger.debug("Created %d applet links", len(report.created))
    return report


__all__ = [
    "APPLET_DIRS",
    "BUSYBOX_PATH",
    "LinkReport",
    "MOUNT_OPTIONS",
    "VIRTUAL_FS_DIRS",
    "create_skeleton",
    "install_busybox",
    "install_filesystem",
    "link_applets",
    "list_applets",
    "mount_partition",
    "parse_applet_list",
]
