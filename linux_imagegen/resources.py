"""Tracking and release of OS resources held by a build.

This module handles:
- The loop device binding of the temporary image
- The partition view derived from that binding
- The mount of the primary partition
- Ordered release: unmount before detaching the loop device

A build holds at most one binding and one mount at a time. Nothing here
locks: the resources are owned by the single build process.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from linux_imagegen.errors import ImageGenError, ResourceAcquisitionError

if TYPE_CHECKING:
    from linux_imagegen.runner import CommandRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PartitionHandle:
    """A partition of a bound loop device (a view, not an owned resource)."""

    device: str
    number: int


@dataclass(frozen=True)
class BlockDeviceBinding:
    """A loop device bound to a backing image file.

    Attributes:
        device: Loop device path assigned by the OS (e.g. '/dev/loop3').
        backing_file: Image file exposed through the device.
    """

    device: str
    backing_file: Path

    def partition(self, number: int = 1) -> PartitionHandle:
        """Return the partition handle for partition *number*."""
        return PartitionHandle(device=f"{self.device}p{number}", number=number)


@dataclass(frozen=True)
class MountBinding:
    """A partition mounted inside the workspace."""

    mount_point: Path
    device: str


class ResourceTracker:
    """Record of the resources currently held by a build."""

    def __init__(self) -> None:
        self.device: BlockDeviceBinding | None = None
        self.mount: MountBinding | None = None

    @property
    def is_empty(self) -> bool:
        """Whether no resource is held."""
        return self.device is None and self.mount is None

    def bind_device(self, binding: BlockDeviceBinding) -> None:
        """Record the attached loop device.

        Raises:
            ResourceAcquisitionError: If a device is already bound.
        """
        if self.device is not None:
            raise ResourceAcquisitionError(
                f"Loop device {self.device.device} is already bound",
                code="device_already_bound",
            )
        self.device = binding

    def bind_mount(self, binding: MountBinding) -> None:
        """Record the mounted partition.

        Raises:
            ResourceAcquisitionError: If a mount is already recorded.
        """
        if self.mount is not None:
            raise ResourceAcquisitionError(
                f"{self.mount.mount_point} is already mounted",
                code="already_mounted",
            )
        self.mount = binding

    def release_mount(self) -> None:
        """Forget the mount once it has been unmounted."""
        self.mount = None

    def release_device(self) -> None:
        """Forget the loop device once it has been detached."""
        self.device = None


def release_resources(
    tracker: ResourceTracker, runner: CommandRunner
) -> list[Exception]:
    """Unmount and detach everything the tracker holds.

    The mount is always released before the loop device, which cannot be
    detached while busy. Both steps are attempted even if the first fails;
    a resource stays registered when its release failed.

    Args:
        tracker: Resources to release.
        runner: Command runner for umount/losetup.

    Returns:
        Errors encountered, in order (empty when everything was released).
    """
    errors: list[Exception] = []

    if tracker.mount is not None:
        mount_point = tracker.mount.mount_point
        logger.debug("Unmounting %s", mount_point)
        try:
            runner.run(["umount", "-R", mount_point], privileged=True)
        except (ImageGenError, OSError) as e:
            logger.error("Failed to unmount %s: %s", mount_point, e)
            errors.append(e)
        else:
            tracker.release_mount()

    if tracker.device is not None:
        device = tracker.device.device
        logger.debug("Detaching loop device %s", device)
        try:
            runner.run(["losetup", "-d", device], privileged=True)
        except (ImageGenError, OSError) as e:
            logger.error("Failed to detach loop device %s: %s", device, e)
            errors.append(e)
        else:
            tracker.release_device()

    return errors


__all__ = [
    "BlockDeviceBinding",
    "MountBinding",
    "PartitionHandle",
    "ResourceTracker",
    "release_resources",
]
