"""Disk-init and partition/format stages.

This module handles:
- Creating the sparse raw image with qemu-img
- Binding the image to a loop device
- Writing an MBR partition table with one bootable primary partition
- Creating the ext4 filesystem

Every failure here is fatal; nothing is retried.
"""

import logging

from linux_imagegen.context import BuildContext
from linux_imagegen.errors import ResourceAcquisitionError
from linux_imagegen.resources import BlockDeviceBinding, PartitionHandle

logger = logging.getLogger(__name__)

FILESYSTEM_TYPE = "ext4"


def create_sparse_image(ctx: BuildContext) -> None:
    """Create the sparse raw image file in the workspace."""
    image = ctx.workspace.image_path
    ctx.runner.run(["qemu-img", "create", "-f", "raw", image, ctx.settings.image_size])
    logger.debug("Created %s image at %s", ctx.settings.image_size, image)


def bind_loop_device(ctx: BuildContext) -> BlockDeviceBinding:
    """Bind the workspace image to a free loop device.

    Returns:
        The binding, registered with the context's resource tracker.

    Raises:
        ResourceAcquisitionError: If losetup reports no device.
        ExternalToolError: If losetup fails (e.g. no free loop devices).
    """
    image = ctx.workspace.image_path
    result = ctx.runner.run(
        ["losetup", "--find", "--show", "--partscan", image], privileged=True
    )
    lines = result.stdout_text().split()
    if not lines:
        raise ResourceAcquisitionError(
            f"losetup did not report a loop device for {image}",
            code="loop_device_error",
        )

    binding = BlockDeviceBinding(device=lines[-1], backing_file=image)
    ctx.tracker.bind_device(binding)
    logger.debug("Using loop device: %s", binding.device)
    return binding


def init_disk(ctx: BuildContext) -> BlockDeviceBinding:
    """Create the base disk image and bind it to a loop device."""
    create_sparse_image(ctx)
    return bind_loop_device(ctx)


def _require_device(ctx: BuildContext) -> BlockDeviceBinding:
    if ctx.tracker.device is None:
        raise ResourceAcquisitionError(
            "No loop device is bound to the image", code="no_loop_device"
        )
    return ctx.tracker.device


def partition_and_format(ctx: BuildContext) -> PartitionHandle:
    """Partition the bound device and create the filesystem.

    Writes an msdos label with a single primary partition from
    ``settings.partition_start`` to the end of the device, leaving room for
    the bootloader's embedded core image, marks it bootable and formats it.

    Returns:
        Handle of the primary partition.
    """
    device = _require_device(ctx).device
    parted = ["parted", "--script", device]

    ctx.runner.run([*parted, "mklabel", "msdos"], privileged=True)
    ctx.runner.run(
        [
            *parted,
            "mkpart",
            "primary",
            FILESYSTEM_TYPE,
            ctx.settings.partition_start,
            "100%",
        ],
        privileged=True,
    )
    ctx.runner.run([*parted, "set", "1", "boot", "on"], privileged=True)

    partition = _require_device(ctx).partition(1)
    ctx.runner.run([f"mkfs.{FILESYSTEM_TYPE}", "-F", partition.device], privileged=True)
    logger.debug("Formatted %s as %s", partition.device, FILESYSTEM_TYPE)
    return partition


__all__ = [
    "FILESYSTEM_TYPE",
    "bind_loop_device",
    "create_sparse_image",
    "init_disk",
    "partition_and_format",
]
