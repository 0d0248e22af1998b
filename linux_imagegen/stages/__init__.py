"""Pipeline stages.

Each stage performs one phase of image construction against a BuildContext:
- disk: sparse image, loop device binding, partition table and filesystem
- rootfs: mount, directory skeleton, BusyBox and applet links
- boot: GRUB configuration, kernel, init script and bootloader
"""

from linux_imagegen.stages.boot import install_boot
from linux_imagegen.stages.disk import init_disk, partition_and_format
from linux_imagegen.stages.rootfs import install_filesystem

__all__ = [
    "init_disk",
    "install_boot",
    "install_filesystem",
    "partition_and_format",
]
