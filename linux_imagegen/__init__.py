"""Linux Image Generator - build and boot a minimal BusyBox Linux disk image.

This package orchestrates host tools (qemu-img, losetup, parted, mkfs.ext4,
grub-install) to assemble a bootable raw disk image, and guarantees that
loop devices, mounts and temporary workspaces are released on every exit path.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
