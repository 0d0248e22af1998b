"""Boot-install stage.

This module handles, against the still-mounted filesystem:
- Generating the GRUB menu configuration
- Fetching the kernel package and installing its kernel image
- Generating the /init script run as PID 1
- Installing GRUB for BIOS boot from an MBR disk

Every failure here is fatal: any one leaves the image non-bootable.
"""

import logging
from textwrap import dedent

import httpx

from linux_imagegen.config import Settings
from linux_imagegen.context import BuildContext
from linux_imagegen.errors import NetworkFetchError, ResourceAcquisitionError
from linux_imagegen.fetch import download_file, extract_deb
from linux_imagegen.stages.files import image_path, install_file, stage_text

logger = logging.getLogger(__name__)

BOOT_DIR = "/boot"
GRUB_CONFIG_PATH = "/boot/grub/grub.cfg"
KERNEL_PATH = "/boot/vmlinuz"
INIT_PATH = "/init"

GRUB_TARGET = "i386-pc"
GRUB_MODULES = "part_msdos"


def kernel_command_line(settings: Settings) -> str:
    """Return the kernel arguments of the boot entry."""
    return (
        f"root={settings.root_device} rw init={INIT_PATH} "
        f"quiet console={settings.console}"
    )


def render_grub_config(settings: Settings) -> str:
    """Render grub.cfg with a single boot entry."""
    return dedent(
        f"""\
        set timeout={settings.grub_timeout}
        set default=0

        menuentry "{settings.boot_entry_name}" {{
            linux {KERNEL_PATH} {kernel_command_line(settings)}
        }}
        """
    )


def render_init_script() -> str:
    """Render the /init script.

    It mounts proc and sysfs, greets on the console, runs a shell with a
    controlling terminal (job control) and finally execs into a shell so
    PID 1 never exits.
    """
    return dedent(
        """\
        #!/bin/sh
        mount -t proc proc /proc
        mount -t sysfs sysfs /sys
        echo "Booted into BusyBox, use \\`poweroff -f\\` to shutdown"
        echo "hello world"

        # Stop errors about no job control
        setsid cttyhack sh

        exec /bin/sh
        """
    )


def install_grub_config(ctx: BuildContext) -> None:
    logger.debug("Creating GRUB configuration")
    staged = stage_text(ctx, "grub.cfg", render_grub_config(ctx.settings))
    install_file(ctx, staged, GRUB_CONFIG_PATH, mode="0644")


def install_kernel(ctx: BuildContext, client: httpx.Client) -> None:
    """Fetch the kernel package and copy its kernel image to /boot/vmlinuz.

    Raises:
        NetworkFetchError: Download failed or the package lacks the kernel.
        ExternalToolError: Extraction failed.
    """
    settings = ctx.settings
    workspace = ctx.workspace

    logger.debug("Downloading and installing kernel")
    package = workspace.download_dir / "kernel.deb"
    download_file(
        client,
        settings.kernel_url,
        package,
        expected_checksum=settings.kernel_sha256,
        timeout=settings.download_timeout,
    )
    extracted = extract_deb(ctx.runner, package, workspace.root / "kernel")

    vmlinuz = extracted / "boot" / f"vmlinuz-{settings.kernel_release}"
    if not vmlinuz.is_file():
        raise NetworkFetchError(
            f"Kernel package does not contain boot/{vmlinuz.name}",
            url=settings.kernel_url,
            code="kernel_image_missing",
        )
    install_file(ctx, vmlinuz, KERNEL_PATH, mode="0644")


def install_init(ctx: BuildContext) -> None:
    logger.debug("Creating init script")
    staged = stage_text(ctx, "init", render_init_script())
    install_file(ctx, staged, INIT_PATH, mode="0755")


def compose_grub_install_command(ctx: BuildContext, device: str) -> list[str]:
    """Compose the grub-install command for *device*."""
    return [
        "grub-install",
        f"--target={GRUB_TARGET}",
        f"--boot-directory={image_path(ctx, BOOT_DIR)}",
        "--no-floppy",
        f"--modules={GRUB_MODULES}",
        f"--root-directory={ctx.mount_point}",
        "--force",
        device,
    ]


def install_bootloader(ctx: BuildContext) -> None:
    """Install GRUB into the MBR gap of the bound device."""
    if ctx.tracker.device is None:
        raise ResourceAcquisitionError(
            "No loop device is bound to the image", code="no_loop_device"
        )
    logger.debug("Installing GRUB")
    ctx.runner.run(
        compose_grub_install_command(ctx, ctx.tracker.device.device),
        privileged=True,
    )


def install_boot(ctx: BuildContext, client: httpx.Client) -> None:
    """Install the GRUB config, kernel, init script and bootloader."""
    if ctx.tracker.mount is None:
        raise ResourceAcquisitionError(
            "The image filesystem is not mounted", code="not_mounted"
        )
    install_grub_config(ctx)
    install_kernel(ctx, client)
    install_init(ctx)
    install_bootloader(ctx)


__all__ = [
    "GRUB_CONFIG_PATH",
    "GRUB_MODULES",
    "GRUB_TARGET",
    "INIT_PATH",
    "KERNEL_PATH",
    "compose_grub_install_command",
    "install_boot",
    "install_bootloader",
    "install_grub_config",
    "install_init",
    "install_kernel",
    "kernel_command_line",
    "render_grub_config",
    "render_init_script",
]
