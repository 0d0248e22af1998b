"""Configuration settings for linux_imagegen.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_BUSYBOX_URL = (
    "https://www.busybox.net/downloads/binaries/"
    "1.31.0-defconfig-multiarch-musl/busybox-x86_64"
)
DEFAULT_KERNEL_URL = (
    "http://archive.ubuntu.com/ubuntu/pool/main/l/linux-signed/"
    "linux-image-5.15.0-117-generic_5.15.0-117.127_amd64.deb"
)


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the LINUX_IMG_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="LINUX_IMG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Output and workspace
    output_file: str = Field(
        default="linux.img",
        description="Default output image filename",
    )
    workspace_prefix: str = Field(
        default="tmpdir.linuximage.",
        description="Prefix of the per-build workspace directory (under cwd)",
    )

    # Image layout
    image_size: str = Field(
        default="50M",
        description="Nominal size of the raw disk image (qemu-img syntax)",
    )
    partition_start: str = Field(
        default="1MiB",
        description="Start offset of the primary partition",
    )

    # Fetched artifacts
    busybox_url: str = Field(
        default=DEFAULT_BUSYBOX_URL,
        description="URL of the statically linked BusyBox binary",
    )
    kernel_url: str = Field(
        default=DEFAULT_KERNEL_URL,
        description="URL of the pre-built kernel .deb package",
    )
    busybox_sha256: str | None = Field(
        default=None,
        description="Expected SHA-256 of the BusyBox binary (not verified if unset)",
    )
    kernel_sha256: str | None = Field(
        default=None,
        description="Expected SHA-256 of the kernel package (not verified if unset)",
    )
    kernel_release: str = Field(
        default="5.15.0-117-generic",
        description="Kernel release string inside the package (boot/vmlinuz-<release>)",
    )

    # Boot configuration
    grub_timeout: int = Field(
        default=2,
        ge=0,
        description="GRUB menu timeout in seconds",
    )
    boot_entry_name: str = Field(
        default="BusyBox Linux",
        description="Title of the single GRUB menu entry",
    )
    root_device: str = Field(
        default="/dev/sda1",
        description="Root device passed on the kernel command line",
    )
    console: str = Field(
        default="ttyS0",
        description="Kernel console device",
    )

    # Emulator
    qemu_binary: str = Field(
        default="qemu-system-x86_64",
        description="Emulator executable",
    )
    qemu_memory: str = Field(
        default="512m",
        description="Emulator memory size",
    )
    qemu_smp: int = Field(
        default=2,
        ge=1,
        description="Emulator virtual CPU count",
    )

    # Operational modes
    use_sudo: bool = Field(
        default=True,
        description="Prefix privileged commands with sudo",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="WARNING",
        description="Console logging level (verbose mode forces DEBUG)",
    )

    # Concurrency
    symlink_workers: int | None = Field(
        default=None,
        ge=1,
        description="Parallel workers for applet symlinks (host CPU count if unset)",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=600,
        ge=10,
        description="Timeout for BusyBox and kernel downloads",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = [
    "DEFAULT_BUSYBOX_URL",
    "DEFAULT_KERNEL_URL",
    "Settings",
    "get_settings",
    "print_settings_json",
]
