"""Host tool requirements.

This module handles:
- The list of external tools the pipeline invokes
- The Debian/Ubuntu package providing each tool
- Checking the host PATH before any resource is acquired
"""

import logging
import os
import shutil
from collections.abc import Callable, Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Tool -> Debian/Ubuntu package providing it
TOOL_PACKAGES: dict[str, str] = {
    "qemu-img": "qemu-utils",
    "losetup": "util-linux",
    "parted": "parted",
    "mkfs.ext4": "e2fsprogs",
    "mount": "mount",
    "umount": "mount",
    "install": "coreutils",
    "mkdir": "coreutils",
    "ln": "coreutils",
    "dpkg-deb": "dpkg",
    "grub-install": "grub2-common grub-pc-bin",
    "sudo": "sudo",
}

EMULATOR_PACKAGE = "qemu-system-x86"

# Administrative tools often live outside an unprivileged user's PATH
SBIN_DIRS = ("/usr/local/sbin", "/usr/sbin", "/sbin")


@dataclass(frozen=True)
class ToolStatus:
    """Availability of one host tool.

    Attributes:
        name: Executable name.
        package: Package that provides it.
        path: Resolved executable path, or None if missing.
    """

    name: str
    package: str
    path: str | None

    @property
    def available(self) -> bool:
        return self.path is not None


def find_tool(name: str) -> str | None:
    """Locate *name* on the PATH, also searching the sbin directories."""
    search = os.pathsep.join([os.environ.get("PATH", os.defpath), *SBIN_DIRS])
    return shutil.which(name, path=search)


def required_tools(
    emulator: str | None = None, use_sudo: bool = True
) -> dict[str, str]:
    """Return the tools a build needs, mapped to their packages.

    Args:
        emulator: Emulator executable, if the build will launch it.
        use_sudo: Whether privileged commands go through sudo.
    """
    tools = dict(TOOL_PACKAGES)
    if not use_sudo:
        tools.pop("sudo")
    if emulator:
        tools[emulator] = EMULATOR_PACKAGE
    return tools


def check_host_tools(
    tools: dict[str, str] | None = None,
    which: Callable[[str], str | None] | None = None,
) -> list[ToolStatus]:
    """Look up each tool on the PATH.

    Args:
        tools: Tool to package mapping (all build tools if None).
        which: Lookup function (find_tool if None; injectable for tests).

    Returns:
        One ToolStatus per tool, in mapping order.
    """
    if tools is None:
        tools = required_tools()
    if which is None:
        which = find_tool
    statuses = [
        ToolStatus(name, package, which(name)) for name, package in tools.items()
    ]
    for status in statuses:
        if not status.available:
            logger.debug("Host tool not found: %s (%s)", status.name, status.package)
    return statuses


def missing_tools(statuses: Iterable[ToolStatus]) -> list[ToolStatus]:
    return [s for s in statuses if not s.available]


def install_hint(missing: Iterable[ToolStatus]) -> str:
    """Return an apt-get command installing the packages of *missing* tools."""
    packages: list[str] = []
    for status in missing:
        for package in status.package.split():
            if package not in packages:
                packages.append(package)
    return "sudo apt-get -y install " + " ".join(packages)


__all__ = [
    "EMULATOR_PACKAGE",
    "SBIN_DIRS",
    "TOOL_PACKAGES",
    "ToolStatus",
    "check_host_tools",
    "find_tool",
    "install_hint",
    "missing_tools",
    "required_tools",
]
