"""Emulator handoff.

The finished image is booted by replacing the current process with
qemu (exec, not a child process), so the emulated serial console is
attached directly to the controlling terminal.
"""

import logging
import os
from pathlib import Path
from typing import NoReturn

from linux_imagegen.config import Settings

logger = logging.getLogger(__name__)


def compose_qemu_command(image: Path, settings: Settings) -> list[str]:
    """Compose the emulator command line for a raw disk *image*."""
    return [
        settings.qemu_binary,
        "-drive",
        f"file={image},format=raw",
        "-m",
        settings.qemu_memory,
        "-smp",
        str(settings.qemu_smp),
        "-nographic",
        "-serial",
        "mon:stdio",
    ]


def exec_emulator(command: list[str]) -> NoReturn:
    """Replace the current process with the emulator.

    Raises:
        OSError: If the emulator cannot be executed.
    """
    logger.debug("Executing emulator: %s", command[0])
    os.execvp(command[0], command)


__all__ = ["compose_qemu_command", "exec_emulator"]
