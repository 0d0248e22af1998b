"""Thin CLI wrapper for linux_imagegen.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from linux_imagegen import __version__
from linux_imagegen.config import get_settings, print_settings_json

app = typer.Typer(
    name="imagegen",
    help="Linux Image Generator - build and boot a minimal BusyBox Linux disk image",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"linux-imagegen version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route package logs to stderr through rich."""
    package_logger = logging.getLogger("linux_imagegen")
    package_logger.handlers.clear()
    handler = RichHandler(console=err_console, show_path=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(handler)
    package_logger.setLevel(level)
    package_logger.propagate = False


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Linux Image Generator - build and boot a minimal BusyBox Linux disk image."""


@app.command()
def build(
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output image filename (default from settings: linux.img)",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug output"),
    ] = False,
    keep: Annotated[
        bool,
        typer.Option("--keep", "-k", help="Keep temporary logs and files"),
    ] = False,
    prepare_only: Annotated[
        bool,
        typer.Option("--prepare-only", "-p", help="Prepare image, do NOT boot qemu"),
    ] = False,
) -> None:
    """Build the disk image, then boot it with qemu.

    Any failure releases the loop device and mount, removes the temporary
    workspace (unless --keep) and leaves the output path untouched.
    """
    from linux_imagegen.context import BuildOptions
    from linux_imagegen.emulator import compose_qemu_command, exec_emulator
    from linux_imagegen.errors import ExternalToolError, ImageGenError
    from linux_imagegen.pipeline import build_image
    from linux_imagegen.runner import quote_command
    from linux_imagegen.types import StageEvent

    settings = get_settings()
    configure_logging("DEBUG" if verbose else settings.log_level)

    options = BuildOptions(
        output_path=output if output is not None else Path(settings.output_file),
        verbose=verbose,
        keep_temp=keep,
        prepare_only=prepare_only,
    )

    def report(description: str, event: StageEvent) -> None:
        if event is StageEvent.STARTED:
            console.print(f"{description} ...")
        elif event is StageEvent.COMPLETED:
            console.print("  ... completed")
        else:
            console.print("  [red]... failed[/red]")

    try:
        outcome = build_image(settings, options, progress=report)
    except (ImageGenError, OSError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        if isinstance(e, ImageGenError) and keep:
            if isinstance(e, ExternalToolError):
                stdout_log, stderr_log = e.log_paths
                console.print(f"  stdout: {stdout_log}")
                console.print(f"  stderr: {stderr_log}")
            if e.log_dir is not None:
                console.print(f"  Command logs kept in: {e.log_dir}")
        elif not verbose:
            console.print("  Re-run with -v -k to keep command logs for diagnosis")
        raise typer.Exit(code=1) from None

    console.print("[green]Success[/green]")
    console.print(f"  Image created at: {outcome.output_path}")
    if outcome.link_report is not None and outcome.link_report.failed:
        console.print(
            f"  [yellow]{len(outcome.link_report.failed)} applet link(s) "
            "could not be created[/yellow]"
        )
    if keep:
        console.print(f"  Temporary files kept in: {outcome.workspace}")

    if prepare_only:
        return

    qemu_cmd = compose_qemu_command(outcome.output_path, settings)
    console.print("  Launching with qemu:")
    console.print(f"     {quote_command(qemu_cmd)}", markup=False, soft_wrap=True)
    try:
        exec_emulator(qemu_cmd)
    except OSError as e:
        console.print(f"[red]Failed to launch {qemu_cmd[0]}: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Image:[/bold]")
        console.print(f"  Output file:         {settings.output_file}")
        console.print(f"  Image size:          {settings.image_size}")
        console.print(f"  Partition start:     {settings.partition_start}")
        console.print(f"  Workspace prefix:    {settings.workspace_prefix}")
        console.print()
        console.print("[bold]Sources:[/bold]")
        console.print(f"  BusyBox URL:         {settings.busybox_url}")
        console.print(f"  Kernel URL:          {settings.kernel_url}")
        console.print(f"  Kernel release:      {settings.kernel_release}")
        console.print()
        console.print("[bold]Boot:[/bold]")
        console.print(f"  Boot entry:          {settings.boot_entry_name}")
        console.print(f"  Root device:         {settings.root_device}")
        console.print(f"  Console:             {settings.console}")
        console.print(f"  GRUB timeout:        {settings.grub_timeout}")
        console.print()
        console.print("[bold]Emulator:[/bold]")
        console.print(f"  Binary:              {settings.qemu_binary}")
        console.print(f"  Memory:              {settings.qemu_memory}")
        console.print(f"  CPUs:                {settings.qemu_smp}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Use sudo:            {settings.use_sudo}")
        console.print(f"  Log level:           {settings.log_level}")
        workers = settings.symlink_workers or "(CPU count)"
        console.print(f"  Symlink workers:     {workers}")
        console.print(f"  Download timeout:    {settings.download_timeout}")


@app.command()
def deps(
    emulator: Annotated[
        bool,
        typer.Option(
            "--emulator/--no-emulator", help="Also require the emulator binary"
        ),
    ] = True,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Check that the required host tools are installed."""
    from linux_imagegen.host import (
        check_host_tools,
        install_hint,
        missing_tools,
        required_tools,
    )

    settings = get_settings()
    tools = required_tools(
        emulator=settings.qemu_binary if emulator else None,
        use_sudo=settings.use_sudo,
    )
    statuses = check_host_tools(tools)
    missing = missing_tools(statuses)

    if json_output:
        output = [
            {"tool": s.name, "package": s.package, "path": s.path} for s in statuses
        ]
        console.print(json.dumps(output, indent=2), soft_wrap=True)
    else:
        for s in statuses:
            if s.available:
                console.print(f"  [green]✓[/green] {s.name} ({s.path})")
            else:
                console.print(f"  [red]✗[/red] {s.name} (package: {s.package})")
        console.print()
        if missing:
            console.print(f"[red]{len(missing)} tool(s) missing.[/red] Install with:")
            console.print(f"  {install_hint(missing)}")
        else:
            console.print("[green]All required host tools are available[/green]")

    if missing:
        raise typer.Exit(code=1)


__all__ = ["app"]
