"""Image build pipeline.

This module provides the high-level build API:
- build_image(): preflight, workspace, stages, finalize, cleanup
- A linear stage table with progress reporting
- Publishing the finished image to the requested output path

Stages run in a fixed order: disk-init -> partition/format ->
filesystem-install -> boot-install -> finalize. The first fatal error
aborts the build; the cleanup handler wrapping the pipeline releases the
mount, the loop device and the workspace exactly once on every exit path.
The output path is only written after all stages succeeded and the mount
and loop device were released.
"""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

from linux_imagegen.cleanup import CleanupHandler
from linux_imagegen.config import Settings
from linux_imagegen.context import BuildContext, BuildOptions
from linux_imagegen.errors import ImageGenError, PublishError, ResourceAcquisitionError
from linux_imagegen.fetch import create_client
from linux_imagegen.host import (
    check_host_tools,
    install_hint,
    missing_tools,
    required_tools,
)
from linux_imagegen.resources import ResourceTracker, release_resources
from linux_imagegen.runner import CommandRunner
from linux_imagegen.stages import (
    init_disk,
    install_boot,
    install_filesystem,
    partition_and_format,
)
from linux_imagegen.stages.rootfs import LinkReport
from linux_imagegen.types import PipelineState, ProgressCallback, StageEvent
from linux_imagegen.workspace import create_workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Stage:
    """One step of the pipeline.

    Attributes:
        description: One-line progress text.
        run: Stage function.
        completes: State reached when the stage succeeds (None keeps it).
    """

    description: str
    run: Callable[[BuildContext, httpx.Client], object]
    completes: PipelineState | None = None


def _disk_init(ctx: BuildContext, client: httpx.Client) -> object:
    return init_disk(ctx)


def _partition_format(ctx: BuildContext, client: httpx.Client) -> object:
    return partition_and_format(ctx)


PIPELINE_STAGES: tuple[Stage, ...] = (
    Stage("Creating base disk image", _disk_init),
    Stage(
        "Disk partitioning and formatting",
        _partition_format,
        PipelineState.PARTITIONED,
    ),
    Stage("Installing filesystem", install_filesystem, PipelineState.POPULATED),
    Stage(
        "Installing kernel, init, and bootloader",
        install_boot,
        PipelineState.BOOT_INSTALLED,
    ),
)


@dataclass
class BuildOutcome:
    """Result of a successful build.

    Attributes:
        output_path: Where the image was published.
        state: Final pipeline state (FINALIZED).
        workspace: Workspace directory (deleted unless kept).
        link_report: Outcome of the applet link fan-out.
    """

    output_path: Path
    state: PipelineState
    workspace: Path
    link_report: LinkReport | None = None


def preflight(
    settings: Settings,
    options: BuildOptions,
    which: Callable[[str], str | None] | None = None,
) -> None:
    """Check that every host tool the build needs is installed.

    Raises:
        ResourceAcquisitionError: If any tool is missing.
    """
    emulator = None if options.prepare_only else settings.qemu_binary
    tools = required_tools(emulator=emulator, use_sudo=settings.use_sudo)
    missing = missing_tools(check_host_tools(tools, which=which))
    if missing:
        names = ", ".join(s.name for s in missing)
        raise ResourceAcquisitionError(
            f"Missing host tools: {names}. Install with: {install_hint(missing)}",
            code="missing_host_tools",
        )


def publish_artifact(source: Path, output_path: Path) -> Path:
    """Atomically place *source* at *output_path*, overwriting it.

    The image is hard-linked (or, across filesystems, copied) to a hidden
    sibling of the output and renamed over it, so the output path never
    holds a partial image.

    Returns:
        Absolute output path.

    Raises:
        PublishError: If the image cannot be placed.
    """
    output_path = output_path.absolute()
    staging = output_path.parent / f".{output_path.name}.{uuid.uuid4().hex[:8]}.tmp"

    try:
        try:
            os.link(source, staging)
        except OSError as e:
            logger.debug("Hard link failed (%s); copying image instead", e)
            shutil.copyfile(source, staging)
        os.replace(staging, output_path)
    except OSError as e:
        staging.unlink(missing_ok=True)
        raise PublishError(
            f"Failed to write image to {output_path}: {e}", output_path=output_path
        ) from e

    logger.debug("Published %s to %s", source, output_path)
    return output_path


def finalize(ctx: BuildContext) -> Path:
    """Flush writes, release the device resources and publish the image.

    Raises:
        Exception: The first error releasing the mount or loop device.
        PublishError: If the image cannot be placed at the output path.
    """
    os.sync()
    errors = release_resources(ctx.tracker, ctx.runner)
    if errors:
        raise errors[0]

    output_path = publish_artifact(ctx.workspace.image_path, ctx.options.output_path)
    ctx.advance(PipelineState.FINALIZED)
    return output_path


def _report(
    progress: ProgressCallback | None, description: str, event: StageEvent
) -> None:
    if progress is not None:
        progress(description, event)


def run_stages(
    ctx: BuildContext,
    client: httpx.Client,
    progress: ProgressCallback | None = None,
) -> LinkReport | None:
    """Run every pipeline stage in order.

    Returns:
        The applet link report of the filesystem stage.
    """
    link_report: LinkReport | None = None
    for stage in PIPELINE_STAGES:
        _report(progress, stage.description, StageEvent.STARTED)
        try:
            result = stage.run(ctx, client)
        except BaseException:
            _report(progress, stage.description, StageEvent.FAILED)
            raise
        if isinstance(result, LinkReport):
            link_report = result
        if stage.completes is not None:
            ctx.advance(stage.completes)
        _report(progress, stage.description, StageEvent.COMPLETED)
    return link_report


def build_image(
    settings: Settings,
    options: BuildOptions,
    *,
    progress: ProgressCallback | None = None,
    client: httpx.Client | None = None,
    workspace_parent: Path | None = None,
    check_tools: bool = True,
) -> BuildOutcome:
    """Build a bootable disk image.

    Args:
        settings: Application settings.
        options: Resolved command-line options.
        progress: Called with (description, event) around every stage.
        client: HTTP client for downloads (created and closed if None).
        workspace_parent: Directory for the workspace (cwd if None).
        check_tools: Run the host tool preflight.

    Returns:
        BuildOutcome describing the published image.

    Raises:
        ImageGenError: The first fatal error, after cleanup has run.
    """
    if check_tools:
        preflight(settings, options)

    # Created before the workspace so a bad client configuration leaves
    # nothing behind
    owns_client = client is None
    http = client if client is not None else create_client(settings.download_timeout)

    try:
        workspace = create_workspace(
            settings.workspace_prefix, parent=workspace_parent
        )
        runner = CommandRunner(workspace.log_dir, use_sudo=settings.use_sudo)
        tracker = ResourceTracker()
        with CleanupHandler(
            tracker, runner, workspace, keep_workspace=options.keep_temp
        ):
            ctx = BuildContext(
                settings=settings,
                options=options,
                workspace=workspace,
                runner=runner,
                tracker=tracker,
            )
            try:
                link_report = run_stages(ctx, http, progress)
                output_path = finalize(ctx)
            except BaseException as e:
                logger.debug("Build failed in state %s: %s", ctx.state.value, e)
                ctx.advance(PipelineState.FAILED)
                if isinstance(e, ImageGenError) and e.log_dir is None:
                    e.log_dir = workspace.log_dir
                raise
    finally:
        if owns_client:
            http.close()

    return BuildOutcome(
        output_path=output_path,
        state=ctx.state,
        workspace=workspace.root,
        link_report=link_report,
    )


__all__ = [
    "PIPELINE_STAGES",
    "BuildOutcome",
    "Stage",
    "build_image",
    "finalize",
    "preflight",
    "publish_artifact",
    "run_stages",
]
