"""Build context passed to every pipeline stage.

The context replaces process-wide globals: it owns the workspace, the
command runner and the resource tracker of one build, and records the
pipeline state.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from linux_imagegen.config import Settings
from linux_imagegen.resources import ResourceTracker
from linux_imagegen.runner import CommandRunner
from linux_imagegen.types import PIPELINE_ORDER, PipelineState
from linux_imagegen.workspace import Workspace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildOptions:
    """Resolved command-line options of a build.

    Attributes:
        output_path: Where the finished image is published.
        verbose: Echo commands and diagnostics.
        keep_temp: Keep the workspace (logs, intermediate files).
        prepare_only: Build the image but do not launch the emulator.
    """

    output_path: Path
    verbose: bool = False
    keep_temp: bool = False
    prepare_only: bool = False


@dataclass
class BuildContext:
    """State of one build invocation."""

    settings: Settings
    options: BuildOptions
    workspace: Workspace
    runner: CommandRunner
    tracker: ResourceTracker = field(default_factory=ResourceTracker)
    state: PipelineState = PipelineState.INIT

    @property
    def mount_point(self) -> Path:
        return self.workspace.mount_point

    def advance(self, new_state: PipelineState) -> None:
        """Move the pipeline forward by exactly one state, or to FAILED.

        Raises:
            ValueError: On a backward, repeated or skipping transition.
        """
        if new_state is PipelineState.FAILED:
            if self.state is PipelineState.FINALIZED:
                raise ValueError("Cannot fail a finalized build")
            self.state = new_state
            return
        if self.state is PipelineState.FAILED:
            raise ValueError("Cannot leave the failed state")

        current = PIPELINE_ORDER.index(self.state)
        if PIPELINE_ORDER.index(new_state) != current + 1:
            raise ValueError(
                f"Invalid pipeline transition: {self.state.value} -> {new_state.value}"
            )
        logger.debug("Pipeline state: %s -> %s", self.state.value, new_state.value)
        self.state = new_state


__all__ = ["BuildContext", "BuildOptions"]
