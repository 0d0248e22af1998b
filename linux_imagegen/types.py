"""Shared type definitions for linux_imagegen.

This module contains enums and type aliases shared across subpackages
to avoid circular imports.
"""

from collections.abc import Callable
from enum import Enum


class PipelineState(str, Enum):
    """State of an image build.

    Transitions are strictly linear; any stage error moves to FAILED.
    """

    INIT = "init"
    PARTITIONED = "partitioned"
    POPULATED = "populated"
    BOOT_INSTALLED = "boot_installed"
    FINALIZED = "finalized"
    FAILED = "failed"


# Forward order of the non-terminal-failure states
PIPELINE_ORDER: tuple[PipelineState, ...] = (
    PipelineState.INIT,
    PipelineState.PARTITIONED,
    PipelineState.POPULATED,
    PipelineState.BOOT_INSTALLED,
    PipelineState.FINALIZED,
)


class StageEvent(str, Enum):
    """Progress event emitted around each pipeline stage."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


ProgressCallback = Callable[[str, StageEvent], None]


__all__ = [
    "PIPELINE_ORDER",
    "PipelineState",
    "ProgressCallback",
    "StageEvent",
]
