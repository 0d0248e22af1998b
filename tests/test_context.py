"""Tests for context.py - pipeline state transitions."""

import pytest

from linux_imagegen.types import PIPELINE_ORDER, PipelineState


class TestAdvance:
    """Tests for BuildContext.advance."""

    def test_starts_in_init(self, build_ctx):
        assert build_ctx.state is PipelineState.INIT

    def test_linear_progression(self, build_ctx):
        """Every forward step of the pipeline is accepted."""
        for state in PIPELINE_ORDER[1:]:
            build_ctx.advance(state)
        assert build_ctx.state is PipelineState.FINALIZED

    def test_skip_rejected(self, build_ctx):
        with pytest.raises(ValueError):
            build_ctx.advance(PipelineState.POPULATED)
        assert build_ctx.state is PipelineState.INIT

    def test_backward_rejected(self, build_ctx):
        build_ctx.advance(PipelineState.PARTITIONED)
        with pytest.raises(ValueError):
            build_ctx.advance(PipelineState.INIT)

    def test_repeat_rejected(self, build_ctx):
        build_ctx.advance(PipelineState.PARTITIONED)
        with pytest.raises(ValueError):
            build_ctx.advance(PipelineState.PARTITIONED)

    @pytest.mark.parametrize("state", PIPELINE_ORDER[:-1])
    def test_fail_from_any_open_state(self, build_ctx, state):
        """Any stage error moves to FAILED."""
        build_ctx.state = state
        build_ctx.advance(PipelineState.FAILED)
        assert build_ctx.state is PipelineState.FAILED

    def test_failed_is_terminal(self, build_ctx):
        build_ctx.advance(PipelineState.FAILED)
        with pytest.raises(ValueError):
            build_ctx.advance(PipelineState.PARTITIONED)

    def test_finalized_cannot_fail(self, build_ctx):
        build_ctx.state = PipelineState.FINALIZED
        with pytest.raises(ValueError):
            build_ctx.advance(PipelineState.FAILED)
