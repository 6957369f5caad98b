"""Tests for the per-run stage state machine."""

from __future__ import annotations

import pytest

from ontoforge.core.stage_machine import InvalidTransitionError, StageMachine
from ontoforge.models.stages import STAGE_ORDER, PipelineStage, StageStatus


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def machine(clock: FakeClock) -> StageMachine:
    return StageMachine(clock=clock)


class TestTransitions:
    def test_all_pending_initially(self, machine: StageMachine):
        assert all(machine.get_state(s) == StageStatus.PENDING for s in STAGE_ORDER)
        assert machine.failed_stage is None

    def test_start_complete_records_duration(self, machine: StageMachine, clock: FakeClock):
        machine.start(PipelineStage.LOAD_MANIFEST)
        clock.now = 0.25
        machine.complete(PipelineStage.LOAD_MANIFEST, "2 rules")
        result = machine.results()[0]
        assert result.status == StageStatus.COMPLETED
        assert result.duration_ms == 250.0
        assert result.details == "2 rules"

    def test_cannot_start_out_of_order(self, machine: StageMachine):
        with pytest.raises(InvalidTransitionError, match="earlier stages"):
            machine.start(PipelineStage.DISCOVER)

    def test_terminal_states_are_final(self, machine: StageMachine):
        machine.start(PipelineStage.LOAD_MANIFEST)
        machine.complete(PipelineStage.LOAD_MANIFEST)
        with pytest.raises(InvalidTransitionError):
            machine.start(PipelineStage.LOAD_MANIFEST)

    def test_complete_requires_running(self, machine: StageMachine):
        with pytest.raises(InvalidTransitionError):
            machine.complete(PipelineStage.LOAD_MANIFEST)

    def test_skipped_stage_unblocks_next(self, machine: StageMachine):
        machine.skip(PipelineStage.LOAD_MANIFEST, "not needed")
        machine.start(PipelineStage.DISCOVER)
        assert machine.get_state(PipelineStage.DISCOVER) == StageStatus.RUNNING


class TestFailure:
    def test_fail_then_skip_remaining(self, machine: StageMachine):
        machine.start(PipelineStage.LOAD_MANIFEST)
        machine.complete(PipelineStage.LOAD_MANIFEST)
        machine.start(PipelineStage.DISCOVER)
        machine.fail(PipelineStage.DISCOVER, "missing template")

        skipped = machine.skip_remaining("halted")
        assert machine.failed_stage == PipelineStage.DISCOVER
        assert skipped == STAGE_ORDER[2:]
        states = [r.status for r in machine.results()]
        assert states[:2] == [StageStatus.COMPLETED, StageStatus.FAILED]
        assert set(states[2:]) == {StageStatus.SKIPPED}

    def test_results_in_execution_order(self, machine: StageMachine):
        assert [r.stage for r in machine.results()] == STAGE_ORDER

    def test_custom_stage_subset(self, clock: FakeClock):
        stages = [PipelineStage.LOAD_MANIFEST, PipelineStage.WRITE]
        machine = StageMachine(stages, clock=clock)
        machine.skip(PipelineStage.LOAD_MANIFEST)
        machine.start(PipelineStage.WRITE)
        machine.complete(PipelineStage.WRITE)
        assert [r.status for r in machine.results()] == [
            StageStatus.SKIPPED,
            StageStatus.COMPLETED,
        ]
