"""Per-run stage state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Strict stage order: a stage may start only when every earlier stage is
  in a terminal state
- Cascade skipping once a stage fails or a restricted mode stops the run
- Wall-clock timing of every stage that ran
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence

from ontoforge.models.stages import (
    STAGE_ORDER,
    VALID_TRANSITIONS,
    PipelineStage,
    PipelineStageResult,
    StageStatus,
)

logger = logging.getLogger(__name__)

_TERMINAL = {StageStatus.COMPLETED, StageStatus.FAILED, StageStatus.SKIPPED}


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class StageMachine:
    """Tracks the status, timing and details of every stage in one run.

    Parameters
    ----------
    stages:
        The stages of the run, in execution order.
    clock:
        Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        stages: Sequence[PipelineStage] = STAGE_ORDER,
        *,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._stages = list(stages)
        self._clock = clock
        self._states: dict[PipelineStage, StageStatus] = {
            s: StageStatus.PENDING for s in self._stages
        }
        self._started_at: dict[PipelineStage, float] = {}
        self._durations: dict[PipelineStage, float] = {}
        self._details: dict[PipelineStage, str] = {}

    # ------------------------------------------------------------------
    # State queries
    # ------------------------------------------------------------------

    def get_state(self, stage: PipelineStage) -> StageStatus:
        return self._states[stage]

    @property
    def failed_stage(self) -> PipelineStage | None:
        """The stage that failed, if any."""
        for stage in self._stages:
            if self._states[stage] == StageStatus.FAILED:
                return stage
        return None

    def results(self) -> list[PipelineStageResult]:
        """Snapshot of every stage, in execution order."""
        return [
            PipelineStageResult(
                stage=stage,
                status=self._states[stage],
                duration_ms=round(self._durations.get(stage, 0.0) * 1000, 3),
                details=self._details.get(stage, ""),
            )
            for stage in self._stages
        ]

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self, stage: PipelineStage, target: StageStatus, details: str = ""
    ) -> None:
        """Move *stage* to *target*, validating against VALID_TRANSITIONS."""
        current = self._states[stage]
        allowed = VALID_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage.value} from {current.value} to {target.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target == StageStatus.RUNNING:
            earlier = self._stages[: self._stages.index(stage)]
            unfinished = [s.value for s in earlier if self._states[s] not in _TERMINAL]
            if unfinished:
                raise InvalidTransitionError(
                    f"Cannot start {stage.value}: earlier stages not finished: {unfinished}"
                )
            self._started_at[stage] = self._clock()
        elif current == StageStatus.RUNNING:
            self._durations[stage] = self._clock() - self._started_at[stage]

        self._states[stage] = target
        if details:
            self._details[stage] = details

    def start(self, stage: PipelineStage) -> None:
        logger.info("Stage %s started", stage.value)
        self.transition(stage, StageStatus.RUNNING)

    def complete(self, stage: PipelineStage, details: str = "") -> None:
        self.transition(stage, StageStatus.COMPLETED, details)
        logger.info(
            "Stage %s completed in %.1f ms", stage.value, self._durations[stage] * 1000
        )

    def fail(self, stage: PipelineStage, details: str) -> None:
        self.transition(stage, StageStatus.FAILED, details)
        logger.error("Stage %s failed: %s", stage.value, details)

    def skip(self, stage: PipelineStage, details: str = "") -> None:
        self.transition(stage, StageStatus.SKIPPED, details)

    def skip_remaining(self, details: str = "") -> list[PipelineStage]:
        """Mark every pending stage Skipped; returns the stages skipped."""
        skipped = [s for s in self._stages if self._states[s] == StageStatus.PENDING]
        for stage in skipped:
            self.skip(stage, details)
        return skipped
