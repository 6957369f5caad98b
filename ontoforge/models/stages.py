"""Pipeline stage models: ordered stages and their status transitions."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class PipelineStage(str, Enum):
    """Every stage of a sync run, in execution order."""

    LOAD_MANIFEST = "load_manifest"
    DISCOVER = "discover"
    ORDER_RULES = "order_rules"
    LOAD = "load"
    VALIDATE_ONTOLOGY = "validate_ontology"
    EXTRACT = "extract"
    VALIDATE_RESULTS = "validate_results"
    RENDER = "render"
    VALIDATE_SYNTAX = "validate_syntax"
    FORMAT = "format"
    CHECK_COMPILATION = "check_compilation"
    DETECT_TODOS = "detect_todos"
    WRITE = "write"
    RECEIPT = "receipt"


STAGE_ORDER: list[PipelineStage] = list(PipelineStage)

STAGE_DISPLAY_NAMES: dict[PipelineStage, str] = {
    PipelineStage.LOAD_MANIFEST: "Load Manifest",
    PipelineStage.DISCOVER: "Discover Resources",
    PipelineStage.ORDER_RULES: "Order Rules",
    PipelineStage.LOAD: "Load Ontology",
    PipelineStage.VALIDATE_ONTOLOGY: "Validate Ontology",
    PipelineStage.EXTRACT: "Extract",
    PipelineStage.VALIDATE_RESULTS: "Validate Results",
    PipelineStage.RENDER: "Render",
    PipelineStage.VALIDATE_SYNTAX: "Validate Syntax",
    PipelineStage.FORMAT: "Format",
    PipelineStage.CHECK_COMPILATION: "Check Compilation",
    PipelineStage.DETECT_TODOS: "Detect TODOs",
    PipelineStage.WRITE: "Write",
    PipelineStage.RECEIPT: "Receipt",
}

# Last stage run in each restricted mode; later stages are Skipped.
VALIDATE_ONLY_LAST_STAGE = PipelineStage.VALIDATE_SYNTAX
DRY_RUN_LAST_STAGE = PipelineStage.FORMAT


class StageStatus(str, Enum):
    """Status of one stage within a run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


# Valid status transitions, enforced by StageMachine.
# Terminal states (COMPLETED, FAILED, SKIPPED) have no outgoing transitions.
VALID_TRANSITIONS: dict[StageStatus, set[StageStatus]] = {
    StageStatus.PENDING: {StageStatus.RUNNING, StageStatus.SKIPPED},
    StageStatus.RUNNING: {
        StageStatus.COMPLETED,
        StageStatus.FAILED,
        StageStatus.SKIPPED,
    },
    StageStatus.COMPLETED: set(),
    StageStatus.FAILED: set(),
    StageStatus.SKIPPED: set(),
}


class PipelineStageResult(BaseModel):
    """Timing and outcome of one stage."""

    model_config = ConfigDict(frozen=True)

    stage: PipelineStage
    status: StageStatus
    duration_ms: float = 0.0
    details: str = ""

    @property
    def display_name(self) -> str:
        return STAGE_DISPLAY_NAMES[self.stage]
