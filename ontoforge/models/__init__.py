"""ontoforge data models: all Pydantic v2, all frozen (immutable)."""

from ontoforge.models.artifacts import (
    CacheEntry,
    RenderedArtifact,
    ResourceDiscovery,
    RowSet,
)
from ontoforge.models.manifest import (
    GenerationManifest,
    GenerationRule,
    InferenceRule,
    OntologyConfig,
    ValidationLevel,
    WriteMode,
)
from ontoforge.models.receipts import FileHash, ProvenanceEntry, Receipt
from ontoforge.models.reports import (
    ErrorDetail,
    ReportFormat,
    RuleOutcome,
    RuleReport,
    Severity,
    ShapeReport,
    SyncReport,
    SyncStatistics,
    SyncStatus,
    Violation,
)
from ontoforge.models.stages import (
    STAGE_ORDER,
    VALID_TRANSITIONS,
    PipelineStage,
    PipelineStageResult,
    StageStatus,
)

__all__ = [
    # manifest
    "GenerationManifest",
    "GenerationRule",
    "InferenceRule",
    "OntologyConfig",
    "ValidationLevel",
    "WriteMode",
    # artifacts
    "CacheEntry",
    "RenderedArtifact",
    "ResourceDiscovery",
    "RowSet",
    # stages
    "PipelineStage",
    "PipelineStageResult",
    "StageStatus",
    "STAGE_ORDER",
    "VALID_TRANSITIONS",
    # reports
    "ErrorDetail",
    "ReportFormat",
    "RuleOutcome",
    "RuleReport",
    "Severity",
    "ShapeReport",
    "SyncReport",
    "SyncStatistics",
    "SyncStatus",
    "Violation",
    # receipts
    "FileHash",
    "ProvenanceEntry",
    "Receipt",
]
