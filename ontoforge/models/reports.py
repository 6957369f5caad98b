"""Sync report models: the single result returned by ``sync()``."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from ontoforge.models.stages import PipelineStage, PipelineStageResult


class SyncStatus(str, Enum):
    """Overall outcome of a run.

    ``PARTIAL`` is only produced by ``validate_only`` runs that found
    violations; the filesystem is untouched in that case.
    """

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class ReportFormat(str, Enum):
    """Format of the persisted sync report."""

    MARKDOWN = "markdown"
    JSON = "json"
    NONE = "none"


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Violation(BaseModel):
    """A single validation finding (shape, result, syntax, compilation, marker)."""

    model_config = ConfigDict(frozen=True)

    stage: PipelineStage
    message: str
    rule: str | None = None
    location: str | None = None  # focus node, line number, file path
    severity: Severity = Severity.ERROR


class ShapeReport(BaseModel):
    """Result of shape conformance checking."""

    model_config = ConfigDict(frozen=True)

    conforms: bool
    violations: list[Violation] = []


class RuleOutcome(str, Enum):
    """What happened to a rule's output."""

    NOT_RUN = "not_run"
    VALIDATED = "validated"  # validate_only
    WOULD_WRITE = "would_write"  # dry_run
    WRITTEN = "written"
    UNCHANGED = "unchanged"  # written bytes equal the previous bytes
    SKIPPED_EXISTING = "skipped_existing"  # CreateOnly and the file exists


class RuleReport(BaseModel):
    """Per-rule result, listed in manifest declaration order."""

    model_config = ConfigDict(frozen=True)

    rule_name: str
    output_path: str
    language: str = "text"
    outcome: RuleOutcome = RuleOutcome.NOT_RUN
    cache_hit: bool | None = None
    row_count: int | None = None
    output_hash: str = ""
    size_bytes: int = 0
    diff: str = ""  # unified diff against the file on disk; empty when unchanged


class ErrorDetail(BaseModel):
    """The terminal error of a failed run."""

    model_config = ConfigDict(frozen=True)

    kind: str  # exception class name
    message: str
    stage: PipelineStage
    suggestion: str | None = None  # remediation hint


class SyncStatistics(BaseModel):
    model_config = ConfigDict(frozen=True)

    cache_hits: int = 0
    cache_misses: int = 0
    queries_executed: int = 0
    templates_rendered: int = 0
    files_written: int = 0
    total_duration_ms: float = 0.0


class SyncReport(BaseModel):
    """The one top-level result of a sync run."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    timestamp: str  # ISO-8601 UTC
    status: SyncStatus
    manifest_path: str
    dry_run: bool = False
    validate_only: bool = False
    stages: list[PipelineStageResult] = []
    rules: list[RuleReport] = []
    warnings: list[str] = []
    violations: list[Violation] = []
    error: ErrorDetail | None = None
    receipt_path: str | None = None
    report_file: str | None = None  # persisted Markdown or JSON copy of this report
    diff_path: str | None = None  # persisted unified diff of the written outputs
    statistics: SyncStatistics = SyncStatistics()

    @property
    def succeeded(self) -> bool:
        return self.status == SyncStatus.SUCCESS

    def stage_result(self, stage: PipelineStage) -> PipelineStageResult:
        """Return the result recorded for *stage*."""
        for result in self.stages:
            if result.stage == stage:
                return result
        raise KeyError(stage)

    def rule_report(self, name: str) -> RuleReport:
        """Return the report for rule *name*."""
        for report in self.rules:
            if report.rule_name == name:
                return report
        raise KeyError(name)
