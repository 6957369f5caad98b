"""Tests for the Rich report and receipt renderer."""

from __future__ import annotations

import pytest
from rich.console import Console

from ontoforge.models.receipts import FileHash, ProvenanceEntry, Receipt
from ontoforge.models.reports import (
    ErrorDetail,
    RuleOutcome,
    RuleReport,
    SyncReport,
    SyncStatistics,
    SyncStatus,
    Violation,
)
from ontoforge.models.stages import STAGE_ORDER, PipelineStage, PipelineStageResult, StageStatus
from ontoforge.monitor.renderer import SyncReportRenderer


@pytest.fixture
def console() -> Console:
    return Console(record=True, width=160)


@pytest.fixture
def renderer(console: Console) -> SyncReportRenderer:
    return SyncReportRenderer(console=console)


def make_report(**overrides) -> SyncReport:
    fields = dict(
        execution_id="sync-20260101T000000Z-abcdef12",
        timestamp="2026-01-01T00:00:00+00:00",
        status=SyncStatus.SUCCESS,
        manifest_path="ontoforge.toml",
        stages=[
            PipelineStageResult(stage=s, status=StageStatus.COMPLETED, duration_ms=1.5)
            for s in STAGE_ORDER
        ],
        rules=[
            RuleReport(
                rule_name="user",
                output_path="src/generated/user.py",
                outcome=RuleOutcome.WRITTEN,
                cache_hit=False,
                row_count=2,
                output_hash="ab" * 32,
            )
        ],
        statistics=SyncStatistics(cache_misses=1, files_written=1, total_duration_ms=12.0),
    )
    fields.update(overrides)
    return SyncReport(**fields)


def make_receipt() -> Receipt:
    return Receipt(
        execution_id="sync-20260101T000000Z-abcdef12",
        timestamp="2026-01-01T00:00:00+00:00",
        manifest_hash="m" * 64,
        ontology_hashes=[FileHash(path="ontology/domain.ttl", hash="o" * 64)],
        provenance=[
            ProvenanceEntry(
                rule_name="user",
                query_hash="q" * 64,
                template_hash="t" * 64,
                output_path="src/generated/user.py",
                output_hash="h" * 64,
            )
        ],
        seal="s" * 64,
    )


class TestReportRendering:
    def test_success_report(self, renderer: SyncReportRenderer, console: Console):
        renderer.print_report(make_report())
        text = console.export_text()
        assert "Load Manifest" in text
        assert "Receipt" in text
        assert "src/generated/user.py" in text
        assert "written" in text
        assert "success" in text

    def test_failed_report_shows_error(self, renderer: SyncReportRenderer, console: Console):
        report = make_report(
            status=SyncStatus.FAILED,
            rules=[],
            error=ErrorDetail(
                kind="MissingTemplateError",
                message="Rule 'product' has no template",
                stage=PipelineStage.DISCOVER,
            ),
        )
        renderer.print_report(report)
        text = console.export_text()
        assert "MissingTemplateError" in text
        assert "discover" in text
        assert "Rule 'product' has no template" in text

    def test_violations_and_warnings(self, renderer: SyncReportRenderer, console: Console):
        report = make_report(
            status=SyncStatus.PARTIAL,
            validate_only=True,
            violations=[
                Violation(
                    stage=PipelineStage.VALIDATE_SYNTAX,
                    rule="user",
                    message="invalid syntax",
                    location="src/generated/user.py:1",
                )
            ],
            warnings=["Orphaned template 'legacy' has no matching rule"],
        )
        renderer.print_report(report)
        text = console.export_text()
        assert "invalid syntax" in text
        assert "src/generated/user.py:1" in text
        assert "Orphaned template 'legacy'" in text
        assert "validate only" in text

    def test_skipped_stage_has_no_time(self, renderer: SyncReportRenderer, console: Console):
        stages = [PipelineStageResult(stage=s, status=StageStatus.SKIPPED) for s in STAGE_ORDER]
        renderer.print_report(make_report(stages=stages, rules=[]))
        assert "SKIPPED" in console.export_text()

    def test_error_suggestion_hint(self, renderer: SyncReportRenderer, console: Console):
        report = make_report(
            status=SyncStatus.FAILED,
            rules=[],
            error=ErrorDetail(
                kind="LoadError",
                message="Invalid shapes graph",
                stage=PipelineStage.VALIDATE_ONTOLOGY,
                suggestion="Check the ontology and shapes files for syntax errors",
            ),
        )
        renderer.print_report(report)
        assert "Hint: Check the ontology and shapes files for syntax errors" in console.export_text()

    def test_artifact_paths(self, renderer: SyncReportRenderer, console: Console):
        renderer.print_report(
            make_report(diff_path=".receipts/diffs/x.patch", report_file=".receipts/reports/x.md")
        )
        text = console.export_text()
        assert "Diff: .receipts/diffs/x.patch" in text
        assert "Report: .receipts/reports/x.md" in text

    def test_print_diffs(self, renderer: SyncReportRenderer, console: Console):
        diff = "--- /dev/null\n+++ b/src/generated/user.py\n@@ -0,0 +1 @@\n+class User:\n"
        rules = [
            RuleReport(rule_name="user", output_path="src/generated/user.py", diff=diff),
            RuleReport(rule_name="product", output_path="src/generated/product.py"),
        ]
        renderer.print_diffs(make_report(rules=rules, dry_run=True))
        text = console.export_text()
        assert "+class User:" in text
        assert "src/generated/product.py" not in text


class TestReceiptRendering:
    def test_receipt_panel(self, renderer: SyncReportRenderer, console: Console):
        renderer.print_receipt(make_receipt())
        text = console.export_text()
        assert "sync-20260101T000000Z-abcdef12" in text
        assert "user" in text
        assert "hhhhhhhhhhhhhhhh" in text

    def test_empty_receipt_list(self, renderer: SyncReportRenderer, console: Console):
        renderer.print_receipt_list([])
        assert "No receipts recorded." in console.export_text()

    def test_receipt_list(self, renderer: SyncReportRenderer, console: Console):
        renderer.print_receipt_list([make_receipt()])
        assert "sync-20260101T000000Z-abcdef12" in console.export_text()

    @pytest.mark.parametrize(
        "valid, expected",
        [(True, "is valid."), (False, "is INVALID: seal mismatch")],
    )
    def test_verification(self, renderer: SyncReportRenderer, console: Console, valid, expected):
        renderer.print_verification("run-1", valid, "" if valid else "seal mismatch")
        assert expected in console.export_text()
