"""Persisted run artifacts: the sync report and the unified diff of outputs.

Storage layout (beside the receipts)::

    {receipts_dir}/reports/{execution_id}.md | .json
    {receipts_dir}/diffs/{execution_id}.patch
"""

from __future__ import annotations

import difflib
import logging
from pathlib import Path

from ontoforge.models.reports import ReportFormat, SyncReport

logger = logging.getLogger(__name__)

_EXTENSIONS: dict[ReportFormat, str] = {
    ReportFormat.MARKDOWN: ".md",
    ReportFormat.JSON: ".json",
}


def unified_diff(output_path: str, old: bytes | None, new: bytes) -> str:
    """Unified diff from *old* (None for a new file) to *new*, git-style headers."""
    before = old.decode("utf-8", errors="replace").splitlines(keepends=True) if old is not None else []
    after = new.decode("utf-8", errors="replace").splitlines(keepends=True)
    lines = difflib.unified_diff(
        before,
        after,
        fromfile=f"a/{output_path}" if old is not None else "/dev/null",
        tofile=f"b/{output_path}",
    )
    text = ""
    for line in lines:
        text += line if line.endswith("\n") else line + "\n\\ No newline at end of file\n"
    return text


def render_markdown(report: SyncReport) -> str:
    """Human-readable Markdown rendition of a sync report."""
    mode = "dry run" if report.dry_run else "validate only" if report.validate_only else "apply"
    out = [
        f"# ontoforge sync report {report.execution_id}",
        "",
        f"- **Manifest**: {report.manifest_path}",
        f"- **Timestamp**: {report.timestamp}",
        f"- **Mode**: {mode}",
        f"- **Status**: {report.status.value}",
        "",
        "## Stages",
        "",
        "| Stage | State | Time (ms) | Details |",
        "|---|---|---|---|",
    ]
    for stage in report.stages:
        details = stage.details.replace("|", "\\|")
        out.append(
            f"| {stage.display_name} | {stage.status.value} | {stage.duration_ms:.1f} | {details} |"
        )

    if report.rules:
        out += [
            "",
            "## Rules",
            "",
            "| Rule | Output | Outcome | Rows | Cache | SHA-256 |",
            "|---|---|---|---|---|---|",
        ]
        for rule in report.rules:
            cache = "-" if rule.cache_hit is None else "hit" if rule.cache_hit else "miss"
            rows = "-" if rule.row_count is None else str(rule.row_count)
            out.append(
                f"| {rule.rule_name} | `{rule.output_path}` | {rule.outcome.value} | "
                f"{rows} | {cache} | `{rule.output_hash[:16] or '-'}` |"
            )

    if report.violations:
        out += ["", "## Violations", ""]
        for violation in report.violations:
            where = f" ({violation.location})" if violation.location else ""
            rule = f"`{violation.rule}`: " if violation.rule else ""
            out.append(f"- [{violation.stage.value}] {rule}{violation.message}{where}")

    if report.warnings:
        out += ["", "## Warnings", ""]
        out += [f"- {warning}" for warning in report.warnings]

    if report.error is not None:
        out += [
            "",
            "## Error",
            "",
            f"**{report.error.kind}** at `{report.error.stage.value}`: {report.error.message}",
        ]
        if report.error.suggestion:
            out += ["", f"Suggestion: {report.error.suggestion}"]

    stats = report.statistics
    out += [
        "",
        "## Statistics",
        "",
        f"- Cache: {stats.cache_hits} hits / {stats.cache_misses} misses",
        f"- Queries executed: {stats.queries_executed}",
        f"- Templates rendered: {stats.templates_rendered}",
        f"- Files written: {stats.files_written}",
        f"- Duration: {stats.total_duration_ms:.0f} ms",
    ]

    links = [
        (label, value)
        for label, value in (("Receipt", report.receipt_path), ("Diff", report.diff_path))
        if value
    ]
    if links:
        out += ["", "## Artifacts", ""]
        out += [f"- {label}: `{value}`" for label, value in links]
    return "\n".join(out) + "\n"


class SyncReportWriter:
    """Writes sync reports and output diffs under a run-artifact directory.

    Parameters
    ----------
    directory:
        Usually the receipt store directory.  ``reports/`` and ``diffs/``
        are created beneath it on first write.
    """

    def __init__(self, directory: Path) -> None:
        self._dir = Path(directory)

    def report_path(self, execution_id: str, fmt: ReportFormat) -> Path:
        if fmt not in _EXTENSIONS:
            raise ValueError(f"No report file for format {fmt.value!r}")
        return self._dir / "reports" / f"{execution_id}{_EXTENSIONS[fmt]}"

    def diff_path(self, execution_id: str) -> Path:
        return self._dir / "diffs" / f"{execution_id}.patch"

    def write_report(self, report: SyncReport, fmt: ReportFormat) -> Path:
        """Persist *report* as Markdown or JSON; returns the file written."""
        path = self.report_path(report.execution_id, fmt)
        if fmt == ReportFormat.JSON:
            text = report.model_dump_json(indent=2) + "\n"
        else:
            text = render_markdown(report)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info("Wrote %s report to %s", fmt.value, path)
        return path

    def write_diff(self, report: SyncReport) -> Path | None:
        """Concatenate the per-rule diffs in manifest order; None when nothing changed."""
        text = "".join(rule.diff for rule in report.rules)
        if not text:
            return None
        path = self.diff_path(report.execution_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.info("Wrote output diff to %s", path)
        return path
