"""``ontoforge sync MANIFEST``: run the generation pipeline.

Prints the stage table, per-rule outcomes, violations and warnings, or the
full ``SyncReport`` as JSON with ``--json``.  Dry runs print the unified diff
of every file that would change first.  Exits 1 unless the run
succeeded.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from ontoforge.config import SyncSettings
from ontoforge.core.pipeline import SyncPipeline
from ontoforge.models.reports import ReportFormat, SyncStatus
from ontoforge.monitor.renderer import SyncReportRenderer

console = Console()


def sync_cmd(
    manifest: Path = typer.Argument(
        Path("ontoforge.toml"),
        help="Manifest file, or a directory containing ontoforge.toml.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Render and format without writing; report would-be hashes.",
    ),
    validate_only: bool = typer.Option(
        False,
        "--validate-only",
        help="Stop after syntax validation and list every finding.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Ignore cached query results.",
    ),
    audit: Optional[bool] = typer.Option(
        None,
        "--audit/--no-audit",
        help="Write a receipt (default: the manifest's audit.enabled).",
    ),
    rules: Optional[list[str]] = typer.Option(
        None,
        "--rule",
        "-r",
        help="Only generate this rule (repeatable).",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print the report as JSON.",
    ),
    report_format: Optional[ReportFormat] = typer.Option(
        None,
        "--report",
        case_sensitive=False,
        help="Also save the report under the receipts directory (markdown, json or none).",
    ),
) -> None:
    """Run a sync for MANIFEST."""
    if dry_run and validate_only:
        console.print("[bold red]--dry-run and --validate-only are mutually exclusive.[/bold red]")
        raise typer.Exit(code=2)

    settings = SyncSettings()
    if report_format is not None:
        settings = settings.model_copy(update={"report_format": report_format})
    pipeline = SyncPipeline(settings=settings)
    try:
        report = pipeline.sync(
            manifest,
            dry_run=dry_run,
            validate_only=validate_only,
            force=force,
            audit=audit,
            rule_filter=rules or None,
        )
    except KeyboardInterrupt:
        console.print("[bold red]Interrupted; pending writes were rolled back.[/bold red]")
        raise typer.Exit(code=130)

    if json_output:
        typer.echo(report.model_dump_json(indent=2))
    else:
        renderer = SyncReportRenderer(console=console)
        if report.dry_run:
            renderer.print_diffs(report)
        renderer.print_report(report)

    if report.status != SyncStatus.SUCCESS:
        raise typer.Exit(code=1)
