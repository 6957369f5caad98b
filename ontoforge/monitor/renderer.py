"""Rich terminal renderer for sync reports and receipts.

Color scheme
------------
- green     : COMPLETED / success
- red       : FAILED
- yellow    : RUNNING / partial
- dim       : PENDING / SKIPPED
"""

from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.rule import Rule
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from ontoforge.models.receipts import Receipt
from ontoforge.models.reports import RuleOutcome, SyncReport, SyncStatus
from ontoforge.models.stages import StageStatus

# ---------------------------------------------------------------------------
# State -> Rich style mapping
# ---------------------------------------------------------------------------

_STAGE_ICONS: dict[StageStatus, str] = {
    StageStatus.COMPLETED: "[green]COMPLETED[/green]",
    StageStatus.FAILED: "[bold red]FAILED[/bold red]",
    StageStatus.RUNNING: "[yellow]RUNNING[/yellow]",
    StageStatus.PENDING: "[dim]PENDING[/dim]",
    StageStatus.SKIPPED: "[dim]SKIPPED[/dim]",
}

_STATUS_STYLES: dict[SyncStatus, str] = {
    SyncStatus.SUCCESS: "green",
    SyncStatus.PARTIAL: "yellow",
    SyncStatus.FAILED: "red",
}

_OUTCOME_STYLES: dict[RuleOutcome, str] = {
    RuleOutcome.WRITTEN: "green",
    RuleOutcome.UNCHANGED: "cyan",
    RuleOutcome.WOULD_WRITE: "yellow",
    RuleOutcome.VALIDATED: "yellow",
    RuleOutcome.SKIPPED_EXISTING: "magenta",
    RuleOutcome.NOT_RUN: "dim",
}


class SyncReportRenderer:
    """Renders ``SyncReport`` and ``Receipt`` as Rich terminal output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    # ------------------------------------------------------------------
    # Sync report
    # ------------------------------------------------------------------

    def render_report(self, report: SyncReport) -> Panel:
        """Render a SyncReport as a Panel with stage and rule tables."""
        parts: list = [self._build_stage_table(report), Text("")]
        if report.rules:
            parts += [self._build_rule_table(report), Text("")]

        for violation in report.violations:
            where = f" [dim]{violation.location}[/dim]" if violation.location else ""
            rule = f"[cyan]{violation.rule}[/cyan]: " if violation.rule else ""
            parts.append(Text.from_markup(f"[red]✗[/red] {rule}{violation.message}{where}"))
        for warning in report.warnings:
            parts.append(Text(f"! {warning}", style="yellow"))
        if report.error is not None:
            parts.append(
                Text.from_markup(
                    f"[bold red]{report.error.kind}[/bold red] at "
                    f"[bold]{report.error.stage.value}[/bold]: {report.error.message}"
                )
            )
            if report.error.suggestion:
                parts.append(Text.assemble(("Hint: ", "bold yellow"), report.error.suggestion))

        stats = report.statistics
        summary = "  |  ".join([
            f"[bold]Status:[/bold] [{_STATUS_STYLES[report.status]}]{report.status.value}[/]",
            f"[bold]Cache:[/bold] {stats.cache_hits} hits / {stats.cache_misses} misses",
            f"[bold]Written:[/bold] {stats.files_written}",
            f"[bold]Duration:[/bold] {stats.total_duration_ms:.0f} ms",
        ])
        parts.append(Text.from_markup(summary))
        if report.receipt_path:
            parts.append(Text.from_markup(f"[bold]Receipt:[/bold] {report.receipt_path}"))
        if report.diff_path:
            parts.append(Text.from_markup(f"[bold]Diff:[/bold] {report.diff_path}"))
        if report.report_file:
            parts.append(Text.from_markup(f"[bold]Report:[/bold] {report.report_file}"))

        mode = " (dry run)" if report.dry_run else " (validate only)" if report.validate_only else ""
        return Panel(
            Group(*parts),
            title=f"[bold]ontoforge sync{mode}[/bold]",
            subtitle=report.execution_id,
            border_style=_STATUS_STYLES[report.status],
            padding=(1, 2),
        )

    def _build_stage_table(self, report: SyncReport) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Stage", min_width=20)
        table.add_column("State", min_width=11, justify="center")
        table.add_column("Time", justify="right", width=10)
        table.add_column("Details")

        for i, stage in enumerate(report.stages, 1):
            ran = stage.status in (StageStatus.COMPLETED, StageStatus.FAILED)
            table.add_row(
                str(i),
                stage.display_name,
                _STAGE_ICONS[stage.status],
                f"{stage.duration_ms:.1f} ms" if ran else "[dim]-[/dim]",
                stage.details or "[dim]-[/dim]",
            )
        return table

    def _build_rule_table(self, report: SyncReport) -> Table:
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Rule", style="cyan")
        table.add_column("Output")
        table.add_column("Outcome", justify="center")
        table.add_column("Rows", justify="right")
        table.add_column("Cache", justify="center")
        table.add_column("SHA-256", style="dim")

        for rule in report.rules:
            style = _OUTCOME_STYLES[rule.outcome]
            cache = "-" if rule.cache_hit is None else "hit" if rule.cache_hit else "miss"
            table.add_row(
                rule.rule_name,
                rule.output_path,
                f"[{style}]{rule.outcome.value}[/{style}]",
                "-" if rule.row_count is None else str(rule.row_count),
                cache,
                rule.output_hash[:16] or "-",
            )
        return table

    def print_report(self, report: SyncReport) -> None:
        self.console.print(self.render_report(report))

    def print_diffs(self, report: SyncReport) -> None:
        """Print each rule's unified diff, in manifest order."""
        for rule in report.rules:
            if rule.diff:
                self.console.print(Rule(f"[cyan]{rule.rule_name}[/cyan] {rule.output_path}", align="left"))
                self.console.print(Syntax(rule.diff, "diff", theme="ansi_dark", background_color="default"))

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def render_receipt(self, receipt: Receipt) -> Panel:
        """Render a receipt's provenance chain."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Rule", style="cyan")
        table.add_column("Query", style="dim")
        table.add_column("Template", style="dim")
        table.add_column("Output")
        table.add_column("Output SHA-256", style="dim")
        for entry in receipt.provenance:
            table.add_row(
                entry.rule_name,
                entry.query_hash[:12],
                entry.template_hash[:12],
                entry.output_path,
                entry.output_hash[:16],
            )

        header = "\n".join([
            f"[bold]Timestamp:[/bold]     {receipt.timestamp}",
            f"[bold]Manifest:[/bold]      {receipt.manifest_hash[:16]}",
            f"[bold]Ontologies:[/bold]    {len(receipt.ontology_hashes)}",
            f"[bold]Inputs digest:[/bold] {receipt.inputs_digest[:16]}",
            f"[bold]Seal:[/bold]          {receipt.seal[:16]}",
        ])
        return Panel(
            Group(Text.from_markup(header), Text(""), table),
            title=f"[bold]Receipt {receipt.execution_id}[/bold]",
            border_style="blue",
            padding=(1, 2),
        )

    def print_receipt(self, receipt: Receipt) -> None:
        self.console.print(self.render_receipt(receipt))

    def print_receipt_list(self, receipts: list[Receipt]) -> None:
        """Print one row per receipt, oldest first."""
        if not receipts:
            self.console.print("[dim]No receipts recorded.[/dim]")
            return
        table = Table(title="Receipts", header_style="bold cyan")
        table.add_column("Execution ID", style="cyan")
        table.add_column("Rules", justify="right")
        table.add_column("Seal", style="dim")
        for receipt in receipts:
            table.add_row(
                receipt.execution_id,
                str(len(receipt.provenance)),
                receipt.seal[:16],
            )
        self.console.print(table)

    def print_verification(self, execution_id: str, valid: bool, reason: str = "") -> None:
        """Print a receipt verification result."""
        if valid:
            self.console.print(f"[green]Receipt {execution_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Receipt {execution_id} is INVALID:[/bold red] {reason}")
