"""``ontoforge receipts``: list the receipt store, oldest first."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from ontoforge.config import SyncSettings
from ontoforge.core.errors import ReceiptError
from ontoforge.core.receipts import ReceiptStore
from ontoforge.monitor.renderer import SyncReportRenderer

console = Console()


def receipts_cmd(
    workspace: Path = typer.Option(
        Path("."),
        "--workspace",
        "-w",
        help="Workspace root holding the receipt store.",
    ),
) -> None:
    """List every receipt recorded for WORKSPACE."""
    store = ReceiptStore(SyncSettings().receipts_dir(workspace))
    try:
        receipts = [store.load(execution_id) for execution_id in store.list_ids()]
    except ReceiptError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)
    SyncReportRenderer(console=console).print_receipt_list(receipts)
