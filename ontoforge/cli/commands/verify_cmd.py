"""``ontoforge verify-receipt EXECUTION_ID``: check a receipt.

Recomputes the seal and inputs digest, re-hashes every output on disk
(unless ``--no-outputs``) and optionally walks the whole receipt chain.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from ontoforge.config import SyncSettings
from ontoforge.core.errors import ReceiptError
from ontoforge.core.receipts import ReceiptStore
from ontoforge.monitor.renderer import SyncReportRenderer

console = Console()


def verify_cmd(
    execution_id: str = typer.Argument(
        ...,
        help="The execution id of the receipt to verify.",
    ),
    workspace: Path = typer.Option(
        Path("."),
        "--workspace",
        "-w",
        help="Workspace root holding the receipt store and outputs.",
    ),
    check_outputs: bool = typer.Option(
        True,
        "--outputs/--no-outputs",
        help="Re-hash the generated files recorded in the receipt.",
    ),
    chain: bool = typer.Option(
        False,
        "--chain",
        help="Also verify every receipt link in the store.",
    ),
) -> None:
    """Verify the receipt EXECUTION_ID."""
    settings = SyncSettings()
    store = ReceiptStore(settings.receipts_dir(workspace))
    renderer = SyncReportRenderer(console=console)

    try:
        receipt = store.load(execution_id)
    except ReceiptError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    renderer.print_receipt(receipt)
    try:
        store.verify_receipt(receipt, workspace if check_outputs else None)
        if chain:
            console.print("[bold cyan]Verifying receipt chain...[/bold cyan]")
            store.verify_chain()
    except ReceiptError as exc:
        renderer.print_verification(execution_id, False, str(exc))
        raise typer.Exit(code=1)
    renderer.print_verification(execution_id, True)
