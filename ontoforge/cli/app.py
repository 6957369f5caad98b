"""Main Typer application: imports and registers all CLI commands.

Entry point: ``ontoforge`` (configured via pyproject.toml project.scripts).

Commands: sync, verify-receipt, receipts.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from ontoforge.cli.commands.receipts_cmd import receipts_cmd
from ontoforge.cli.commands.sync_cmd import sync_cmd
from ontoforge.cli.commands.verify_cmd import verify_cmd
from ontoforge.config import SyncSettings

app = typer.Typer(
    name="ontoforge",
    help="ontoforge: ontology-driven code generation with atomic writes and audit receipts.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="sync", help="Generate code from an ontology manifest.")(sync_cmd)
app.command(name="verify-receipt", help="Verify a receipt's seal and outputs.")(verify_cmd)
app.command(name="receipts", help="List recorded receipts.")(receipts_cmd)


def configure_logging(level: str, *, debug: bool = False) -> None:
    """Route library logging through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=Console(stderr=True),
                rich_tracebacks=debug,
                show_path=debug,
            )
        ],
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("rdflib").setLevel(logging.WARNING)
    logging.getLogger("pyshacl").setLevel(logging.WARNING)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log at DEBUG level regardless of ONTOFORGE_LOG_LEVEL.",
    ),
) -> None:
    """Configure logging from the environment before any command runs."""
    settings = SyncSettings()
    configure_logging("DEBUG" if verbose else settings.log_level, debug=settings.debug)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
