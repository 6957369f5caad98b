"""Ontoforge CLI: Typer-based command-line interface.

Provides the ``ontoforge`` command with subcommands for running a sync,
verifying receipts and listing the receipt store.

All output uses Rich for formatted terminal display.
"""
