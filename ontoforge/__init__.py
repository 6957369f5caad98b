"""Ontoforge: ontology-driven, atomic, auditable code generation.

A sync run reads an ``ontoforge.toml`` manifest, pairs every generation rule
with its SPARQL query and template, extracts rows from the ontology graph
(cache-checked, optionally in parallel), renders and validates the
artifacts, commits them all-or-nothing and records a sealed receipt.
"""

__version__ = "0.3.0"
__description__ = "Ontology-driven code generation with atomic writes and audit receipts"

from ontoforge.core.pipeline import SyncPipeline, sync
from ontoforge.cli.app import app as cli

__all__ = ["SyncPipeline", "sync", "cli", "__version__"]
