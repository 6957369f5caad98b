"""Collaborator Protocols consumed by the sync pipeline.

The pipeline never imports rdflib or jinja2 directly; it talks to these
Protocols, and the default adapters in this package satisfy them.  Tests
substitute lightweight fakes.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from ontoforge.models.artifacts import RowSet
from ontoforge.models.reports import ShapeReport

# An opaque reference to a loaded graph, owned by one run.
GraphHandle = Any


class OntologyDocument(BaseModel):
    """The bytes of one ontology or shapes file."""

    model_config = ConfigDict(frozen=True)

    path: str  # workspace-relative, for messages and format detection
    data: bytes


class SyntaxIssue(BaseModel):
    """One problem reported by a syntax validator or compilation checker."""

    model_config = ConfigDict(frozen=True)

    message: str
    line: int | None = None
    path: str | None = None


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class GraphEngine(Protocol):
    """Semantic graph engine: load, query, shape conformance, inference.

    A handle returned by ``load`` or ``infer`` is read-shared across
    concurrent ``query`` calls and must never be mutated.
    """

    def load(self, documents: Sequence[OntologyDocument], base_uri: str) -> GraphHandle:
        """Parse *documents* into one graph.  Raises ``LoadError``."""
        ...

    def query(self, handle: GraphHandle, query_text: str) -> RowSet:
        """Run a query and return its rows.  Raises ``QueryError``."""
        ...

    def validate_shapes(
        self, handle: GraphHandle, shapes: Sequence[OntologyDocument]
    ) -> ShapeReport:
        """Check the graph against shape documents."""
        ...

    def infer(self, handle: GraphHandle, query_text: str) -> GraphHandle:
        """Return a new handle holding *handle*'s triples plus a CONSTRUCT result."""
        ...


@runtime_checkable
class TemplateEngine(Protocol):
    """Renders template text against a context.

    Implementations bound rendering by a timeout and an output size cap and
    expose no filesystem or network access to templates.  Failures raise
    ``RenderError``.
    """

    def render(self, template_text: str, context: Mapping[str, Any]) -> str:
        ...


@runtime_checkable
class SyntaxValidator(Protocol):
    """Per-language syntax check.  An empty list means the text is valid."""

    def validate(self, text: str) -> list[SyntaxIssue]:
        ...


@runtime_checkable
class Formatter(Protocol):
    """Per-language canonical formatter."""

    def format(self, text: str) -> str:
        ...


@runtime_checkable
class CompilationChecker(Protocol):
    """Runs a toolchain check over artifacts materialised in a scratch directory."""

    def check(self, scratch_dir: Path, files: Sequence[Path]) -> list[SyntaxIssue]:
        ...
