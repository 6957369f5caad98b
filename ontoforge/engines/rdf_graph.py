"""rdflib graph engine with pyshacl shape conformance.

Query rows are plain JSON values so they can be cached and handed to
templates: IRIs become strings, blank nodes ``_:id`` strings and literals
their native Python value where that value is JSON-compatible (their lexical
form otherwise).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from pathlib import PurePosixPath
from typing import Any

from pyshacl import validate as shacl_validate
from rdflib import BNode, Graph, Literal
from rdflib.namespace import RDF, SH
from rdflib.term import Node

from ontoforge.core.errors import LoadError, QueryError
from ontoforge.engines.protocols import OntologyDocument
from ontoforge.models.artifacts import RowSet
from ontoforge.models.reports import Severity, ShapeReport, Violation
from ontoforge.models.stages import PipelineStage

logger = logging.getLogger(__name__)

RDF_FORMATS: dict[str, str] = {
    ".ttl": "turtle",
    ".nt": "nt",
    ".n3": "n3",
    ".rdf": "xml",
    ".owl": "xml",
    ".xml": "xml",
    ".jsonld": "json-ld",
}

# rdflib's SPARQL grammar is shared, non-reentrant module state; concurrent
# parses corrupt each other, so every query runs under this lock.
_SPARQL_LOCK = threading.Lock()

_SEVERITIES: dict[Node, Severity] = {
    SH.Violation: Severity.ERROR,
    SH.Warning: Severity.WARNING,
    SH.Info: Severity.INFO,
}


def term_to_json(term: Node | None) -> Any:
    """Convert an rdflib term to a JSON-compatible value."""
    if term is None:
        return None
    if isinstance(term, Literal):
        value = term.toPython()
        if isinstance(value, (bool, int, float, str)):
            return value
        return str(term)
    if isinstance(term, BNode):
        return f"_:{term}"
    return str(term)


class RdflibGraphEngine:
    """``GraphEngine`` backed by an in-memory rdflib ``Graph``."""

    def _parse(self, documents: Sequence[OntologyDocument], base_uri: str | None) -> Graph:
        graph = Graph()
        for document in documents:
            fmt = RDF_FORMATS.get(PurePosixPath(document.path).suffix.lower(), "turtle")
            try:
                graph.parse(data=document.data, format=fmt, publicID=base_uri)
            except Exception as exc:
                raise LoadError(f"Failed to parse {document.path} as {fmt}: {exc}") from exc
        return graph

    # ------------------------------------------------------------------
    # GraphEngine
    # ------------------------------------------------------------------

    def load(self, documents: Sequence[OntologyDocument], base_uri: str) -> Graph:
        graph = self._parse(documents, base_uri)
        logger.info("Loaded %d triples from %d documents", len(graph), len(documents))
        return graph

    def query(self, handle: Graph, query_text: str) -> RowSet:
        with _SPARQL_LOCK:
            try:
                result = handle.query(query_text)
                if result.type == "ASK":
                    return [{"ask": bool(result.askAnswer)}]
                if result.type in ("CONSTRUCT", "DESCRIBE"):
                    triples = [
                        {"s": term_to_json(s), "p": term_to_json(p), "o": term_to_json(o)}
                        for s, p, o in result.graph
                    ]
                    return sorted(triples, key=lambda t: (str(t["s"]), str(t["p"]), str(t["o"])))
                return [
                    {str(var): term_to_json(value) for var, value in row.asdict().items()}
                    for row in result
                ]
            except Exception as exc:
                raise QueryError(f"Query failed: {exc}") from exc

    def validate_shapes(
        self, handle: Graph, shapes: Sequence[OntologyDocument]
    ) -> ShapeReport:
        shapes_graph = self._parse(shapes, None)
        with _SPARQL_LOCK:
            try:
                conforms, results_graph, _ = shacl_validate(
                    handle,
                    shacl_graph=shapes_graph,
                    inference="none",
                    abort_on_first=False,
                    allow_warnings=True,
                )
            except Exception as exc:
                raise LoadError(f"Invalid shapes graph: {exc}") from exc

        violations: list[Violation] = []
        for result in results_graph.subjects(RDF.type, SH.ValidationResult):
            message = results_graph.value(result, SH.resultMessage)
            focus = results_graph.value(result, SH.focusNode)
            path = results_graph.value(result, SH.resultPath)
            severity = results_graph.value(result, SH.resultSeverity)
            text = str(message) if message is not None else "Shape constraint violated"
            if path is not None:
                text = f"{text} (path {path})"
            violations.append(
                Violation(
                    stage=PipelineStage.VALIDATE_ONTOLOGY,
                    message=text,
                    location=str(focus) if focus is not None else None,
                    severity=_SEVERITIES.get(severity, Severity.ERROR),
                )
            )
        violations.sort(key=lambda v: (v.location or "", v.message))
        return ShapeReport(conforms=bool(conforms), violations=violations)

    def infer(self, handle: Graph, query_text: str) -> Graph:
        with _SPARQL_LOCK:
            try:
                result = handle.query(query_text)
                constructed = list(result.graph) if result.type == "CONSTRUCT" else None
            except Exception as exc:
                raise QueryError(f"Inference query failed: {exc}") from exc
        if constructed is None:
            raise QueryError(f"Inference rules must be CONSTRUCT queries, got {result.type}")

        inferred = Graph()
        for prefix, namespace in handle.namespaces():
            inferred.bind(prefix, namespace, override=False)
        for triple in handle:
            inferred.add(triple)
        before = len(inferred)
        for triple in constructed:
            inferred.add(triple)
        logger.info("Inference added %d triples", len(inferred) - before)
        return inferred
