"""Shared test fixtures for ontoforge."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

import pytest

from ontoforge.config import SyncSettings
from ontoforge.core.errors import QueryError
from ontoforge.core.pipeline import SyncPipeline
from ontoforge.core.query_cache import QueryResultCache
from ontoforge.core.receipts import ReceiptStore
from ontoforge.engines.protocols import OntologyDocument
from ontoforge.models.reports import ShapeReport

# ---------------------------------------------------------------------------
# Sample project content
# ---------------------------------------------------------------------------

ONTOLOGY_TTL = """\
@prefix ex: <https://example.org/> .
@prefix rdfs: <http://www.w3.org/2000/01/rdf-schema#> .

ex:User a ex:Entity ;
    rdfs:label "User" .

ex:Product a ex:Entity ;
    rdfs:label "Product" .
"""

ENTITY_QUERY = """\
PREFIX ex: <https://example.org/>
PREFIX rdfs: <http://www.w3.org/2000/01/rdf-schema#>
SELECT ?name WHERE { ?entity a ex:Entity ; rdfs:label ?name } ORDER BY ?name
"""

CLASS_TEMPLATE = """\
# Generated by {{ rule_name }}
{% for row in rows %}
class {{ row.name }}:
    pass
{% endfor %}
"""

SHAPES_TTL = """\
@prefix sh: <http://www.w3.org/ns/shacl#> .
@prefix ex: <https://example.org/> .
@prefix rdfs: <http://www.w3.org/2000/01/rdf-schema#> .
@prefix xsd: <http://www.w3.org/2001/XMLSchema#> .

ex:EntityShape a sh:NodeShape ;
    sh:targetClass ex:Entity ;
    sh:property [
        sh:path rdfs:label ;
        sh:minCount 1 ;
        sh:datatype xsd:string ;
    ] .
"""


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_toml_value(v) for v in value) + "]"
    raise TypeError(f"Unsupported TOML value: {value!r}")


def render_manifest(
    rules: Sequence[Mapping[str, Any]],
    *,
    source: str | list[str] = "ontology/domain.ttl",
    shapes: Sequence[str] = (),
    level: str = "standard",
    audit: bool = True,
    cache: bool = True,
    parallel: bool = True,
    max_workers: int | None = None,
    inference: Sequence[Mapping[str, Any]] = (),
    forbidden_markers: Sequence[str] | None = None,
) -> str:
    """Build an ``ontoforge.toml`` document."""
    lines = [
        "[project]",
        'name = "demo"',
        "",
        "[ontology]",
        f"source = {_toml_value(source)}",
        'base_uri = "https://example.org/"',
    ]
    if shapes:
        lines.append(f"shapes = {_toml_value(list(shapes))}")
    for rule in inference:
        lines += ["", "[[inference.rules]]"]
        lines += [f"{k} = {_toml_value(v)}" for k, v in rule.items()]
    lines += [
        "",
        "[generation]",
        f"cache = {_toml_value(cache)}",
        f"parallel = {_toml_value(parallel)}",
    ]
    if max_workers is not None:
        lines.append(f"max_workers = {max_workers}")
    for rule in rules:
        lines += ["", "[[generation.rules]]"]
        lines += [f"{k} = {_toml_value(v)}" for k, v in rule.items()]
    lines += ["", "[validation]", f"level = {_toml_value(level)}"]
    if forbidden_markers is not None:
        lines.append(f"forbidden_markers = {_toml_value(list(forbidden_markers))}")
    lines += ["", "[audit]", f"enabled = {_toml_value(audit)}", ""]
    return "\n".join(lines)


def snapshot_tree(root: Path, *, exclude: Sequence[str] = (".cache", ".receipts")) -> dict[str, bytes]:
    """Map every file under *root* (outside *exclude*) to its bytes."""
    snapshot: dict[str, bytes] = {}
    for path in sorted(root.rglob("*")):
        relative = path.relative_to(root)
        if relative.parts and relative.parts[0] in exclude:
            continue
        if path.is_file():
            snapshot[relative.as_posix()] = path.read_bytes()
    return snapshot


# ---------------------------------------------------------------------------
# Workspace factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_workspace(tmp_path: Path) -> Callable[..., Path]:
    """Factory fixture: write a small ontology/query/template project.

    ``rules`` defaults to ``user`` and ``product``, each with its own query
    and template file resolved by naming convention.  ``files`` adds or
    overrides arbitrary files; a value of None deletes the file.
    """

    def _factory(
        rules: Sequence[Mapping[str, Any]] | None = None,
        *,
        files: Mapping[str, str | None] | None = None,
        **manifest_options: Any,
    ) -> Path:
        root = tmp_path / "workspace"
        root.mkdir(exist_ok=True)
        if rules is None:
            rules = [
                {"name": "user", "output_file": "src/generated/user.py"},
                {"name": "product", "output_file": "src/generated/product.py"},
            ]

        contents: dict[str, str | None] = {"ontology/domain.ttl": ONTOLOGY_TTL}
        for rule in rules:
            contents.setdefault(
                rule.get("query") or f"queries/{rule['name']}.rq", f"# {rule['name']}\n{ENTITY_QUERY}"
            )
            contents.setdefault(
                rule.get("template") or f"templates/{rule['name']}.py.j2", CLASS_TEMPLATE
            )
        contents.update(files or {})
        contents["ontoforge.toml"] = render_manifest(rules, **manifest_options)

        for relative, text in contents.items():
            path = root / relative
            if text is None:
                path.unlink(missing_ok=True)
                continue
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, encoding="utf-8")
        return root

    return _factory


@pytest.fixture
def workspace(make_workspace: Callable[..., Path]) -> Path:
    """The default two-rule workspace."""
    return make_workspace()


@pytest.fixture
def settings(tmp_path: Path) -> SyncSettings:
    """Isolated settings: short deadlines, backups under tmp_path."""
    return SyncSettings(
        _env_file=None,
        max_workers=4,
        run_timeout_seconds=30.0,
        render_timeout_seconds=5.0,
        backup_dir=tmp_path / "backups",
    )


@pytest.fixture
def pipeline(settings: SyncSettings) -> SyncPipeline:
    """A SyncPipeline with the default rdflib and jinja2 collaborators."""
    return SyncPipeline(settings=settings)


@pytest.fixture
def cache(tmp_path: Path) -> QueryResultCache:
    return QueryResultCache(tmp_path / "cache")


@pytest.fixture
def receipt_store(tmp_path: Path) -> ReceiptStore:
    return ReceiptStore(tmp_path / "receipts")


@pytest.fixture
def tree_snapshot() -> Callable[..., dict[str, bytes]]:
    return snapshot_tree


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeGraphEngine:
    """In-memory GraphEngine double.

    Rows are looked up by the first ``# rows: <key>`` comment in the query
    text; queries without one return ``default_rows``.  ``delays`` sleeps
    per key before answering, ``failures`` raises QueryError per key.
    """

    def __init__(
        self,
        rows: Mapping[str, list[dict[str, Any]]] | None = None,
        *,
        default_rows: list[dict[str, Any]] | None = None,
        delays: Mapping[str, float] | None = None,
        failures: Sequence[str] = (),
        shape_report: ShapeReport | None = None,
    ) -> None:
        self.rows = dict(rows or {})
        self.default_rows = default_rows if default_rows is not None else [{"name": "Thing"}]
        self.delays = dict(delays or {})
        self.failures = set(failures)
        self.shape_report = shape_report or ShapeReport(conforms=True)
        self.loaded: list[list[OntologyDocument]] = []
        self.queries: list[str] = []
        self.completion_order: list[str] = []
        self.inferred: list[str] = []
        self.shape_checks = 0
        self._lock = threading.Lock()

    @staticmethod
    def key_of(query_text: str) -> str:
        for line in query_text.splitlines():
            if line.startswith("# rows:"):
                return line.split(":", 1)[1].strip()
        return ""

    def load(self, documents: Sequence[OntologyDocument], base_uri: str) -> dict[str, Any]:
        self.loaded.append(list(documents))
        return {"documents": [d.path for d in documents], "base_uri": base_uri}

    def query(self, handle: Any, query_text: str) -> list[dict[str, Any]]:
        key = self.key_of(query_text)
        with self._lock:
            self.queries.append(key)
        if key in self.delays:
            time.sleep(self.delays[key])
        if key in self.failures:
            raise QueryError(f"engine rejected query {key!r}")
        with self._lock:
            self.completion_order.append(key)
        return [dict(r) for r in self.rows.get(key, self.default_rows)]

    def validate_shapes(self, handle: Any, shapes: Sequence[OntologyDocument]) -> ShapeReport:
        self.shape_checks += 1
        return self.shape_report

    def infer(self, handle: Any, query_text: str) -> dict[str, Any]:
        self.inferred.append(self.key_of(query_text))
        return {**handle, "inferred": [*handle.get("inferred", []), self.key_of(query_text)]}


@pytest.fixture
def fake_engine() -> FakeGraphEngine:
    return FakeGraphEngine()


@pytest.fixture
def make_pipeline(settings: SyncSettings) -> Callable[..., SyncPipeline]:
    """Factory fixture: a SyncPipeline with isolated settings and overrides."""

    def _factory(**overrides: Any) -> SyncPipeline:
        overrides.setdefault("settings", settings)
        return SyncPipeline(**overrides)

    return _factory


@pytest.fixture
def manifest_text() -> Callable[..., str]:
    """The ``render_manifest`` helper, for tests that write manifests by hand."""
    return render_manifest


@pytest.fixture
def make_fake_engine() -> Callable[..., FakeGraphEngine]:
    """Factory fixture: build a FakeGraphEngine with custom rows, delays or failures."""
    return FakeGraphEngine
