"""Resource discovery: pairs every rule with its query and template.

Discovery reads directory listings only.  It never opens an ontology, never
touches the graph engine or template engine, and has no side effects, so a
failure here leaves the workspace exactly as it was.

Naming convention: the canonical key of a file is its name with every
known resource and language extension stripped, so ``queries/user.rq`` and
``templates/user.py.j2`` both have the key ``user``.  A rule without an
explicit ``query``/``template`` path is resolved through that key.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from pathlib import Path

from ontoforge.core.errors import (
    DiscoveryError,
    DuplicateOutputError,
    MissingOntologyError,
    MissingQueryError,
    MissingTemplateError,
    UnknownDependencyError,
    UnsupportedWriteModeError,
)
from ontoforge.models.artifacts import ResourceDiscovery
from ontoforge.models.manifest import GenerationManifest, WriteMode

logger = logging.getLogger(__name__)

QUERIES_DIR = "queries"
TEMPLATES_DIR = "templates"

QUERY_EXTENSIONS: tuple[str, ...] = (".rq", ".sparql")
TEMPLATE_EXTENSIONS: tuple[str, ...] = (".j2", ".jinja", ".jinja2", ".tera", ".tmpl")
LANGUAGE_EXTENSIONS: tuple[str, ...] = (
    ".py", ".rs", ".ts", ".json", ".yaml", ".yml", ".toml", ".md", ".txt",
)
RDF_EXTENSIONS: frozenset[str] = frozenset(
    {".ttl", ".nt", ".n3", ".rdf", ".owl", ".xml", ".jsonld"}
)


def canonical_key(file_name: str, extensions: tuple[str, ...]) -> str | None:
    """Return the canonical key for a resource file, or None if not a resource.

    ``user.py.j2`` -> ``user``; ``README.md`` with template extensions -> None.
    """
    stem = file_name
    matched = False
    for ext in extensions:
        if stem.endswith(ext):
            stem = stem[: -len(ext)]
            matched = True
            break
    if not matched:
        return None
    for ext in LANGUAGE_EXTENSIONS:
        if stem.endswith(ext):
            stem = stem[: -len(ext)]
            break
    return stem or None


class ResourceDiscoveryEngine:
    """Scans a workspace and resolves the resources a manifest declares.

    Parameters
    ----------
    workspace_root:
        Directory that manifest paths are relative to.
    """

    def __init__(self, workspace_root: Path) -> None:
        self._root = Path(workspace_root)

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self, directory: str, extensions: tuple[str, ...]) -> dict[str, list[Path]]:
        """Map canonical key -> matching files under ``<root>/<directory>``."""
        base = self._root / directory
        index: dict[str, list[Path]] = defaultdict(list)
        if not base.is_dir():
            return {}
        for path in sorted(base.rglob("*")):
            if not path.is_file():
                continue
            key = canonical_key(path.name, extensions)
            if key is not None:
                index[key].append(path)
        return dict(index)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    def discover(self, manifest: GenerationManifest) -> ResourceDiscovery:
        """Resolve every rule's query and template, and every ontology file.

        Raises
        ------
        UnsupportedWriteModeError
            A rule uses the ``Merge`` write mode.
        MissingQueryError / MissingTemplateError
            A rule's query or template does not resolve to a file.
        DuplicateOutputError
            Two rules write the same output path.
        UnknownDependencyError
            A ``depends_on`` entry names an undeclared rule.
        MissingOntologyError
            An ontology or shapes source does not exist.
        """
        for rule in manifest.rules:
            if rule.mode == WriteMode.MERGE:
                raise UnsupportedWriteModeError(rule.name, rule.mode.value)

        query_index = self.scan(QUERIES_DIR, QUERY_EXTENSIONS)
        template_index = self.scan(TEMPLATES_DIR, TEMPLATE_EXTENSIONS)

        queries: dict[str, Path] = {}
        templates: dict[str, Path] = {}
        for rule in manifest.rules:
            queries[rule.name] = self._resolve(
                rule.name,
                rule.query,
                query_index,
                error_cls=MissingQueryError,
                expected=rule.query or f"{QUERIES_DIR}/{rule.name}.rq",
            )
            templates[rule.name] = self._resolve(
                rule.name,
                rule.template,
                template_index,
                error_cls=MissingTemplateError,
                expected=rule.template or f"{TEMPLATES_DIR}/{rule.name}.*.j2",
            )

        self._check_duplicate_outputs(manifest)
        self._check_dependencies(manifest)

        ontologies: list[Path] = []
        for source in manifest.ontology.sources:
            ontologies.extend(self._resolve_ontology(source))
        shapes: list[Path] = []
        for source in manifest.ontology.shapes:
            shapes.extend(self._resolve_ontology(source))

        inference_queries: dict[str, Path] = {}
        for inference in manifest.inference_rules:
            path = self._root / inference.query
            if not path.is_file():
                raise MissingQueryError(inference.name, inference.query)
            inference_queries[inference.name] = path

        used_templates = {p.resolve() for p in templates.values()}
        orphaned = sorted(
            key
            for key, paths in template_index.items()
            if not any(p.resolve() in used_templates for p in paths)
        )
        for key in orphaned:
            logger.warning("Orphaned template '%s' has no matching rule", key)

        logger.info(
            "Discovered %d rules, %d ontology files, %d shapes files",
            len(manifest.rules),
            len(ontologies),
            len(shapes),
        )
        return ResourceDiscovery(
            queries=queries,
            templates=templates,
            ontologies=ontologies,
            shapes=shapes,
            inference_queries=inference_queries,
            orphaned_templates=orphaned,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(
        self,
        rule_name: str,
        explicit: str | None,
        index: dict[str, list[Path]],
        *,
        error_cls: type[MissingQueryError] | type[MissingTemplateError],
        expected: str,
    ) -> Path:
        if explicit is not None:
            path = self._root / explicit
            if not path.is_file():
                raise error_cls(rule_name, expected)
            return path

        candidates = index.get(rule_name, [])
        if not candidates:
            raise error_cls(rule_name, expected)
        if len(candidates) > 1:
            names = ", ".join(str(p.relative_to(self._root)) for p in candidates)
            raise DiscoveryError(
                f"Ambiguous resources for rule '{rule_name}': {names}",
                rule=rule_name,
            )
        return candidates[0]

    def _resolve_ontology(self, source: str) -> list[Path]:
        path = self._root / source
        if path.is_file():
            return [path]
        if path.is_dir():
            files = sorted(
                p for p in path.rglob("*")
                if p.is_file() and p.suffix.lower() in RDF_EXTENSIONS
            )
            if not files:
                raise MissingOntologyError(f"No ontology files found in {source}")
            return files
        raise MissingOntologyError(f"Ontology source not found: {source}")

    @staticmethod
    def _check_duplicate_outputs(manifest: GenerationManifest) -> None:
        seen: dict[str, str] = {}
        for rule in manifest.rules:
            if rule.output_file in seen:
                raise DuplicateOutputError(rule.name, seen[rule.output_file], rule.output_file)
            seen[rule.output_file] = rule.name

    @staticmethod
    def _check_dependencies(manifest: GenerationManifest) -> None:
        rule_names = set(manifest.rule_names)
        for rule in manifest.rules:
            for dep in rule.depends_on:
                if dep not in rule_names:
                    raise UnknownDependencyError(
                        f"Rule '{rule.name}' depends on unknown rule '{dep}'",
                        rule=rule.name,
                    )
        inference_names = {r.name for r in manifest.inference_rules}
        for inference in manifest.inference_rules:
            for dep in inference.depends_on:
                if dep not in inference_names:
                    raise UnknownDependencyError(
                        f"Inference rule '{inference.name}' depends on unknown rule '{dep}'",
                        rule=inference.name,
                    )
