"""Manifest loader: parses ``ontoforge.toml`` into a ``GenerationManifest``.

Reading the manifest is the only side effect.  Any structural problem is
reported as ``ConfigError`` before a single other file is touched.
"""

from __future__ import annotations

import logging
import posixpath
import tomllib
from pathlib import Path, PurePosixPath
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ontoforge.core.errors import ConfigError
from ontoforge.core.hasher import sha256_hex
from ontoforge.models.manifest import (
    GenerationManifest,
    GenerationRule,
    InferenceRule,
    OntologyConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_MANIFEST_NAME = "ontoforge.toml"
MAX_MANIFEST_BYTES = 10 * 1024 * 1024


def normalize_relpath(value: str, *, field: str = "path") -> str:
    """Normalise a workspace-relative path and reject escapes.

    ``./src/../gen/a.py`` becomes ``gen/a.py``.  Absolute paths and paths
    that climb out of the workspace raise ``ConfigError``.
    """
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"{field} must be a non-empty string")
    posix = value.replace("\\", "/")
    if PurePosixPath(posix).is_absolute() or (len(posix) > 1 and posix[1] == ":"):
        raise ConfigError(f"{field} must be relative to the workspace: {value!r}")
    normalized = posixpath.normpath(posix)
    if normalized == ".." or normalized.startswith("../"):
        raise ConfigError(f"{field} escapes the workspace: {value!r}")
    return normalized


def load_manifest(
    manifest_path: Path | str, workspace_root: Path | str | None = None
) -> GenerationManifest:
    """Read and parse a manifest file.

    Parameters
    ----------
    manifest_path:
        Path to the TOML manifest.  A directory means
        ``<dir>/ontoforge.toml``.
    workspace_root:
        Root that every manifest path is relative to.  Defaults to the
        manifest's directory.
    """
    path = Path(manifest_path)
    if path.is_dir():
        path = path / DEFAULT_MANIFEST_NAME
    try:
        raw = path.read_bytes()
    except FileNotFoundError as exc:
        raise ConfigError(f"Manifest not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read manifest {path}: {exc}") from exc

    if len(raw) > MAX_MANIFEST_BYTES:
        raise ConfigError(
            f"Manifest {path} is {len(raw)} bytes; limit is {MAX_MANIFEST_BYTES}"
        )

    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ConfigError(f"Manifest {path} is not valid UTF-8: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Malformed manifest {path}: {exc}") from exc

    root = Path(workspace_root) if workspace_root is not None else path.parent
    manifest = parse_manifest(
        data,
        manifest_path=path,
        workspace_root=root,
        manifest_hash=sha256_hex(raw),
    )
    logger.info(
        "Loaded manifest %s (%d rules, validation=%s)",
        path,
        len(manifest.rules),
        manifest.validation_level.value,
    )
    return manifest


def parse_manifest(
    data: dict[str, Any],
    *,
    manifest_path: Path,
    workspace_root: Path,
    manifest_hash: str,
) -> GenerationManifest:
    """Build a ``GenerationManifest`` from an already-decoded TOML document."""
    project = _optional_table(data, "project")
    ontology = _parse_ontology(_require_table(data, "ontology"))
    generation = _require_table(data, "generation")
    rules = _parse_rules(generation)
    inference_rules = _parse_inference(_optional_table(data, "inference"))
    validation = _optional_table(data, "validation")
    audit = _optional_table(data, "audit")

    kwargs: dict[str, Any] = {
        "manifest_path": manifest_path,
        "workspace_root": workspace_root,
        "manifest_hash": manifest_hash,
        "project_name": project.get("name", ""),
        "ontology": ontology,
        "inference_rules": inference_rules,
        "rules": rules,
    }
    if "level" in validation:
        kwargs["validation_level"] = validation["level"]
    if "forbidden_markers" in validation:
        kwargs["forbidden_markers"] = validation["forbidden_markers"]
    if "enabled" in audit:
        kwargs["audit_enabled"] = audit["enabled"]
    if "cache" in generation:
        kwargs["cache_enabled"] = generation["cache"]
    if "parallel" in generation:
        kwargs["parallel"] = generation["parallel"]
    if "max_workers" in generation:
        kwargs["max_workers"] = generation["max_workers"]

    try:
        return GenerationManifest(**kwargs)
    except PydanticValidationError as exc:
        raise ConfigError(_describe(exc, "manifest")) from exc


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def _parse_ontology(table: dict[str, Any]) -> OntologyConfig:
    if "source" not in table:
        raise ConfigError("Missing required field 'ontology.source'")
    if "base_uri" not in table:
        raise ConfigError("Missing required field 'ontology.base_uri'")
    base_uri = table["base_uri"]
    if not isinstance(base_uri, str) or not base_uri:
        raise ConfigError("'ontology.base_uri' must be a non-empty string")

    sources = [
        normalize_relpath(s, field="ontology.source")
        for s in _string_list(table["source"], "ontology.source")
    ]
    if not sources:
        raise ConfigError("'ontology.source' must name at least one file")
    shapes = [
        normalize_relpath(s, field="ontology.shapes")
        for s in _string_list(table.get("shapes", []), "ontology.shapes")
    ]
    return OntologyConfig(sources=sources, base_uri=base_uri, shapes=shapes)


def _parse_rules(generation: dict[str, Any]) -> list[GenerationRule]:
    raw_rules = generation.get("rules")
    if not raw_rules:
        raise ConfigError("Missing required field 'generation.rules'")
    if not isinstance(raw_rules, list):
        raise ConfigError("'generation.rules' must be an array of tables")

    rules: list[GenerationRule] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_rules):
        location = f"generation.rules[{index}]"
        if not isinstance(raw, dict):
            raise ConfigError(f"{location} must be a table")
        for required in ("name", "output_file"):
            if required not in raw:
                raise ConfigError(f"Missing required field '{location}.{required}'")

        fields = dict(raw)
        fields["output_file"] = normalize_relpath(
            raw["output_file"], field=f"{location}.output_file"
        )
        for optional in ("query", "template"):
            if raw.get(optional) is not None:
                fields[optional] = normalize_relpath(
                    raw[optional], field=f"{location}.{optional}"
                )
        try:
            rule = GenerationRule.model_validate(fields)
        except PydanticValidationError as exc:
            raise ConfigError(_describe(exc, location)) from exc

        if rule.name in seen:
            raise ConfigError(f"Duplicate rule name '{rule.name}' at {location}")
        seen.add(rule.name)
        rules.append(rule)
    return rules


def _parse_inference(table: dict[str, Any]) -> list[InferenceRule]:
    raw_rules = table.get("rules", [])
    if not isinstance(raw_rules, list):
        raise ConfigError("'inference.rules' must be an array of tables")

    rules: list[InferenceRule] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_rules):
        location = f"inference.rules[{index}]"
        if not isinstance(raw, dict):
            raise ConfigError(f"{location} must be a table")
        for required in ("name", "query"):
            if required not in raw:
                raise ConfigError(f"Missing required field '{location}.{required}'")
        fields = dict(raw)
        fields["query"] = normalize_relpath(raw["query"], field=f"{location}.query")
        try:
            rule = InferenceRule.model_validate(fields)
        except PydanticValidationError as exc:
            raise ConfigError(_describe(exc, location)) from exc
        if rule.name in seen:
            raise ConfigError(f"Duplicate inference rule name '{rule.name}'")
        seen.add(rule.name)
        rules.append(rule)
    return rules


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _require_table(data: dict[str, Any], key: str) -> dict[str, Any]:
    if key not in data:
        raise ConfigError(f"Missing required table [{key}]")
    return _optional_table(data, key)


def _optional_table(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a table")
    return value


def _string_list(value: Any, field: str) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"'{field}' must be a string or a list of strings")


def _describe(exc: PydanticValidationError, location: str) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{location}.{loc}: {err.get('msg', 'invalid value')}")
    return "Invalid manifest: " + "; ".join(parts)
