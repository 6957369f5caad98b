"""Manifest models: the typed form of ``ontoforge.toml``.

A ``GenerationManifest`` is parsed once per invocation and never mutated
afterwards.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class WriteMode(str, Enum):
    """How a rule's output interacts with an existing file."""

    OVERWRITE = "Overwrite"
    CREATE_ONLY = "CreateOnly"
    MERGE = "Merge"


class ValidationLevel(str, Enum):
    """How much validation the pipeline performs.

    - ``minimal``: no shape conformance, marker findings are warnings.
    - ``standard``: shape conformance, syntax checks, formatting.
    - ``strict``: adds CheckCompilation; marker findings are fatal.
    """

    MINIMAL = "minimal"
    STANDARD = "standard"
    STRICT = "strict"


class OntologyConfig(BaseModel):
    """The ``[ontology]`` table."""

    model_config = ConfigDict(frozen=True)

    sources: list[str]  # files or directories, workspace-relative
    base_uri: str
    shapes: list[str] = []  # SHACL shapes files


class InferenceRule(BaseModel):
    """A CONSTRUCT query applied to the graph before extraction."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    query: str
    depends_on: list[str] = []


class GenerationRule(BaseModel):
    """One query + template + output triple."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1, max_length=128)
    query: str | None = None  # resolved by naming convention when None
    template: str | None = None  # resolved by naming convention when None
    output_file: str = Field(min_length=1)
    mode: WriteMode = WriteMode.OVERWRITE
    depends_on: list[str] = []
    language: str | None = None  # detected from output_file when None
    bindings: list[str] = []  # variables every result row must bind


class GenerationManifest(BaseModel):
    """The complete build configuration for one sync run."""

    model_config = ConfigDict(frozen=True)

    manifest_path: Path
    workspace_root: Path
    manifest_hash: str  # SHA-256 of the manifest file bytes
    project_name: str = ""
    ontology: OntologyConfig
    inference_rules: list[InferenceRule] = []
    rules: list[GenerationRule]
    validation_level: ValidationLevel = ValidationLevel.STANDARD
    forbidden_markers: list[str] = ["TODO", "FIXME"]
    audit_enabled: bool = True
    cache_enabled: bool = True
    parallel: bool = True
    max_workers: int | None = Field(default=None, ge=1)

    @property
    def rule_names(self) -> list[str]:
        """Rule names in declaration order."""
        return [rule.name for rule in self.rules]

    def get_rule(self, name: str) -> GenerationRule:
        """Return the rule called *name*."""
        for rule in self.rules:
            if rule.name == name:
                return rule
        raise KeyError(name)
