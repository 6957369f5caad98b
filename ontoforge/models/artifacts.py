"""Discovery, cache and rendered-artifact models."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from ontoforge.core.hasher import sha256_hex

# A query result: one mapping of variable name -> JSON value per solution.
RowSet = list[dict[str, Any]]


class ResourceDiscovery(BaseModel):
    """Resolved resources for every declared rule.

    Every rule in the manifest has an entry in both ``queries`` and
    ``templates``; orphaned templates are listed but never fatal.
    """

    model_config = ConfigDict(frozen=True)

    queries: dict[str, Path]  # rule name -> query file
    templates: dict[str, Path]  # rule name -> template file
    ontologies: list[Path]
    shapes: list[Path] = []
    inference_queries: dict[str, Path] = {}  # inference rule name -> query file
    orphaned_templates: list[str] = []


class CacheEntry(BaseModel):
    """A content-addressed query result.

    The value depends only on the key, so identical keys always hold
    identical rows.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    rows: RowSet


class RenderedArtifact(BaseModel):
    """The output of one rule, before it is written."""

    model_config = ConfigDict(frozen=True)

    rule_name: str
    output_path: str  # workspace-relative, normalised
    content: str
    query_hash: str
    template_hash: str
    language: str

    @property
    def content_bytes(self) -> bytes:
        return self.content.encode("utf-8")

    @property
    def content_hash(self) -> str:
        return sha256_hex(self.content_bytes)
