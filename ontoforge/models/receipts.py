"""Receipt models: the immutable, hashed audit record of one run.

A receipt is:
- Immutable (frozen model, written once, never overwritten)
- Sealed (``seal`` is SHA-256 over every other field)
- Hash-chained (``previous_receipt_seal`` links to the prior receipt)
- Reproducible (every content hash is identical across runs with identical
  inputs; only ``execution_id``, ``timestamp`` and the chain fields differ)
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class FileHash(BaseModel):
    """A workspace-relative path and the SHA-256 of its bytes."""

    model_config = ConfigDict(frozen=True)

    path: str
    hash: str


class ProvenanceEntry(BaseModel):
    """The query -> template -> output hash linkage for one rule."""

    model_config = ConfigDict(frozen=True)

    rule_name: str
    query_hash: str
    template_hash: str
    output_path: str
    output_hash: str


class Receipt(BaseModel):
    """Audit receipt for one successful sync run."""

    model_config = ConfigDict(frozen=True)

    version: str = "1.0.0"
    execution_id: str
    timestamp: str  # ISO-8601 UTC
    mode: str = "apply"
    tool_version: str = ""
    manifest_hash: str
    ontology_hashes: list[FileHash]
    query_hashes: list[FileHash] = []
    template_hashes: list[FileHash] = []
    provenance: list[ProvenanceEntry]
    inputs_digest: str = ""  # SHA-256 over the reproducible fields
    previous_receipt_seal: str = ""
    seal: str = ""  # computed after construction, seals this receipt
