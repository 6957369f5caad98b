"""Tests for receipt generation, sealing, chaining and verification."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from ontoforge.core.errors import ReceiptError
from ontoforge.core.hasher import hash_file, sha256_hex
from ontoforge.core.manifest_loader import load_manifest
from ontoforge.core.discovery import ResourceDiscoveryEngine
from ontoforge.core.receipts import (
    INDEX_FILE,
    ReceiptGenerator,
    ReceiptStore,
    compute_inputs_digest,
)
from ontoforge.models.artifacts import RenderedArtifact
from ontoforge.models.receipts import FileHash, ProvenanceEntry, Receipt


def make_receipt(execution_id: str, *, output_hash: str = "", output_path: str = "out.txt") -> Receipt:
    receipt = Receipt(
        execution_id=execution_id,
        timestamp="2026-01-01T00:00:00Z",
        manifest_hash="m" * 64,
        ontology_hashes=[FileHash(path="ontology/domain.ttl", hash="o" * 64)],
        provenance=[
            ProvenanceEntry(
                rule_name="user",
                query_hash="q" * 64,
                template_hash="t" * 64,
                output_path=output_path,
                output_hash=output_hash or sha256_hex(b"content"),
            )
        ],
    )
    return receipt.model_copy(update={"inputs_digest": compute_inputs_digest(receipt)})


def artifact(name: str, content: str) -> RenderedArtifact:
    return RenderedArtifact(
        rule_name=name,
        output_path=f"src/generated/{name}.py",
        content=content,
        query_hash="q",
        template_hash="t",
        language="python",
    )


class TestReceiptGenerator:
    def test_hashes_inputs_and_provenance(self, workspace: Path):
        manifest = load_manifest(workspace)
        discovery = ResourceDiscoveryEngine(workspace).discover(manifest)
        receipt = ReceiptGenerator(workspace, tool_version="9.9").generate(
            execution_id="sync-1",
            timestamp="2026-01-01T00:00:00Z",
            manifest=manifest,
            discovery=discovery,
            artifacts=[artifact("user", "a"), artifact("product", "b")],
        )
        assert receipt.tool_version == "9.9"
        assert receipt.manifest_hash == manifest.manifest_hash
        assert [h.path for h in receipt.ontology_hashes] == ["ontology/domain.ttl"]
        assert receipt.ontology_hashes[0].hash == hash_file(workspace / "ontology" / "domain.ttl")
        assert [h.path for h in receipt.query_hashes] == ["queries/user.rq", "queries/product.rq"]
        assert [p.rule_name for p in receipt.provenance] == ["user", "product"]
        assert receipt.provenance[0].output_hash == sha256_hex(b"a")
        assert receipt.inputs_digest == compute_inputs_digest(receipt)
        assert receipt.seal == ""

    def test_output_hash_override(self, workspace: Path):
        manifest = load_manifest(workspace)
        discovery = ResourceDiscoveryEngine(workspace).discover(manifest)
        receipt = ReceiptGenerator(workspace).generate(
            execution_id="sync-1",
            timestamp="t",
            manifest=manifest,
            discovery=discovery,
            artifacts=[artifact("user", "a")],
            output_hashes={"user": "kept"},
        )
        assert receipt.provenance[0].output_hash == "kept"

    def test_inputs_digest_ignores_run_specific_fields(self):
        first = make_receipt("run-a")
        second = make_receipt("run-b").model_copy(update={"timestamp": "later"})
        assert first.inputs_digest == second.inputs_digest


class TestReceiptStore:
    def test_append_seals_and_chains(self, receipt_store: ReceiptStore):
        first = receipt_store.append(make_receipt("run-1"))
        second = receipt_store.append(make_receipt("run-2"))
        assert first.previous_receipt_seal == ""
        assert second.previous_receipt_seal == first.seal
        assert receipt_store.list_ids() == ["run-1", "run-2"]
        assert receipt_store.latest_seal() == second.seal
        assert receipt_store.verify_chain()

    def test_load_round_trip(self, receipt_store: ReceiptStore):
        sealed = receipt_store.append(make_receipt("run-1"))
        assert receipt_store.load("run-1") == sealed
        assert receipt_store.verify_receipt(receipt_store.load("run-1"))

    def test_never_overwrites(self, receipt_store: ReceiptStore):
        receipt_store.append(make_receipt("run-1"))
        with pytest.raises(ReceiptError, match="already exists"):
            receipt_store.append(make_receipt("run-1"))
        assert receipt_store.list_ids() == ["run-1"]

    def test_missing_receipt(self, receipt_store: ReceiptStore):
        with pytest.raises(ReceiptError, match="No receipt"):
            receipt_store.load("nope")

    def test_invalid_execution_id(self, receipt_store: ReceiptStore):
        with pytest.raises(ReceiptError, match="Invalid execution id"):
            receipt_store.load("../escape")

    def test_index_is_jsonl(self, receipt_store: ReceiptStore):
        sealed = receipt_store.append(make_receipt("run-1"))
        lines = (receipt_store.directory / INDEX_FILE).read_text().splitlines()
        assert [json.loads(line) for line in lines] == [
            {"execution_id": "run-1", "seal": sealed.seal}
        ]

    def test_empty_store(self, receipt_store: ReceiptStore):
        assert receipt_store.list_ids() == []
        assert receipt_store.latest_seal() == ""
        assert receipt_store.verify_chain()


class TestVerifyOutputs:
    def test_outputs_on_disk(self, receipt_store: ReceiptStore, tmp_path: Path):
        (tmp_path / "out.txt").write_bytes(b"content")
        sealed = receipt_store.append(make_receipt("run-1"))
        assert receipt_store.verify_receipt(sealed, tmp_path)

    def test_changed_output(self, receipt_store: ReceiptStore, tmp_path: Path):
        (tmp_path / "out.txt").write_bytes(b"edited")
        sealed = receipt_store.append(make_receipt("run-1"))
        with pytest.raises(ReceiptError, match="changed"):
            receipt_store.verify_receipt(sealed, tmp_path)

    def test_missing_output(self, receipt_store: ReceiptStore, tmp_path: Path):
        sealed = receipt_store.append(make_receipt("run-1"))
        with pytest.raises(ReceiptError, match="is missing"):
            receipt_store.verify_receipt(sealed, tmp_path)
