"""Receipt generation and the append-only, hash-chained receipt store.

The receipt store is the audit trail of successful sync runs.

Design:
- Append-only: only ``append()`` writes; a receipt file is created with
  exclusive-create semantics and is never overwritten or deleted.
- Sealed: ``seal`` is SHA-256 over every other receipt field.
- Hash-chained: each receipt records the seal of the receipt before it,
  in the order listed by ``index.jsonl``.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from ontoforge import __version__
from ontoforge.core.errors import ReceiptError
from ontoforge.core.hasher import canonical_json_bytes, compute_seal, hash_file, sha256_hex
from ontoforge.models.artifacts import RenderedArtifact, ResourceDiscovery
from ontoforge.models.manifest import GenerationManifest
from ontoforge.models.receipts import FileHash, ProvenanceEntry, Receipt

logger = logging.getLogger(__name__)

INDEX_FILE = "index.jsonl"

_EXECUTION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

# Fields that change between runs with identical inputs.
_RUN_SPECIFIC_FIELDS = ("execution_id", "timestamp", "inputs_digest", "previous_receipt_seal", "seal")


def compute_inputs_digest(receipt: Receipt) -> str:
    """SHA-256 over every reproducible receipt field."""
    return compute_seal(receipt.model_dump(mode="json"), exclude=_RUN_SPECIFIC_FIELDS)


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class ReceiptGenerator:
    """Hashes a run's inputs and outputs into an unsealed ``Receipt``.

    Parameters
    ----------
    workspace_root:
        Recorded paths are relative to this directory.
    tool_version:
        Version string stored in every receipt.
    """

    def __init__(self, workspace_root: Path, *, tool_version: str = __version__) -> None:
        self._root = Path(workspace_root)
        self._tool_version = tool_version

    def _file_hash(self, path: Path) -> FileHash:
        path = Path(path)
        try:
            relative = path.relative_to(self._root).as_posix()
        except ValueError:
            relative = path.as_posix()
        return FileHash(path=relative, hash=hash_file(path))

    def _file_hashes(self, paths: Sequence[Path]) -> list[FileHash]:
        # Distinct paths, first occurrence wins
        return [self._file_hash(p) for p in dict.fromkeys(paths)]

    def generate(
        self,
        *,
        execution_id: str,
        timestamp: str,
        manifest: GenerationManifest,
        discovery: ResourceDiscovery,
        artifacts: Sequence[RenderedArtifact],
        output_hashes: Mapping[str, str] | None = None,
    ) -> Receipt:
        """Build the receipt for a completed run.

        Parameters
        ----------
        artifacts:
            Final formatted artifacts, in manifest declaration order.
        output_hashes:
            Per-rule override of the recorded output hash (used when an
            existing file was kept instead of the rendered content).

        Returns
        -------
        Receipt
            With ``inputs_digest`` set; ``previous_receipt_seal`` and
            ``seal`` are filled in by ``ReceiptStore.append``.
        """
        output_hashes = output_hashes or {}
        rule_names = [a.rule_name for a in artifacts]

        provenance = [
            ProvenanceEntry(
                rule_name=a.rule_name,
                query_hash=a.query_hash,
                template_hash=a.template_hash,
                output_path=a.output_path,
                output_hash=output_hashes.get(a.rule_name, a.content_hash),
            )
            for a in artifacts
        ]

        query_paths = [discovery.queries[name] for name in rule_names]
        query_paths += list(discovery.inference_queries.values())

        receipt = Receipt(
            execution_id=execution_id,
            timestamp=timestamp,
            tool_version=self._tool_version,
            manifest_hash=manifest.manifest_hash,
            ontology_hashes=self._file_hashes([*discovery.ontologies, *discovery.shapes]),
            query_hashes=self._file_hashes(query_paths),
            template_hashes=self._file_hashes([discovery.templates[n] for n in rule_names]),
            provenance=provenance,
        )
        return receipt.model_copy(update={"inputs_digest": compute_inputs_digest(receipt)})


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ReceiptStore:
    """Append-only, hash-chained receipt store.

    Layout::

        <receipts_dir>/<execution_id>.json
        <receipts_dir>/index.jsonl      # one {"execution_id", "seal"} per line

    Parameters
    ----------
    receipts_dir:
        Directory holding receipts.  Created on the first append.
    """

    def __init__(self, receipts_dir: Path) -> None:
        self._dir = Path(receipts_dir)
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._dir

    def _receipt_path(self, execution_id: str) -> Path:
        if not _EXECUTION_ID_RE.match(execution_id):
            raise ReceiptError(f"Invalid execution id: {execution_id!r}")
        return self._dir / f"{execution_id}.json"

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, receipt: Receipt) -> Receipt:
        """Chain, seal and persist a receipt.

        Returns the receipt with ``previous_receipt_seal`` and ``seal`` set.
        This is the ONLY write method.  There is no update or delete.
        """
        path = self._receipt_path(receipt.execution_id)
        with self._lock:
            chained = receipt.model_copy(
                update={"previous_receipt_seal": self.latest_seal(), "seal": ""}
            )
            sealed = chained.model_copy(
                update={"seal": compute_seal(chained.model_dump(mode="json"))}
            )

            self._dir.mkdir(parents=True, exist_ok=True)
            data = json.dumps(sealed.model_dump(mode="json"), indent=2, sort_keys=True) + "\n"
            try:
                with path.open("x", encoding="utf-8") as handle:
                    handle.write(data)
            except FileExistsError as exc:
                raise ReceiptError(
                    f"Receipt {receipt.execution_id} already exists; receipts are never overwritten"
                ) from exc
            except OSError as exc:
                raise ReceiptError(f"Failed to write receipt {path}: {exc}") from exc

            line = canonical_json_bytes(
                {"execution_id": sealed.execution_id, "seal": sealed.seal}
            ).decode("ascii")
            try:
                with (self._dir / INDEX_FILE).open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                raise ReceiptError(f"Failed to update receipt index: {exc}") from exc

        logger.info("Receipt %s persisted (seal %s)", sealed.execution_id, sealed.seal[:12])
        return sealed

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def path_for(self, execution_id: str) -> Path:
        return self._receipt_path(execution_id)

    def _index_entries(self) -> list[dict[str, str]]:
        index = self._dir / INDEX_FILE
        if not index.exists():
            return []
        entries: list[dict[str, str]] = []
        for number, line in enumerate(index.read_text(encoding="utf-8").splitlines(), 1):
            if not line.strip():
                continue
            try:
                entries.append(json.loads(line))
            except ValueError as exc:
                raise ReceiptError(f"Corrupt receipt index at line {number}: {exc}") from exc
        return entries

    def list_ids(self) -> list[str]:
        """Execution ids in append order."""
        return [entry["execution_id"] for entry in self._index_entries()]

    def latest_seal(self) -> str:
        """Seal of the most recently appended receipt, or "" if none."""
        entries = self._index_entries()
        return entries[-1]["seal"] if entries else ""

    def load(self, execution_id: str) -> Receipt:
        """Load a receipt by execution id."""
        path = self._receipt_path(execution_id)
        try:
            return Receipt.model_validate_json(path.read_bytes())
        except FileNotFoundError as exc:
            raise ReceiptError(f"No receipt found for {execution_id}") from exc
        except (OSError, PydanticValidationError) as exc:
            raise ReceiptError(f"Unreadable receipt {execution_id}: {exc}") from exc

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_receipt(self, receipt: Receipt, workspace_root: Path | None = None) -> bool:
        """Verify a receipt's seal, inputs digest and (optionally) its outputs.

        Returns True if the receipt is intact, raises ReceiptError otherwise.

        Parameters
        ----------
        workspace_root:
            When given, every provenance output is re-hashed on disk and
            compared with the recorded ``output_hash``.
        """
        expected_seal = compute_seal(receipt.model_dump(mode="json"))
        if receipt.seal != expected_seal:
            raise ReceiptError(
                f"Tampered receipt {receipt.execution_id}: "
                f"expected seal={expected_seal!r}, got {receipt.seal!r}"
            )

        expected_digest = compute_inputs_digest(receipt)
        if receipt.inputs_digest != expected_digest:
            raise ReceiptError(
                f"Receipt {receipt.execution_id} inputs digest mismatch: "
                f"expected {expected_digest!r}, got {receipt.inputs_digest!r}"
            )

        if workspace_root is not None:
            root = Path(workspace_root)
            for entry in receipt.provenance:
                output = root / entry.output_path
                if not output.is_file():
                    raise ReceiptError(
                        f"Output {entry.output_path} of rule '{entry.rule_name}' is missing"
                    )
                actual = sha256_hex(output.read_bytes())
                if actual != entry.output_hash:
                    raise ReceiptError(
                        f"Output {entry.output_path} of rule '{entry.rule_name}' changed: "
                        f"expected {entry.output_hash!r}, found {actual!r}"
                    )
        return True

    def verify_chain(self) -> bool:
        """Walk the index, verifying every receipt and every chain link.

        Returns True if the chain is valid, raises ReceiptError otherwise.
        """
        previous = ""
        for entry in self._index_entries():
            receipt = self.load(entry["execution_id"])
            if receipt.previous_receipt_seal != previous:
                raise ReceiptError(
                    f"Chain broken at receipt {receipt.execution_id}: "
                    f"expected previous seal={previous!r}, "
                    f"got {receipt.previous_receipt_seal!r}"
                )
            self.verify_receipt(receipt)
            if receipt.seal != entry["seal"]:
                raise ReceiptError(
                    f"Receipt {receipt.execution_id} does not match its index entry"
                )
            previous = receipt.seal
        return True
