"""Sync pipeline: the stage executor for one ontoforge run.

The SyncPipeline wires together the manifest loader, resource discovery,
the rule dependency graph, the graph and template engines, the query cache,
the file transaction and the receipt store, and drives them through the
ordered stage list in ``ontoforge.models.stages``.

Failure policy:
- A stage failure marks that stage Failed, every later stage Skipped, and
  returns a ``SyncReport`` with status Failed and the terminal error.
- Nothing under the workspace output paths is touched before Write; a
  Write failure is rolled back by the transaction.
- Extract and Render fan out per rule over a bounded thread pool; results
  are keyed by rule name and always reported in manifest order.
"""

from __future__ import annotations

import logging
import re
import tempfile
import threading
import time
import uuid
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import FIRST_EXCEPTION, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, TypeVar

from ontoforge.config import SyncSettings
from ontoforge.core.dependency_graph import RuleDependencyGraph
from ontoforge.core.discovery import ResourceDiscoveryEngine
from ontoforge.core.errors import (
    ConfigError,
    LoadError,
    OntoforgeError,
    QueryError,
    RenderError,
    SyncCancelledError,
    SyncTimeoutError,
    ValidationError,
    suggestion_for,
)
from ontoforge.core.hasher import hash_file, sha256_hex
from ontoforge.core.manifest_loader import load_manifest
from ontoforge.core.query_cache import QueryResultCache
from ontoforge.core.receipts import ReceiptGenerator, ReceiptStore
from ontoforge.core.report_writer import SyncReportWriter, unified_diff
from ontoforge.core.stage_machine import StageMachine
from ontoforge.core.transaction import FileTransaction
from ontoforge.engines.languages import LanguageSupport, detect_language
from ontoforge.engines.protocols import GraphEngine, OntologyDocument, TemplateEngine
from ontoforge.engines.rdf_graph import RdflibGraphEngine
from ontoforge.engines.templates import SandboxedTemplateEngine
from ontoforge.models.artifacts import RenderedArtifact, ResourceDiscovery, RowSet
from ontoforge.models.manifest import GenerationManifest, GenerationRule, ValidationLevel, WriteMode
from ontoforge.models.reports import (
    ErrorDetail,
    ReportFormat,
    RuleOutcome,
    RuleReport,
    Severity,
    SyncReport,
    SyncStatistics,
    SyncStatus,
    Violation,
)
from ontoforge.models.stages import (
    DRY_RUN_LAST_STAGE,
    STAGE_ORDER,
    VALIDATE_ONLY_LAST_STAGE,
    PipelineStage,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How often a waiting fan-out re-checks cancellation and the run deadline.
_POLL_INTERVAL_SECONDS = 0.05

TransactionFactory = Callable[..., FileTransaction]


def new_execution_id() -> str:
    """``sync-<UTC timestamp>-<8 hex>``; unique per run."""
    ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"sync-{ts}-{uuid.uuid4().hex[:8]}"


def _length_prefixed(chunks: Iterable[bytes]) -> bytes:
    return b"".join(len(chunk).to_bytes(8, "big") + chunk for chunk in chunks)


def _first_failure(futures: Iterable[Future[Any]]) -> BaseException | None:
    """The first exception in submission order, once every earlier future is done."""
    for future in futures:
        if not future.done():
            return None
        if future.exception() is not None:
            return future.exception()
    return None


_WORD_CHAR = re.compile(r"\w")


def marker_pattern(markers: Sequence[str]) -> re.Pattern[str] | None:
    """Regex matching any of *markers* as a whole token, or None if none are usable.

    A marker edge that is a word character must not touch another word
    character; an edge of punctuation (``@todo``, ``XXX:``) matches as written.
    """
    alternatives = []
    for marker in markers:
        if not marker:
            continue
        head = r"(?<!\w)" if _WORD_CHAR.match(marker[0]) else ""
        tail = r"(?!\w)" if _WORD_CHAR.match(marker[-1]) else ""
        alternatives.append(f"{head}{re.escape(marker)}{tail}")
    return re.compile("|".join(alternatives)) if alternatives else None


class _Extraction:
    """Rows produced for one rule by the Extract stage."""

    __slots__ = ("rows", "cache_hit", "query_hash")

    def __init__(self, rows: RowSet, cache_hit: bool, query_hash: str) -> None:
        self.rows = rows
        self.cache_hit = cache_hit
        self.query_hash = query_hash


class _SyncRun:
    """Mutable state of one ``sync()`` call.  Never outlives the call."""

    def __init__(
        self,
        manifest_path: Path,
        *,
        dry_run: bool,
        validate_only: bool,
        audit: bool | None,
        rule_filter: Sequence[str] | None,
        deadline: float,
    ) -> None:
        self.manifest_path = manifest_path
        self.dry_run = dry_run
        self.validate_only = validate_only
        self.audit_override = audit
        self.rule_filter = list(rule_filter) if rule_filter is not None else None
        self.deadline = deadline
        self.cancel_event = threading.Event()

        self.execution_id = new_execution_id()
        self.timestamp = datetime.now(timezone.utc).isoformat()

        self.manifest: GenerationManifest | None = None
        self.selected: list[GenerationRule] = []
        self.audit = False
        self.cache: QueryResultCache | None = None
        self.receipt_store: ReceiptStore | None = None
        self.discovery: ResourceDiscovery | None = None
        self.inference_order: list[str] = []
        self.handle: Any = None
        self.ontology_key_bytes = b""

        self.extractions: dict[str, _Extraction] = {}
        self.artifacts: dict[str, RenderedArtifact] = {}
        self.outcomes: dict[str, RuleOutcome] = {}
        self.output_hashes: dict[str, str] = {}  # overrides for kept files
        self.diffs: dict[str, str] = {}
        self.warnings: list[str] = []
        self.violations: list[Violation] = []
        self.halted: str | None = None  # reason the run stopped early without failing
        self.receipt_path: str | None = None

    def require_manifest(self) -> GenerationManifest:
        """The loaded manifest; only valid after the LoadManifest stage."""
        if self.manifest is None:
            raise RuntimeError(f"Sync {self.execution_id} has no manifest loaded")
        return self.manifest

    @property
    def root(self) -> Path:
        return self.require_manifest().workspace_root

    def ordered_artifacts(self) -> list[RenderedArtifact]:
        """Rendered artifacts in manifest declaration order."""
        return [self.artifacts[r.name] for r in self.selected if r.name in self.artifacts]


class SyncPipeline:
    """Stage executor for ontoforge sync runs.

    Every collaborator is injected; the defaults are the rdflib graph engine,
    the sandboxed jinja2 engine, the built-in language support, and a query
    cache and receipt store under the manifest's workspace.

    Parameters
    ----------
    settings:
        Runtime settings.  Read from the environment when not provided.
    graph_engine / template_engine / languages:
        Collaborator implementations.
    cache:
        Query cache shared by every run of this pipeline.  When None, each
        run uses ``<workspace>/<cache_dir_name>``.
    receipt_store:
        Receipt store.  When None, each run uses
        ``<workspace>/<receipts_dir_name>``.
    transaction_factory:
        Callable ``(workspace_root, *, backup_dir)`` returning the run's
        ``FileTransaction``.
    """

    def __init__(
        self,
        *,
        settings: SyncSettings | None = None,
        graph_engine: GraphEngine | None = None,
        template_engine: TemplateEngine | None = None,
        languages: LanguageSupport | None = None,
        cache: QueryResultCache | None = None,
        receipt_store: ReceiptStore | None = None,
        transaction_factory: TransactionFactory = FileTransaction,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or SyncSettings()
        self.graph_engine = graph_engine or RdflibGraphEngine()
        self.template_engine = template_engine or SandboxedTemplateEngine(
            timeout_seconds=self.settings.render_timeout_seconds,
            max_output_bytes=self.settings.max_output_bytes,
        )
        self.languages = languages or LanguageSupport.default(
            compile_timeout_seconds=self.settings.compile_timeout_seconds
        )
        self._cache = cache
        self._receipt_store = receipt_store
        self._transaction_factory = transaction_factory
        self._clock = clock
        self._active: set[_SyncRun] = set()
        self._active_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Abort every run in progress at its next cancellation point."""
        with self._active_lock:
            runs = list(self._active)
        for run in runs:
            logger.warning("Cancellation requested for %s", run.execution_id)
            run.cancel_event.set()

    def sync(
        self,
        manifest_path: Path | str,
        *,
        dry_run: bool = False,
        validate_only: bool = False,
        force: bool = False,
        audit: bool | None = None,
        rule_filter: Sequence[str] | None = None,
    ) -> SyncReport:
        """Run the pipeline for one manifest.

        Parameters
        ----------
        manifest_path:
            The manifest file, or a directory containing ``ontoforge.toml``.
        dry_run:
            Stop after Format and report would-be output hashes.
        validate_only:
            Stop after ValidateSyntax, collecting validation findings.
        force:
            Bypass cache reads in Extract (results are still cached).
        audit:
            Write a receipt; None uses the manifest's ``audit.enabled``.
        rule_filter:
            Restrict Extract/Render/Write to these rule names.

        Returns
        -------
        SyncReport
            Status Success, Partial (validate_only with findings) or Failed.
        """
        started = self._clock()
        run = _SyncRun(
            Path(manifest_path),
            dry_run=dry_run,
            validate_only=validate_only,
            audit=audit,
            rule_filter=rule_filter,
            deadline=started + self.settings.run_timeout_seconds,
        )
        with self._active_lock:
            self._active.add(run)
        logger.info("Sync %s started for %s", run.execution_id, run.manifest_path)

        machine = StageMachine()
        handlers: dict[PipelineStage, Callable[[_SyncRun], str]] = {
            PipelineStage.LOAD_MANIFEST: self._load_manifest,
            PipelineStage.DISCOVER: self._discover,
            PipelineStage.ORDER_RULES: self._order_rules,
            PipelineStage.LOAD: self._load,
            PipelineStage.VALIDATE_ONTOLOGY: self._validate_ontology,
            PipelineStage.EXTRACT: partial(self._extract, force=force),
            PipelineStage.VALIDATE_RESULTS: self._validate_results,
            PipelineStage.RENDER: self._render,
            PipelineStage.VALIDATE_SYNTAX: self._validate_syntax,
            PipelineStage.FORMAT: self._format,
            PipelineStage.CHECK_COMPILATION: self._check_compilation,
            PipelineStage.DETECT_TODOS: self._detect_todos,
            PipelineStage.WRITE: self._write,
            PipelineStage.RECEIPT: self._receipt,
        }
        if validate_only:
            last_stage, stop_reason = VALIDATE_ONLY_LAST_STAGE, "validate-only run"
        elif dry_run:
            last_stage, stop_reason = DRY_RUN_LAST_STAGE, "dry run"
        else:
            last_stage, stop_reason = STAGE_ORDER[-1], ""

        error: ErrorDetail | None = None
        try:
            for stage in STAGE_ORDER[: STAGE_ORDER.index(last_stage) + 1]:
                skip_reason = self._skip_reason(stage, run)
                if skip_reason:
                    machine.skip(stage, skip_reason)
                    continue

                machine.start(stage)
                try:
                    self._check_cancelled(run)
                    details = handlers[stage](run)
                except Exception as exc:
                    if not isinstance(exc, (OntoforgeError, OSError)):
                        logger.exception("Unexpected %s in stage %s", type(exc).__name__, stage.value)
                    machine.fail(stage, str(exc))
                    if isinstance(exc, ValidationError):
                        run.violations.extend(exc.violations)
                    error = ErrorDetail(
                        kind=type(exc).__name__,
                        message=str(exc),
                        stage=stage,
                        suggestion=suggestion_for(exc),
                    )
                    break
                machine.complete(stage, details)

                if run.halted:
                    stop_reason = run.halted
                    break
        finally:
            with self._active_lock:
                self._active.discard(run)

        if error is not None:
            machine.skip_remaining(f"{machine.failed_stage.value} failed")
        else:
            machine.skip_remaining(stop_reason)

        report = self._build_report(run, machine, error, self._clock() - started)
        report = self._persist_run_artifacts(run, report)
        logger.info(
            "Sync %s finished: %s (%d rules, %.1f ms)",
            run.execution_id,
            report.status.value,
            len(report.rules),
            report.statistics.total_duration_ms,
        )
        return report

    # ------------------------------------------------------------------
    # Stage scheduling helpers
    # ------------------------------------------------------------------

    def _skip_reason(self, stage: PipelineStage, run: _SyncRun) -> str:
        manifest = run.manifest
        if manifest is None:
            return ""
        level = manifest.validation_level
        if stage == PipelineStage.VALIDATE_ONTOLOGY:
            if level == ValidationLevel.MINIMAL:
                return "validation level is minimal"
            if not manifest.ontology.shapes:
                return "no shapes declared"
        if stage == PipelineStage.CHECK_COMPILATION and level != ValidationLevel.STRICT:
            return "requires strict validation"
        if stage == PipelineStage.DETECT_TODOS and not manifest.forbidden_markers:
            return "no forbidden markers configured"
        if stage == PipelineStage.RECEIPT and not run.audit:
            return "audit disabled"
        return ""

    def _check_cancelled(self, run: _SyncRun) -> None:
        if run.cancel_event.is_set():
            raise SyncCancelledError(f"Sync {run.execution_id} was cancelled")
        if self._clock() > run.deadline:
            raise SyncTimeoutError(
                f"Sync exceeded its {self.settings.run_timeout_seconds:g}s deadline"
            )

    def _fan_out(
        self,
        run: _SyncRun,
        rules: Sequence[GenerationRule],
        task: Callable[[GenerationRule], T],
    ) -> dict[str, T]:
        """Run *task* per rule and return results keyed by rule name.

        In parallel mode the tasks share a bounded pool.  Once a task fails,
        the tasks declared before it are awaited so the error raised is always
        the first failure in manifest order; later tasks are abandoned.
        """
        manifest = run.require_manifest()
        workers = min(manifest.max_workers or self.settings.max_workers, len(rules))
        if not manifest.parallel or workers <= 1:
            results: dict[str, T] = {}
            for rule in rules:
                self._check_cancelled(run)
                results[rule.name] = task(rule)
            return results

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ontoforge-worker")
        try:
            futures: dict[str, Future[T]] = {
                rule.name: executor.submit(task, rule) for rule in rules
            }
            pending = set(futures.values())
            while pending:
                _, pending = wait(pending, timeout=_POLL_INTERVAL_SECONDS, return_when=FIRST_EXCEPTION)
                failure = _first_failure(futures.values())
                if failure is not None:
                    raise failure
                if pending:
                    self._check_cancelled(run)
            return {name: future.result() for name, future in futures.items()}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Stages: manifest, discovery, ordering
    # ------------------------------------------------------------------

    def _load_manifest(self, run: _SyncRun) -> str:
        manifest = load_manifest(run.manifest_path)
        run.manifest = manifest

        if run.rule_filter is not None:
            unknown = [n for n in run.rule_filter if n not in manifest.rule_names]
            if unknown:
                raise ConfigError(f"Unknown rule(s) in filter: {', '.join(unknown)}")
            wanted = set(run.rule_filter)
            run.selected = [r for r in manifest.rules if r.name in wanted]
        else:
            run.selected = list(manifest.rules)

        run.audit = manifest.audit_enabled if run.audit_override is None else run.audit_override
        run.cache = self._cache or QueryResultCache(self.settings.cache_dir(manifest.workspace_root))
        run.receipt_store = self._receipt_store or ReceiptStore(
            self.settings.receipts_dir(manifest.workspace_root)
        )
        return f"{len(run.selected)} of {len(manifest.rules)} rules selected"

    def _discover(self, run: _SyncRun) -> str:
        discovery = ResourceDiscoveryEngine(run.root).discover(run.manifest)
        run.discovery = discovery
        for key in discovery.orphaned_templates:
            run.warnings.append(f"Orphaned template '{key}' has no matching rule")
        return (
            f"{len(discovery.queries)} query/template pairs, "
            f"{len(discovery.ontologies)} ontology files"
        )

    def _order_rules(self, run: _SyncRun) -> str:
        manifest = run.manifest
        generation_order = RuleDependencyGraph(manifest.rules).order
        run.inference_order = RuleDependencyGraph(manifest.inference_rules).order
        logger.debug("Generation rule order: %s", generation_order)
        return f"{len(generation_order)} generation, {len(run.inference_order)} inference rules ordered"

    # ------------------------------------------------------------------
    # Stages: ontology
    # ------------------------------------------------------------------

    def _read_documents(self, run: _SyncRun, paths: Sequence[Path]) -> list[OntologyDocument]:
        documents = []
        for path in paths:
            try:
                data = path.read_bytes()
            except OSError as exc:
                raise LoadError(f"Cannot read ontology file {path}: {exc}") from exc
            documents.append(OntologyDocument(path=path.relative_to(run.root).as_posix(), data=data))
        return documents

    def _load(self, run: _SyncRun) -> str:
        manifest = run.manifest
        discovery = run.discovery
        documents = self._read_documents(run, discovery.ontologies)
        handle = self.graph_engine.load(documents, manifest.ontology.base_uri)

        key_parts = [doc.data for doc in documents]
        for name in run.inference_order:
            self._check_cancelled(run)
            query_bytes = discovery.inference_queries[name].read_bytes()
            try:
                query_text = query_bytes.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise QueryError(f"Inference query '{name}' is not UTF-8", rule=name) from exc
            handle = self.graph_engine.infer(handle, query_text)
            key_parts.append(query_bytes)

        run.handle = handle
        run.ontology_key_bytes = _length_prefixed(key_parts)
        return f"{len(documents)} documents, {len(run.inference_order)} inference rules applied"

    def _validate_ontology(self, run: _SyncRun) -> str:
        shapes = self._read_documents(run, run.discovery.shapes)
        report = self.graph_engine.validate_shapes(run.handle, shapes)
        for violation in report.violations:
            if violation.severity != Severity.ERROR:
                run.warnings.append(f"Shape {violation.severity.value}: {violation.message}")
        if report.conforms:
            return "ontology conforms"

        errors = [v for v in report.violations if v.severity == Severity.ERROR] or [
            Violation(stage=PipelineStage.VALIDATE_ONTOLOGY, message="Ontology does not conform")
        ]
        self._report_violations(
            run, errors, f"Ontology does not conform to shapes ({len(errors)} violations)"
        )
        run.halted = "ontology shape violations"
        return f"{len(errors)} shape violations"

    def _report_violations(self, run: _SyncRun, violations: list[Violation], message: str) -> None:
        """Collect findings in validate-only runs; otherwise fail the stage."""
        if not violations:
            return
        if run.validate_only:
            run.violations.extend(violations)
            return
        raise ValidationError(message, violations)

    # ------------------------------------------------------------------
    # Stages: extract and render
    # ------------------------------------------------------------------

    def _extract(self, run: _SyncRun, *, force: bool) -> str:
        manifest = run.manifest
        cache = run.cache
        use_cache = manifest.cache_enabled

        def extract_one(rule: GenerationRule) -> _Extraction:
            self._check_cancelled(run)
            query_bytes = run.discovery.queries[rule.name].read_bytes()
            query_hash = sha256_hex(query_bytes)
            key = cache.compute_key(run.ontology_key_bytes, query_bytes)

            if use_cache and not force:
                cached = cache.get(key)
                if cached is not None:
                    logger.info("Cache hit for rule %s", rule.name)
                    return _Extraction(cached, True, query_hash)

            try:
                rows = self.graph_engine.query(run.handle, query_bytes.decode("utf-8"))
            except UnicodeDecodeError as exc:
                raise QueryError(f"Query for rule '{rule.name}' is not UTF-8", rule=rule.name) from exc
            except QueryError as exc:
                if exc.rule is None:
                    raise QueryError(f"Rule '{rule.name}': {exc}", rule=rule.name) from exc
                raise
            logger.info("Cache miss for rule %s: %d rows", rule.name, len(rows))
            if use_cache:
                cache.set(key, rows)
            return _Extraction(rows, False, query_hash)

        run.extractions = self._fan_out(run, run.selected, extract_one)
        hits = sum(1 for e in run.extractions.values() if e.cache_hit)
        return f"{len(run.extractions)} rules extracted, {hits} cache hits"

    def _validate_results(self, run: _SyncRun) -> str:
        violations: list[Violation] = []
        for rule in run.selected:
            rows = run.extractions[rule.name].rows
            if not rows:
                message = f"Rule '{rule.name}' returned no rows"
                logger.warning(message)
                run.warnings.append(message)
                continue
            for index, row in enumerate(rows):
                missing = [b for b in rule.bindings if row.get(b) is None]
                if missing:
                    violations.append(
                        Violation(
                            stage=PipelineStage.VALIDATE_RESULTS,
                            rule=rule.name,
                            message=f"Row does not bind {', '.join(missing)}",
                            location=f"row {index}",
                        )
                    )
        self._report_violations(
            run, violations, f"Query results are missing bindings ({len(violations)} rows)"
        )
        return f"{len(run.selected)} result sets checked"

    def _render_context(self, run: _SyncRun, rule: GenerationRule) -> dict[str, Any]:
        manifest = run.manifest
        return {
            "rows": run.extractions[rule.name].rows,
            "rule_name": rule.name,
            "output_file": rule.output_file,
            "project_name": manifest.project_name,
            "base_uri": manifest.ontology.base_uri,
        }

    def _render(self, run: _SyncRun) -> str:
        max_bytes = self.settings.max_output_bytes

        def render_one(rule: GenerationRule) -> RenderedArtifact:
            self._check_cancelled(run)
            template_bytes = run.discovery.templates[rule.name].read_bytes()
            try:
                content = self.template_engine.render(
                    template_bytes.decode("utf-8"), self._render_context(run, rule)
                )
            except UnicodeDecodeError as exc:
                raise RenderError(f"Template for rule '{rule.name}' is not UTF-8", rule=rule.name) from exc
            except RenderError as exc:
                if exc.rule is None:
                    raise RenderError(f"Rule '{rule.name}': {exc}", rule=rule.name) from exc
                raise
            if len(content.encode("utf-8")) > max_bytes:
                raise RenderError(
                    f"Rule '{rule.name}' rendered more than {max_bytes} bytes", rule=rule.name
                )
            return RenderedArtifact(
                rule_name=rule.name,
                output_path=rule.output_file,
                content=content,
                query_hash=run.extractions[rule.name].query_hash,
                template_hash=sha256_hex(template_bytes),
                language=detect_language(rule.output_file, rule.language),
            )

        run.artifacts = self._fan_out(run, run.selected, render_one)
        return f"{len(run.artifacts)} artifacts rendered"

    # ------------------------------------------------------------------
    # Stages: output validation
    # ------------------------------------------------------------------

    def _validate_syntax(self, run: _SyncRun) -> str:
        violations: list[Violation] = []
        checked = 0
        for artifact in run.ordered_artifacts():
            validator = self.languages.validator_for(artifact.language)
            if validator is None:
                continue
            checked += 1
            for issue in validator.validate(artifact.content):
                location = artifact.output_path
                if issue.line is not None:
                    location = f"{location}:{issue.line}"
                violations.append(
                    Violation(
                        stage=PipelineStage.VALIDATE_SYNTAX,
                        rule=artifact.rule_name,
                        message=issue.message,
                        location=location,
                    )
                )
        self._report_violations(
            run, violations, f"Generated code has syntax errors ({len(violations)} issues)"
        )
        return f"{checked} artifacts checked"

    def _format(self, run: _SyncRun) -> str:
        formatted = 0
        for artifact in run.ordered_artifacts():
            formatter = self.languages.formatter_for(artifact.language)
            if formatter is None:
                continue
            try:
                content = formatter.format(artifact.content)
            except ValueError as exc:
                raise ValidationError(
                    f"Formatting {artifact.output_path} failed: {exc}",
                    [
                        Violation(
                            stage=PipelineStage.FORMAT,
                            rule=artifact.rule_name,
                            message=str(exc),
                            location=artifact.output_path,
                        )
                    ],
                ) from exc
            run.artifacts[artifact.rule_name] = artifact.model_copy(update={"content": content})
            formatted += 1
        if run.dry_run:
            for artifact in run.ordered_artifacts():
                run.diffs[artifact.rule_name] = self._diff_against_disk(run, artifact)
        return f"{formatted} artifacts formatted"

    def _diff_against_disk(self, run: _SyncRun, artifact: RenderedArtifact) -> str:
        """Diff of what Write would change for *artifact*; empty when it would keep the file."""
        target = run.root / artifact.output_path
        rule = run.manifest.get_rule(artifact.rule_name)
        if rule.mode == WriteMode.CREATE_ONLY and target.exists():
            return ""
        old = target.read_bytes() if target.is_file() else None
        if old == artifact.content_bytes:
            return ""
        return unified_diff(artifact.output_path, old, artifact.content_bytes)

    def _check_compilation(self, run: _SyncRun) -> str:
        by_language: dict[str, list[RenderedArtifact]] = {}
        for artifact in run.ordered_artifacts():
            if self.languages.checker_for(artifact.language) is not None:
                by_language.setdefault(artifact.language, []).append(artifact)
        if not by_language:
            return "no compilation checkers for these languages"

        violations: list[Violation] = []
        with tempfile.TemporaryDirectory(prefix="ontoforge-check-") as scratch:
            scratch_dir = Path(scratch)
            for language, artifacts in sorted(by_language.items()):
                self._check_cancelled(run)
                files = []
                for artifact in artifacts:
                    target = scratch_dir / artifact.output_path
                    target.parent.mkdir(parents=True, exist_ok=True)
                    target.write_bytes(artifact.content_bytes)
                    files.append(target)
                for issue in self.languages.checker_for(language).check(scratch_dir, files):
                    violations.append(
                        Violation(
                            stage=PipelineStage.CHECK_COMPILATION,
                            message=issue.message,
                            location=issue.path or language,
                        )
                    )
        self._report_violations(
            run, violations, f"Compilation check failed ({len(violations)} issues)"
        )
        return f"{sum(len(a) for a in by_language.values())} artifacts compiled"

    def _detect_todos(self, run: _SyncRun) -> str:
        manifest = run.manifest
        pattern = marker_pattern(manifest.forbidden_markers)
        findings: list[Violation] = []
        for artifact in run.ordered_artifacts() if pattern is not None else ():
            for number, line in enumerate(artifact.content.splitlines(), 1):
                match = pattern.search(line)
                if match:
                    findings.append(
                        Violation(
                            stage=PipelineStage.DETECT_TODOS,
                            rule=artifact.rule_name,
                            message=f"Forbidden marker {match.group(0)}",
                            location=f"{artifact.output_path}:{number}",
                        )
                    )

        if manifest.validation_level == ValidationLevel.STRICT:
            self._report_violations(
                run, findings, f"Generated code contains forbidden markers ({len(findings)})"
            )
        else:
            for finding in findings:
                message = f"{finding.message} in {finding.location}"
                logger.warning(message)
                run.warnings.append(message)
        return f"{len(findings)} markers found"

    # ------------------------------------------------------------------
    # Stages: write and receipt
    # ------------------------------------------------------------------

    def _write(self, run: _SyncRun) -> str:
        root = run.root
        with self._transaction_factory(root, backup_dir=self.settings.backup_dir) as txn:
            for artifact in run.ordered_artifacts():
                rule = run.manifest.get_rule(artifact.rule_name)
                target = root / artifact.output_path
                if rule.mode == WriteMode.CREATE_ONLY and target.exists():
                    run.outcomes[rule.name] = RuleOutcome.SKIPPED_EXISTING
                    run.output_hashes[rule.name] = hash_file(target)
                    logger.info("Keeping existing %s (CreateOnly)", artifact.output_path)
                    continue
                if target.is_file() and target.read_bytes() == artifact.content_bytes:
                    run.outcomes[rule.name] = RuleOutcome.UNCHANGED
                    continue
                run.diffs[rule.name] = self._diff_against_disk(run, artifact)
                txn.stage_write(artifact.output_path, artifact.content_bytes)
                run.outcomes[rule.name] = RuleOutcome.WRITTEN
            self._check_cancelled(run)
            txn.commit()
        written = sum(1 for o in run.outcomes.values() if o == RuleOutcome.WRITTEN)
        return f"{written} files written"

    def _receipt(self, run: _SyncRun) -> str:
        generator = ReceiptGenerator(run.root)
        receipt = generator.generate(
            execution_id=run.execution_id,
            timestamp=run.timestamp,
            manifest=run.manifest,
            discovery=run.discovery,
            artifacts=run.ordered_artifacts(),
            output_hashes=run.output_hashes,
        )
        sealed = run.receipt_store.append(receipt)
        run.receipt_path = str(run.receipt_store.path_for(sealed.execution_id))
        return f"receipt {sealed.execution_id}"

    def _persist_run_artifacts(self, run: _SyncRun, report: SyncReport) -> SyncReport:
        """Write the output diff beside the receipt and the report file, if enabled.

        Runs after the stage list, so a failure here is reported as a warning
        and never changes the run's status.
        """
        if run.receipt_store is None:
            return report
        writer = SyncReportWriter(run.receipt_store.directory)
        fmt = self.settings.report_format
        updates: dict[str, Any] = {}
        try:
            if self.settings.emit_diff and run.receipt_path is not None:
                diff_path = writer.write_diff(report)
                if diff_path is not None:
                    updates["diff_path"] = str(diff_path)
            if fmt != ReportFormat.NONE:
                updates["report_file"] = str(writer.report_path(run.execution_id, fmt))
                writer.write_report(report.model_copy(update=updates), fmt)
        except OSError as exc:
            logger.error("Could not persist run artifacts for %s: %s", run.execution_id, exc)
            updates.pop("report_file", None)
            updates["warnings"] = [*report.warnings, f"Could not persist run artifacts: {exc}"]
        return report.model_copy(update=updates) if updates else report

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def _rule_outcome(self, run: _SyncRun, name: str) -> RuleOutcome:
        if name in run.outcomes:
            return run.outcomes[name]
        if name not in run.artifacts or run.halted:
            return RuleOutcome.NOT_RUN
        if run.validate_only:
            return RuleOutcome.VALIDATED
        if run.dry_run:
            return RuleOutcome.WOULD_WRITE
        return RuleOutcome.NOT_RUN

    def _build_report(
        self,
        run: _SyncRun,
        machine: StageMachine,
        error: ErrorDetail | None,
        elapsed: float,
    ) -> SyncReport:
        rules: list[RuleReport] = []
        for rule in run.selected:
            extraction = run.extractions.get(rule.name)
            artifact = run.artifacts.get(rule.name)
            rules.append(
                RuleReport(
                    rule_name=rule.name,
                    output_path=rule.output_file,
                    language=detect_language(rule.output_file, rule.language),
                    outcome=self._rule_outcome(run, rule.name),
                    cache_hit=extraction.cache_hit if extraction else None,
                    row_count=len(extraction.rows) if extraction else None,
                    output_hash=run.output_hashes.get(
                        rule.name, artifact.content_hash if artifact else ""
                    ),
                    size_bytes=len(artifact.content_bytes) if artifact else 0,
                    diff=run.diffs.get(rule.name, ""),
                )
            )

        if error is not None:
            status = SyncStatus.FAILED
        elif run.validate_only and run.violations:
            status = SyncStatus.PARTIAL
        else:
            status = SyncStatus.SUCCESS

        hits = sum(1 for e in run.extractions.values() if e.cache_hit)
        statistics = SyncStatistics(
            cache_hits=hits,
            cache_misses=len(run.extractions) - hits,
            queries_executed=len(run.extractions) - hits,
            templates_rendered=len(run.artifacts),
            files_written=sum(1 for o in run.outcomes.values() if o == RuleOutcome.WRITTEN),
            total_duration_ms=round(elapsed * 1000, 3),
        )

        return SyncReport(
            execution_id=run.execution_id,
            timestamp=run.timestamp,
            status=status,
            manifest_path=str(run.manifest_path),
            dry_run=run.dry_run,
            validate_only=run.validate_only,
            stages=machine.results(),
            rules=rules,
            warnings=run.warnings,
            violations=run.violations,
            error=error,
            receipt_path=run.receipt_path,
            statistics=statistics,
        )


def sync(
    manifest_path: Path | str,
    *,
    dry_run: bool = False,
    validate_only: bool = False,
    force: bool = False,
    audit: bool | None = None,
    rule_filter: Sequence[str] | None = None,
    settings: SyncSettings | None = None,
) -> SyncReport:
    """Run one sync with the default collaborators."""
    return SyncPipeline(settings=settings).sync(
        manifest_path,
        dry_run=dry_run,
        validate_only=validate_only,
        force=force,
        audit=audit,
        rule_filter=rule_filter,
    )
