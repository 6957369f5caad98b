"""Error taxonomy for a sync run.

Every error raised by a pipeline stage derives from ``OntoforgeError`` so
the stage executor can record it against the failing stage.  Errors raised
before the Write stage guarantee that nothing under the workspace output
paths has been touched; ``TransactionError`` is raised only after the
transaction has restored the pre-run state.
"""

from __future__ import annotations

from typing import Any


class OntoforgeError(RuntimeError):
    """Base class for every error surfaced by a sync run.

    ``suggestion`` is a one-line remediation hint copied into the report.
    """

    suggestion: str | None = None

    @property
    def kind(self) -> str:
        """Short class name used in reports (e.g. ``"MissingTemplateError"``)."""
        return type(self).__name__


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


class ConfigError(OntoforgeError):
    """Raised when the manifest is missing required fields or is malformed."""

    suggestion = "Check ontoforge.toml for missing or misspelled fields"


class UnsupportedWriteModeError(ConfigError):
    """Raised when a rule requests a write mode that is not implemented."""

    def __init__(self, rule: str, mode: str) -> None:
        self.rule = rule
        self.mode = mode
        super().__init__(
            f"Rule '{rule}' uses write mode {mode!r}, which is not supported. "
            f"Use 'Overwrite' or 'CreateOnly'."
        )


# ---------------------------------------------------------------------------
# Discovery and ordering
# ---------------------------------------------------------------------------


class DiscoveryError(OntoforgeError):
    """Raised when declared resources are missing or conflict."""

    suggestion = "Ensure every rule has a query under queries/ and a template under templates/"

    def __init__(self, message: str, *, rule: str | None = None) -> None:
        self.rule = rule
        super().__init__(message)


class MissingQueryError(DiscoveryError):
    """A rule's query file does not resolve."""

    def __init__(self, rule: str, expected: str) -> None:
        super().__init__(
            f"Missing query for rule '{rule}'. Expected: {expected}", rule=rule
        )


class MissingTemplateError(DiscoveryError):
    """A rule's template file does not resolve."""

    def __init__(self, rule: str, expected: str) -> None:
        super().__init__(
            f"Missing template for rule '{rule}'. Expected: {expected}", rule=rule
        )


class MissingOntologyError(DiscoveryError):
    """An ontology source does not exist or contains no RDF files."""


class DuplicateOutputError(DiscoveryError):
    """Two rules write to the same output path."""

    def __init__(self, rule: str, other: str, output: str) -> None:
        self.other = other
        self.output = output
        super().__init__(
            f"Output path overlap: rules '{other}' and '{rule}' both write to {output}",
            rule=rule,
        )


class UnknownDependencyError(DiscoveryError):
    """A rule's ``depends_on`` names a rule that is not declared."""


class CyclicDependencyError(OntoforgeError):
    """Raised when ``depends_on`` edges form a cycle."""

    suggestion = "Remove one of the depends_on edges on the cycle"

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(
            "Dependency cycle detected: " + " -> ".join([*cycle, cycle[0]])
        )


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


class LoadError(OntoforgeError):
    """The graph engine could not load an ontology document."""

    suggestion = "Check the ontology and shapes files for syntax errors"


class QueryError(OntoforgeError):
    """The graph engine failed to execute a query."""

    suggestion = "Check SPARQL query syntax and ontology content"

    def __init__(self, message: str, *, rule: str | None = None) -> None:
        self.rule = rule
        super().__init__(message)


class RenderError(OntoforgeError):
    """The template engine failed, timed out, or exceeded the output cap."""

    suggestion = "Check template syntax and the variables it uses"

    def __init__(self, message: str, *, rule: str | None = None) -> None:
        self.rule = rule
        super().__init__(message)


class ValidationError(OntoforgeError):
    """Shape, result, syntax, compilation or marker validation failed.

    ``violations`` is a list of structured ``Violation`` records.
    """

    suggestion = "Fix the listed violations; --validate-only reports all of them at once"

    def __init__(self, message: str, violations: list[Any] | None = None) -> None:
        self.violations = list(violations or [])
        super().__init__(message)


# ---------------------------------------------------------------------------
# Write / audit / cancellation
# ---------------------------------------------------------------------------


class TransactionError(OntoforgeError):
    """An I/O failure during commit; the transaction has been rolled back."""

    suggestion = "Check file permissions and disk space"


class ReceiptError(OntoforgeError):
    """A receipt could not be persisted, or failed verification."""

    suggestion = "Check that the receipts directory is writable and unmodified"


class SyncCancelledError(OntoforgeError):
    """The run was cancelled before completion."""


class SyncTimeoutError(SyncCancelledError):
    """The run-level deadline expired."""

    suggestion = "Raise ONTOFORGE_RUN_TIMEOUT_SECONDS or sync fewer rules with --rule"


def suggestion_for(exc: BaseException) -> str | None:
    """Remediation hint for an error recorded against a stage."""
    if isinstance(exc, OntoforgeError):
        return exc.suggestion
    if isinstance(exc, OSError):
        return TransactionError.suggestion
    return None
