"""Language detection and the default per-language validators and formatters.

Languages without a registered validator, formatter or checker pass through
the corresponding stage unchanged.
"""

from __future__ import annotations

import ast
import io
import json
import logging
import subprocess
import sys
import tomllib
import tokenize
from collections.abc import Mapping, Sequence
from pathlib import Path, PurePosixPath

import yaml

from ontoforge.engines.protocols import (
    CompilationChecker,
    Formatter,
    SyntaxIssue,
    SyntaxValidator,
)

logger = logging.getLogger(__name__)

LANGUAGE_BY_SUFFIX: dict[str, str] = {
    ".py": "python",
    ".json": "json",
    ".toml": "toml",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".rs": "rust",
    ".ts": "typescript",
    ".md": "markdown",
}

TEXT = "text"


def detect_language(output_path: str, declared: str | None = None) -> str:
    """Return the declared language, else the one implied by the output suffix."""
    if declared:
        return declared.strip().lower()
    return LANGUAGE_BY_SUFFIX.get(PurePosixPath(output_path).suffix.lower(), TEXT)


# ---------------------------------------------------------------------------
# Syntax validators
# ---------------------------------------------------------------------------


class PythonSyntaxValidator:
    def validate(self, text: str) -> list[SyntaxIssue]:
        try:
            ast.parse(text)
        except SyntaxError as exc:
            return [SyntaxIssue(message=exc.msg, line=exc.lineno)]
        return []


class JsonSyntaxValidator:
    def validate(self, text: str) -> list[SyntaxIssue]:
        try:
            json.loads(text)
        except json.JSONDecodeError as exc:
            return [SyntaxIssue(message=exc.msg, line=exc.lineno)]
        return []


class TomlSyntaxValidator:
    def validate(self, text: str) -> list[SyntaxIssue]:
        try:
            tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            return [SyntaxIssue(message=str(exc))]
        return []


class YamlSyntaxValidator:
    def validate(self, text: str) -> list[SyntaxIssue]:
        try:
            list(yaml.safe_load_all(text))
        except yaml.YAMLError as exc:
            mark = getattr(exc, "problem_mark", None)
            line = mark.line + 1 if mark is not None else None
            return [SyntaxIssue(message=str(getattr(exc, "problem", None) or exc), line=line)]
        return []


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class JsonFormatter:
    """Two-space indented JSON with a trailing newline; key order preserved."""

    def format(self, text: str) -> str:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False) + "\n"


# (start, end) token types of f-strings and t-strings on interpreters that tokenize them
_NESTED_STRING_TOKENS = [
    (getattr(tokenize, f"{kind}STRING_START"), getattr(tokenize, f"{kind}STRING_END"))
    for kind in ("F", "T")
    if hasattr(tokenize, f"{kind}STRING_START")
]


def _lines_continuing_strings(text: str) -> set[int]:
    """1-based numbers of the lines whose line break is inside a string literal."""
    starts = {start for start, _ in _NESTED_STRING_TOKENS}
    ends = {end for _, end in _NESTED_STRING_TOKENS}
    protected: set[int] = set()
    open_lines: list[int] = []
    for token in tokenize.generate_tokens(io.StringIO(text).readline):
        if token.type == tokenize.STRING:
            protected.update(range(token.start[0], token.end[0]))
        elif token.type in starts:
            open_lines.append(token.start[0])
        elif token.type in ends and open_lines:
            protected.update(range(open_lines.pop(), token.end[0]))
    return protected


class PythonFormatter:
    """Strips trailing whitespace and ends the text with exactly one newline.

    Lines whose line break falls inside a string literal are left as they are.
    """

    def format(self, text: str) -> str:
        try:
            protected = _lines_continuing_strings(text)
        except (tokenize.TokenError, SyntaxError) as exc:
            raise ValueError(f"Cannot tokenize Python source: {exc}") from exc
        lines = [
            line if number in protected else line.rstrip()
            for number, line in enumerate(text.split("\n"), 1)
        ]
        while lines and not lines[-1]:
            lines.pop()
        return "\n".join(lines) + "\n" if lines else ""


# ---------------------------------------------------------------------------
# Compilation checkers
# ---------------------------------------------------------------------------


class PythonCompilationChecker:
    """Byte-compiles artifacts with ``python -m py_compile`` in the scratch area.

    Parameters
    ----------
    timeout_seconds:
        Upper bound for the subprocess.
    """

    def __init__(self, timeout_seconds: float = 60.0) -> None:
        self._timeout = timeout_seconds

    def check(self, scratch_dir: Path, files: Sequence[Path]) -> list[SyntaxIssue]:
        if not files:
            return []
        try:
            result = subprocess.run(
                [sys.executable, "-m", "py_compile", *(str(f) for f in files)],
                cwd=scratch_dir,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return [SyntaxIssue(message=f"py_compile timed out after {self._timeout:g}s")]
        except (subprocess.SubprocessError, OSError) as exc:
            return [SyntaxIssue(message=f"py_compile could not run: {exc}")]
        if result.returncode != 0:
            output = (result.stderr or result.stdout).strip()
            return [SyntaxIssue(message=output or f"py_compile exited {result.returncode}")]
        return []


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class LanguageSupport:
    """Maps language names to their validator, formatter and compilation checker.

    Parameters
    ----------
    validators / formatters / checkers:
        Language name -> implementation.  Missing languages pass through.
    """

    def __init__(
        self,
        validators: Mapping[str, SyntaxValidator] | None = None,
        formatters: Mapping[str, Formatter] | None = None,
        checkers: Mapping[str, CompilationChecker] | None = None,
    ) -> None:
        self._validators = dict(validators or {})
        self._formatters = dict(formatters or {})
        self._checkers = dict(checkers or {})

    @classmethod
    def default(cls, *, compile_timeout_seconds: float = 60.0) -> LanguageSupport:
        """Validators for python/json/toml/yaml, formatters for python/json, py_compile."""
        return cls(
            validators={
                "python": PythonSyntaxValidator(),
                "json": JsonSyntaxValidator(),
                "toml": TomlSyntaxValidator(),
                "yaml": YamlSyntaxValidator(),
            },
            formatters={
                "python": PythonFormatter(),
                "json": JsonFormatter(),
            },
            checkers={
                "python": PythonCompilationChecker(compile_timeout_seconds),
            },
        )

    def validator_for(self, language: str) -> SyntaxValidator | None:
        return self._validators.get(language)

    def formatter_for(self, language: str) -> Formatter | None:
        return self._formatters.get(language)

    def checker_for(self, language: str) -> CompilationChecker | None:
        return self._checkers.get(language)
