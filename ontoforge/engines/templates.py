"""Sandboxed jinja2 template engine with a render deadline and size cap.

The environment has no loader, so ``{% include %}`` and ``{% import %}``
cannot reach the filesystem, and the sandbox blocks access to unsafe
attributes.  Rendering runs on a daemon thread: the caller stops waiting
when the deadline passes and the worker stops at its next output chunk.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from typing import Any

from jinja2 import StrictUndefined, Template, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment

from ontoforge.core.errors import RenderError

logger = logging.getLogger(__name__)


class SandboxedTemplateEngine:
    """``TemplateEngine`` backed by ``jinja2.sandbox.SandboxedEnvironment``.

    Parameters
    ----------
    timeout_seconds:
        Wall-clock bound for one render.
    max_output_bytes:
        Upper bound on the UTF-8 size of one rendered artifact.
    """

    def __init__(self, *, timeout_seconds: float = 10.0, max_output_bytes: int = 1_048_576) -> None:
        self._timeout = timeout_seconds
        self._max_output_bytes = max_output_bytes
        self._env = SandboxedEnvironment(
            loader=None,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def _compile(self, template_text: str) -> Template:
        try:
            return self._env.from_string(template_text)
        except TemplateSyntaxError as exc:
            raise RenderError(f"Template syntax error at line {exc.lineno}: {exc.message}") from exc

    def _generate(
        self, template: Template, context: Mapping[str, Any], abandoned: threading.Event
    ) -> str:
        deadline = time.monotonic() + self._timeout
        chunks: list[str] = []
        size = 0
        for chunk in template.generate(**context):
            if abandoned.is_set() or time.monotonic() > deadline:
                raise RenderError(f"Template rendering exceeded {self._timeout:g}s")
            size += len(chunk.encode("utf-8"))
            if size > self._max_output_bytes:
                raise RenderError(
                    f"Rendered output exceeds {self._max_output_bytes} bytes"
                )
            chunks.append(chunk)
        return "".join(chunks)

    def render(self, template_text: str, context: Mapping[str, Any]) -> str:
        template = self._compile(template_text)
        outcome: dict[str, Any] = {}
        abandoned = threading.Event()

        def work() -> None:
            try:
                outcome["text"] = self._generate(template, context, abandoned)
            except Exception as exc:
                outcome["error"] = exc

        worker = threading.Thread(target=work, name="ontoforge-render", daemon=True)
        worker.start()
        worker.join(self._timeout)
        if worker.is_alive():
            abandoned.set()
            raise RenderError(f"Template rendering exceeded {self._timeout:g}s")

        error = outcome.get("error")
        if isinstance(error, RenderError):
            raise error
        if error is not None:
            raise RenderError(f"{type(error).__name__}: {error}") from error
        return outcome["text"]
