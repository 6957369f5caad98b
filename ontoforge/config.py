"""Runtime settings: env-driven, explicitly injected.

Reads ONTOFORGE_* environment variables and an optional .env file.  The
pipeline receives a ``SyncSettings`` instance from its caller; tests build
an isolated instance per run.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ontoforge.models.reports import ReportFormat


class SyncSettings(BaseSettings):
    """Settings for sync runs with environment variable overrides.

    Examples
    --------
    Override via environment::

        export ONTOFORGE_LOG_LEVEL=DEBUG
        export ONTOFORGE_MAX_WORKERS=8
        export ONTOFORGE_RUN_TIMEOUT_SECONDS=60

    Or via .env file::

        ONTOFORGE_REPORT_FORMAT=markdown
        ONTOFORGE_MAX_OUTPUT_BYTES=262144
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="ONTOFORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    debug: bool = False

    # Workspace layout
    cache_dir_name: str = ".cache"
    receipts_dir_name: str = ".receipts"
    backup_dir: Path | None = None  # transaction backups; temp dir when unset

    # Run artifacts written beside the receipts
    report_format: ReportFormat = ReportFormat.NONE
    emit_diff: bool = True  # unified diff of each apply run that changed files

    # Concurrency and bounds
    max_workers: int = Field(default=4, ge=1)
    run_timeout_seconds: float = Field(default=300.0, gt=0)
    render_timeout_seconds: float = Field(default=10.0, gt=0)
    max_output_bytes: int = Field(default=1_048_576, gt=0)
    compile_timeout_seconds: float = Field(default=60.0, gt=0)

    def cache_dir(self, workspace_root: Path) -> Path:
        """Query cache directory for a workspace."""
        return Path(workspace_root) / self.cache_dir_name

    def receipts_dir(self, workspace_root: Path) -> Path:
        """Receipt store directory for a workspace."""
        return Path(workspace_root) / self.receipts_dir_name
