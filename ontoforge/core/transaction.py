"""All-or-nothing file writes with automatic rollback.

A ``FileTransaction`` buffers every output of a run, backs up the files it
is about to replace, and then writes everything in ``commit()``.  If any
write fails, every touched file is restored from its backup and every file
(and directory) the transaction created is removed, so the workspace is
bit-for-bit what it was before the run.

Use it as a context manager.  Leaving the ``with`` block without a
successful ``commit()`` (early return, exception, KeyboardInterrupt) runs
the same rollback::

    with FileTransaction(workspace) as txn:
        txn.stage_write("src/generated/user.py", content)
        txn.commit()
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from types import TracebackType

from ontoforge.core.errors import TransactionError

logger = logging.getLogger(__name__)


class FileTransaction:
    """Single-writer transaction over files under a workspace root.

    Parameters
    ----------
    workspace_root:
        Every staged path must resolve inside this directory.
    backup_dir:
        Parent directory for this transaction's backup folder.  A fresh
        temporary directory is used when None.
    """

    def __init__(self, workspace_root: Path, *, backup_dir: Path | None = None) -> None:
        self._root = Path(workspace_root).resolve()
        self._backup_parent = Path(backup_dir) if backup_dir is not None else None
        self._backup_root: Path | None = None

        self._staged: list[tuple[Path, bytes]] = []
        self._backups: dict[Path, Path] = {}  # original -> backup copy
        self._created: set[Path] = set()  # targets that did not exist when staged
        self._created_dirs: list[Path] = []
        self._touched: set[Path] = set()  # targets commit() has started writing

        self.committed = False
        self.rolled_back = False

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> FileTransaction:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if self.committed or self.rolled_back:
            return False
        if exc is None:
            logger.warning("Transaction left without commit; rolling back")
            self.rollback()
            return False
        logger.warning("Transaction aborted by %s; rolling back", exc_type.__name__)
        try:
            self.rollback()
        except TransactionError as rollback_exc:
            logger.error("Rollback after %s failed: %s", exc_type.__name__, rollback_exc)
        return False

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def stage_write(self, path: Path | str, content: bytes | str) -> Path:
        """Buffer a write, backing up the current file if one exists.

        Returns the absolute target path.
        """
        if self.committed or self.rolled_back:
            raise TransactionError("Transaction is closed")

        target = self._resolve(path)
        if target in self._backups or target in self._created:
            raise TransactionError(f"Path staged twice: {target}")
        data = content.encode("utf-8") if isinstance(content, str) else bytes(content)

        if target.exists():
            if not target.is_file():
                raise TransactionError(f"Output path is not a regular file: {target}")
            backup = self._next_backup_path()
            try:
                shutil.copy2(target, backup)
            except OSError as exc:
                raise TransactionError(f"Failed to back up {target}: {exc}") from exc
            self._backups[target] = backup
        else:
            self._created.add(target)

        self._staged.append((target, data))
        return target

    # ------------------------------------------------------------------
    # Commit / rollback
    # ------------------------------------------------------------------

    def commit(self) -> None:
        """Write every staged file; on the first failure, roll back and raise."""
        if self.committed or self.rolled_back:
            raise TransactionError("Transaction is closed")

        current: Path | None = None
        try:
            for target, data in self._staged:
                current = target
                self._touched.add(target)
                self._ensure_parent(target.parent)
                self._write_file(target, data)
        except Exception as exc:
            logger.error("Commit failed writing %s: %s", current, exc)
            self.rollback()
            raise TransactionError(f"Failed to write {current}: {exc}") from exc

        self.committed = True
        self._discard_backups()
        logger.info("Committed %d files", len(self._staged))

    def rollback(self) -> None:
        """Restore every touched file and remove everything the commit created.

        Safe to call more than once.  Raises ``TransactionError`` if a backup
        could not be restored.
        """
        if self.committed:
            raise TransactionError("Cannot roll back a committed transaction")
        if self.rolled_back:
            return

        failures: list[str] = []
        for original, backup in self._backups.items():
            if original not in self._touched:
                continue
            try:
                shutil.copy2(backup, original)
            except OSError as exc:
                failures.append(f"{original}: {exc}")

        for created in self._created:
            if created not in self._touched:
                continue
            try:
                created.unlink(missing_ok=True)
            except OSError as exc:
                failures.append(f"{created}: {exc}")

        for directory in reversed(self._created_dirs):
            if directory.is_dir() and not any(directory.iterdir()):
                directory.rmdir()

        self.rolled_back = True
        if failures:
            # Backups stay on disk so an operator can restore by hand.
            raise TransactionError(
                f"Rollback incomplete; backups kept in {self._backup_root}: "
                + "; ".join(failures)
            )
        self._discard_backups()
        logger.info("Rolled back %d touched files", len(self._touched))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _resolve(self, path: Path | str) -> Path:
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self._root / candidate
        resolved = candidate.resolve()
        if not resolved.is_relative_to(self._root):
            raise TransactionError(f"Path escapes the workspace: {path}")
        return resolved

    def _next_backup_path(self) -> Path:
        if self._backup_root is None:
            if self._backup_parent is not None:
                self._backup_parent.mkdir(parents=True, exist_ok=True)
            self._backup_root = Path(
                tempfile.mkdtemp(prefix="ontoforge-txn-", dir=self._backup_parent)
            )
        return self._backup_root / f"{len(self._backups):04d}.bak"

    def _discard_backups(self) -> None:
        if self._backup_root is not None:
            shutil.rmtree(self._backup_root, ignore_errors=True)
            self._backup_root = None

    def _ensure_parent(self, directory: Path) -> None:
        missing: list[Path] = []
        while not directory.exists():
            missing.append(directory)
            directory = directory.parent
        for path in reversed(missing):
            path.mkdir()
            self._created_dirs.append(path)

    def _write_file(self, target: Path, data: bytes) -> None:
        """Write *data* to *target* via a sibling temp file and an atomic rename."""
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(data)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
