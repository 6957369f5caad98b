"""Adversarial tests: write failures and interrupts must leave the workspace untouched."""

from __future__ import annotations

import errno
from pathlib import Path

import pytest

from ontoforge.core.errors import TransactionError
from ontoforge.core.transaction import FileTransaction
from ontoforge.models.reports import SyncStatus
from ontoforge.models.stages import PipelineStage


class FailingTransaction(FileTransaction):
    """Raises *error* from the *fail_on*-th file write (1-based)."""

    def __init__(self, *args, fail_on: int, error: BaseException, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fail_on = fail_on
        self.error = error
        self.writes = 0

    def _write_file(self, target: Path, data: bytes) -> None:
        self.writes += 1
        if self.writes == self.fail_on:
            raise self.error
        super()._write_file(target, data)


def disk_full() -> OSError:
    return OSError(errno.ENOSPC, "No space left on device")


@pytest.fixture
def root(tmp_path: Path) -> Path:
    workspace = tmp_path / "ws"
    (workspace / "gen").mkdir(parents=True)
    (workspace / "gen" / "a.py").write_bytes(b"a = 'old'\n")
    (workspace / "gen" / "c.py").write_bytes(b"c = 'old'\n")
    return workspace


def stage_four(txn: FileTransaction) -> None:
    txn.stage_write("gen/a.py", "a = 'new'\n")
    txn.stage_write("gen/new/b.py", "b = 'new'\n")
    txn.stage_write("gen/c.py", "c = 'new'\n")
    txn.stage_write("gen/d.py", "d = 'new'\n")


class TestDiskFull:
    def test_third_of_four_writes_fails(self, root: Path, tmp_path: Path, tree_snapshot):
        before = tree_snapshot(root, exclude=())
        txn = FailingTransaction(root, fail_on=3, error=disk_full(), backup_dir=tmp_path / "bk")
        stage_four(txn)

        with pytest.raises(TransactionError, match="No space left"):
            with txn:
                txn.commit()

        assert txn.writes == 3
        assert tree_snapshot(root, exclude=()) == before
        assert not (root / "gen" / "new").exists()
        assert not (root / "gen" / "d.py").exists()
        assert list((tmp_path / "bk").iterdir()) == []

    def test_first_write_fails(self, root: Path, tree_snapshot):
        before = tree_snapshot(root, exclude=())
        txn = FailingTransaction(root, fail_on=1, error=disk_full())
        stage_four(txn)
        with pytest.raises(TransactionError):
            txn.commit()
        assert tree_snapshot(root, exclude=()) == before

    def test_lost_backup_reports_incomplete_rollback(self, root: Path, tmp_path: Path):
        txn = FailingTransaction(root, fail_on=2, error=disk_full(), backup_dir=tmp_path / "bk")
        txn.stage_write("gen/a.py", "a = 'new'\n")
        txn.stage_write("gen/c.py", "c = 'new'\n")
        for backup in (tmp_path / "bk").rglob("0000.bak"):
            backup.unlink()

        with pytest.raises(TransactionError, match="Rollback incomplete"):
            txn.commit()
        assert (root / "gen" / "c.py").read_bytes() == b"c = 'old'\n"


class TestInterrupts:
    def test_keyboard_interrupt_mid_commit(self, root: Path, tree_snapshot):
        before = tree_snapshot(root, exclude=())
        txn = FailingTransaction(root, fail_on=2, error=KeyboardInterrupt())
        stage_four(txn)

        with pytest.raises(KeyboardInterrupt):
            with txn:
                txn.commit()

        assert txn.rolled_back
        assert tree_snapshot(root, exclude=()) == before

    def test_exception_before_commit(self, root: Path, tree_snapshot):
        before = tree_snapshot(root, exclude=())
        with pytest.raises(RuntimeError):
            with FileTransaction(root) as txn:
                stage_four(txn)
                raise RuntimeError("render crashed")
        assert tree_snapshot(root, exclude=()) == before


class TestPipelineWriteFailures:
    @pytest.fixture
    def four_rules(self, make_workspace) -> Path:
        rules = [
            {"name": name, "output_file": f"src/generated/{name}.py"}
            for name in ("alpha", "beta", "gamma", "delta")
        ]
        return make_workspace(
            rules,
            files={
                "src/generated/alpha.py": "# previous alpha\n",
                "src/generated/gamma.py": "# previous gamma\n",
            },
        )

    def test_disk_full_rolls_back_every_output(self, four_rules: Path, make_pipeline, fake_engine, tree_snapshot):
        before = tree_snapshot(four_rules)

        def factory(root, **kwargs):
            return FailingTransaction(root, fail_on=3, error=disk_full(), **kwargs)

        report = make_pipeline(graph_engine=fake_engine, transaction_factory=factory).sync(four_rules)

        assert report.status == SyncStatus.FAILED
        assert report.error.stage == PipelineStage.WRITE
        assert report.error.kind == "TransactionError"
        assert tree_snapshot(four_rules) == before
        assert not (four_rules / ".receipts").exists()

    def test_interrupt_rolls_back_and_propagates(self, four_rules: Path, make_pipeline, fake_engine, tree_snapshot):
        before = tree_snapshot(four_rules)

        def factory(root, **kwargs):
            return FailingTransaction(root, fail_on=2, error=KeyboardInterrupt(), **kwargs)

        pipeline = make_pipeline(graph_engine=fake_engine, transaction_factory=factory)
        with pytest.raises(KeyboardInterrupt):
            pipeline.sync(four_rules)
        assert tree_snapshot(four_rules) == before

        # The pipeline is reusable after an interrupt
        assert make_pipeline(graph_engine=fake_engine).sync(four_rules).succeeded
