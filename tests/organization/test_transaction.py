"""
Tests for transaction logging.
"""

import json
from pathlib import Path

import pytest

from image_sorter.core.errors import ConfigurationError
from image_sorter.core.types import TransferMethod
from image_sorter.organization.transaction import (
    TransactionLog,
    TransactionStatus,
)


TXN_ID = "4f6c0a52-8d1e-4b7a-9c3f-2e5d7a1b9c08"


def make_log(tmp_path: Path) -> TransactionLog:
    log = TransactionLog(transaction_id=TXN_ID, target_directory=tmp_path / "out")
    log.add_operation("op-1", tmp_path / "a.jpg", TransferMethod.MOVE)
    log.add_operation("op-2", tmp_path / "b.jpg", TransferMethod.MOVE)
    log.add_operation("op-3", tmp_path / "c.jpg", TransferMethod.COPY)
    return log


class TestTransactionLog:
    """Tests for TransactionLog."""

    def test_add_operation(self, tmp_path: Path) -> None:
        log = make_log(tmp_path)

        assert len(log.operations) == 3
        assert log.operations[0].status == TransactionStatus.PENDING
        assert log.operations[0].target_path is None

    def test_update_status(self, tmp_path: Path) -> None:
        log = make_log(tmp_path)
        target = tmp_path / "out" / "a.jpg"

        log.update_operation_status(
            "op-1", TransactionStatus.COMPLETED, target_path=target
        )
        log.update_operation_status("op-2", TransactionStatus.FAILED, "disk full")

        assert log.operations[0].status == TransactionStatus.COMPLETED
        assert log.operations[0].target_path == target
        assert log.operations[1].error_message == "disk full"

    def test_update_unknown_operation(self, tmp_path: Path) -> None:
        log = make_log(tmp_path)
        log.update_operation_status("missing", TransactionStatus.COMPLETED)
        assert log.get_statistics()["completed"] == 0

    def test_statistics(self, tmp_path: Path) -> None:
        log = make_log(tmp_path)
        log.update_operation_status("op-1", TransactionStatus.COMPLETED)
        log.update_operation_status("op-2", TransactionStatus.FAILED, "boom")

        stats = log.get_statistics()

        assert stats == {
            "total": 3,
            "pending": 1,
            "in_progress": 0,
            "completed": 1,
            "failed": 1,
            "rolled_back": 0,
        }
        assert log.has_failures()

    def test_no_failures(self, tmp_path: Path) -> None:
        assert not make_log(tmp_path).has_failures()

    def test_rollback_operations(self, tmp_path: Path) -> None:
        """Test that only completed operations are returned, newest first."""
        log = make_log(tmp_path)
        log.update_operation_status("op-1", TransactionStatus.COMPLETED)
        log.update_operation_status("op-2", TransactionStatus.FAILED, "boom")
        log.update_operation_status("op-3", TransactionStatus.COMPLETED)

        operations = log.get_rollback_operations()

        assert [op.operation_id for op in operations] == ["op-3", "op-1"]

    def test_save_and_load(self, tmp_path: Path) -> None:
        log = make_log(tmp_path)
        log.update_operation_status(
            "op-1", TransactionStatus.COMPLETED, target_path=tmp_path / "out/a.jpg"
        )
        log_path = TransactionLog.log_path(tmp_path / "transactions", TXN_ID)

        log.save(log_path)
        loaded = TransactionLog.load(log_path)

        assert log_path == tmp_path / "transactions" / f"{TXN_ID}.json"
        assert loaded.transaction_id == TXN_ID
        assert loaded.target_directory == tmp_path / "out"
        assert loaded.operations[0].target_path == tmp_path / "out/a.jpg"
        assert loaded.operations[0].status == TransactionStatus.COMPLETED
        assert loaded.operations[2].operation_type == TransferMethod.COPY
        assert [op.operation_id for op in loaded.get_rollback_operations()] == [
            "op-1"
        ]

    def test_saved_file_is_json(self, tmp_path: Path) -> None:
        log_path = tmp_path / "log.json"
        make_log(tmp_path).save(log_path)

        data = json.loads(log_path.read_text())

        assert data["transaction_id"] == TXN_ID
        assert data["operations"][0]["status"] == "pending"
        assert data["operations"][0]["operation_type"] == "move"

    @pytest.mark.parametrize(
        "transaction_id", ["../../escape", "txn-1", "", "/etc/passwd"]
    )
    def test_log_path_rejects_non_uuid(
        self, tmp_path: Path, transaction_id: str
    ) -> None:
        """Test that only UUIDs map to files inside the transaction directory."""
        with pytest.raises(ConfigurationError):
            TransactionLog.log_path(tmp_path / "transactions", transaction_id)
