"""
Transaction logging for organization operations.

Tracks all file operations of a sort or move batch to enable rollback.
"""

import json
import logging
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..core.errors import ConfigurationError
from ..core.types import TransferMethod

logger = logging.getLogger(__name__)


class TransactionStatus(str, Enum):
    """Status of a transaction operation."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class TransactionOperation(BaseModel):
    """A single file operation in a transaction."""

    operation_id: str = Field(description="Unique operation ID")
    source_path: Path = Field(description="Source file path")
    target_path: Optional[Path] = Field(
        default=None, description="Target file path, once reserved"
    )
    operation_type: TransferMethod = Field(description="Operation type (copy/move)")
    checksum: Optional[str] = Field(
        default=None, description="Source checksum, when verification is enabled"
    )
    status: TransactionStatus = Field(
        default=TransactionStatus.PENDING,
        description="Operation status",
    )
    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="When operation was logged",
    )
    error_message: Optional[str] = Field(
        default=None, description="Error message if failed"
    )

    model_config = ConfigDict(use_enum_values=True)


class TransactionLog(BaseModel):
    """Transaction log for a sort or move batch."""

    transaction_id: str = Field(description="Unique transaction ID")
    target_directory: Path = Field(description="Destination root of the batch")
    started_at: datetime = Field(
        default_factory=datetime.now,
        description="When transaction started",
    )
    completed_at: Optional[datetime] = Field(
        default=None, description="When transaction completed"
    )
    operations: List[TransactionOperation] = Field(
        default_factory=list, description="List of operations"
    )

    def add_operation(
        self,
        operation_id: str,
        source_path: Path,
        operation_type: TransferMethod,
        checksum: Optional[str] = None,
    ) -> TransactionOperation:
        """
        Add an operation to the transaction log.

        Returns:
            Created operation
        """
        operation = TransactionOperation(
            operation_id=operation_id,
            source_path=source_path,
            operation_type=operation_type,
            checksum=checksum,
        )
        self.operations.append(operation)
        return operation

    def update_operation_status(
        self,
        operation_id: str,
        status: TransactionStatus,
        error_message: Optional[str] = None,
        target_path: Optional[Path] = None,
    ) -> None:
        """Update the status (and optionally the target) of an operation."""
        for op in self.operations:
            if op.operation_id == operation_id:
                op.status = status
                if error_message:
                    op.error_message = error_message
                if target_path is not None:
                    op.target_path = target_path
                return

    def get_statistics(self) -> Dict[str, int]:
        """
        Get transaction statistics.

        Returns:
            Dictionary with operation counts by status
        """
        stats = {
            "total": len(self.operations),
            "pending": 0,
            "in_progress": 0,
            "completed": 0,
            "failed": 0,
            "rolled_back": 0,
        }

        for op in self.operations:
            stats[TransactionStatus(op.status).value] += 1

        return stats

    def has_failures(self) -> bool:
        return any(op.status == TransactionStatus.FAILED for op in self.operations)

    @staticmethod
    def log_path(transaction_dir: Path, transaction_id: str) -> Path:
        """
        Path of the log file for a transaction ID.

        Raises:
            ConfigurationError: If the ID is not a UUID
        """
        try:
            canonical_id = str(uuid.UUID(transaction_id))
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid transaction ID: {transaction_id}") from e
        return Path(transaction_dir) / f"{canonical_id}.json"

    def save(self, log_path: Path) -> None:
        """
        Save transaction log to file.

        Args:
            log_path: Path to save log file
        """
        log_path.parent.mkdir(parents=True, exist_ok=True)

        with open(log_path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)

        logger.info(f"Saved transaction log to {log_path}")

    @classmethod
    def load(cls, log_path: Path) -> "TransactionLog":
        """
        Load transaction log from file.

        Args:
            log_path: Path to log file

        Returns:
            Loaded transaction log
        """
        with open(log_path, "r", encoding="utf-8") as f:
            data = json.load(f)

        return cls.model_validate(data)

    def get_rollback_operations(self) -> List[TransactionOperation]:
        """
        Get operations that need to be rolled back, most recent first.

        Returns:
            List of completed operations in reverse order
        """
        return [
            op
            for op in reversed(self.operations)
            if op.status == TransactionStatus.COMPLETED
        ]
