"""
File organizer for sorting, moving and deleting image files.

Every file is handled independently: one failure is recorded in the batch
outcome and the batch continues. A transfer is reported successful only
after the filesystem confirms it, and each sort or move batch writes a
transaction log that can be rolled back.
"""

import errno
import logging
import os
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from send2trash import send2trash
from send2trash.exceptions import TrashPermissionError

from ..analysis.metadata import MetadataExtractor
from ..core.concurrency import CancellationToken, ProgressReporter
from ..core.config import Settings
from ..core.errors import (
    ConfigurationError,
    FilesystemError,
    ImageSorterError,
    InvalidTargetError,
    PathNotFoundError,
)
from ..core.types import FileOutcome, OperationOutcome, SortOptions, TransferMethod
from ..shared.media_utils import compute_checksum
from .strategy import OrganizationStrategy, reserve_target_path
from .transaction import TransactionLog, TransactionStatus

logger = logging.getLogger(__name__)


class FileOrganizer:
    """Relocate and delete files on behalf of the engine."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        extractor: Optional[MetadataExtractor] = None,
    ):
        """
        Initialize file organizer.

        Args:
            settings: Engine settings (transaction directory, delete fallback)
            extractor: Metadata extractor used to read creation dates
        """
        self.settings = settings or Settings()
        self.extractor = extractor or MetadataExtractor()

    # ------------------------------------------------------------------
    # Batch operations
    # ------------------------------------------------------------------

    def sort_by_date(
        self,
        paths: Iterable[Path],
        method: TransferMethod,
        target_dir: Path,
        options: Optional[SortOptions] = None,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> OperationOutcome:
        """
        Move or copy files into <target>/<year>/<month>[/<day>] folders.

        Args:
            paths: Files to sort
            method: COPY or MOVE
            target_dir: Existing destination root
            options: Folder layout and verification options
            cancel: Optional cancellation token, checked between files
            progress: Optional progress reporter, advanced once per file

        Returns:
            Aggregate outcome with one result per processed file

        Raises:
            InvalidTargetError: If target_dir does not exist
            ConfigurationError: If method is not copy or move
        """
        options = options or SortOptions()
        method = self._check_method(method)
        target_dir = self._check_target(target_dir)
        strategy = OrganizationStrategy.from_options(options)

        def destination_for(source: Path) -> Path:
            date = self.extractor.read_creation_date(source)
            return strategy.get_target_directory(target_dir, date)

        return self._transfer_batch(
            list(paths),
            method,
            target_dir,
            destination_for,
            options.verify_checksums,
            cancel,
            progress,
        )

    def move_files(
        self,
        paths: Iterable[Path],
        target_dir: Path,
        verify_checksums: bool = False,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> OperationOutcome:
        """
        Move files directly into target_dir with collision-safe names.

        Raises:
            InvalidTargetError: If target_dir does not exist
        """
        target_dir = self._check_target(target_dir)
        return self._transfer_batch(
            list(paths),
            TransferMethod.MOVE,
            target_dir,
            lambda source: target_dir,
            verify_checksums,
            cancel,
            progress,
        )

    def delete_files(
        self,
        paths: Iterable[Path],
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> OperationOutcome:
        """
        Send files to the trash.

        When the platform or volume has no trash, files are deleted
        permanently if ``permanent_delete_fallback`` is enabled and flagged
        in the outcome; otherwise they are left in place and reported as
        errors.
        """
        outcome = OperationOutcome()
        for path in paths:
            if cancel is not None and cancel.cancelled:
                outcome.cancelled = True
                break

            source = Path(path)
            try:
                permanently = self._delete_one(source)
                outcome.add_success(
                    FileOutcome(
                        source=str(source),
                        success=True,
                        permanently_deleted=permanently,
                    )
                )
            except ImageSorterError as e:
                logger.error(f"Error deleting {source}: {e}")
                outcome.add_error(FileOutcome(source=str(source), message=str(e)))

            if progress is not None:
                progress.advance(path=str(source), success=outcome.results[-1].success)

        logger.info(
            f"Deleted {outcome.succeeded} files, {outcome.failed} failed, "
            f"{len(outcome.permanently_deleted)} permanently"
        )
        return outcome

    def rollback(
        self,
        transaction_id: str,
        progress: Optional[ProgressReporter] = None,
    ) -> OperationOutcome:
        """
        Reverse the completed operations of a sort or move batch.

        Moved files are moved back to their source path; copies are removed.

        Raises:
            PathNotFoundError: If no transaction log exists for the ID
            ConfigurationError: If the ID is not a valid transaction ID
        """
        logger.info(f"Rolling back transaction {transaction_id}")

        log_path = TransactionLog.log_path(
            self.settings.transaction_dir, transaction_id
        )
        if not log_path.exists():
            raise PathNotFoundError(log_path, f"Transaction log not found: {log_path}")

        transaction_log = TransactionLog.load(log_path)
        operations = transaction_log.get_rollback_operations()
        logger.info(f"Rolling back {len(operations)} operations")

        if progress is not None:
            progress.total = len(operations)

        outcome = OperationOutcome(transaction_id=transaction_id)
        for operation in operations:
            file_outcome = FileOutcome(
                source=str(operation.target_path),
                destination=str(operation.source_path),
            )
            try:
                self._rollback_one(
                    TransferMethod(operation.operation_type),
                    operation.source_path,
                    operation.target_path,
                )
                transaction_log.update_operation_status(
                    operation.operation_id, TransactionStatus.ROLLED_BACK
                )
                file_outcome.success = True
                outcome.add_success(file_outcome)
            except FilesystemError as e:
                logger.error(f"Error rolling back {operation.operation_id}: {e}")
                file_outcome.message = str(e)
                outcome.add_error(file_outcome)

            if progress is not None:
                progress.advance(path=file_outcome.source, success=file_outcome.success)

        transaction_log.completed_at = datetime.now()
        transaction_log.save(log_path)

        logger.info("Rollback complete")
        return outcome

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def _transfer_batch(
        self,
        paths: List[Path],
        method: TransferMethod,
        target_dir: Path,
        destination_for,
        verify_checksums: bool,
        cancel: Optional[CancellationToken],
        progress: Optional[ProgressReporter],
    ) -> OperationOutcome:
        transaction_id = str(uuid.uuid4())
        transaction_log = TransactionLog(
            transaction_id=transaction_id, target_directory=target_dir
        )
        outcome = OperationOutcome(transaction_id=transaction_id)

        if progress is not None:
            progress.total = len(paths)

        logger.info(f"Processing {len(paths)} files ({method.value} to {target_dir})")

        for path in paths:
            if cancel is not None and cancel.cancelled:
                outcome.cancelled = True
                logger.info(f"Cancelled after {outcome.processed} files")
                break

            source = Path(path)
            operation_id = str(uuid.uuid4())
            transaction_log.add_operation(operation_id, source, method)
            file_outcome = FileOutcome(source=str(source))

            try:
                dest_dir = destination_for(source)
                transaction_log.update_operation_status(
                    operation_id, TransactionStatus.IN_PROGRESS
                )
                destination = self._transfer_one(
                    source, dest_dir, method, verify_checksums
                )
                transaction_log.update_operation_status(
                    operation_id, TransactionStatus.COMPLETED, target_path=destination
                )
                file_outcome.destination = str(destination)
                file_outcome.success = True
                outcome.add_success(file_outcome)
            except ImageSorterError as e:
                logger.error(f"Error processing {source}: {e}")
                transaction_log.update_operation_status(
                    operation_id, TransactionStatus.FAILED, str(e)
                )
                file_outcome.message = str(e)
                outcome.add_error(file_outcome)

            if progress is not None:
                progress.advance(path=str(source), success=file_outcome.success)

        transaction_log.completed_at = datetime.now()
        if transaction_log.operations:
            try:
                log_path = TransactionLog.log_path(
                    self.settings.transaction_dir, transaction_id
                )
                transaction_log.save(log_path)
            except OSError as e:
                logger.error(f"Could not save transaction log {transaction_id}: {e}")
                outcome.transaction_id = None

        logger.info(
            f"{method.value.capitalize()} complete: {outcome.succeeded} succeeded, "
            f"{outcome.failed} failed"
        )
        return outcome

    def _transfer_one(
        self,
        source: Path,
        dest_dir: Path,
        method: TransferMethod,
        verify_checksums: bool,
    ) -> Path:
        """
        Move or copy one file into dest_dir under a free name.

        Returns:
            Final destination path

        Raises:
            FilesystemError: If the transfer fails or cannot be confirmed
        """
        if not source.is_file():
            raise FilesystemError(source, f"File does not exist: {source}")

        try:
            source_size = source.stat().st_size
            checksum = compute_checksum(source) if verify_checksums else None
            dest_dir.mkdir(parents=True, exist_ok=True)
            destination = reserve_target_path(dest_dir, source.name)
        except OSError as e:
            raise FilesystemError(source, f"Cannot prepare {method.value}: {e}") from e

        try:
            if method == TransferMethod.MOVE:
                self._move(source, destination)
            else:
                shutil.copy2(source, destination)
        except OSError as e:
            self._discard(destination)
            raise FilesystemError(
                source, f"Could not {method.value} file {source}: {e}"
            ) from e

        self._confirm(source, destination, method, source_size, checksum)
        logger.debug(f"{method.value}: {source} -> {destination}")
        return destination

    def _move(self, source: Path, destination: Path) -> None:
        """Rename onto the reserved destination, or copy and unlink across devices."""
        try:
            os.replace(source, destination)
            return
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise

        shutil.copy2(source, destination)
        if destination.stat().st_size != source.stat().st_size:
            raise OSError(errno.EIO, f"Size mismatch after copy to {destination}")
        source.unlink()

    def _confirm(
        self,
        source: Path,
        destination: Path,
        method: TransferMethod,
        source_size: int,
        checksum: Optional[str],
    ) -> None:
        """
        Raises:
            FilesystemError: If the filesystem does not reflect the transfer
        """
        if not destination.is_file():
            raise FilesystemError(
                source, f"Destination missing after {method.value}: {destination}"
            )

        if method == TransferMethod.MOVE and os.path.lexists(source):
            raise FilesystemError(source, f"Source still present after move: {source}")

        try:
            if destination.stat().st_size != source_size:
                if method == TransferMethod.COPY:
                    self._discard(destination)
                raise FilesystemError(
                    source, f"Size mismatch after {method.value}: {destination}"
                )
            if checksum is not None and compute_checksum(destination) != checksum:
                if method == TransferMethod.COPY:
                    self._discard(destination)
                raise FilesystemError(
                    source, f"Checksum mismatch after {method.value}: {destination}"
                )
        except OSError as e:
            raise FilesystemError(source, f"Cannot verify {destination}: {e}") from e

    def _discard(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove {path}: {e}")

    # ------------------------------------------------------------------
    # Delete / rollback
    # ------------------------------------------------------------------

    def _delete_one(self, source: Path) -> bool:
        """
        Trash one file, falling back to permanent deletion when allowed.

        Returns:
            True if the file was deleted permanently

        Raises:
            FilesystemError: If the file could not be removed
        """
        if not os.path.lexists(source):
            raise FilesystemError(source, f"File does not exist: {source}")

        try:
            send2trash(str(source))
            permanently = False
        except (TrashPermissionError, OSError) as e:
            if isinstance(e, FileNotFoundError):
                raise FilesystemError(source, f"File does not exist: {source}") from e
            if not self.settings.permanent_delete_fallback:
                raise FilesystemError(
                    source,
                    f"Could not move to trash: {e}. "
                    "Permanent deletion is disabled.",
                ) from e
            logger.warning(
                f"Trash unavailable for {source} ({e}), deleting permanently"
            )
            try:
                source.unlink()
            except OSError as unlink_error:
                raise FilesystemError(
                    source, f"Could not delete {source}: {unlink_error}"
                ) from unlink_error
            permanently = True

        if os.path.lexists(source):
            raise FilesystemError(source, f"File still present after delete: {source}")
        return permanently

    def _rollback_one(
        self, method: TransferMethod, source: Path, target: Optional[Path]
    ) -> None:
        """
        Raises:
            FilesystemError: If the operation cannot be reversed
        """
        if target is None or not target.exists():
            raise FilesystemError(source, f"Transferred file is gone: {target}")

        try:
            if method == TransferMethod.COPY:
                target.unlink()
                logger.info(f"Deleted copied file: {target}")
                return

            if os.path.lexists(source):
                raise FilesystemError(source, f"Original path is occupied: {source}")
            source.parent.mkdir(parents=True, exist_ok=True)
            try:
                os.replace(target, source)
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
                shutil.copy2(target, source)
                target.unlink()
            logger.info(f"Moved back: {target} -> {source}")
        except OSError as e:
            raise FilesystemError(source, f"Could not roll back {target}: {e}") from e

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _check_target(target_dir: Path) -> Path:
        target = Path(target_dir).absolute()
        if not target.is_dir():
            raise InvalidTargetError(target)
        return target

    @staticmethod
    def _check_method(method) -> TransferMethod:
        try:
            return TransferMethod(method)
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown transfer method: {method!r} (expected copy or move)"
            ) from e
