"""
Image sorter engine.

Wires the scanner, hash engine, hash cache, duplicate detector and file
organizer together behind one object. The engine owns its worker pools and
(unless one is injected) its hash cache; nothing is process-global, so
several engines can run side by side.

Every operation runs synchronously on the calling thread and has a
``submit_*`` variant that runs it on the engine's batch pool and returns a
``concurrent.futures.Future`` instead.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .analysis.duplicate_detector import DuplicateDetector, validate_threshold
from .analysis.hash_cache import HashCache
from .analysis.metadata import MetadataExtractor
from .analysis.perceptual_hash import HashEngine
from .analysis.scanner import ImageScanner
from .core.concurrency import CancellationToken, ProgressListener, ProgressReporter
from .core.config import Settings
from .core.errors import ImageSorterError
from .core.types import (
    DuplicateResult,
    HashSet,
    ImageRecord,
    OperationOutcome,
    ScanResult,
    SortOptions,
    TransferMethod,
)
from .organization.file_organizer import FileOrganizer
from .shared.thumbnail_utils import get_thumbnail

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
ImageInput = Union[str, Path, ImageRecord]

_CANCELLED = object()


class ImageSorterEngine:
    """
    Detection-and-grouping engine plus file relocation.

    Example:
        >>> with ImageSorterEngine(Settings(state_dir=tmp)) as engine:
        ...     scan = engine.scan(photos)
        ...     result = engine.find_duplicates(scan.images, threshold=5)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        cache: Optional[HashCache] = None,
    ):
        """
        Initialize the engine.

        Args:
            settings: Engine settings; loaded from the environment if omitted
            cache: Hash cache to use; the engine opens (and later closes) one
                at settings.cache_path when omitted
        """
        self.settings = settings or Settings()

        self._owns_cache = cache is None
        self.cache = cache or HashCache(
            self.settings.cache_path,
            algorithm_version=self.settings.algorithm_version,
            lock_shards=self.settings.cache_lock_shards,
        )

        self._hash_pool = ThreadPoolExecutor(
            max_workers=self.settings.effective_hash_workers,
            thread_name_prefix="hash",
        )
        self._io_pool = ThreadPoolExecutor(
            max_workers=self.settings.io_workers, thread_name_prefix="io"
        )
        self._batch_pool = ThreadPoolExecutor(
            max_workers=self.settings.batch_workers, thread_name_prefix="batch"
        )
        self._closed = False

        self.extractor = MetadataExtractor()
        self.scanner = ImageScanner(self.settings, self._io_pool, self.extractor)
        self.hash_engine = HashEngine(self.settings, self.cache)
        self.detector = DuplicateDetector(self.settings)
        self.organizer = FileOrganizer(self.settings, self.extractor)

        logger.debug(
            f"Engine started: {self.settings.effective_hash_workers} hash workers, "
            f"{self.settings.io_workers} I/O workers, "
            f"algorithm {self.settings.algorithm_version}"
        )

    def __enter__(self) -> "ImageSorterEngine":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Wait for running batches, stop the pools and close an owned cache."""
        if self._closed:
            return
        self._closed = True
        self._batch_pool.shutdown(wait=True)
        self._hash_pool.shutdown(wait=True)
        self._io_pool.shutdown(wait=True)
        if self._owns_cache:
            self.cache.close()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def scan(
        self,
        root: PathLike,
        progress: Optional[ProgressListener] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> ScanResult:
        """
        Find image files under root.

        Raises:
            PathNotFoundError: If root does not exist
            PathPermissionError: If root cannot be listed
        """
        with self._reporter("scan", 0, progress) as reporter:
            return self.scanner.scan(Path(root), cancel=cancel, progress=reporter)

    def find_duplicates(
        self,
        images: Iterable[ImageInput],
        threshold: Optional[int] = None,
        progress: Optional[ProgressListener] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> DuplicateResult:
        """
        Hash images in parallel and group duplicates.

        Args:
            images: Paths, or ImageRecords from a previous scan
            threshold: Maximum Hamming distance; defaults to settings
            progress: Listener receiving one event per completed hash
            cancel: Optional cancellation token, checked before each hash

        Returns:
            Groups found among the images hashed before any cancellation

        Raises:
            InvalidThresholdError: If threshold is outside 0..hash bits
        """
        if threshold is None:
            threshold = self.settings.similarity_threshold
        validate_threshold(threshold, self.settings.hash_bits)

        inputs = self._unique_inputs(images)
        result = DuplicateResult()
        records: List[ImageRecord] = []
        hashes: Dict[str, HashSet] = {}

        logger.info(
            f"Hashing {len(inputs)} images with "
            f"{self.settings.effective_hash_workers} workers"
        )

        with self._reporter("hash", len(inputs), progress) as reporter:
            futures = {
                self._hash_pool.submit(self._analyze, item, cancel): key
                for key, item in inputs
            }
            for future in as_completed(futures):
                key = futures[future]
                outcome = future.result()
                if outcome is _CANCELLED:
                    result.cancelled = True
                    continue

                record, hash_set, error = outcome
                result.processed += 1
                if error is None:
                    records.append(record)
                    hashes[record.key] = hash_set
                else:
                    result.failed += 1
                    result.errors.append(f"{key}: {error}")
                reporter.advance(path=key, success=error is None)

        result.groups = self.detector.group(records, hashes, threshold)
        result.total_duplicates = sum(group.size - 1 for group in result.groups)
        result.errors.sort()

        logger.info(
            f"Found {len(result.groups)} duplicate groups "
            f"({result.total_duplicates} duplicates, {result.failed} failed)"
        )
        return result

    def sort_by_date(
        self,
        paths: Iterable[PathLike],
        method: TransferMethod,
        target_dir: PathLike,
        options: Optional[SortOptions] = None,
        progress: Optional[ProgressListener] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> OperationOutcome:
        """
        Move or copy files into date folders under target_dir.

        Raises:
            InvalidTargetError: If target_dir does not exist
            ConfigurationError: If method is not copy or move
        """
        paths = [Path(p) for p in paths]
        with self._reporter("sort", len(paths), progress) as reporter:
            return self.organizer.sort_by_date(
                paths, method, Path(target_dir), options, cancel, reporter
            )

    def move_files(
        self,
        paths: Iterable[PathLike],
        target_dir: PathLike,
        progress: Optional[ProgressListener] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> OperationOutcome:
        """
        Move files into target_dir.

        Raises:
            InvalidTargetError: If target_dir does not exist
        """
        paths = [Path(p) for p in paths]
        with self._reporter("move", len(paths), progress) as reporter:
            return self.organizer.move_files(
                paths, Path(target_dir), cancel=cancel, progress=reporter
            )

    def delete_files(
        self,
        paths: Iterable[PathLike],
        progress: Optional[ProgressListener] = None,
        cancel: Optional[CancellationToken] = None,
    ) -> OperationOutcome:
        """Send files to the trash (or delete them permanently, flagged)."""
        paths = [Path(p) for p in paths]
        with self._reporter("delete", len(paths), progress) as reporter:
            outcome = self.organizer.delete_files(paths, cancel, reporter)

        for file_outcome in outcome.results:
            if file_outcome.success:
                self.cache.invalidate(Path(file_outcome.source).absolute())
        return outcome

    def rollback(
        self,
        transaction_id: str,
        progress: Optional[ProgressListener] = None,
    ) -> OperationOutcome:
        """
        Undo a sort or move batch.

        Raises:
            PathNotFoundError: If the transaction log does not exist
        """
        with self._reporter("rollback", 0, progress) as reporter:
            return self.organizer.rollback(transaction_id, reporter)

    def get_thumbnail(self, path: PathLike) -> Path:
        """
        Path of a cached JPEG preview, generated on first request.

        Raises:
            PathNotFoundError, PathPermissionError: Source is not accessible
            DecodeError: Source is not a readable image
        """
        return get_thumbnail(
            Path(path), self.settings.thumbnail_dir, self.settings.thumbnail_size
        )

    # ------------------------------------------------------------------
    # Non-blocking variants
    # ------------------------------------------------------------------

    def submit_scan(self, root: PathLike, **kwargs) -> "Future[ScanResult]":
        return self._batch_pool.submit(self.scan, root, **kwargs)

    def submit_find_duplicates(
        self, images: Iterable[ImageInput], **kwargs
    ) -> "Future[DuplicateResult]":
        return self._batch_pool.submit(self.find_duplicates, list(images), **kwargs)

    def submit_sort_by_date(
        self,
        paths: Iterable[PathLike],
        method: TransferMethod,
        target_dir: PathLike,
        options: Optional[SortOptions] = None,
        **kwargs,
    ) -> "Future[OperationOutcome]":
        return self._batch_pool.submit(
            self.sort_by_date, list(paths), method, target_dir, options, **kwargs
        )

    def submit_move_files(
        self, paths: Iterable[PathLike], target_dir: PathLike, **kwargs
    ) -> "Future[OperationOutcome]":
        return self._batch_pool.submit(
            self.move_files, list(paths), target_dir, **kwargs
        )

    def submit_delete_files(
        self, paths: Iterable[PathLike], **kwargs
    ) -> "Future[OperationOutcome]":
        return self._batch_pool.submit(self.delete_files, list(paths), **kwargs)

    def submit_get_thumbnail(self, path: PathLike) -> "Future[Path]":
        return self._io_pool.submit(self.get_thumbnail, path)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reporter(
        self, operation: str, total: int, listener: Optional[ProgressListener]
    ) -> ProgressReporter:
        return ProgressReporter(
            operation,
            total,
            listener=listener,
            maxsize=self.settings.progress_queue_size,
        )

    @staticmethod
    def _unique_inputs(images: Iterable[ImageInput]) -> List[Tuple[str, ImageInput]]:
        """Key each input by absolute path, dropping repeats."""
        seen: Dict[str, ImageInput] = {}
        for item in images:
            if isinstance(item, ImageRecord):
                key = item.key
            else:
                key = str(Path(item).absolute())
            seen.setdefault(key, item)
        return list(seen.items())

    def _analyze(self, item: ImageInput, cancel: Optional[CancellationToken]):
        """
        Hash one image on a worker thread.

        Returns:
            _CANCELLED, or (record, hash_set, error) where error is None on
            success
        """
        if cancel is not None and cancel.cancelled:
            return _CANCELLED

        try:
            if isinstance(item, ImageRecord):
                record = item
            else:
                record = self.extractor.extract(Path(item))
            hash_set = self.hash_engine.hash_record(record)
            return record, hash_set, None
        except ImageSorterError as e:
            logger.warning(f"Cannot hash {item}: {e}")
            return None, None, str(e)
        except Exception as e:
            logger.error(f"Error computing hash for {item}: {e}")
            return None, None, f"unexpected error: {e}"
