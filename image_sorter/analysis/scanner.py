"""
Directory scanner for image files.

Walks a directory tree, filters candidates by extension and magic signature,
and reads each file's metadata on a bounded I/O thread pool.
"""

import logging
import os
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import nullcontext
from pathlib import Path
from typing import Iterator, List, Optional, Set, Tuple

from ..core.concurrency import CancellationToken, ProgressReporter
from ..core.config import Settings
from ..core.errors import ImageSorterError, PathNotFoundError, PathPermissionError
from ..core.types import ImageRecord, ScanResult
from ..shared.media_utils import is_image_file, read_signature
from .metadata import MetadataExtractor

logger = logging.getLogger(__name__)

# Directories never descended into
SKIPPED_DIRECTORIES = {"@eaDir"}

_CANCELLED = object()


class ImageScanner:
    """
    Scans directories for image files.

    Traversal follows directory symlinks; a directory already visited (same
    device and inode) is skipped and reported instead of recursed into, so
    symlink cycles cannot cause infinite recursion.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        executor: Optional[Executor] = None,
        extractor: Optional[MetadataExtractor] = None,
    ):
        """
        Initialize the scanner.

        Args:
            settings: Engine settings
            executor: I/O pool for metadata reads; a private pool is used
                for the duration of each scan when omitted
            extractor: Metadata extractor
        """
        self.settings = settings or Settings()
        self.executor = executor
        self.extractor = extractor or MetadataExtractor()

    def scan(
        self,
        root: Path,
        cancel: Optional[CancellationToken] = None,
        progress: Optional[ProgressReporter] = None,
    ) -> ScanResult:
        """
        Scan a directory tree for images.

        Args:
            root: Directory to scan
            cancel: Optional cancellation token, checked between files
            progress: Optional progress reporter, advanced once per file

        Returns:
            ScanResult with records in traversal order

        Raises:
            PathNotFoundError: If root does not exist or is not a directory
            PathPermissionError: If root cannot be listed
        """
        root = Path(root).absolute()
        self._check_root(root)

        result = ScanResult()
        logger.info(f"Scanning directory: {root}")

        candidates = []
        for file_path in self._discover_files(root, result):
            if cancel is not None and cancel.cancelled:
                result.cancelled = True
                break
            candidates.append(file_path)

        if progress is not None:
            progress.total = len(candidates)

        if candidates and not result.cancelled:
            self._process_files(candidates, result, cancel, progress)

        result.image_count = len(result.images)
        logger.info(
            f"Scan complete: {result.image_count} images, "
            f"{len(result.errors)} errors, {len(result.skipped_links)} skipped links"
            + (" (cancelled)" if result.cancelled else "")
        )
        return result

    def _check_root(self, root: Path) -> None:
        if not root.exists():
            raise PathNotFoundError(root)
        if not root.is_dir():
            raise PathNotFoundError(root, f"Not a directory: {root}")
        try:
            with os.scandir(root):
                pass
        except PermissionError as e:
            raise PathPermissionError(root) from e

    def _discover_files(self, root: Path, result: ScanResult) -> Iterator[Path]:
        """
        Walk the tree and yield candidate image files.

        Args:
            root: Directory to walk
            result: Receives directory errors and skipped links

        Yields:
            Paths with an allowed image extension
        """
        visited: Set[Tuple[int, int]] = set()
        root_stat = root.stat()
        visited.add((root_stat.st_dev, root_stat.st_ino))

        def on_error(error: OSError) -> None:
            logger.warning(f"Cannot read directory {error.filename}: {error.strerror}")
            result.errors.append(f"{error.filename}: {error.strerror or error}")

        for dirpath, dirs, files in os.walk(
            root, followlinks=self.settings.follow_symlinks, onerror=on_error
        ):
            root_path = Path(dirpath)

            kept = []
            for name in sorted(dirs):
                if name.startswith(".") or name in SKIPPED_DIRECTORIES:
                    continue
                dir_path = root_path / name
                try:
                    st = os.stat(dir_path)
                except OSError as e:
                    logger.warning(f"Cannot stat directory {dir_path}: {e}")
                    result.errors.append(f"{dir_path}: {e.strerror or e}")
                    continue
                identity = (st.st_dev, st.st_ino)
                if identity in visited:
                    logger.debug(f"Skipping already visited directory: {dir_path}")
                    result.skipped_links.append(str(dir_path))
                    continue
                visited.add(identity)
                kept.append(name)
            dirs[:] = kept

            for name in sorted(files):
                # Skip hidden files
                if name.startswith("."):
                    continue
                file_path = root_path / name
                if is_image_file(file_path):
                    yield file_path

    def _process_files(
        self,
        file_paths: List[Path],
        result: ScanResult,
        cancel: Optional[CancellationToken],
        progress: Optional[ProgressReporter],
    ) -> None:
        """Read metadata for each candidate, preserving discovery order."""

        def read(file_path: Path):
            if cancel is not None and cancel.cancelled:
                return _CANCELLED
            return self._read_file(file_path)

        if self.executor is not None:
            pool_ctx = nullcontext(self.executor)
        else:
            pool_ctx = ThreadPoolExecutor(
                max_workers=self.settings.io_workers, thread_name_prefix="scan-io"
            )

        with pool_ctx as pool:
            for file_path, outcome in zip(file_paths, pool.map(read, file_paths)):
                if outcome is _CANCELLED:
                    result.cancelled = True
                    continue

                record, error = outcome
                if record is not None:
                    result.images.append(record)
                    result.total_size_bytes += record.size_bytes
                else:
                    result.errors.append(f"{file_path}: {error}")

                if progress is not None:
                    progress.advance(path=str(file_path), success=record is not None)

    def _read_file(
        self, file_path: Path
    ) -> Tuple[Optional[ImageRecord], Optional[str]]:
        """
        Verify one candidate and read its metadata.

        Returns:
            (record, None) on success or (None, reason) on failure
        """
        try:
            signature = read_signature(file_path)
        except OSError as e:
            logger.warning(f"Cannot open {file_path}: {e}")
            return None, e.strerror or str(e)

        if signature is None:
            logger.warning(f"Unrecognized image signature: {file_path}")
            return None, "unrecognized image signature"

        try:
            return self.extractor.extract(file_path), None
        except ImageSorterError as e:
            logger.warning(f"Error reading {file_path}: {e}")
            return None, str(e)
