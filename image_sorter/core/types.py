"""
Type definitions for the image sorter engine.
"""

import hashlib
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class HashAlgorithm(str, Enum):
    """Perceptual hash algorithm used for similarity grouping."""

    AHASH = "ahash"  # Average hash (mean-based)
    DHASH = "dhash"  # Difference hash (gradient-based)
    PHASH = "phash"  # DCT hash (frequency-based)
    WHASH = "whash"  # Wavelet hash (DWT-based)


class PrimaryPolicy(str, Enum):
    """How the primary image of a duplicate group is chosen."""

    EARLIEST_CREATED = "earliest_created"  # created_at, then path
    LOWEST_PATH = "lowest_path"


class TransferMethod(str, Enum):
    """Type of relocation operation."""

    COPY = "copy"
    MOVE = "move"


class ImageRecord(BaseModel):
    """A single image found by a scan."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    path: Path
    filename: str
    extension: str
    size_bytes: int
    width: Optional[int] = None
    height: Optional[int] = None
    format: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    orientation: Optional[int] = None
    exif: Dict[str, Any] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        """Identity of the record (its absolute path as a string)."""
        return str(self.path)


class HashSet(BaseModel):
    """Hashes computed for one image."""

    model_config = ConfigDict(frozen=True)

    content_hash: str
    perceptual_hash: str
    algorithm: HashAlgorithm
    hash_size: int = 8
    algorithm_version: str

    @property
    def bits(self) -> int:
        """Number of bits in the perceptual hash."""
        return self.hash_size * self.hash_size


class DuplicateGroup(BaseModel):
    """Group of duplicate images with one designated primary."""

    id: str
    primary: ImageRecord
    duplicates: List[ImageRecord] = Field(default_factory=list)
    exact: bool = False
    perceptual_hash: Optional[str] = None

    @property
    def images(self) -> List[ImageRecord]:
        """Primary followed by its duplicates."""
        return [self.primary, *self.duplicates]

    @property
    def size(self) -> int:
        return 1 + len(self.duplicates)

    @staticmethod
    def make_id(paths: List[str]) -> str:
        """Build a stable group id from member paths."""
        digest = hashlib.sha256("\n".join(sorted(paths)).encode("utf-8"))
        return f"group_{digest.hexdigest()[:16]}"


class ScanResult(BaseModel):
    """Result of scanning a directory tree."""

    image_count: int = 0
    total_size_bytes: int = 0
    images: List[ImageRecord] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    skipped_links: List[str] = Field(default_factory=list)
    cancelled: bool = False


class DuplicateResult(BaseModel):
    """Result of a duplicate search."""

    groups: List[DuplicateGroup] = Field(default_factory=list)
    total_duplicates: int = 0
    processed: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    cancelled: bool = False


class FileOutcome(BaseModel):
    """Outcome of a single file operation."""

    source: str
    destination: Optional[str] = None
    success: bool = False
    message: Optional[str] = None
    permanently_deleted: bool = False


class OperationOutcome(BaseModel):
    """Aggregate outcome of a batch file operation."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)
    results: List[FileOutcome] = Field(default_factory=list)
    permanently_deleted: List[str] = Field(default_factory=list)
    transaction_id: Optional[str] = None
    cancelled: bool = False

    def add_success(self, outcome: FileOutcome) -> None:
        self.processed += 1
        self.succeeded += 1
        self.results.append(outcome)
        if outcome.permanently_deleted:
            self.permanently_deleted.append(outcome.source)

    def add_error(self, outcome: FileOutcome) -> None:
        self.processed += 1
        self.failed += 1
        self.results.append(outcome)
        self.errors.append(f"{outcome.source}: {outcome.message}")


class SortOptions(BaseModel):
    """Options for sorting images into date folders."""

    model_config = ConfigDict(populate_by_name=True)

    group_by_day: bool = Field(default=False, alias="useDayFolder")
    use_month_names: bool = Field(default=False, alias="useMonthNames")
    verify_checksums: bool = False


class ProgressEvent(BaseModel):
    """Incremental progress notification for a batch operation."""

    model_config = ConfigDict(frozen=True)

    operation: str
    completed: int
    total: int
    path: Optional[str] = None
    success: bool = True
