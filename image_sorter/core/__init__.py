"""Core types, configuration, errors and concurrency primitives."""

from .concurrency import CancellationToken, ProgressReporter
from .config import Settings
from .errors import (
    CacheError,
    ConfigurationError,
    DecodeError,
    FilesystemError,
    ImageSorterError,
    InvalidTargetError,
    InvalidThresholdError,
    PathError,
    PathNotFoundError,
    PathPermissionError,
)
from .types import (
    DuplicateGroup,
    DuplicateResult,
    FileOutcome,
    HashAlgorithm,
    HashSet,
    ImageRecord,
    OperationOutcome,
    PrimaryPolicy,
    ProgressEvent,
    ScanResult,
    SortOptions,
    TransferMethod,
)

__all__ = [
    "CancellationToken",
    "ProgressReporter",
    "Settings",
    "CacheError",
    "ConfigurationError",
    "DecodeError",
    "FilesystemError",
    "ImageSorterError",
    "InvalidTargetError",
    "InvalidThresholdError",
    "PathError",
    "PathNotFoundError",
    "PathPermissionError",
    "DuplicateGroup",
    "DuplicateResult",
    "FileOutcome",
    "HashAlgorithm",
    "HashSet",
    "ImageRecord",
    "OperationOutcome",
    "PrimaryPolicy",
    "ProgressEvent",
    "ScanResult",
    "SortOptions",
    "TransferMethod",
]
