"""
image-sorter: find duplicate images and sort photos into date folders.
"""

from .core import (
    CancellationToken,
    DuplicateGroup,
    DuplicateResult,
    HashAlgorithm,
    ImageRecord,
    ImageSorterError,
    OperationOutcome,
    PrimaryPolicy,
    ScanResult,
    Settings,
    SortOptions,
    TransferMethod,
)
from .engine import ImageSorterEngine
from .version import __version__

__all__ = [
    "__version__",
    "CancellationToken",
    "DuplicateGroup",
    "DuplicateResult",
    "HashAlgorithm",
    "ImageRecord",
    "ImageSorterEngine",
    "ImageSorterError",
    "OperationOutcome",
    "PrimaryPolicy",
    "ScanResult",
    "Settings",
    "SortOptions",
    "TransferMethod",
]
