"""
Exception hierarchy for the image sorter engine.

Per-file errors (decode, filesystem) are recorded in batch outcomes;
configuration errors abort a call before any per-file work starts.
"""

from pathlib import Path
from typing import Optional, Union


class ImageSorterError(Exception):
    """Base class for all engine errors."""


class PathError(ImageSorterError):
    """A path could not be accessed."""

    def __init__(self, path: Union[str, Path], message: Optional[str] = None):
        self.path = Path(path)
        super().__init__(message or f"Cannot access path: {path}")


class PathNotFoundError(PathError, FileNotFoundError):
    """A path does not exist."""

    def __init__(self, path: Union[str, Path], message: Optional[str] = None):
        super().__init__(path, message or f"Path does not exist: {path}")


class PathPermissionError(PathError, PermissionError):
    """A path exists but cannot be read or written."""

    def __init__(self, path: Union[str, Path], message: Optional[str] = None):
        super().__init__(path, message or f"Permission denied: {path}")


class DecodeError(ImageSorterError):
    """Image data is corrupt or in an unsupported format."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot decode {path}: {reason}")


class CacheError(ImageSorterError):
    """The hash cache store could not be read or written."""


class FilesystemError(ImageSorterError):
    """A move, copy or delete operation failed."""

    def __init__(self, path: Union[str, Path], message: str):
        self.path = Path(path)
        super().__init__(message)


class ConfigurationError(ImageSorterError, ValueError):
    """Invalid arguments for a whole call."""


class InvalidThresholdError(ConfigurationError):
    """Similarity threshold is outside the valid range."""

    def __init__(self, threshold: int, max_bits: int):
        self.threshold = threshold
        self.max_bits = max_bits
        super().__init__(
            f"Threshold must be between 0 and {max_bits}, got {threshold}"
        )


class InvalidTargetError(ConfigurationError):
    """Destination directory is missing or is not a directory."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(f"Target directory does not exist: {path}")
