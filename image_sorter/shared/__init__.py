"""
Shared utilities for the image sorter.

File type detection, checksums, logging setup and thumbnails, used by the
analysis and organization packages alike.
"""

from .media_utils import (
    # File type detection
    IMAGE_EXTENSIONS,
    detect_signature,
    is_image_file,
    read_signature,
    # File operations
    compute_checksum,
    format_bytes,
    # Logging
    setup_logging,
)
from .thumbnail_utils import generate_thumbnail, get_thumbnail

__all__ = [
    # Constants
    "IMAGE_EXTENSIONS",
    # Functions
    "detect_signature",
    "is_image_file",
    "read_signature",
    "compute_checksum",
    "format_bytes",
    "setup_logging",
    "generate_thumbnail",
    "get_thumbnail",
]
