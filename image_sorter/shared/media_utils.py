"""
Media file utilities for the image sorter.

File type detection, magic-signature checks, checksums, formatting and
logging setup.
"""

import hashlib
import logging
from pathlib import Path
from typing import Dict, Optional, Set, Tuple

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Supported file extensions
IMAGE_EXTENSIONS: Set[str] = {
    ".jpg",
    ".jpeg",
    ".png",
    ".gif",
    ".bmp",
    ".webp",
    ".tiff",
    ".tif",
    ".ico",
    ".heic",
    ".heif",
}

# Leading bytes identifying each container
MAGIC_SIGNATURES: Dict[str, Tuple[bytes, ...]] = {
    "JPEG": (b"\xff\xd8\xff",),
    "PNG": (b"\x89PNG\r\n\x1a\n",),
    "GIF": (b"GIF87a", b"GIF89a"),
    "BMP": (b"BM",),
    "TIFF": (b"II*\x00", b"MM\x00*"),
    "ICO": (b"\x00\x00\x01\x00",),
}

# ISO-BMFF brands used by HEIC/HEIF files
HEIF_BRANDS: Set[bytes] = {
    b"heic",
    b"heix",
    b"hevc",
    b"hevx",
    b"heim",
    b"heis",
    b"mif1",
    b"msf1",
    b"avif",
}

CHUNK_SIZE = 1024 * 1024

# Exceptions Pillow raises for corrupt, truncated or unsupported data
DECODE_ERRORS = (
    UnidentifiedImageError,
    Image.DecompressionBombError,
    OSError,
    ValueError,
    SyntaxError,
)


def is_image_file(file_path: Path) -> bool:
    """
    Check if a file is an image based on extension.

    Args:
        file_path: Path to check

    Returns:
        True if image file, False otherwise
    """
    return file_path.suffix.lower() in IMAGE_EXTENSIONS


def detect_signature(header: bytes) -> Optional[str]:
    """
    Identify an image container from its leading bytes.

    Args:
        header: At least the first 16 bytes of the file

    Returns:
        Container name ("JPEG", "PNG", "WEBP", "HEIF", ...) or None
    """
    for name, signatures in MAGIC_SIGNATURES.items():
        if any(header.startswith(sig) for sig in signatures):
            return name

    if header[:4] == b"RIFF" and header[8:12] == b"WEBP":
        return "WEBP"

    if header[4:8] == b"ftyp" and header[8:12] in HEIF_BRANDS:
        return "HEIF"

    return None


def read_signature(file_path: Path) -> Optional[str]:
    """
    Read the header of a file and identify its container.

    Raises:
        OSError: If the file cannot be opened
    """
    with open(file_path, "rb") as f:
        header = f.read(16)
    return detect_signature(header)


def compute_checksum(file_path: Path, algorithm: str = "sha256") -> str:
    """
    Compute cryptographic checksum of a file using chunked reads.

    Args:
        file_path: Path to the file
        algorithm: Hash algorithm (sha256, md5, etc.)

    Returns:
        Hexadecimal checksum string

    Raises:
        OSError: If the file cannot be read
    """
    hash_obj = hashlib.new(algorithm)

    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hash_obj.update(chunk)

    return hash_obj.hexdigest()


def format_bytes(size_bytes: int) -> str:
    """
    Format bytes in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "2.50 GB")
    """
    if size_bytes == 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    unit_index = 0
    size = float(size_bytes)

    while size >= 1024.0 and unit_index < len(units) - 1:
        size /= 1024.0
        unit_index += 1

    return f"{size:.2f} {units[unit_index]}"


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, set logging level to DEBUG
        quiet: If True, set logging level to WARNING
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


_heif_registered: Optional[bool] = None


def register_heif_support() -> bool:
    """
    Register the pillow-heif opener with Pillow when it is installed.

    Returns:
        True if HEIC/HEIF files can be decoded
    """
    global _heif_registered
    if _heif_registered is not None:
        return _heif_registered

    try:
        from pillow_heif import register_heif_opener

        register_heif_opener()
        _heif_registered = True
        logger.debug("HEIC support registered")
    except ImportError:
        _heif_registered = False
        logger.debug("pillow-heif not installed, HEIC files will not be decoded")

    return _heif_registered
