"""
Thumbnail generation utilities.

Thumbnails are JPEG previews cached on disk, keyed by the source file's
path, size and modification time, so an edited file gets a fresh preview.
"""

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Tuple

from PIL import Image, ImageOps

from ..core.errors import (
    DecodeError,
    FilesystemError,
    PathNotFoundError,
    PathPermissionError,
)
from .media_utils import DECODE_ERRORS, register_heif_support

logger = logging.getLogger(__name__)

DEFAULT_THUMBNAIL_SIZE = 256
DEFAULT_THUMBNAIL_QUALITY = 85

register_heif_support()


def thumbnail_key(
    source_path: Path, size_bytes: int, modified_ns: int, size: int
) -> str:
    """Cache key for a thumbnail of one version of a file."""
    raw = f"{Path(source_path).absolute()}|{size_bytes}|{modified_ns}|{size}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def get_thumbnail_path(
    key: str,
    thumbnails_dir: Path,
    create_dir: bool = True,
) -> Path:
    """
    Get the path where a thumbnail should be stored for a given key.

    Args:
        key: Thumbnail cache key
        thumbnails_dir: Base thumbnails directory
        create_dir: Whether to create the directory if it doesn't exist

    Returns:
        Path object for the thumbnail file
    """
    # Two-level fan-out keeps directories small
    sub_dir = thumbnails_dir / key[:2]
    if create_dir:
        sub_dir.mkdir(parents=True, exist_ok=True)

    return sub_dir / f"{key}.jpg"


def generate_thumbnail(
    source_path: Path,
    output_path: Path,
    size: Tuple[int, int] = (DEFAULT_THUMBNAIL_SIZE, DEFAULT_THUMBNAIL_SIZE),
    quality: int = DEFAULT_THUMBNAIL_QUALITY,
) -> Path:
    """
    Generate a thumbnail for an image file.

    The thumbnail keeps the aspect ratio and fits within ``size``. It is
    written to a temporary file first and renamed into place, so readers
    never see a partial thumbnail.

    Args:
        source_path: Path to the source image
        output_path: Path where thumbnail should be saved (must end in .jpg)
        size: Thumbnail size as (width, height) tuple
        quality: JPEG quality (1-100, default 85)

    Returns:
        output_path

    Raises:
        PathNotFoundError: If the source does not exist
        PathPermissionError: If the source cannot be read
        DecodeError: If the source is not a readable image
        FilesystemError: If the thumbnail cannot be written
    """
    try:
        with Image.open(source_path) as img:
            if img.format == "JPEG":
                img.draft("RGB", size)
            img.load()
            # Apply EXIF orientation before any processing
            thumb = ImageOps.exif_transpose(img)

            # Convert to RGB if needed (handles RGBA, palette, greyscale, etc.)
            if thumb.mode != "RGB":
                thumb = thumb.convert("RGB")

            thumb.thumbnail(size, Image.Resampling.LANCZOS)
    except FileNotFoundError as e:
        raise PathNotFoundError(source_path) from e
    except PermissionError as e:
        raise PathPermissionError(source_path) from e
    except DECODE_ERRORS as e:
        raise DecodeError(source_path, str(e)) from e

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=".thumb-", suffix=".jpg", dir=output_path.parent
        )
        try:
            with os.fdopen(fd, "wb") as tmp:
                thumb.save(tmp, "JPEG", quality=quality, optimize=True)
            os.replace(tmp_name, output_path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        raise FilesystemError(
            output_path, f"Cannot write thumbnail {output_path}: {e}"
        ) from e

    logger.debug(f"Generated thumbnail: {output_path} (from {source_path})")
    return output_path


def get_thumbnail(
    source_path: Path,
    thumbnails_dir: Path,
    size: int = DEFAULT_THUMBNAIL_SIZE,
) -> Path:
    """
    Return the cached thumbnail of an image, generating it on first request.

    Args:
        source_path: Image file
        thumbnails_dir: Thumbnail cache directory
        size: Longest side of the thumbnail in pixels

    Returns:
        Path of the JPEG thumbnail

    Raises:
        PathNotFoundError, PathPermissionError: Source is not accessible
        DecodeError: Source is not a readable image
        FilesystemError: Thumbnail cannot be written
    """
    source = Path(source_path).absolute()
    try:
        stat = source.stat()
    except FileNotFoundError as e:
        raise PathNotFoundError(source) from e
    except PermissionError as e:
        raise PathPermissionError(source) from e

    key = thumbnail_key(source, stat.st_size, stat.st_mtime_ns, size)
    thumb_path = get_thumbnail_path(key, thumbnails_dir, create_dir=False)
    if thumb_path.exists():
        logger.debug(f"Thumbnail cache hit for {source}")
        return thumb_path

    return generate_thumbnail(source, thumb_path, size=(size, size))


def thumbnail_exists(
    source_path: Path, thumbnails_dir: Path, size: int = DEFAULT_THUMBNAIL_SIZE
) -> bool:
    """
    Check if a current thumbnail already exists for a file.

    Returns:
        True if a thumbnail for the file's current state is cached
    """
    source = Path(source_path).absolute()
    try:
        stat = source.stat()
    except OSError:
        return False
    key = thumbnail_key(source, stat.st_size, stat.st_mtime_ns, size)
    return get_thumbnail_path(key, thumbnails_dir, create_dir=False).exists()
