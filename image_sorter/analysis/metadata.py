"""
Metadata extraction from images.

Extracts size, dimensions, format, orientation and the embedded creation
timestamp of one file.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import arrow
from PIL import ExifTags, Image

from ..core.errors import DecodeError, PathNotFoundError, PathPermissionError
from ..core.types import ImageRecord
from ..shared.media_utils import DECODE_ERRORS, register_heif_support

logger = logging.getLogger(__name__)

register_heif_support()

# EXIF date tags in priority order
DATE_TAGS = [
    ("DateTimeOriginal", ExifTags.Base.DateTimeOriginal, True),
    ("DateTimeDigitized", ExifTags.Base.DateTimeDigitized, True),
    ("DateTime", ExifTags.Base.DateTime, False),
]

# Selected IFD0 tags kept on the record
IFD0_TAGS = {
    "Make": ExifTags.Base.Make,
    "Model": ExifTags.Base.Model,
    "Software": ExifTags.Base.Software,
}

EXIF_DATE_FORMATS = [
    "YYYY:MM:DD HH:mm:ssZZ",
    "YYYY:MM:DD HH:mm:ss",
    "YYYY-MM-DD HH:mm:ss",
    "YYYY:MM:DD",
    "YYYY-MM-DD",
]


def parse_exif_date(date_str: str) -> Optional[datetime]:
    """
    Parse an EXIF date string to a naive datetime.

    Placeholder values like "0000:00:00 00:00:00" return None.
    """
    date_str = date_str.strip().rstrip("\x00")
    if not date_str:
        return None

    for fmt in EXIF_DATE_FORMATS:
        try:
            parsed = arrow.get(date_str, fmt, normalize_whitespace=True)
            return parsed.naive
        except (arrow.ParserError, ValueError):
            continue

    return None


class MetadataExtractor:
    """Extract metadata from image files."""

    def extract(self, file_path: Path) -> ImageRecord:
        """
        Read one file into an ImageRecord.

        Only the image header is decoded; pixel data is not loaded.

        Args:
            file_path: Path to the image file

        Returns:
            ImageRecord for the file

        Raises:
            PathNotFoundError: If the file does not exist
            PathPermissionError: If the file cannot be read
            DecodeError: If the file is not a readable image
        """
        path = Path(file_path).absolute()
        stat = self._stat(path)

        try:
            with Image.open(path) as img:
                width, height = img.size
                image_format = img.format
                exif = self._read_exif(img)
        except PermissionError as e:
            raise PathPermissionError(path) from e
        except FileNotFoundError as e:
            raise PathNotFoundError(path) from e
        except DECODE_ERRORS as e:
            raise DecodeError(path, str(e)) from e

        return ImageRecord(
            path=path,
            filename=path.name,
            extension=path.suffix.lower().lstrip("."),
            size_bytes=stat.st_size,
            width=width,
            height=height,
            format=image_format,
            created_at=self._select_creation_date(exif),
            modified_at=datetime.fromtimestamp(stat.st_mtime),
            orientation=self._parse_int(exif.get("Orientation")),
            exif={k: v for k, v in exif.items() if k != "Orientation"},
        )

    def read_creation_date(self, file_path: Path) -> datetime:
        """
        Get the creation date of a file.

        Uses the embedded EXIF date when present, otherwise the filesystem
        modification time. Works on any file, not only images.

        Raises:
            PathNotFoundError: If the file does not exist
            PathPermissionError: If the file cannot be read
        """
        path = Path(file_path)
        stat = self._stat(path)

        exif_date = self.read_exif_date(path)
        if exif_date is not None:
            return exif_date

        return datetime.fromtimestamp(stat.st_mtime)

    def read_exif_date(self, file_path: Path) -> Optional[datetime]:
        """Read the embedded creation date, or None if there is none."""
        try:
            with Image.open(file_path) as img:
                return self._select_creation_date(self._read_exif(img))
        except DECODE_ERRORS as e:
            logger.debug(f"No EXIF date for {file_path}: {e}")
            return None

    def _stat(self, path: Path) -> os.stat_result:
        try:
            return path.stat()
        except FileNotFoundError as e:
            raise PathNotFoundError(path) from e
        except PermissionError as e:
            raise PathPermissionError(path) from e

    def _read_exif(self, img: Image.Image) -> Dict[str, Any]:
        """Collect date, orientation and camera tags from an open image."""
        result: Dict[str, Any] = {}
        try:
            exif = img.getexif()
        except Exception as e:
            logger.debug(f"Unreadable EXIF block: {e}")
            return result

        if not exif:
            return result

        try:
            exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
        except Exception as e:
            logger.debug(f"Unreadable EXIF sub-IFD: {e}")
            exif_ifd = {}

        for name, tag, in_sub_ifd in DATE_TAGS:
            value = exif_ifd.get(tag) if in_sub_ifd else exif.get(tag)
            if value is None and in_sub_ifd:
                # Some writers put the dates in IFD0
                value = exif.get(tag)
            if value:
                result[name] = str(value)

        orientation = exif.get(ExifTags.Base.Orientation)
        if orientation is not None:
            result["Orientation"] = orientation

        for name, tag in IFD0_TAGS.items():
            value = exif.get(tag)
            if value:
                result[name] = str(value).strip().rstrip("\x00")

        return result

    def _select_creation_date(self, exif: Dict[str, Any]) -> Optional[datetime]:
        """Pick the first parseable date in priority order."""
        for name, _tag, _in_sub_ifd in DATE_TAGS:
            if name in exif:
                parsed = parse_exif_date(exif[name])
                if parsed is not None:
                    return parsed
        return None

    def _parse_int(self, value: Any) -> Optional[int]:
        if value is None:
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None
