"""
Perceptual hashing for duplicate image detection.

Implements multiple perceptual hashing algorithms:
- aHash (average hash): Mean-based, fastest, least robust
- dHash (difference hash): Gradient-based, robust to brightness shifts
- pHash (DCT hash): Frequency-based, most robust to scaling, most expensive
- wHash (wavelet hash): DWT-based, robust to compression and gamma changes

Each algorithm reduces an image to a small greyscale grid, so visually
similar images produce hashes with a small Hamming distance even if they
differ in size, format or compression.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

import numpy as np
import pywt
from PIL import Image, ImageOps
from scipy.fft import dct

from ..core.config import Settings
from ..core.errors import DecodeError, PathNotFoundError, PathPermissionError
from ..core.types import HashAlgorithm, HashSet, ImageRecord
from ..shared.media_utils import (
    DECODE_ERRORS,
    compute_checksum,
    register_heif_support,
)

logger = logging.getLogger(__name__)

register_heif_support()


def load_image_for_hashing(image_path: Path, hash_size: int = 8) -> Image.Image:
    """
    Decode an image as a greyscale image ready for downscaling.

    JPEG files are decoded in draft mode at a reduced scale, which bounds
    memory and time for very large photos. EXIF orientation is applied so
    rotated copies of the same picture hash alike.

    Args:
        image_path: Path to the image file
        hash_size: Hash grid size, used to bound the draft decode

    Returns:
        Greyscale PIL image

    Raises:
        PathNotFoundError: If the file does not exist
        PathPermissionError: If the file cannot be read
        DecodeError: If the data is corrupt or unsupported
    """
    try:
        with Image.open(image_path) as img:
            if img.format == "JPEG":
                min_side = hash_size * 8
                img.draft("L", (min_side, min_side))
            img.load()
            img = ImageOps.exif_transpose(img)
            return img.convert("L")
    except FileNotFoundError as e:
        raise PathNotFoundError(image_path) from e
    except PermissionError as e:
        raise PathPermissionError(image_path) from e
    except DECODE_ERRORS as e:
        error_str = str(e)
        if "truncated" in error_str.lower():
            logger.warning(f"Truncated image {image_path}: {e}")
        raise DecodeError(image_path, error_str) from e


def _bits_to_hex(bits: List[bool]) -> str:
    """
    Convert a list of boolean values to a hexadecimal string.

    Args:
        bits: List of boolean values

    Returns:
        Hexadecimal string, zero-padded to len(bits) / 4 digits
    """
    binary_str = "".join("1" if b else "0" for b in bits)
    hex_value = hex(int(binary_str, 2))[2:]

    expected_length = (len(bits) + 3) // 4
    return hex_value.zfill(expected_length)


def ahash(img: Image.Image, hash_size: int = 8) -> str:
    """
    Calculate average hash (aHash) of a greyscale image.

    Each cell of a hash_size x hash_size grid is 1 if brighter than the
    grid mean.

    Returns:
        Hexadecimal string representation of the hash
    """
    small = img.resize((hash_size, hash_size), Image.Resampling.LANCZOS)
    pixels = np.asarray(small, dtype=np.float64)
    avg = pixels.mean()
    return _bits_to_hex(list((pixels > avg).flatten()))


def dhash(img: Image.Image, hash_size: int = 8) -> str:
    """
    Calculate difference hash (dHash) of a greyscale image.

    The image is resized to (hash_size + 1) x hash_size and each cell is
    compared to its right-hand neighbour, so uniform brightness shifts do
    not change the hash.

    Returns:
        Hexadecimal string representation of the hash
    """
    small = img.resize((hash_size + 1, hash_size), Image.Resampling.LANCZOS)
    pixels = np.asarray(small, dtype=np.int16)
    diff = pixels[:, :-1] < pixels[:, 1:]
    return _bits_to_hex(list(diff.flatten()))


def phash(img: Image.Image, hash_size: int = 8, highfreq_factor: int = 4) -> str:
    """
    Calculate DCT-based perceptual hash (pHash) of a greyscale image.

    A 2-D discrete cosine transform of a (hash_size * highfreq_factor)
    square grid is computed; the top-left hash_size x hash_size block of
    low-frequency coefficients is thresholded against its median.

    Returns:
        Hexadecimal string representation of the hash
    """
    img_size = hash_size * highfreq_factor
    small = img.resize((img_size, img_size), Image.Resampling.LANCZOS)
    pixels = np.asarray(small, dtype=np.float64)

    coeffs = dct(dct(pixels, axis=0, norm="ortho"), axis=1, norm="ortho")
    low_freq = coeffs[:hash_size, :hash_size]
    median = np.median(low_freq)
    return _bits_to_hex(list((low_freq > median).flatten()))


def whash(img: Image.Image, hash_size: int = 8, mode: str = "haar") -> str:
    """
    Calculate wavelet hash (wHash) of a greyscale image.

    A single-level 2-D DWT of a (2 * hash_size) square grid yields a
    hash_size x hash_size approximation band, thresholded against its
    median.

    Returns:
        Hexadecimal string representation of the hash
    """
    img_size = hash_size * 2
    small = img.resize((img_size, img_size), Image.Resampling.LANCZOS)
    pixels = np.asarray(small, dtype=np.float64) / 255.0

    ll, _details = pywt.dwt2(pixels, mode)
    median = np.median(ll)
    return _bits_to_hex(list((ll > median).flatten()))


HASH_FUNCTIONS: Dict[HashAlgorithm, Callable[[Image.Image, int], str]] = {
    HashAlgorithm.AHASH: ahash,
    HashAlgorithm.DHASH: dhash,
    HashAlgorithm.PHASH: phash,
    HashAlgorithm.WHASH: whash,
}


def hamming_distance(hash1: str, hash2: str) -> int:
    """
    Calculate Hamming distance between two hashes.

    Similarity thresholds (for 64-bit hashes):
    - 0-5: Very similar (likely duplicates or minor edits)
    - 6-10: Similar (same subject, different crop/exposure)
    - 11+: Likely different images

    Args:
        hash1: First hash (hex string)
        hash2: Second hash (hex string)

    Returns:
        Number of differing bits

    Raises:
        ValueError: If the hashes have different lengths
    """
    if len(hash1) != len(hash2):
        raise ValueError("Hashes must be the same length")

    xor = int(hash1, 16) ^ int(hash2, 16)
    return bin(xor).count("1")


def similarity_score(hash1: str, hash2: str, hash_size: int = 8) -> float:
    """
    Calculate similarity score between two hashes as a percentage.

    Returns:
        Similarity percentage (0-100, where 100 is identical)
    """
    distance = hamming_distance(hash1, hash2)
    max_distance = hash_size * hash_size
    return (1 - (distance / max_distance)) * 100


class HashEngine:
    """
    Compute HashSets for images, consulting an optional hash cache.

    The algorithm and grid size are fixed per engine; the resulting
    algorithm_version tags every cached entry.
    """

    def __init__(self, settings: Optional[Settings] = None, cache=None):
        """
        Initialize the hash engine.

        Args:
            settings: Engine settings (algorithm, hash size)
            cache: Optional HashCache shared between workers
        """
        self.settings = settings or Settings()
        self.algorithm = HashAlgorithm(self.settings.hash_algorithm)
        self.hash_size = self.settings.hash_size
        self.algorithm_version = self.settings.algorithm_version
        self.cache = cache
        self._hash_function = HASH_FUNCTIONS[self.algorithm]

    def compute(self, image_path: Path) -> HashSet:
        """
        Compute a fresh HashSet for a file, bypassing the cache.

        Raises:
            PathNotFoundError, PathPermissionError: File is not accessible
            DecodeError: Image data is corrupt or unsupported
        """
        path = Path(image_path)
        img = load_image_for_hashing(path, self.hash_size)

        try:
            content_hash = compute_checksum(path)
        except FileNotFoundError as e:
            raise PathNotFoundError(path) from e
        except PermissionError as e:
            raise PathPermissionError(path) from e

        try:
            perceptual = self._hash_function(img, self.hash_size)
        except (ValueError, OSError) as e:
            raise DecodeError(path, f"{self.algorithm.value} computation: {e}") from e

        return HashSet(
            content_hash=content_hash,
            perceptual_hash=perceptual,
            algorithm=self.algorithm,
            hash_size=self.hash_size,
            algorithm_version=self.algorithm_version,
        )

    def hash_record(self, record: ImageRecord) -> HashSet:
        """
        Get the HashSet for a scanned image, using the cache when valid.

        The cache key is taken from the file's current state, so a file
        modified after the scan is recomputed.

        Raises:
            PathNotFoundError, PathPermissionError: File is not accessible
            DecodeError: Image data is corrupt or unsupported
        """
        return self.hash_path(record.path)

    def hash_path(self, image_path: Path) -> HashSet:
        """Cache-aware variant of compute() for a bare path."""
        path = Path(image_path).absolute()
        if self.cache is None:
            return self.compute(path)

        try:
            stat = path.stat()
        except FileNotFoundError as e:
            raise PathNotFoundError(path) from e
        except PermissionError as e:
            raise PathPermissionError(path) from e

        cached = self.cache.get(path, stat.st_size, stat.st_mtime_ns)
        if cached is not None:
            return cached

        hash_set = self.compute(path)
        self.cache.put(path, stat.st_size, stat.st_mtime_ns, hash_set)
        return hash_set
