"""Analysis modules for image scanning, hashing and duplicate detection."""

from .duplicate_detector import DuplicateDetector, UnionFind
from .hash_cache import HashCache
from .metadata import MetadataExtractor
from .perceptual_hash import HashEngine, hamming_distance
from .scanner import ImageScanner

__all__ = [
    "DuplicateDetector",
    "HashCache",
    "HashEngine",
    "ImageScanner",
    "MetadataExtractor",
    "UnionFind",
    "hamming_distance",
]
