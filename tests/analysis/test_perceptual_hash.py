"""
Tests for perceptual hashing module.
"""

import os
from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from image_sorter.analysis.perceptual_hash import (
    HASH_FUNCTIONS,
    HashEngine,
    ahash,
    dhash,
    hamming_distance,
    load_image_for_hashing,
    phash,
    similarity_score,
    whash,
)
from image_sorter.core.config import Settings
from image_sorter.core.errors import DecodeError, PathNotFoundError
from image_sorter.core.types import HashAlgorithm


def hash_file(func, path: Path, hash_size: int = 8) -> str:
    return func(load_image_for_hashing(path, hash_size), hash_size)


class TestLoadImage:
    """Tests for decoding images before hashing."""

    def test_returns_greyscale(self, sample_image: Path) -> None:
        """Test that images are converted to mode L."""
        img = load_image_for_hashing(sample_image)
        assert img.mode == "L"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(PathNotFoundError):
            load_image_for_hashing(tmp_path / "missing.jpg")

    def test_corrupt_file(self, corrupt_image: Path) -> None:
        """Test that undecodable data raises DecodeError."""
        with pytest.raises(DecodeError) as exc_info:
            load_image_for_hashing(corrupt_image)
        assert exc_info.value.path == corrupt_image

    def test_truncated_file(self, truncate_image) -> None:
        """Test that missing pixel data is an error, not grey fill."""
        path = truncate_image("truncated.jpg")

        with pytest.raises(DecodeError) as exc_info:
            load_image_for_hashing(path)
        assert exc_info.value.path == path


class TestHashFunctions:
    """Tests shared by all four hash algorithms."""

    @pytest.mark.parametrize("algorithm", list(HashAlgorithm))
    def test_hash_length(self, algorithm: HashAlgorithm, sample_image: Path) -> None:
        """Test that an 8x8 hash is 16 hex digits."""
        hash_val = hash_file(HASH_FUNCTIONS[algorithm], sample_image)
        assert isinstance(hash_val, str)
        assert len(hash_val) == 16
        int(hash_val, 16)

    @pytest.mark.parametrize("algorithm", list(HashAlgorithm))
    def test_hash_length_larger_grid(
        self, algorithm: HashAlgorithm, sample_image: Path
    ) -> None:
        """Test that a 16x16 hash is 64 hex digits."""
        hash_val = hash_file(HASH_FUNCTIONS[algorithm], sample_image, hash_size=16)
        assert len(hash_val) == 64

    @pytest.mark.parametrize("algorithm", list(HashAlgorithm))
    def test_identical_images(self, algorithm: HashAlgorithm, make_image) -> None:
        """Test that identical images produce same hash."""
        img1 = make_image("img1.png", seed=3)
        img2 = make_image("img2.png", seed=3)

        func = HASH_FUNCTIONS[algorithm]
        assert hash_file(func, img1) == hash_file(func, img2)

    @pytest.mark.parametrize("algorithm", list(HashAlgorithm))
    def test_different_images(self, algorithm: HashAlgorithm, make_image) -> None:
        """Test that different patterns are far apart."""
        img1 = make_image("img1.png", seed=1)
        img2 = make_image("img2.png", seed=2)

        func = HASH_FUNCTIONS[algorithm]
        assert hamming_distance(hash_file(func, img1), hash_file(func, img2)) > 10

    @pytest.mark.parametrize("algorithm", [HashAlgorithm.AHASH, HashAlgorithm.PHASH])
    def test_different_sizes_same_content(
        self, algorithm: HashAlgorithm, make_image
    ) -> None:
        """Test that a resized copy hashes within a small distance."""
        small = make_image("small.png", seed=4, size=256)
        large = make_image("large.png", seed=4, size=512)

        func = HASH_FUNCTIONS[algorithm]
        assert hamming_distance(hash_file(func, small), hash_file(func, large)) <= 2

    def test_solid_image_ahash(self) -> None:
        """Test that a uniform image has no bits above the mean."""
        img = Image.new("L", (64, 64), color=128)
        assert ahash(img) == "0" * 16

    def test_solid_image_dhash(self) -> None:
        img = Image.new("L", (64, 64), color=128)
        assert dhash(img) == "0" * 16

    def test_dhash_gradient_direction(self) -> None:
        """Test that a left-to-right brightening gradient sets every bit."""
        ramp = np.tile(np.arange(256, dtype=np.uint8), (64, 1))
        img = Image.fromarray(ramp)
        assert dhash(img) == "f" * 16
        assert dhash(img.transpose(Image.Transpose.FLIP_LEFT_RIGHT)) == "0" * 16

    def test_functions_registered(self) -> None:
        assert HASH_FUNCTIONS[HashAlgorithm.AHASH] is ahash
        assert HASH_FUNCTIONS[HashAlgorithm.DHASH] is dhash
        assert HASH_FUNCTIONS[HashAlgorithm.PHASH] is phash
        assert HASH_FUNCTIONS[HashAlgorithm.WHASH] is whash


class TestHammingDistance:
    """Tests for Hamming distance calculation."""

    def test_identical(self) -> None:
        assert hamming_distance("abcd1234abcd1234", "abcd1234abcd1234") == 0

    def test_counts_bits(self) -> None:
        """Test that each differing bit counts once."""
        assert hamming_distance("0000", "000f") == 4
        assert hamming_distance("0000", "ffff") == 16
        assert hamming_distance("8000", "0001") == 2

    def test_symmetric(self) -> None:
        assert hamming_distance("12ab", "ff00") == hamming_distance("ff00", "12ab")

    def test_length_mismatch(self) -> None:
        """Test that different hash lengths are rejected."""
        with pytest.raises(ValueError, match="same length"):
            hamming_distance("0000", "000000")


class TestSimilarityScore:
    """Tests for similarity percentage."""

    def test_identical(self) -> None:
        assert similarity_score("0" * 16, "0" * 16) == 100.0

    def test_opposite(self) -> None:
        assert similarity_score("0" * 16, "f" * 16) == 0.0

    def test_half(self) -> None:
        assert similarity_score("0" * 16, "ffffffff00000000") == 50.0


class TestHashEngine:
    """Tests for HashEngine with and without a cache."""

    def test_compute(self, settings: Settings, sample_image: Path) -> None:
        """Test that compute returns a fully populated HashSet."""
        engine = HashEngine(settings)
        hash_set = engine.compute(sample_image)

        assert hash_set.algorithm == settings.hash_algorithm
        assert hash_set.hash_size == 8
        assert hash_set.bits == 64
        assert len(hash_set.content_hash) == 64
        assert len(hash_set.perceptual_hash) == 16
        assert hash_set.algorithm_version == settings.algorithm_version

    def test_algorithm_from_settings(self, tmp_path: Path, sample_image: Path) -> None:
        settings = Settings(state_dir=tmp_path, hash_algorithm=HashAlgorithm.PHASH)
        hash_set = HashEngine(settings).compute(sample_image)

        assert hash_set.algorithm == HashAlgorithm.PHASH
        assert hash_set.perceptual_hash == hash_file(phash, sample_image)
        assert hash_set.algorithm_version.startswith("phash-8-")

    def test_compute_missing(self, settings: Settings, tmp_path: Path) -> None:
        with pytest.raises(PathNotFoundError):
            HashEngine(settings).compute(tmp_path / "missing.jpg")

    def test_compute_corrupt(self, settings: Settings, corrupt_image: Path) -> None:
        with pytest.raises(DecodeError):
            HashEngine(settings).compute(corrupt_image)

    def test_cache_miss_then_hit(
        self, settings: Settings, hash_cache, sample_image: Path
    ) -> None:
        """Test that the second lookup is served from the cache."""
        engine = HashEngine(settings, hash_cache)

        first = engine.hash_path(sample_image)
        second = engine.hash_path(sample_image)

        assert first == second
        assert hash_cache.stats == {"hits": 1, "misses": 1}
        assert str(sample_image.absolute()) in hash_cache.paths()

    def test_cached_equals_fresh(
        self, settings: Settings, hash_cache, sample_image: Path
    ) -> None:
        """Test that a cache hit returns exactly what a fresh compute would."""
        engine = HashEngine(settings, hash_cache)
        engine.hash_path(sample_image)

        assert engine.hash_path(sample_image) == engine.compute(sample_image)

    def test_modified_file_recomputed(
        self, settings: Settings, hash_cache, make_image
    ) -> None:
        """Test that a file changed after caching is hashed again."""
        path = make_image("changing.png", seed=1)
        engine = HashEngine(settings, hash_cache)
        before = engine.hash_path(path)

        make_image("changing.png", seed=2)
        stat = path.stat()
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 10**9))
        after = engine.hash_path(path)

        assert hash_cache.stats["misses"] == 2
        assert after.content_hash != before.content_hash
        assert after == engine.compute(path)

    def test_hash_path_missing_with_cache(
        self, settings: Settings, hash_cache, tmp_path: Path
    ) -> None:
        with pytest.raises(PathNotFoundError):
            HashEngine(settings, hash_cache).hash_path(tmp_path / "missing.jpg")
