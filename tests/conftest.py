"""
Pytest configuration and fixtures for image_sorter tests.
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Callable, Generator, Optional

import numpy as np
import pytest
from PIL import ExifTags, Image

from image_sorter.analysis.hash_cache import HashCache
from image_sorter.core.config import Settings
from image_sorter.engine import ImageSorterEngine

# ==============================================================================
# Image builders
# ==============================================================================


def pattern_image(seed: int = 0, size: int = 256) -> Image.Image:
    """
    Build a high-contrast 8x8 block pattern.

    Blocks are either dark or light, so downscaled copies keep every block
    far from the mean. A shallow diagonal ramp avoids flat regions.
    """
    rng = np.random.default_rng(seed)
    mask = rng.integers(0, 2, size=(8, 8))
    # Guarantee both values appear
    mask[0, 0], mask[0, 1] = 0, 1
    blocks = Image.fromarray(np.where(mask == 1, 200, 40).astype(np.uint8))
    blocks = blocks.resize((size, size), Image.Resampling.NEAREST)

    ramp = np.linspace(0, 30, size)[None, :] + np.linspace(0, 13, size)[:, None]
    pixels = np.asarray(blocks, dtype=np.float64) + ramp
    return Image.fromarray(pixels.astype(np.uint8)).convert("RGB")


def exif_with_date(date: str) -> Image.Exif:
    """EXIF block carrying an IFD0 DateTime tag."""
    exif = Image.Exif()
    exif[ExifTags.Base.DateTime] = date
    return exif


@pytest.fixture
def make_image(tmp_path: Path) -> Callable[..., Path]:
    """
    Factory writing a pattern image.

    Args (of the returned callable):
        name: File name, relative to tmp_path
        seed: Pattern seed; equal seeds give pixel-identical images
        size: Edge length in pixels
        exif_date: Optional "YYYY:MM:DD HH:MM:SS" stored as EXIF DateTime
        mtime: Optional modification time to set on the file
    """

    def _make(
        name: str,
        seed: int = 0,
        size: int = 256,
        exif_date: Optional[str] = None,
        mtime: Optional[datetime] = None,
    ) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        img = pattern_image(seed, size)
        fmt = "PNG" if path.suffix.lower() == ".png" else "JPEG"
        kwargs = {}
        if exif_date is not None:
            kwargs["exif"] = exif_with_date(exif_date)
        img.save(path, fmt, **kwargs)
        if mtime is not None:
            timestamp = mtime.timestamp()
            os.utime(path, (timestamp, timestamp))
        return path

    return _make


@pytest.fixture
def sample_image(make_image: Callable[..., Path]) -> Path:
    """Create a simple test image."""
    return make_image("sample.jpg")


@pytest.fixture
def corrupt_image(tmp_path: Path) -> Path:
    """File with an image extension but no image data."""
    path = tmp_path / "corrupt.jpg"
    path.write_bytes(b"this is not really a jpeg" * 10)
    return path


@pytest.fixture
def truncate_image(make_image):
    """Factory for JPEGs cut off halfway through the compressed data."""

    def _truncate(name: str, seed: int = 0) -> Path:
        path = make_image(name, seed=seed)
        data = path.read_bytes()
        path.write_bytes(data[: len(data) // 2])
        return path

    return _truncate


# ==============================================================================
# Engine fixtures
# ==============================================================================


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with state kept inside the test's temporary directory."""
    return Settings(
        state_dir=tmp_path / "state",
        hash_workers=2,
        io_workers=2,
        batch_workers=2,
    )


@pytest.fixture
def hash_cache(settings: Settings) -> Generator[HashCache, None, None]:
    cache = HashCache(settings.cache_path, settings.algorithm_version)
    yield cache
    cache.close()


@pytest.fixture
def engine(settings: Settings) -> Generator[ImageSorterEngine, None, None]:
    with ImageSorterEngine(settings) as sorter_engine:
        yield sorter_engine
