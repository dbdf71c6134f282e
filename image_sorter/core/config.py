"""Engine configuration."""

import os
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import HashAlgorithm, PrimaryPolicy

# Bumped whenever a hash implementation changes its output
HASH_REVISION = 1


class Settings(BaseSettings):
    """Settings loaded from environment variables (IMAGE_SORTER_*)."""

    # Persistent state (hash cache, thumbnails, transaction logs)
    state_dir: Path = Field(default_factory=lambda: Path.home() / ".image_sorter")

    # Hashing
    hash_algorithm: HashAlgorithm = HashAlgorithm.DHASH
    hash_size: int = Field(default=8, ge=2, le=32)
    similarity_threshold: int = Field(default=5, ge=0)

    # Worker pools
    hash_workers: Optional[int] = Field(default=None, ge=1)  # None = CPU count
    io_workers: int = Field(default=8, ge=1)
    batch_workers: int = Field(default=2, ge=1)

    # Progress queue bound; oldest events are dropped when full
    progress_queue_size: int = Field(default=256, ge=1)

    # Grouping
    primary_policy: PrimaryPolicy = PrimaryPolicy.EARLIEST_CREATED
    bucket_prefix_bits: int = Field(default=0, ge=0, le=16)  # 0 = exhaustive

    thumbnail_size: int = Field(default=256, ge=16)
    permanent_delete_fallback: bool = True
    follow_symlinks: bool = True
    cache_lock_shards: int = Field(default=64, ge=1)

    model_config = SettingsConfigDict(
        env_prefix="IMAGE_SORTER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def cache_path(self) -> Path:
        """SQLite file holding the hash cache."""
        return self.state_dir / "hash_cache.db"

    @property
    def thumbnail_dir(self) -> Path:
        return self.state_dir / "thumbnails"

    @property
    def transaction_dir(self) -> Path:
        return self.state_dir / "transactions"

    @property
    def effective_hash_workers(self) -> int:
        """Hash pool size, bounded by available CPU cores."""
        return self.hash_workers or os.cpu_count() or 4

    @property
    def hash_bits(self) -> int:
        return self.hash_size * self.hash_size

    @property
    def algorithm_version(self) -> str:
        """Cache version tag; any change invalidates every cached entry."""
        return f"{self.hash_algorithm.value}-{self.hash_size}-r{HASH_REVISION}"
