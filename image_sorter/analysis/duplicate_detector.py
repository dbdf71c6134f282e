"""
Duplicate detection for images.

Finds exact duplicates (same content hash) and visually similar images
(perceptual hash within a Hamming distance threshold), then clusters them
with a union-find structure so every image lands in at most one group,
regardless of the order in which pairs are compared.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.config import Settings
from ..core.errors import InvalidThresholdError
from ..core.types import DuplicateGroup, HashSet, ImageRecord, PrimaryPolicy

logger = logging.getLogger(__name__)


class UnionFind:
    """Disjoint-set forest with path compression and union by rank."""

    def __init__(self, size: int):
        self.parent = list(range(size))
        self.rank = [0] * size

    def find(self, item: int) -> int:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: int, b: int) -> bool:
        """Merge the sets containing a and b. Returns False if already joined."""
        root_a = self.find(a)
        root_b = self.find(b)
        if root_a == root_b:
            return False
        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1
        return True

    def components(self) -> Dict[int, List[int]]:
        """Map each root to its members in ascending order."""
        members: Dict[int, List[int]] = defaultdict(list)
        for item in range(len(self.parent)):
            members[self.find(item)].append(item)
        return members


def validate_threshold(threshold: int, hash_bits: int) -> None:
    """
    Raises:
        InvalidThresholdError: If threshold is outside 0..hash_bits
    """
    if isinstance(threshold, bool) or not isinstance(threshold, int):
        raise InvalidThresholdError(threshold, hash_bits)
    if threshold < 0 or threshold > hash_bits:
        raise InvalidThresholdError(threshold, hash_bits)


def _earliest_created_key(record: ImageRecord) -> Tuple[int, datetime, str]:
    # Records without a creation date sort after those with one
    if record.created_at is None:
        return (1, datetime.min, str(record.path))
    return (0, record.created_at, str(record.path))


def _lowest_path_key(record: ImageRecord) -> Tuple[str]:
    return (str(record.path),)


PRIMARY_SORT_KEYS: Dict[PrimaryPolicy, Callable[[ImageRecord], tuple]] = {
    PrimaryPolicy.EARLIEST_CREATED: _earliest_created_key,
    PrimaryPolicy.LOWEST_PATH: _lowest_path_key,
}


class DuplicateDetector:
    """
    Cluster hashed images into duplicate groups.

    Comparison is exhaustive (O(n^2) Hamming distances) unless
    ``bucket_prefix_bits`` is set, in which case only hashes sharing that
    many leading bits are compared. Bucketing is faster on large corpora
    but can miss near-duplicates whose hashes differ in the prefix.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        primary_policy: Optional[PrimaryPolicy] = None,
        bucket_prefix_bits: Optional[int] = None,
    ):
        """
        Initialize the detector.

        Args:
            settings: Engine settings (default threshold, policy, bucketing)
            primary_policy: Overrides settings.primary_policy
            bucket_prefix_bits: Overrides settings.bucket_prefix_bits
        """
        self.settings = settings or Settings()
        self.primary_policy = PrimaryPolicy(
            primary_policy or self.settings.primary_policy
        )
        self.bucket_prefix_bits = (
            self.settings.bucket_prefix_bits
            if bucket_prefix_bits is None
            else bucket_prefix_bits
        )
        self.hash_bits = self.settings.hash_bits

    def group(
        self,
        records: Iterable[ImageRecord],
        hashes: Mapping[str, HashSet],
        threshold: Optional[int] = None,
    ) -> List[DuplicateGroup]:
        """
        Cluster records into disjoint duplicate groups.

        Records without an entry in ``hashes`` (failed hashing) are ignored.

        Args:
            records: Scanned images
            hashes: HashSet per record key (absolute path string)
            threshold: Maximum Hamming distance; defaults to settings

        Returns:
            Groups of two or more images, ordered by primary path

        Raises:
            InvalidThresholdError: If threshold is outside 0..hash_bits
        """
        if threshold is None:
            threshold = self.settings.similarity_threshold
        validate_threshold(threshold, self.hash_bits)

        by_key: Dict[str, ImageRecord] = {}
        for record in records:
            if record.key in hashes:
                by_key[record.key] = record
        keys = sorted(by_key)
        if len(keys) < 2:
            return []

        uf = UnionFind(len(keys))
        exact_unions = self._union_exact(keys, hashes, uf)
        similar_unions = self._union_similar(keys, hashes, uf, threshold)
        logger.debug(
            f"Clustered {len(keys)} images: {exact_unions} exact merges, "
            f"{similar_unions} similarity merges (threshold {threshold})"
        )

        groups = []
        for members in uf.components().values():
            if len(members) < 2:
                continue
            groups.append(
                self._build_group([by_key[keys[i]] for i in members], hashes)
            )

        groups.sort(key=lambda g: str(g.primary.path))
        logger.info(f"Found {len(groups)} duplicate groups among {len(keys)} images")
        return groups

    def _union_exact(
        self, keys: List[str], hashes: Mapping[str, HashSet], uf: UnionFind
    ) -> int:
        """Join images with identical content hashes."""
        first_by_checksum: Dict[str, int] = {}
        merged = 0
        for idx, key in enumerate(keys):
            checksum = hashes[key].content_hash
            if checksum in first_by_checksum:
                if uf.union(first_by_checksum[checksum], idx):
                    merged += 1
            else:
                first_by_checksum[checksum] = idx
        return merged

    def _union_similar(
        self,
        keys: List[str],
        hashes: Mapping[str, HashSet],
        uf: UnionFind,
        threshold: int,
    ) -> int:
        """Join images whose perceptual hashes are within threshold."""
        values = [int(hashes[key].perceptual_hash, 16) for key in keys]
        merged = 0
        for bucket in self._buckets(values):
            for pos, i in enumerate(bucket):
                hash_i = values[i]
                for j in bucket[pos + 1 :]:
                    if uf.find(i) == uf.find(j):
                        continue
                    if bin(hash_i ^ values[j]).count("1") <= threshold:
                        uf.union(i, j)
                        merged += 1
        return merged

    def _buckets(self, values: List[int]) -> List[List[int]]:
        if self.bucket_prefix_bits <= 0:
            return [list(range(len(values)))]

        shift = max(self.hash_bits - self.bucket_prefix_bits, 0)
        buckets: Dict[int, List[int]] = defaultdict(list)
        for idx, value in enumerate(values):
            buckets[value >> shift].append(idx)
        return [buckets[prefix] for prefix in sorted(buckets)]

    def _build_group(
        self, members: List[ImageRecord], hashes: Mapping[str, HashSet]
    ) -> DuplicateGroup:
        ordered = sorted(members, key=PRIMARY_SORT_KEYS[self.primary_policy])
        primary = ordered[0]
        duplicates = sorted(ordered[1:], key=lambda r: str(r.path))
        checksums = {hashes[r.key].content_hash for r in members}

        return DuplicateGroup(
            id=DuplicateGroup.make_id([r.key for r in members]),
            primary=primary,
            duplicates=duplicates,
            exact=len(checksums) == 1,
            perceptual_hash=hashes[primary.key].perceptual_hash,
        )
