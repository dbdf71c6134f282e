"""
Persistent hash cache.

Maps (path, size, modification time) to a previously computed HashSet,
stored in an SQLite file through the SQLAlchemy ORM. Any mismatch of the
key fields or of the algorithm version is a miss. Store failures are
logged and degrade to cache-less behaviour; they never fail a batch.
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from sqlalchemy import (
    BigInteger,
    DateTime,
    String,
    Text,
    create_engine,
    delete,
    func,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..core.errors import CacheError
from ..core.types import HashAlgorithm, HashSet

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class HashCacheEntry(Base):
    """Cached hashes for one file."""

    __tablename__ = "hash_cache"

    path: Mapped[str] = mapped_column(Text, primary_key=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    modified_ns: Mapped[int] = mapped_column(BigInteger, nullable=False)
    algorithm_version: Mapped[str] = mapped_column(String(64), nullable=False)
    algorithm: Mapped[str] = mapped_column(String(16), nullable=False)
    hash_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    perceptual_hash: Mapped[str] = mapped_column(String(256), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<HashCacheEntry(path={self.path}, version={self.algorithm_version})>"

    def to_hash_set(self) -> HashSet:
        return HashSet(
            content_hash=self.content_hash,
            perceptual_hash=self.perceptual_hash,
            algorithm=HashAlgorithm(self.algorithm),
            hash_size=self.hash_size,
            algorithm_version=self.algorithm_version,
        )


class HashCache:
    """
    SQLite-backed cache of computed hashes, shared by hashing workers.

    Reads run concurrently. Writes are serialized per key through a fixed
    set of striped locks rather than one global lock; SQLite serializes
    the actual commits. Two workers recomputing the same stale key both
    write, and the last write wins.

    Example:
        >>> cache = HashCache(Path("hash_cache.db"), algorithm_version="dhash-8-r1")
        >>> cache.get(path, size, mtime_ns) is None
        True
        >>> cache.put(path, size, mtime_ns, hash_set)
    """

    def __init__(
        self,
        db_path: Optional[Path],
        algorithm_version: str,
        lock_shards: int = 64,
    ):
        """
        Open (or create) the cache.

        Args:
            db_path: SQLite file, or None for a non-persistent in-memory cache
            algorithm_version: Entries with any other version are purged
            lock_shards: Number of striped write locks
        """
        self.db_path = Path(db_path) if db_path is not None else None
        self.algorithm_version = algorithm_version
        self._locks = [threading.Lock() for _ in range(lock_shards)]
        self._stats_lock = threading.Lock()
        self.hits = 0
        self.misses = 0

        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        # Fallback store when the database cannot be used at all
        self._memory: Optional[Dict[str, Tuple[int, int, HashSet]]] = None

        self._open()

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def _open(self) -> None:
        try:
            self._connect()
            return
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Hash cache at {self.db_path} is unusable: {e}")

        if self.db_path is not None and self.db_path.exists():
            corrupt_path = self.db_path.with_name(self.db_path.name + ".corrupt")
            try:
                self.db_path.replace(corrupt_path)
                logger.warning(f"Moved corrupt hash cache to {corrupt_path}")
                self._connect()
                return
            except (SQLAlchemyError, OSError) as e:
                logger.error(f"Could not recreate hash cache: {e}")

        logger.warning("Hash cache degraded to in-memory store")
        self._dispose()
        self._memory = {}

    def _connect(self) -> None:
        if self.db_path is None:
            engine = create_engine(
                "sqlite://",
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{self.db_path}",
                connect_args={"check_same_thread": False, "timeout": 30},
            )

        try:
            Base.metadata.create_all(bind=engine)
            session_factory = sessionmaker(bind=engine, expire_on_commit=False)
            with session_factory() as session:
                # Touch the table so a corrupt file fails here, not later
                session.execute(select(func.count()).select_from(HashCacheEntry))
                purged = session.execute(
                    delete(HashCacheEntry).where(
                        HashCacheEntry.algorithm_version != self.algorithm_version
                    )
                ).rowcount
                session.commit()
        except SQLAlchemyError:
            engine.dispose()
            raise

        if purged:
            logger.info(
                f"Purged {purged} cached hashes from other algorithm versions"
            )
        self._engine = engine
        self._session_factory = session_factory

    def _dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def close(self) -> None:
        """Release database connections."""
        self._dispose()

    def __enter__(self) -> "HashCache":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def persistent(self) -> bool:
        """True while entries are written to disk."""
        return self._memory is None and self.db_path is not None

    def get(
        self, path: Union[str, Path], size_bytes: int, modified_ns: int
    ) -> Optional[HashSet]:
        """
        Look up cached hashes.

        Returns:
            The cached HashSet, or None on a miss (including stale entries
            and store failures)
        """
        key = str(path)
        try:
            hash_set = self._get(key, size_bytes, modified_ns)
        except CacheError as e:
            logger.warning(f"Hash cache read failed for {key}: {e}")
            hash_set = None

        with self._stats_lock:
            if hash_set is None:
                self.misses += 1
            else:
                self.hits += 1
        return hash_set

    def put(
        self,
        path: Union[str, Path],
        size_bytes: int,
        modified_ns: int,
        hash_set: HashSet,
    ) -> None:
        """Store hashes for a file, replacing any previous entry."""
        key = str(path)
        if hash_set.algorithm_version != self.algorithm_version:
            logger.debug(f"Not caching {key}: version {hash_set.algorithm_version}")
            return

        with self._lock_for(key):
            try:
                self._put(key, size_bytes, modified_ns, hash_set)
            except CacheError as e:
                logger.warning(f"Hash cache write failed for {key}: {e}")

    def invalidate(self, path: Union[str, Path]) -> None:
        """Remove the entry for one file."""
        key = str(path)
        with self._lock_for(key):
            if self._memory is not None:
                self._memory.pop(key, None)
                return
            try:
                with self._session() as session:
                    session.execute(
                        delete(HashCacheEntry).where(HashCacheEntry.path == key)
                    )
                    session.commit()
            except SQLAlchemyError as e:
                logger.warning(f"Hash cache invalidate failed for {key}: {e}")

    def clear(self) -> None:
        """Remove every entry."""
        if self._memory is not None:
            self._memory.clear()
            return
        try:
            with self._session() as session:
                session.execute(delete(HashCacheEntry))
                session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Hash cache clear failed: {e}")

    def __len__(self) -> int:
        if self._memory is not None:
            return len(self._memory)
        try:
            with self._session() as session:
                return session.scalar(
                    select(func.count()).select_from(HashCacheEntry)
                ) or 0
        except SQLAlchemyError as e:
            logger.warning(f"Hash cache count failed: {e}")
            return 0

    def paths(self) -> List[str]:
        """Paths with a cached entry."""
        if self._memory is not None:
            return sorted(self._memory)
        try:
            with self._session() as session:
                return list(
                    session.scalars(
                        select(HashCacheEntry.path).order_by(HashCacheEntry.path)
                    )
                )
        except SQLAlchemyError as e:
            logger.warning(f"Hash cache listing failed: {e}")
            return []

    @property
    def stats(self) -> Dict[str, int]:
        with self._stats_lock:
            return {"hits": self.hits, "misses": self.misses}

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, key: str) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def _session(self) -> Session:
        if self._session_factory is None:
            raise CacheError("Hash cache is not connected")
        return self._session_factory()

    def _get(self, key: str, size_bytes: int, modified_ns: int) -> Optional[HashSet]:
        if self._memory is not None:
            cached = self._memory.get(key)
            if cached is None:
                return None
            cached_size, cached_mtime, hash_set = cached
            if cached_size == size_bytes and cached_mtime == modified_ns:
                return hash_set
            return None

        try:
            with self._session() as session:
                entry = session.get(HashCacheEntry, key)
                if entry is None:
                    return None
                if (
                    entry.size_bytes != size_bytes
                    or entry.modified_ns != modified_ns
                    or entry.algorithm_version != self.algorithm_version
                ):
                    logger.debug(f"Stale hash cache entry for {key}")
                    return None
                return entry.to_hash_set()
        except (SQLAlchemyError, ValueError) as e:
            raise CacheError(str(e)) from e

    def _put(
        self, key: str, size_bytes: int, modified_ns: int, hash_set: HashSet
    ) -> None:
        if self._memory is not None:
            self._memory[key] = (size_bytes, modified_ns, hash_set)
            return

        try:
            with self._session() as session:
                session.merge(
                    HashCacheEntry(
                        path=key,
                        size_bytes=size_bytes,
                        modified_ns=modified_ns,
                        algorithm_version=hash_set.algorithm_version,
                        algorithm=hash_set.algorithm.value,
                        hash_size=hash_set.hash_size,
                        content_hash=hash_set.content_hash,
                        perceptual_hash=hash_set.perceptual_hash,
                        updated_at=_utcnow(),
                    )
                )
                session.commit()
        except SQLAlchemyError as e:
            raise CacheError(str(e)) from e
