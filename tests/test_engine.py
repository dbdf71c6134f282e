"""
Tests for the ImageSorterEngine facade.
"""

from concurrent.futures import Future
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from image_sorter.analysis.hash_cache import HashCache
from image_sorter.core.concurrency import CancellationToken
from image_sorter.core.config import Settings
from image_sorter.core.errors import InvalidTargetError, InvalidThresholdError
from image_sorter.core.types import HashAlgorithm, SortOptions, TransferMethod
from image_sorter.engine import ImageSorterEngine


@pytest.fixture
def ahash_engine(tmp_path: Path):
    settings = Settings(
        state_dir=tmp_path / "state",
        hash_algorithm=HashAlgorithm.AHASH,
        hash_workers=2,
        io_workers=2,
    )
    with ImageSorterEngine(settings) as engine:
        yield engine


@pytest.fixture
def three_copies(make_image):
    """An exact PNG duplicate plus a larger JPEG re-encode of the same picture."""
    return [
        make_image("photos/a.png", seed=11),
        make_image("photos/b.png", seed=11),
        make_image("photos/c.jpg", seed=11, size=512),
        make_image("photos/other.png", seed=12),
    ]


@pytest.mark.integration
class TestFindDuplicates:
    """End-to-end duplicate detection."""

    def test_three_copies_one_group(
        self, ahash_engine: ImageSorterEngine, three_copies, tmp_path: Path
    ) -> None:
        """Test that exact and near-duplicates form one group with one primary."""
        scan = ahash_engine.scan(tmp_path / "photos")
        result = ahash_engine.find_duplicates(scan.images, threshold=5)

        assert result.processed == 4
        assert result.failed == 0
        assert len(result.groups) == 1
        group = result.groups[0]
        assert group.size == 3
        assert group.primary.path == three_copies[0]
        assert [r.path for r in group.duplicates] == three_copies[1:3]
        assert group.exact is False
        assert result.total_duplicates == 2

    def test_accepts_paths(
        self, ahash_engine: ImageSorterEngine, three_copies
    ) -> None:
        """Test that bare paths are read and hashed without a prior scan."""
        result = ahash_engine.find_duplicates(three_copies[:2], threshold=0)

        assert len(result.groups) == 1
        assert result.groups[0].exact is True
        assert result.groups[0].primary.width == 256

    def test_repeated_inputs_counted_once(
        self, ahash_engine: ImageSorterEngine, three_copies
    ) -> None:
        paths = [three_copies[0], str(three_copies[0]), three_copies[1]]

        result = ahash_engine.find_duplicates(paths, threshold=0)

        assert result.processed == 2
        assert result.groups[0].size == 2

    def test_corrupt_image_reported(
        self, ahash_engine: ImageSorterEngine, three_copies, corrupt_image: Path
    ) -> None:
        """Test that an undecodable file is an error, not a group member."""
        result = ahash_engine.find_duplicates(
            [*three_copies[:2], corrupt_image], threshold=5
        )

        assert result.processed == 3
        assert result.failed == 1
        assert str(corrupt_image) in result.errors[0]
        assert all(
            r.path != corrupt_image for g in result.groups for r in g.images
        )

    def test_truncated_images_excluded(
        self, ahash_engine: ImageSorterEngine, truncate_image, tmp_path: Path
    ) -> None:
        """Test that unrelated truncated files fail instead of grouping."""
        truncated = [
            truncate_image("photos/trunc1.jpg", seed=1),
            truncate_image("photos/trunc2.jpg", seed=2),
        ]

        scan = ahash_engine.scan(tmp_path / "photos")
        result = ahash_engine.find_duplicates(scan.images, threshold=5)

        assert result.processed == 2
        assert result.failed == 2
        assert result.groups == []
        for path in truncated:
            assert any(str(path) in error for error in result.errors)

    def test_invalid_threshold(
        self, ahash_engine: ImageSorterEngine, three_copies
    ) -> None:
        """Test that a bad threshold fails before any hashing starts."""
        with patch.object(ahash_engine.hash_engine, "hash_record") as hash_record:
            with pytest.raises(InvalidThresholdError):
                ahash_engine.find_duplicates(three_copies, threshold=65)

        hash_record.assert_not_called()

    def test_progress_events(
        self, ahash_engine: ImageSorterEngine, three_copies
    ) -> None:
        listener = MagicMock()

        ahash_engine.find_duplicates(three_copies, progress=listener)

        events = [call.args[0] for call in listener.call_args_list]
        assert [e.completed for e in events] == [1, 2, 3, 4]
        assert all(e.total == 4 and e.operation == "hash" for e in events)

    def test_cancelled(self, ahash_engine: ImageSorterEngine, three_copies) -> None:
        """Test that cancellation returns a valid, empty partial result."""
        token = CancellationToken()
        token.cancel()

        result = ahash_engine.find_duplicates(three_copies, cancel=token)

        assert result.cancelled
        assert result.processed == 0
        assert result.groups == []

    def test_second_run_served_from_cache(
        self, ahash_engine: ImageSorterEngine, three_copies
    ) -> None:
        first = ahash_engine.find_duplicates(three_copies, threshold=5)
        hits_before = ahash_engine.cache.stats["hits"]
        second = ahash_engine.find_duplicates(three_copies, threshold=5)

        assert ahash_engine.cache.stats["hits"] == hits_before + 4
        assert [g.id for g in second.groups] == [g.id for g in first.groups]


class TestEngineLifecycle:
    """Tests for cache ownership and pools."""

    def test_owned_cache_created(self, engine: ImageSorterEngine) -> None:
        assert engine.cache.persistent
        assert engine.settings.cache_path.exists()

    def test_injected_cache_not_closed(self, settings: Settings) -> None:
        cache = MagicMock(spec=HashCache)

        with ImageSorterEngine(settings, cache=cache) as engine:
            assert engine.cache is cache

        cache.close.assert_not_called()

    def test_owned_cache_closed(self, settings: Settings) -> None:
        engine = ImageSorterEngine(settings)
        with patch.object(engine.cache, "close") as close:
            engine.close()
            engine.close()

        close.assert_called_once()


class TestFileOperations:
    """Tests for sort, move, delete and rollback through the engine."""

    def test_sort_and_rollback(
        self, engine: ImageSorterEngine, make_image, tmp_path: Path
    ) -> None:
        source = make_image("inbox/a.jpg", exif_date="2023:06:15 10:00:00")
        target = tmp_path / "sorted"
        target.mkdir()

        outcome = engine.sort_by_date(
            [source], TransferMethod.MOVE, target, SortOptions(group_by_day=True)
        )

        destination = target / "2023" / "06" / "15" / "a.jpg"
        assert outcome.succeeded == 1
        assert destination.exists()
        assert not source.exists()

        rollback = engine.rollback(outcome.transaction_id)

        assert rollback.succeeded == 1
        assert source.exists()
        assert not destination.exists()

    def test_sort_missing_target(
        self, engine: ImageSorterEngine, sample_image: Path, tmp_path: Path
    ) -> None:
        with pytest.raises(InvalidTargetError):
            engine.sort_by_date([sample_image], TransferMethod.COPY, tmp_path / "x")

    def test_move_files(
        self, engine: ImageSorterEngine, sample_image: Path, tmp_path: Path
    ) -> None:
        target = tmp_path / "moved"
        target.mkdir()

        outcome = engine.move_files([str(sample_image)], target)

        assert outcome.succeeded == 1
        assert (target / sample_image.name).exists()

    def test_delete_invalidates_cache(
        self, engine: ImageSorterEngine, sample_image: Path
    ) -> None:
        engine.find_duplicates([sample_image])
        assert str(sample_image.absolute()) in engine.cache.paths()

        with patch(
            "image_sorter.organization.file_organizer.send2trash",
            side_effect=lambda p: Path(p).unlink(),
        ):
            outcome = engine.delete_files([sample_image])

        assert outcome.succeeded == 1
        assert engine.cache.paths() == []

    def test_get_thumbnail(self, engine: ImageSorterEngine, sample_image: Path) -> None:
        thumb = engine.get_thumbnail(sample_image)

        assert thumb.exists()
        assert engine.settings.thumbnail_dir in thumb.parents


class TestSubmitVariants:
    """Tests for the non-blocking submit_* API."""

    def test_submit_scan(
        self, engine: ImageSorterEngine, make_image, tmp_path: Path
    ) -> None:
        make_image("photos/a.jpg")

        future = engine.submit_scan(tmp_path / "photos")

        assert isinstance(future, Future)
        assert future.result(timeout=30).image_count == 1

    def test_submit_find_duplicates(
        self, engine: ImageSorterEngine, make_image
    ) -> None:
        paths = [make_image("a.png", seed=5), make_image("b.png", seed=5)]

        result = engine.submit_find_duplicates(paths, threshold=0).result(timeout=30)

        assert len(result.groups) == 1

    def test_submit_sort_by_date(
        self, engine: ImageSorterEngine, make_image, tmp_path: Path
    ) -> None:
        source = make_image("inbox/a.jpg", exif_date="2022:02:02 02:02:02")
        target = tmp_path / "sorted"
        target.mkdir()

        outcome = engine.submit_sort_by_date(
            [source], TransferMethod.COPY, target
        ).result(timeout=30)

        assert outcome.succeeded == 1
        assert (target / "2022" / "02" / "a.jpg").exists()

    def test_submit_errors_surface_on_result(
        self, engine: ImageSorterEngine, tmp_path: Path
    ) -> None:
        """Test that call-level errors are raised from Future.result()."""
        future = engine.submit_move_files([], tmp_path / "missing")

        with pytest.raises(InvalidTargetError):
            future.result(timeout=30)

    def test_submit_delete_files(
        self, engine: ImageSorterEngine, sample_image: Path
    ) -> None:
        with patch(
            "image_sorter.organization.file_organizer.send2trash",
            side_effect=lambda p: Path(p).unlink(),
        ):
            outcome = engine.submit_delete_files([sample_image]).result(timeout=30)

        assert outcome.succeeded == 1

    def test_submit_get_thumbnail(
        self, engine: ImageSorterEngine, sample_image: Path
    ) -> None:
        thumb = engine.submit_get_thumbnail(sample_image).result(timeout=30)
        assert thumb.exists()
