"""
Tests for retention selection and garbage collection.
"""

from datetime import datetime, timedelta, timezone

import pytest

from workspace_snapshots.snapshot.diff import diff
from workspace_snapshots.snapshot.models import (
    FileChange,
    FileChanges,
    FileStatus,
    ManifestEntry,
)
from workspace_snapshots.snapshot.retention import (
    RetentionScheduler,
    select_evictions,
    collect_roots,
)
from workspace_snapshots.utils.config import RetentionConfig

from tests.fixtures import WorkspaceFixtures


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


def ids(snapshots):
    return [s.id for s in snapshots]


class TestSelectEvictions:
    """Test the pure retention policy."""

    def test_count_limit_evicts_oldest(self):
        history = WorkspaceFixtures.create_history(5, now=NOW)
        config = RetentionConfig(max_snapshots=3, max_size_mb=0, auto_cleanup_days=0)

        assert ids(select_evictions(history, config, NOW)) == ["s0", "s1"]

    def test_age_limit(self):
        history = WorkspaceFixtures.create_history(4, spacing=timedelta(days=1), now=NOW)
        config = RetentionConfig(max_snapshots=0, max_size_mb=0, auto_cleanup_days=1.5)

        # s0 is 3 days old, s1 2 days, s2 1 day, s3 now.
        assert ids(select_evictions(history, config, NOW)) == ["s0", "s1"]

    def test_size_limit(self):
        history = WorkspaceFixtures.create_history(5, size_kb=10, now=NOW)
        config = RetentionConfig(max_snapshots=0, max_size_mb=0.03, auto_cleanup_days=0)

        # 50 KiB total against a 30.72 KiB limit.
        assert ids(select_evictions(history, config, NOW)) == ["s0", "s1"]

    def test_limits_combine(self):
        history = WorkspaceFixtures.create_history(6, spacing=timedelta(days=1), size_kb=10, now=NOW)
        config = RetentionConfig(max_snapshots=3, max_size_mb=0.02, auto_cleanup_days=4.5)

        # Age takes s0; count takes s1 and s2; size then takes s3.
        assert ids(select_evictions(history, config, NOW)) == ["s0", "s1", "s2", "s3"]

    def test_disabled_limits_keep_everything(self):
        history = WorkspaceFixtures.create_history(100, spacing=timedelta(days=10), now=NOW)
        config = RetentionConfig(max_snapshots=0, max_size_mb=0, auto_cleanup_days=0)

        assert select_evictions(history, config, NOW) == []

    def test_under_limits(self):
        history = WorkspaceFixtures.create_history(3, now=NOW)
        assert select_evictions(history, RetentionConfig(), NOW) == []

    def test_newest_survives_oversized_limit(self):
        history = WorkspaceFixtures.create_history(3, size_kb=2048, now=NOW)
        config = RetentionConfig(max_snapshots=0, max_size_mb=1, auto_cleanup_days=0)

        assert ids(select_evictions(history, config, NOW)) == ["s0", "s1"]

    def test_newest_survives_age_limit(self):
        history = WorkspaceFixtures.create_history(2, spacing=timedelta(days=1), now=NOW - timedelta(days=10))
        config = RetentionConfig(max_snapshots=0, max_size_mb=0, auto_cleanup_days=1)

        assert ids(select_evictions(history, config, NOW)) == ["s0"]

    def test_empty_history(self):
        assert select_evictions([], RetentionConfig(max_snapshots=1), NOW) == []


class TestGarbageCollection:
    """Test that collection never removes reachable objects."""

    @pytest.fixture
    def scheduler(self, snapshot_index, content_store, diff_store):
        return RetentionScheduler(snapshot_index, content_store, diff_store, RetentionConfig())

    async def store_history(self, snapshot_index, content_store, diff_store):
        h1 = await content_store.put(b"hello")
        h2 = await content_store.put(b"hello world")
        d1 = await diff_store.put_diff(diff(b"hello", b"hello world", "a.txt", h1, h2))

        first = WorkspaceFixtures.create_snapshot(
            "first",
            age=timedelta(minutes=5),
            manifest={"a.txt": ManifestEntry(content_hash=h1, size=5, is_text_file=True, lines=1)},
        )
        first.file_changes = FileChanges(added=[
            FileChange(path="a.txt", status=FileStatus.ADDED, content_hash=h1, size=5),
        ])
        second = WorkspaceFixtures.create_snapshot(
            "second",
            manifest={"a.txt": ManifestEntry(content_hash=h2, size=11, is_text_file=True, lines=1)},
        )
        second.file_changes = FileChanges(modified=[
            FileChange(
                path="a.txt",
                status=FileStatus.MODIFIED,
                content_hash=h2,
                previous_hash=h1,
                diff_hash=d1,
                size=11,
            ),
        ])

        await snapshot_index.add(first)
        await snapshot_index.add(second)
        return h1, h2, d1

    def test_collect_roots(self):
        entry = ManifestEntry(content_hash="a" * 64, size=1, is_text_file=True)
        snapshot = WorkspaceFixtures.create_snapshot("s", manifest={"x": entry})
        snapshot.file_changes = FileChanges(modified=[FileChange(
            path="x",
            status=FileStatus.MODIFIED,
            content_hash="a" * 64,
            previous_hash="b" * 64,
            diff_hash="c" * 64,
        )])

        content, diffs = collect_roots([snapshot])
        assert content == {"a" * 64}
        assert diffs == {"c" * 64}

    @pytest.mark.asyncio
    async def test_gc_keeps_everything_referenced(
        self, scheduler, snapshot_index, content_store, diff_store
    ):
        h1, h2, d1 = await self.store_history(snapshot_index, content_store, diff_store)
        orphan = await content_store.put(b"orphan")

        report = await scheduler.collect_garbage()

        assert report.objects_removed == 1
        assert report.remaining == 2
        assert await content_store.exists(h1)
        assert await content_store.exists(h2)
        assert await diff_store.exists(d1)
        assert not await content_store.exists(orphan)

    @pytest.mark.asyncio
    async def test_gc_after_delete_keeps_shared_content(
        self, scheduler, snapshot_index, content_store, diff_store
    ):
        h1, h2, d1 = await self.store_history(snapshot_index, content_store, diff_store)

        await snapshot_index.delete("second")
        report = await scheduler.collect_garbage()

        assert report.objects_removed == 1
        assert report.diffs_removed == 1
        assert report.bytes_freed > 0
        assert await content_store.get(h1) == b"hello"
        assert not await content_store.exists(h2)
        assert not await diff_store.exists(d1)

    @pytest.mark.asyncio
    async def test_enforce_evicts_and_collects(
        self, scheduler, snapshot_index, content_store, diff_store
    ):
        h1, h2, d1 = await self.store_history(snapshot_index, content_store, diff_store)
        scheduler.update_config(RetentionConfig(max_snapshots=1, max_size_mb=0, auto_cleanup_days=0))

        report = await scheduler.enforce()

        assert report.evicted == ["first"]
        assert report.remaining == 1
        assert not await snapshot_index.exists("first")
        # The surviving manifest only references h2.
        assert not await content_store.exists(h1)
        assert await content_store.exists(h2)
        assert await diff_store.exists(d1)
