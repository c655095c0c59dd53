"""
Tests for the SQLite snapshot index.
"""

from datetime import datetime, timedelta, timezone

import pytest

from workspace_snapshots.snapshot.models import CaptureTrigger, ManifestEntry
from workspace_snapshots.storage.index import SnapshotIndex
from workspace_snapshots.utils.errors import NotFoundError, StorageError, StorageUnavailableError

from tests.fixtures import WorkspaceFixtures


NOW = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


class TestSnapshotIndex:
    """Test committing and querying snapshot records."""

    @pytest.fixture
    async def populated(self, snapshot_index):
        records = [
            WorkspaceFixtures.create_snapshot("m1", age=timedelta(hours=3), now=NOW),
            WorkspaceFixtures.create_snapshot("d1", age=timedelta(hours=2), branch="dev", now=NOW),
            WorkspaceFixtures.create_snapshot(
                "m2", age=timedelta(hours=1), now=NOW, trigger=CaptureTrigger.AUTO_TIMER
            ),
            WorkspaceFixtures.create_snapshot("d2", branch="dev", now=NOW),
        ]
        for record in records:
            await snapshot_index.add(record)
        return snapshot_index

    @pytest.mark.asyncio
    async def test_get_roundtrips_record(self, snapshot_index):
        snapshot = WorkspaceFixtures.create_snapshot(
            "abc",
            now=NOW,
            manifest={"a.txt": ManifestEntry(content_hash="a" * 64, size=5, is_text_file=True, lines=1)},
        )
        await snapshot_index.add(snapshot)

        loaded = await snapshot_index.get("abc")
        assert loaded == snapshot

    @pytest.mark.asyncio
    async def test_get_unknown_raises_not_found(self, snapshot_index):
        with pytest.raises(NotFoundError) as exc_info:
            await snapshot_index.get("missing")
        assert exc_info.value.kind == "snapshot"

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self, snapshot_index):
        await snapshot_index.add(WorkspaceFixtures.create_snapshot("dup", now=NOW))
        with pytest.raises(StorageError):
            await snapshot_index.add(WorkspaceFixtures.create_snapshot("dup", now=NOW))

    @pytest.mark.asyncio
    async def test_list_newest_first(self, populated):
        listed = await populated.list()
        assert [s.id for s in listed] == ["d2", "m2", "d1", "m1"]

    @pytest.mark.asyncio
    async def test_same_timestamp_orders_by_insertion(self, snapshot_index):
        await snapshot_index.add(WorkspaceFixtures.create_snapshot("first", now=NOW))
        await snapshot_index.add(WorkspaceFixtures.create_snapshot("second", now=NOW))

        assert [s.id for s in await snapshot_index.list()] == ["second", "first"]
        assert (await snapshot_index.latest()).id == "second"

    @pytest.mark.asyncio
    async def test_filters(self, populated):
        assert [s.id for s in await populated.list(branch="main")] == ["m2", "m1"]
        assert [s.id for s in await populated.list(created_by=CaptureTrigger.AUTO_TIMER)] == ["m2"]
        assert [s.id for s in await populated.list(since=NOW - timedelta(hours=2))] == ["d2", "m2", "d1"]
        assert [s.id for s in await populated.list(until=NOW - timedelta(hours=2))] == ["d1", "m1"]
        assert [s.id for s in await populated.list(limit=2)] == ["d2", "m2"]

    @pytest.mark.asyncio
    async def test_latest_per_branch(self, populated):
        assert (await populated.latest("main")).id == "m2"
        assert (await populated.latest("dev")).id == "d2"
        assert await populated.latest("feature") is None

    @pytest.mark.asyncio
    async def test_delete(self, populated):
        assert await populated.delete("m1") is True
        assert await populated.delete("m1") is False
        assert not await populated.exists("m1")
        assert await populated.count() == 3
        assert await populated.delete_many(["d1", "d2", "nope"]) == 2

    @pytest.mark.asyncio
    async def test_stats(self, populated):
        stats = await populated.get_stats()

        assert stats["snapshot_count"] == 4
        assert stats["total_size_kb"] == pytest.approx(4.0)
        assert stats["newest"] == NOW.isoformat()
        assert stats["oldest"] == (NOW - timedelta(hours=3)).isoformat()

    @pytest.mark.asyncio
    async def test_closed_index_does_not_reconnect(self, tmp_path):
        index = SnapshotIndex(tmp_path / "closed.db")
        await index.initialize()
        await index.close()

        with pytest.raises(StorageUnavailableError):
            await index.add(WorkspaceFixtures.create_snapshot("late", now=NOW))
        with pytest.raises(StorageUnavailableError):
            await index.count()

        await index.initialize()
        try:
            assert await index.count() == 0
        finally:
            await index.close()

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, tmp_path):
        db_path = tmp_path / "reopen.db"
        index = SnapshotIndex(db_path)
        await index.initialize()
        await index.add(WorkspaceFixtures.create_snapshot("kept", now=NOW))
        await index.close()

        reopened = SnapshotIndex(db_path)
        await reopened.initialize()
        try:
            assert (await reopened.get("kept")).id == "kept"
        finally:
            await reopened.close()
