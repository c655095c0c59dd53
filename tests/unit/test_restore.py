"""
Tests for the restore engine and conflict detection.
"""

import asyncio

import pytest

from workspace_snapshots.snapshot.models import (
    FileChange,
    FileStatus,
    RestoreMode,
    RestoreSelection,
    ConflictLevel,
)
from workspace_snapshots.snapshot.restore import (
    RestoreEngine,
    detect_conflicts,
    infer_mode,
    CANCELLED,
)
from workspace_snapshots.utils.errors import (
    InvalidSelection,
    PartialRestoreFailure,
    ValidationError,
)

from tests.fixtures import WorkspaceFixtures


class TestRestoreEngine:
    """Test applying selections to a project tree."""

    @pytest.fixture
    def root(self, tmp_path):
        root = tmp_path / "restore-root"
        root.mkdir()
        return root

    @pytest.fixture
    def engine(self, root, content_store):
        return RestoreEngine(root, content_store)

    async def added(self, content_store, path, content):
        content_hash = await content_store.put(content)
        return FileChange(path=path, status=FileStatus.ADDED, content_hash=content_hash, size=len(content))

    async def modified(self, content_store, path, previous, content):
        content_hash = await content_store.put(content)
        return FileChange(
            path=path,
            status=FileStatus.MODIFIED,
            content_hash=content_hash,
            previous_hash=WorkspaceFixtures.compute_hash(previous),
            size=len(content),
        )

    def removed(self, path, previous):
        return FileChange(
            path=path,
            status=FileStatus.REMOVED,
            previous_hash=WorkspaceFixtures.compute_hash(previous),
        )

    @pytest.mark.asyncio
    async def test_full_restore_writes_and_deletes(self, engine, root, content_store):
        WorkspaceFixtures.write_tree(root, {"a.txt": "hello", "b.txt": "bye"})
        selection = RestoreSelection(
            added=[await self.added(content_store, "nested/c.txt", b"new")],
            modified=[await self.modified(content_store, "a.txt", b"hello", b"hello world")],
            removed=[self.removed("b.txt", b"bye")],
            snapshot_id="s1",
        )

        result = await engine.apply(selection, RestoreMode.FULL)

        assert result.success
        assert sorted(result.applied) == ["a.txt", "b.txt", "nested/c.txt"]
        assert (root / "a.txt").read_text() == "hello world"
        assert (root / "nested" / "c.txt").read_text() == "new"
        assert not (root / "b.txt").exists()
        assert not list(root.rglob("*.restore-tmp"))

    @pytest.mark.asyncio
    async def test_removing_absent_file_succeeds(self, engine, root):
        selection = RestoreSelection(removed=[self.removed("gone.txt", b"x")])

        result = await engine.apply(selection, RestoreMode.FULL)
        assert result.applied == ["gone.txt"]

    @pytest.mark.asyncio
    async def test_cherry_pick_with_removed_rejected_before_writes(self, engine, root, content_store):
        WorkspaceFixtures.write_tree(root, {"b.txt": "bye"})
        selection = RestoreSelection(
            added=[await self.added(content_store, "c.txt", b"new")],
            removed=[self.removed("b.txt", b"bye")],
        )

        with pytest.raises(InvalidSelection) as exc_info:
            await engine.apply(selection, RestoreMode.CHERRY_PICK)

        assert exc_info.value.removed_paths == ["b.txt"]
        assert not (root / "c.txt").exists()
        assert (root / "b.txt").exists()

    @pytest.mark.asyncio
    async def test_cherry_pick_never_deletes(self, engine, root, content_store):
        WorkspaceFixtures.write_tree(root, {"keep.txt": "untouched"})
        selection = RestoreSelection(added=[await self.added(content_store, "c.txt", b"new")])

        result = await engine.apply(selection, RestoreMode.CHERRY_PICK)

        assert result.applied == ["c.txt"]
        assert (root / "keep.txt").read_text() == "untouched"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_path", ["../escape.txt", "/etc/passwd", "a/../../escape.txt"])
    async def test_paths_outside_root_fail_per_file(self, engine, root, content_store, bad_path):
        good = await self.added(content_store, "ok.txt", b"fine")
        bad = FileChange(path=bad_path, status=FileStatus.ADDED, content_hash=good.content_hash)
        selection = RestoreSelection(added=[bad, good])

        result = await engine.apply(selection, RestoreMode.FULL)

        assert result.applied == ["ok.txt"]
        [failure] = result.failed
        assert failure.path == bad_path
        assert failure.code == ValidationError.code
        assert not (root.parent / "escape.txt").exists()

    def test_resolve_path(self, engine, root):
        assert engine.resolve_path("dir/file.txt") == root.resolve() / "dir" / "file.txt"
        with pytest.raises(ValidationError):
            engine.resolve_path("")

    @pytest.mark.asyncio
    async def test_missing_content_reported_as_failure(self, engine, root):
        change = FileChange(
            path="a.txt",
            status=FileStatus.ADDED,
            content_hash=WorkspaceFixtures.compute_hash(b"never stored"),
        )
        result = await engine.apply(RestoreSelection(added=[change]), RestoreMode.FULL)

        assert not result.success
        assert result.failed[0].code == "NOT_FOUND"
        assert not (root / "a.txt").exists()
        with pytest.raises(PartialRestoreFailure):
            result.raise_for_failures()

    @pytest.mark.asyncio
    async def test_cancel_reports_remaining_files(self, engine, root, content_store):
        cancel_event = asyncio.Event()
        cancel_event.set()
        selection = RestoreSelection(added=[
            await self.added(content_store, "a.txt", b"a"),
            await self.added(content_store, "b.txt", b"b"),
        ])

        result = await engine.apply(selection, RestoreMode.FULL, cancel_event)

        assert result.cancelled is True
        assert result.applied == []
        assert [f.code for f in result.failed] == [CANCELLED, CANCELLED]
        assert not (root / "a.txt").exists()

    @pytest.mark.asyncio
    async def test_restore_is_idempotent(self, engine, root, content_store):
        WorkspaceFixtures.write_tree(root, {"a.txt": "hello", "b.txt": "bye"})
        selection = RestoreSelection(
            modified=[await self.modified(content_store, "a.txt", b"hello", b"hello world")],
            removed=[self.removed("b.txt", b"bye")],
        )

        first = await engine.apply(selection, RestoreMode.FULL)
        second = await engine.apply(selection, RestoreMode.FULL)

        assert first.success and second.success
        assert (root / "a.txt").read_text() == "hello world"
        assert not (root / "b.txt").exists()

    @pytest.mark.asyncio
    async def test_unchanged_entries_are_ignored(self, engine, root):
        change = FileChange(path="a.txt", status=FileStatus.UNCHANGED)
        await engine.apply_file_change(change)
        assert not (root / "a.txt").exists()


class TestConflictDetection:
    """Test conflict classification against live paths."""

    def selection(self):
        h1 = WorkspaceFixtures.compute_hash("one")
        h2 = WorkspaceFixtures.compute_hash("two")
        return RestoreSelection(
            added=[FileChange(path="new.txt", status=FileStatus.ADDED, content_hash=h1)],
            modified=[FileChange(path="a.txt", status=FileStatus.MODIFIED, content_hash=h2, previous_hash=h1)],
            removed=[FileChange(path="old.txt", status=FileStatus.REMOVED, previous_hash=h1)],
        )

    def test_clean_tree_has_no_conflicts(self):
        report = detect_conflicts(self.selection(), [])

        assert report.level == ConflictLevel.NONE
        assert not report.has_conflicts
        assert len(report.files) == 3

    def test_existing_added_path_is_conflict(self):
        report = detect_conflicts(self.selection(), ["new.txt", "a.txt", "old.txt"])

        assert report.level == ConflictLevel.CONFLICT
        assert report.level_for("new.txt") == ConflictLevel.CONFLICT
        assert report.level_for("a.txt") == ConflictLevel.POTENTIAL
        assert report.level_for("old.txt") == ConflictLevel.NONE

    def test_existing_modified_path_is_potential(self):
        report = detect_conflicts(self.selection(), ["a.txt"])

        assert report.level == ConflictLevel.POTENTIAL
        assert [c.path for c in report.by_level(ConflictLevel.POTENTIAL)] == ["a.txt"]

    def test_infer_mode(self):
        selection = self.selection()
        assert infer_mode(selection) == RestoreMode.FULL
        selection.removed = []
        assert infer_mode(selection) == RestoreMode.CHERRY_PICK
