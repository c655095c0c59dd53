"""
Pytest configuration and shared fixtures for Workspace Snapshots tests.
"""

import pytest
from pathlib import Path
from typing import AsyncGenerator

from workspace_snapshots.managers.snapshot import SnapshotManager
from workspace_snapshots.storage.cas import ContentStore, DiffStore
from workspace_snapshots.storage.index import SnapshotIndex
from workspace_snapshots.utils.config import SnapshotSettings, StorageConfig
from workspace_snapshots.utils.notifications import EventBus

from tests.fixtures import WorkspaceFixtures


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Project tree with a couple of text files."""
    root = tmp_path / "project"
    root.mkdir()
    WorkspaceFixtures.write_tree(root, {
        "a.txt": "hello",
        "b.txt": "line one\nline two\n",
    })
    return root


@pytest.fixture
def settings() -> SnapshotSettings:
    return SnapshotSettings(storage=StorageConfig(capture_concurrency=4))


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
async def manager(
    project_dir: Path,
    settings: SnapshotSettings,
    event_bus: EventBus
) -> AsyncGenerator[SnapshotManager, None]:
    """Initialized manager for project_dir."""
    snapshot_manager = SnapshotManager(project_dir, settings=settings, event_bus=event_bus)
    await snapshot_manager.initialize()
    yield snapshot_manager
    await snapshot_manager.stop()
    await event_bus.shutdown()


@pytest.fixture
async def content_store(tmp_path: Path) -> ContentStore:
    store = ContentStore(tmp_path / "store" / "objects", tmp_path / "store" / "tmp")
    await store.initialize()
    return store


@pytest.fixture
async def diff_store(tmp_path: Path) -> DiffStore:
    store = DiffStore(tmp_path / "store" / "diffs", tmp_path / "store" / "tmp")
    await store.initialize()
    return store


@pytest.fixture
async def snapshot_index(tmp_path: Path) -> AsyncGenerator[SnapshotIndex, None]:
    index = SnapshotIndex(tmp_path / "index.db")
    await index.initialize()
    yield index
    await index.close()
