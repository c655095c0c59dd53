"""
Workspace Snapshots - content-addressable snapshot and restore engine.

This package captures point-in-time states of a project tree with:
- Deduplicated, compressed content storage
- Line-based diffs between captures
- Full and cherry-pick restores
- Retention limits and garbage collection
"""

__version__ = "0.1.0"

from .managers.snapshot import SnapshotManager
from .snapshot.models import (
    Snapshot,
    FileChange,
    FileStatus,
    CaptureTrigger,
    RestoreMode,
    RestoreSelection,
    RestoreResult,
    ConflictLevel,
    ConflictReport,
    SnapshotComparison,
)
from .utils.config import SnapshotSettings, RetentionConfig, StorageConfig

__all__ = [
    'SnapshotManager',
    'Snapshot',
    'FileChange',
    'FileStatus',
    'CaptureTrigger',
    'RestoreMode',
    'RestoreSelection',
    'RestoreResult',
    'ConflictLevel',
    'ConflictReport',
    'SnapshotComparison',
    'SnapshotSettings',
    'RetentionConfig',
    'StorageConfig',
]
