"""
Storage components for Workspace Snapshots.

This package provides:
- Content-addressable storage for file content and diffs
- The SQLite snapshot index
"""

from .cas import ContentStore, DiffStore
from .database import Database
from .index import SnapshotIndex

__all__ = [
    'ContentStore',
    'DiffStore',
    'Database',
    'SnapshotIndex',
]
