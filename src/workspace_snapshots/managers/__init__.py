"""
Managers package for Workspace Snapshots.
"""

from .base import BaseManager, ManagerConfig, ManagerState, HealthStatus
from .snapshot import SnapshotManager

__all__ = [
    'BaseManager',
    'ManagerConfig',
    'ManagerState',
    'HealthStatus',
    'SnapshotManager',
]
