"""
Test fixtures for Workspace Snapshots.

Provides reusable workspace trees and storage helpers.
"""

from .workspace_fixtures import WorkspaceFixtures, UnreadableFile

__all__ = [
    "WorkspaceFixtures",
    "UnreadableFile",
]
