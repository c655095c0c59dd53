"""
Functional tests for Workspace Snapshots.
"""
