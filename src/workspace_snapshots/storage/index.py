"""
Snapshot index backed by SQLite.

Each row holds the full snapshot record as JSON plus the columns used
for filtering and ordering. Records are immutable; the only mutation
after insert is deletion.
"""

import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Iterable

from .database import Database
from ..snapshot.models import Snapshot, CaptureTrigger
from ..utils.logging import get_logger
from ..utils.errors import NotFoundError, StorageError


logger = get_logger("workspace-snapshots.storage.index")


SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    timestamp REAL NOT NULL,
    branch TEXT NOT NULL,
    created_by TEXT NOT NULL,
    project_path TEXT NOT NULL,
    size_kb REAL NOT NULL DEFAULT 0,
    incomplete INTEGER NOT NULL DEFAULT 0,
    record TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_snapshots_branch ON snapshots(branch, timestamp);
CREATE INDEX IF NOT EXISTS idx_snapshots_timestamp ON snapshots(timestamp);
"""

# Newest first; seq breaks ties between captures in the same instant.
_ORDER = "ORDER BY timestamp DESC, seq DESC"


def _epoch(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


class SnapshotIndex:
    """Queryable store of committed snapshot records."""

    def __init__(self, db_path: Path):
        self.db = Database(db_path)

    async def initialize(self) -> None:
        await self.db.connect()
        await self.db.executescript(SCHEMA)
        logger.info("index_initialized", path=str(self.db.db_path))

    async def close(self) -> None:
        await self.db.close()

    async def add(self, snapshot: Snapshot) -> None:
        """Commit a record. The id must be new."""
        try:
            await self.db.execute(
                """
                INSERT INTO snapshots
                    (id, timestamp, branch, created_by, project_path, size_kb, incomplete, record)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    snapshot.id,
                    _epoch(snapshot.timestamp),
                    snapshot.git_branch,
                    snapshot.created_by.value,
                    snapshot.project_path,
                    snapshot.size_kb,
                    int(snapshot.incomplete),
                    snapshot.to_json(),
                )
            )
        except sqlite3.IntegrityError as e:
            raise StorageError(
                f"Snapshot {snapshot.id} already exists in index",
                cause=e
            ) from e

        logger.debug("snapshot_indexed", snapshot_id=snapshot.id, branch=snapshot.git_branch)

    async def get(self, snapshot_id: str) -> Snapshot:
        row = await self.db.fetchone(
            "SELECT record FROM snapshots WHERE id = ?",
            (snapshot_id,)
        )
        if row is None:
            raise NotFoundError("snapshot", snapshot_id)
        return Snapshot.from_json(row[0])

    async def exists(self, snapshot_id: str) -> bool:
        row = await self.db.fetchone(
            "SELECT 1 FROM snapshots WHERE id = ?",
            (snapshot_id,)
        )
        return row is not None

    async def latest(self, branch: Optional[str] = None) -> Optional[Snapshot]:
        """Most recent snapshot, optionally restricted to a branch."""
        if branch is None:
            row = await self.db.fetchone(f"SELECT record FROM snapshots {_ORDER} LIMIT 1")
        else:
            row = await self.db.fetchone(
                f"SELECT record FROM snapshots WHERE branch = ? {_ORDER} LIMIT 1",
                (branch,)
            )
        return Snapshot.from_json(row[0]) if row else None

    async def list(
        self,
        branch: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        created_by: Optional[CaptureTrigger] = None,
        limit: Optional[int] = None
    ) -> List[Snapshot]:
        """
        List snapshots newest first.

        Args:
            branch: Only this branch
            since: Inclusive lower bound on timestamp
            until: Inclusive upper bound on timestamp
            created_by: Only this trigger
            limit: Maximum records to return
        """
        clauses = []
        params: List[Any] = []

        if branch is not None:
            clauses.append("branch = ?")
            params.append(branch)
        if since is not None:
            clauses.append("timestamp >= ?")
            params.append(_epoch(since))
        if until is not None:
            clauses.append("timestamp <= ?")
            params.append(_epoch(until))
        if created_by is not None:
            clauses.append("created_by = ?")
            params.append(CaptureTrigger(created_by).value)

        sql = "SELECT record FROM snapshots"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += f" {_ORDER}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        rows = await self.db.fetchall(sql, tuple(params))
        return [Snapshot.from_json(row[0]) for row in rows]

    async def delete(self, snapshot_id: str) -> bool:
        cursor = await self.db.execute(
            "DELETE FROM snapshots WHERE id = ?",
            (snapshot_id,)
        )
        deleted = cursor.rowcount > 0
        if deleted:
            logger.debug("snapshot_unindexed", snapshot_id=snapshot_id)
        return deleted

    async def delete_many(self, snapshot_ids: Iterable[str]) -> int:
        removed = 0
        for snapshot_id in snapshot_ids:
            if await self.delete(snapshot_id):
                removed += 1
        return removed

    async def count(self) -> int:
        row = await self.db.fetchone("SELECT COUNT(*) FROM snapshots")
        return row[0] if row else 0

    async def get_stats(self) -> Dict[str, Any]:
        row = await self.db.fetchone(
            "SELECT COUNT(*), COALESCE(SUM(size_kb), 0), MIN(timestamp), MAX(timestamp) FROM snapshots"
        )
        count, total_kb, oldest, newest = row
        return {
            "snapshot_count": count,
            "total_size_kb": total_kb,
            "oldest": datetime.fromtimestamp(oldest, timezone.utc).isoformat() if oldest else None,
            "newest": datetime.fromtimestamp(newest, timezone.utc).isoformat() if newest else None,
        }
