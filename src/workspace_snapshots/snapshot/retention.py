"""Retention policy and garbage collection"""

from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Set

from .models import Snapshot, RetentionReport, utcnow
from ..storage.cas import ContentStore, DiffStore
from ..storage.index import SnapshotIndex
from ..utils.config import RetentionConfig
from ..utils.logging import get_logger

logger = get_logger("workspace-snapshots.retention")


def select_evictions(
    snapshots: Sequence[Snapshot],
    config: RetentionConfig,
    now: Optional[datetime] = None
) -> List[Snapshot]:
    """Pick snapshots to evict, oldest first.

    Everything older than auto_cleanup_days goes first, then the oldest
    survivors until both the count and the cumulative size fit. A limit
    of zero or less is disabled. The newest snapshot is never evicted;
    it is the baseline of the next capture.
    """
    now = now or utcnow()
    # Stable sort keeps input order for equal timestamps; input is newest first.
    ordered = sorted(reversed(list(snapshots)), key=lambda s: s.timestamp)
    if not ordered:
        return []

    evicted: List[Snapshot] = []
    survivors: List[Snapshot] = []

    if config.auto_cleanup_days > 0:
        cutoff = now - timedelta(days=config.auto_cleanup_days)
        for snapshot in ordered[:-1]:
            (evicted if snapshot.timestamp < cutoff else survivors).append(snapshot)
        survivors.append(ordered[-1])
    else:
        survivors = ordered

    max_count = config.max_snapshots
    max_kb = config.max_size_mb * 1024
    total_kb = sum(s.size_kb for s in survivors)

    def over_limit() -> bool:
        if max_count > 0 and len(survivors) > max_count:
            return True
        if config.max_size_mb > 0 and total_kb > max_kb:
            return True
        return False

    while len(survivors) > 1 and over_limit():
        oldest = survivors.pop(0)
        total_kb -= oldest.size_kb
        evicted.append(oldest)

    return evicted


def collect_roots(snapshots: Sequence[Snapshot]) -> tuple[Set[str], Set[str]]:
    """Content and diff hashes reachable from the given snapshots"""
    content: Set[str] = set()
    diffs: Set[str] = set()
    for snapshot in snapshots:
        refs = snapshot.referenced_hashes()
        content |= refs["content"]
        diffs |= refs["diffs"]
    return content, diffs


class RetentionScheduler:
    """Applies the retention policy and sweeps unreferenced objects.

    Callers hold the project-root lock around enforce() and
    collect_garbage().
    """

    def __init__(
        self,
        index: SnapshotIndex,
        content_store: ContentStore,
        diff_store: DiffStore,
        config: RetentionConfig
    ):
        self.index = index
        self.content_store = content_store
        self.diff_store = diff_store
        self.config = config

    def update_config(self, config: RetentionConfig) -> None:
        self.config = config
        logger.info("retention_config_updated", **config.model_dump())

    async def enforce(self, now: Optional[datetime] = None) -> RetentionReport:
        """Delete records selected for eviction, then collect garbage."""
        snapshots = await self.index.list()
        evictions = select_evictions(snapshots, self.config, now)

        for snapshot in evictions:
            await self.index.delete(snapshot.id)

        report = await self.collect_garbage()
        report.evicted = [s.id for s in evictions]

        logger.info(
            "retention_enforced",
            evicted=len(evictions),
            remaining=report.remaining,
            objects_removed=report.objects_removed,
            diffs_removed=report.diffs_removed
        )
        return report

    async def collect_garbage(self) -> RetentionReport:
        """Sweep every object not referenced by a surviving snapshot."""
        snapshots = await self.index.list()
        content_roots, diff_roots = collect_roots(snapshots)

        objects_removed, content_freed = await self.content_store.sweep(content_roots)
        diffs_removed, diff_freed = await self.diff_store.sweep(diff_roots)

        report = RetentionReport(
            remaining=len(snapshots),
            objects_removed=objects_removed,
            diffs_removed=diffs_removed,
            bytes_freed=content_freed + diff_freed,
        )

        logger.info("garbage_collected", **report.to_dict())
        return report
