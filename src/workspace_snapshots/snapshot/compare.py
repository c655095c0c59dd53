"""Comparison of two captured trees"""

import asyncio
from typing import Dict, List

from .diff import diff, file_attrs
from .models import (
    Snapshot,
    FileChange,
    FileChanges,
    FileStatus,
    ChangeSummary,
    DiffObject,
    SnapshotComparison,
)
from ..storage.cas import ContentStore
from ..utils.logging import get_logger

logger = get_logger("workspace-snapshots.snapshot.compare")


async def build_comparison(
    first: Snapshot,
    second: Snapshot,
    content_store: ContentStore,
    include_diffs: bool = True
) -> SnapshotComparison:
    """
    Compare the manifests of two snapshots.

    Args:
        first: Snapshot the comparison starts from
        second: Snapshot the comparison ends at
        content_store: Store holding both trees' content
        include_diffs: Fetch both versions of modified text files and
            diff them; line counts of modified files stay zero otherwise

    Returns:
        Added, modified and removed entries going from first to second
    """
    before = first.manifest
    after = second.manifest
    changes: List[FileChange] = []
    diffs: Dict[str, DiffObject] = {}
    summary = ChangeSummary()
    unchanged = 0

    for path in sorted(set(before) | set(after)):
        old = before.get(path)
        new = after.get(path)

        if old is None:
            changes.append(FileChange(
                path=path,
                status=FileStatus.ADDED,
                content_hash=new.content_hash,
                size=new.size,
                is_text_file=new.is_text_file,
                **file_attrs(path, new.is_text_file)
            ))
            summary.lines_added += new.lines
            summary.bytes_changed += new.size
        elif new is None:
            changes.append(FileChange(
                path=path,
                status=FileStatus.REMOVED,
                previous_hash=old.content_hash,
                size=old.size,
                is_text_file=old.is_text_file,
                **file_attrs(path, old.is_text_file)
            ))
            summary.lines_removed += old.lines
            summary.bytes_changed += old.size
        elif old.content_hash == new.content_hash:
            unchanged += 1
        else:
            changes.append(FileChange(
                path=path,
                status=FileStatus.MODIFIED,
                content_hash=new.content_hash,
                previous_hash=old.content_hash,
                size=new.size,
                is_text_file=new.is_text_file,
                **file_attrs(path, new.is_text_file)
            ))
            summary.bytes_changed += abs(new.size - old.size)
            if include_diffs and old.is_text_file and new.is_text_file:
                previous = await content_store.get(old.content_hash)
                current = await content_store.get(new.content_hash)
                diff_object = await asyncio.to_thread(
                    diff, previous, current, path, old.content_hash, new.content_hash
                )
                diffs[path] = diff_object
                summary.lines_added += diff_object.stats.lines_added
                summary.lines_removed += diff_object.stats.lines_removed

    file_changes = FileChanges.from_changes(changes)
    summary.files_changed = len(file_changes)
    for change in file_changes:
        if change.is_text_file:
            summary.text_files += 1
        else:
            summary.binary_files += 1

    open_before = set(first.open_files)
    open_after = set(second.open_files)

    comparison = SnapshotComparison(
        from_id=first.id,
        to_id=second.id,
        file_changes=file_changes,
        summary=summary,
        unchanged=unchanged,
        branch_changed=first.git_branch != second.git_branch,
        open_files_changed=sorted(open_before ^ open_after),
        content_size_change=(
            sum(e.size for e in after.values()) - sum(e.size for e in before.values())
        ),
        diffs=diffs,
    )

    logger.debug(
        "snapshots_compared",
        from_id=first.id,
        to_id=second.id,
        files_changed=summary.files_changed,
        unchanged=unchanged
    )
    return comparison
