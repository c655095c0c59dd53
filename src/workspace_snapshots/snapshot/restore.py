"""Restore engine: writes snapshot content back under the project root"""

import asyncio
import uuid
from pathlib import Path, PurePosixPath
from typing import Optional, Iterable

import aiofiles
import aiofiles.os

from .models import (
    FileChange,
    FileStatus,
    RestoreMode,
    RestoreSelection,
    RestoreResult,
    FileFailure,
    ConflictLevel,
    FileConflict,
    ConflictReport,
)
from ..storage.cas import ContentStore
from ..utils.errors import (
    SnapshotError,
    ValidationError,
    InvalidSelection,
)
from ..utils.logging import get_logger

logger = get_logger("workspace-snapshots.restore")

CANCELLED = "CANCELLED"
IO_ERROR = "IO_ERROR"


def infer_mode(selection: RestoreSelection) -> RestoreMode:
    """Full when the selection deletes anything, cherry-pick otherwise"""
    return RestoreMode.FULL if selection.has_removed else RestoreMode.CHERRY_PICK


def validate_selection(selection: RestoreSelection, mode: RestoreMode) -> None:
    if RestoreMode(mode) == RestoreMode.CHERRY_PICK and selection.removed:
        raise InvalidSelection([c.path for c in selection.removed])


def detect_conflicts(selection: RestoreSelection, live_paths: Iterable[str]) -> ConflictReport:
    """Classify each selected file against the paths present on disk

    Informational only; restores never consult it.
    """
    live = set(live_paths)
    report = ConflictReport()

    for change in selection:
        exists = change.path in live
        if change.status == FileStatus.ADDED and exists:
            level = ConflictLevel.CONFLICT
            reason = "file created after the snapshot would be overwritten"
        elif change.status == FileStatus.MODIFIED and exists:
            level = ConflictLevel.POTENTIAL
            reason = "current content will be replaced"
        else:
            level = ConflictLevel.NONE
            reason = ""
        report.files.append(FileConflict(
            path=change.path,
            level=level,
            status=change.status,
            reason=reason,
        ))

    return report


class RestoreEngine:
    """Applies file changes to a project tree, one file at a time."""

    def __init__(self, project_root: Path, content_store: ContentStore):
        self.project_root = Path(project_root).resolve()
        self.content_store = content_store

    def resolve_path(self, relative_path: str) -> Path:
        """Map a snapshot path onto the project root.

        Raises ValidationError for absolute paths or paths that resolve
        outside the root.
        """
        pure = PurePosixPath(relative_path)
        if not relative_path or pure.is_absolute() or ".." in pure.parts:
            raise ValidationError("path", relative_path, "must stay inside the project root")

        target = (self.project_root / Path(*pure.parts)).resolve()
        if target == self.project_root or not target.is_relative_to(self.project_root):
            raise ValidationError("path", relative_path, "must stay inside the project root")
        return target

    async def apply_file_change(self, change: FileChange) -> None:
        """Apply one change; unchanged entries are ignored."""
        if change.status == FileStatus.UNCHANGED:
            return

        target = self.resolve_path(change.path)

        if change.status == FileStatus.REMOVED:
            try:
                await aiofiles.os.remove(target)
            except FileNotFoundError:
                pass
            return

        data = await self.content_store.get(change.content_hash)
        await self._write_atomic(target, data)

    async def _write_atomic(self, target: Path, data: bytes) -> None:
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        temp_path = target.parent / f".{target.name}.{uuid.uuid4().hex[:8]}.restore-tmp"
        try:
            async with aiofiles.open(temp_path, 'wb') as f:
                await f.write(data)
            await aiofiles.os.replace(temp_path, target)
        except BaseException:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
            raise

    async def apply(
        self,
        selection: RestoreSelection,
        mode: RestoreMode,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RestoreResult:
        """
        Best-effort restore of a selection.

        Added and modified entries are written first, then removed
        entries are unlinked. Each file succeeds or fails on its own;
        files already written are not rolled back on cancel.

        Raises:
            InvalidSelection: cherry-pick selection with removed entries,
                before anything is written
        """
        mode = RestoreMode(mode)
        validate_selection(selection, mode)

        result = RestoreResult(snapshot_id=selection.snapshot_id, mode=mode)
        ordered = list(selection.added) + list(selection.modified) + list(selection.removed)

        for change in ordered:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                result.failed.append(FileFailure(
                    path=change.path,
                    error="restore cancelled",
                    code=CANCELLED,
                ))
                continue

            try:
                await self.apply_file_change(change)
            except SnapshotError as e:
                result.failed.append(FileFailure(path=change.path, error=e.message, code=e.code))
            except OSError as e:
                result.failed.append(FileFailure(path=change.path, error=str(e), code=IO_ERROR))
            else:
                result.applied.append(change.path)

        log = logger.warning if result.failed else logger.info
        log(
            "restore_completed",
            snapshot_id=selection.snapshot_id,
            mode=mode.value,
            applied=len(result.applied),
            failed=len(result.failed),
            cancelled=result.cancelled
        )
        return result
