"""Snapshot builder

Classifies the live tree against the branch baseline, writes new content
and diffs to the stores, and returns an uncommitted Snapshot.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, List, Dict, Callable, Sequence

from .diff import (
    diff,
    is_text,
    count_lines,
    file_attrs,
)
from .models import (
    Snapshot,
    FileChange,
    FileChanges,
    FileStatus,
    ManifestEntry,
    ChangeSummary,
    CaptureTrigger,
    CaptureWarning,
    new_snapshot_id,
    utcnow,
)
from .scanner import WorkspaceFile
from ..storage.cas import ContentStore, DiffStore, compute_hash
from ..utils.config import StorageConfig
from ..utils.errors import (
    PartialCaptureWarning,
    NotFoundError,
    IntegrityError,
)
from ..utils.logging import get_logger

logger = get_logger("workspace-snapshots.snapshot.builder")

MISSING_BASELINE = "MISSING_BASELINE"
FILE_TOO_LARGE = "FILE_TOO_LARGE"

# Entries modified within this window before the baseline capture are re-read.
RACY_WINDOW_NS = 2_000_000_000


@dataclass
class _FileOutcome:
    path: str
    change: Optional[FileChange] = None
    entry: Optional[ManifestEntry] = None
    warning: Optional[CaptureWarning] = None
    incomplete: bool = False
    lines_added: int = 0
    lines_removed: int = 0
    bytes_changed: int = 0


class SnapshotBuilder:
    """Builds snapshot records; never commits them."""

    def __init__(
        self,
        content_store: ContentStore,
        diff_store: DiffStore,
        config: StorageConfig
    ):
        self.content_store = content_store
        self.diff_store = diff_store
        self.config = config

    async def build(
        self,
        project_path: Path,
        files: Sequence[WorkspaceFile],
        baseline: Optional[Snapshot],
        message: str,
        trigger: CaptureTrigger,
        branch: str,
        open_files: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        cancel_check: Optional[Callable[[], None]] = None
    ) -> Snapshot:
        """
        Build a snapshot of files against baseline.

        Args:
            project_path: Resolved project root
            files: Live listing of the tree
            baseline: Most recent snapshot on the branch, if any
            message: Capture message
            trigger: What caused the capture
            branch: Current branch name
            open_files: Editor files open at capture time
            tags: Free-form labels
            cancel_check: Raises CaptureCancelledError when the capture
                should stop

        Returns:
            Uncommitted snapshot whose content and diffs are already stored
        """
        baseline_manifest = baseline.manifest if baseline else {}
        trusted_before_ns = (
            int(baseline.timestamp.timestamp() * 1_000_000_000) - RACY_WINDOW_NS
            if baseline else 0
        )
        semaphore = asyncio.Semaphore(self.config.capture_concurrency)

        async def bounded(workspace_file: WorkspaceFile) -> _FileOutcome:
            async with semaphore:
                if cancel_check:
                    cancel_check()
                return await self._process_file(
                    workspace_file,
                    baseline_manifest.get(workspace_file.path),
                    trusted_before_ns
                )

        readable = [f for f in files if not f.unreadable]
        tasks = [asyncio.ensure_future(bounded(f)) for f in readable]
        try:
            outcomes = list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if cancel_check:
            cancel_check()

        for workspace_file in files:
            if workspace_file.unreadable:
                outcomes.extend(self._unreadable(workspace_file, baseline_manifest))

        # Baseline paths under a failed stat or listing keep their entries.
        live_paths = {f.path for f in readable}
        live_paths.update(o.path for o in outcomes if o.entry is not None)
        for path in sorted(set(baseline_manifest) - live_paths):
            outcomes.append(self._removed(path, baseline_manifest[path]))

        snapshot = self._assemble(
            outcomes, project_path, message, trigger, branch, open_files, tags
        )

        logger.info(
            "snapshot_built",
            snapshot_id=snapshot.id,
            branch=branch,
            baseline_id=baseline.id if baseline else None,
            added=len(snapshot.file_changes.added),
            modified=len(snapshot.file_changes.modified),
            removed=len(snapshot.file_changes.removed),
            incomplete=snapshot.incomplete,
            warnings=len(snapshot.warnings)
        )
        return snapshot

    async def _process_file(
        self,
        workspace_file: WorkspaceFile,
        base: Optional[ManifestEntry],
        trusted_before_ns: int = 0
    ) -> _FileOutcome:
        path = workspace_file.path
        outcome = _FileOutcome(path=path)

        if workspace_file.oversized:
            outcome.entry = base
            outcome.warning = CaptureWarning(
                path=path,
                reason=(
                    f"larger than {self.config.max_file_size} bytes; "
                    + ("baseline kept" if base is not None else "not captured")
                ),
                code=FILE_TOO_LARGE,
            )
            logger.info("file_too_large_skipped", path=path, size=workspace_file.size)
            return outcome

        # Stat cache: same size and mtime means same content.
        if (
            base is not None
            and base.size == workspace_file.size
            and base.mtime_ns == workspace_file.mtime_ns
            and base.mtime_ns < trusted_before_ns
        ):
            outcome.entry = base
            return outcome

        try:
            data = await workspace_file.read()
        except OSError as e:
            warning = PartialCaptureWarning(path, e.strerror or str(e))
            logger.warning("file_capture_failed", path=path, error=str(e))
            outcome.warning = CaptureWarning.from_error(warning)
            outcome.incomplete = True
            outcome.entry = base
            return outcome

        content_hash = await asyncio.to_thread(compute_hash, data)
        text = is_text(data, path)
        entry = ManifestEntry(
            content_hash=content_hash,
            size=len(data),
            is_text_file=text,
            lines=count_lines(data) if text else 0,
            mtime_ns=workspace_file.mtime_ns,
        )
        outcome.entry = entry

        if base is not None and base.content_hash == content_hash:
            return outcome

        await self.content_store.put(data)

        if base is None:
            outcome.change = FileChange(
                path=path,
                status=FileStatus.ADDED,
                content_hash=content_hash,
                size=len(data),
                is_text_file=text,
                **file_attrs(path, text)
            )
            outcome.lines_added = entry.lines
            outcome.bytes_changed = len(data)
            return outcome

        diff_hash = None
        if text and base.is_text_file:
            try:
                previous = await self.content_store.get(base.content_hash)
            except (NotFoundError, IntegrityError) as e:
                outcome.warning = CaptureWarning(
                    path=path,
                    reason=f"baseline content unavailable: {e.message}",
                    code=MISSING_BASELINE,
                )
                logger.warning(
                    "baseline_content_missing",
                    path=path,
                    hash=base.content_hash,
                    error=e.message
                )
            else:
                diff_object = await asyncio.to_thread(
                    diff, previous, data, path, base.content_hash, content_hash
                )
                diff_hash = await self.diff_store.put_diff(diff_object)
                outcome.lines_added = diff_object.stats.lines_added
                outcome.lines_removed = diff_object.stats.lines_removed

        outcome.change = FileChange(
            path=path,
            status=FileStatus.MODIFIED,
            content_hash=content_hash,
            previous_hash=base.content_hash,
            diff_hash=diff_hash,
            size=len(data),
            is_text_file=text,
            **file_attrs(path, text)
        )
        outcome.bytes_changed = abs(len(data) - base.size)
        return outcome

    def _unreadable(
        self,
        workspace_file: WorkspaceFile,
        baseline_manifest: Dict[str, ManifestEntry]
    ) -> List[_FileOutcome]:
        path = workspace_file.path
        warning = PartialCaptureWarning(path, workspace_file.error)
        logger.warning(
            "file_capture_failed",
            path=path,
            error=workspace_file.error,
            directory=workspace_file.is_dir
        )
        outcomes = [_FileOutcome(
            path=path,
            entry=None if workspace_file.is_dir else baseline_manifest.get(path),
            warning=CaptureWarning.from_error(warning),
            incomplete=True,
        )]
        if workspace_file.is_dir:
            prefix = "" if path == "." else path.rstrip("/") + "/"
            outcomes.extend(
                _FileOutcome(path=kept, entry=entry)
                for kept, entry in baseline_manifest.items()
                if kept.startswith(prefix)
            )
        return outcomes

    def _removed(self, path: str, base: ManifestEntry) -> _FileOutcome:
        return _FileOutcome(
            path=path,
            change=FileChange(
                path=path,
                status=FileStatus.REMOVED,
                previous_hash=base.content_hash,
                size=base.size,
                is_text_file=base.is_text_file,
                **file_attrs(path, base.is_text_file)
            ),
            lines_removed=base.lines if base.is_text_file else 0,
            bytes_changed=base.size,
        )

    def _assemble(
        self,
        outcomes: List[_FileOutcome],
        project_path: Path,
        message: str,
        trigger: CaptureTrigger,
        branch: str,
        open_files: Optional[List[str]],
        tags: Optional[List[str]]
    ) -> Snapshot:
        outcomes.sort(key=lambda o: o.path)

        changes = FileChanges.from_changes(o.change for o in outcomes if o.change)
        summary = ChangeSummary(files_changed=len(changes))
        manifest: Dict[str, ManifestEntry] = {}
        warnings: List[CaptureWarning] = []
        incomplete = False

        for outcome in outcomes:
            if outcome.entry is not None:
                manifest[outcome.path] = outcome.entry
            if outcome.warning is not None:
                warnings.append(outcome.warning)
            incomplete = incomplete or outcome.incomplete
            summary.lines_added += outcome.lines_added
            summary.lines_removed += outcome.lines_removed
            summary.bytes_changed += outcome.bytes_changed

        for change in changes:
            if change.is_text_file:
                summary.text_files += 1
            else:
                summary.binary_files += 1

        snapshot = Snapshot(
            id=new_snapshot_id(),
            timestamp=utcnow(),
            message=message,
            created_by=CaptureTrigger(trigger),
            project_path=str(project_path),
            git_branch=branch,
            file_changes=changes,
            summary=summary,
            open_files=list(open_files or []),
            tags=list(tags or []),
            manifest=manifest,
            incomplete=incomplete,
            warnings=warnings,
        )
        record_size = len(snapshot.to_json().encode("utf-8"))
        snapshot.size_kb = round((summary.bytes_changed + record_size) / 1024, 3)
        return snapshot
