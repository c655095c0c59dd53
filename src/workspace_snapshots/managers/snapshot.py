"""
Snapshot Manager for Workspace Snapshots.

Public API surface of the engine: captures, queries, restores, retention
and triggers for one project root at a time.
"""

import asyncio
import base64
import contextlib
import json
import uuid
import weakref
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, List, Optional, Sequence, Set, Union

import aiofiles
import aiofiles.os

from .base import BaseManager, ManagerConfig
from ..snapshot.builder import SnapshotBuilder
from ..snapshot.models import (
    Snapshot,
    CaptureTrigger,
    DiffObject,
    RestoreMode,
    RestoreSelection,
    RestoreResult,
    ConflictReport,
    RetentionReport,
    SnapshotComparison,
    utcnow,
)
from ..snapshot.compare import build_comparison
from ..snapshot.restore import RestoreEngine, infer_mode, detect_conflicts
from ..snapshot.retention import RetentionScheduler, collect_roots
from ..snapshot.scanner import (
    WorkspaceFile,
    WorkspaceScanner,
    validate_project_root,
    ensure_gitignored,
)
from ..storage.cas import ContentStore, DiffStore, compute_hash
from ..storage.index import SnapshotIndex
from ..utils.config import (
    SnapshotSettings,
    RetentionConfig,
    ConfigLoader,
    validate_retention,
)
from ..utils.errors import (
    SnapshotError,
    NotFoundError,
    CaptureCancelledError,
    ConfigurationError,
    IntegrityError,
    ValidationError,
    error_context,
)
from ..utils.logging import get_logger, log_function_call
from ..utils.notifications import (
    EventBus,
    SnapshotCreated,
    SnapshotRestored,
    SnapshotDeleted,
    RetentionCompleted,
    GarbageCollected,
    CaptureCancelled,
    ConfigUpdated,
)

logger = get_logger("workspace-snapshots.managers.snapshot")

CONFIG_FILE = "config.json"
INDEX_FILE = "index.db"
EXPORT_FORMAT = 1

# One lock per resolved project root, shared by every manager in the process.
_ROOT_LOCKS: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()


def get_project_lock(project_root: Union[str, Path]) -> asyncio.Lock:
    key = str(Path(project_root).resolve())
    lock = _ROOT_LOCKS.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _ROOT_LOCKS[key] = lock
    return lock


class SnapshotManager(BaseManager):
    """Manages snapshots of one project root."""

    def __init__(
        self,
        project_path: Union[str, Path],
        settings: Optional[SnapshotSettings] = None,
        event_bus: Optional[EventBus] = None
    ):
        super().__init__(ManagerConfig(name="snapshot"))
        self.project_path = Path(project_path).expanduser()
        self.settings = settings or SnapshotSettings()
        self.event_bus = event_bus or EventBus()
        self._owns_event_bus = event_bus is None
        self.branch = self.settings.default_branch

        self._lock: Optional[asyncio.Lock] = None
        self._generation = 0
        self._auto_task: Optional[asyncio.Task] = None
        self._config_loader: Optional[ConfigLoader] = None

        self.content_store: Optional[ContentStore] = None
        self.diff_store: Optional[DiffStore] = None
        self.index: Optional[SnapshotIndex] = None
        self.builder: Optional[SnapshotBuilder] = None
        self.restorer: Optional[RestoreEngine] = None
        self.retention: Optional[RetentionScheduler] = None
        self.scanner: Optional[WorkspaceScanner] = None

    @property
    def metadata_dir(self) -> Path:
        return self.project_path / self.settings.storage.metadata_dir

    @property
    def config_path(self) -> Path:
        return self.metadata_dir / CONFIG_FILE

    # Lifecycle

    async def _initialize(self) -> None:
        self.project_path = validate_project_root(self.project_path)
        await self._open_storage()

    async def _start(self) -> None:
        self._restart_auto_timer()

    async def stop(self) -> None:
        self._cancel_auto_timer()
        await self.wait_for_tasks()
        await super().stop()

    async def _stop(self) -> None:
        await self._close_storage()
        if self._config_loader is not None:
            self._config_loader.unregister_callback(self._on_settings_reloaded)
            self._config_loader = None
        if self._owns_event_bus:
            await self.event_bus.shutdown()

    async def _health_check(self) -> Dict[str, Any]:
        return {
            "project_path": str(self.project_path),
            "branch": self.branch,
            "snapshot_count": await self.index.count(),
            "auto_snapshots": self._auto_task is not None,
        }

    async def _open_storage(self) -> None:
        storage = self.settings.storage
        metadata_dir = self.metadata_dir
        tmp_dir = metadata_dir / "tmp"

        self.content_store = ContentStore(metadata_dir / "objects", tmp_dir, storage.compression_level)
        self.diff_store = DiffStore(metadata_dir / "diffs", tmp_dir, storage.compression_level)
        await self.content_store.initialize()
        await self.diff_store.initialize()

        self.index = SnapshotIndex(metadata_dir / INDEX_FILE)
        await self.index.initialize()

        await self._load_persisted_config()

        self.scanner = WorkspaceScanner(self.project_path, storage)
        self.builder = SnapshotBuilder(self.content_store, self.diff_store, storage)
        self.restorer = RestoreEngine(self.project_path, self.content_store)
        self.retention = RetentionScheduler(
            self.index, self.content_store, self.diff_store, self.settings.retention
        )
        # Published last: callers waiting on the previous root retry on this lock.
        self._lock = get_project_lock(self.project_path)

        if storage.manage_gitignore:
            await asyncio.to_thread(ensure_gitignored, self.project_path, storage.metadata_dir)

        logger.info(
            "storage_opened",
            project=str(self.project_path),
            metadata_dir=str(metadata_dir)
        )

    async def _close_storage(self) -> None:
        if self.index is not None:
            await self.index.close()
        logger.info("storage_closed", project=str(self.project_path))

    async def _load_persisted_config(self) -> None:
        if not await aiofiles.os.path.exists(self.config_path):
            return
        try:
            async with aiofiles.open(self.config_path, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
            self.settings.retention = validate_retention(data)
        except (OSError, ValueError, ConfigurationError) as e:
            logger.warning(
                "persisted_config_ignored",
                path=str(self.config_path),
                error=str(e)
            )
            return
        logger.debug("persisted_config_loaded", path=str(self.config_path))

    @contextlib.asynccontextmanager
    async def _locked(self):
        """Hold the current project root's lock.

        A waiter that wakes up holding the lock of a root it no longer
        manages retries on the current one.
        """
        while True:
            lock = self._lock
            async with lock:
                if lock is self._lock:
                    yield
                    return

    # Capture

    def _check_generation(self, generation: int) -> None:
        if generation != self._generation:
            raise CaptureCancelledError(
                f"Capture for {self.project_path} cancelled by project switch"
            )

    async def _resolve_files(
        self,
        files: Optional[Sequence[Union[WorkspaceFile, str]]]
    ) -> List[WorkspaceFile]:
        if files is None:
            return await self.scanner.scan()
        resolved = [f for f in files if isinstance(f, WorkspaceFile)]
        paths = [f for f in files if not isinstance(f, WorkspaceFile)]
        if paths:
            resolved.extend(await self.scanner.resolve(paths))
        return sorted(resolved, key=lambda f: f.path)

    @log_function_call(logger)
    async def capture_snapshot(
        self,
        message: str,
        trigger: CaptureTrigger = CaptureTrigger.MANUAL,
        open_files: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        files: Optional[Sequence[Union[WorkspaceFile, str]]] = None
    ) -> Snapshot:
        """
        Capture the project tree against the current branch baseline.

        Args:
            message: Capture message
            trigger: What caused the capture
            open_files: Editor files open at capture time
            tags: Free-form labels
            files: Pre-resolved live listing (WorkspaceFile objects or
                relative paths); the tree is scanned when None

        Returns:
            The committed snapshot

        Raises:
            CaptureCancelledError: switch_project() ran before commit
        """
        self._require_ready()
        trigger = CaptureTrigger(trigger)
        generation = self._generation

        try:
            async with self._locked():
                self._check_generation(generation)
                with error_context("snapshot_manager", "capture_snapshot", project=str(self.project_path)):
                    live = await self._resolve_files(files)
                    baseline = await self.index.latest(self.branch)
                    snapshot = await self.builder.build(
                        self.project_path,
                        live,
                        baseline,
                        message,
                        trigger,
                        self.branch,
                        open_files=open_files,
                        tags=tags,
                        cancel_check=lambda: self._check_generation(generation),
                    )
                    self._check_generation(generation)
                    await self.index.add(snapshot)
        except CaptureCancelledError:
            logger.info("capture_cancelled", message=message, trigger=trigger.value)
            await self.event_bus.emit(CaptureCancelled(
                project_path=str(self.project_path),
                message=message,
                trigger=trigger.value,
            ))
            raise

        logger.info(
            "snapshot_captured",
            snapshot_id=snapshot.id,
            branch=snapshot.git_branch,
            trigger=trigger.value,
            files_changed=snapshot.summary.files_changed,
            size_kb=snapshot.size_kb,
            incomplete=snapshot.incomplete
        )
        await self.event_bus.emit(SnapshotCreated(
            project_path=snapshot.project_path,
            snapshot_id=snapshot.id,
            branch=snapshot.git_branch,
            created_by=trigger.value,
            files_changed=snapshot.summary.files_changed,
            incomplete=snapshot.incomplete,
        ))

        try:
            await self.cleanup_snapshots()
        except SnapshotError as e:
            logger.error("post_capture_retention_failed", snapshot_id=snapshot.id, error=e.message)

        return snapshot

    # Queries

    async def list_snapshots(
        self,
        filter_by_branch: bool = False,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        created_by: Optional[CaptureTrigger] = None,
        limit: Optional[int] = None
    ) -> List[Snapshot]:
        """List snapshots newest first, optionally only the current branch."""
        self._require_ready()
        return await self.index.list(
            branch=self.branch if filter_by_branch else None,
            since=since,
            until=until,
            created_by=created_by,
            limit=limit,
        )

    async def get_snapshot(self, snapshot_id: str) -> Snapshot:
        self._require_ready()
        return await self.index.get(snapshot_id)

    async def get_content(self, content_hash: str) -> bytes:
        self._require_ready()
        return await self.content_store.get(content_hash)

    async def get_diff(self, diff_hash: str) -> DiffObject:
        self._require_ready()
        return await self.diff_store.get_diff(diff_hash)

    async def get_file_at(self, snapshot_id: str, path: str) -> bytes:
        """Bytes of a path as it was in the tree a snapshot captured."""
        snapshot = await self.get_snapshot(snapshot_id)
        entry = snapshot.manifest.get(path)
        if entry is None:
            raise NotFoundError("file", f"{path}@{snapshot_id}")
        return await self.content_store.get(entry.content_hash)

    async def compare_snapshots(
        self,
        from_id: str,
        to_id: str,
        include_diffs: bool = True
    ) -> SnapshotComparison:
        """File-level changes between two snapshots' trees."""
        self._require_ready()
        first = await self.index.get(from_id)
        second = await self.index.get(to_id)
        return await build_comparison(first, second, self.content_store, include_diffs)

    async def scan_workspace_files(
        self,
        project_path: Optional[Union[str, Path]] = None
    ) -> List[WorkspaceFile]:
        """List trackable files of this project, or of another root."""
        if project_path is None:
            self._require_ready()
            return await self.scanner.scan()
        root = validate_project_root(project_path)
        return await WorkspaceScanner(root, self.settings.storage).scan()

    # Restore

    async def restore_snapshot(
        self,
        snapshot_id: str,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RestoreResult:
        """Full restore of a snapshot's file changes."""
        snapshot = await self.get_snapshot(snapshot_id)
        selection = RestoreSelection.from_snapshot(snapshot)
        return await self.restore_files(selection, RestoreMode.FULL, cancel_event)

    @log_function_call(logger)
    async def restore_files(
        self,
        selection: RestoreSelection,
        mode: Optional[RestoreMode] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RestoreResult:
        """
        Restore a selection.

        Args:
            selection: Entries to apply
            mode: Restore policy; full when the selection removes files
                and cherry-pick otherwise if None
            cancel_event: When set, remaining files are reported as
                cancelled

        Raises:
            InvalidSelection: cherry-pick with removed entries
        """
        self._require_ready()
        mode = RestoreMode(mode) if mode is not None else infer_mode(selection)

        async with self._locked():
            result = await self.restorer.apply(selection, mode, cancel_event)

        await self.event_bus.emit(SnapshotRestored(
            project_path=str(self.project_path),
            snapshot_id=selection.snapshot_id,
            mode=mode.value,
            applied=len(result.applied),
            failed=len(result.failed),
        ))
        return result

    async def cherry_pick(
        self,
        selection: RestoreSelection,
        cancel_event: Optional[asyncio.Event] = None
    ) -> RestoreResult:
        return await self.restore_files(selection, RestoreMode.CHERRY_PICK, cancel_event)

    async def detect_conflicts(
        self,
        selection: RestoreSelection,
        live_files: Optional[Sequence[Union[WorkspaceFile, str]]] = None
    ) -> ConflictReport:
        """Conflict levels of a selection against the live tree."""
        self._require_ready()
        if live_files is not None:
            live_paths = [f.path if isinstance(f, WorkspaceFile) else f for f in live_files]
        else:
            def _existing() -> List[str]:
                return [
                    change.path for change in selection
                    if (self.project_path / change.path).exists()
                ]
            live_paths = await asyncio.to_thread(_existing)
        return detect_conflicts(selection, live_paths)

    # Deletion, retention and GC

    async def delete_snapshot(self, snapshot_id: str) -> None:
        """Delete a record and schedule a background GC pass."""
        self._require_ready()
        async with self._locked():
            if not await self.index.delete(snapshot_id):
                raise NotFoundError("snapshot", snapshot_id)

        logger.info("snapshot_deleted", snapshot_id=snapshot_id)
        await self.event_bus.emit(SnapshotDeleted(
            project_path=str(self.project_path),
            snapshot_id=snapshot_id,
            reason="manual",
        ))
        self.spawn(self.collect_garbage(), name=f"gc-{uuid.uuid4().hex[:8]}")

    async def collect_garbage(self) -> RetentionReport:
        """Sweep unreferenced content and diff objects now."""
        self._require_ready()
        async with self._locked():
            report = await self.retention.collect_garbage()

        await self.event_bus.emit(GarbageCollected(
            project_path=str(self.project_path),
            objects_removed=report.objects_removed,
            diffs_removed=report.diffs_removed,
            bytes_freed=report.bytes_freed,
        ))
        return report

    async def cleanup_snapshots(self, now: Optional[datetime] = None) -> RetentionReport:
        """Apply the retention policy and collect garbage."""
        self._require_ready()
        async with self._locked():
            report = await self.retention.enforce(now)

        for snapshot_id in report.evicted:
            await self.event_bus.emit(SnapshotDeleted(
                project_path=str(self.project_path),
                snapshot_id=snapshot_id,
                reason="retention",
            ))
        await self.event_bus.emit(RetentionCompleted(
            project_path=str(self.project_path),
            evicted=list(report.evicted),
            remaining=report.remaining,
        ))
        if report.objects_removed or report.diffs_removed:
            await self.event_bus.emit(GarbageCollected(
                project_path=str(self.project_path),
                objects_removed=report.objects_removed,
                diffs_removed=report.diffs_removed,
                bytes_freed=report.bytes_freed,
            ))
        return report

    # Export and import

    async def export_snapshots(
        self,
        destination: Union[str, Path],
        snapshot_ids: Optional[Sequence[str]] = None
    ) -> Path:
        """
        Write snapshot records and every object they reference to a JSON file.

        Args:
            destination: Directory (a file name is generated) or file path
            snapshot_ids: Records to export; all when None

        Returns:
            Path of the written export file
        """
        self._require_ready()
        destination = Path(destination).expanduser()
        if destination.is_dir():
            stamp = int(utcnow().timestamp() * 1000)
            destination = destination / f"{self.project_path.name}-snapshots-{stamp}.json"

        async with self._locked():
            if snapshot_ids is None:
                snapshots = await self.index.list()
            else:
                snapshots = [await self.index.get(snapshot_id) for snapshot_id in snapshot_ids]

            content_roots, diff_roots = collect_roots(snapshots)
            objects = {
                h: base64.b64encode(await self.content_store.get(h)).decode("ascii")
                for h in sorted(content_roots)
            }
            diffs = {
                h: base64.b64encode(await self.diff_store.get(h)).decode("ascii")
                for h in sorted(diff_roots)
            }

        bundle = {
            "format": EXPORT_FORMAT,
            "project": self.project_path.name,
            "exportDate": utcnow().isoformat(),
            "snapshots": [s.to_dict() for s in snapshots],
            "objects": objects,
            "diffs": diffs,
        }
        async with aiofiles.open(destination, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(bundle, indent=2))

        logger.info(
            "snapshots_exported",
            path=str(destination),
            snapshots=len(snapshots),
            objects=len(objects),
            diffs=len(diffs)
        )
        return destination

    async def import_snapshots(self, source: Union[str, Path]) -> List[str]:
        """
        Import records and objects from an export file.

        Records whose id already exists are skipped. Every referenced
        object is verified against its hash before anything is written.
        Imported records are attached to this project root.

        Returns:
            Ids of the imported records

        Raises:
            ValidationError: The file is not an export or lacks objects
            IntegrityError: An exported object does not match its hash
        """
        self._require_ready()
        source = Path(source).expanduser()
        try:
            async with aiofiles.open(source, 'r', encoding='utf-8') as f:
                data = json.loads(await f.read())
            records = data["snapshots"]
            if not isinstance(records, list):
                raise TypeError("snapshots is not a list")
            snapshots = [Snapshot.from_dict(record) for record in records]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ValidationError("source", str(source), f"not a snapshot export file ({e})") from e

        async with self._locked():
            pending = [s for s in snapshots if not await self.index.exists(s.id)]
            content_roots, diff_roots = collect_roots(pending)
            blobs = await self._decode_objects(self.content_store, data.get("objects") or {}, content_roots)
            diff_blobs = await self._decode_objects(self.diff_store, data.get("diffs") or {}, diff_roots)

            for blob in blobs:
                await self.content_store.put(blob)
            for blob in diff_blobs:
                await self.diff_store.put(blob)
            for snapshot in pending:
                snapshot.project_path = str(self.project_path)
                await self.index.add(snapshot)

        imported = [s.id for s in pending]
        logger.info(
            "snapshots_imported",
            path=str(source),
            imported=len(imported),
            skipped=len(snapshots) - len(imported)
        )
        return imported

    async def _decode_objects(
        self,
        store: ContentStore,
        encoded: Dict[str, str],
        needed: Set[str]
    ) -> List[bytes]:
        blobs = []
        for content_hash in sorted(needed):
            if await store.exists(content_hash):
                continue
            if content_hash not in encoded:
                raise ValidationError(
                    "objects", content_hash, f"{store.kind} object missing from export"
                )
            try:
                blob = base64.b64decode(encoded[content_hash], validate=True)
            except (ValueError, TypeError) as e:
                raise ValidationError(
                    "objects", content_hash, f"{store.kind} object is not base64"
                ) from e
            actual = await asyncio.to_thread(compute_hash, blob)
            if actual != content_hash:
                raise IntegrityError(content_hash, actual)
            blobs.append(blob)
        return blobs

    # Configuration

    async def update_config(
        self,
        retention: Union[RetentionConfig, Dict[str, Any]]
    ) -> RetentionConfig:
        """
        Validate, persist and apply a retention config.

        Restarts the auto-snapshot timer and emits ConfigUpdated.
        """
        self._require_ready()
        config = validate_retention(retention)

        await self._persist_config(config)
        self.settings.retention = config
        self.retention.update_config(config)
        if self.is_running:
            self._restart_auto_timer()

        await self.event_bus.emit(ConfigUpdated(
            project_path=str(self.project_path),
            config=config.to_file_dict(),
        ))
        return config

    async def _persist_config(self, config: RetentionConfig) -> None:
        temp_path = self.metadata_dir / "tmp" / f"config-{uuid.uuid4().hex}.json"
        async with aiofiles.open(temp_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(config.to_file_dict(), indent=2))
        await aiofiles.os.replace(temp_path, self.config_path)
        logger.info("config_persisted", path=str(self.config_path))

    def watch_config(self, loader: ConfigLoader) -> None:
        """Apply retention changes from a hot-reloading config loader."""
        self._config_loader = loader
        loader.register_callback(self._on_settings_reloaded)

    async def _on_settings_reloaded(self, settings: SnapshotSettings) -> None:
        if settings.retention != self.settings.retention:
            await self.update_config(settings.retention)

    # Triggers

    async def set_branch(self, branch: str) -> Optional[Snapshot]:
        """Record a branch change; captures when auto snapshots are on."""
        previous = self.branch
        self.branch = branch
        if branch == previous:
            return None

        logger.info("branch_changed", previous=previous, branch=branch)
        if not self.settings.retention.enable_auto_snapshots:
            return None
        return await self.capture_snapshot(
            f"Branch changed from {previous} to {branch}",
            trigger=CaptureTrigger.AUTO_BRANCH,
        )

    async def on_branch_changed(self, branch: str) -> Optional[Snapshot]:
        return await self.set_branch(branch)

    async def on_prompt_submitted(self, prompt: Optional[str] = None) -> Optional[Snapshot]:
        """Checkpoint before a prompt when prompt snapshots are on."""
        if not self.settings.retention.enable_claude_prompt_snapshots:
            return None
        message = "Before prompt"
        if prompt:
            summary = " ".join(prompt.split())
            message = f"Before prompt: {summary[:60]}"
        return await self.capture_snapshot(message, trigger=CaptureTrigger.AUTO_CHECKPOINT)

    async def capture_event(
        self,
        message: str,
        tags: Optional[List[str]] = None
    ) -> Snapshot:
        return await self.capture_snapshot(message, trigger=CaptureTrigger.AUTO_EVENT, tags=tags)

    def _cancel_auto_timer(self) -> None:
        if self._auto_task is not None:
            self._auto_task.cancel()
            self._auto_task = None

    def _restart_auto_timer(self) -> None:
        self._cancel_auto_timer()
        config = self.settings.retention
        if not config.enable_auto_snapshots or not config.auto_snapshot_interval:
            return
        self._auto_task = self.spawn(
            self._auto_snapshot_loop(config.auto_snapshot_interval),
            name="auto-snapshot"
        )
        logger.info("auto_snapshots_scheduled", interval=config.auto_snapshot_interval)

    async def _auto_snapshot_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.capture_snapshot("Auto-snapshot", trigger=CaptureTrigger.AUTO_TIMER)
            except SnapshotError as e:
                logger.error("auto_snapshot_failed", code=e.code, error=e.message)

    # Project switching

    async def switch_project(self, new_path: Union[str, Path]) -> None:
        """
        Point the manager at another project root.

        Any in-flight capture is cancelled and never committed; its
        caller receives CaptureCancelledError. The old root's lock is held
        until the new root's storage is open, so operations queued behind
        the switch run against the new root. If the new storage cannot be
        opened the previous root is reopened and the error re-raised.
        """
        self._require_ready()
        new_root = validate_project_root(new_path)

        self._generation += 1
        self._cancel_auto_timer()

        previous = self.project_path
        async with self._locked():
            await self._close_storage()
            self.project_path = new_root
            try:
                await self._open_storage()
            except SnapshotError as e:
                logger.error(
                    "project_switch_failed",
                    project=str(new_root),
                    code=e.code,
                    error=e.message
                )
                await self._close_storage()
                self.project_path = previous
                await self._open_storage()
                raise
            finally:
                if self.is_running:
                    self._restart_auto_timer()

        logger.info("project_switched", previous=str(previous), project=str(new_root))

    # Storage information

    async def get_storage_info(self) -> Dict[str, Any]:
        self._require_ready()
        index_stats = await self.index.get_stats()
        content_stats = await self.content_store.get_stats()
        diff_stats = await self.diff_store.get_stats()
        return {
            **index_stats,
            "content_objects": content_stats["object_count"],
            "diff_objects": diff_stats["object_count"],
            "compressed_bytes": content_stats["compressed_bytes"] + diff_stats["compressed_bytes"],
            "storage_dir": str(self.metadata_dir),
        }

    async def verify_storage(self) -> Dict[str, List[str]]:
        """Hashes of corrupted content and diff objects."""
        self._require_ready()
        async with self._locked():
            return {
                "content": await self.content_store.verify_integrity(),
                "diffs": await self.diff_store.verify_integrity(),
            }
