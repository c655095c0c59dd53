"""Snapshot data models"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List, Iterable, Iterator

from ..utils.errors import (
    ValidationError,
    PartialCaptureWarning,
    PartialRestoreFailure,
)


class FileStatus(str, Enum):
    """Classification of a path against the baseline"""
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    UNCHANGED = "unchanged"


class CaptureTrigger(str, Enum):
    """What caused a capture"""
    MANUAL = "manual"
    AUTO_TIMER = "auto-timer"
    AUTO_BRANCH = "auto-branch"
    AUTO_EVENT = "auto-event"
    AUTO_CHECKPOINT = "auto-checkpoint"


class RestoreMode(str, Enum):
    """Restore policy"""
    FULL = "full"
    CHERRY_PICK = "cherry-pick"


class ConflictLevel(str, Enum):
    NONE = "none"
    POTENTIAL = "potential"
    CONFLICT = "conflict"

    @property
    def rank(self) -> int:
        return _CONFLICT_RANK[self]


_CONFLICT_RANK = {
    ConflictLevel.NONE: 0,
    ConflictLevel.POTENTIAL: 1,
    ConflictLevel.CONFLICT: 2,
}


def new_snapshot_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DiffStats:
    lines_added: int = 0
    lines_removed: int = 0
    chunks: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "lines_added": self.lines_added,
            "lines_removed": self.lines_removed,
            "chunks": self.chunks,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiffStats':
        return cls(
            lines_added=data.get("lines_added", 0),
            lines_removed=data.get("lines_removed", 0),
            chunks=data.get("chunks", 0),
        )


@dataclass
class DiffObject:
    """Line diff between two content objects

    Addressed by the SHA-256 of its canonical JSON form, so identical
    edits share one stored object.
    """
    diff_body: str
    stats: DiffStats
    from_hash: Optional[str] = None
    to_hash: Optional[str] = None
    algorithm: str = "unified"
    size_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "diff_body": self.diff_body,
            "stats": self.stats.to_dict(),
            "from_hash": self.from_hash,
            "to_hash": self.to_hash,
            "algorithm": self.algorithm,
            "size_bytes": self.size_bytes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DiffObject':
        return cls(
            diff_body=data["diff_body"],
            stats=DiffStats.from_dict(data.get("stats", {})),
            from_hash=data.get("from_hash"),
            to_hash=data.get("to_hash"),
            algorithm=data.get("algorithm", "unified"),
            size_bytes=data.get("size_bytes", 0),
        )

    def canonical_bytes(self) -> bytes:
        """Deterministic serialization used for hashing and storage"""
        return json.dumps(
            self.to_dict(),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
        ).encode("utf-8")


@dataclass
class FileChange:
    """One path's change against the baseline"""
    path: str
    status: FileStatus
    content_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    diff_hash: Optional[str] = None
    size: int = 0
    is_text_file: bool = True
    mime_type: Optional[str] = None
    encoding: Optional[str] = None

    def __post_init__(self):
        self.status = FileStatus(self.status)
        if self.status == FileStatus.ADDED:
            if not self.content_hash or self.previous_hash:
                raise ValidationError(
                    "status", self.status.value,
                    f"added entry {self.path} needs content_hash and no previous_hash"
                )
        elif self.status == FileStatus.REMOVED:
            if not self.previous_hash or self.content_hash:
                raise ValidationError(
                    "status", self.status.value,
                    f"removed entry {self.path} needs previous_hash and no content_hash"
                )
        elif self.status == FileStatus.MODIFIED:
            if not self.content_hash or not self.previous_hash:
                raise ValidationError(
                    "status", self.status.value,
                    f"modified entry {self.path} needs content_hash and previous_hash"
                )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "status": self.status.value,
            "content_hash": self.content_hash,
            "previous_hash": self.previous_hash,
            "diff_hash": self.diff_hash,
            "size": self.size,
            "is_text_file": self.is_text_file,
            "mime_type": self.mime_type,
            "encoding": self.encoding,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileChange':
        return cls(
            path=data["path"],
            status=FileStatus(data["status"]),
            content_hash=data.get("content_hash"),
            previous_hash=data.get("previous_hash"),
            diff_hash=data.get("diff_hash"),
            size=data.get("size", 0),
            is_text_file=data.get("is_text_file", True),
            mime_type=data.get("mime_type"),
            encoding=data.get("encoding"),
        )


@dataclass
class ManifestEntry:
    """State of one path in the tree a snapshot captured"""
    content_hash: str
    size: int
    is_text_file: bool
    lines: int = 0
    mtime_ns: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content_hash": self.content_hash,
            "size": self.size,
            "is_text_file": self.is_text_file,
            "lines": self.lines,
            "mtime_ns": self.mtime_ns,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ManifestEntry':
        return cls(
            content_hash=data["content_hash"],
            size=data["size"],
            is_text_file=data["is_text_file"],
            lines=data.get("lines", 0),
            mtime_ns=data.get("mtime_ns", 0),
        )


@dataclass
class FileChanges:
    """Changed entries grouped by status"""
    added: List[FileChange] = field(default_factory=list)
    modified: List[FileChange] = field(default_factory=list)
    removed: List[FileChange] = field(default_factory=list)

    def __iter__(self) -> Iterator[FileChange]:
        yield from self.added
        yield from self.modified
        yield from self.removed

    def __len__(self) -> int:
        return len(self.added) + len(self.modified) + len(self.removed)

    @property
    def paths(self) -> List[str]:
        return [change.path for change in self]

    def get(self, path: str) -> Optional[FileChange]:
        for change in self:
            if change.path == path:
                return change
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": [c.to_dict() for c in self.added],
            "modified": [c.to_dict() for c in self.modified],
            "removed": [c.to_dict() for c in self.removed],
        }

    @classmethod
    def from_changes(cls, changes: Iterable[FileChange]) -> 'FileChanges':
        """Bucket a flat list, dropping unchanged entries"""
        result = cls()
        for change in changes:
            if change.status == FileStatus.ADDED:
                result.added.append(change)
            elif change.status == FileStatus.MODIFIED:
                result.modified.append(change)
            elif change.status == FileStatus.REMOVED:
                result.removed.append(change)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FileChanges':
        return cls(
            added=[FileChange.from_dict(c) for c in data.get("added", [])],
            modified=[FileChange.from_dict(c) for c in data.get("modified", [])],
            removed=[FileChange.from_dict(c) for c in data.get("removed", [])],
        )


@dataclass
class ChangeSummary:
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0
    bytes_changed: int = 0
    text_files: int = 0
    binary_files: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "files_changed": self.files_changed,
            "lines_added": self.lines_added,
            "lines_removed": self.lines_removed,
            "bytes_changed": self.bytes_changed,
            "text_files": self.text_files,
            "binary_files": self.binary_files,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ChangeSummary':
        return cls(**{k: data.get(k, 0) for k in cls().to_dict()})


@dataclass
class CaptureWarning:
    """Non-fatal problem recorded on a snapshot"""
    path: str
    reason: str
    code: str = PartialCaptureWarning.code

    @classmethod
    def from_error(cls, error: PartialCaptureWarning) -> 'CaptureWarning':
        return cls(path=error.path, reason=error.reason, code=error.code)

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "reason": self.reason, "code": self.code}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CaptureWarning':
        return cls(
            path=data["path"],
            reason=data["reason"],
            code=data.get("code", PartialCaptureWarning.code),
        )


@dataclass
class Snapshot:
    """Point-in-time record of a project tree

    Content and diffs are referenced by hash only. Immutable once
    committed to the index.
    """
    id: str
    timestamp: datetime
    message: str
    created_by: CaptureTrigger
    project_path: str
    git_branch: str
    file_changes: FileChanges = field(default_factory=FileChanges)
    summary: ChangeSummary = field(default_factory=ChangeSummary)
    size_kb: float = 0.0
    open_files: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    manifest: Dict[str, ManifestEntry] = field(default_factory=dict)
    incomplete: bool = False
    warnings: List[CaptureWarning] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "message": self.message,
            "created_by": self.created_by.value,
            "project_path": self.project_path,
            "git_branch": self.git_branch,
            "file_changes": self.file_changes.to_dict(),
            "summary": self.summary.to_dict(),
            "size_kb": self.size_kb,
            "open_files": list(self.open_files),
            "tags": list(self.tags),
            "manifest": {
                path: entry.to_dict()
                for path, entry in sorted(self.manifest.items())
            },
            "incomplete": self.incomplete,
            "warnings": [w.to_dict() for w in self.warnings],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Snapshot':
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            message=data.get("message", ""),
            created_by=CaptureTrigger(data.get("created_by", CaptureTrigger.MANUAL.value)),
            project_path=data["project_path"],
            git_branch=data.get("git_branch", "main"),
            file_changes=FileChanges.from_dict(data.get("file_changes", {})),
            summary=ChangeSummary.from_dict(data.get("summary", {})),
            size_kb=data.get("size_kb", 0.0),
            open_files=list(data.get("open_files", [])),
            tags=list(data.get("tags", [])),
            manifest={
                path: ManifestEntry.from_dict(entry)
                for path, entry in data.get("manifest", {}).items()
            },
            incomplete=data.get("incomplete", False),
            warnings=[CaptureWarning.from_dict(w) for w in data.get("warnings", [])],
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_json(cls, text: str) -> 'Snapshot':
        return cls.from_dict(json.loads(text))

    def referenced_hashes(self) -> Dict[str, set]:
        """Hashes this snapshot keeps alive: content and diff roots"""
        content = {entry.content_hash for entry in self.manifest.values()}
        diffs = set()
        for change in self.file_changes:
            if change.content_hash:
                content.add(change.content_hash)
            if change.diff_hash:
                diffs.add(change.diff_hash)
        return {"content": content, "diffs": diffs}


@dataclass
class RestoreSelection(FileChanges):
    """Caller-built subset of a snapshot's file changes"""
    snapshot_id: Optional[str] = None

    @property
    def has_removed(self) -> bool:
        return bool(self.removed)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: Snapshot,
        paths: Optional[Iterable[str]] = None,
        include_removed: bool = True
    ) -> 'RestoreSelection':
        """Select all or some of a snapshot's changed entries"""
        wanted = set(paths) if paths is not None else None

        def pick(changes: List[FileChange]) -> List[FileChange]:
            if wanted is None:
                return list(changes)
            return [c for c in changes if c.path in wanted]

        return cls(
            added=pick(snapshot.file_changes.added),
            modified=pick(snapshot.file_changes.modified),
            removed=pick(snapshot.file_changes.removed) if include_removed else [],
            snapshot_id=snapshot.id,
        )

    @classmethod
    def for_cherry_pick(
        cls,
        snapshot: Snapshot,
        paths: Optional[Iterable[str]] = None
    ) -> 'RestoreSelection':
        return cls.from_snapshot(snapshot, paths=paths, include_removed=False)


@dataclass
class FileConflict:
    path: str
    level: ConflictLevel
    status: FileStatus
    reason: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "path": self.path,
            "level": self.level.value,
            "status": self.status.value,
            "reason": self.reason,
        }


@dataclass
class ConflictReport:
    """Per-file conflict levels for a selection against the live tree"""
    files: List[FileConflict] = field(default_factory=list)

    @property
    def level(self) -> ConflictLevel:
        """Highest level across all files"""
        highest = ConflictLevel.NONE
        for conflict in self.files:
            if conflict.level.rank > highest.rank:
                highest = conflict.level
        return highest

    @property
    def has_conflicts(self) -> bool:
        return self.level != ConflictLevel.NONE

    def by_level(self, level: ConflictLevel) -> List[FileConflict]:
        return [c for c in self.files if c.level == level]

    def level_for(self, path: str) -> ConflictLevel:
        for conflict in self.files:
            if conflict.path == path:
                return conflict.level
        return ConflictLevel.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "files": [c.to_dict() for c in self.files],
        }


@dataclass
class FileFailure:
    path: str
    error: str
    code: str

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "error": self.error, "code": self.code}


@dataclass
class RestoreResult:
    """Outcome of a best-effort restore"""
    applied: List[str] = field(default_factory=list)
    failed: List[FileFailure] = field(default_factory=list)
    snapshot_id: Optional[str] = None
    mode: RestoreMode = RestoreMode.FULL
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialRestoreFailure(self.failed, self.applied)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "mode": self.mode.value,
            "applied": list(self.applied),
            "failed": [f.to_dict() for f in self.failed],
            "cancelled": self.cancelled,
        }


@dataclass
class RetentionReport:
    evicted: List[str] = field(default_factory=list)
    remaining: int = 0
    objects_removed: int = 0
    diffs_removed: int = 0
    bytes_freed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "evicted": list(self.evicted),
            "remaining": self.remaining,
            "objects_removed": self.objects_removed,
            "diffs_removed": self.diffs_removed,
            "bytes_freed": self.bytes_freed,
        }


@dataclass
class SnapshotComparison:
    """Tree-level difference between two snapshots

    Entries describe going from the first snapshot to the second.
    Diffs are computed on demand and never stored.
    """
    from_id: str
    to_id: str
    file_changes: FileChanges = field(default_factory=FileChanges)
    summary: ChangeSummary = field(default_factory=ChangeSummary)
    unchanged: int = 0
    branch_changed: bool = False
    open_files_changed: List[str] = field(default_factory=list)
    content_size_change: int = 0
    diffs: Dict[str, DiffObject] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_id": self.from_id,
            "to_id": self.to_id,
            "file_changes": self.file_changes.to_dict(),
            "summary": self.summary.to_dict(),
            "unchanged": self.unchanged,
            "branch_changed": self.branch_changed,
            "open_files_changed": list(self.open_files_changed),
            "content_size_change": self.content_size_change,
            "diffs": {path: d.to_dict() for path, d in sorted(self.diffs.items())},
        }
