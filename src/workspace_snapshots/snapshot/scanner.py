"""Workspace scanning with gitignore-style filtering"""

import asyncio
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Iterable

import aiofiles
import pathspec

from ..utils.config import StorageConfig
from ..utils.errors import ProjectRootError
from ..utils.logging import get_logger

logger = get_logger("workspace-snapshots.snapshot.scanner")


@dataclass
class WorkspaceFile:
    """A regular file in the live tree

    Bytes are read lazily so unchanged files can be skipped by stat.
    Entries that could not be listed or stat'ed carry the failure in
    `error`; for an unreadable directory `is_dir` is set and `path` is
    the directory ("." for the root).
    """
    path: str
    absolute_path: Path
    size: int
    mtime_ns: int
    oversized: bool = False
    error: Optional[str] = None
    is_dir: bool = False

    @property
    def unreadable(self) -> bool:
        return self.error is not None

    async def read(self) -> bytes:
        async with aiofiles.open(self.absolute_path, 'rb') as f:
            return await f.read()

    @classmethod
    def from_path(
        cls,
        project_root: Path,
        absolute_path: Path,
        max_file_size: Optional[int] = None
    ) -> Optional['WorkspaceFile']:
        """Stat a path under the project root.

        Returns None for symlinks and anything that is not a regular
        file. OSError propagates.
        """
        st = absolute_path.lstat()
        if not stat.S_ISREG(st.st_mode):
            return None
        return cls(
            path=absolute_path.relative_to(project_root).as_posix(),
            absolute_path=absolute_path,
            size=st.st_size,
            mtime_ns=st.st_mtime_ns,
            oversized=max_file_size is not None and st.st_size > max_file_size,
        )

    @classmethod
    def failed(cls, path: str, absolute_path: Path, error: OSError, is_dir: bool = False) -> 'WorkspaceFile':
        return cls(
            path=path,
            absolute_path=absolute_path,
            size=0,
            mtime_ns=0,
            error=error.strerror or str(error),
            is_dir=is_dir,
        )


def validate_project_root(project_path: Path | str) -> Path:
    """Resolve a project root, failing before any effect if unusable"""
    root = Path(project_path).expanduser()
    if not root.exists():
        raise ProjectRootError(str(root), "does not exist")
    if not root.is_dir():
        raise ProjectRootError(str(root), "is not a directory")
    return root.resolve()


def read_gitignore(project_root: Path) -> List[str]:
    gitignore_path = project_root / ".gitignore"
    if not gitignore_path.is_file():
        return []
    try:
        lines = gitignore_path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError as e:
        logger.warning("gitignore_unreadable", path=str(gitignore_path), error=str(e))
        return []
    return [line for line in lines if line.strip() and not line.lstrip().startswith("#")]


def ensure_gitignored(project_root: Path, entry: str) -> bool:
    """Append entry to the project .gitignore unless already listed.

    Returns True when the file was changed.
    """
    gitignore_path = project_root / ".gitignore"
    entry = entry.rstrip("/") + "/"
    existing = ""
    if gitignore_path.exists():
        existing = gitignore_path.read_text(encoding="utf-8")
        listed = {line.strip().rstrip("/") for line in existing.splitlines()}
        if entry.rstrip("/") in listed or "/" + entry.rstrip("/") in listed:
            return False

    prefix = "" if not existing or existing.endswith("\n") else "\n"
    with open(gitignore_path, "a", encoding="utf-8") as f:
        f.write(f"{prefix}{entry}\n")

    logger.info("gitignore_updated", path=str(gitignore_path), entry=entry)
    return True


class WorkspaceScanner:
    """Lists the regular files of a project tree

    The metadata directory is always excluded. Symlinks are not followed
    and are not captured.
    """

    def __init__(self, project_root: Path, config: StorageConfig):
        self.project_root = Path(project_root)
        self.config = config

    def build_spec(self) -> pathspec.PathSpec:
        patterns = list(self.config.ignore_patterns)
        patterns.append(self.config.metadata_dir.rstrip("/") + "/")
        if self.config.respect_gitignore:
            patterns.extend(read_gitignore(self.project_root))
        return pathspec.GitIgnoreSpec.from_lines(patterns)

    def is_ignored(self, relative_path: str, spec: Optional[pathspec.PathSpec] = None) -> bool:
        spec = spec or self.build_spec()
        return spec.match_file(relative_path)

    def _stat(self, rel: str, full: Path, files: List[WorkspaceFile]) -> None:
        try:
            workspace_file = WorkspaceFile.from_path(
                self.project_root, full, self.config.max_file_size
            )
        except (FileNotFoundError, NotADirectoryError):
            return
        except OSError as e:
            logger.warning("file_stat_failed", path=rel, error=str(e))
            files.append(WorkspaceFile.failed(rel, full, e))
            return
        if workspace_file is not None:
            files.append(workspace_file)

    def _walk(self) -> List[WorkspaceFile]:
        spec = self.build_spec()
        files: List[WorkspaceFile] = []

        def on_error(error: OSError) -> None:
            failed_dir = Path(error.filename) if error.filename else self.project_root
            rel = failed_dir.relative_to(self.project_root).as_posix()
            logger.warning("directory_listing_failed", path=rel, error=str(error))
            files.append(WorkspaceFile.failed(rel, failed_dir, error, is_dir=True))

        for dirpath, dirnames, filenames in os.walk(self.project_root, onerror=on_error):
            current = Path(dirpath)
            rel_dir = current.relative_to(self.project_root).as_posix()
            rel_dir = "" if rel_dir == "." else rel_dir + "/"

            kept = []
            for name in dirnames:
                if os.path.islink(current / name):
                    continue
                if spec.match_file(f"{rel_dir}{name}/"):
                    continue
                kept.append(name)
            dirnames[:] = sorted(kept)

            for name in filenames:
                rel = f"{rel_dir}{name}"
                if spec.match_file(rel):
                    continue
                self._stat(rel, current / name, files)

        files.sort(key=lambda f: f.path)
        return files

    async def scan(self) -> List[WorkspaceFile]:
        """Scan the tree in a worker thread.

        Files and directories that fail stat or listing are returned with
        `error` set instead of being dropped.
        """
        files = await asyncio.to_thread(self._walk)
        logger.debug(
            "workspace_scanned",
            project=str(self.project_root),
            files=len(files),
            oversized=sum(1 for f in files if f.oversized),
            unreadable=sum(1 for f in files if f.unreadable)
        )
        return files

    async def resolve(self, paths: Iterable[str]) -> List[WorkspaceFile]:
        """Stat caller-supplied relative paths, dropping missing and ignored ones"""
        spec = self.build_spec()

        def _stat_all() -> List[WorkspaceFile]:
            result: List[WorkspaceFile] = []
            for rel in paths:
                rel = Path(rel).as_posix()
                if spec.match_file(rel):
                    continue
                self._stat(rel, self.project_root / rel, result)
            return sorted(result, key=lambda f: f.path)

        return await asyncio.to_thread(_stat_all)
