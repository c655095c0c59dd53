"""Content-addressable storage (CAS) for snapshot content and diffs"""

import hashlib
import asyncio
import json
import os
import re
import time
import uuid
import zstandard as zstd
from pathlib import Path
from typing import Dict, Any, List, Set, Tuple, AsyncIterator
import aiofiles
import aiofiles.os

from ..snapshot.models import DiffObject
from ..utils.logging import get_logger
from ..utils.errors import (
    IntegrityError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)

logger = get_logger("workspace-snapshots.storage.cas")

_HASH_RE = re.compile(r"^[0-9a-f]{64}$")

STALE_TEMP_SECONDS = 3600


def compute_hash(data: bytes) -> str:
    """SHA-256 hex digest of raw bytes"""
    return hashlib.sha256(data).hexdigest()


def validate_hash(content_hash: str) -> str:
    """Reject anything that is not a lowercase SHA-256 hex digest"""
    if not isinstance(content_hash, str) or not _HASH_RE.match(content_hash):
        raise ValidationError(
            "hash", content_hash, "must be 64 lowercase hexadecimal characters"
        )
    return content_hash


def _compress(data: bytes, level: int) -> bytes:
    # Compressor contexts are not thread-safe; one per call.
    return zstd.ZstdCompressor(level=level).compress(data)


def _decompress(data: bytes) -> bytes:
    return zstd.ZstdDecompressor().decompress(data)


class ContentStore:
    """Content-addressable storage with zstd compression

    Objects live at ``<root>/<hh>/<rest>`` keyed by the SHA-256 of their
    uncompressed bytes. Writes land in a temp file first and are renamed
    into place, so readers never see a partial object.
    """

    kind = "content"

    def __init__(self, root: Path, tmp_dir: Path, compression_level: int = 3):
        """Initialize store

        Args:
            root: Directory holding sharded objects
            tmp_dir: Directory for in-flight writes (same filesystem as root)
            compression_level: Zstd compression level (1-22, default 3)
        """
        self.root = Path(root)
        self.tmp_dir = Path(tmp_dir)
        self.compression_level = compression_level

        self._stats = {
            "objects_written": 0,
            "dedup_hits": 0,
            "bytes_written": 0,
        }

    async def initialize(self) -> None:
        """Create directories and drop stale temp files"""
        try:
            await aiofiles.os.makedirs(self.root, exist_ok=True)
            await aiofiles.os.makedirs(self.tmp_dir, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(
                f"Cannot create {self.kind} store at {self.root}: {e}",
                cause=e
            ) from e

        removed = await asyncio.to_thread(self._cleanup_temp)

        logger.info(
            "store_initialized",
            kind=self.kind,
            path=str(self.root),
            compression_level=self.compression_level,
            stale_temp_removed=removed
        )

    def _cleanup_temp(self) -> int:
        removed = 0
        cutoff = time.time() - STALE_TEMP_SECONDS
        prefix = f"{self.kind}-"
        for entry in os.scandir(self.tmp_dir):
            if not entry.name.startswith(prefix) or not entry.is_file():
                continue
            try:
                if entry.stat().st_mtime < cutoff:
                    os.unlink(entry.path)
                    removed += 1
            except FileNotFoundError:
                continue
        return removed

    def object_path(self, content_hash: str) -> Path:
        validate_hash(content_hash)
        return self.root / content_hash[:2] / content_hash[2:]

    async def put(self, data: bytes) -> str:
        """Store bytes and return their hash. Idempotent."""
        content_hash = await asyncio.to_thread(compute_hash, data)
        object_path = self.object_path(content_hash)

        if await aiofiles.os.path.exists(object_path):
            self._stats["dedup_hits"] += 1
            return content_hash

        compressed = await asyncio.to_thread(_compress, data, self.compression_level)

        temp_path = self.tmp_dir / f"{self.kind}-{content_hash[:16]}-{uuid.uuid4().hex}.tmp"
        try:
            await aiofiles.os.makedirs(object_path.parent, exist_ok=True)
            async with aiofiles.open(temp_path, 'wb') as f:
                await f.write(compressed)
            # Concurrent identical puts race here with identical bytes.
            await aiofiles.os.replace(temp_path, object_path)
        except OSError as e:
            try:
                await aiofiles.os.remove(temp_path)
            except OSError:
                pass
            raise StorageUnavailableError(
                f"Failed to write {self.kind} object {content_hash}: {e}",
                cause=e
            ) from e

        self._stats["objects_written"] += 1
        self._stats["bytes_written"] += len(compressed)

        logger.debug(
            "object_stored",
            kind=self.kind,
            hash=content_hash,
            size=len(data),
            compressed_size=len(compressed)
        )
        return content_hash

    async def get(self, content_hash: str) -> bytes:
        """Return the bytes for a hash, verified against it"""
        object_path = self.object_path(content_hash)

        try:
            async with aiofiles.open(object_path, 'rb') as f:
                compressed = await f.read()
        except FileNotFoundError:
            raise NotFoundError(self.kind, content_hash) from None

        try:
            data = await asyncio.to_thread(_decompress, compressed)
        except zstd.ZstdError as e:
            logger.error("object_undecodable", kind=self.kind, hash=content_hash, error=str(e))
            raise IntegrityError(content_hash, cause=e) from e

        actual_hash = await asyncio.to_thread(compute_hash, data)
        if actual_hash != content_hash:
            logger.error(
                "object_hash_mismatch",
                kind=self.kind,
                expected=content_hash,
                actual=actual_hash
            )
            raise IntegrityError(content_hash, actual_hash)

        return data

    async def exists(self, content_hash: str) -> bool:
        return await aiofiles.os.path.exists(self.object_path(content_hash))

    def _list_hashes(self) -> List[str]:
        hashes = []
        if not self.root.exists():
            return hashes
        for shard in os.scandir(self.root):
            if not shard.is_dir() or len(shard.name) != 2:
                continue
            for entry in os.scandir(shard.path):
                candidate = shard.name + entry.name
                if entry.is_file() and _HASH_RE.match(candidate):
                    hashes.append(candidate)
        return hashes

    async def iter_hashes(self) -> AsyncIterator[str]:
        """Yield every stored hash"""
        for content_hash in await asyncio.to_thread(self._list_hashes):
            yield content_hash

    async def sweep(self, keep: Set[str]) -> Tuple[int, int]:
        """Delete every object whose hash is not in keep

        Returns:
            Tuple of (objects_removed, bytes_freed)
        """
        objects_removed = 0
        bytes_freed = 0

        async for content_hash in self.iter_hashes():
            if content_hash in keep:
                continue
            object_path = self.object_path(content_hash)
            try:
                size = (await aiofiles.os.stat(object_path)).st_size
                await aiofiles.os.remove(object_path)
            except FileNotFoundError:
                continue
            objects_removed += 1
            bytes_freed += size

            try:
                await aiofiles.os.rmdir(object_path.parent)
            except OSError:
                pass  # shard not empty

        logger.info(
            "store_swept",
            kind=self.kind,
            objects_removed=objects_removed,
            bytes_freed=bytes_freed,
            kept=len(keep)
        )
        return objects_removed, bytes_freed

    async def verify_integrity(self) -> List[str]:
        """Return the hashes of corrupted objects"""
        corrupted = []
        total = 0

        async for content_hash in self.iter_hashes():
            total += 1
            try:
                await self.get(content_hash)
            except IntegrityError:
                corrupted.append(content_hash)

        if corrupted:
            logger.warning(
                "integrity_check_failed",
                kind=self.kind,
                corrupted_count=len(corrupted),
                total_count=total
            )
        else:
            logger.info("integrity_check_passed", kind=self.kind, total_count=total)

        return corrupted

    def _disk_usage(self) -> Tuple[int, int]:
        count = 0
        size = 0
        for content_hash in self._list_hashes():
            try:
                size += self.object_path(content_hash).stat().st_size
            except FileNotFoundError:
                continue
            count += 1
        return count, size

    async def get_stats(self) -> Dict[str, Any]:
        """Object count, compressed bytes on disk and session counters"""
        count, size = await asyncio.to_thread(self._disk_usage)
        return {
            **self._stats,
            "object_count": count,
            "compressed_bytes": size,
        }


class DiffStore(ContentStore):
    """Content store holding canonical JSON diff objects"""

    kind = "diff"

    async def put_diff(self, diff: DiffObject) -> str:
        return await self.put(diff.canonical_bytes())

    async def get_diff(self, diff_hash: str) -> DiffObject:
        data = await self.get(diff_hash)
        return DiffObject.from_dict(json.loads(data.decode("utf-8")))


__all__ = [
    'ContentStore',
    'DiffStore',
    'compute_hash',
    'validate_hash',
]
