"""Line-based diff engine and text/binary classification"""

import difflib
import mimetypes
from pathlib import PurePosixPath
from typing import Dict, List, Optional

from .models import DiffObject, DiffStats

BINARY_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".ico", ".webp", ".bmp", ".tiff",
    ".woff", ".woff2", ".ttf", ".eot", ".otf",
    ".zip", ".tar", ".gz", ".bz2", ".xz", ".7z", ".zst",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx",
    ".pyc", ".pyo", ".so", ".dylib", ".dll", ".exe", ".class", ".jar",
    ".mp3", ".mp4", ".wav", ".mov", ".avi", ".webm",
    ".sqlite", ".db",
}

SNIFF_BYTES = 8192

TEXT_ENCODING = "utf-8"
BINARY_ENCODING = "binary"

_NO_NEWLINE = "\\ No newline at end of file\n"


def is_text(data: bytes, path: Optional[str] = None) -> bool:
    """Classify content as text.

    Binary when the extension is a known binary type or the first 8 KiB
    contain a NUL byte; otherwise the sample must decode as UTF-8. A
    multi-byte sequence cut by the sample boundary is tolerated.
    """
    if path and PurePosixPath(path).suffix.lower() in BINARY_EXTENSIONS:
        return False

    sample = data[:SNIFF_BYTES]
    if b"\x00" in sample:
        return False

    try:
        sample.decode(TEXT_ENCODING)
    except UnicodeDecodeError as e:
        truncated = len(data) > SNIFF_BYTES
        return truncated and e.reason == "unexpected end of data"
    return True


def detect_mime_type(path: str, is_text_file: bool) -> str:
    mime_type, _ = mimetypes.guess_type(path)
    if mime_type:
        return mime_type
    return "text/plain" if is_text_file else "application/octet-stream"


def file_attrs(path: str, is_text_file: bool) -> Dict[str, str]:
    """mime_type and encoding fields for a FileChange"""
    return {
        "mime_type": detect_mime_type(path, is_text_file),
        "encoding": TEXT_ENCODING if is_text_file else BINARY_ENCODING,
    }


def _decode(data: bytes) -> str:
    return data.decode(TEXT_ENCODING, errors="replace")


def _lines(data: bytes) -> List[str]:
    return _decode(data).splitlines(keepends=True)


def count_lines(data: bytes) -> int:
    """Number of lines, a final line without a newline included"""
    return len(_lines(data))


def _render(lines: List[str]) -> str:
    out = []
    for line in lines:
        if line.endswith("\n"):
            out.append(line)
        else:
            out.append(line + "\n")
            out.append(_NO_NEWLINE)
    return "".join(out)


def diff_stats(previous_lines: List[str], current_lines: List[str]) -> DiffStats:
    stats = DiffStats()
    matcher = difflib.SequenceMatcher(None, previous_lines, current_lines, autojunk=False)
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            continue
        stats.chunks += 1
        if tag in ("delete", "replace"):
            stats.lines_removed += i2 - i1
        if tag in ("insert", "replace"):
            stats.lines_added += j2 - j1
    return stats


def diff(
    previous: bytes,
    current: bytes,
    path: str = "file",
    from_hash: Optional[str] = None,
    to_hash: Optional[str] = None,
    context: int = 3
) -> DiffObject:
    """Unified diff of two text contents.

    The body is deterministic: fixed ``a/<path>`` and ``b/<path>``
    labels and no timestamps.
    """
    previous_lines = _lines(previous)
    current_lines = _lines(current)

    stats = diff_stats(previous_lines, current_lines)
    if stats.chunks == 0:
        body = ""
    else:
        body = _render(list(difflib.unified_diff(
            previous_lines,
            current_lines,
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
            n=context,
        )))

    return DiffObject(
        diff_body=body,
        stats=stats,
        from_hash=from_hash,
        to_hash=to_hash,
        algorithm="unified",
        size_bytes=len(body.encode(TEXT_ENCODING)),
    )
