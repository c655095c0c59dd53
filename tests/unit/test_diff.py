"""
Tests for the diff engine and text classification.
"""

import pytest

from workspace_snapshots.snapshot.diff import (
    diff,
    is_text,
    count_lines,
    detect_mime_type,
    SNIFF_BYTES,
)
from workspace_snapshots.storage.cas import compute_hash


class TestDiff:
    """Test line diffs between content versions."""

    def test_single_line_replace_counts_add_and_remove(self):
        result = diff(b"hello", b"hello world", "a.txt")

        assert result.stats.lines_added == 1
        assert result.stats.lines_removed == 1
        assert result.stats.chunks == 1
        assert "-hello\n" in result.diff_body
        assert "+hello world\n" in result.diff_body
        assert "\\ No newline at end of file" in result.diff_body

    def test_identical_content_has_empty_body(self):
        result = diff(b"same\n", b"same\n", "a.txt")

        assert result.diff_body == ""
        assert result.stats.lines_added == 0
        assert result.stats.lines_removed == 0
        assert result.stats.chunks == 0
        assert result.size_bytes == 0

    def test_empty_to_content(self):
        result = diff(b"", b"one\ntwo\n", "new.txt")

        assert result.stats.lines_added == 2
        assert result.stats.lines_removed == 0

    def test_content_to_empty(self):
        result = diff(b"one\ntwo\nthree\n", b"", "gone.txt")

        assert result.stats.lines_added == 0
        assert result.stats.lines_removed == 3

    def test_labels_use_path_without_timestamps(self):
        result = diff(b"a\n", b"b\n", "src/module.py")

        assert result.diff_body.startswith("--- a/src/module.py\n+++ b/src/module.py\n")

    def test_separate_hunks_counted_as_chunks(self):
        previous = "".join(f"line {i}\n" for i in range(40)).encode()
        current = previous.replace(b"line 2\n", b"line two\n").replace(b"line 35\n", b"line 35!\n")

        result = diff(previous, current, "f.txt")
        assert result.stats.chunks == 2
        assert result.stats.lines_added == 2
        assert result.stats.lines_removed == 2

    def test_canonical_form_is_deterministic(self):
        first = diff(b"x\n", b"y\n", "f.txt", "a" * 64, "b" * 64)
        second = diff(b"x\n", b"y\n", "f.txt", "a" * 64, "b" * 64)

        assert first.canonical_bytes() == second.canonical_bytes()
        assert compute_hash(first.canonical_bytes()) == compute_hash(second.canonical_bytes())

    def test_records_hashes(self):
        result = diff(b"x\n", b"y\n", "f.txt", "a" * 64, "b" * 64)

        assert result.from_hash == "a" * 64
        assert result.to_hash == "b" * 64
        assert result.algorithm == "unified"


class TestTextClassification:
    """Test text/binary detection."""

    @pytest.mark.parametrize("data,path,expected", [
        (b"plain text\n", "notes.txt", True),
        ("café\n".encode("utf-8"), "menu.md", True),
        (b"", "empty.txt", True),
        (b"abc\x00def", "data.bin", False),
        (b"\xff\xfe\xfa", "weird.txt", False),
        (b"looks like text", "image.png", False),
        (b"<svg></svg>", "icon.svg", True),
    ])
    def test_is_text(self, data, path, expected):
        assert is_text(data, path) is expected

    def test_multibyte_cut_at_sample_boundary_is_text(self):
        data = b"a" * (SNIFF_BYTES - 1) + "é".encode("utf-8")
        assert is_text(data, "long.txt") is True

    def test_nul_after_sample_is_ignored(self):
        data = b"a" * SNIFF_BYTES + b"\x00"
        assert is_text(data, "long.txt") is True

    def test_count_lines(self):
        assert count_lines(b"") == 0
        assert count_lines(b"one") == 1
        assert count_lines(b"one\ntwo\n") == 2
        assert count_lines(b"one\ntwo") == 2

    def test_detect_mime_type(self):
        assert detect_mime_type("page.html", True) == "text/html"
        assert detect_mime_type("Makefile", True) == "text/plain"
        assert detect_mime_type("blob", False) == "application/octet-stream"
