"""
Tests for the error hierarchy and error_context.
"""

import pytest

from workspace_snapshots.utils.errors import (
    SnapshotError,
    StorageError,
    NotFoundError,
    IntegrityError,
    InvalidSelection,
    ValidationError,
    ErrorCategory,
    error_context,
)


class TestErrors:

    def test_codes_and_hierarchy(self):
        assert issubclass(NotFoundError, StorageError)
        assert issubclass(InvalidSelection, ValidationError)
        assert NotFoundError("snapshot", "x").code == "NOT_FOUND"
        assert IntegrityError("a" * 64).category == ErrorCategory.INTEGRITY

    def test_to_dict(self):
        error = InvalidSelection(["b.txt"])
        data = error.to_dict()["error"]

        assert data["code"] == "INVALID_SELECTION"
        assert data["category"] == "validation"
        assert data["suggestions"]

    def test_error_context_enriches_snapshot_errors(self):
        with pytest.raises(NotFoundError) as exc_info:
            with error_context("store", "get", hash="abc"):
                raise NotFoundError("content", "abc")

        assert exc_info.value.context.component == "store"
        assert exc_info.value.context.operation == "get"
        assert exc_info.value.context.metadata["hash"] == "abc"

    def test_error_context_wraps_other_errors(self):
        with pytest.raises(SnapshotError) as exc_info:
            with error_context("builder", "build"):
                raise RuntimeError("unexpected")

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.context.component == "builder"

    def test_error_context_without_reraise(self):
        with error_context("builder", "build", reraise=False):
            raise NotFoundError("content", "abc")
