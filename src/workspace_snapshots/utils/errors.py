"""
Error handling framework for Workspace Snapshots.

This module provides:
- Hierarchical exception classes with stable error codes
- Error context preservation
- Structured error responses
"""

from typing import Optional, Dict, Any, List, Sequence, TYPE_CHECKING
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from contextlib import contextmanager

from .logging import get_logger

if TYPE_CHECKING:
    from ..snapshot.models import FileFailure


logger = get_logger("workspace-snapshots.errors")


class ErrorSeverity(Enum):
    """Error severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    STORAGE = "storage"
    INTEGRITY = "integrity"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    FILESYSTEM = "filesystem"
    CONCURRENCY = "concurrency"
    INTERNAL = "internal"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    project_path: Optional[str] = None
    snapshot_id: Optional[str] = None
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class SnapshotError(Exception):
    """Base exception for all snapshot engine errors."""

    code: str = "SNAPSHOT_ERROR"
    default_message: str = "An error occurred in the snapshot engine"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        **kwargs
    ):
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.kwargs = kwargs
        super().__init__(self.message)

    def get_suggestions(self) -> List[str]:
        """Get error resolution suggestions."""
        return []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "severity": self.severity.value,
                "category": self.category.value,
                "suggestions": self.get_suggestions(),
                "context": {
                    "timestamp": self.context.timestamp.isoformat(),
                    "project_path": self.context.project_path,
                    "snapshot_id": self.context.snapshot_id,
                    "component": self.context.component,
                    "operation": self.context.operation,
                    "metadata": self.context.metadata
                }
            }
        }


# Storage Errors

class StorageError(SnapshotError):
    """Content store and index errors."""
    code = "STORAGE_ERROR"
    default_message = "Storage error occurred"
    category = ErrorCategory.STORAGE


class NotFoundError(StorageError):
    """A hash or snapshot id is not present in storage."""
    code = "NOT_FOUND"
    default_message = "Object not found"
    severity = ErrorSeverity.WARNING

    def __init__(self, kind: str, key: str, **kwargs):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}", **kwargs)


class IntegrityError(StorageError):
    """Stored bytes failed hash verification on read."""
    code = "INTEGRITY_ERROR"
    default_message = "Stored object failed integrity verification"
    category = ErrorCategory.INTEGRITY
    severity = ErrorSeverity.CRITICAL

    def __init__(self, expected: str, actual: Optional[str] = None, **kwargs):
        self.expected = expected
        self.actual = actual
        if actual is None:
            message = f"Stored object {expected} could not be decoded"
        else:
            message = f"Hash mismatch: expected {expected}, got {actual}"
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        return [
            "Run verify_storage() to find other corrupted objects",
            "Delete snapshots referencing the corrupted object and recapture"
        ]


class StorageUnavailableError(StorageError):
    """Storage directory cannot be created or written."""
    code = "STORAGE_UNAVAILABLE"
    default_message = "Snapshot storage is not writable"
    severity = ErrorSeverity.CRITICAL
    category = ErrorCategory.FILESYSTEM


# Capture / Restore Errors

class PartialCaptureWarning(SnapshotError):
    """One or more files could not be read during a capture.

    Recorded on the snapshot rather than raised.
    """
    code = "PARTIAL_CAPTURE"
    default_message = "Some files could not be captured"
    severity = ErrorSeverity.WARNING
    category = ErrorCategory.FILESYSTEM

    def __init__(self, path: str, reason: str, **kwargs):
        self.path = path
        self.reason = reason
        super().__init__(f"Skipped {path}: {reason}", **kwargs)


class PartialRestoreFailure(SnapshotError):
    """One or more files failed to write during a restore."""
    code = "PARTIAL_RESTORE"
    default_message = "Some files could not be restored"
    severity = ErrorSeverity.ERROR
    category = ErrorCategory.FILESYSTEM

    def __init__(self, failed: Sequence["FileFailure"], applied: Sequence[str] = (), **kwargs):
        self.failed = list(failed)
        self.applied = list(applied)
        message = (
            f"{len(self.failed)} file(s) failed to restore "
            f"({len(self.applied)} applied): "
            + ", ".join(f.path for f in self.failed[:5])
        )
        super().__init__(message, **kwargs)


class CaptureCancelledError(SnapshotError):
    """An in-flight capture was cancelled before its record was committed."""
    code = "CAPTURE_CANCELLED"
    default_message = "Snapshot capture was cancelled"
    severity = ErrorSeverity.INFO
    category = ErrorCategory.CONCURRENCY


class ProjectRootError(SnapshotError):
    """The project root is missing or is not a directory."""
    code = "PROJECT_ROOT_ERROR"
    default_message = "Project root is not accessible"
    category = ErrorCategory.FILESYSTEM

    def __init__(self, project_path: str, reason: str, **kwargs):
        self.project_path = project_path
        super().__init__(f"Project root {project_path}: {reason}", **kwargs)


# Validation Errors

class ValidationError(SnapshotError):
    """Input validation errors."""
    code = "VALIDATION_ERROR"
    default_message = "Validation error"
    category = ErrorCategory.VALIDATION
    severity = ErrorSeverity.WARNING

    def __init__(self, field: str, value: Any, constraint: str, **kwargs):
        self.field = field
        self.value = value
        self.constraint = constraint
        message = f"Validation failed for field '{field}': {constraint}"
        super().__init__(message, **kwargs)

    def get_suggestions(self) -> List[str]:
        return [
            f"Check the value of field '{self.field}'",
            f"Ensure it meets the constraint: {self.constraint}"
        ]


class InvalidSelection(ValidationError):
    """A cherry-pick selection contains removed entries."""
    code = "INVALID_SELECTION"

    def __init__(self, removed_paths: Sequence[str], **kwargs):
        self.removed_paths = list(removed_paths)
        super().__init__(
            "removed",
            self.removed_paths,
            "cherry-pick selections must not contain removed entries",
            **kwargs
        )

    def get_suggestions(self) -> List[str]:
        return [
            "Filter removed entries out of the selection before cherry-picking",
            "Use a full restore if files should be deleted"
        ]


class ConfigurationError(SnapshotError):
    """Configuration errors."""
    code = "CONFIG_ERROR"
    default_message = "Configuration error"
    category = ErrorCategory.CONFIGURATION

    def get_suggestions(self) -> List[str]:
        return [
            "Check your configuration file syntax",
            "Ensure limits are non-negative numbers"
        ]


@contextmanager
def error_context(
    component: str,
    operation: str,
    reraise: bool = True,
    **metadata
):
    """
    Context manager adding component/operation context to errors.

    SnapshotErrors get their context filled in; any other exception is
    wrapped in a SnapshotError with the original as its cause.
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        metadata=metadata
    )

    try:
        yield context
    except SnapshotError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        e.context.metadata.update(metadata)
        logger.error(
            "snapshot_error_in_context",
            code=e.code,
            component=component,
            operation=operation,
            error=e.message
        )
        if reraise:
            raise
    except Exception as e:
        wrapped = SnapshotError(
            message=str(e),
            context=context,
            cause=e
        )
        logger.error(
            "unexpected_error_in_context",
            component=component,
            operation=operation,
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True
        )
        if reraise:
            raise wrapped from e


__all__ = [
    'SnapshotError',
    'ErrorContext',
    'ErrorSeverity',
    'ErrorCategory',
    'StorageError',
    'NotFoundError',
    'IntegrityError',
    'StorageUnavailableError',
    'PartialCaptureWarning',
    'PartialRestoreFailure',
    'CaptureCancelledError',
    'ProjectRootError',
    'ValidationError',
    'InvalidSelection',
    'ConfigurationError',
    'error_context',
]
