"""
Error handling framework for Agent History.

This module provides:
- A hierarchical exception taxonomy keyed by ErrorKind
- Error context preservation (component, operation, metadata)
- Cause chaining for wrapped I/O failures
- Structured, JSON-ready error dictionaries
"""

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, Iterator

from .logging import get_logger


logger = get_logger("agent-history.errors")


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
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    STATE = "state"
    CONCURRENCY = "concurrency"
    INTERNAL = "internal"


class ErrorKind(Enum):
    """Discriminant carried by failed results."""
    REPOSITORY_NOT_INITIALIZED = "repository_not_initialized"
    COMMIT_NOT_FOUND = "commit_not_found"
    NO_HEAD = "no_head"
    OBJECT_STORE_IO = "object_store_io"
    REF_UPDATE_CONFLICT = "ref_update_conflict"
    INVALID_ARGUMENT = "invalid_argument"


@dataclass
class ErrorContext:
    """Context information for an error."""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    component: Optional[str] = None
    operation: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class HistoryError(Exception):
    """Base exception for all Agent History errors."""

    code: str = "HISTORY_ERROR"
    default_message: str = "An error occurred in the history engine"
    severity: ErrorSeverity = ErrorSeverity.ERROR
    category: ErrorCategory = ErrorCategory.INTERNAL
    kind: ErrorKind = ErrorKind.OBJECT_STORE_IO
    is_retryable: bool = False

    def __init__(
        self,
        message: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[BaseException] = None,
        **details: Any
    ):
        self.message = message or self.default_message
        self.context = context or ErrorContext()
        self.cause = cause
        self.details = details
        super().__init__(self.message)
        if cause is not None:
            self.__cause__ = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result: Dict[str, Any] = {
            "code": self.code,
            "kind": self.kind.value,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "isRetryable": self.is_retryable,
            "timestamp": self.context.timestamp.isoformat(),
        }
        if self.context.component:
            result["component"] = self.context.component
        if self.context.operation:
            result["operation"] = self.context.operation
        if self.context.metadata:
            result["metadata"] = {k: str(v) for k, v in self.context.metadata.items()}
        if self.details:
            result["details"] = {k: str(v) for k, v in self.details.items()}
        if self.cause is not None:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause),
            }
        return result


class RepositoryNotInitializedError(HistoryError):
    """The object store is missing or malformed."""
    code = "REPOSITORY_NOT_INITIALIZED"
    default_message = "History repository is not initialized"
    category = ErrorCategory.STATE
    kind = ErrorKind.REPOSITORY_NOT_INITIALIZED


class CommitNotFoundError(HistoryError):
    """An identifier does not resolve to a commit object."""
    code = "COMMIT_NOT_FOUND"
    default_message = "Commit not found"
    severity = ErrorSeverity.WARNING
    category = ErrorCategory.VALIDATION
    kind = ErrorKind.COMMIT_NOT_FOUND


class NoHeadError(HistoryError):
    """The branch ref has never been set."""
    code = "NO_HEAD"
    default_message = "No HEAD commit found"
    severity = ErrorSeverity.WARNING
    category = ErrorCategory.STATE
    kind = ErrorKind.NO_HEAD


class ObjectStoreIOError(HistoryError):
    """Reading or writing the object store or working directory failed."""
    code = "OBJECT_STORE_IO"
    default_message = "Object store I/O failure"
    category = ErrorCategory.STORAGE
    kind = ErrorKind.OBJECT_STORE_IO


class RefUpdateConflictError(HistoryError):
    """The branch ref moved between reading and updating it."""
    code = "REF_UPDATE_CONFLICT"
    default_message = "Branch ref was updated concurrently"
    category = ErrorCategory.CONCURRENCY
    kind = ErrorKind.REF_UPDATE_CONFLICT
    is_retryable = True


class InvalidArgumentError(HistoryError):
    """A caller-supplied argument is malformed."""
    code = "INVALID_ARGUMENT"
    default_message = "Invalid argument"
    severity = ErrorSeverity.WARNING
    category = ErrorCategory.VALIDATION
    kind = ErrorKind.INVALID_ARGUMENT


class ConfigurationError(HistoryError):
    """Configuration could not be loaded or validated."""
    code = "CONFIGURATION_ERROR"
    default_message = "Invalid configuration"
    category = ErrorCategory.CONFIGURATION
    kind = ErrorKind.INVALID_ARGUMENT


@contextmanager
def error_context(
    component: str,
    operation: str,
    **metadata: Any
) -> Iterator[ErrorContext]:
    """
    Context manager attaching operation context to raised errors.

    HistoryErrors pass through with their context filled in. OSErrors are
    wrapped into ObjectStoreIOError with the original as cause.

    Args:
        component: Component name
        operation: Operation name
        **metadata: Additional context metadata
    """
    context = ErrorContext(
        component=component,
        operation=operation,
        metadata=metadata
    )

    try:
        yield context
    except HistoryError as e:
        e.context.component = e.context.component or component
        e.context.operation = e.context.operation or operation
        for key, value in metadata.items():
            e.context.metadata.setdefault(key, value)
        raise
    except OSError as e:
        wrapped = ObjectStoreIOError(
            message=f"{operation} failed: {e}",
            context=context,
            cause=e,
        )
        logger.error(
            "object_store_io_error",
            component=component,
            operation=operation,
            error=str(e),
            **{k: str(v) for k, v in metadata.items()},
        )
        raise wrapped from e


__all__ = [
    'ErrorSeverity',
    'ErrorCategory',
    'ErrorKind',
    'ErrorContext',
    'HistoryError',
    'RepositoryNotInitializedError',
    'CommitNotFoundError',
    'NoHeadError',
    'ObjectStoreIOError',
    'RefUpdateConflictError',
    'InvalidArgumentError',
    'ConfigurationError',
    'error_context',
]
