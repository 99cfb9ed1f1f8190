"""Custom exceptions for the gitnotes note store.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Every exception belongs to one
ErrorKind, which is what callers of the NoteStore see in a failed
OperationResult.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Operation-level failure categories."""

    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    INVALID_ARGUMENT = "invalid_argument"
    IO_FAILURE = "io_failure"
    COMMIT_FAILURE = "commit_failure"
    CONFIGURATION = "configuration"


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Lookup errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTEBOOK_NOT_FOUND = 1002
    DELETED_NOTE_NOT_FOUND = 1003
    VERSION_NOT_FOUND = 1004

    # Collision errors (2xxx)
    NOTE_ALREADY_EXISTS = 2001
    NOTEBOOK_ALREADY_EXISTS = 2002

    # Argument errors (3xxx)
    INVALID_NAME = 3001
    SAME_SOURCE_AND_TARGET = 3002
    INVALID_REF = 3003
    EMPTY_KEYWORD = 3004

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    HISTORY_READ_FAILED = 4004

    # Version log errors (5xxx)
    COMMIT_FAILED = 5001

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001


class NoteStoreError(Exception):
    """Base exception for all note store errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    kind: ErrorKind = ErrorKind.IO_FAILURE

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "kind": self.kind.value,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NotFoundError(NoteStoreError):
    """Raised when a notebook, note, deleted-note record or version is missing."""

    kind = ErrorKind.NOT_FOUND

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.NOTE_NOT_FOUND,
        **details: Any,
    ):
        super().__init__(message, code=code, details=details)


class AlreadyExistsError(NoteStoreError):
    """Raised when a create, copy or move target is already taken."""

    kind = ErrorKind.ALREADY_EXISTS

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.NOTE_ALREADY_EXISTS,
        **details: Any,
    ):
        super().__init__(message, code=code, details=details)


class InvalidArgumentError(NoteStoreError):
    """Raised for blank or unsafe identifiers and other bad arguments."""

    kind = ErrorKind.INVALID_ARGUMENT

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.INVALID_NAME,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class StorageError(NoteStoreError):
    """Raised for filesystem or history-read faults."""

    kind = ErrorKind.IO_FAILURE

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class CommitError(NoteStoreError):
    """Raised when the version log could not record a completed write.

    The working tree is then ahead of history for ``path``. Nothing is
    rolled back; the path is kept so the state can be reconciled.
    """

    kind = ErrorKind.COMMIT_FAILURE

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=ErrorCode.COMMIT_FAILED, details=details)
        self.path = path
        self.original_error = original_error


class ConfigurationError(NoteStoreError):
    """Raised for configuration-related errors."""

    kind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, config_key: Optional[str] = None):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=ErrorCode.CONFIG_INVALID, details=details)
        self.config_key = config_key
