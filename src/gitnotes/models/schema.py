"""Data models for the note store."""

import datetime
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any, Dict, Generic, Optional, TypeVar

from pydantic import BaseModel, Field

from gitnotes.exceptions import ErrorKind, NoteStoreError

T = TypeVar("T")

# Name of the hidden file that marks a directory as a notebook
NOTEBOOK_MARKER = ".notebook"

# Recognized note file extension (matched case-insensitively)
NOTE_EXTENSION = "md"


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite hands back naive datetimes for values stored as UTC.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


@dataclass(frozen=True)
class NoteKey:
    """Identity of a note, also used as the cache key."""

    owner: str
    notebook: str
    title: str

    def __str__(self) -> str:
        return f"{self.owner}:{self.notebook}/{self.title}"


@dataclass(frozen=True)
class NoteVersion:
    """One commit in a note's history.

    Attributes:
        ref: Full SHA-1 hash of the commit.
        timestamp: When the commit was created (UTC).
        author: Commit author name (the owner).
        message: Commit subject line.
    """

    ref: str
    timestamp: datetime.datetime
    author: str
    message: str = ""

    @property
    def short_ref(self) -> str:
        """Return the first 7 characters of the commit hash."""
        return self.ref[:7]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ref": self.ref,
            "timestamp": self.timestamp.isoformat(),
            "author": self.author,
            "message": self.message,
        }

    def __str__(self) -> str:
        return f"{self.short_ref} ({self.timestamp.isoformat()})"


class NoteInfo(BaseModel):
    """A row of a notebook listing or a search result."""

    notebook: str = Field(..., description="Notebook holding the note")
    title: str = Field(..., description="Note title (file name stem)")
    last_modified: datetime.datetime = Field(
        ..., description="File modification time (UTC)"
    )
    preview: Optional[str] = Field(default=None, description="Truncated content")
    content: Optional[str] = Field(
        default=None, description="Full content (search results only)"
    )
    search_count: int = Field(
        default=0, description="Keyword occurrences in title and content"
    )


class DeletedNote(BaseModel):
    """A tombstone: what is needed to bring a deleted note back."""

    id: int = Field(..., description="Registry-assigned identifier")
    owner: str
    notebook: str
    title: str
    last_ref: Optional[str] = Field(
        default=None, description="Last commit at which the note existed"
    )
    content: str = Field(default="", description="Content at deletion time")
    deleted_at: datetime.datetime = Field(default_factory=utc_now)

    model_config = {"frozen": True}


class Draft(BaseModel):
    """An unsaved draft for a note key."""

    owner: str
    notebook: str
    title: str
    content: str
    updated_at: datetime.datetime = Field(default_factory=utc_now)


@dataclass
class OperationResult(Generic[T]):
    """Outcome of a public NoteStore operation.

    Attributes:
        success: Whether the operation completed.
        data: Payload on success (may be None for operations without one).
        message: Human-readable summary.
        error_kind: Failure category, None on success.
        code: Machine-readable error code name, None on success.
        details: Extra error context.
    """

    success: bool
    data: Optional[T] = None
    message: str = "ok"
    error_kind: Optional[ErrorKind] = None
    code: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: Optional[T] = None, message: str = "ok") -> "OperationResult[T]":
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: NoteStoreError) -> "OperationResult[T]":
        return cls(
            success=False,
            message=error.message,
            error_kind=error.kind,
            code=error.code.name,
            details=dict(error.details),
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.success:
            result["data"] = _jsonable(self.data)
        else:
            result["error_kind"] = self.error_kind.value if self.error_kind else None
            result["code"] = self.code
            result["details"] = self.details
        return result


def _jsonable(value: Any) -> Any:
    """Convert result payloads into JSON-friendly structures."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, NoteVersion):
        return value.to_dict()
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime.datetime):
        return value.isoformat()
    return value
