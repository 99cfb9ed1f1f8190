"""Interfaces of the record stores the note store depends on."""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from gitnotes.exceptions import ErrorCode, StorageError
from gitnotes.models.schema import DeletedNote, Draft

logger = logging.getLogger(__name__)


class DeletedNoteRegistry(ABC):
    """Store of tombstones for soft-deleted notes.

    Records are scoped by owner: every lookup and removal takes the owner,
    and a record is never visible to another owner.
    """

    @abstractmethod
    def save(
        self,
        owner: str,
        notebook: str,
        title: str,
        last_ref: Optional[str],
        content: str,
    ) -> DeletedNote:
        """Persist a tombstone and return it with its assigned id."""

    @abstractmethod
    def find_by_id_and_owner(self, id: int, owner: str) -> Optional[DeletedNote]:
        """Return the tombstone, or None."""

    @abstractmethod
    def find_all_by_owner(self, owner: str) -> List[DeletedNote]:
        """Return the owner's tombstones, most recently deleted first."""

    @abstractmethod
    def delete_by_id_and_owner(self, id: int, owner: str) -> bool:
        """Drop one tombstone. Returns False if it did not exist."""

    @abstractmethod
    def delete_all_by_owner(self, owner: str) -> int:
        """Drop every tombstone of the owner, returning how many."""


class DraftRegistry(ABC):
    """Store of unsaved drafts, at most one per note key."""

    @abstractmethod
    def save_draft(self, owner: str, notebook: str, title: str, content: str) -> Draft:
        """Create or replace the draft for the key."""

    @abstractmethod
    def find_draft(self, owner: str, notebook: str, title: str) -> Optional[Draft]:
        """Return the draft for the key, or None."""

    @abstractmethod
    def delete_by_owner_and_notebook_and_title(
        self, owner: str, notebook: str, title: str
    ) -> bool:
        """Drop the draft for the key. Returns False if there was none."""


@contextmanager
def db_errors(operation: str) -> Iterator[None]:
    """Surface database faults as StorageError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Registry {operation} failed: {e}")
        raise StorageError(
            f"Record store {operation} failed",
            operation=operation,
            code=ErrorCode.STORAGE_WRITE_FAILED
            if operation in ("save", "delete")
            else ErrorCode.STORAGE_READ_FAILED,
            original_error=e,
        ) from e
