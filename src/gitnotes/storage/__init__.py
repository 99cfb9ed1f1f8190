"""Storage layer for the note store."""

from gitnotes.storage.base import DeletedNoteRegistry, DraftRegistry
from gitnotes.storage.deleted_note_repository import DeletedNoteRepository
from gitnotes.storage.draft_repository import DraftRepository
from gitnotes.storage.version_log import VersionLog
from gitnotes.storage.working_tree import WorkingTree

__all__ = [
    "DeletedNoteRegistry",
    "DraftRegistry",
    "DeletedNoteRepository",
    "DraftRepository",
    "VersionLog",
    "WorkingTree",
]
