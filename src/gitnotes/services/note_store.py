"""Service layer for versioned note operations.

NoteStore composes the working tree, the version log, the note caches and
the record registries. Every public method:

- takes the owner explicitly,
- returns an OperationResult instead of raising the store's own errors,
- runs inside ``timed_operation`` so it is logged and measured.

Mutating methods hold the owner's lock for the whole write, commit and
invalidate sequence. Reads take no lock; the cache refuses to store loads
that raced an invalidation.
"""

import logging
import threading
import weakref
from typing import Any, Callable, List, Optional

from sqlalchemy.engine import Engine

from gitnotes.config import NoteStoreConfig, config
from gitnotes.exceptions import (
    AlreadyExistsError,
    ErrorCode,
    ErrorKind,
    InvalidArgumentError,
    NotFoundError,
    NoteStoreError,
    StorageError,
)
from gitnotes.models.db_models import init_db
from gitnotes.models.schema import (
    DeletedNote,
    Draft,
    NoteInfo,
    NoteKey,
    NoteVersion,
    OperationResult,
)
from gitnotes.observability import MetricsCollector, timed_operation
from gitnotes.services.note_cache import NoteCache, truncate_preview
from gitnotes.storage.base import DeletedNoteRegistry, DraftRegistry
from gitnotes.storage.deleted_note_repository import DeletedNoteRepository
from gitnotes.storage.draft_repository import DraftRepository
from gitnotes.storage.git_wrapper import is_valid_ref
from gitnotes.storage.version_log import VersionLog
from gitnotes.storage.working_tree import (
    WorkingTree,
    marker_relative_path,
    note_relative_path,
)
from gitnotes.utils import count_occurrences, require_keyword, validate_name

logger = logging.getLogger(__name__)

# Failures that point at a broken disk or history rather than a bad request
_SEVERE_KINDS = (ErrorKind.IO_FAILURE, ErrorKind.COMMIT_FAILURE)


class NoteStore:
    """Versioned, cached note store for many owners."""

    def __init__(
        self,
        working_tree: WorkingTree,
        version_log: VersionLog,
        cache: NoteCache,
        deleted_notes: DeletedNoteRegistry,
        drafts: DraftRegistry,
        metrics: Optional[MetricsCollector] = None,
    ):
        """Initialize the store.

        Args:
            working_tree: Live files of every owner.
            version_log: Per-owner commit history over the working tree.
            cache: Content and preview caches. Its loader must read from
                ``working_tree``.
            deleted_notes: Tombstone registry.
            drafts: Draft registry, cleared whenever a note is saved.
            metrics: Operation metrics sink. Defaults to the global collector.
        """
        self.working_tree = working_tree
        self.version_log = version_log
        self.cache = cache
        self.deleted_notes = deleted_notes
        self.drafts = drafts
        self.metrics = metrics

        # Per-owner locks, garbage collected once no thread holds them
        self._owner_locks: weakref.WeakValueDictionary[str, threading.RLock] = (
            weakref.WeakValueDictionary()
        )
        self._owner_locks_lock = threading.Lock()

    def _owner_lock(self, owner: str) -> threading.RLock:
        """Get or create the reentrant lock serializing an owner's writes."""
        with self._owner_locks_lock:
            lock = self._owner_locks.get(owner)
            if lock is None:
                lock = threading.RLock()
                self._owner_locks[owner] = lock
            return lock

    def _run(
        self, operation: str, action: Callable[[], Any], **context: Any
    ) -> OperationResult:
        """Run an operation, turning store errors into a failed result."""
        try:
            with timed_operation(operation, self.metrics, **context) as op:
                data = action()
                if isinstance(data, list):
                    op["result_count"] = len(data)
            return OperationResult.ok(data)
        except OSError as e:
            # Filesystem faults outside the working tree's own error mapping
            logger.error(f"{operation} failed with I/O error: {e}")
            return OperationResult.fail(
                StorageError(f"{operation} failed", operation=operation, original_error=e)
            )
        except NoteStoreError as e:
            if e.kind in _SEVERE_KINDS:
                logger.error(f"{operation} failed: {e}")
            else:
                logger.warning(f"{operation} rejected: {e}")
            return OperationResult.fail(e)

    # =========================================================================
    # Notebooks
    # =========================================================================

    def list_notebooks(self, owner: str) -> OperationResult[List[str]]:
        """Names of the owner's notebooks, sorted."""
        return self._run(
            "list_notebooks",
            lambda: sorted(self.working_tree.list_notebooks(owner)),
            owner=owner,
        )

    def create_notebook(self, owner: str, notebook: str) -> OperationResult[None]:
        """Create an empty notebook. Fails if it already exists."""

        def action() -> None:
            validate_name(notebook, "notebook")
            with self._owner_lock(owner):
                if self.working_tree.notebook_exists(owner, notebook):
                    raise AlreadyExistsError(
                        f"Notebook '{notebook}' already exists",
                        code=ErrorCode.NOTEBOOK_ALREADY_EXISTS,
                        notebook=notebook,
                    )
                self._ensure_notebook(owner, notebook)

        return self._run("create_notebook", action, owner=owner, notebook=notebook)

    def delete_notebook(
        self, owner: str, notebook: str
    ) -> OperationResult[List[DeletedNote]]:
        """Delete every note of a notebook, then the notebook itself.

        Each note is deleted individually (own commit, own tombstone); the
        marker's removal is one more commit.
        """

        def action() -> List[DeletedNote]:
            with self._owner_lock(owner):
                rows = self.working_tree.list_note_files(owner, notebook)
                tombstones = [
                    self._delete_note(owner, notebook, title) for title, _ in rows
                ]
                self.working_tree.remove_notebook(owner, notebook)
                self.version_log.rm_and_commit(
                    owner,
                    marker_relative_path(notebook),
                    f"Delete notebook {notebook}",
                )
                logger.info(
                    f"Deleted notebook '{notebook}' of {owner} "
                    f"({len(tombstones)} notes)"
                )
                return tombstones

        return self._run("delete_notebook", action, owner=owner, notebook=notebook)

    def _ensure_notebook(self, owner: str, notebook: str) -> None:
        if self.working_tree.ensure_notebook(owner, notebook):
            self.version_log.add_and_commit(
                owner, marker_relative_path(notebook), f"Create notebook {notebook}"
            )

    # =========================================================================
    # Reading notes
    # =========================================================================

    def list_notes(
        self, owner: str, notebook: str, with_preview: bool = True
    ) -> OperationResult[List[NoteInfo]]:
        """Notes of a notebook, most recently modified first."""
        return self._run(
            "list_notes",
            lambda: self._list_notes(owner, notebook, with_preview),
            owner=owner,
            notebook=notebook,
        )

    def _list_notes(
        self, owner: str, notebook: str, with_preview: bool
    ) -> List[NoteInfo]:
        notes = []
        for title, last_modified in self.working_tree.list_note_files(owner, notebook):
            preview = None
            if with_preview:
                preview = self.cache.get_preview(NoteKey(owner, notebook, title))
            notes.append(
                NoteInfo(
                    notebook=notebook,
                    title=title,
                    last_modified=last_modified,
                    preview=preview,
                )
            )
        return notes

    def get_note(self, owner: str, notebook: str, title: str) -> OperationResult[str]:
        """Current content of a note."""
        return self._run(
            "get_note",
            lambda: self._get_note(owner, notebook, title),
            owner=owner,
            notebook=notebook,
            title=title,
        )

    def _get_note(self, owner: str, notebook: str, title: str) -> str:
        key = self._key(owner, notebook, title)
        content = self.cache.get_content(key)
        if content is None:
            raise NotFoundError(
                f"Note '{title}' not found in notebook '{notebook}'",
                notebook=notebook,
                title=title,
            )
        return content

    def search(
        self, owner: str, keyword: str, notebooks: Optional[List[str]] = None
    ) -> OperationResult[List[NoteInfo]]:
        """Find notes whose title or content contains keyword.

        Matching is a case-sensitive substring test. Results are ranked by
        the number of occurrences in title plus content, then by
        modification time (newest first), then by notebook and title.
        """

        def action() -> List[NoteInfo]:
            require_keyword(keyword)
            names = notebooks or sorted(self.working_tree.list_notebooks(owner))
            hits = []
            for notebook in names:
                for note in self._list_notes(owner, notebook, with_preview=False):
                    content = self.cache.get_content(
                        NoteKey(owner, notebook, note.title)
                    )
                    if content is None:
                        continue
                    count = count_occurrences(note.title, keyword) + count_occurrences(
                        content, keyword
                    )
                    if count == 0:
                        continue
                    hits.append(
                        note.model_copy(
                            update={"content": content, "search_count": count}
                        )
                    )
            hits.sort(
                key=lambda n: (
                    -n.search_count,
                    -n.last_modified.timestamp(),
                    n.notebook,
                    n.title,
                )
            )
            return hits

        return self._run("search", action, owner=owner, keyword=keyword)

    # =========================================================================
    # Writing notes
    # =========================================================================

    def create_note(
        self, owner: str, notebook: str, title: str, content: str
    ) -> OperationResult[str]:
        """Save a note that must not exist yet. Returns the new ref."""
        return self._run(
            "create_note",
            lambda: self._create_note(owner, notebook, title, content),
            owner=owner,
            notebook=notebook,
            title=title,
        )

    def _create_note(self, owner: str, notebook: str, title: str, content: str) -> str:
        self._key(owner, notebook, title)
        with self._owner_lock(owner):
            if self.working_tree.exists(owner, notebook, title):
                raise AlreadyExistsError(
                    f"Note '{title}' already exists in notebook '{notebook}'",
                    notebook=notebook,
                    title=title,
                )
            return self._save_note(owner, notebook, title, content)

    def save_note(
        self, owner: str, notebook: str, title: str, content: str
    ) -> OperationResult[str]:
        """Create or overwrite a note, creating its notebook if needed.

        Every save is a new commit, even when the content is unchanged.
        Returns the new ref.
        """
        return self._run(
            "save_note",
            lambda: self._save_note(owner, notebook, title, content),
            owner=owner,
            notebook=notebook,
            title=title,
        )

    def _save_note(self, owner: str, notebook: str, title: str, content: str) -> str:
        key = self._key(owner, notebook, title)
        if not isinstance(content, str):
            raise InvalidArgumentError("Note content must be text", field="content")
        with self._owner_lock(owner):
            self._ensure_notebook(owner, notebook)
            try:
                relative = self.working_tree.write(owner, notebook, title, content)
            finally:
                # Before the commit, so no read that starts after it sees old content
                self.cache.invalidate(key)
            ref = self.version_log.add_and_commit(
                owner, relative, f"Save {notebook}/{title}"
            )
            self.drafts.delete_by_owner_and_notebook_and_title(owner, notebook, title)
            logger.info(f"Saved {key} at {ref[:7]}")
            return ref

    def delete_note(
        self, owner: str, notebook: str, title: str
    ) -> OperationResult[DeletedNote]:
        """Delete a note, keeping a tombstone for recovery."""

        def action() -> DeletedNote:
            with self._owner_lock(owner):
                return self._delete_note(owner, notebook, title)

        return self._run(
            "delete_note", action, owner=owner, notebook=notebook, title=title
        )

    def _delete_note(self, owner: str, notebook: str, title: str) -> DeletedNote:
        key = self._key(owner, notebook, title)
        content = self.working_tree.read(owner, notebook, title)
        relative = self.working_tree.resolve_note_relative_path(owner, notebook, title)
        # Captured before removal: the last state in which the note existed
        last_ref = self.version_log.current_ref(owner, relative)
        try:
            self.working_tree.delete(owner, notebook, title)
        finally:
            self.cache.invalidate(key)
        self.version_log.rm_and_commit(owner, relative, f"Delete {notebook}/{title}")
        tombstone = self.deleted_notes.save(owner, notebook, title, last_ref, content)
        logger.info(f"Deleted {key}, tombstone {tombstone.id}")
        return tombstone

    def copy_note(
        self, owner: str, src_notebook: str, dst_notebook: str, title: str
    ) -> OperationResult[str]:
        """Copy a note into another notebook under the same title."""

        def action() -> str:
            if src_notebook == dst_notebook:
                raise InvalidArgumentError(
                    "Source and target notebook are the same",
                    field="dst_notebook",
                    value=dst_notebook,
                    code=ErrorCode.SAME_SOURCE_AND_TARGET,
                )
            content = self._get_note(owner, src_notebook, title)
            return self._create_note(owner, dst_notebook, title, content)

        return self._run(
            "copy_note",
            action,
            owner=owner,
            src_notebook=src_notebook,
            dst_notebook=dst_notebook,
            title=title,
        )

    def move_note(
        self,
        owner: str,
        src_notebook: str,
        src_title: str,
        dst_notebook: str,
        dst_title: str,
    ) -> OperationResult[str]:
        """Rename a note, possibly into another notebook, as one commit.

        A destination notebook that does not exist yet is created first,
        which records its marker commit before the rename commit. No
        tombstone is recorded for the source. The destination's cache
        entry is primed with the moved content. Returns the new ref.
        """

        def action() -> str:
            for field_name, value in (
                ("src_notebook", src_notebook),
                ("src_title", src_title),
                ("dst_notebook", dst_notebook),
                ("dst_title", dst_title),
            ):
                if value is None or not value.strip():
                    raise InvalidArgumentError(
                        f"{field_name} cannot be blank", field=field_name
                    )
            if (
                src_notebook.casefold() == dst_notebook.casefold()
                and src_title.casefold() == dst_title.casefold()
            ):
                raise InvalidArgumentError(
                    "Source and target note are the same",
                    field="dst_title",
                    value=dst_title,
                    code=ErrorCode.SAME_SOURCE_AND_TARGET,
                )
            src_key = self._key(owner, src_notebook, src_title)
            dst_key = self._key(owner, dst_notebook, dst_title)

            with self._owner_lock(owner):
                content = self.working_tree.read(owner, src_notebook, src_title)
                if self.working_tree.exists(owner, dst_notebook, dst_title):
                    raise AlreadyExistsError(
                        f"Note '{dst_title}' already exists in notebook "
                        f"'{dst_notebook}'",
                        notebook=dst_notebook,
                        title=dst_title,
                    )
                self._ensure_notebook(owner, dst_notebook)
                src_relative = self.working_tree.resolve_note_relative_path(
                    owner, src_notebook, src_title
                )
                dst_relative = note_relative_path(dst_notebook, dst_title)
                try:
                    self.working_tree.move(owner, src_relative, dst_relative)
                finally:
                    self.cache.invalidate(src_key)
                    self.cache.invalidate(dst_key)
                ref = self.version_log.mv_and_commit(owner, src_relative, dst_relative)
                self.cache.put(dst_key, content)
                logger.info(f"Moved {src_key} to {dst_key} at {ref[:7]}")
                return ref

        return self._run(
            "move_note",
            action,
            owner=owner,
            src=f"{src_notebook}/{src_title}",
            dst=f"{dst_notebook}/{dst_title}",
        )

    # =========================================================================
    # History
    # =========================================================================

    def get_note_history(
        self, owner: str, notebook: str, title: str
    ) -> OperationResult[List[NoteVersion]]:
        """Commits that touched the note's path, newest first."""

        def action() -> List[NoteVersion]:
            self._key(owner, notebook, title)
            relative = self.working_tree.resolve_note_relative_path(
                owner, notebook, title
            )
            return self.version_log.history(owner, relative)

        return self._run(
            "get_note_history", action, owner=owner, notebook=notebook, title=title
        )

    def get_note_version(
        self, owner: str, notebook: str, title: str, ref: str
    ) -> OperationResult[str]:
        """Content of a note as of ref, without changing anything."""

        def action() -> str:
            self._key(owner, notebook, title)
            self._require_ref(ref)
            relative = self.working_tree.resolve_note_relative_path(
                owner, notebook, title
            )
            content = self.version_log.show(owner, relative, ref)
            if content is None:
                raise NotFoundError(
                    f"Note '{title}' has no version {ref}",
                    code=ErrorCode.VERSION_NOT_FOUND,
                    ref=ref,
                )
            return content

        return self._run(
            "get_note_version", action, owner=owner, notebook=notebook, title=title
        )

    def reset_and_get(
        self, owner: str, notebook: str, title: str, ref: str
    ) -> OperationResult[str]:
        """Restore a note's content at ref as a new commit and return it."""

        def action() -> str:
            key = self._key(owner, notebook, title)
            self._require_ref(ref)
            with self._owner_lock(owner):
                if not self.working_tree.notebook_exists(owner, notebook):
                    raise NotFoundError(
                        f"No such notebook: {notebook}",
                        code=ErrorCode.NOTEBOOK_NOT_FOUND,
                        notebook=notebook,
                    )
                relative = self.working_tree.resolve_note_relative_path(
                    owner, notebook, title
                )
                try:
                    restored = self.version_log.reset_and_commit(owner, relative, ref)
                finally:
                    self.cache.invalidate(key)
                if not restored:
                    raise NotFoundError(
                        f"Cannot restore '{title}' to version {ref}",
                        code=ErrorCode.VERSION_NOT_FOUND,
                        ref=ref,
                    )
                logger.info(f"Reset {key} to {ref}")
                return self._get_note(owner, notebook, title)

        return self._run(
            "reset_and_get", action, owner=owner, notebook=notebook, title=title
        )

    # =========================================================================
    # Deleted notes
    # =========================================================================

    def list_deleted_notes(self, owner: str) -> OperationResult[List[DeletedNote]]:
        """Tombstones of the owner, most recently deleted first."""

        def action() -> List[DeletedNote]:
            validate_name(owner, "owner")
            return self.deleted_notes.find_all_by_owner(owner)

        return self._run("list_deleted_notes", action, owner=owner)

    def recover_note(self, owner: str, deleted_id: int) -> OperationResult[str]:
        """Bring a deleted note back from its tombstone and clear the tombstone.

        Content comes from the tombstone's ref in history. If history cannot
        provide it, or its version differs from what the note held when it
        was deleted (an edit that was never committed), the content snapshot
        taken at deletion is written instead. Refuses to overwrite an
        existing note. Returns the recovered content.
        """

        def action() -> str:
            validate_name(owner, "owner")
            with self._owner_lock(owner):
                record = self._find_deleted(owner, deleted_id)
                key = self._key(owner, record.notebook, record.title)
                if self.working_tree.exists(owner, record.notebook, record.title):
                    raise AlreadyExistsError(
                        f"Note '{record.title}' already exists in notebook "
                        f"'{record.notebook}'",
                        notebook=record.notebook,
                        title=record.title,
                    )
                self._ensure_notebook(owner, record.notebook)
                relative = note_relative_path(record.notebook, record.title)
                try:
                    restored = False
                    # History only serves the note if it holds the deleted content
                    if record.last_ref and (
                        self.version_log.show(owner, relative, record.last_ref)
                        == record.content
                    ):
                        restored = self.version_log.recover_deleted(
                            owner, relative, record.last_ref
                        )
                    if not restored:
                        logger.warning(
                            f"History does not hold {key} as deleted at "
                            f"{record.last_ref!r}; writing deletion snapshot"
                        )
                        self.working_tree.write(
                            owner, record.notebook, record.title, record.content
                        )
                        self.version_log.add_and_commit(
                            owner, relative, f"Recover {record.notebook}/{record.title}"
                        )
                finally:
                    self.cache.invalidate(key)
                self.deleted_notes.delete_by_id_and_owner(deleted_id, owner)
                logger.info(f"Recovered {key} from tombstone {deleted_id}")
                return self.working_tree.read(owner, record.notebook, record.title)

        return self._run(
            "recover_note", action, owner=owner, deleted_id=deleted_id
        )

    def clear_deleted_note(self, owner: str, deleted_id: int) -> OperationResult[None]:
        """Permanently drop one tombstone."""

        def action() -> None:
            validate_name(owner, "owner")
            if not self.deleted_notes.delete_by_id_and_owner(deleted_id, owner):
                raise NotFoundError(
                    f"No deleted note with id {deleted_id}",
                    code=ErrorCode.DELETED_NOTE_NOT_FOUND,
                    deleted_id=deleted_id,
                )

        return self._run(
            "clear_deleted_note", action, owner=owner, deleted_id=deleted_id
        )

    def clear_all_deleted_notes(self, owner: str) -> OperationResult[int]:
        """Permanently drop every tombstone of the owner."""

        def action() -> int:
            validate_name(owner, "owner")
            return self.deleted_notes.delete_all_by_owner(owner)

        return self._run("clear_all_deleted_notes", action, owner=owner)

    def _find_deleted(self, owner: str, deleted_id: int) -> DeletedNote:
        record = self.deleted_notes.find_by_id_and_owner(deleted_id, owner)
        if record is None:
            raise NotFoundError(
                f"No deleted note with id {deleted_id}",
                code=ErrorCode.DELETED_NOTE_NOT_FOUND,
                deleted_id=deleted_id,
            )
        return record

    # =========================================================================
    # Drafts
    # =========================================================================

    def save_draft(
        self, owner: str, notebook: str, title: str, content: str
    ) -> OperationResult[Draft]:
        """Keep unsaved content for a note; the next save of the note clears it."""

        def action() -> Draft:
            self._key(owner, notebook, title)
            return self.drafts.save_draft(owner, notebook, title, content)

        return self._run("save_draft", action, owner=owner, notebook=notebook, title=title)

    def get_draft(
        self, owner: str, notebook: str, title: str
    ) -> OperationResult[Draft]:
        def action() -> Draft:
            self._key(owner, notebook, title)
            draft = self.drafts.find_draft(owner, notebook, title)
            if draft is None:
                raise NotFoundError(
                    f"No draft for '{title}' in notebook '{notebook}'",
                    notebook=notebook,
                    title=title,
                )
            return draft

        return self._run("get_draft", action, owner=owner, notebook=notebook, title=title)

    # =========================================================================
    # Maintenance
    # =========================================================================

    def check_consistency(self, owner: str) -> OperationResult[List[str]]:
        """Paths whose working-tree state is ahead of history.

        A non-empty answer means an earlier commit failed after its write;
        the store does not repair this by itself.
        """
        return self._run(
            "check_consistency",
            lambda: self.version_log.uncommitted_paths(owner),
            owner=owner,
        )

    def cache_stats(self) -> OperationResult[dict]:
        return self._run("cache_stats", self.cache.stats)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _key(owner: str, notebook: str, title: str) -> NoteKey:
        """Validated key for a note."""
        return NoteKey(
            owner=validate_name(owner, "owner"),
            notebook=validate_name(notebook, "notebook"),
            title=validate_name(title, "title"),
        )

    @staticmethod
    def _require_ref(ref: str) -> None:
        if not is_valid_ref(ref):
            raise InvalidArgumentError(
                "Invalid version ref", field="ref", value=ref, code=ErrorCode.INVALID_REF
            )


def build_note_store(
    cfg: Optional[NoteStoreConfig] = None,
    engine: Optional[Engine] = None,
    metrics: Optional[MetricsCollector] = None,
) -> NoteStore:
    """Wire a NoteStore from configuration.

    Called once at process start; the caches it creates live as long as
    the returned store.
    """
    cfg = cfg or config
    notes_dir = cfg.get_notes_dir()
    engine = engine or init_db(cfg.get_db_url())

    working_tree = WorkingTree(notes_dir)
    cache = NoteCache(
        loader=lambda key: working_tree.read_or_none(key.owner, key.notebook, key.title),
        preview_generator=lambda content: truncate_preview(content, cfg.preview_length),
        content_size=cfg.content_cache_size,
        preview_size=cfg.preview_cache_size,
        ttl_seconds=cfg.cache_ttl_seconds,
    )
    logger.info(
        f"NoteStore initialized: notes_dir={notes_dir}, "
        f"cache={cfg.content_cache_size}/{cfg.preview_cache_size} entries, "
        f"ttl={cfg.cache_ttl_seconds}s"
    )
    return NoteStore(
        working_tree=working_tree,
        version_log=VersionLog(notes_dir, email_domain=cfg.git_email_domain),
        cache=cache,
        deleted_notes=DeletedNoteRepository(engine),
        drafts=DraftRepository(engine),
        metrics=metrics,
    )
