"""On-disk layout of each owner's notebooks and notes.

Layout::

    <root>/<owner>/<notebook>/.notebook      marker, makes the directory a notebook
    <root>/<owner>/<notebook>/<title>.md     one note

This module knows nothing about history; the version log commits what it
writes.
"""

import datetime
import logging
import os
import shutil
import tempfile
from datetime import timezone
from pathlib import Path
from typing import List, Optional, Set, Tuple

from gitnotes.exceptions import (
    AlreadyExistsError,
    ErrorCode,
    NotFoundError,
    StorageError,
)
from gitnotes.models.schema import NOTE_EXTENSION, NOTEBOOK_MARKER
from gitnotes.utils import validate_name

logger = logging.getLogger(__name__)

_NOTE_SUFFIX = f".{NOTE_EXTENSION}"


def is_note_file_name(file_name: str) -> bool:
    """Whether a file name carries the note extension (any letter case)."""
    return (
        not file_name.startswith(".")
        and len(file_name) > len(_NOTE_SUFFIX)
        and file_name.lower().endswith(_NOTE_SUFFIX)
    )


def note_relative_path(notebook: str, title: str) -> str:
    """Path of a note relative to its owner directory."""
    return f"{notebook}/{title}{_NOTE_SUFFIX}"


def marker_relative_path(notebook: str) -> str:
    """Path of a notebook marker relative to its owner directory."""
    return f"{notebook}/{NOTEBOOK_MARKER}"


def write_content(content: str, target: Path) -> None:
    """Write text to target through a temp file and an atomic rename.

    Newlines are written untranslated so content round-trips exactly.

    Raises:
        StorageError: If the file cannot be written
    """
    tmp_name = None
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".tmp", dir=target.parent
        )
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_name, target)
    except OSError as e:
        if tmp_name and os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise StorageError(
            f"Failed to write {target.name}",
            operation="write",
            path=str(target),
            code=ErrorCode.STORAGE_WRITE_FAILED,
            original_error=e,
        ) from e


def delete_target(path: Path) -> bool:
    """Remove a file or a whole directory tree.

    Returns:
        False if nothing existed at path

    Raises:
        StorageError: If removal fails
    """
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
        else:
            return False
    except OSError as e:
        raise StorageError(
            f"Failed to delete {path.name}",
            operation="delete",
            path=str(path),
            code=ErrorCode.STORAGE_DELETE_FAILED,
            original_error=e,
        ) from e
    return True


class WorkingTree:
    """File operations on the live notes tree of every owner."""

    def __init__(self, root_dir: Path):
        self.root_dir = Path(root_dir).resolve()
        self.root_dir.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # Paths
    # =========================================================================

    def owner_dir(self, owner: str) -> Path:
        """Directory of one owner, created on first use."""
        validate_name(owner, "owner")
        path = self.root_dir / owner
        path.mkdir(exist_ok=True)
        return path

    def notebook_dir(self, owner: str, notebook: str) -> Path:
        validate_name(notebook, "notebook")
        return self.owner_dir(owner) / notebook

    def resolve_note_relative_path(self, owner: str, notebook: str, title: str) -> str:
        """Relative path of the note's file on disk.

        Falls back to the canonical ``<title>.md`` when the file does not
        exist. A file whose extension differs only in case (``.MD``) is
        found too.
        """
        path = self._find_note_file(owner, notebook, title)
        if path is None:
            return note_relative_path(notebook, title)
        return f"{notebook}/{path.name}"

    def _find_note_file(self, owner: str, notebook: str, title: str) -> Optional[Path]:
        validate_name(title, "title")
        notebook_dir = self.notebook_dir(owner, notebook)
        canonical = notebook_dir / f"{title}{_NOTE_SUFFIX}"
        if canonical.is_file():
            return canonical
        if not notebook_dir.is_dir():
            return None
        for entry in notebook_dir.iterdir():
            if (
                is_note_file_name(entry.name)
                and entry.name[: -len(_NOTE_SUFFIX)] == title
                and entry.is_file()
            ):
                return entry
        return None

    # =========================================================================
    # Notebooks
    # =========================================================================

    def list_notebooks(self, owner: str) -> Set[str]:
        """Names of the owner's notebooks.

        Hidden directories and directories without the notebook marker are
        ignored, even if they contain note-like files.
        """
        names = set()
        for entry in self.owner_dir(owner).iterdir():
            if entry.name.startswith("."):
                continue
            if entry.is_dir() and (entry / NOTEBOOK_MARKER).is_file():
                names.add(entry.name)
        return names

    def notebook_exists(self, owner: str, notebook: str) -> bool:
        notebook_dir = self.notebook_dir(owner, notebook)
        return notebook_dir.is_dir() and (notebook_dir / NOTEBOOK_MARKER).is_file()

    def ensure_notebook(self, owner: str, notebook: str) -> bool:
        """Create the notebook directory and its marker if needed.

        A directory left without a marker by an earlier failure is completed.
        If the marker cannot be written, a directory created by this call is
        removed again so no half-made notebook remains.

        Returns:
            True if the marker was created and needs committing

        Raises:
            AlreadyExistsError: If a regular file occupies the notebook path
            StorageError: If the directory or marker cannot be created
        """
        notebook_dir = self.notebook_dir(owner, notebook)
        marker = notebook_dir / NOTEBOOK_MARKER
        if notebook_dir.is_dir() and marker.is_file():
            return False
        if notebook_dir.exists() and not notebook_dir.is_dir():
            raise AlreadyExistsError(
                f"A file named '{notebook}' is in the way of the notebook",
                code=ErrorCode.NOTEBOOK_ALREADY_EXISTS,
                notebook=notebook,
            )

        created_dir = False
        try:
            if not notebook_dir.exists():
                notebook_dir.mkdir()
                created_dir = True
            else:
                logger.warning(
                    f"Completing notebook '{notebook}' for {owner}: marker was missing"
                )
            marker.touch(exist_ok=True)
        except OSError as e:
            if created_dir:
                shutil.rmtree(notebook_dir, ignore_errors=True)
            raise StorageError(
                f"Failed to create notebook '{notebook}'",
                operation="create_notebook",
                path=str(notebook_dir),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

        logger.info(f"Created notebook '{notebook}' for {owner}")
        return True

    def remove_notebook(self, owner: str, notebook: str) -> bool:
        """Remove the notebook directory and everything left in it."""
        return delete_target(self.notebook_dir(owner, notebook))

    # =========================================================================
    # Notes
    # =========================================================================

    def list_note_files(
        self, owner: str, notebook: str
    ) -> List[Tuple[str, datetime.datetime]]:
        """Titles and modification times of a notebook's notes, newest first.

        Raises:
            NotFoundError: If the notebook directory is absent or is a file
        """
        notebook_dir = self.notebook_dir(owner, notebook)
        if not notebook_dir.is_dir():
            raise NotFoundError(
                f"No such notebook: {notebook}",
                code=ErrorCode.NOTEBOOK_NOT_FOUND,
                notebook=notebook,
            )

        rows = []
        try:
            with os.scandir(notebook_dir) as entries:
                for entry in entries:
                    if not is_note_file_name(entry.name):
                        continue
                    if not entry.is_file(follow_symlinks=False):
                        continue
                    mtime_ns = entry.stat(follow_symlinks=False).st_mtime_ns
                    rows.append((entry.name[: -len(_NOTE_SUFFIX)], mtime_ns))
        except OSError as e:
            raise StorageError(
                f"Failed to list notebook '{notebook}'",
                operation="list",
                path=str(notebook_dir),
                original_error=e,
            ) from e

        rows.sort(key=lambda row: (-row[1], row[0]))
        return [
            (title, datetime.datetime.fromtimestamp(mtime_ns / 1e9, tz=timezone.utc))
            for title, mtime_ns in rows
        ]

    def exists(self, owner: str, notebook: str, title: str) -> bool:
        return self._find_note_file(owner, notebook, title) is not None

    def read(self, owner: str, notebook: str, title: str) -> str:
        """Read a note's content.

        Raises:
            NotFoundError: If the note does not exist
            StorageError: If the file cannot be read
        """
        content = self.read_or_none(owner, notebook, title)
        if content is None:
            raise NotFoundError(
                f"Note '{title}' not found in notebook '{notebook}'",
                notebook=notebook,
                title=title,
            )
        return content

    def read_or_none(self, owner: str, notebook: str, title: str) -> Optional[str]:
        """Read a note's content, or None when it does not exist."""
        path = self._find_note_file(owner, notebook, title)
        if path is None:
            return None
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except FileNotFoundError:
            # Removed between lookup and open
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                f"Failed to read note '{title}'",
                operation="read",
                path=str(path),
                original_error=e,
            ) from e

    def write(self, owner: str, notebook: str, title: str, content: str) -> str:
        """Create or overwrite a note. The notebook must exist.

        Returns:
            The note's path relative to the owner directory
        """
        notebook_dir = self.notebook_dir(owner, notebook)
        if not notebook_dir.is_dir():
            raise NotFoundError(
                f"No such notebook: {notebook}",
                code=ErrorCode.NOTEBOOK_NOT_FOUND,
                notebook=notebook,
            )
        relative = self.resolve_note_relative_path(owner, notebook, title)
        write_content(content, self.owner_dir(owner) / relative)
        return relative

    def delete(self, owner: str, notebook: str, title: str) -> bool:
        path = self._find_note_file(owner, notebook, title)
        if path is None:
            return False
        return delete_target(path)

    def move(self, owner: str, src_relative: str, dst_relative: str) -> None:
        """Rename a file within the owner's tree.

        Raises:
            NotFoundError: If the source is missing
            AlreadyExistsError: If the destination is taken
            StorageError: If the rename fails
        """
        base = self.owner_dir(owner)
        src = base / src_relative
        dst = base / dst_relative
        if not src.is_file():
            raise NotFoundError(f"Cannot move missing file {src_relative}")
        if dst.exists():
            raise AlreadyExistsError(
                f"Cannot move onto existing file {dst_relative}", path=dst_relative
            )
        try:
            os.rename(src, dst)
        except OSError as e:
            raise StorageError(
                f"Failed to move {src_relative} to {dst_relative}",
                operation="move",
                path=str(dst),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e
