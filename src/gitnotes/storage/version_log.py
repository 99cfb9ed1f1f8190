"""Per-owner version history over the working tree.

Each owner directory is its own git repository. Every mutating call stages
exactly the paths it names and produces exactly one commit. Git failures
during a commit step surface as CommitError, failures while reading
history as StorageError.
"""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional

from gitnotes.exceptions import CommitError, ErrorCode, StorageError
from gitnotes.models.schema import NoteVersion
from gitnotes.storage.git_wrapper import GitError, GitWrapper
from gitnotes.utils import sanitize_commit_message, validate_name

logger = logging.getLogger(__name__)


class VersionLog:
    """Append-only commit history, one git repository per owner."""

    def __init__(self, root_dir: Path, email_domain: str = "localhost"):
        """Initialize the version log.

        Args:
            root_dir: Notes root; the repository of ``owner`` is
                ``root_dir/owner``.
            email_domain: Domain of the committer email set on new
                repositories.
        """
        self.root_dir = Path(root_dir).resolve()
        self.email_domain = email_domain
        self._repos: Dict[str, GitWrapper] = {}
        self._repos_lock = threading.Lock()

    def repository(self, owner: str) -> GitWrapper:
        """The owner's repository, initialized on first use."""
        validate_name(owner, "owner")
        with self._repos_lock:
            repo = self._repos.get(owner)
            if repo is None:
                try:
                    repo = GitWrapper(
                        self.root_dir / owner,
                        author_name=owner,
                        author_email=f"{owner}@{self.email_domain}",
                    )
                except GitError as e:
                    raise StorageError(
                        f"Failed to open history for {owner}",
                        operation="init",
                        path=str(self.root_dir / owner),
                        code=ErrorCode.HISTORY_READ_FAILED,
                        original_error=e,
                    ) from e
                self._repos[owner] = repo
            return repo

    # =========================================================================
    # Commits
    # =========================================================================

    def add_and_commit(
        self, owner: str, rel_path: str, message: Optional[str] = None
    ) -> str:
        """Commit the current on-disk state of a path."""
        msg = sanitize_commit_message(message or f"Update {rel_path}")
        return self._commit(owner, rel_path, lambda repo: repo.add_and_commit(rel_path, msg))

    def rm_and_commit(
        self, owner: str, rel_path: str, message: Optional[str] = None
    ) -> str:
        """Commit the removal of a path."""
        msg = sanitize_commit_message(message or f"Delete {rel_path}")
        return self._commit(
            owner, rel_path, lambda repo: repo.remove_and_commit(rel_path, msg)
        )

    def mv_and_commit(
        self, owner: str, src_path: str, dst_path: str, message: Optional[str] = None
    ) -> str:
        """Commit a rename of src_path to dst_path as a single change."""
        msg = sanitize_commit_message(message or f"Move {src_path} to {dst_path}")
        return self._commit(
            owner, dst_path, lambda repo: repo.move_and_commit(src_path, dst_path, msg)
        )

    def reset_and_commit(self, owner: str, rel_path: str, ref: str) -> bool:
        """Restore a path to its state at ref and commit that as a new change.

        History is never rewritten: the restoration is one more commit.

        Returns:
            False if ref is invalid or the path did not exist at ref

        Raises:
            CommitError: If the restored file could not be committed
        """
        repo = self.repository(owner)
        full_ref = repo.resolve_ref(ref)
        if full_ref is None:
            logger.info(f"Reset of {rel_path} for {owner}: unknown ref {ref!r}")
            return False
        if not repo.checkout_path(full_ref, rel_path):
            return False
        msg = sanitize_commit_message(f"Reset {rel_path} to {full_ref[:7]}")
        self._commit(owner, rel_path, lambda r: r.add_and_commit(rel_path, msg))
        return True

    def recover_deleted(self, owner: str, rel_path: str, ref: str) -> bool:
        """Bring back a path that no longer exists from a ref where it did.

        Returns:
            False if the path currently exists, or ref cannot provide it

        Raises:
            CommitError: If the restored file could not be committed
        """
        repo = self.repository(owner)
        if (repo.repo_path / rel_path).exists():
            return False
        full_ref = repo.resolve_ref(ref)
        if full_ref is None:
            return False
        if not repo.checkout_path(full_ref, rel_path):
            return False
        msg = sanitize_commit_message(f"Recover {rel_path} from {full_ref[:7]}")
        self._commit(owner, rel_path, lambda r: r.add_and_commit(rel_path, msg))
        return True

    def _commit(self, owner: str, rel_path: str, action) -> str:
        repo = self.repository(owner)
        try:
            return action(repo)
        except GitError as e:
            logger.error(
                f"Commit failed for {owner}:{rel_path}; working tree is ahead of "
                f"history until reconciled: {e}"
            )
            raise CommitError(
                f"Failed to record change to {rel_path}",
                path=rel_path,
                original_error=e,
            ) from e

    # =========================================================================
    # Queries
    # =========================================================================

    def current_ref(self, owner: str, rel_path: str) -> Optional[str]:
        """Latest commit touching a path, or None if it was never committed."""
        return self._read(owner, rel_path, lambda repo: repo.get_file_ref(rel_path))

    def history(
        self, owner: str, rel_path: str, limit: Optional[int] = None
    ) -> List[NoteVersion]:
        """Commits touching a path, newest first."""
        return self._read(
            owner, rel_path, lambda repo: repo.get_history(rel_path, limit=limit)
        )

    def show(self, owner: str, rel_path: str, ref: str) -> Optional[str]:
        """Content of a path at ref, or None if unavailable."""
        return self._read(owner, rel_path, lambda repo: repo.show_file(ref, rel_path))

    def uncommitted_paths(self, owner: str) -> List[str]:
        """Paths whose on-disk state is not recorded in history."""
        return self._read(owner, ".", lambda repo: repo.list_dirty_paths())

    def _read(self, owner: str, rel_path: str, action):
        repo = self.repository(owner)
        try:
            return action(repo)
        except GitError as e:
            raise StorageError(
                f"Failed to read history of {rel_path}",
                operation="history",
                path=rel_path,
                code=ErrorCode.HISTORY_READ_FAILED,
                original_error=e,
            ) from e
