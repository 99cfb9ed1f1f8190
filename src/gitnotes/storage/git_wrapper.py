"""Git wrapper for version control operations.

Provides subprocess-based git operations on one repository: staging and
committing paths, reading per-path history, and restoring paths from
earlier commits.
"""

import logging
import re
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from gitnotes.models.schema import NoteVersion

logger = logging.getLogger(__name__)

# Accepted user-supplied refs: hashes, branch names, HEAD~n and the like.
# Leading dashes are rejected so a ref can never be read as a git option.
_REF_PATTERN = re.compile(r"^[0-9A-Za-z_][0-9A-Za-z_./~^-]*$")

# Field separator for git log output (unit separator, never in names)
_FIELD_SEP = "\x1f"

# Commit trailer naming each path a commit belongs to
PATH_TRAILER = "Note-Path"

# Characters that must be escaped in a POSIX extended regex
_ERE_SPECIAL = set(".[]()*+?{}|^$\\")


class GitError(Exception):
    """Base exception for git operations.

    Attributes:
        message: Human-readable error message
        command: The git command that failed (if applicable)
        returncode: Exit code from git (if applicable)
        stderr: Error output from git (if applicable)
    """

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        self.message = message
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.command:
            parts.append(f"command: {' '.join(self.command)}")
        if self.returncode is not None:
            parts.append(f"returncode: {self.returncode}")
        if self.stderr:
            parts.append(f"stderr: {self.stderr[:200]}")
        return " | ".join(parts)


def is_valid_ref(ref: Optional[str]) -> bool:
    """Whether ref is syntactically acceptable to pass to git."""
    return bool(ref) and bool(_REF_PATTERN.match(ref)) and ".." not in ref


class GitWrapper:
    """Wrapper for git operations via subprocess.

    All operations use subprocess to call git for maximum portability.
    The repo_path is passed to git via -C flag for all commands. Paths
    given to the public methods are relative to the repository root.
    """

    def __init__(
        self,
        repo_path: Path,
        author_name: str = "gitnotes",
        author_email: str = "gitnotes@localhost",
    ):
        """Initialize the GitWrapper.

        Args:
            repo_path: Path to the git repository root.
                      Will be initialized if .git doesn't exist.
            author_name: Committer name configured on a new repository.
            author_email: Committer email configured on a new repository.
        """
        self.repo_path = Path(repo_path).resolve()
        self.author_name = author_name
        self.author_email = author_email
        self._ensure_git_repo()

    def _run_git(
        self,
        args: List[str],
        check: bool = True,
        text: bool = True,
        retries: int = 3,
        retry_delay: float = 0.1,
    ) -> subprocess.CompletedProcess:
        """Run a git command via subprocess with retry for lock contention.

        Only ``index.lock`` contention is retried: the command never ran, so
        retrying cannot produce a second commit.

        Args:
            args: Git command arguments (without 'git' prefix)
            check: If True, raise GitError on non-zero exit
            text: If False, stdout is returned as raw bytes
            retries: Number of retries for index.lock contention (default: 3)
            retry_delay: Seconds to wait between retries (default: 0.1)

        Returns:
            CompletedProcess with command results

        Raises:
            GitError: If check=True and command fails after all retries
        """
        cmd = ["git", "-C", str(self.repo_path)] + args

        for attempt in range(retries + 1):
            try:
                result = subprocess.run(
                    cmd,
                    check=False,
                    capture_output=True,
                    text=text,
                    timeout=30,  # Prevent hanging
                )
            except subprocess.TimeoutExpired as e:
                raise GitError(
                    message=f"Git command timed out: {' '.join(args)}", command=cmd
                ) from e
            except FileNotFoundError as e:
                raise GitError(
                    message="Git is not installed or not in PATH", command=cmd
                ) from e

            stderr = result.stderr if text else result.stderr.decode("utf-8", "replace")
            if result.returncode != 0 and stderr:
                if "index.lock" in stderr and attempt < retries:
                    logger.debug(
                        f"Git index.lock contention, retry {attempt + 1}/{retries}: {args}"
                    )
                    time.sleep(retry_delay * (attempt + 1))
                    continue

            if check and result.returncode != 0:
                raise GitError(
                    message=f"Git command failed: {' '.join(args)}",
                    command=cmd,
                    returncode=result.returncode,
                    stderr=stderr.strip() if stderr else None,
                )

            return result

        raise GitError(f"Git command failed after {retries} retries: {args}")

    def _ensure_git_repo(self) -> None:
        """Initialize git repo if .git doesn't exist.

        Also sets the committer identity and disables commit signing, which
        a user's global config could otherwise force on every commit.
        """
        git_dir = self.repo_path / ".git"

        if not git_dir.exists():
            logger.info(f"Initializing git repository at {self.repo_path}")
            self.repo_path.mkdir(parents=True, exist_ok=True)
            self._run_git(["init", "-q"])

            self._run_git(["config", "user.email", self.author_email])
            self._run_git(["config", "user.name", self.author_name])
            self._run_git(["config", "commit.gpgsign", "false"])
            self._run_git(["config", "core.quotepath", "false"])

            logger.info("Git repository initialized")
        else:
            logger.debug(f"Git repository already exists at {self.repo_path}")

    # =========================================================================
    # Writing history
    # =========================================================================

    def commit(self, message: str, paths: Sequence[str] = ()) -> str:
        """Commit whatever is staged, even if nothing is.

        Every call creates a new commit, so repeated saves of identical
        content are still recorded. Each path in ``paths`` is named in a
        ``Note-Path`` trailer; per-path history is selected by that trailer
        because git's pathspec filtering skips commits without changes.

        Returns:
            Full hash of the new commit
        """
        args = ["commit", "-q", "--allow-empty", "--no-verify", "-m", message]
        if paths:
            args += ["-m", "\n".join(f"{PATH_TRAILER}: {p}" for p in paths)]
        self._run_git(args)
        head = self.head_ref()
        if head is None:
            raise GitError("Failed to read HEAD after commit")
        return head

    def add_and_commit(self, rel_path: str, message: str) -> str:
        """Stage the current on-disk state of a path and commit it."""
        self._run_git(["add", "-A", "--", rel_path])
        new_ref = self.commit(message, [rel_path])
        logger.debug(f"Committed {rel_path}: {new_ref[:7]}")
        return new_ref

    def remove_and_commit(self, rel_path: str, message: str) -> str:
        """Stage the removal of a path and commit it.

        Works whether or not the file is still on disk; an untracked path
        still yields a (empty) commit.
        """
        self._run_git(["rm", "-r", "-q", "--ignore-unmatch", "--", rel_path])
        new_ref = self.commit(message, [rel_path])
        logger.debug(f"Removed {rel_path}: {new_ref[:7]}")
        return new_ref

    def move_and_commit(self, src_path: str, dst_path: str, message: str) -> str:
        """Record an already performed rename as one commit.

        The commit belongs to the history of both paths.
        """
        self._run_git(["rm", "-q", "--cached", "--ignore-unmatch", "--", src_path])
        self._run_git(["add", "-A", "--", dst_path])
        new_ref = self.commit(message, [src_path, dst_path])
        logger.debug(f"Moved {src_path} -> {dst_path}: {new_ref[:7]}")
        return new_ref

    def checkout_path(self, ref: str, rel_path: str) -> bool:
        """Restore a path in the working tree and index to its state at ref.

        Returns:
            False if the ref is unknown or the path did not exist at it
        """
        if not is_valid_ref(ref):
            return False
        result = self._run_git(["checkout", ref, "--", rel_path], check=False)
        if result.returncode != 0:
            logger.debug(
                f"Checkout of {rel_path} at {ref} failed: {result.stderr.strip()}"
            )
            return False
        return True

    # =========================================================================
    # Reading history
    # =========================================================================

    def head_ref(self) -> Optional[str]:
        """Get the HEAD commit hash, or None if no commits exist."""
        result = self._run_git(["rev-parse", "--verify", "-q", "HEAD"], check=False)
        if result.returncode != 0 or not result.stdout.strip():
            return None
        return result.stdout.strip()

    def resolve_ref(self, ref: str) -> Optional[str]:
        """Resolve a ref to a full commit hash, or None if it names no commit."""
        if not is_valid_ref(ref):
            return None
        result = self._run_git(
            ["rev-parse", "--verify", "-q", f"{ref}^{{commit}}"], check=False
        )
        if result.returncode != 0 or not result.stdout.strip():
            return None
        return result.stdout.strip()

    @staticmethod
    def _path_filter(rel_path: str) -> List[str]:
        """git log arguments selecting the commits recorded for a path.

        A directory selects the commits of every path below it, and ``.``
        selects every commit of the repository.
        """
        rel_path = rel_path.rstrip("/")
        if rel_path in (".", ""):
            return []
        escaped = "".join("\\" + c if c in _ERE_SPECIAL else c for c in rel_path)
        return ["--extended-regexp", f"--grep=^{PATH_TRAILER}: {escaped}(/.*)?$"]

    def get_file_ref(self, rel_path: str) -> Optional[str]:
        """Get the last commit recorded for a path, or None if there is none."""
        result = self._run_git(
            ["log", "-1", "--format=%H"] + self._path_filter(rel_path), check=False
        )
        if result.returncode != 0 or not result.stdout.strip():
            return None
        return result.stdout.strip()

    def get_history(
        self, rel_path: str, limit: Optional[int] = None
    ) -> List[NoteVersion]:
        """Get commit history for a path, most recent first.

        Includes commits that left the path's content unchanged.

        Args:
            rel_path: Path relative to the repository root, or ``.``
            limit: Maximum number of commits to return (None for all)
        """
        args = ["log", f"--format=%H{_FIELD_SEP}%ct{_FIELD_SEP}%an{_FIELD_SEP}%s"]
        if limit is not None:
            args.append(f"-{limit}")
        result = self._run_git(args + self._path_filter(rel_path), check=False)

        if result.returncode != 0 or not result.stdout.strip():
            return []

        return [
            self._parse_log_line(line)
            for line in result.stdout.splitlines()
            if line.strip()
        ]

    def show_file(self, ref: str, rel_path: str) -> Optional[str]:
        """Content of a path at ref, or None if unavailable.

        Read as bytes so line endings come back untouched.
        """
        if not is_valid_ref(ref):
            return None
        result = self._run_git(["show", f"{ref}:{rel_path}"], check=False, text=False)
        if result.returncode != 0:
            return None
        return result.stdout.decode("utf-8")

    def list_dirty_paths(self, paths: Sequence[str] = ()) -> List[str]:
        """Paths whose working-tree state differs from HEAD."""
        args = ["status", "--porcelain", "--untracked-files=all"]
        if paths:
            args += ["--"] + list(paths)
        result = self._run_git(args)
        return [line[3:] for line in result.stdout.splitlines() if len(line) > 3]

    @staticmethod
    def _parse_log_line(line: str) -> NoteVersion:
        """Parse a git log line of unit-separated hash, time, author, subject."""
        commit_hash, unix_timestamp, author, subject = line.split(_FIELD_SEP, 3)
        timestamp = datetime.fromtimestamp(int(unix_timestamp), tz=timezone.utc)
        return NoteVersion(
            ref=commit_hash, timestamp=timestamp, author=author, message=subject
        )
