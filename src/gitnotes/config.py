"""Configuration module for the gitnotes note store."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from gitnotes import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config, lives alongside the default notes directory
_USER_ENV = Path.home() / ".gitnotes" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class NoteStoreConfig(BaseModel):
    """Configuration for the note store."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("GITNOTES_BASE_DIR", "."))
    )
    # Root of all owner trees: <notes_dir>/<owner>/<notebook>/<title>.md
    notes_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("GITNOTES_NOTES_DIR", "data/notes"))
    )
    # SQLite database holding deleted-note and draft records
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("GITNOTES_DATABASE_PATH", "data/db/gitnotes.db")
        )
    )
    # When True the registries live in an in-memory SQLite database and are
    # lost on exit. Intended for tests and throwaway sessions.
    in_memory_db: bool = Field(
        default_factory=lambda: _env_bool("GITNOTES_IN_MEMORY_DB", "false")
    )
    # Cache configuration (entries per cache, seconds before an entry expires)
    content_cache_size: int = Field(
        default_factory=lambda: int(os.getenv("GITNOTES_CONTENT_CACHE_SIZE", "512"))
    )
    preview_cache_size: int = Field(
        default_factory=lambda: int(os.getenv("GITNOTES_PREVIEW_CACHE_SIZE", "2048"))
    )
    cache_ttl_seconds: float = Field(
        default_factory=lambda: float(os.getenv("GITNOTES_CACHE_TTL_SECONDS", "1800"))
    )
    # Number of characters kept in a note preview
    preview_length: int = Field(
        default_factory=lambda: int(os.getenv("GITNOTES_PREVIEW_LENGTH", "200"))
    )
    # Commits are authored as "<owner> <<owner>@<git_email_domain>>"
    git_email_domain: str = Field(
        default_factory=lambda: os.getenv("GITNOTES_GIT_EMAIL_DOMAIN", "localhost")
    )
    # Logging configuration
    log_level: str = Field(
        default_factory=lambda: os.getenv("GITNOTES_LOG_LEVEL", "INFO")
    )
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("GITNOTES_LOG_DIR"))
            if os.getenv("GITNOTES_LOG_DIR")
            else None
        )
    )
    version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_limits(self) -> "NoteStoreConfig":
        """Reject cache and preview settings that cannot work."""
        if self.content_cache_size < 1:
            raise ValueError("content_cache_size must be >= 1")
        if self.preview_cache_size < 1:
            raise ValueError("preview_cache_size must be >= 1")
        if self.cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be > 0")
        if self.preview_length < 1:
            raise ValueError("preview_length must be >= 1")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"Unknown log level: {self.log_level}")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_notes_dir(self) -> Path:
        """Absolute notes root, created if missing."""
        notes_dir = self.get_absolute_path(self.notes_dir)
        notes_dir.mkdir(parents=True, exist_ok=True)
        return notes_dir

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        if self.in_memory_db:
            return "sqlite:///:memory:"
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


# Create a global config instance
config = NoteStoreConfig()
