"""Common test fixtures for the gitnotes note store."""

import tempfile
from pathlib import Path

import pytest

from gitnotes.config import config
from gitnotes.models.db_models import init_db
from gitnotes.observability import MetricsCollector
from gitnotes.services.note_cache import NoteCache
from gitnotes.services.note_store import NoteStore
from gitnotes.storage.deleted_note_repository import DeletedNoteRepository
from gitnotes.storage.draft_repository import DraftRepository
from gitnotes.storage.version_log import VersionLog
from gitnotes.storage.working_tree import WorkingTree

OWNER = "alice"


@pytest.fixture
def temp_dirs():
    """Create temporary directories for notes and database."""
    with tempfile.TemporaryDirectory() as notes_dir:
        with tempfile.TemporaryDirectory() as db_dir:
            yield Path(notes_dir), Path(db_dir)


@pytest.fixture
def test_config(temp_dirs, monkeypatch):
    """Configure with test paths (auto-restored even on crash)."""
    notes_dir, db_dir = temp_dirs
    monkeypatch.setattr(config, "notes_dir", notes_dir)
    monkeypatch.setattr(config, "database_path", db_dir / "test_gitnotes.db")
    monkeypatch.setattr(config, "in_memory_db", False)
    yield config


@pytest.fixture
def notes_dir(temp_dirs):
    return temp_dirs[0]


@pytest.fixture
def engine():
    """In-memory registry database, fresh per test."""
    engine = init_db("sqlite:///:memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def working_tree(notes_dir):
    return WorkingTree(notes_dir)


@pytest.fixture
def version_log(notes_dir):
    return VersionLog(notes_dir)


@pytest.fixture
def note_cache(working_tree):
    return NoteCache(
        loader=lambda key: working_tree.read_or_none(
            key.owner, key.notebook, key.title
        ),
        content_size=16,
        preview_size=16,
        ttl_seconds=300,
    )


@pytest.fixture
def metrics_collector():
    return MetricsCollector()


@pytest.fixture
def note_store(working_tree, version_log, note_cache, engine, metrics_collector):
    """A NoteStore over a temporary tree and an in-memory database."""
    yield NoteStore(
        working_tree=working_tree,
        version_log=version_log,
        cache=note_cache,
        deleted_notes=DeletedNoteRepository(engine),
        drafts=DraftRepository(engine),
        metrics=metrics_collector,
    )
