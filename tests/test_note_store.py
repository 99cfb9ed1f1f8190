"""Tests for NoteStore, the versioned note service."""

import os
import time

import pytest

from gitnotes.exceptions import ErrorKind
from gitnotes.models.schema import NoteKey

OWNER = "alice"


def _touch(notes_dir, notebook, title, stamp):
    """Set a note's modification time."""
    os.utime(notes_dir / OWNER / notebook / f"{title}.md", (stamp, stamp))


def _age(notes_dir, notebook, title, seconds_ago):
    """Push a note's modification time into the past."""
    _touch(notes_dir, notebook, title, time.time() - seconds_ago)


def _ok(result):
    assert result.success, result.message
    return result.data


class TestNotebooks:
    """Tests for notebook operations."""

    def test_list_notebooks_empty(self, note_store):
        assert _ok(note_store.list_notebooks(OWNER)) == []

    def test_create_notebook(self, note_store, version_log):
        _ok(note_store.create_notebook(OWNER, "work"))

        assert _ok(note_store.list_notebooks(OWNER)) == ["work"]
        assert version_log.current_ref(OWNER, "work/.notebook") is not None

    def test_create_notebook_twice(self, note_store):
        _ok(note_store.create_notebook(OWNER, "work"))
        result = note_store.create_notebook(OWNER, "work")

        assert not result.success
        assert result.error_kind == ErrorKind.ALREADY_EXISTS
        assert result.code == "NOTEBOOK_ALREADY_EXISTS"

    def test_save_creates_notebook(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "x"))
        assert _ok(note_store.list_notebooks(OWNER)) == ["work"]

    def test_list_notebooks_sorted_and_ignores_unmarked(self, note_store, notes_dir):
        for name in ("zeta", "alpha"):
            _ok(note_store.create_notebook(OWNER, name))
        (notes_dir / OWNER / "loose").mkdir()

        assert _ok(note_store.list_notebooks(OWNER)) == ["alpha", "zeta"]

    def test_owners_are_isolated(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "mine"))

        assert _ok(note_store.list_notebooks("bob")) == []
        result = note_store.get_note("bob", "work", "plan")
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_delete_notebook(self, note_store, version_log):
        _ok(note_store.save_note(OWNER, "work", "a", "A"))
        _ok(note_store.save_note(OWNER, "work", "b", "B"))

        tombstones = _ok(note_store.delete_notebook(OWNER, "work"))

        assert sorted(t.title for t in tombstones) == ["a", "b"]
        assert _ok(note_store.list_notebooks(OWNER)) == []
        assert len(_ok(note_store.list_deleted_notes(OWNER))) == 2
        assert version_log.uncommitted_paths(OWNER) == []
        # Marker and two saves, then two deletions and the marker removal
        assert len(version_log.history(OWNER, "work")) == 3 + 3

    def test_delete_missing_notebook(self, note_store):
        result = note_store.delete_notebook(OWNER, "missing")
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert result.code == "NOTEBOOK_NOT_FOUND"


class TestReadWrite:
    """Tests for saving and reading notes."""

    def test_read_after_write(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "draft A"))
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "draft A"

        _ok(note_store.save_note(OWNER, "work", "plan", "draft B"))
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "draft B"

    def test_read_after_write_with_warm_cache(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "one"))
        _ok(note_store.list_notes(OWNER, "work"))
        _ok(note_store.get_note(OWNER, "work", "plan"))

        _ok(note_store.save_note(OWNER, "work", "plan", "two"))

        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "two"
        [note] = _ok(note_store.list_notes(OWNER, "work"))
        assert note.preview == "two"

    def test_content_round_trips_exactly(self, note_store):
        content = "line 1\r\nline 2\n\n  trailing  \né中"
        _ok(note_store.save_note(OWNER, "work", "plan", content))
        note_store.cache.clear()

        assert _ok(note_store.get_note(OWNER, "work", "plan")) == content

    def test_empty_note(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "blank", ""))
        assert _ok(note_store.get_note(OWNER, "work", "blank")) == ""

    def test_get_missing_note(self, note_store):
        _ok(note_store.create_notebook(OWNER, "work"))
        result = note_store.get_note(OWNER, "work", "nope")

        assert not result.success
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert result.data is None

    def test_every_save_is_a_commit(self, note_store):
        for _ in range(3):
            _ok(note_store.save_note(OWNER, "work", "plan", "same"))

        assert len(_ok(note_store.get_note_history(OWNER, "work", "plan"))) == 3

    def test_save_returns_new_ref(self, note_store, version_log):
        ref = _ok(note_store.save_note(OWNER, "work", "plan", "x"))
        assert ref == version_log.current_ref(OWNER, "work/plan.md")

    def test_create_note_refuses_existing(self, note_store):
        _ok(note_store.create_note(OWNER, "work", "plan", "first"))
        result = note_store.create_note(OWNER, "work", "plan", "second")

        assert result.error_kind == ErrorKind.ALREADY_EXISTS
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "first"

    @pytest.mark.parametrize(
        "notebook,title",
        [("", "plan"), ("work", ""), ("  ", "plan"), ("a/b", "plan"), ("work", "..")],
    )
    def test_invalid_identifiers(self, note_store, notebook, title):
        result = note_store.save_note(OWNER, notebook, title, "x")

        assert result.error_kind == ErrorKind.INVALID_ARGUMENT
        assert result.code == "INVALID_NAME"

    def test_invalid_owner(self, note_store):
        result = note_store.list_notebooks("../etc")
        assert result.error_kind == ErrorKind.INVALID_ARGUMENT

    def test_save_clears_draft(self, note_store):
        _ok(note_store.save_draft(OWNER, "work", "plan", "unsaved"))
        assert _ok(note_store.get_draft(OWNER, "work", "plan")).content == "unsaved"

        _ok(note_store.save_note(OWNER, "work", "plan", "saved"))

        result = note_store.get_draft(OWNER, "work", "plan")
        assert result.error_kind == ErrorKind.NOT_FOUND


class TestListNotes:
    """Tests for listing a notebook."""

    def test_newest_first(self, note_store, notes_dir):
        _ok(note_store.save_note(OWNER, "work", "y", "Y"))
        _age(notes_dir, "work", "y", 60)
        _ok(note_store.save_note(OWNER, "work", "x", "X"))

        titles = [n.title for n in _ok(note_store.list_notes(OWNER, "work"))]
        assert titles == ["x", "y"]

    def test_preview_only_when_requested(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "p" * 500))

        [with_preview] = _ok(note_store.list_notes(OWNER, "work"))
        [without] = _ok(note_store.list_notes(OWNER, "work", with_preview=False))

        assert with_preview.preview == "p" * 200
        assert without.preview is None
        assert with_preview.content is None

    def test_missing_notebook(self, note_store):
        result = note_store.list_notes(OWNER, "missing")
        assert result.error_kind == ErrorKind.NOT_FOUND


class TestDeleteRecover:
    """Tests for delete, tombstones and recovery."""

    def test_delete_records_tombstone(self, note_store, version_log):
        ref = _ok(note_store.save_note(OWNER, "work", "plan", "final words"))

        tombstone = _ok(note_store.delete_note(OWNER, "work", "plan"))

        assert tombstone.last_ref == ref
        assert tombstone.content == "final words"
        assert tombstone.owner == OWNER
        result = note_store.get_note(OWNER, "work", "plan")
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert version_log.uncommitted_paths(OWNER) == []

    def test_delete_missing_note(self, note_store):
        _ok(note_store.create_notebook(OWNER, "work"))
        result = note_store.delete_note(OWNER, "work", "ghost")

        assert result.error_kind == ErrorKind.NOT_FOUND
        assert _ok(note_store.list_deleted_notes(OWNER)) == []

    def test_delete_then_recover_restores_bytes(self, note_store):
        content = "keep\r\nthis\n"
        _ok(note_store.save_note(OWNER, "work", "plan", content))
        tombstone = _ok(note_store.delete_note(OWNER, "work", "plan"))

        recovered = _ok(note_store.recover_note(OWNER, tombstone.id))

        assert recovered == content
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == content
        assert _ok(note_store.list_deleted_notes(OWNER)) == []

    def test_recover_refuses_overwrite(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "old"))
        tombstone = _ok(note_store.delete_note(OWNER, "work", "plan"))
        _ok(note_store.save_note(OWNER, "work", "plan", "new"))

        result = note_store.recover_note(OWNER, tombstone.id)

        assert result.error_kind == ErrorKind.ALREADY_EXISTS
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "new"
        assert len(_ok(note_store.list_deleted_notes(OWNER))) == 1

    def test_recover_unknown_id(self, note_store):
        result = note_store.recover_note(OWNER, 999)
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert result.code == "DELETED_NOTE_NOT_FOUND"

    def test_recover_other_owners_tombstone(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "secret"))
        tombstone = _ok(note_store.delete_note(OWNER, "work", "plan"))

        result = note_store.recover_note("bob", tombstone.id)

        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_recover_after_notebook_deleted(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "body"))
        [tombstone] = _ok(note_store.delete_notebook(OWNER, "work"))

        assert _ok(note_store.recover_note(OWNER, tombstone.id)) == "body"
        assert _ok(note_store.list_notebooks(OWNER)) == ["work"]

    def test_recover_without_ref_uses_snapshot(self, note_store):
        """A tombstone whose ref history cannot serve falls back to its content."""
        tombstone = note_store.deleted_notes.save(
            OWNER, "work", "imported", None, "from snapshot"
        )

        assert _ok(note_store.recover_note(OWNER, tombstone.id)) == "from snapshot"
        history = _ok(note_store.get_note_history(OWNER, "work", "imported"))
        assert len(history) == 1

    def test_clear_deleted_notes(self, note_store):
        for title in ("a", "b", "c"):
            _ok(note_store.save_note(OWNER, "work", title, title))
            _ok(note_store.delete_note(OWNER, "work", title))
        first = _ok(note_store.list_deleted_notes(OWNER))[0]

        _ok(note_store.clear_deleted_note(OWNER, first.id))
        assert len(_ok(note_store.list_deleted_notes(OWNER))) == 2
        result = note_store.clear_deleted_note(OWNER, first.id)
        assert result.error_kind == ErrorKind.NOT_FOUND

        assert _ok(note_store.clear_all_deleted_notes(OWNER)) == 2
        assert _ok(note_store.list_deleted_notes(OWNER)) == []

    def test_deleted_notes_newest_first(self, note_store):
        for title in ("first", "second"):
            _ok(note_store.save_note(OWNER, "work", title, title))
            _ok(note_store.delete_note(OWNER, "work", title))

        titles = [d.title for d in _ok(note_store.list_deleted_notes(OWNER))]
        assert titles == ["second", "first"]


class TestHistory:
    """Tests for history, versions and reset."""

    def test_reset_round_trip(self, note_store):
        ref1 = _ok(note_store.save_note(OWNER, "work", "plan", "V1"))
        _ok(note_store.save_note(OWNER, "work", "plan", "V2"))
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "V2"

        assert _ok(note_store.reset_and_get(OWNER, "work", "plan", ref1)) == "V1"

        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "V1"
        history = _ok(note_store.get_note_history(OWNER, "work", "plan"))
        assert len(history) == 3
        assert history[-1].ref == ref1

    def test_reset_to_identical_content_is_recorded(self, note_store, version_log):
        ref1 = _ok(note_store.save_note(OWNER, "work", "plan", "V1"))
        _ok(note_store.save_note(OWNER, "work", "plan", "V2"))
        _ok(note_store.reset_and_get(OWNER, "work", "plan", ref1))
        before = len(_ok(note_store.get_note_history(OWNER, "work", "plan")))

        assert _ok(note_store.reset_and_get(OWNER, "work", "plan", ref1)) == "V1"

        history = _ok(note_store.get_note_history(OWNER, "work", "plan"))
        assert len(history) == before + 1
        assert version_log.current_ref(OWNER, "work/plan.md") == history[0].ref

    def test_reset_short_ref(self, note_store):
        ref1 = _ok(note_store.save_note(OWNER, "work", "plan", "V1"))
        _ok(note_store.save_note(OWNER, "work", "plan", "V2"))

        assert _ok(note_store.reset_and_get(OWNER, "work", "plan", ref1[:7])) == "V1"

    def test_reset_invalid_ref(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "V1"))

        unknown = note_store.reset_and_get(OWNER, "work", "plan", "abcdef1")
        unsafe = note_store.reset_and_get(OWNER, "work", "plan", "--hard")

        assert unknown.error_kind == ErrorKind.NOT_FOUND
        assert unknown.code == "VERSION_NOT_FOUND"
        assert unsafe.error_kind == ErrorKind.INVALID_ARGUMENT
        assert unsafe.code == "INVALID_REF"
        assert len(_ok(note_store.get_note_history(OWNER, "work", "plan"))) == 1

    def test_reset_missing_notebook(self, note_store):
        result = note_store.reset_and_get(OWNER, "missing", "plan", "HEAD")
        assert result.code == "NOTEBOOK_NOT_FOUND"

    def test_get_note_version(self, note_store):
        ref1 = _ok(note_store.save_note(OWNER, "work", "plan", "V1"))
        _ok(note_store.save_note(OWNER, "work", "plan", "V2"))

        assert _ok(note_store.get_note_version(OWNER, "work", "plan", ref1)) == "V1"
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "V2"
        result = note_store.get_note_version(OWNER, "work", "plan", "abcdef1")
        assert result.code == "VERSION_NOT_FOUND"

    def test_history_of_unknown_note_is_empty(self, note_store):
        _ok(note_store.create_notebook(OWNER, "work"))
        assert _ok(note_store.get_note_history(OWNER, "work", "nope")) == []


class TestCopyMove:
    """Tests for copy and move."""

    def test_copy(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "body"))

        _ok(note_store.copy_note(OWNER, "work", "home", "plan"))

        assert _ok(note_store.get_note(OWNER, "home", "plan")) == "body"
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "body"

    def test_copy_same_notebook(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "body"))
        result = note_store.copy_note(OWNER, "work", "work", "plan")

        assert result.error_kind == ErrorKind.INVALID_ARGUMENT
        assert result.code == "SAME_SOURCE_AND_TARGET"

    def test_copy_missing_source(self, note_store):
        _ok(note_store.create_notebook(OWNER, "work"))
        result = note_store.copy_note(OWNER, "work", "home", "nope")
        assert result.error_kind == ErrorKind.NOT_FOUND

    def test_copy_onto_existing(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "src"))
        _ok(note_store.save_note(OWNER, "home", "plan", "dst"))

        result = note_store.copy_note(OWNER, "work", "home", "plan")

        assert result.error_kind == ErrorKind.ALREADY_EXISTS
        assert _ok(note_store.get_note(OWNER, "home", "plan")) == "dst"

    def test_move_across_notebooks(self, note_store, version_log):
        _ok(note_store.save_note(OWNER, "work", "plan", "body"))
        _ok(note_store.get_note(OWNER, "work", "plan"))
        _ok(note_store.create_notebook(OWNER, "home"))
        commits_before = len(version_log.history(OWNER, "."))

        _ok(note_store.move_note(OWNER, "work", "plan", "home", "goal"))

        assert len(version_log.history(OWNER, ".")) == commits_before + 1
        assert _ok(note_store.get_note(OWNER, "home", "goal")) == "body"
        result = note_store.get_note(OWNER, "work", "plan")
        assert result.error_kind == ErrorKind.NOT_FOUND
        assert _ok(note_store.list_deleted_notes(OWNER)) == []
        assert version_log.uncommitted_paths(OWNER) == []

    def test_move_primes_destination(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "body"))

        _ok(note_store.move_note(OWNER, "work", "plan", "work", "renamed"))

        dst = NoteKey(OWNER, "work", "renamed")
        src = NoteKey(OWNER, "work", "plan")
        assert note_store.cache.content_cache.get(dst) == "body"
        assert src not in note_store.cache.content_cache

    def test_move_creates_destination_notebook(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "body"))
        _ok(note_store.move_note(OWNER, "work", "plan", "archive", "plan"))

        assert _ok(note_store.list_notebooks(OWNER)) == ["archive", "work"]

    def test_move_into_new_notebook_commits_marker_first(self, note_store, version_log):
        _ok(note_store.save_note(OWNER, "work", "plan", "body"))
        commits_before = len(version_log.history(OWNER, "."))

        ref = _ok(note_store.move_note(OWNER, "work", "plan", "archive", "plan"))

        history = version_log.history(OWNER, ".")
        assert len(history) == commits_before + 2
        assert history[0].ref == ref
        assert history[1].message == "Create notebook archive"

    @pytest.mark.parametrize(
        "dst_notebook,dst_title", [("work", "plan"), ("WORK", "Plan"), ("Work", "PLAN")]
    )
    def test_move_same_key(self, note_store, dst_notebook, dst_title):
        _ok(note_store.save_note(OWNER, "work", "plan", "body"))

        result = note_store.move_note(OWNER, "work", "plan", dst_notebook, dst_title)

        assert result.error_kind == ErrorKind.INVALID_ARGUMENT
        assert result.code == "SAME_SOURCE_AND_TARGET"
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "body"

    @pytest.mark.parametrize("blank", ["", "   ", None])
    def test_move_blank_identifier(self, note_store, blank):
        _ok(note_store.save_note(OWNER, "work", "plan", "body"))

        result = note_store.move_note(OWNER, "work", "plan", "work", blank)

        assert result.error_kind == ErrorKind.INVALID_ARGUMENT

    def test_move_onto_existing(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "source"))
        _ok(note_store.save_note(OWNER, "work", "goal", "target"))

        result = note_store.move_note(OWNER, "work", "plan", "work", "goal")

        assert result.error_kind == ErrorKind.ALREADY_EXISTS
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "source"
        assert _ok(note_store.get_note(OWNER, "work", "goal")) == "target"

    def test_move_missing_source(self, note_store):
        _ok(note_store.create_notebook(OWNER, "work"))
        result = note_store.move_note(OWNER, "work", "nope", "work", "other")
        assert result.error_kind == ErrorKind.NOT_FOUND


class TestSearch:
    """Tests for keyword search."""

    def test_ranked_by_occurrences(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "one", "apple"))
        _ok(note_store.save_note(OWNER, "work", "three", "apple apple apple"))
        _ok(note_store.save_note(OWNER, "home", "two", "apple and apple"))
        _ok(note_store.save_note(OWNER, "home", "none", "banana"))

        hits = _ok(note_store.search(OWNER, "apple"))

        assert [(h.title, h.search_count) for h in hits] == [
            ("three", 3),
            ("two", 2),
            ("one", 1),
        ]
        assert hits[0].content == "apple apple apple"

    def test_title_counts(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan plan", "the plan"))
        _ok(note_store.save_note(OWNER, "work", "other", "plan plan"))

        hits = _ok(note_store.search(OWNER, "plan"))

        assert [(h.title, h.search_count) for h in hits] == [
            ("plan plan", 3),
            ("other", 2),
        ]

    def test_case_sensitive(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "Apple"))
        assert _ok(note_store.search(OWNER, "apple")) == []

    def test_non_overlapping_count(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "n", "aaaa"))
        [hit] = _ok(note_store.search(OWNER, "aa"))
        assert hit.search_count == 2

    def test_ties_broken_by_recency_then_name(self, note_store, notes_dir):
        for notebook, title in (
            ("work", "older"),
            ("work", "newer"),
            ("home", "b"),
            ("home", "a"),
        ):
            _ok(note_store.save_note(OWNER, notebook, title, "kiwi"))
        now = time.time()
        _touch(notes_dir, "work", "older", now - 120)
        for notebook, title in (("work", "newer"), ("home", "b"), ("home", "a")):
            _touch(notes_dir, notebook, title, now - 60)

        titles = [h.title for h in _ok(note_store.search(OWNER, "kiwi"))]

        assert titles == ["a", "b", "newer", "older"]

    def test_restricted_to_notebooks(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "w", "term"))
        _ok(note_store.save_note(OWNER, "home", "h", "term"))

        hits = _ok(note_store.search(OWNER, "term", ["home"]))

        assert [h.notebook for h in hits] == ["home"]

    def test_blank_keyword(self, note_store):
        result = note_store.search(OWNER, "  ")
        assert result.error_kind == ErrorKind.INVALID_ARGUMENT
        assert result.code == "EMPTY_KEYWORD"

    def test_search_skips_previews(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "needle"))

        assert len(_ok(note_store.search(OWNER, "needle"))) == 1
        assert len(note_store.cache.preview_cache) == 0

    def test_search_sees_latest_save(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "old words"))
        _ok(note_store.search(OWNER, "old"))
        _ok(note_store.save_note(OWNER, "work", "plan", "new words"))

        assert _ok(note_store.search(OWNER, "old")) == []


class TestScenario:
    """End-to-end walk through a note's lifecycle."""

    def test_work_plan_lifecycle(self, note_store):
        _ok(note_store.create_notebook(OWNER, "work"))
        _ok(note_store.save_note(OWNER, "work", "plan", "draft A"))
        assert len(_ok(note_store.get_note_history(OWNER, "work", "plan"))) == 1

        _ok(note_store.save_note(OWNER, "work", "plan", "draft B"))
        assert len(_ok(note_store.get_note_history(OWNER, "work", "plan"))) == 2
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "draft B"

        _ok(note_store.delete_note(OWNER, "work", "plan"))
        result = note_store.get_note(OWNER, "work", "plan")
        assert result.error_kind == ErrorKind.NOT_FOUND
        [tombstone] = _ok(note_store.list_deleted_notes(OWNER))
        assert tombstone.content == "draft B"

        _ok(note_store.recover_note(OWNER, tombstone.id))
        assert _ok(note_store.get_note(OWNER, "work", "plan")) == "draft B"


class TestMaintenance:
    """Tests for consistency checks, stats and metrics."""

    def test_consistent_after_operations(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "x"))
        _ok(note_store.move_note(OWNER, "work", "plan", "home", "plan"))
        assert _ok(note_store.check_consistency(OWNER)) == []

    def test_outside_edit_detected(self, note_store, notes_dir):
        _ok(note_store.save_note(OWNER, "work", "plan", "x"))
        (notes_dir / OWNER / "work" / "plan.md").write_text("edited by hand")

        assert _ok(note_store.check_consistency(OWNER)) == ["work/plan.md"]

    def test_cache_stats(self, note_store):
        _ok(note_store.save_note(OWNER, "work", "plan", "x"))
        _ok(note_store.get_note(OWNER, "work", "plan"))
        _ok(note_store.get_note(OWNER, "work", "plan"))

        stats = _ok(note_store.cache_stats())
        assert stats["content"]["hits"] == 1
        assert stats["content"]["misses"] == 1

    def test_operations_are_measured(self, note_store, metrics_collector):
        _ok(note_store.save_note(OWNER, "work", "plan", "x"))
        note_store.get_note(OWNER, "work", "missing")

        recorded = metrics_collector.get_metrics()
        assert recorded["save_note"]["success_count"] == 1
        assert recorded["get_note"]["error_count"] == 1
        assert "NOTE_NOT_FOUND" in recorded["get_note"]["last_error"]

    def test_result_to_dict(self, note_store):
        ok = note_store.list_notebooks(OWNER).to_dict()
        failed = note_store.get_note(OWNER, "work", "missing").to_dict()

        assert ok == {"success": True, "message": "ok", "data": []}
        assert failed["success"] is False
        assert failed["error_kind"] == "not_found"
