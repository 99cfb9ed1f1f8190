#!/usr/bin/env python
"""Command line entry point for the gitnotes note store."""
import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from gitnotes import __version__
from gitnotes.config import config
from gitnotes.exceptions import InvalidArgumentError
from gitnotes.models.schema import OperationResult
from gitnotes.observability import configure_logging
from gitnotes.services.note_store import NoteStore, build_note_store


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="gitnotes", description="Git-versioned note store"
    )
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument(
        "--owner",
        help="Owner whose notes are operated on",
        type=str,
        default=os.environ.get("GITNOTES_OWNER", os.environ.get("USER", "default")),
    )
    parser.add_argument(
        "--notes-dir",
        help="Root directory of all owners' notes",
        type=str,
        default=os.environ.get("GITNOTES_NOTES_DIR"),
    )
    parser.add_argument(
        "--database-path",
        help="SQLite database file for deleted notes and drafts",
        type=str,
        default=os.environ.get("GITNOTES_DATABASE_PATH"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("GITNOTES_LOG_LEVEL", "WARNING"),
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("notebooks", help="List notebooks")

    p = sub.add_parser("notes", help="List the notes of a notebook")
    p.add_argument("notebook")
    p.add_argument("--no-preview", action="store_true")

    p = sub.add_parser("show", help="Print a note (optionally at a version)")
    p.add_argument("notebook")
    p.add_argument("title")
    p.add_argument("--ref", help="Show the note as of this version")

    for name, help_text in (
        ("save", "Create or overwrite a note"),
        ("create", "Create a note that must not exist yet"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("notebook")
        p.add_argument("title")
        p.add_argument("--content", help="Note content (read from stdin if omitted)")

    p = sub.add_parser("delete", help="Delete a note, keeping it recoverable")
    p.add_argument("notebook")
    p.add_argument("title")

    sub.add_parser("deleted", help="List deleted notes")

    p = sub.add_parser("recover", help="Recover a deleted note")
    p.add_argument("id", type=int)

    p = sub.add_parser("clear-deleted", help="Forget deleted notes for good")
    p.add_argument("id", type=int, nargs="?")
    p.add_argument("--all", action="store_true", help="Clear every deleted note")

    p = sub.add_parser("history", help="List the versions of a note")
    p.add_argument("notebook")
    p.add_argument("title")

    p = sub.add_parser("reset", help="Restore a note to an earlier version")
    p.add_argument("notebook")
    p.add_argument("title")
    p.add_argument("ref")

    p = sub.add_parser("move", help="Move or rename a note")
    p.add_argument("src_notebook")
    p.add_argument("src_title")
    p.add_argument("dst_notebook")
    p.add_argument("dst_title")

    p = sub.add_parser("copy", help="Copy a note into another notebook")
    p.add_argument("src_notebook")
    p.add_argument("dst_notebook")
    p.add_argument("title")

    p = sub.add_parser("search", help="Search titles and content")
    p.add_argument("keyword")
    p.add_argument("--notebook", action="append", dest="notebooks")

    p = sub.add_parser("mk-notebook", help="Create an empty notebook")
    p.add_argument("notebook")

    p = sub.add_parser("rm-notebook", help="Delete a notebook and its notes")
    p.add_argument("notebook")

    sub.add_parser("check", help="List changes not recorded in history")

    return parser.parse_args(argv)


def update_config(args: argparse.Namespace) -> None:
    """Update the global config with command line arguments."""
    if args.notes_dir:
        config.notes_dir = Path(args.notes_dir)
    if args.database_path:
        config.database_path = Path(args.database_path)
    config.log_level = args.log_level


def _read_content(args: argparse.Namespace) -> str:
    if args.content is not None:
        return args.content
    return sys.stdin.read()


def dispatch(store: NoteStore, args: argparse.Namespace) -> OperationResult:
    """Run the store operation named by the parsed command."""
    owner = args.owner
    command = args.command

    if command == "notebooks":
        return store.list_notebooks(owner)
    if command == "notes":
        return store.list_notes(owner, args.notebook, with_preview=not args.no_preview)
    if command == "show":
        if args.ref:
            return store.get_note_version(owner, args.notebook, args.title, args.ref)
        return store.get_note(owner, args.notebook, args.title)
    if command == "save":
        return store.save_note(owner, args.notebook, args.title, _read_content(args))
    if command == "create":
        return store.create_note(owner, args.notebook, args.title, _read_content(args))
    if command == "delete":
        return store.delete_note(owner, args.notebook, args.title)
    if command == "deleted":
        return store.list_deleted_notes(owner)
    if command == "recover":
        return store.recover_note(owner, args.id)
    if command == "clear-deleted":
        if args.all:
            return store.clear_all_deleted_notes(owner)
        if args.id is None:
            return OperationResult.fail(
                InvalidArgumentError("Give a deleted note id or --all", field="id")
            )
        return store.clear_deleted_note(owner, args.id)
    if command == "history":
        return store.get_note_history(owner, args.notebook, args.title)
    if command == "reset":
        return store.reset_and_get(owner, args.notebook, args.title, args.ref)
    if command == "move":
        return store.move_note(
            owner, args.src_notebook, args.src_title, args.dst_notebook, args.dst_title
        )
    if command == "copy":
        return store.copy_note(owner, args.src_notebook, args.dst_notebook, args.title)
    if command == "search":
        return store.search(owner, args.keyword, args.notebooks)
    if command == "mk-notebook":
        return store.create_notebook(owner, args.notebook)
    if command == "rm-notebook":
        return store.delete_notebook(owner, args.notebook)
    if command == "check":
        return store.check_consistency(owner)
    raise ValueError(f"Unknown command: {command}")


def main(argv: Optional[List[str]] = None) -> int:
    """Run one gitnotes command and print its result as JSON."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)
    try:
        configure_logging(log_dir=config.log_dir, level=log_level, console=False)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")

    logger = logging.getLogger(__name__)
    try:
        store = build_note_store(config)
    except Exception as e:
        logger.error(f"Failed to initialize note store: {e}")
        print(json.dumps({"success": False, "message": str(e)}), file=sys.stderr)
        return 1

    result = dispatch(store, args)
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
