#!/usr/bin/env python
"""Command-line front end for the Sticky Note engine."""
import argparse
import datetime
import logging
import os
import sys
from datetime import timezone
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from stickynote import __version__
from stickynote.backup import BackupManager, export_note_text, suggested_filename
from stickynote.config import StickyNoteConfig
from stickynote.exceptions import (
    ConfigurationError,
    NoteNotFoundError,
    NoteReadOnlyError,
    StickyNoteError,
)
from stickynote.models.schema import Note, Scope, parse_tag_input
from stickynote.observability import configure_logging
from stickynote.storage.note_store import NoteStore
from stickynote.storage.preferences import Preferences

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="stickynote", description="Sticky Note - local note keeper"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--data-dir",
        help="Directory holding notes.json, history/ and config.properties",
        type=str,
        default=os.environ.get("STICKYNOTE_DATA_DIR"),
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("STICKYNOTE_LOG_LEVEL", "WARNING"),
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List notes")
    p.add_argument("--scope", choices=[s.value for s in Scope], default=Scope.ACTIVE.value)
    p.add_argument("--query", help="Substring to search in title, tags and content")
    p.add_argument("--tag", help="Only notes carrying this tag")

    p = sub.add_parser("tags", help="List tags in a scope, or set a note's tags")
    p.add_argument("note_id", nargs="?")
    p.add_argument("value", nargs="?", help="Comma-separated tags")
    p.add_argument("--scope", choices=[s.value for s in Scope], default=Scope.ACTIVE.value)

    p = sub.add_parser("new", help="Create a note")
    p.add_argument("--text", default="", help="Initial content")
    p.add_argument("--file", help="Create the note from a text file")

    p = sub.add_parser("show", help="Print a note's content")
    p.add_argument("note_id")

    p = sub.add_parser("edit", help="Replace a note's content")
    p.add_argument("note_id")
    p.add_argument("--text", required=True)
    p.add_argument("--snapshot", action="store_true", help="Always write a history snapshot")

    for name, help_text in (
        ("pin", "Toggle pinned"),
        ("archive", "Toggle archived"),
        ("trash", "Delete a note (to the trash when enabled)"),
        ("restore", "Restore a note from the trash"),
        ("purge", "Delete a note permanently"),
        ("history", "List a note's snapshots"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("note_id")

    sub.add_parser("empty-trash", help="Permanently delete every note in the trash")

    p = sub.add_parser("history-show", help="Print one snapshot")
    p.add_argument("note_id")
    p.add_argument("name", help="Snapshot name as printed by 'history'")

    p = sub.add_parser("export-note", help="Write one note to a Markdown file")
    p.add_argument("note_id")
    p.add_argument("path", nargs="?")

    p = sub.add_parser("export", help="Write a backup archive")
    p.add_argument("path", nargs="?", help="Archive path (default: timestamped name)")
    p.add_argument("--full", action="store_true", help="Include preferences and history")

    p = sub.add_parser("import", help="Restore from a backup archive")
    p.add_argument("path")
    p.add_argument("--full", action="store_true", help="Restore preferences and history too")

    p = sub.add_parser("pref", help="Read or write a UI preference")
    p.add_argument("action", choices=["get", "set", "list"])
    p.add_argument("key", nargs="?")
    p.add_argument("value", nargs="?")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> StickyNoteConfig:
    """Build the engine configuration, applying command line overrides."""
    try:
        config = StickyNoteConfig()
    except (PydanticValidationError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration: {e}")
    if args.data_dir:
        config.data_dir = Path(args.data_dir).expanduser()
    return config


def _format_time(millis: int) -> str:
    if not millis:
        return "-"
    stamp = datetime.datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    return stamp.strftime("%Y-%m-%d %H:%M")


def _format_row(note: Note) -> str:
    flags = ("P" if note.pinned else "-") + ("A" if note.archived else "-")
    tags = f"  [{note.tags_joined()}]" if note.tags else ""
    return f"{note.id}  {flags}  {_format_time(note.updated_at)}  {note.title()}{tags}"


def run(args: argparse.Namespace, config: StickyNoteConfig) -> int:
    """Execute one command against the store. Returns the exit status."""
    store = NoteStore(config)
    store.ensure_loaded()
    backups = BackupManager(config)
    command = args.command

    def require(note_id: str) -> Note:
        note = store.get_by_id(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def require_editable(note_id: str) -> Note:
        note = require(note_id)
        if note.deleted:
            raise NoteReadOnlyError(note.id)
        return note

    if command == "list":
        for note in store.list_notes(Scope(args.scope), args.query, args.tag):
            print(_format_row(note))
    elif command == "tags":
        if args.note_id:
            note = require_editable(args.note_id)
            note.tags = parse_tag_input(args.value or "")
            store.update_note(note, False)
            print(note.tags_joined())
        else:
            for tag in sorted(store.collect_tags(Scope(args.scope)), key=str.casefold):
                print(tag)
    elif command == "new":
        if args.file:
            text = Path(args.file).read_text(encoding="utf-8")
            note = store.create_note_from_text(text)
        else:
            note = store.create_note(args.text)
        print(note.id)
    elif command == "show":
        print(require(args.note_id).content)
    elif command == "edit":
        store.commit_edit(require(args.note_id), args.text, force_snapshot=args.snapshot)
    elif command in ("pin", "archive"):
        note = require_editable(args.note_id)
        if command == "pin":
            note.pinned = not note.pinned
        else:
            note.archived = not note.archived
        store.update_note(note, False)
    elif command == "trash":
        store.delete_note(args.note_id)
    elif command == "restore":
        store.restore_from_trash(args.note_id)
    elif command == "purge":
        store.delete_permanently(args.note_id)
    elif command == "empty-trash":
        print(f"Purged {store.empty_trash()} note(s)")
    elif command == "history":
        for snapshot in store.list_history_files(require(args.note_id).id):
            print(snapshot.label)
    elif command == "history-show":
        for snapshot in store.list_history_files(require(args.note_id).id):
            if args.name in (snapshot.label, snapshot.name):
                print(store.read_history_file(snapshot))
                break
        else:
            print(f"No snapshot named {args.name}", file=sys.stderr)
            return 1
    elif command == "export-note":
        note = require(args.note_id)
        print(export_note_text(note, args.path or suggested_filename(note)))
    elif command == "export":
        path = args.path or backups.default_backup_file(Path.cwd())
        if args.full:
            print(backups.export_data_dir(path))
        else:
            print(backups.export_notes(path, store.get_all()))
    elif command == "import":
        if args.full:
            backups.import_data_dir(args.path)
            store.reload()
        else:
            store.replace_all(backups.import_notes(args.path))
        print(f"Imported {len(store.get_all())} note(s)")
    elif command == "pref":
        prefs = Preferences(config.config_file).load()
        if args.action == "list":
            for key in prefs.keys():
                print(f"{key}={prefs.get_string(key)}")
        elif args.action == "get":
            value = prefs.get_string(args.key or "")
            if value is None:
                return 1
            print(value)
        else:
            prefs.set_string(args.key, args.value)
            prefs.save()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Run the Sticky Note command line."""
    args = parse_args(argv)
    log_level = getattr(logging, args.log_level.upper(), logging.WARNING)

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    try:
        configure_logging(config.get_log_dir(), level=log_level, console=False)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logger.warning(f"Failed to configure file logging: {e}")

    try:
        return run(args, config)
    except StickyNoteError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except OSError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
