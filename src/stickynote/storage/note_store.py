"""Note store: durable CRUD over the note collection."""

import logging
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from stickynote.config import StickyNoteConfig
from stickynote.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    NoteReadOnlyError,
    StorageError,
)
from stickynote.models.schema import (
    Note,
    Scope,
    matches_scope,
    normalize_tag,
    sort_for_display,
)
from stickynote.observability import timed_operation, traced
from stickynote.storage.history import HistorySnapshot, HistoryStore
from stickynote.storage.json_codec import NotesFormatError, dump_notes, load_notes
from stickynote.utils import atomic_write_text, remove_file_quietly, remove_tree_quietly

logger = logging.getLogger(__name__)


class NoteStore:
    """Owns the in-memory note collection and its files on disk.

    Storage layout (under ``config.data_dir``):
    1. ``notes.json`` holds the whole collection, rewritten atomically on
       every mutation (temp file + rename, previous file copied to ``.bak``)
    2. ``history/<noteId>/`` holds plain-text content snapshots

    The store is single-threaded: callers debounce edits and must not call
    back into the store from inside another store operation.
    """

    def __init__(
        self,
        config: StickyNoteConfig,
        clock: Optional[Callable[[], float]] = None,
        history: Optional[HistoryStore] = None,
    ):
        """Initialize the store.

        Args:
            config: Paths and limits. Nothing is read until ensure_loaded().
            clock: Returns epoch seconds. Defaults to time.time.
            history: Snapshot store. Built from config when omitted.
        """
        self.config = config
        self._clock = clock or time.time
        self.history = history or HistoryStore(
            config.history_dir,
            max_files=config.history_max_files,
            clock=self._clock,
        )
        self._notes: List[Note] = []
        self._loaded = False
        # Per-note time of the last snapshot written in this session
        self._last_snapshot_at: Dict[str, float] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _new_note(self) -> Note:
        return Note.create_empty(self._now_ms())

    # =========================================================================
    # Loading
    # =========================================================================

    def ensure_loaded(self) -> None:
        """Load the collection from disk once.

        Fallback order when ``notes.json`` yields no notes: import the
        legacy ``note.txt`` as a single tagged note, else seed one empty
        note. Either way the result is persisted.

        Raises:
            StorageError: If the data directories cannot be created, or the
                seeded collection cannot be written.
        """
        if self._loaded:
            return

        with timed_operation("ensure_loaded", data_dir=str(self.config.data_dir)) as op:
            try:
                self.config.ensure_directories()
            except OSError as e:
                raise StorageError(
                    "Failed to create data directories",
                    operation="ensure_loaded",
                    path=str(self.config.data_dir),
                    code=ErrorCode.STORAGE_INIT_FAILED,
                    original_error=e,
                ) from e

            self._cleanup_leftovers()
            self._notes = self._read_notes_file()
            self._loaded = True

            if not self._notes:
                legacy = self._read_legacy_note()
                if legacy is not None:
                    self._notes.append(legacy)
                    logger.info("Imported legacy note.txt as a new note")
                else:
                    self._notes.append(self._new_note())
                    logger.info("No notes found; created an empty note")
                self.save_all()

            op["note_count"] = len(self._notes)

    def reload(self) -> None:
        """Discard in-memory state and load from disk again."""
        self._notes = []
        self._loaded = False
        self._last_snapshot_at.clear()
        self.ensure_loaded()

    def _cleanup_leftovers(self) -> None:
        """Remove temp files left behind by a crashed save or import.

        A leftover ``notes.json.tmp`` never replaced the primary file, so
        it holds nothing the primary file lacks.
        """
        if remove_file_quietly(self.config.notes_tmp_file):
            logger.warning("Removed orphaned notes.json.tmp from a previous run")
        if self.config.staging_dir.exists():
            logger.warning("Removing orphaned import staging directory")
            remove_tree_quietly(self.config.staging_dir)

    def _read_notes_file(self) -> List[Note]:
        """Read notes.json; any read or format problem counts as no notes."""
        path = self.config.notes_file
        if not path.exists():
            return []
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {path.name}, treating as empty: {e}")
            return []
        try:
            return load_notes(text)
        except NotesFormatError as e:
            logger.warning(f"{path.name} is malformed, treating as empty: {e}")
            return []

    def _read_legacy_note(self) -> Optional[Note]:
        path = self.config.legacy_note_file
        if not path.exists():
            return None
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read legacy {path.name}: {e}")
            return None
        note = self._new_note()
        note.content = text
        note.tags = [self.config.legacy_tag]
        return note

    # =========================================================================
    # Queries
    # =========================================================================

    def get_all(self) -> List[Note]:
        """Return the live collection (not a copy)."""
        return self._notes

    def get_by_id(self, note_id: Optional[str]) -> Optional[Note]:
        """Find a note by ID with a linear scan."""
        if note_id is None:
            return None
        for note in self._notes:
            if note.id == note_id:
                return note
        return None

    def _require(self, note_id: str) -> Note:
        note = self.get_by_id(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def list_notes(
        self,
        scope: Scope = Scope.ACTIVE,
        query: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> List[Note]:
        """Notes in a scope matching a search query and tag, display-ordered."""
        return [
            note
            for note in sort_for_display(self._notes)
            if matches_scope(note, scope)
            and note.matches_query(query)
            and (not tag or note.has_tag(tag))
        ]

    def collect_tags(self, scope: Scope = Scope.ACTIVE) -> Set[str]:
        """Normalized tags used by notes in ``scope``."""
        tags: Set[str] = set()
        for note in self._notes:
            if not matches_scope(note, scope):
                continue
            for tag in note.tags:
                tag = normalize_tag(tag)
                if tag:
                    tags.add(tag)
        return tags

    # =========================================================================
    # Mutations
    # =========================================================================

    @traced("create_note")
    def create_note(self, content: str = "") -> Note:
        """Append a new note and persist.

        The note is only kept in memory if it was written to disk.
        """
        note = self._new_note()
        note.content = content
        self._notes.append(note)
        try:
            self.save_all()
        except StorageError:
            self._notes.remove(note)
            raise
        return note

    @traced("create_note_from_text")
    def create_note_from_text(self, text: str) -> Note:
        """Create a note from imported text and snapshot it immediately."""
        note = self._new_note()
        note.content = text
        self._notes.append(note)
        try:
            self.update_note(note, write_history_snapshot=True)
        except StorageError:
            self._notes.remove(note)
            raise
        return note

    @traced("update_note")
    def update_note(self, note: Note, write_history_snapshot: bool = False) -> None:
        """Stamp ``updated_at``, optionally snapshot the content, and persist.

        Raises:
            NoteReadOnlyError: If the note is in the trash.
            StorageError: If the collection cannot be written.
        """
        if note.deleted:
            raise NoteReadOnlyError(note.id)
        note.touch(self._now_ms())
        if write_history_snapshot:
            self._write_snapshot(note)
        self.save_all()

    def commit_edit(self, note: Note, content: str, force_snapshot: bool = False) -> bool:
        """Apply edited content, snapshotting at most every N seconds per note.

        Returns:
            True if a snapshot was requested for this save.

        Raises:
            NoteReadOnlyError: If the note is in the trash. The note is left
                unchanged.
        """
        if note.deleted:
            raise NoteReadOnlyError(note.id)
        note.content = content
        last = self._last_snapshot_at.get(note.id)
        due = last is None or self._clock() - last > self.config.snapshot_interval_seconds
        write_snapshot = force_snapshot or due
        self.update_note(note, write_history_snapshot=write_snapshot)
        return write_snapshot

    def _write_snapshot(self, note: Note) -> Optional[HistorySnapshot]:
        snapshot = self.history.write_snapshot(note.id, note.content)
        self._last_snapshot_at[note.id] = self._clock()
        return snapshot

    @traced("delete_note")
    def delete_note(self, note_id: str) -> None:
        """Delete a note using the configured policy.

        With the trash enabled this moves the note to the trash. Without it
        the note is removed immediately, and an empty note takes its place
        if it was the last one.
        """
        if self.config.trash_enabled:
            self.move_to_trash(note_id)
            return
        note = self._require(note_id)
        self._notes.remove(note)
        self._ensure_not_empty()
        self.save_all()
        self._forget_history(note.id)

    @traced("move_to_trash")
    def move_to_trash(self, note_id: str) -> Note:
        note = self._require(note_id)
        if not note.deleted:
            note.deleted = True
            note.deleted_at = self._now_ms()
            self.save_all()
        return note

    @traced("restore_from_trash")
    def restore_from_trash(self, note_id: str) -> Note:
        note = self._require(note_id)
        if note.deleted:
            note.deleted = False
            note.deleted_at = 0
            self.save_all()
        return note

    @traced("delete_permanently")
    def delete_permanently(self, note_id: str) -> None:
        """Remove a note and its history irrevocably."""
        note = self._require(note_id)
        self._notes.remove(note)
        self._ensure_not_empty()
        self.save_all()
        self._forget_history(note.id)

    @traced("empty_trash")
    def empty_trash(self) -> int:
        """Permanently remove every note in the trash.

        Returns:
            Number of notes purged.
        """
        purged = [note for note in self._notes if note.deleted]
        if not purged:
            return 0
        self._notes[:] = [note for note in self._notes if not note.deleted]
        self._ensure_not_empty()
        self.save_all()
        for note in purged:
            self._forget_history(note.id)
        logger.info(f"Emptied trash: {len(purged)} note(s) purged")
        return len(purged)

    @traced("replace_all")
    def replace_all(self, notes: Iterable[Note]) -> None:
        """Replace the whole collection (e.g. from a backup) and persist."""
        replacement: List[Note] = []
        seen = set()
        for note in notes:
            if note.id in seen:
                continue
            seen.add(note.id)
            replacement.append(note)
        self._notes[:] = replacement
        self._loaded = True
        self._last_snapshot_at.clear()
        self._ensure_not_empty()
        self.save_all()

    def _ensure_not_empty(self) -> None:
        if not self._notes:
            self._notes.append(self._new_note())

    def _forget_history(self, note_id: str) -> None:
        self._last_snapshot_at.pop(note_id, None)
        self.history.remove_note_history(note_id)

    # =========================================================================
    # History
    # =========================================================================

    def list_history_files(self, note_id: str) -> List[HistorySnapshot]:
        """Snapshots of a note, newest first."""
        return self.history.list_snapshots(note_id)

    def read_history_file(self, ref: Union[HistorySnapshot, Path, str]) -> str:
        return self.history.read_snapshot(ref)

    # =========================================================================
    # Persistence
    # =========================================================================

    def save_all(self) -> None:
        """Persist the whole collection with the atomic save protocol.

        Raises:
            StorageError: If the temp write or the rename fails. The previous
                notes.json is left intact in that case.
        """
        path = self.config.notes_file
        with timed_operation("save_all", path=path.name) as op:
            text = dump_notes(self._notes)
            try:
                atomic_write_text(
                    path,
                    text,
                    tmp_path=self.config.notes_tmp_file,
                    backup_path=self.config.notes_backup_file,
                )
            except OSError as e:
                raise StorageError(
                    "Failed to save notes",
                    operation="save_all",
                    path=str(path),
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e
            op["note_count"] = len(self._notes)
