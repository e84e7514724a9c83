"""Backup and restore for the Sticky Note engine.

Backups are zip archives holding:
- ``meta.txt``: human-readable export timestamp
- ``notes.json``: the note collection
- ``config.properties`` and ``history/**`` (whole-directory backups only)

Restoring a whole-directory backup is two-phase: everything is extracted
into a staging directory first, and live files are only replaced once the
archive has been fully read and its notes parsed.
"""
import datetime
import logging
import shutil
import time
import zipfile
import zlib
from datetime import timezone
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

from stickynote import __version__
from stickynote.config import (
    CONFIG_FILE_NAME,
    HISTORY_DIR_NAME,
    NOTES_FILE_NAME,
    StickyNoteConfig,
)
from stickynote.exceptions import BackupError, ErrorCode, StorageError
from stickynote.models.schema import Note
from stickynote.observability import traced
from stickynote.storage.json_codec import NotesFormatError, dump_notes, load_notes
from stickynote.utils import (
    atomic_write_text,
    is_safe_archive_member,
    remove_file_quietly,
    remove_tree_quietly,
    sanitize_filename,
)

logger = logging.getLogger(__name__)

BACKUP_FILE_PREFIX = "sticky-note-backup"
META_ENTRY = "meta.txt"

# Errors zipfile can raise while reading a damaged archive
_ARCHIVE_READ_ERRORS = (zipfile.BadZipFile, zlib.error, EOFError, OSError)
# Decoding one entry can also fail on encryption or unsupported compression
_ENTRY_DECODE_ERRORS = (
    zipfile.BadZipFile, zlib.error, EOFError, RuntimeError, NotImplementedError
)
_ENTRY_READ_ERRORS = _ENTRY_DECODE_ERRORS + (OSError,)


class BackupManager:
    """Exports and imports zip backups of the note data.

    Features:
    - Notes-only export/import (the collection as one JSON entry)
    - Whole-directory export/import (notes, preferences and history)
    - Stage-then-swap restore that leaves live data untouched on failure
    - Tolerates archives whose entries are nested under a directory prefix
    """

    def __init__(
        self,
        config: StickyNoteConfig,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the backup manager.

        Args:
            config: Paths of the live data directory.
            clock: Returns epoch seconds. Defaults to time.time.
        """
        self.config = config
        self._clock = clock or time.time

    def _now(self) -> datetime.datetime:
        return datetime.datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def default_backup_file(self, directory: Union[str, Path]) -> Path:
        """Suggested archive path, e.g. ``sticky-note-backup_20240501_093012.zip``."""
        stamp = self._now().strftime("%Y%m%d_%H%M%S")
        return Path(directory) / f"{BACKUP_FILE_PREFIX}_{stamp}.zip"

    def _meta_text(self) -> str:
        now = self._now()
        return (
            "Sticky Note backup\n"
            f"exportedAt={now.isoformat(timespec='seconds')}\n"
            f"exportedAtMillis={int(now.timestamp() * 1000)}\n"
            f"version={__version__}\n"
        )

    # =========================================================================
    # Export
    # =========================================================================

    def _write_archive(
        self, zip_path: Union[str, Path], fill: Callable[[zipfile.ZipFile], None]
    ) -> Path:
        """Write an archive via a temp file so a failed export leaves no torn zip."""
        zip_path = Path(zip_path)
        tmp_path = zip_path.with_name(zip_path.name + ".tmp")
        try:
            zip_path.absolute().parent.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(tmp_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                zf.writestr(META_ENTRY, self._meta_text())
                fill(zf)
            tmp_path.replace(zip_path)
        except OSError as e:
            remove_file_quietly(tmp_path)
            raise BackupError(
                f"Failed to write backup archive: {e}",
                archive=str(zip_path),
                code=ErrorCode.BACKUP_WRITE_FAILED,
                original_error=e,
            ) from e

        size_kb = zip_path.stat().st_size / 1024
        logger.info(f"Backup written: {zip_path} ({size_kb:.1f} KB)")
        return zip_path

    @traced("export_notes")
    def export_notes(self, zip_path: Union[str, Path], notes: Optional[Iterable[Note]]) -> Path:
        """Export a note collection as a notes-only archive.

        Args:
            zip_path: Destination archive. Parent directories are created.
            notes: Collection to export. None exports an empty collection.

        Returns:
            Path to the written archive.

        Raises:
            BackupError: If the archive cannot be written.
        """
        payload = dump_notes(notes or [])

        def fill(zf: zipfile.ZipFile) -> None:
            zf.writestr(NOTES_FILE_NAME, payload)

        return self._write_archive(zip_path, fill)

    @traced("export_data_dir")
    def export_data_dir(self, zip_path: Union[str, Path]) -> Path:
        """Export the live data directory: notes, preferences and history.

        Raises:
            BackupError: If notes.json does not exist or the archive cannot
                be written.
        """
        notes_file = self.config.notes_file
        if not notes_file.exists():
            raise BackupError(
                "Nothing to back up: notes data not found",
                archive=str(zip_path),
                code=ErrorCode.BACKUP_WRITE_FAILED,
            )
        config_file = self.config.config_file
        history_dir = self.config.history_dir

        def fill(zf: zipfile.ZipFile) -> None:
            zf.write(notes_file, NOTES_FILE_NAME)
            if config_file.exists():
                zf.write(config_file, CONFIG_FILE_NAME)
            if history_dir.is_dir():
                count = 0
                for path in sorted(history_dir.rglob("*")):
                    if path.is_file():
                        rel = path.relative_to(history_dir).as_posix()
                        zf.write(path, f"{HISTORY_DIR_NAME}/{rel}")
                        count += 1
                logger.debug(f"Added {count} history file(s) to backup")

        return self._write_archive(zip_path, fill)

    # =========================================================================
    # Import
    # =========================================================================

    @staticmethod
    def find_notes_entry(names: Iterable[str]) -> Optional[str]:
        """Locate the notes entry: exact name first, then a nested ``*/notes.json``."""
        names = list(names)
        for name in names:
            if name.lower() == NOTES_FILE_NAME:
                return name
        for name in names:
            if name.endswith("/" + NOTES_FILE_NAME):
                return name
        return None

    def _open_archive(self, zip_path: Union[str, Path]) -> zipfile.ZipFile:
        zip_path = Path(zip_path)
        if not zip_path.is_file():
            raise BackupError(
                f"Backup file not found: {zip_path.name}",
                archive=str(zip_path),
                code=ErrorCode.BACKUP_NOT_FOUND,
            )
        try:
            return zipfile.ZipFile(zip_path, "r")
        except _ARCHIVE_READ_ERRORS as e:
            raise BackupError(
                "Invalid backup archive",
                archive=str(zip_path),
                code=ErrorCode.BACKUP_INVALID_ARCHIVE,
                original_error=e,
            ) from e

    @staticmethod
    def _missing_notes(zip_path: Union[str, Path]) -> BackupError:
        return BackupError(
            "Backup archive is missing notes data (notes.json)",
            archive=str(zip_path),
            code=ErrorCode.BACKUP_MISSING_NOTES,
        )

    @staticmethod
    def _parse_notes(data: bytes, zip_path: Union[str, Path]) -> List[Note]:
        """Parse a notes entry; invalid individual notes are dropped."""
        try:
            return load_notes(data.decode("utf-8-sig"))
        except (UnicodeDecodeError, NotesFormatError) as e:
            raise BackupError(
                "Backup contains invalid notes data",
                archive=str(zip_path),
                code=ErrorCode.BACKUP_INVALID_NOTES,
                original_error=e,
            ) from e

    @traced("import_notes")
    def import_notes(self, zip_path: Union[str, Path]) -> List[Note]:
        """Read the note collection from a backup archive.

        Nothing on disk is modified; the caller decides what to do with the
        returned notes (typically ``NoteStore.replace_all``).

        Raises:
            BackupError: If the file is missing, not a zip archive, has no
                notes entry, or the notes entry is not a JSON array.
        """
        with self._open_archive(zip_path) as zf:
            name = self.find_notes_entry(
                info.filename for info in zf.infolist() if not info.is_dir()
            )
            if name is None:
                raise self._missing_notes(zip_path)
            try:
                data = zf.read(name)
            except _ENTRY_READ_ERRORS as e:
                raise BackupError(
                    "Failed to read notes from backup archive",
                    archive=str(zip_path),
                    code=ErrorCode.BACKUP_INVALID_ARCHIVE,
                    original_error=e,
                ) from e

        notes = self._parse_notes(data, zip_path)
        logger.info(f"Read {len(notes)} note(s) from backup {Path(zip_path).name}")
        return notes

    @traced("import_data_dir")
    def import_data_dir(self, zip_path: Union[str, Path]) -> List[Note]:
        """Restore the whole data directory from a backup archive.

        Phase 1 extracts into ``import_tmp/`` and parses the notes. Phase 2
        replaces ``notes.json``, then ``config.properties`` and ``history/``
        when the archive contains them. History is replaced, not merged.
        The staging directory is removed on every exit path.

        Returns:
            The restored note collection.

        Raises:
            BackupError: If the archive is unusable (live data untouched) or
                a file could not be swapped into place.
        """
        staging = self.config.staging_dir
        with self._open_archive(zip_path) as zf:
            try:
                self.config.ensure_directories()
                remove_tree_quietly(staging)
                staging.mkdir(parents=True)
                notes = self._stage(zf, staging, zip_path)
                self._swap_in(staging, notes)
            except OSError as e:
                raise BackupError(
                    f"Failed to restore backup: {e}",
                    archive=str(zip_path),
                    code=ErrorCode.BACKUP_RESTORE_FAILED,
                    original_error=e,
                ) from e
            finally:
                remove_tree_quietly(staging)

        logger.info(f"Restored {len(notes)} note(s) from backup {Path(zip_path).name}")
        return notes

    def _stage(
        self, zf: zipfile.ZipFile, staging: Path, zip_path: Union[str, Path]
    ) -> List[Note]:
        """Extract entries under the notes entry's directory into ``staging``."""
        entries = [info for info in zf.infolist() if not info.is_dir()]
        notes_name = self.find_notes_entry(info.filename for info in entries)
        if notes_name is None:
            raise self._missing_notes(zip_path)
        root = notes_name[: -len(NOTES_FILE_NAME)]
        staging_root = staging.resolve()

        skipped = 0
        for info in entries:
            name = info.filename
            if not is_safe_archive_member(name):
                logger.warning(f"Skipping unsafe backup entry: {name!r}")
                skipped += 1
                continue
            if name == notes_name:
                target = staging / NOTES_FILE_NAME
            elif root and not name.startswith(root):
                skipped += 1
                continue
            else:
                target = staging / name[len(root):]
            if staging_root not in target.resolve().parents:
                logger.warning(f"Skipping backup entry outside staging: {name!r}")
                skipped += 1
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            try:
                with zf.open(info) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
            except _ENTRY_DECODE_ERRORS as e:
                raise BackupError(
                    f"Backup archive is unreadable at entry {name!r}",
                    archive=str(zip_path),
                    code=ErrorCode.BACKUP_INVALID_ARCHIVE,
                    original_error=e,
                ) from e

        if skipped:
            logger.info(f"Skipped {skipped} backup entr{'y' if skipped == 1 else 'ies'}")
        return self._parse_notes((staging / NOTES_FILE_NAME).read_bytes(), zip_path)

    def _swap_in(self, staging: Path, notes: List[Note]) -> None:
        """Replace live files with their staged counterparts."""
        atomic_write_text(
            self.config.notes_file,
            dump_notes(notes),
            tmp_path=self.config.notes_tmp_file,
            backup_path=self.config.notes_backup_file,
        )

        staged_config = staging / CONFIG_FILE_NAME
        if staged_config.is_file():
            staged_config.replace(self.config.config_file)

        staged_history = staging / HISTORY_DIR_NAME
        if staged_history.is_dir():
            live = self.config.history_dir
            retired = live.with_name(live.name + ".old")
            remove_tree_quietly(retired)
            if live.exists():
                live.replace(retired)
            try:
                staged_history.replace(live)
            except OSError:
                if retired.exists() and not live.exists():
                    retired.replace(live)
                raise
            remove_tree_quietly(retired)


def suggested_filename(note: Note) -> str:
    """File name for exporting a single note, derived from its title."""
    return sanitize_filename(note.title()) + ".md"


def export_note_text(note: Note, path: Union[str, Path]) -> Path:
    """Write one note's content to a text/Markdown file.

    Raises:
        StorageError: If the file cannot be written.
    """
    path = Path(path)
    try:
        path.absolute().parent.mkdir(parents=True, exist_ok=True)
        path.write_text(note.content, encoding="utf-8")
    except OSError as e:
        raise StorageError(
            f"Failed to export note {note.id}",
            operation="export_note",
            path=str(path),
            code=ErrorCode.STORAGE_WRITE_FAILED,
            original_error=e,
        ) from e
    return path
