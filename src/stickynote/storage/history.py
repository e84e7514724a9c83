"""Per-note revision history stored as plain-text snapshots."""

import base64
import datetime
import logging
import re
import time
from dataclasses import dataclass
from datetime import timezone
from pathlib import Path
from typing import Callable, List, Optional, Union

from stickynote.exceptions import ErrorCode, StorageError, ValidationError
from stickynote.utils import remove_file_quietly, remove_tree_quietly

logger = logging.getLogger(__name__)

SNAPSHOT_SUFFIX = ".txt"
SNAPSHOT_TIME_FORMAT = "%Y%m%d_%H%M%S"
# Same-second snapshots get _01.._99; zero padding keeps name order == time order
MAX_SAME_SECOND_SUFFIX = 99

# IDs matching this are used as directory names unchanged
SAFE_DIR_NAME = re.compile(r"^[A-Za-z0-9_\-]+$")
# Prefix for encoded directory names; never part of a plain name
ENCODED_DIR_PREFIX = "~"


def history_dir_name(note_id: str) -> str:
    """Directory name holding a note's snapshots.

    Plain IDs (letters, digits, ``_`` and ``-``) are used as-is. Any other
    ID is stored as ``~`` plus its URL-safe base64 form, so IDs like
    ``note.1`` or ``../x`` can never name a path outside the history root.

    Raises:
        ValidationError: If the ID is empty.
    """
    if not note_id:
        raise ValidationError(
            "Note ID cannot be empty",
            field="note_id",
            code=ErrorCode.VALIDATION_FAILED,
        )
    if SAFE_DIR_NAME.match(note_id):
        return note_id
    encoded = base64.urlsafe_b64encode(note_id.encode("utf-8")).decode("ascii")
    return ENCODED_DIR_PREFIX + encoded.rstrip("=")


@dataclass(frozen=True)
class HistorySnapshot:
    """Reference to one stored snapshot of a note's content.

    Attributes:
        note_id: ID of the note the snapshot belongs to.
        name: File name, e.g. ``20240501_093012.txt``.
        path: Absolute path of the snapshot file.
    """

    note_id: str
    name: str
    path: Path

    @property
    def label(self) -> str:
        """File name without the extension, for display."""
        return self.name[: -len(SNAPSHOT_SUFFIX)] if self.name.endswith(SNAPSHOT_SUFFIX) else self.name

    @property
    def timestamp(self) -> Optional[datetime.datetime]:
        """UTC time encoded in the file name, or None if it doesn't parse."""
        try:
            return datetime.datetime.strptime(
                self.label[:15], SNAPSHOT_TIME_FORMAT
            ).replace(tzinfo=timezone.utc)
        except ValueError:
            return None


class HistoryStore:
    """Writes, lists, reads and trims snapshots under ``history/<noteId>/``.

    Snapshot names are UTC timestamps at one-second resolution, so sorting
    names in reverse gives newest-first order. At most ``max_files``
    snapshots are kept per note.
    """

    def __init__(
        self,
        history_dir: Path,
        max_files: int = 50,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize the history store.

        Args:
            history_dir: Root directory holding one sub-directory per note.
            max_files: Snapshot retention cap per note.
            clock: Returns epoch seconds. Defaults to time.time.
        """
        self.history_dir = Path(history_dir)
        self.max_files = max_files
        self._clock = clock or time.time

    def _note_dir(self, note_id: str) -> Path:
        return self.history_dir / history_dir_name(note_id)

    def _timestamp_name(self) -> str:
        now = datetime.datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        return now.strftime(SNAPSHOT_TIME_FORMAT)

    def write_snapshot(self, note_id: str, content: Optional[str]) -> Optional[HistorySnapshot]:
        """Write a snapshot of ``content`` and trim old ones.

        Failures are logged and swallowed: a missing snapshot must never
        block saving the note itself.

        Returns:
            The new snapshot, or None if it could not be written.
        """
        try:
            note_dir = self._note_dir(note_id)
            note_dir.mkdir(parents=True, exist_ok=True)
            stem = self._timestamp_name()
            data = (content or "").encode("utf-8")

            for attempt in range(MAX_SAME_SECOND_SUFFIX + 1):
                name = f"{stem}{SNAPSHOT_SUFFIX}" if attempt == 0 else f"{stem}_{attempt:02d}{SNAPSHOT_SUFFIX}"
                path = note_dir / name
                try:
                    # Exclusive create: never overwrite an existing snapshot
                    with open(path, "xb") as f:
                        f.write(data)
                except FileExistsError:
                    continue
                self.trim(note_id)
                logger.debug(f"Snapshot written for note {note_id}: {name}")
                return HistorySnapshot(note_id=note_id, name=name, path=path)

            logger.warning(
                f"Dropped snapshot for note {note_id}: too many snapshots in second {stem}"
            )
        except (OSError, ValidationError) as e:
            logger.warning(f"Failed to write snapshot for note {note_id}: {e}")
        return None

    def _snapshot_files(self, note_dir: Path) -> List[Path]:
        files = [p for p in note_dir.glob(f"*{SNAPSHOT_SUFFIX}") if p.is_file()]
        files.sort(key=lambda p: p.name, reverse=True)
        return files

    def trim(self, note_id: str) -> int:
        """Delete snapshots beyond the retention cap, oldest first.

        Returns:
            Number of snapshot files removed.
        """
        note_dir = self._note_dir(note_id)
        if not note_dir.is_dir():
            return 0
        try:
            files = self._snapshot_files(note_dir)
        except OSError as e:
            logger.warning(f"Could not list history for note {note_id}: {e}")
            return 0

        removed = 0
        for path in files[self.max_files:]:
            if remove_file_quietly(path):
                removed += 1
        if removed:
            logger.debug(f"Trimmed {removed} old snapshot(s) for note {note_id}")
        return removed

    def list_snapshots(self, note_id: str) -> List[HistorySnapshot]:
        """List a note's snapshots, newest first. Empty if there are none."""
        note_dir = self._note_dir(note_id)
        if not note_dir.is_dir():
            return []
        try:
            files = self._snapshot_files(note_dir)
        except OSError as e:
            logger.warning(f"Could not list history for note {note_id}: {e}")
            return []
        return [HistorySnapshot(note_id=note_id, name=p.name, path=p) for p in files]

    def read_snapshot(self, ref: Union[HistorySnapshot, Path, str]) -> str:
        """Read a snapshot's content.

        Args:
            ref: A HistorySnapshot, or a path to a snapshot file.

        Raises:
            ValidationError: If the path lies outside the history directory.
            StorageError: If the file cannot be read.
        """
        path = Path(ref.path if isinstance(ref, HistorySnapshot) else ref)
        try:
            path.resolve().relative_to(self.history_dir.resolve())
        except ValueError:
            raise ValidationError(
                "Snapshot path is outside the history directory",
                field="ref",
                value=path.name,
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
            )
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                f"Failed to read snapshot {path.name}",
                operation="read_snapshot",
                path=str(path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e

    def remove_note_history(self, note_id: str) -> None:
        """Delete every snapshot of a note (best effort)."""
        remove_tree_quietly(self._note_dir(note_id))
