"""JSON serialization for the note collection.

Handles conversion between the in-memory list of Note objects and the
``notes.json`` document. Shared by NoteStore (live data) and
BackupManager (archive entries) so both read the format the same way.
"""
import json
import logging
from typing import Any, Iterable, List

from pydantic import ValidationError as PydanticValidationError

from stickynote.models.schema import Note

logger = logging.getLogger(__name__)


class NotesFormatError(ValueError):
    """The document is not a JSON array of notes."""


def dump_notes(notes: Iterable[Note]) -> str:
    """Serialize notes as a pretty-printed JSON array.

    Non-ASCII text is written as-is (UTF-8), not as escape sequences.
    """
    return json.dumps(
        [note.to_json_dict() for note in notes], indent=2, ensure_ascii=False
    )


def parse_note_entries(entries: Iterable[Any]) -> List[Note]:
    """Build notes from decoded JSON entries, dropping invalid ones.

    Entries that are not objects, have no usable ID or fail validation
    are skipped; a repeated ID keeps its first occurrence.
    """
    notes: List[Note] = []
    seen_ids = set()
    dropped = 0
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("id") is None:
            dropped += 1
            continue
        try:
            note = Note.model_validate(entry)
        except PydanticValidationError as e:
            dropped += 1
            logger.debug(f"Skipping invalid note entry {entry.get('id')!r}: {e}")
            continue
        if note.id in seen_ids:
            dropped += 1
            logger.warning(f"Skipping duplicate note ID {note.id}")
            continue
        seen_ids.add(note.id)
        notes.append(note)

    if dropped:
        logger.info(f"Dropped {dropped} invalid note entr{'y' if dropped == 1 else 'ies'}")
    return notes


def load_notes(text: str) -> List[Note]:
    """Parse a ``notes.json`` document.

    A blank document is an empty collection.

    Raises:
        NotesFormatError: If the text is not JSON or not a JSON array.
    """
    if not text or not text.strip():
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise NotesFormatError(f"Malformed notes JSON: {e}") from e
    if data is None:
        return []
    if not isinstance(data, list):
        raise NotesFormatError(
            f"Expected a JSON array of notes, got {type(data).__name__}"
        )
    return parse_note_entries(data)
