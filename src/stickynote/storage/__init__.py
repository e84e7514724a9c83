"""Storage layer for the Sticky Note engine."""

from stickynote.storage.history import HistorySnapshot, HistoryStore
from stickynote.storage.note_store import NoteStore
from stickynote.storage.preferences import Preferences

__all__ = [
    "HistorySnapshot",
    "HistoryStore",
    "NoteStore",
    "Preferences",
]
