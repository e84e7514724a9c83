"""Configuration module for the Sticky Note engine."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from stickynote import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

APP_DIR_NAME = ".sticky-note-app"

# User-level config: lives alongside the notes
_USER_ENV = Path.home() / APP_DIR_NAME / ".env"
load_dotenv(_USER_ENV)

logger = logging.getLogger(__name__)

# Well-known file and directory names inside the data directory
NOTES_FILE_NAME = "notes.json"
NOTES_TMP_NAME = "notes.json.tmp"
NOTES_BAK_NAME = "notes.json.bak"
CONFIG_FILE_NAME = "config.properties"
HISTORY_DIR_NAME = "history"
LEGACY_NOTE_NAME = "note.txt"
STAGING_DIR_NAME = "import_tmp"


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


class StickyNoteConfig(BaseModel):
    """Configuration for the note store and backup codec.

    One instance is built by the caller and handed to ``NoteStore`` and
    ``BackupManager``; nothing in the package keeps a global copy.
    """

    # Application data directory (notes.json, history/, config.properties)
    data_dir: Path = Field(
        default_factory=lambda: Path(
            os.getenv("STICKYNOTE_DATA_DIR", str(Path.home() / APP_DIR_NAME))
        ).expanduser()
    )
    # Maximum number of history snapshots kept per note
    history_max_files: int = Field(
        default_factory=lambda: int(os.getenv("STICKYNOTE_HISTORY_MAX_FILES", "50"))
    )
    # Minimum seconds between automatic snapshots of the same note
    snapshot_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("STICKYNOTE_SNAPSHOT_INTERVAL", "20"))
    )
    # When False, delete is immediate and irreversible (no trash)
    trash_enabled: bool = Field(
        default_factory=lambda: _env_flag("STICKYNOTE_TRASH_ENABLED", "true")
    )
    # Tag attached to the note migrated from the legacy note.txt file
    legacy_tag: str = Field(
        default_factory=lambda: os.getenv("STICKYNOTE_LEGACY_TAG", "legacy")
    )
    # Directory for rotating log files (None: <data_dir>/logs)
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("STICKYNOTE_LOG_DIR"))
            if os.getenv("STICKYNOTE_LOG_DIR")
            else None
        )
    )
    app_version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_limits(self) -> "StickyNoteConfig":
        """Reject limits that would break history retention or coalescing."""
        if self.history_max_files < 1:
            raise ValueError("history_max_files must be >= 1")
        if self.snapshot_interval_seconds < 0:
            raise ValueError("snapshot_interval_seconds must be >= 0")
        return self

    @property
    def notes_file(self) -> Path:
        return self.data_dir / NOTES_FILE_NAME

    @property
    def notes_tmp_file(self) -> Path:
        return self.data_dir / NOTES_TMP_NAME

    @property
    def notes_backup_file(self) -> Path:
        return self.data_dir / NOTES_BAK_NAME

    @property
    def config_file(self) -> Path:
        return self.data_dir / CONFIG_FILE_NAME

    @property
    def history_dir(self) -> Path:
        return self.data_dir / HISTORY_DIR_NAME

    @property
    def legacy_note_file(self) -> Path:
        return self.data_dir / LEGACY_NOTE_NAME

    @property
    def staging_dir(self) -> Path:
        return self.data_dir / STAGING_DIR_NAME

    def get_log_dir(self) -> Path:
        """Get the directory used for persistent log files."""
        return self.log_dir if self.log_dir is not None else self.data_dir / "logs"

    def ensure_directories(self) -> None:
        """Create the data and history directories if they are missing."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.history_dir.mkdir(parents=True, exist_ok=True)
