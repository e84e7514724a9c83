"""Utility functions for the Sticky Note engine."""

import logging
import os
import re
import shutil
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Characters that are not allowed in file names on common platforms
_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]')


def atomic_write_text(
    path: Path,
    text: str,
    tmp_path: Optional[Path] = None,
    backup_path: Optional[Path] = None,
) -> None:
    """Write ``text`` to ``path`` so readers never observe a torn file.

    Protocol:
    1. Copy the current file to ``backup_path`` (best effort)
    2. Write the new content to ``tmp_path`` in the same directory, fsync it
    3. Rename ``tmp_path`` over ``path`` (atomic on POSIX and Windows)

    If anything fails before the rename, the temp file is removed and the
    previous ``path`` is left exactly as it was.

    Args:
        path: Destination file.
        text: Full new content (written as UTF-8).
        tmp_path: Temp file to stage the write. Defaults to ``<path>.tmp``.
        backup_path: Where to copy the previous file. None disables the copy.

    Raises:
        OSError: If the temp write or the rename fails.
    """
    tmp_path = tmp_path or path.with_name(path.name + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)

    if backup_path is not None and path.exists():
        try:
            shutil.copy2(path, backup_path)
        except OSError as e:
            logger.debug(f"Backup copy of {path.name} failed (ignored): {e}")

    try:
        with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        tmp_path.replace(path)
    except OSError:
        remove_file_quietly(tmp_path)
        raise


def remove_file_quietly(path: Path) -> bool:
    """Delete a file, ignoring failures. Returns True if it was removed."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.debug(f"Could not remove {path}: {e}")
        return False


def remove_tree_quietly(path: Path) -> None:
    """Recursively delete a directory, ignoring failures."""
    if not path.exists():
        return
    shutil.rmtree(path, ignore_errors=True)
    if path.exists():
        logger.warning(f"Could not fully remove directory {path}")


def is_safe_archive_member(name: str) -> bool:
    """Check that an archive entry name stays inside the extraction root.

    Rejects absolute paths (``/x``, ``\\x``), drive or scheme markers
    (``C:``), and any ``..`` path segment.

    Examples:
        >>> is_safe_archive_member("history/abc/20240101_120000.txt")
        True
        >>> is_safe_archive_member("../notes.json")
        False
    """
    if not name:
        return False
    if name.startswith("/") or name.startswith("\\"):
        return False
    if ":" in name:
        return False
    segments = re.split(r"[\\/]", name)
    return ".." not in segments


def sanitize_filename(text: str, fallback: str = "note") -> str:
    """Make a string usable as a file name.

    Replaces ``\\ / : * ? " < > |`` with underscores and strips
    surrounding whitespace and dots.

    Examples:
        "Plan: Q3/Q4" -> "Plan_ Q3_Q4"
    """
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", text or "").strip().strip(".")
    return cleaned or fallback
