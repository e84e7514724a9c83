"""Key/value UI preferences stored in ``config.properties``.

The engine never reads these values; the file only travels with
whole-directory backups. The format is the Java properties subset
that existing files use: ``key=value`` or ``key: value`` lines,
``#``/``!`` comments and backslash escapes.
"""
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from stickynote.exceptions import ErrorCode, StorageError
from stickynote.utils import atomic_write_text

logger = logging.getLogger(__name__)

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


def _unescape(text: str) -> str:
    out = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            if nxt == "u" and i + 5 < len(text):
                try:
                    out.append(chr(int(text[i + 2:i + 6], 16)))
                    i += 6
                    continue
                except ValueError:
                    pass
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def _escape(text: str, is_key: bool) -> str:
    out = []
    for index, ch in enumerate(text):
        if ch == "\\":
            out.append("\\\\")
        elif ch == "\n":
            out.append("\\n")
        elif ch == "\r":
            out.append("\\r")
        elif ch == "\t":
            out.append("\\t")
        elif ch in "=:#!":
            out.append("\\" + ch)
        elif ch == " " and (is_key or index == 0):
            out.append("\\ ")
        else:
            out.append(ch)
    return "".join(out)


def _split_key_value(line: str) -> Tuple[str, str]:
    """Split a logical line at the first unescaped ``=``, ``:`` or whitespace."""
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if ch in "=: \t\f":
            break
        i += 1
    key = line[:i]
    rest = line[i:].lstrip(" \t\f")
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(" \t\f")
    return key, rest


def parse_properties(text: str) -> Dict[str, str]:
    """Parse properties text into a dict. Later keys win."""
    values: Dict[str, str] = {}
    pending = ""
    for raw in text.splitlines():
        line = raw.lstrip(" \t\f")
        if not pending and (not line or line[0] in "#!"):
            continue
        # An odd number of trailing backslashes continues the line
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending += line[:-1]
            continue
        line = pending + line
        pending = ""
        key, value = _split_key_value(line)
        values[_unescape(key)] = _unescape(value)
    if pending:
        key, value = _split_key_value(pending)
        values[_unescape(key)] = _unescape(value)
    return values


class Preferences:
    """Typed access to a ``config.properties`` file.

    Reading never fails: a missing or unreadable file gives defaults.
    Typed getters fall back when a stored value doesn't parse.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._values: Dict[str, str] = {}

    def load(self) -> "Preferences":
        if not self.path.exists():
            return self
        try:
            self._values = parse_properties(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read preferences {self.path.name}: {e}")
        return self

    def save(self) -> None:
        """Write all values atomically.

        Raises:
            StorageError: If the file cannot be written.
        """
        stamp = datetime.now(timezone.utc).strftime("%a %b %d %H:%M:%S UTC %Y")
        lines = ["#Sticky Note config", f"#{stamp}"]
        for key, value in self._values.items():
            lines.append(f"{_escape(key, True)}={_escape(value, False)}")
        try:
            atomic_write_text(self.path, "\n".join(lines) + "\n")
        except OSError as e:
            raise StorageError(
                "Failed to save preferences",
                operation="save_preferences",
                path=str(self.path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def keys(self) -> List[str]:
        return list(self._values.keys())

    def get_string(self, key: str, fallback: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, fallback)

    def get_int(self, key: str, fallback: int) -> int:
        value = self._values.get(key)
        if value is None:
            return fallback
        try:
            return int(value.strip())
        except ValueError:
            return fallback

    def get_bool(self, key: str, fallback: bool) -> bool:
        value = self._values.get(key)
        if value is None:
            return fallback
        return value.strip().lower() == "true"

    def set_string(self, key: str, value: Optional[str]) -> None:
        if value is None:
            self._values.pop(key, None)
        else:
            self._values[key] = value

    def set_int(self, key: str, value: int) -> None:
        self._values[key] = str(int(value))

    def set_bool(self, key: str, value: bool) -> None:
        self._values[key] = "true" if value else "false"
