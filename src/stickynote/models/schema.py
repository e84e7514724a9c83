"""Data models for the Sticky Note engine."""

import re
import time
import uuid
from enum import Enum
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TAG_MAX_LENGTH = 24
TITLE_MAX_LENGTH = 36
SNIPPET_MAX_LENGTH = 90
UNTITLED = "(untitled)"
ELLIPSIS = "…"

# Tag input may use ASCII or full-width commas as separators
_TAG_SEPARATORS = re.compile(r"[,，]")


def now_millis() -> int:
    """Get the current time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def generate_id() -> str:
    """Generate a random note ID (UUID4 string)."""
    return str(uuid.uuid4())


def normalize_tag(value: Optional[str]) -> str:
    """Normalize a single tag.

    Full-width spaces become regular spaces, surrounding whitespace and
    leading ``#`` markers are removed, and the result is capped at
    TAG_MAX_LENGTH characters. Applying it twice gives the same result.

    Examples:
        "  #Work " -> "Work"
        "## deep　dive" -> "deep dive"
    """
    if value is None:
        return ""
    tag = value.replace("\u3000", " ").strip()
    while tag.startswith("#"):
        tag = tag[1:].strip()
    return tag[:TAG_MAX_LENGTH].strip()


def normalize_tags(values: Iterable[Optional[str]]) -> List[str]:
    """Normalize tags, dropping blanks and case-insensitive duplicates.

    The first spelling of a tag wins; order is preserved.
    """
    result: List[str] = []
    seen = set()
    for value in values:
        tag = normalize_tag(value)
        if not tag:
            continue
        key = tag.casefold()
        if key in seen:
            continue
        seen.add(key)
        result.append(tag)
    return result


def parse_tag_input(text: Optional[str]) -> List[str]:
    """Parse comma-separated tag input as typed by a user.

    Example:
        "  #Work, 家庭 , ,work" -> ["Work", "家庭"]
    """
    if not text:
        return []
    return normalize_tags(_TAG_SEPARATORS.split(text))


def _first_non_blank_line(text: str) -> str:
    for line in text.splitlines():
        line = line.strip()
        if line:
            return line
    return ""


class Scope(str, Enum):
    """Named filters over the note collection."""

    ACTIVE = "active"  # Not archived, not in the trash
    ARCHIVED = "archived"  # Archived, not in the trash
    ALL = "all"  # Everything outside the trash
    TRASH = "trash"  # Soft-deleted notes only


class Note(BaseModel):
    """A single note.

    Stored on disk with camelCase field names (``deletedAt``, ``createdAt``,
    ``updatedAt``); timestamps are epoch milliseconds.
    """

    id: str = Field(
        default_factory=generate_id, frozen=True, description="Unique ID of the note"
    )
    content: str = Field(default="", description="Markdown-flavored note body")
    tags: List[str] = Field(default_factory=list, description="Normalized tags")
    pinned: bool = Field(default=False)
    archived: bool = Field(default=False)
    deleted: bool = Field(default=False, description="True while in the trash")
    deleted_at: int = Field(
        default=0, alias="deletedAt", description="When the note was trashed (0 if not)"
    )
    created_at: int = Field(
        default_factory=now_millis, alias="createdAt", frozen=True,
        description="When the note was created (epoch ms)"
    )
    updated_at: int = Field(
        default_factory=now_millis, alias="updatedAt",
        description="When the note was last updated (epoch ms)"
    )

    model_config = ConfigDict(
        validate_assignment=True, extra="ignore", populate_by_name=True
    )

    @model_validator(mode="before")
    @classmethod
    def _repair_timestamps(cls, data: Any) -> Any:
        """Raise a stored updatedAt that predates createdAt."""
        if not isinstance(data, dict):
            return data
        created = data.get("createdAt", data.get("created_at"))
        updated_key = "updatedAt" if "updatedAt" in data else "updated_at"
        updated = data.get(updated_key)
        if isinstance(created, int) and isinstance(updated, int) and updated < created:
            data = {**data, updated_key: created}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _numeric_id(cls, v: Any) -> Any:
        # Hand-edited files sometimes carry numeric IDs
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """IDs are opaque; any non-empty string is accepted."""
        if not v:
            raise ValueError("Note ID cannot be empty")
        return v

    @field_validator("content", mode="before")
    @classmethod
    def _none_content(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("pinned", "archived", "deleted", mode="before")
    @classmethod
    def _none_flag(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("tags", mode="before")
    @classmethod
    def _none_tags(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("tags")
    @classmethod
    def validate_tags(cls, v: List[str]) -> List[str]:
        """Normalize tags and drop blanks and duplicates."""
        return normalize_tags(v)

    @field_validator("deleted_at")
    @classmethod
    def validate_deleted_at(cls, v: int) -> int:
        """Clamp negative trash timestamps to zero."""
        return max(0, v)

    @classmethod
    def create_empty(cls, now_ms: Optional[int] = None) -> "Note":
        """Create an empty note whose created and updated times match."""
        now_ms = now_millis() if now_ms is None else now_ms
        return cls(content="", created_at=now_ms, updated_at=now_ms)

    def touch(self, now_ms: Optional[int] = None) -> None:
        """Stamp updated_at without ever moving it backwards."""
        now_ms = now_millis() if now_ms is None else now_ms
        self.updated_at = max(now_ms, self.updated_at, self.created_at)

    def title(self) -> str:
        """First non-blank line of the content, shortened for lists."""
        line = _first_non_blank_line(self.content)
        if not line:
            return UNTITLED
        line = line.replace("\t", " ").strip()
        if len(line) > TITLE_MAX_LENGTH:
            line = line[:TITLE_MAX_LENGTH] + ELLIPSIS
        return line

    def snippet(self) -> str:
        """Single-line preview of the content."""
        text = (
            self.content.replace("\r", " ").replace("\n", " ").replace("\t", " ").strip()
        )
        if len(text) > SNIPPET_MAX_LENGTH:
            text = text[:SNIPPET_MAX_LENGTH] + ELLIPSIS
        return text

    def tags_joined(self) -> str:
        return ", ".join(self.tags)

    def has_tag(self, tag: str) -> bool:
        """Case-insensitive tag membership."""
        key = normalize_tag(tag).casefold()
        return any(t.casefold() == key for t in self.tags)

    def matches_query(self, query: Optional[str]) -> bool:
        """Case-insensitive substring search over title, tags and content."""
        if query is None:
            return True
        needle = query.strip().lower()
        if not needle:
            return True
        haystack = "\n".join([self.title(), self.tags_joined(), self.content]).lower()
        return needle in haystack

    def to_json_dict(self) -> dict:
        """Dump with the on-disk field names."""
        return self.model_dump(by_alias=True)


def matches_scope(note: Note, scope: Scope) -> bool:
    """Pure scope predicate used for lists and tag filters."""
    if scope == Scope.TRASH:
        return note.deleted
    if note.deleted:
        return False
    if scope == Scope.ACTIVE:
        return not note.archived
    if scope == Scope.ARCHIVED:
        return note.archived
    return True


def sort_for_display(notes: Iterable[Note]) -> List[Note]:
    """Pinned notes first, then most recently updated. Stable for ties."""
    return sorted(notes, key=lambda n: (not n.pinned, -n.updated_at))
