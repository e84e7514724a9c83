"""
Sticky Note - a local, single-user note keeper.
This package implements the persistence and versioning engine behind the note
keeper: a JSON-backed note collection with atomic saves, a trash, tags,
per-note revision history and zip backup/restore.

This version uses synchronous operations.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("stickynote")
except PackageNotFoundError:
    __version__ = "1.2.0"
