"""Tests for backup export/import workflows.

Covers notes-only archives, whole-directory archives with stage-then-swap
restore, and the failure paths that must leave live data untouched.
"""
import json
import zipfile
from pathlib import Path
from unittest.mock import patch

import pytest

from stickynote.backup import (
    BackupManager,
    export_note_text,
    suggested_filename,
)
from stickynote.exceptions import BackupError, ErrorCode, StorageError
from stickynote.models.schema import Note
from stickynote.storage.preferences import Preferences


def _make_zip(path: Path, entries: dict) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return path


def _notes_json(*notes: dict) -> str:
    return json.dumps(list(notes))


class TestNotesOnlyBackup:
    """Tests for exporting and importing the note collection alone."""

    def test_round_trip(self, store, backup_manager, tmp_path):
        note = store.create_note("keep me\n日本語")
        note.tags = ["x", "y"]
        note.pinned = True
        store.update_note(note, False)
        store.move_to_trash(store.create_note("trashed").id)

        archive = backup_manager.export_notes(tmp_path / "out" / "notes.zip", store.get_all())
        restored = backup_manager.import_notes(archive)

        assert [n.to_json_dict() for n in restored] == [
            n.to_json_dict() for n in store.get_all()
        ]

    def test_archive_layout(self, backup_manager, tmp_path):
        archive = backup_manager.export_notes(tmp_path / "b.zip", [Note(id="n1")])
        with zipfile.ZipFile(archive) as zf:
            assert zf.namelist() == ["meta.txt", "notes.json"]
            meta = zf.read("meta.txt").decode("utf-8")
        assert "exportedAt=2024-05-01T09:30:12+00:00" in meta
        assert "exportedAtMillis=1714555812000" in meta

    def test_export_none_writes_empty_collection(self, backup_manager, tmp_path):
        archive = backup_manager.export_notes(tmp_path / "empty.zip", None)
        assert backup_manager.import_notes(archive) == []

    def test_export_leaves_no_temp_file(self, backup_manager, tmp_path):
        backup_manager.export_notes(tmp_path / "b.zip", [])
        assert sorted(p.name for p in tmp_path.iterdir()) == ["b.zip"]

    def test_default_backup_file_name(self, backup_manager, tmp_path):
        path = backup_manager.default_backup_file(tmp_path)
        assert path == tmp_path / "sticky-note-backup_20240501_093012.zip"

    def test_invalid_entries_dropped(self, backup_manager, tmp_path):
        archive = _make_zip(
            tmp_path / "b.zip",
            {
                "notes.json": _notes_json(
                    {"id": None, "content": "no id"},
                    {"id": "ok", "content": "fine", "deletedAt": -7},
                )
            },
        )
        notes = backup_manager.import_notes(archive)
        assert [n.id for n in notes] == ["ok"]
        assert notes[0].tags == []
        assert notes[0].deleted_at == 0

    def test_entry_name_matched_case_insensitively(self, backup_manager, tmp_path):
        archive = _make_zip(tmp_path / "b.zip", {"NOTES.JSON": _notes_json({"id": "a"})})
        assert [n.id for n in backup_manager.import_notes(archive)] == ["a"]

    def test_nested_notes_entry(self, backup_manager, tmp_path):
        archive = _make_zip(
            tmp_path / "b.zip", {"backup-2024/notes.json": _notes_json({"id": "a"})}
        )
        assert [n.id for n in backup_manager.import_notes(archive)] == ["a"]

    def test_missing_file(self, backup_manager, tmp_path):
        with pytest.raises(BackupError) as exc_info:
            backup_manager.import_notes(tmp_path / "nope.zip")
        assert exc_info.value.code == ErrorCode.BACKUP_NOT_FOUND

    def test_not_a_zip(self, backup_manager, tmp_path):
        bogus = tmp_path / "bogus.zip"
        bogus.write_bytes(b"definitely not a zip archive")
        with pytest.raises(BackupError) as exc_info:
            backup_manager.import_notes(bogus)
        assert exc_info.value.code == ErrorCode.BACKUP_INVALID_ARCHIVE

    def test_missing_notes_entry(self, backup_manager, tmp_path):
        archive = _make_zip(tmp_path / "b.zip", {"meta.txt": "x"})
        with pytest.raises(BackupError) as exc_info:
            backup_manager.import_notes(archive)
        assert exc_info.value.code == ErrorCode.BACKUP_MISSING_NOTES
        assert "missing notes data" in exc_info.value.message

    def test_malformed_notes_entry(self, backup_manager, tmp_path):
        archive = _make_zip(tmp_path / "b.zip", {"notes.json": "{broken"})
        with pytest.raises(BackupError) as exc_info:
            backup_manager.import_notes(archive)
        assert exc_info.value.code == ErrorCode.BACKUP_INVALID_NOTES

    def test_import_does_not_touch_disk(self, store, backup_manager, test_config, tmp_path):
        before = test_config.notes_file.read_text(encoding="utf-8")
        archive = _make_zip(tmp_path / "b.zip", {"notes.json": _notes_json({"id": "a"})})
        backup_manager.import_notes(archive)
        assert test_config.notes_file.read_text(encoding="utf-8") == before

    def test_replace_all_after_import(self, store, backup_manager, tmp_path):
        archive = _make_zip(
            tmp_path / "b.zip", {"notes.json": _notes_json({"id": "a"}, {"id": "b"})}
        )
        store.replace_all(backup_manager.import_notes(archive))
        assert [n.id for n in store.get_all()] == ["a", "b"]

    def test_non_uuid_ids_imported(self, backup_manager, tmp_path):
        archive = _make_zip(
            tmp_path / "b.zip",
            {"notes.json": _notes_json({"id": "note.1", "content": "dotted"}, {"id": 12})},
        )
        notes = backup_manager.import_notes(archive)
        assert [n.id for n in notes] == ["note.1", "12"]
        assert notes[0].content == "dotted"

    def test_encrypted_entry_is_invalid_archive(self, backup_manager, tmp_path):
        archive = _make_zip(tmp_path / "b.zip", {"notes.json": _notes_json({"id": "a"})})
        with patch.object(
            zipfile.ZipFile, "open",
            side_effect=RuntimeError("File 'notes.json' is encrypted, password required"),
        ):
            with pytest.raises(BackupError) as exc_info:
                backup_manager.import_notes(archive)
        assert exc_info.value.code == ErrorCode.BACKUP_INVALID_ARCHIVE


class TestWholeDirectoryBackup:
    """Tests for exporting and restoring the whole data directory."""

    def test_export_contents(self, store, backup_manager, test_config, tmp_path):
        note = store.create_note("")
        store.commit_edit(note, "with history")
        prefs = Preferences(test_config.config_file)
        prefs.set_string("theme", "dark")
        prefs.save()

        archive = backup_manager.export_data_dir(tmp_path / "full.zip")

        with zipfile.ZipFile(archive) as zf:
            names = zf.namelist()
        assert names[:3] == ["meta.txt", "notes.json", "config.properties"]
        assert f"history/{note.id}/20240501_093012.txt" in names

    def test_export_without_notes_file(self, test_config, backup_manager, tmp_path):
        with pytest.raises(BackupError):
            backup_manager.export_data_dir(tmp_path / "full.zip")

    def test_restore_replaces_notes_history_and_preferences(
        self, store, backup_manager, test_config, tmp_path
    ):
        seed = store.get_all()[0]
        kept = store.create_note("")
        store.commit_edit(kept, "kept v1")
        prefs = Preferences(test_config.config_file)
        prefs.set_string("theme", "dark")
        prefs.save()
        archive = backup_manager.export_data_dir(tmp_path / "full.zip")

        # Diverge after the backup
        extra = store.create_note("")
        store.commit_edit(extra, "added later")
        prefs.set_string("theme", "light")
        prefs.save()

        restored = backup_manager.import_data_dir(archive)
        store.reload()

        assert [n.id for n in restored] == [seed.id, kept.id]
        assert [n.id for n in store.get_all()] == [seed.id, kept.id]
        assert not (test_config.history_dir / extra.id).exists()
        snapshots = store.list_history_files(kept.id)
        assert [store.read_history_file(s) for s in snapshots] == ["kept v1"]
        assert Preferences(test_config.config_file).load().get_string("theme") == "dark"
        assert extra.id in test_config.notes_backup_file.read_text(encoding="utf-8")
        assert not test_config.staging_dir.exists()
        assert not (test_config.data_dir / "history.old").exists()

    def test_notes_only_archive_keeps_history_and_preferences(
        self, store, backup_manager, test_config, tmp_path
    ):
        note = store.create_note("")
        store.commit_edit(note, "history stays")
        test_config.config_file.write_text("theme=dark\n", encoding="utf-8")
        archive = backup_manager.export_notes(tmp_path / "notes.zip", [Note(id="fresh")])

        backup_manager.import_data_dir(archive)
        store.reload()

        assert [n.id for n in store.get_all()] == ["fresh"]
        assert (test_config.history_dir / note.id).is_dir()
        assert test_config.config_file.read_text(encoding="utf-8") == "theme=dark\n"

    def test_nested_prefix_archive(self, store, backup_manager, test_config, tmp_path):
        archive = _make_zip(
            tmp_path / "nested.zip",
            {
                "meta.txt": "outside the prefix",
                "export/notes.json": _notes_json({"id": "n1", "content": "nested"}),
                "export/history/n1/20240101_000000.txt": "old rev",
                "export/config.properties": "theme=sepia\n",
            },
        )

        backup_manager.import_data_dir(archive)
        store.reload()

        assert [n.content for n in store.get_all()] == ["nested"]
        snapshot = test_config.history_dir / "n1" / "20240101_000000.txt"
        assert snapshot.read_text(encoding="utf-8") == "old rev"
        assert Preferences(test_config.config_file).load().get_string("theme") == "sepia"
        assert not (test_config.data_dir / "meta.txt").exists()

    def test_unsafe_entries_skipped(self, store, backup_manager, test_config, tmp_path):
        archive = _make_zip(
            tmp_path / "evil.zip",
            {
                "notes.json": _notes_json({"id": "safe"}),
                "../escaped.txt": "x",
                "history/../../escaped2.txt": "x",
                "/absolute.txt": "x",
                "C:/drive.txt": "x",
            },
        )

        backup_manager.import_data_dir(archive)
        store.reload()

        assert [n.id for n in store.get_all()] == ["safe"]
        assert not (test_config.data_dir.parent / "escaped.txt").exists()
        assert not (test_config.data_dir / "escaped2.txt").exists()
        assert not test_config.staging_dir.exists()

    def test_missing_notes_leaves_live_data_untouched(
        self, store, backup_manager, test_config, tmp_path
    ):
        before = test_config.notes_file.read_text(encoding="utf-8")
        archive = _make_zip(
            tmp_path / "partial.zip",
            {
                "config.properties": "theme=dark\n",
                "history/x/20240101_000000.txt": "x",
            },
        )

        with pytest.raises(BackupError) as exc_info:
            backup_manager.import_data_dir(archive)

        assert exc_info.value.code == ErrorCode.BACKUP_MISSING_NOTES
        assert test_config.notes_file.read_text(encoding="utf-8") == before
        assert not test_config.config_file.exists()
        assert not (test_config.history_dir / "x").exists()
        assert not test_config.staging_dir.exists()

    def test_invalid_notes_leaves_live_data_untouched(
        self, store, backup_manager, test_config, tmp_path
    ):
        before = test_config.notes_file.read_text(encoding="utf-8")
        archive = _make_zip(
            tmp_path / "broken.zip",
            {"notes.json": "[{", "config.properties": "theme=dark\n"},
        )

        with pytest.raises(BackupError) as exc_info:
            backup_manager.import_data_dir(archive)

        assert exc_info.value.code == ErrorCode.BACKUP_INVALID_NOTES
        assert test_config.notes_file.read_text(encoding="utf-8") == before
        assert not test_config.config_file.exists()
        assert not test_config.staging_dir.exists()

    def test_leftover_staging_is_replaced(self, store, backup_manager, test_config, tmp_path):
        (test_config.staging_dir / "history" / "stale").mkdir(parents=True)
        archive = _make_zip(tmp_path / "b.zip", {"notes.json": _notes_json({"id": "a"})})

        backup_manager.import_data_dir(archive)

        assert not test_config.staging_dir.exists()
        assert not (test_config.history_dir / "stale").exists()

    def test_non_uuid_note_history_round_trip(
        self, store, backup_manager, test_config, tmp_path
    ):
        store.replace_all([Note(id="note.1", content="")])
        note = store.get_by_id("note.1")
        store.commit_edit(note, "dotted v1")
        archive = backup_manager.export_data_dir(tmp_path / "full.zip")

        store.delete_permanently("note.1")
        assert store.list_history_files("note.1") == []

        restored = backup_manager.import_data_dir(archive)
        store.reload()

        assert [n.id for n in restored] == ["note.1"]
        assert store.get_by_id("note.1").content == "dotted v1"
        snapshots = store.list_history_files("note.1")
        assert [store.read_history_file(s) for s in snapshots] == ["dotted v1"]

    def test_encrypted_entry_leaves_live_data_untouched(
        self, store, backup_manager, test_config, tmp_path
    ):
        before = test_config.notes_file.read_text(encoding="utf-8")
        archive = _make_zip(
            tmp_path / "locked.zip",
            {"notes.json": _notes_json({"id": "a"}), "config.properties": "theme=dark\n"},
        )

        with patch.object(
            zipfile.ZipFile, "open",
            side_effect=RuntimeError("File 'notes.json' is encrypted, password required"),
        ):
            with pytest.raises(BackupError) as exc_info:
                backup_manager.import_data_dir(archive)

        assert exc_info.value.code == ErrorCode.BACKUP_INVALID_ARCHIVE
        assert test_config.notes_file.read_text(encoding="utf-8") == before
        assert not test_config.config_file.exists()
        assert not test_config.staging_dir.exists()

    def test_find_notes_entry_prefers_exact_name(self):
        names = ["nested/notes.json", "Notes.json"]
        assert BackupManager.find_notes_entry(names) == "Notes.json"
        assert BackupManager.find_notes_entry(["a/notes.json"]) == "a/notes.json"
        assert BackupManager.find_notes_entry(["notes.json.bak"]) is None


class TestSingleNoteExport:
    """Tests for exporting one note as a text file."""

    def test_suggested_filename_sanitized(self):
        note = Note(content='Plan: Q3/Q4 "draft"?\nbody')
        assert suggested_filename(note) == "Plan_ Q3_Q4 _draft__.md"

    def test_suggested_filename_for_empty_note(self):
        assert suggested_filename(Note()) == "(untitled).md"

    def test_export_note_text(self, tmp_path):
        note = Note(content="# Title\n本文")
        path = export_note_text(note, tmp_path / "sub" / "note.md")
        assert path.read_text(encoding="utf-8") == "# Title\n本文"

    def test_export_note_text_failure(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        with pytest.raises(StorageError):
            export_note_text(Note(content="x"), blocker / "note.md")
