"""Tests for the config.properties preferences file."""
import pytest

from stickynote.exceptions import StorageError
from stickynote.storage.preferences import Preferences, parse_properties


class TestParseProperties:
    """Tests for the properties parser."""

    def test_separators_and_comments(self):
        text = "# header\n! also a comment\na=1\nb : 2\nc 3\n\n   d=4\n"
        assert parse_properties(text) == {"a": "1", "b": "2", "c": "3", "d": "4"}

    def test_escapes(self):
        text = "key\\ with\\ space=v\nuni=\\u00e9\npath=C\\:\\\\dir\ntab=a\\tb\n"
        assert parse_properties(text) == {
            "key with space": "v",
            "uni": "é",
            "path": "C:\\dir",
            "tab": "a\tb",
        }

    def test_continuation_lines(self):
        text = "multi=line1\\\n    line2\nnext=x\n"
        assert parse_properties(text) == {"multi": "line1line2", "next": "x"}

    def test_later_keys_win(self):
        assert parse_properties("k=1\nk=2\n") == {"k": "2"}

    def test_empty_value(self):
        assert parse_properties("empty=\nbare\n") == {"empty": "", "bare": ""}


class TestPreferences:
    """Tests for typed preference access and persistence."""

    def test_missing_file_gives_defaults(self, tmp_path):
        prefs = Preferences(tmp_path / "config.properties").load()
        assert prefs.keys() == []
        assert prefs.get_string("theme") is None
        assert prefs.get_string("theme", "light") == "light"
        assert prefs.get_int("fontSize", 14) == 14
        assert prefs.get_bool("alwaysOnTop", True) is True

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "config.properties"
        prefs = Preferences(path)
        prefs.set_string("theme", "dark")
        prefs.set_int("fontSize", 16)
        prefs.set_bool("alwaysOnTop", False)
        prefs.set_string("lastExport", "C:\\Users\\me\\notes=1.zip")
        prefs.save()

        text = path.read_text(encoding="utf-8")
        assert text.startswith("#Sticky Note config\n#")

        loaded = Preferences(path).load()
        assert loaded.get_string("theme") == "dark"
        assert loaded.get_int("fontSize", 0) == 16
        assert loaded.get_bool("alwaysOnTop", True) is False
        assert loaded.get_string("lastExport") == "C:\\Users\\me\\notes=1.zip"

    def test_values_with_newlines_and_leading_space(self, tmp_path):
        path = tmp_path / "config.properties"
        prefs = Preferences(path)
        prefs.set_string("note", " two\nlines")
        prefs.save()
        assert Preferences(path).load().get_string("note") == " two\nlines"

    def test_bad_values_fall_back(self, tmp_path):
        path = tmp_path / "config.properties"
        path.write_text("fontSize=large\nalwaysOnTop=yes\n", encoding="utf-8")
        prefs = Preferences(path).load()
        assert prefs.get_int("fontSize", 12) == 12
        assert prefs.get_bool("alwaysOnTop", True) is False

    def test_set_none_removes_key(self, tmp_path):
        prefs = Preferences(tmp_path / "config.properties")
        prefs.set_string("theme", "dark")
        prefs.set_string("theme", None)
        assert "theme" not in prefs.keys()

    def test_save_failure_raises_storage_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("x", encoding="utf-8")
        prefs = Preferences(blocker / "config.properties")
        prefs.set_string("k", "v")
        with pytest.raises(StorageError):
            prefs.save()
