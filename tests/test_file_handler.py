"""Tests for file_handler module: profile path checks, decoding, atomic writes."""

from pathlib import Path

import pytest

from poolman.file_handler import (
    decode_text,
    is_profile_file,
    validate_directory,
    write_file,
)

# =============================================================================
# is_profile_file
# =============================================================================


class TestIsProfileFile:
    """Tests for is_profile_file(path)."""

    def test_json_file(self, tmp_path):
        assert is_profile_file(tmp_path / "PLA Red @Voron.json")

    def test_uppercase_suffix(self, tmp_path):
        assert is_profile_file(tmp_path / "PLA.JSON")

    def test_other_suffix_rejected(self, tmp_path):
        assert not is_profile_file(tmp_path / "PLA.info")
        assert not is_profile_file(tmp_path / "PLA.json.swp")

    def test_hidden_file_rejected(self, tmp_path):
        """Temp files written by atomic writes start with a dot."""
        assert not is_profile_file(tmp_path / ".abc.json")

    def test_directory_rejected(self, tmp_path):
        d = tmp_path / "nested.json"
        d.mkdir()
        assert not is_profile_file(d)


# =============================================================================
# validate_directory
# =============================================================================


class TestValidateDirectory:
    """Tests for validate_directory(path_str)."""

    def test_existing_directory(self, tmp_path):
        result = validate_directory(str(tmp_path))
        assert isinstance(result, Path)
        assert result == tmp_path.resolve()

    def test_missing_directory_raises(self, tmp_path):
        with pytest.raises(ValueError, match="not found"):
            validate_directory(str(tmp_path / "missing"))

    def test_file_raises(self, tmp_path):
        f = tmp_path / "file.txt"
        f.write_text("x")
        with pytest.raises(ValueError, match="not a directory"):
            validate_directory(str(f))


# =============================================================================
# decode_text
# =============================================================================


class TestDecodeText:
    """Tests for decode_text(raw)."""

    def test_utf8(self):
        assert decode_text("Café".encode("utf-8")) == "Café"

    def test_utf8_bom_stripped(self):
        assert decode_text(b"\xef\xbb\xbf{}") == "{}"

    def test_empty(self):
        assert decode_text(b"") == ""

    def test_legacy_encoding_detected(self):
        raw = '{"filament_vendor": ["Café Filaments"]}'.encode("cp1252")
        text = decode_text(raw)
        assert text.startswith('{"filament_vendor"')


# =============================================================================
# write_file
# =============================================================================


class TestWriteFile:
    """Tests for write_file(path, data)."""

    def test_writes_bytes(self, tmp_path):
        path = tmp_path / "out.json"
        assert write_file(path, b"{}\n") == 3
        assert path.read_bytes() == b"{}\n"

    def test_creates_parent_dirs(self, tmp_path):
        path = tmp_path / "a" / "b" / "out.json"
        write_file(path, b"{}")
        assert path.exists()

    def test_replaces_existing(self, tmp_path):
        path = tmp_path / "out.json"
        path.write_bytes(b"old")
        write_file(path, b"new")
        assert path.read_bytes() == b"new"

    def test_no_temp_files_left(self, tmp_path):
        write_file(tmp_path / "out.json", b"{}")
        assert [p.name for p in tmp_path.iterdir()] == ["out.json"]
