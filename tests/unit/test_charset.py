"""
Unit tests for charset resolution.
"""

import pytest

from ssiserve.transform.charset import (
    DEFAULT_CHARSET,
    FileAccessError,
    detect_charset,
    normalize_charset,
    resolve_charset,
)


class TestResolveCharset:
    """Tests for resolve_charset()."""

    def test_forced_charset_wins(self, tmp_path):
        """Test that a forced charset is returned without reading the file."""
        missing = tmp_path / "does-not-exist.html"
        assert resolve_charset(missing, forced="iso-8859-1") == "iso-8859-1"

    def test_utf8_text(self, tmp_path):
        """Test detection of UTF-8 with non-ASCII content."""
        page = tmp_path / "page.html"
        page.write_text(
            "<p>Grüße aus Köln, déjà vu, naïve café, Ærø, smörgåsbord.</p>\n" * 20,
            encoding="utf-8",
        )

        assert resolve_charset(page) == "utf-8"

    def test_ascii_is_widened(self, tmp_path):
        """Test that pure ASCII is reported as utf-8."""
        page = tmp_path / "page.html"
        page.write_bytes(b"<p>Just plain old ASCII text here.</p>\n" * 20)

        assert resolve_charset(page) == "utf-8"

    def test_empty_file(self, tmp_path):
        """Test that an empty file falls back to utf-8."""
        page = tmp_path / "empty.html"
        page.write_bytes(b"")

        assert resolve_charset(page) == DEFAULT_CHARSET

    def test_missing_file_raises(self, tmp_path):
        """Test FileAccessError for unreadable files."""
        with pytest.raises(FileAccessError):
            resolve_charset(tmp_path / "missing.html")


class TestDetectCharset:
    """Tests for the non-raising wrapper."""

    def test_missing_file_falls_back(self, tmp_path):
        """Test that detect_charset() recovers to utf-8."""
        assert detect_charset(tmp_path / "missing.html") == "utf-8"

    def test_forced(self, tmp_path):
        """Test that the forced value passes through."""
        assert detect_charset(tmp_path / "missing.html", forced="windows-1252") == "windows-1252"


class TestNormalizeCharset:
    """Tests for normalize_charset()."""

    @pytest.mark.parametrize("name,expected", [
        ("UTF-8", "utf-8"),
        ("utf_8", "utf-8"),
        ("ascii", "utf-8"),
        ("latin-1", "iso8859-1"),
    ])
    def test_canonical_names(self, name, expected):
        """Test codec registry normalisation."""
        assert normalize_charset(name) == expected

    def test_unknown(self):
        """Test that unknown names raise LookupError."""
        with pytest.raises(LookupError):
            normalize_charset("not-a-charset")

    @pytest.mark.parametrize("name", ["base64", "zlib", "rot13"])
    def test_non_text_codec(self, name):
        """Test that byte-to-byte codecs are not accepted as charsets."""
        with pytest.raises(LookupError):
            normalize_charset(name)
