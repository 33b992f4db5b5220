"""Tests for encoding detection and decoding."""

import codecs
import io

import pytest

from jobtrail.encoding import (
    decode_bytes,
    detect_encoding,
    fix_encoding_issues,
    read_file_with_encoding,
    read_source,
)

SINGLE_BYTE_ENCODINGS = {"iso-8859-1", "windows-1252", "windows-1254"}


class TestDetectEncoding:
    """Tests for detect_encoding()."""

    def test_utf8_bom_is_definitive(self):
        data = codecs.BOM_UTF8 + "Company,Position\nGoogle,SWE\n".encode("utf-8")

        result = detect_encoding(data)

        assert result.encoding == "utf-8"
        assert result.confidence == 1.0

    def test_utf16_bom_is_definitive(self):
        data = "Company,Position\nGoogle,SWE\n".encode("utf-16")

        result = detect_encoding(data)

        assert result.encoding == "utf-16"
        assert result.confidence == 1.0

    def test_utf16_without_bom_from_nul_pattern(self):
        data = "Company,Position\nGoogle,SWE\n".encode("utf-16-le")

        result = detect_encoding(data)

        assert result.encoding == "utf-16-le"

    def test_plain_ascii_is_utf8(self):
        result = detect_encoding(b"Company,Position\nGoogle,SWE\n")

        assert result.encoding == "utf-8"
        assert result.confidence == 0.8

    def test_multibyte_utf8_has_high_confidence(self):
        data = "Şirket Adı,Durum\nTürk Telekom,Başvuru yapıldı\n".encode("utf-8")

        result = detect_encoding(data)

        assert result.encoding == "utf-8"
        assert result.confidence == 0.95

    def test_multibyte_sequence_cut_by_sample_limit(self):
        """A character split at the sample boundary should not make UTF-8 invalid."""
        data = ("a" * 9 + "é").encode("utf-8")

        result = detect_encoding(data, sample_size=10)

        assert result.encoding == "utf-8"

    def test_latin1_bytes_pick_single_byte_encoding(self):
        data = "Company,Notes\nCafé Ltd,Déjà vu à Paris\n".encode("latin-1")

        result = detect_encoding(data)

        assert result.encoding in SINGLE_BYTE_ENCODINGS
        assert 0.3 <= result.confidence <= 1.0

    def test_turkish_windows_1254(self):
        text = (
            "Şirket Adı,Durum,Notlar\n"
            "Türk Telekom,Başvuru yapıldı,İstanbul ofisi\n"
            "Yapı Kredi,Mülakat,Görüşme ayarlandı\n"
        )

        result = detect_encoding(text.encode("windows-1254"))

        assert result.encoding == "windows-1254"

    def test_empty_input_falls_back_to_utf8(self):
        result = detect_encoding(b"")

        assert result.encoding == "utf-8"
        assert result.confidence == 0.2

    def test_never_raises_on_arbitrary_bytes(self):
        result = detect_encoding(bytes(range(1, 256)) * 8)

        assert result.encoding
        assert 0.0 <= result.confidence <= 1.0


class TestDecoding:
    """Tests for decode_bytes() and read_file_with_encoding()."""

    def test_strips_utf8_bom(self):
        data = codecs.BOM_UTF8 + b"Company\nGoogle\n"

        assert decode_bytes(data, "utf-8") == "Company\nGoogle\n"

    def test_decodes_utf16(self):
        data = "Company\nGöteborg AB\n".encode("utf-16")

        assert decode_bytes(data, "utf-16") == "Company\nGöteborg AB\n"

    def test_falls_back_when_declared_encoding_fails(self):
        data = "Company\nCafé Ltd\n".encode("latin-1")

        text = decode_bytes(data, "utf-8")

        assert "Café Ltd" in text

    def test_unknown_encoding_name_falls_back(self):
        assert decode_bytes(b"Company\nGoogle\n", "not-a-codec") == "Company\nGoogle\n"

    def test_repairs_mojibake(self):
        data = "Company\nCafÃ© Ltd\n".encode("utf-8")

        assert decode_bytes(data, "utf-8") == "Company\nCafé Ltd\n"

    def test_reads_path(self, tmp_path):
        path = tmp_path / "apps.csv"
        path.write_bytes("Company\nGoogle\n".encode("utf-8"))

        assert read_file_with_encoding(path, "utf-8") == "Company\nGoogle\n"

    def test_reads_binary_file_object(self):
        stream = io.BytesIO(b"Company\nGoogle\n")

        assert read_file_with_encoding(stream, "utf-8") == "Company\nGoogle\n"

    def test_rejects_text_stream(self):
        with pytest.raises(TypeError):
            read_source(io.StringIO("Company\n"))

    def test_fix_encoding_issues_leaves_clean_text(self):
        assert fix_encoding_issues("Zürich") == "Zürich"
