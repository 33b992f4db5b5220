"""Text encoding detection and decoding for uploaded CSV files."""

import codecs
import logging
import re
from pathlib import Path
from typing import Any, Optional, Union

import chardet

from .models import EncodingDetectionResult

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 8192
MIN_CONFIDENCE = 0.3
FALLBACK_CONFIDENCE = 0.2

# Tried in order after the detected encoding when decoding the whole file.
FALLBACK_ENCODINGS = [
    "utf-8",
    "windows-1254",
    "iso-8859-9",
    "windows-1252",
    "iso-8859-1",
]

CHARDET_ALIASES = {
    "iso-8859-1": "iso-8859-1",
    "latin-1": "iso-8859-1",
    "windows-1252": "windows-1252",
    "windows-1254": "windows-1254",
    "iso-8859-9": "windows-1254",
}

EUROPEAN_CHARS = re.compile(r"[àáâãäåæçèéêëìíîïñòóôõöøùúûüýß]", re.IGNORECASE)
EXTENDED_CHARS = re.compile(r"[\u00a0-\u00ff]")
C1_CONTROL_CHARS = re.compile(r"[\u0080-\u009f]")
SMART_PUNCTUATION = re.compile(r"[‘’“”–—…€]")
TURKISH_ONLY_CHARS = re.compile(r"[ğĞıİşŞ]")
TURKISH_WORDS = re.compile(
    r"\b(şirket|adı|ülke|sektör|durum|tarih|bilgi|notlar|başvuru|cevap|iletişim)\b",
    re.IGNORECASE,
)
DELIMITED_LINE = re.compile(r"^[^\n]*[,;\t|][^\n]*[,;\t|]", re.MULTILINE)

# UTF-8 text that was decoded as Latin-1/Windows-1252 somewhere upstream.
MOJIBAKE_FIXES = {
    "Ä°": "İ",
    "Ä±": "ı",
    "ÅŸ": "ş",
    "Åž": "Ş",
    "ÄŸ": "ğ",
    "Ã§": "ç",
    "Ã¶": "ö",
    "Ã¼": "ü",
    "Ã‡": "Ç",
    "Ã–": "Ö",
    "Ãœ": "Ü",
    "Ã¤": "ä",
    "Ã¥": "å",
    "Ã¦": "æ",
    "Ã¸": "ø",
    "Ã©": "é",
    "Ã¨": "è",
    "Ã¡": "á",
    "Ã­": "í",
    "Ã³": "ó",
    "Ãº": "ú",
    "Ã±": "ñ",
    "ÃŸ": "ß",
}


def read_source(source: Any) -> bytes:
    """Read raw bytes from bytes, a path, or a binary file-like object."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    if isinstance(source, (str, Path)):
        return Path(source).read_bytes()
    if hasattr(source, "read"):
        data = source.read()
        if isinstance(data, str):
            raise TypeError("Expected a binary file object, got a text stream")
        return bytes(data)
    raise TypeError(f"Unsupported file source: {type(source).__name__}")


def _has_csv_patterns(text: str) -> bool:
    return bool(DELIMITED_LINE.search(text))


def _ratio(pattern: re.Pattern, text: str) -> float:
    if not text:
        return 0.0
    return len(pattern.findall(text)) / len(text)


def _guess_utf16(sample: bytes) -> Optional[str]:
    """Spot BOM-less UTF-16 from the NUL bytes ASCII text leaves behind."""
    head = sample[:1000]
    if len(head) < 4:
        return None
    even_zeros = head[0::2].count(0) / max(1, len(head[0::2]))
    odd_zeros = head[1::2].count(0) / max(1, len(head[1::2]))
    if odd_zeros > 0.3 and even_zeros < 0.05:
        return "utf-16-le"
    if even_zeros > 0.3 and odd_zeros < 0.05:
        return "utf-16-be"
    return None


def _try_utf8(sample: bytes) -> Optional[str]:
    # Incremental decode so a multibyte sequence cut off by the sample limit is not an error.
    decoder = codecs.getincrementaldecoder("utf-8")(errors="strict")
    try:
        return decoder.decode(sample, final=False)
    except UnicodeDecodeError:
        return None


def _score_latin1(sample: bytes) -> EncodingDetectionResult:
    text = sample.decode("iso-8859-1")
    confidence = 0.2
    confidence += min(0.4, _ratio(EXTENDED_CHARS, text) * 2)
    confidence += min(0.3, _ratio(EUROPEAN_CHARS, text) * 5)
    if C1_CONTROL_CHARS.search(text):
        confidence -= 0.3
    if _has_csv_patterns(text):
        confidence += 0.1
    return EncodingDetectionResult(
        encoding="iso-8859-1", confidence=max(0.0, min(1.0, confidence)), sample=text[:200]
    )


def _score_windows1252(sample: bytes) -> EncodingDetectionResult:
    text = sample.decode("windows-1252", errors="replace")
    confidence = 0.2
    smart = _ratio(SMART_PUNCTUATION, text)
    if smart:
        confidence += 0.1 + min(0.3, smart * 5)
    confidence += min(0.3, _ratio(EUROPEAN_CHARS, text) * 5)
    if "\ufffd" in text:
        confidence -= 0.3
    if _has_csv_patterns(text):
        confidence += 0.1
    return EncodingDetectionResult(
        encoding="windows-1252", confidence=max(0.0, min(1.0, confidence)), sample=text[:200]
    )


def _score_turkish(sample: bytes) -> EncodingDetectionResult:
    text = sample.decode("windows-1254", errors="replace")
    confidence = 0.1
    confidence += min(0.6, _ratio(TURKISH_ONLY_CHARS, text) * 10)
    confidence += min(0.4, len(TURKISH_WORDS.findall(text)) / 20)
    if "\ufffd" in text:
        confidence -= 0.3
    if _has_csv_patterns(text):
        confidence += 0.1
    return EncodingDetectionResult(
        encoding="windows-1254", confidence=max(0.0, min(1.0, confidence)), sample=text[:200]
    )


def detect_encoding(data: bytes, sample_size: int = SAMPLE_SIZE) -> EncodingDetectionResult:
    """Detect the text encoding of raw file bytes. Never raises."""
    sample = bytes(data[:sample_size])

    if not sample:
        return EncodingDetectionResult(encoding="utf-8", confidence=FALLBACK_CONFIDENCE)

    if sample.startswith(codecs.BOM_UTF8):
        text = _try_utf8(sample[len(codecs.BOM_UTF8):]) or ""
        return EncodingDetectionResult(encoding="utf-8", confidence=1.0, sample=text[:200])

    if sample.startswith(codecs.BOM_UTF16_LE) or sample.startswith(codecs.BOM_UTF16_BE):
        text = sample.decode("utf-16", errors="replace")
        return EncodingDetectionResult(encoding="utf-16", confidence=1.0, sample=text[:200])

    utf16 = _guess_utf16(sample)
    if utf16:
        text = sample.decode(utf16, errors="replace")
        return EncodingDetectionResult(encoding=utf16, confidence=0.7, sample=text[:200])

    text = _try_utf8(sample)
    if text is not None:
        has_multibyte = any(ord(char) > 127 for char in text)
        confidence = 0.95 if has_multibyte else 0.8
        return EncodingDetectionResult(encoding="utf-8", confidence=confidence, sample=text[:200])

    candidates = [_score_latin1(sample), _score_windows1252(sample), _score_turkish(sample)]

    try:
        guess = chardet.detect(sample)
    except Exception as e:
        logger.debug(f"chardet failed on sample: {e}")
        guess = {}
    guessed = CHARDET_ALIASES.get(str(guess.get("encoding") or "").lower())
    if guessed:
        bonus = 0.15 * float(guess.get("confidence") or 0.0)
        for candidate in candidates:
            if candidate.encoding == guessed:
                candidate.confidence = min(1.0, candidate.confidence + bonus)
    logger.debug(f"chardet guess: {guess}")

    # Stable sort keeps candidate order as the tie-break.
    candidates.sort(key=lambda c: c.confidence, reverse=True)
    best = candidates[0]
    if best.confidence < MIN_CONFIDENCE:
        logger.info("No confident encoding match, defaulting to UTF-8")
        return EncodingDetectionResult(
            encoding="utf-8", confidence=FALLBACK_CONFIDENCE, sample="Defaulting to UTF-8"
        )

    logger.debug(f"Detected encoding {best.encoding} ({best.confidence:.2f})")
    return best


def fix_encoding_issues(text: str) -> str:
    """Repair common UTF-8-read-as-Latin-1 sequences."""
    if "Ã" not in text and "Ä" not in text and "Å" not in text:
        return text
    for wrong, correct in MOJIBAKE_FIXES.items():
        text = text.replace(wrong, correct)
    return text


def decode_bytes(data: bytes, encoding: str) -> str:
    """Decode file bytes, falling back through other encodings strictly."""
    tried = []
    for candidate in [encoding, *FALLBACK_ENCODINGS]:
        codec = "utf-8-sig" if candidate.lower() in ("utf-8", "utf8") else candidate
        if codec in tried:
            continue
        tried.append(codec)
        try:
            text = data.decode(codec)
            break
        except (UnicodeDecodeError, LookupError):
            logger.debug(f"Decoding with {candidate} failed, trying next encoding")
            continue
    else:
        logger.warning("All encodings failed, decoding as UTF-8 with replacement")
        text = data.decode("utf-8", errors="replace")

    if text.startswith("\ufeff"):
        text = text[1:]
    return fix_encoding_issues(text)


def read_file_with_encoding(source: Union[bytes, str, Path, Any], encoding: str) -> str:
    """Read a file source and decode it with the given encoding."""
    return decode_bytes(read_source(source), encoding)
